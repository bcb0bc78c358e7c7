"""Stripe hosted checkout: session creation and webhook verification."""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import stripe

from ..models.order_item import OrderItem
from .errors import GatewayUnavailable
from .logging import log_event


# Stripe only accepts these in ``payment_method_types``; "automatic" leaves it unset
PAYMENT_METHODS = {"card", "link", "multibanco", "klarna", "revolut_pay", "satispay", "amazon_pay"}


@dataclass(frozen=True)
class CheckoutSession:
    session_id: str
    redirect_url: str


def _absolute_image(url: Optional[str], base_url: str) -> Optional[str]:
    if not url:
        return None
    u = url.strip()
    if u.startswith("http://") or u.startswith("https://"):
        return u
    if u.startswith("/"):
        return f"{base_url.rstrip('/')}{u}"
    return None


def build_line_items(items: Sequence[OrderItem], currency: str, base_url: str) -> List[Dict[str, Any]]:
    """Stripe ``line_items`` for the charged part of an order.

    Free gifts are left out: they are already priced at zero and shipping
    is passed separately as a shipping option.
    """
    line_items = []
    for it in items:
        if it.is_free_gift or it.quantity <= 0:
            continue
        product_data: Dict[str, Any] = {"name": it.name, "metadata": {"productId": it.product_id}}
        image = _absolute_image(it.image, base_url)
        if image:
            product_data["images"] = [image]
        line_items.append(
            {
                "quantity": it.quantity,
                "price_data": {
                    "currency": currency.lower(),
                    "unit_amount": it.unit_amount,
                    "product_data": product_data,
                },
            }
        )
    return line_items


class StripeGateway:
    def __init__(self, secret_key: str, webhook_secret: str, *, client=stripe) -> None:
        self._secret_key = secret_key
        self._webhook_secret = webhook_secret
        self._stripe = client

    def create_session(
        self,
        order_id: str,
        line_items: List[Dict[str, Any]],
        shipping_fee_amount: int,
        metadata: Dict[str, str],
        *,
        currency: str,
        success_url: str,
        cancel_url: str,
        customer_email: Optional[str] = None,
        method: str = "automatic",
    ) -> CheckoutSession:
        if not self._secret_key:
            raise GatewayUnavailable("Stripe not configured (missing STRIPE_SECRET_KEY)", order_id=order_id)
        meta = dict(metadata)
        meta["orderId"] = order_id
        params: Dict[str, Any] = {
            "mode": "payment",
            "line_items": line_items,
            "success_url": success_url,
            "cancel_url": cancel_url,
            "client_reference_id": order_id,
            "metadata": meta,
            # payment_intent.* events carry the order id too
            "payment_intent_data": {"metadata": {"orderId": order_id}},
            "shipping_options": [
                {
                    "shipping_rate_data": {
                        "type": "fixed_amount",
                        "display_name": "Shipping" if shipping_fee_amount else "Free shipping",
                        "fixed_amount": {"amount": int(shipping_fee_amount), "currency": currency.lower()},
                    }
                }
            ],
        }
        if customer_email:
            params["customer_email"] = customer_email[:200]
        if method in PAYMENT_METHODS:
            params["payment_method_types"] = [method]
        try:
            session = self._stripe.checkout.Session.create(
                api_key=self._secret_key,
                idempotency_key=f"checkout-{order_id}",
                **params,
            )
        except stripe.StripeError as exc:
            log_event("error", "gateway.session_failed", order_id=order_id, error=str(exc))
            raise GatewayUnavailable(str(exc) or "Stripe error", order_id=order_id) from exc
        url = session.get("url")
        sid = session.get("id")
        if not url or not sid:
            raise GatewayUnavailable("Stripe did not return a hosted checkout URL.", order_id=order_id)
        log_event("info", "gateway.session_created", order_id=order_id, session_id=sid)
        return CheckoutSession(session_id=str(sid), redirect_url=str(url))

    def construct_event(self, payload: bytes, signature: Optional[str]):
        """Verify and parse a webhook delivery; raises ``ValueError`` when it is not authentic."""
        if not signature or not self._webhook_secret:
            raise ValueError("Missing STRIPE_WEBHOOK_SECRET or signature")
        try:
            return self._stripe.Webhook.construct_event(payload, signature, self._webhook_secret)
        except stripe.SignatureVerificationError as exc:
            raise ValueError(f"Webhook signature verification failed: {exc}") from exc
