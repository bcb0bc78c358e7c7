"""PayPal Orders v2 checkout over the REST API.

The buyer approves the order on PayPal and comes back to the store, which
then captures it. Webhooks are verified by PayPal itself through the
verify-webhook-signature endpoint, so the webhook id must be configured.
"""

import json
import time
from typing import Any, Dict, List, Mapping, Optional, Sequence

import requests

from ..models.order_item import OrderItem
from .errors import GatewayUnavailable
from .logging import log_event
from .payment_gateway import CheckoutSession
from .shipping import ShippingInfo, shipping_from_paypal_order


API_BASE_URLS = {
    "sandbox": "https://api-m.sandbox.paypal.com",
    "live": "https://api-m.paypal.com",
}

# webhook verification field -> delivery header
VERIFY_HEADERS = {
    "transmission_id": "paypal-transmission-id",
    "transmission_time": "paypal-transmission-time",
    "transmission_sig": "paypal-transmission-sig",
    "cert_url": "paypal-cert-url",
    "auth_algo": "paypal-auth-algo",
}

ITEM_NAME_LIMIT = 127


def format_amount(amount: int) -> str:
    """Minor units as PayPal's decimal string (1234 -> "12.34")."""
    return f"{amount // 100}.{amount % 100:02d}"


def _money(amount: int, currency: str) -> Dict[str, str]:
    return {"currency_code": currency, "value": format_amount(amount)}


def build_purchase_items(items: Sequence[OrderItem], currency: str) -> List[Dict[str, Any]]:
    """PayPal ``items`` for the charged part of an order; free gifts are left out."""
    out = []
    for it in items:
        if it.is_free_gift or it.quantity <= 0:
            continue
        out.append(
            {
                "name": (it.name or it.product_id)[:ITEM_NAME_LIMIT],
                "sku": it.product_id[:ITEM_NAME_LIMIT],
                "quantity": str(it.quantity),
                "unit_amount": _money(it.unit_amount, currency),
            }
        )
    return out


def _paypal_shipping(shipping: Optional[ShippingInfo]) -> Optional[Dict[str, Any]]:
    addr = shipping.address if shipping else None
    if addr is None or not addr.country:
        return None
    block: Dict[str, Any] = {
        "address": {
            k: v
            for k, v in (
                ("address_line_1", addr.line1),
                ("address_line_2", addr.line2),
                ("admin_area_2", addr.city),
                ("admin_area_1", addr.state),
                ("postal_code", addr.postal_code),
                ("country_code", addr.country),
            )
            if v
        }
    }
    if shipping.name:
        block["name"] = {"full_name": shipping.name[:300]}
    return block


class PayPalGateway:
    def __init__(
        self,
        client_id: str,
        client_secret: str,
        webhook_id: str = "",
        *,
        environment: str = "sandbox",
        timeout: float = 15.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self._webhook_id = webhook_id
        self._base_url = API_BASE_URLS.get(environment, API_BASE_URLS["sandbox"])
        self._timeout = timeout
        self._http = session or requests.Session()
        self._token: Optional[str] = None
        self._token_expires_at = 0.0

    @property
    def configured(self) -> bool:
        return bool(self._client_id and self._client_secret)

    def _access_token(self, order_id: Optional[str] = None) -> str:
        if self._token and time.monotonic() < self._token_expires_at:
            return self._token
        if not self.configured:
            raise GatewayUnavailable(
                "PayPal not configured (missing PAYPAL_CLIENT_ID/PAYPAL_CLIENT_SECRET)", order_id=order_id
            )
        try:
            response = self._http.post(
                f"{self._base_url}/v1/oauth2/token",
                auth=(self._client_id, self._client_secret),
                data={"grant_type": "client_credentials"},
                headers={"Accept": "application/json"},
                timeout=self._timeout,
            )
            response.raise_for_status()
            body = response.json()
        except (requests.RequestException, ValueError) as exc:
            log_event("error", "paypal.auth_failed", order_id=order_id, error=str(exc))
            raise GatewayUnavailable(f"PayPal authentication failed: {exc}", order_id=order_id) from exc
        token = body.get("access_token")
        if not token:
            raise GatewayUnavailable("PayPal did not return an access token", order_id=order_id)
        # renew a minute early
        self._token = token
        self._token_expires_at = time.monotonic() + max(0, int(body.get("expires_in") or 0) - 60)
        return token

    def _request(self, method: str, path: str, *, order_id: Optional[str] = None, **kwargs) -> Dict[str, Any]:
        headers = {
            "Authorization": f"Bearer {self._access_token(order_id)}",
            "Content-Type": "application/json",
            **kwargs.pop("headers", {}),
        }
        try:
            response = self._http.request(
                method, f"{self._base_url}{path}", headers=headers, timeout=self._timeout, **kwargs
            )
            response.raise_for_status()
            return response.json()
        except (requests.RequestException, ValueError) as exc:
            log_event("error", "paypal.request_failed", method=method, path=path, order_id=order_id, error=str(exc))
            raise GatewayUnavailable(f"PayPal error: {exc}", order_id=order_id) from exc

    def create_session(
        self,
        order_id: str,
        items: Sequence[OrderItem],
        shipping_amount: int,
        *,
        currency: str,
        return_url: str,
        cancel_url: str,
        shipping: Optional[ShippingInfo] = None,
        brand_name: Optional[str] = None,
    ) -> CheckoutSession:
        """Create a PayPal order and return its approval link."""
        code = currency.upper()
        purchase_items = build_purchase_items(items, code)
        item_total = sum(it.unit_amount * it.quantity for it in items if not it.is_free_gift and it.quantity > 0)
        unit: Dict[str, Any] = {
            "reference_id": order_id,
            "custom_id": order_id,
            "amount": {
                **_money(item_total + int(shipping_amount), code),
                "breakdown": {
                    "item_total": _money(item_total, code),
                    "shipping": _money(int(shipping_amount), code),
                },
            },
            "items": purchase_items,
        }
        ship = _paypal_shipping(shipping)
        if ship:
            unit["shipping"] = ship
        context: Dict[str, Any] = {
            "user_action": "PAY_NOW",
            "return_url": return_url,
            "cancel_url": cancel_url,
            "shipping_preference": "SET_PROVIDED_ADDRESS" if ship else "GET_FROM_FILE",
        }
        if brand_name:
            context["brand_name"] = brand_name[:127]
        result = self._request(
            "POST",
            "/v2/checkout/orders",
            order_id=order_id,
            json={"intent": "CAPTURE", "purchase_units": [unit], "application_context": context},
            headers={"PayPal-Request-Id": f"checkout-{order_id}"},
        )
        paypal_order_id = result.get("id")
        approve = next(
            (link.get("href") for link in result.get("links") or [] if link.get("rel") in ("approve", "payer-action")),
            None,
        )
        if not paypal_order_id or not approve:
            raise GatewayUnavailable("PayPal did not return an approval link.", order_id=order_id)
        log_event("info", "paypal.order_created", order_id=order_id, paypal_order_id=paypal_order_id)
        return CheckoutSession(session_id=str(paypal_order_id), redirect_url=str(approve))

    def capture(self, paypal_order_id: str) -> Dict[str, Any]:
        return self._request(
            "POST",
            f"/v2/checkout/orders/{paypal_order_id}/capture",
            json={},
            headers={"PayPal-Request-Id": f"capture-{paypal_order_id}"},
        )

    def get_order(self, paypal_order_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/v2/checkout/orders/{paypal_order_id}")

    def try_order_shipping(self, paypal_order_id: str) -> Optional[ShippingInfo]:
        """Buyer details of a PayPal order, or None when they cannot be fetched."""
        try:
            return shipping_from_paypal_order(self.get_order(paypal_order_id))
        except GatewayUnavailable as exc:
            log_event("warning", "paypal.order_lookup_failed", paypal_order_id=paypal_order_id, error=str(exc))
            return None

    def construct_event(self, payload: bytes, headers: Mapping[str, str]) -> Dict[str, Any]:
        """Verify a webhook delivery with PayPal and parse it.

        Raises ``ValueError`` when it is not authentic and
        ``GatewayUnavailable`` when PayPal could not be asked.
        """
        if not self._webhook_id:
            raise ValueError("Missing PAYPAL_WEBHOOK_ID")
        lowered = {str(k).lower(): v for k, v in headers.items()}
        fields = {name: lowered.get(header) for name, header in VERIFY_HEADERS.items()}
        if not all(fields.values()):
            raise ValueError("Missing PayPal transmission headers")
        try:
            event = json.loads(payload)
        except ValueError as exc:
            raise ValueError("Webhook body is not JSON") from exc
        if not isinstance(event, dict):
            raise ValueError("Webhook body is not a JSON object")
        result = self._request(
            "POST",
            "/v1/notifications/verify-webhook-signature",
            json={**fields, "webhook_id": self._webhook_id, "webhook_event": event},
        )
        if result.get("verification_status") != "SUCCESS":
            raise ValueError("Webhook signature verification failed")
        return event
