"""Storefront checkout API: cart pricing, order creation, hosted payment hand-off."""

from __future__ import annotations

from typing import Any, Dict

from flask import Blueprint, current_app, jsonify, request

from common.services.errors import (
    EmptyCart,
    GatewayUnavailable,
    OrderNotFound,
    PersistenceConflict,
    PromotionCapExceeded,
)
from common.services.logging import log_event
from common.services.order_factory import parse_cart_lines
from common.services.order_state import PAID_OR_LATER, coerce
from common.services.payment_gateway import build_line_items
from common.services.shipping import ShippingInfo, nz, parse_shipping_payload
from common.services.webhook_reconciler import paypal_capture_event
from common.utils.dto import to_order_dto


api_bp = Blueprint("storefront_api", __name__, url_prefix="/api")


class _BadRequest(ValueError):
    code = "invalid_request"


def _components() -> Dict[str, Any]:
    return current_app.extensions["storefront_components"]


def _config():
    return current_app.config["STORE_CONFIG"]


def _error(exc: Exception, status: int, **extra):
    body = {"error": str(exc), "code": getattr(exc, "code", "invalid_request")}
    body.update(extra)
    return jsonify(body), status


def _json_object() -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise _BadRequest("request body must be a JSON object")
    return payload


def _attach(order_id: str, checkout_session_id: str) -> None:
    try:
        _components()["order_store"].attach_checkout_session(order_id, checkout_session_id)
    except PersistenceConflict as exc:
        # webhooks still correlate through the order id the provider echoes back
        log_event("warning", "checkout.attach_session_conflict", order_id=order_id, error=str(exc))


def _create_order():
    """Parse the checkout body and persist the pending order it describes."""
    payload = _json_object()
    lines = parse_cart_lines(payload.get("items", []))
    shipping = parse_shipping_payload(payload.get("shipping"))
    order = _components()["order_factory"].create_pending_order(lines, shipping, session_id=payload.get("session_id"))
    return order, shipping, payload


def _checkout_response(order, session):
    return jsonify(
        {
            "order_id": order.id,
            "session_id": session.session_id,
            "url": session.redirect_url,
            "total_amount": order.total_amount,
            "currency": order.currency,
        }
    ), 201


@api_bp.post("/checkout/preview")
def preview_checkout():
    try:
        payload = _json_object()
        lines = parse_cart_lines(payload.get("items", []))
        return jsonify(_components()["order_factory"].preview(lines))
    except ValueError as exc:
        return _error(exc, 400)
    except PromotionCapExceeded as exc:
        return _error(exc, 500)


@api_bp.post("/checkout")
def start_checkout():
    try:
        order, shipping, payload = _create_order()
    except (ValueError, EmptyCart) as exc:
        return _error(exc, 400)
    except PromotionCapExceeded as exc:
        return _error(exc, 500)

    cfg = _config()
    method = str(payload.get("method") or "automatic").strip()
    metadata = (shipping or ShippingInfo()).to_metadata()
    try:
        session = _components()["payment_gateway"].create_session(
            order.id,
            build_line_items(order.items, order.currency, cfg.store_base_url),
            order.shipping_amount,
            metadata,
            currency=order.currency,
            success_url=cfg.get_order_url(order.id),
            cancel_url=cfg.get_cart_url(),
            customer_email=shipping.email if shipping else None,
            method=method,
        )
    except GatewayUnavailable as exc:
        # order stays pending; the shopper can retry checkout
        return _error(exc, 502, order_id=order.id)

    _attach(order.id, session.session_id)
    return _checkout_response(order, session)


@api_bp.post("/checkout/paypal")
def start_paypal_checkout():
    try:
        order, shipping, _payload = _create_order()
    except (ValueError, EmptyCart) as exc:
        return _error(exc, 400)
    except PromotionCapExceeded as exc:
        return _error(exc, 500)

    cfg = _config()
    try:
        session = _components()["paypal_gateway"].create_session(
            order.id,
            order.items,
            order.shipping_amount,
            currency=order.currency,
            return_url=cfg.get_paypal_return_url(order.id),
            cancel_url=cfg.get_cart_url(),
            shipping=shipping,
        )
    except GatewayUnavailable as exc:
        return _error(exc, 502, order_id=order.id)

    # the PayPal order id is what capture and webhooks refer to
    _attach(order.id, session.session_id)
    return _checkout_response(order, session)


@api_bp.post("/checkout/paypal/capture")
def capture_paypal_checkout():
    """Capture an approved PayPal order when the buyer returns to the store."""
    try:
        payload = _json_object()
    except ValueError as exc:
        return _error(exc, 400)
    paypal_order_id = nz(payload.get("paypal_order_id"))
    order_id = nz(payload.get("order_id"))
    if not paypal_order_id or not order_id:
        return _error(_BadRequest("paypal_order_id and order_id are required"), 400)

    try:
        result = _components()["paypal_gateway"].capture(paypal_order_id)
        outcome = _components()["webhook_reconciler"].apply(paypal_capture_event(result, order_id))
    except ValueError as exc:
        return _error(exc, 400, order_id=order_id)
    except GatewayUnavailable as exc:
        return _error(exc, 502, order_id=order_id)
    except PersistenceConflict as exc:
        return _error(exc, 503, order_id=order_id)

    if outcome.outcome == "dropped":
        return _error(OrderNotFound(order_id), 404)
    paid = coerce(outcome.status) in PAID_OR_LATER
    body = {"ok": paid, "order_id": order_id, "status": outcome.status}
    if paid:
        body["redirect_url"] = _config().get_order_url(order_id, provider="paypal")
    return jsonify(body), 200 if paid else 400


@api_bp.get("/orders/<order_id>")
def get_order(order_id: str):
    try:
        order = _components()["order_store"].get(order_id)
    except OrderNotFound as exc:
        return _error(exc, 404)
    return jsonify(to_order_dto(order))
