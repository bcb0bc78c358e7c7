"""Payment provider webhook endpoints."""

from __future__ import annotations

from typing import Callable

from flask import Blueprint, current_app, jsonify, request

from common.services.errors import GatewayUnavailable, PersistenceConflict
from common.services.logging import log_event
from common.services.webhook_reconciler import ReconcileResult


webhooks_bp = Blueprint("storefront_webhooks", __name__, url_prefix="/api/webhooks")


def _components():
    return current_app.extensions["storefront_components"]


def _reconciled(provider: str, reconcile: Callable[[], ReconcileResult]):
    try:
        result = reconcile()
    except PersistenceConflict as exc:
        # transient; a non-2xx makes the provider redeliver later
        log_event("error", "webhook.conflict", provider=provider, order_id=exc.order_id)
        return jsonify({"error": "conflict, retry later"}), 503
    except Exception as exc:  # noqa: BLE001
        # acknowledged so the provider stops redelivering; details are in the log
        log_event("error", "webhook.failed", provider=provider, error=str(exc), error_type=type(exc).__name__)
        return jsonify({"received": True}), 200

    return jsonify({"received": True, "outcome": result.outcome, "transitioned": result.transitioned})


@webhooks_bp.post("/stripe")
def stripe_webhook():
    components = _components()
    # signature is computed over the raw body
    payload = request.get_data()
    try:
        event = components["payment_gateway"].construct_event(payload, request.headers.get("Stripe-Signature"))
    except ValueError as exc:
        log_event("warning", "webhook.rejected", provider="stripe", error=str(exc))
        return jsonify({"error": f"Webhook Error: {exc}"}), 400

    return _reconciled("stripe", lambda: components["webhook_reconciler"].reconcile(event))


@webhooks_bp.post("/paypal")
def paypal_webhook():
    components = _components()
    payload = request.get_data()
    try:
        event = components["paypal_gateway"].construct_event(payload, request.headers)
    except ValueError as exc:
        log_event("warning", "webhook.rejected", provider="paypal", error=str(exc))
        return jsonify({"error": f"Webhook Error: {exc}"}), 400
    except GatewayUnavailable as exc:
        # could not ask PayPal to verify; let it redeliver
        log_event("error", "webhook.verify_unavailable", provider="paypal", error=str(exc))
        return jsonify({"error": "verification unavailable, retry later"}), 503

    return _reconciled("paypal", lambda: components["webhook_reconciler"].reconcile_paypal(event))
