"""Storefront checkout and payment reconciliation Flask application."""

from __future__ import annotations

from typing import Any, Dict, Optional

from flask import Flask, jsonify

from common.config import AppConfig, load_env
from common.db.session import make_session_factory
from common.services import logging as event_log
from common.services.fulfillment import FulfillmentService
from common.services.notifier import build_metrics_sink, build_notifier
from common.services.order_factory import OrderFactory
from common.services.order_store import OrderStateStore
from common.services.payment_gateway import StripeGateway
from common.services.paypal_gateway import PayPalGateway
from common.services.promotions import PromotionConfig, PromotionEngine
from common.services.webhook_reconciler import WebhookReconciler
from routes import admin, api, webhooks


def build_components(config: AppConfig, overrides: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Wire services; ``overrides`` replaces collaborators (tests, alternative providers)."""
    overrides = dict(overrides or {})
    if "session_factory" in overrides:
        session_factory = overrides.pop("session_factory")
    else:
        session_factory, _engine = make_session_factory(config.database_url)

    store = overrides.pop("order_store", None) or OrderStateStore(session_factory)
    notifier = overrides.pop("notifier", None) or build_notifier(config.notify_webhook_url)
    metrics = overrides.pop("metrics", None) or build_metrics_sink(config.metrics_webhook_url)
    gateway = overrides.pop("payment_gateway", None) or StripeGateway(
        config.stripe_secret_key, config.stripe_webhook_secret
    )
    paypal = overrides.pop("paypal_gateway", None) or PayPalGateway(
        config.paypal_client_id,
        config.paypal_client_secret,
        config.paypal_webhook_id,
        environment=config.paypal_env,
    )
    engine = overrides.pop("promotion_engine", None) or PromotionEngine(PromotionConfig.from_app_config(config))

    components = {
        "order_store": store,
        "notifier": notifier,
        "metrics": metrics,
        "payment_gateway": gateway,
        "paypal_gateway": paypal,
        "promotion_engine": engine,
        "order_factory": OrderFactory(store, engine, currency=config.currency),
        "webhook_reconciler": WebhookReconciler(store, notifier, metrics, paypal=paypal),
        "fulfillment": FulfillmentService(store, notifier),
    }
    components.update(overrides)
    return components


def create_app(config: Optional[AppConfig] = None, components: Optional[Dict[str, Any]] = None) -> Flask:
    config = config or load_env()
    event_log.configure(config.log_level)

    app = Flask(__name__)
    app.config["SECRET_KEY"] = config.secret_key
    app.config["STORE_CONFIG"] = config
    app.extensions["storefront_components"] = build_components(config, components)

    app.register_blueprint(api.api_bp)
    app.register_blueprint(webhooks.webhooks_bp)
    app.register_blueprint(admin.admin_bp)

    @app.get("/healthz")
    def healthz():
        return jsonify({"status": "ok"})

    return app


def main() -> None:
    app = create_app()
    app.run(host="0.0.0.0", port=5000, debug=False)


if __name__ == "__main__":
    main()
