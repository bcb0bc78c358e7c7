import json

import pytest

from app import create_app
from common.config import AppConfig
from common.db.session import make_session_factory
from common.services import logging as event_log
from common.services.errors import GatewayUnavailable
from common.services.order_factory import OrderFactory
from common.services.order_store import OrderStateStore
from common.services.payment_gateway import CheckoutSession
from common.services.promotions import CartLine, PromotionConfig, PromotionEngine
from common.services.webhook_reconciler import WebhookReconciler


class RecordingNotifier:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.paid = []
        self.shipped = []

    def notify_order_paid(self, order_id):
        self.paid.append(order_id)
        if self.fail:
            raise RuntimeError("mail service down")

    def notify_order_shipped(self, order_id, tracking):
        self.shipped.append((order_id, tracking))
        if self.fail:
            raise RuntimeError("mail service down")


class RecordingMetrics:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls = []

    def increment(self, metric, value=1):
        self.calls.append((metric, value))
        if self.fail:
            raise RuntimeError("stats channel down")


class FakeGateway:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sessions = []

    def create_session(self, order_id, line_items, shipping_fee_amount, metadata, **kwargs):
        if self.fail:
            raise GatewayUnavailable("Stripe error", order_id=order_id)
        sid = f"cs_test_{len(self.sessions) + 1}"
        self.sessions.append(
            {
                "order_id": order_id,
                "line_items": line_items,
                "shipping_fee_amount": shipping_fee_amount,
                "metadata": metadata,
                **kwargs,
            }
        )
        return CheckoutSession(session_id=sid, redirect_url=f"https://checkout.stripe.test/{sid}")

    def construct_event(self, payload, signature):
        if signature != "valid":
            raise ValueError("Webhook signature verification failed")
        return json.loads(payload)



class FakePayPalGateway:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.orders = []
        self.captures = {}
        self.buyers = {}

    def create_session(self, order_id, items, shipping_amount, **kwargs):
        if self.fail:
            raise GatewayUnavailable("PayPal error", order_id=order_id)
        pid = f"PAYPAL-ORDER-{len(self.orders) + 1}"
        self.orders.append({"order_id": order_id, "items": items, "shipping_amount": shipping_amount, **kwargs})
        return CheckoutSession(session_id=pid, redirect_url=f"https://www.sandbox.paypal.test/checkoutnow?token={pid}")

    def capture(self, paypal_order_id):
        if self.fail:
            raise GatewayUnavailable("PayPal error")
        return self.captures[paypal_order_id]

    def try_order_shipping(self, paypal_order_id):
        return self.buyers.get(paypal_order_id)

    def construct_event(self, payload, headers):
        if self.fail:
            raise GatewayUnavailable("PayPal error")
        if headers.get("PayPal-Transmission-Sig") != "valid":
            raise ValueError("Webhook signature verification failed")
        return json.loads(payload)

@pytest.fixture(autouse=True)
def _event_log_level():
    event_log.configure("debug")
    yield
    event_log.configure("info")


@pytest.fixture
def events(capsys):
    """Structured log lines written so far, as dicts."""

    def read():
        out = capsys.readouterr().out
        return [json.loads(line) for line in out.splitlines() if line.startswith("{")]

    return read


@pytest.fixture
def session_factory():
    factory, engine = make_session_factory("sqlite://")
    yield factory
    engine.dispose()


@pytest.fixture
def store(session_factory):
    return OrderStateStore(session_factory)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def metrics():
    return RecordingMetrics()


@pytest.fixture
def engine():
    return PromotionEngine(PromotionConfig())


@pytest.fixture
def factory(store, engine):
    return OrderFactory(store, engine, currency="EUR")


@pytest.fixture
def reconciler(store, notifier, metrics):
    return WebhookReconciler(store, notifier, metrics)


@pytest.fixture
def pending_order(factory):
    lines = [CartLine(product_id="jersey-home", unit_amount=3500, quantity=1, display_name="Home Jersey")]
    return factory.create_pending_order(lines)


@pytest.fixture
def app_config():
    return AppConfig(
        database_url="sqlite://",
        secret_key="test",
        log_level="ERROR",
        store_base_url="https://shop.test",
        currency="EUR",
        admin_token="admin-secret",
        shipping_fee_amount=500,
        max_free_items_per_order=2,
    )


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def paypal_gateway():
    return FakePayPalGateway()


@pytest.fixture
def app(app_config, session_factory, gateway, paypal_gateway, notifier, metrics):
    app = create_app(
        app_config,
        {
            "session_factory": session_factory,
            "payment_gateway": gateway,
            "paypal_gateway": paypal_gateway,
            "notifier": notifier,
            "metrics": metrics,
        },
    )
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()
