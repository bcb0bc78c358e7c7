"""Fire-and-forget collaborators: order notifications and realtime metrics.

Both are called after an order mutation has been committed. A failure here
is logged and swallowed; it must never undo or block the status change.
"""

import logging
from typing import Any, Callable, Dict, Optional

import requests

from .logging import log_event


logger = logging.getLogger(__name__)

METRIC_ORDERS_PAID = "orders_paid"
METRIC_COUNTRIES_MAYBE_CHANGED = "shipping_countries_maybe_changed"


def fire_and_forget(call: Callable[..., Any], *args, event: str, **fields) -> bool:
    """Run ``call``; log and return False instead of raising."""
    try:
        call(*args)
        return True
    except Exception as exc:  # noqa: BLE001
        log_event("error", event, error=str(exc), error_type=type(exc).__name__, **fields)
        return False


class LogNotifier:
    """Used when no notification hook is configured."""

    def notify_order_paid(self, order_id: str) -> None:
        log_event("info", "notify.order_paid", order_id=order_id)

    def notify_order_shipped(self, order_id: str, tracking: Optional[Dict[str, Optional[str]]]) -> None:
        log_event("info", "notify.order_shipped", order_id=order_id, tracking=tracking or {})


class HttpNotifier:
    """Posts order events to a mail/notification service hook."""

    def __init__(self, url: str, *, timeout: float = 10.0, session: Optional[requests.Session] = None) -> None:
        self._url = url
        self._timeout = timeout
        self._http = session or requests.Session()

    def _post(self, payload: Dict[str, Any]) -> None:
        response = self._http.post(self._url, json=payload, timeout=self._timeout)
        if response.status_code >= 400:
            logger.warning("notification hook returned %s for %s", response.status_code, payload.get("type"))
        response.raise_for_status()

    def notify_order_paid(self, order_id: str) -> None:
        self._post({"type": "order.paid", "order_id": order_id})

    def notify_order_shipped(self, order_id: str, tracking: Optional[Dict[str, Optional[str]]]) -> None:
        self._post({"type": "order.shipped", "order_id": order_id, "tracking": tracking or {}})


class LogMetricsSink:
    def increment(self, metric: str, value: int = 1) -> None:
        log_event("info", "metrics.increment", metric=metric, value=value)


class HttpMetricsSink:
    """Pushes counter updates to the realtime stats channel."""

    def __init__(self, url: str, *, timeout: float = 5.0, session: Optional[requests.Session] = None) -> None:
        self._url = url
        self._timeout = timeout
        self._http = session or requests.Session()

    def increment(self, metric: str, value: int = 1) -> None:
        response = self._http.post(
            self._url,
            json={"channel": "stats", "event": "metric:update", "metric": metric, "value": value},
            timeout=self._timeout,
        )
        response.raise_for_status()


def build_notifier(url: Optional[str]):
    return HttpNotifier(url) if url else LogNotifier()


def build_metrics_sink(url: Optional[str]):
    return HttpMetricsSink(url) if url else LogMetricsSink()
