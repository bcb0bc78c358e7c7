"""Reconciles payment-provider webhook events into order state.

Deliveries are at-least-once and unordered: the same event may arrive twice,
and a "still processing" report may land after the payment already
succeeded. Reconciling is therefore written as a pure plan over the stored
order (``_plan``) applied through a version-checked update, so a replay is
a no-op and only the delivery whose write actually moved the order into
``paid`` fires the one-time side effects.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple

from ..models.order import Order
from .errors import OrderNotFound
from .logging import log_event
from .notifier import METRIC_COUNTRIES_MAYBE_CHANGED, METRIC_ORDERS_PAID, fire_and_forget
from .order_state import (
    OrderStatus,
    coerce,
    is_first_transition_to_paid,
    resolve_status,
)
from .order_store import OrderChange, OrderStateStore, utcnow
from .shipping import (
    ShippingInfo,
    get_field,
    merge_shipping,
    nz,
    shipping_from_metadata,
    shipping_from_payment_intent,
    shipping_from_paypal_order,
    shipping_from_session,
)


ABANDONED = frozenset({OrderStatus.FAILED, OrderStatus.CANCELED})


class EventKind(str, Enum):
    SESSION_COMPLETED = "sessionCompleted"
    PAYMENT_SUCCEEDED = "paymentSucceeded"
    PAYMENT_PENDING = "paymentPending"
    PAYMENT_FAILED = "paymentFailed"
    PAYMENT_CANCELED = "paymentCanceled"


@dataclass(frozen=True)
class ProviderEvent:
    """A provider webhook reduced to what reconciliation needs."""

    event_id: Optional[str]
    event_type: str
    kind: EventKind
    reported_status: OrderStatus
    order_id: Optional[str] = None
    checkout_session_id: Optional[str] = None
    payment_reference: Optional[str] = None
    shipping: Optional[ShippingInfo] = None
    amount: Optional[int] = None
    currency: Optional[str] = None

    def with_shipping(self, extra: Optional[ShippingInfo]) -> "ProviderEvent":
        return replace(self, shipping=merge_shipping(self.shipping, extra))


@dataclass(frozen=True)
class ReconcileResult:
    transitioned: bool
    order_id: Optional[str] = None
    status: Optional[str] = None
    outcome: str = "applied"  # applied | unchanged | ignored | dropped


def _object_id(value: Any) -> Optional[str]:
    """Provider references come either as an id string or an expanded object."""
    if value is None:
        return None
    if isinstance(value, str):
        return nz(value)
    return nz(get_field(value, "id"))


def _metadata_order_id(obj: Any) -> Optional[str]:
    return nz(get_field(get_field(obj, "metadata"), "orderId"))


def _amount(value: Any) -> Optional[int]:
    return value if isinstance(value, int) and not isinstance(value, bool) else None


def _from_session(event_id, event_type, session, kind, reported) -> ProviderEvent:
    intent = get_field(session, "payment_intent")
    expanded_intent = intent if intent is not None and not isinstance(intent, str) else None
    order_id = _metadata_order_id(session) or _metadata_order_id(expanded_intent)
    shipping = merge_shipping(shipping_from_metadata(get_field(session, "metadata")), shipping_from_session(session))
    if expanded_intent is not None:
        shipping = merge_shipping(shipping, shipping_from_payment_intent(expanded_intent))
    return ProviderEvent(
        event_id=event_id,
        event_type=event_type,
        kind=kind,
        reported_status=reported,
        order_id=order_id,
        checkout_session_id=nz(get_field(session, "id")),
        payment_reference=_object_id(intent),
        shipping=shipping,
        amount=_amount(get_field(session, "amount_total")),
        currency=nz(get_field(session, "currency")),
    )


def _from_payment_intent(event_id, event_type, intent, kind, reported) -> ProviderEvent:
    return ProviderEvent(
        event_id=event_id,
        event_type=event_type,
        kind=kind,
        reported_status=reported,
        order_id=_metadata_order_id(intent),
        payment_reference=nz(get_field(intent, "id")),
        shipping=shipping_from_payment_intent(intent),
        amount=_amount(get_field(intent, "amount_received")),
        currency=nz(get_field(intent, "currency")),
    )


def _session_completed(event_id, event_type, session) -> ProviderEvent:
    paid = get_field(session, "payment_status") in ("paid", "no_payment_required")
    reported = OrderStatus.PAID if paid else OrderStatus.PENDING
    return _from_session(event_id, event_type, session, EventKind.SESSION_COMPLETED, reported)


def _charge_succeeded(event_id, event_type, charge) -> Optional[ProviderEvent]:
    if not get_field(charge, "paid"):
        return None
    amount = _amount(get_field(charge, "amount_captured"))
    if amount is None:
        amount = _amount(get_field(charge, "amount"))
    return ProviderEvent(
        event_id=event_id,
        event_type=event_type,
        kind=EventKind.PAYMENT_SUCCEEDED,
        reported_status=OrderStatus.PAID,
        order_id=_metadata_order_id(charge),
        payment_reference=_object_id(get_field(charge, "payment_intent")),
        amount=amount,
        currency=nz(get_field(charge, "currency")),
    )


def _session_handler(kind: EventKind, reported: OrderStatus):
    return lambda eid, etype, obj: _from_session(eid, etype, obj, kind, reported)


def _intent_handler(kind: EventKind, reported: OrderStatus):
    return lambda eid, etype, obj: _from_payment_intent(eid, etype, obj, kind, reported)


EVENT_HANDLERS: Dict[str, Callable[[Any, str, Any], Optional[ProviderEvent]]] = {
    "checkout.session.completed": _session_completed,
    "checkout.session.async_payment_succeeded": _session_handler(EventKind.PAYMENT_SUCCEEDED, OrderStatus.PAID),
    "checkout.session.async_payment_failed": _session_handler(EventKind.PAYMENT_FAILED, OrderStatus.FAILED),
    "checkout.session.expired": _session_handler(EventKind.PAYMENT_CANCELED, OrderStatus.CANCELED),
    "payment_intent.succeeded": _intent_handler(EventKind.PAYMENT_SUCCEEDED, OrderStatus.PAID),
    "payment_intent.processing": _intent_handler(EventKind.PAYMENT_PENDING, OrderStatus.PENDING),
    "payment_intent.payment_failed": _intent_handler(EventKind.PAYMENT_FAILED, OrderStatus.FAILED),
    "payment_intent.canceled": _intent_handler(EventKind.PAYMENT_CANCELED, OrderStatus.CANCELED),
    "charge.succeeded": _charge_succeeded,
}


def normalize_event(event: Any) -> Optional[ProviderEvent]:
    """Map a Stripe event (``stripe.Event`` or its JSON dict) to a ProviderEvent.

    Returns None for event types reconciliation does not care about.
    """
    event_type = nz(get_field(event, "type")) or ""
    handler = EVENT_HANDLERS.get(event_type)
    if handler is None:
        return None
    obj = get_field(get_field(event, "data"), "object")
    if obj is None:
        return None
    return handler(nz(get_field(event, "id")), event_type, obj)


def paypal_amount(value: Any) -> Optional[int]:
    """PayPal money string ("40.00") in minor units."""
    s = nz(value)
    if s is None:
        return None
    try:
        return int((Decimal(s) * 100).to_integral_value())
    except InvalidOperation:
        return None


def _paypal_order_id(capture: Any) -> Optional[str]:
    related = get_field(get_field(capture, "supplementary_data"), "related_ids")
    order_id = nz(get_field(related, "order_id"))
    if order_id:
        return order_id
    for link in get_field(capture, "links") or []:
        href = nz(get_field(link, "href"))
        if get_field(link, "rel") == "up" and href:
            return href.rstrip("/").rsplit("/", 1)[-1]
    return None


PAYPAL_CAPTURE_STATUS: Dict[str, Tuple[EventKind, OrderStatus]] = {
    "COMPLETED": (EventKind.PAYMENT_SUCCEEDED, OrderStatus.PAID),
    "PENDING": (EventKind.PAYMENT_PENDING, OrderStatus.PENDING),
    "DENIED": (EventKind.PAYMENT_FAILED, OrderStatus.FAILED),
    "DECLINED": (EventKind.PAYMENT_FAILED, OrderStatus.FAILED),
    "FAILED": (EventKind.PAYMENT_FAILED, OrderStatus.FAILED),
}

PAYPAL_EVENT_TYPES = {
    "PAYMENT.CAPTURE.COMPLETED": "COMPLETED",
    "PAYMENT.CAPTURE.PENDING": "PENDING",
    "PAYMENT.CAPTURE.DENIED": "DENIED",
}


def normalize_paypal_event(event: Any) -> Optional[ProviderEvent]:
    """Map a verified PayPal webhook to a ProviderEvent.

    Only capture events are reconciled, with the capture as ``resource``.
    Refunds, reversals and order approvals return None.
    """
    event_type = (nz(get_field(event, "event_type")) or "").upper()
    if event_type.startswith("PAYMENTS."):
        event_type = "PAYMENT." + event_type[len("PAYMENTS."):]
    capture_status = PAYPAL_EVENT_TYPES.get(event_type)
    capture = get_field(event, "resource")
    if capture_status is None or capture is None:
        return None
    kind, reported = PAYPAL_CAPTURE_STATUS[capture_status]
    amount = get_field(capture, "amount")
    return ProviderEvent(
        event_id=nz(get_field(event, "id")),
        event_type=event_type,
        kind=kind,
        reported_status=reported,
        order_id=nz(get_field(capture, "custom_id")),
        checkout_session_id=_paypal_order_id(capture),
        payment_reference=nz(get_field(capture, "id")),
        amount=paypal_amount(get_field(amount, "value")),
        currency=nz(get_field(amount, "currency_code")),
    )


def paypal_capture_event(result: Any, order_id: str) -> ProviderEvent:
    """ProviderEvent for the response of capturing an approved PayPal order.

    Raises ValueError when the PayPal order was created for another order.
    """
    units = get_field(result, "purchase_units") or []
    unit = units[0] if units else None
    captures = get_field(get_field(unit, "payments"), "captures") or []
    capture = captures[0] if captures else None
    owner = nz(get_field(capture, "custom_id")) or nz(get_field(unit, "custom_id"))
    if owner and owner != order_id:
        raise ValueError("PayPal order belongs to another order")
    status = (nz(get_field(capture, "status")) or nz(get_field(result, "status")) or "").upper()
    kind, reported = PAYPAL_CAPTURE_STATUS.get(status, (EventKind.PAYMENT_FAILED, OrderStatus.FAILED))
    amount = get_field(capture, "amount")
    return ProviderEvent(
        event_id=None,
        event_type="paypal.capture",
        kind=kind,
        reported_status=reported,
        order_id=order_id,
        checkout_session_id=nz(get_field(result, "id")),
        payment_reference=nz(get_field(capture, "id")),
        shipping=shipping_from_paypal_order(result),
        amount=paypal_amount(get_field(amount, "value")),
        currency=nz(get_field(amount, "currency_code")),
    )


class WebhookReconciler:
    def __init__(self, store: OrderStateStore, notifier, metrics, *, paypal=None) -> None:
        self._store = store
        self._notifier = notifier
        self._metrics = metrics
        self._paypal = paypal

    def _resolve_order_id(self, pe: ProviderEvent) -> Optional[str]:
        if pe.order_id:
            return pe.order_id
        return self._store.find_by_checkout_session(pe.checkout_session_id) or self._store.find_by_payment_reference(
            pe.payment_reference
        )

    def _plan(self, order: Order, pe: ProviderEvent) -> Optional[OrderChange]:
        current = coerce(order.status)
        new_status, status_changed = resolve_status(current, pe.reported_status)
        if not status_changed and pe.reported_status != current:
            # paid report on a failed or canceled order means money moved; needs a human
            money_stranded = pe.reported_status == OrderStatus.PAID and current in ABANDONED
            level = "error" if money_stranded else "info"
            log_event(
                level,
                "order.status_report_ignored",
                order_id=order.id,
                current=current.value,
                reported=pe.reported_status.value,
                event_type=pe.event_type,
            )

        existing = ShippingInfo.from_dict(order.shipping_json)
        merged = merge_shipping(existing, pe.shipping)
        shipping_changed = merged is not None and merged != existing

        payment_reference = pe.payment_reference if pe.payment_reference and not order.payment_reference else None
        checkout_session_id = (
            pe.checkout_session_id if pe.checkout_session_id and not order.checkout_session_id else None
        )

        if not (status_changed or shipping_changed or payment_reference or checkout_session_id):
            return None

        paid_at = None
        if status_changed and new_status == OrderStatus.PAID:
            paid_at = utcnow()
            if pe.amount is not None and pe.amount != order.total_amount:
                log_event(
                    "warning",
                    "order.amount_mismatch",
                    order_id=order.id,
                    expected=order.total_amount,
                    received=pe.amount,
                    currency=pe.currency,
                )
        return OrderChange(
            status=new_status if status_changed else None,
            shipping=merged if shipping_changed else None,
            payment_reference=payment_reference,
            checkout_session_id=checkout_session_id,
            paid_at=paid_at,
        )

    def reconcile(self, event: Any) -> ReconcileResult:
        """Apply one Stripe event; safe to call again with the same event."""
        pe = normalize_event(event)
        if pe is None:
            log_event("debug", "webhook.ignored", event_type=nz(get_field(event, "type")))
            return ReconcileResult(transitioned=False, outcome="ignored")
        return self.apply(pe)

    def reconcile_paypal(self, event: Any) -> ReconcileResult:
        """Apply one verified PayPal webhook.

        Capture events carry no buyer details, so a completed capture is
        enriched with the PayPal order's shipping block when it can be fetched.
        """
        pe = normalize_paypal_event(event)
        if pe is None:
            log_event("debug", "webhook.ignored", provider="paypal", event_type=nz(get_field(event, "event_type")))
            return ReconcileResult(transitioned=False, outcome="ignored")
        if pe.reported_status == OrderStatus.PAID and pe.checkout_session_id and self._paypal is not None:
            pe = pe.with_shipping(self._paypal.try_order_shipping(pe.checkout_session_id))
        return self.apply(pe)

    def apply(self, pe: ProviderEvent) -> ReconcileResult:
        """Apply a normalized provider event; replays are no-ops."""
        order_id = self._resolve_order_id(pe)
        try:
            if not order_id:
                raise OrderNotFound(None)
            snapshot, change = self._store.mutate(order_id, lambda o: self._plan(o, pe))
        except OrderNotFound:
            log_event(
                "warning",
                "webhook.dropped",
                reason="order_not_found",
                order_id=order_id,
                event_id=pe.event_id,
                event_type=pe.event_type,
                checkout_session_id=pe.checkout_session_id,
                payment_reference=pe.payment_reference,
            )
            return ReconcileResult(transitioned=False, order_id=order_id, outcome="dropped")

        before = coerce(snapshot.status)
        after = change.status if change is not None and change.status is not None else before
        transitioned = change is not None and is_first_transition_to_paid(before, after)

        log_event(
            "info",
            "webhook.reconciled",
            order_id=order_id,
            event_id=pe.event_id,
            event_type=pe.event_type,
            before=before.value,
            after=after.value,
            changed=change is not None,
            transitioned=transitioned,
        )
        if transitioned:
            self._on_first_paid(order_id)
        return ReconcileResult(
            transitioned=transitioned,
            order_id=order_id,
            status=after.value,
            outcome="applied" if change is not None else "unchanged",
        )

    def _on_first_paid(self, order_id: str) -> None:
        fire_and_forget(self._notifier.notify_order_paid, order_id, event="notify.failed", order_id=order_id)
        for metric in (METRIC_ORDERS_PAID, METRIC_COUNTRIES_MAYBE_CHANGED):
            fire_and_forget(self._metrics.increment, metric, event="metrics.failed", order_id=order_id, metric=metric)
