"""Order status state machine."""

from __future__ import annotations

from enum import Enum
from typing import Dict, FrozenSet, Tuple, Union

from .errors import InvalidTransition


class OrderStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    CANCELED = "canceled"
    SHIPPED = "shipped"
    DELIVERED = "delivered"


TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PAID, OrderStatus.FAILED, OrderStatus.CANCELED}),
    OrderStatus.PAID: frozenset({OrderStatus.SHIPPED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.FAILED: frozenset(),
    OrderStatus.CANCELED: frozenset(),
}

PAID_OR_LATER = frozenset({OrderStatus.PAID, OrderStatus.SHIPPED, OrderStatus.DELIVERED})
TERMINAL = frozenset(s for s, targets in TRANSITIONS.items() if not targets)


StatusLike = Union[OrderStatus, str]


def coerce(status: StatusLike) -> OrderStatus:
    return status if isinstance(status, OrderStatus) else OrderStatus(str(status).lower())


def can_transition(current: StatusLike, target: StatusLike) -> bool:
    return coerce(target) in TRANSITIONS[coerce(current)]


def resolve_status(current: StatusLike, reported: StatusLike) -> Tuple[OrderStatus, bool]:
    """Status after a provider report, and whether it changed.

    Reports that are not a legal move from ``current`` are stale or
    duplicated deliveries and leave the status untouched: a "still pending"
    report never downgrades a paid order.
    """
    cur = coerce(current)
    rep = coerce(reported)
    if rep in TRANSITIONS[cur]:
        return rep, True
    return cur, False


def is_first_transition_to_paid(before: StatusLike, after: StatusLike) -> bool:
    return coerce(before) not in PAID_OR_LATER and coerce(after) == OrderStatus.PAID


def advance(current: StatusLike, target: StatusLike, *, order_id=None) -> OrderStatus:
    """Strict transition used by fulfillment; same-status is a no-op."""
    cur = coerce(current)
    tgt = coerce(target)
    if cur == tgt:
        return cur
    if tgt not in TRANSITIONS[cur]:
        raise InvalidTransition(cur.value, tgt.value, order_id=order_id)
    return tgt
