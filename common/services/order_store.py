from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.orm import selectinload

from ..models.order import Order
from ..utils.pagination import DEFAULT_PAGE_SIZE, normalize_paging, page_offset
from .errors import OrderNotFound, PersistenceConflict
from .logging import log_event
from .order_state import OrderStatus, StatusLike, coerce
from .shipping import ShippingInfo


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


@dataclass(frozen=True)
class OrderChange:
    """Fields to write in one conditional update; None means leave as is."""

    status: Optional[OrderStatus] = None
    shipping: Optional[ShippingInfo] = None
    payment_reference: Optional[str] = None
    checkout_session_id: Optional[str] = None
    tracking_code: Optional[str] = None
    tracking_url: Optional[str] = None
    paid_at: Optional[datetime] = None

    def values(self) -> Dict:
        out: Dict = {}
        if self.status is not None:
            out["status"] = self.status.value
        if self.shipping is not None and not self.shipping.is_empty():
            out["shipping_json"] = self.shipping.to_dict()
            if self.shipping.country:
                out["shipping_country"] = self.shipping.country
        for name in ("payment_reference", "checkout_session_id", "tracking_code", "tracking_url", "paid_at"):
            value = getattr(self, name)
            if value is not None:
                out[name] = value
        return out


class OrderStateStore:
    """Persisted orders and their version-checked mutation API."""

    def __init__(self, session_factory):
        self._session_factory = session_factory

    def find(self, order_id: Optional[str]) -> Optional[Order]:
        if not order_id:
            return None
        with self._session_factory() as session:
            return session.execute(
                select(Order).options(selectinload(Order.items)).where(Order.id == order_id)
            ).scalar_one_or_none()

    def get(self, order_id: Optional[str]) -> Order:
        order = self.find(order_id)
        if order is None:
            raise OrderNotFound(order_id)
        return order

    def create_pending(self, order: Order) -> Order:
        order.status = OrderStatus.PENDING.value
        order.version = 1
        with self._session_factory() as session:
            session.add(order)
            session.flush()
        log_event(
            "info",
            "order.created",
            order_id=order.id,
            items=len(order.items),
            subtotal_amount=order.subtotal_amount,
            total_amount=order.total_amount,
        )
        return self.get(order.id)

    def find_by_checkout_session(self, checkout_session_id: Optional[str]) -> Optional[str]:
        if not checkout_session_id:
            return None
        with self._session_factory() as session:
            return session.execute(
                select(Order.id).where(Order.checkout_session_id == checkout_session_id)
            ).scalars().first()

    def find_by_payment_reference(self, payment_reference: Optional[str]) -> Optional[str]:
        if not payment_reference:
            return None
        with self._session_factory() as session:
            return session.execute(
                select(Order.id).where(Order.payment_reference == payment_reference)
            ).scalars().first()

    def update_status_and_shipping(
        self,
        order_id: str,
        new_status: Optional[StatusLike],
        merged_shipping: Optional[ShippingInfo],
        payment_reference: Optional[str],
        *,
        expected_version: int,
        **extra,
    ) -> int:
        """Write status, shipping and payment reference if nobody else did first.

        Returns the new version. Raises ``PersistenceConflict`` when the row
        moved past ``expected_version`` and ``OrderNotFound`` when it is gone.
        """
        change = OrderChange(
            status=coerce(new_status) if new_status is not None else None,
            shipping=merged_shipping,
            payment_reference=payment_reference,
            **extra,
        )
        return self._apply(order_id, expected_version, change)

    def _apply(self, order_id: str, expected_version: int, change: OrderChange) -> int:
        values = change.values()
        values["version"] = expected_version + 1
        values["updated_at"] = utcnow()
        with self._session_factory() as session:
            result = session.execute(
                update(Order)
                .where(Order.id == order_id, Order.version == expected_version)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                return expected_version + 1
            exists = session.execute(select(Order.id).where(Order.id == order_id)).scalar_one_or_none()
        if exists is None:
            raise OrderNotFound(order_id)
        raise PersistenceConflict(order_id)

    def mutate(
        self,
        order_id: str,
        plan: Callable[[Order], Optional[OrderChange]],
    ) -> Tuple[Order, Optional[OrderChange]]:
        """Read-modify-write with one retry on a version conflict.

        ``plan`` sees the snapshot the write is conditioned on and returns the
        change to apply, or None for nothing to do. Returns that snapshot and
        the change that was committed.
        """
        for attempt in range(2):
            order = self.get(order_id)
            change = plan(order)
            if change is None:
                return order, None
            try:
                self._apply(order_id, order.version, change)
                return order, change
            except PersistenceConflict:
                if attempt:
                    log_event("error", "order.update_conflict", order_id=order_id, attempts=attempt + 1)
                    raise
                log_event("warning", "order.update_retry", order_id=order_id, version=order.version)
        raise PersistenceConflict(order_id)  # pragma: no cover

    def attach_checkout_session(self, order_id: str, checkout_session_id: str) -> None:
        self.mutate(order_id, lambda _o: OrderChange(checkout_session_id=checkout_session_id))

    def list_orders(
        self,
        *,
        status: Optional[str] = None,
        country: Optional[str] = None,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> Tuple[List[Order], int]:
        p, ps = normalize_paging(page, page_size)
        conditions = []
        if status:
            conditions.append(Order.status == coerce(status).value)
        if country:
            conditions.append(Order.shipping_country == country.strip().upper())
        with self._session_factory() as session:
            total = session.execute(select(func.count(Order.id)).where(*conditions)).scalar_one()
            rows = session.execute(
                select(Order)
                .options(selectinload(Order.items))
                .where(*conditions)
                .order_by(Order.created_at.desc(), Order.id)
                .offset(page_offset(p, ps))
                .limit(ps)
            ).scalars().all()
        return list(rows), int(total)
