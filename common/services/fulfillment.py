from typing import Dict, Optional

from ..models.order import Order
from .logging import log_event
from .notifier import fire_and_forget
from .order_state import OrderStatus, advance, coerce
from .order_store import OrderChange, OrderStateStore
from .shipping import nz


class FulfillmentService:
    """Shipping progress set by the back office (paid -> shipped -> delivered)."""

    def __init__(self, store: OrderStateStore, notifier) -> None:
        self._store = store
        self._notifier = notifier

    def update(
        self,
        order_id: str,
        status: str,
        *,
        tracking_code: Optional[str] = None,
        tracking_url: Optional[str] = None,
    ) -> Order:
        target = coerce(status)
        code = nz(tracking_code)
        url = nz(tracking_url)

        def plan(order: Order) -> Optional[OrderChange]:
            current = coerce(order.status)
            new_status = advance(current, target, order_id=order.id)
            status_changed = new_status != current
            code_changed = code is not None and code != order.tracking_code
            url_changed = url is not None and url != order.tracking_url
            if not (status_changed or code_changed or url_changed):
                return None
            return OrderChange(
                status=new_status if status_changed else None,
                tracking_code=code if code_changed else None,
                tracking_url=url if url_changed else None,
            )

        snapshot, change = self._store.mutate(order_id, plan)
        if change is None:
            return snapshot

        log_event(
            "info",
            "order.fulfillment_updated",
            order_id=order_id,
            before=snapshot.status,
            after=(change.status or coerce(snapshot.status)).value,
            tracking_code=code,
        )
        # only the move into shipped notifies; tracking edits and delivery stay quiet
        if change.status == OrderStatus.SHIPPED:
            tracking: Dict[str, Optional[str]] = {
                "status": OrderStatus.SHIPPED.value,
                "tracking_code": code or snapshot.tracking_code,
                "tracking_url": url or snapshot.tracking_url,
            }
            fire_and_forget(
                self._notifier.notify_order_shipped, order_id, tracking, event="notify.failed", order_id=order_id
            )
        return self._store.get(order_id)
