"""Error taxonomy for checkout and payment reconciliation."""

from typing import Optional


class OrderError(Exception):
    """Base class; ``code`` is what HTTP handlers put in the JSON body."""

    code = "order_error"

    def __init__(self, message: str, *, order_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.order_id = order_id


class EmptyCart(OrderError):
    code = "empty_cart"

    def __init__(self, message: str = "Cart is empty") -> None:
        super().__init__(message)


class OrderNotFound(OrderError):
    code = "order_not_found"

    def __init__(self, order_id: Optional[str]) -> None:
        super().__init__(f"order not found: {order_id}", order_id=order_id)


class PromotionCapExceeded(OrderError):
    code = "promotion_cap_exceeded"

    def __init__(self, applied: int, cap: int) -> None:
        super().__init__(f"free items applied ({applied}) exceed cap ({cap})")
        self.applied = applied
        self.cap = cap


class PersistenceConflict(OrderError):
    code = "persistence_conflict"

    def __init__(self, order_id: str) -> None:
        super().__init__(f"concurrent update on order {order_id}", order_id=order_id)


class GatewayUnavailable(OrderError):
    code = "gateway_unavailable"


class InvalidTransition(OrderError):
    code = "invalid_transition"

    def __init__(self, current: str, target: str, *, order_id: Optional[str] = None) -> None:
        super().__init__(f"cannot move order from {current} to {target}", order_id=order_id)
        self.current = current
        self.target = target
