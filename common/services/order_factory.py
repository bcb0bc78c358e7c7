from typing import Any, Dict, List, Optional, Sequence
from uuid import uuid4

from ..models.order import Order
from ..models.order_item import OrderItem
from ..utils.validators import ensure_non_empty_str, ensure_positive_int
from .errors import EmptyCart, PromotionCapExceeded
from .logging import log_event
from .promotions import CartLine, PromotionEngine, PromotionResult
from .shipping import ShippingInfo


def parse_cart_lines(payload: Any) -> List[CartLine]:
    """Validate the checkout request's ``items`` array into cart lines."""
    if not isinstance(payload, list):
        raise ValueError("items must be a list")
    lines = []
    for raw in payload:
        if not isinstance(raw, dict):
            raise ValueError("each item must be an object")
        options = raw.get("options") or {}
        if not isinstance(options, dict):
            raise ValueError("options must be an object")
        lines.append(
            CartLine(
                product_id=ensure_non_empty_str(raw.get("product_id"), "product_id"),
                unit_amount=ensure_positive_int(raw.get("unit_amount"), "unit_amount"),
                quantity=ensure_positive_int(raw.get("quantity"), "quantity"),
                display_name=ensure_non_empty_str(raw.get("name") or raw.get("product_id"), "name"),
                image_ref=raw.get("image") or None,
                category=raw.get("category") or None,
                options={str(k): str(v) for k, v in options.items()},
            )
        )
    return lines


class OrderFactory:
    """Turns a priced cart into a persisted pending order."""

    def __init__(self, store, engine: Optional[PromotionEngine] = None, *, currency: str = "EUR"):
        self._store = store
        self._engine = engine or PromotionEngine()
        self._currency = currency

    def price(self, lines: Sequence[CartLine]) -> PromotionResult:
        try:
            return self._engine.apply(lines)
        except PromotionCapExceeded as exc:
            log_event("critical", "promotion.cap_exceeded", applied=exc.applied, cap=exc.cap)
            raise

    def preview(self, lines: Sequence[CartLine]) -> Dict:
        result = self.price(lines)
        return {
            "promotion_name": result.promotion_name,
            "free_items_applied": result.free_items_applied,
            "subtotal_amount": result.subtotal_amount(lines),
            "discount_amount": result.discount_amount(lines),
            "shipping_amount": result.shipping_amount,
            "total_amount": result.total_amount(lines),
            "currency": self._currency,
            "lines": [
                {
                    "product_id": lines[pl.source_line_id].product_id,
                    "pay_quantity": pl.pay_quantity,
                    "free_quantity": pl.free_quantity,
                }
                for pl in result.lines
            ],
        }

    def build_items(self, lines: Sequence[CartLine], result: PromotionResult) -> List[OrderItem]:
        items: List[OrderItem] = []
        for pl in result.lines:
            line = lines[pl.source_line_id]
            snapshot = {"options": dict(line.options)}
            if line.category:
                snapshot["category"] = line.category
            if pl.pay_quantity > 0:
                items.append(
                    OrderItem(
                        id=str(uuid4()),
                        position=len(items),
                        product_id=line.product_id,
                        name=line.display_name,
                        image=line.image_ref,
                        quantity=pl.pay_quantity,
                        unit_amount=line.unit_amount,
                        total_amount=line.unit_amount * pl.pay_quantity,
                        is_free_gift=False,
                        snapshot=snapshot,
                    )
                )
            if pl.free_quantity > 0:
                items.append(
                    OrderItem(
                        id=str(uuid4()),
                        position=len(items),
                        product_id=line.product_id,
                        name=line.display_name,
                        image=line.image_ref,
                        quantity=pl.free_quantity,
                        unit_amount=0,
                        total_amount=0,
                        is_free_gift=True,
                        snapshot=dict(
                            snapshot,
                            original_unit_amount=line.unit_amount,
                            promotion=result.promotion_name,
                        ),
                    )
                )
        return items

    def create_pending_order(
        self,
        lines: Sequence[CartLine],
        shipping: Optional[ShippingInfo] = None,
        *,
        session_id: Optional[str] = None,
        currency: Optional[str] = None,
    ) -> Order:
        if not lines or all(line.quantity <= 0 for line in lines):
            raise EmptyCart()
        result = self.price(lines)
        order = Order(
            id=str(uuid4()),
            session_id=session_id,
            currency=(currency or self._currency).upper(),
            subtotal_amount=result.subtotal_amount(lines),
            shipping_amount=result.shipping_amount,
            total_amount=result.total_amount(lines),
            promotion_name=result.promotion_name,
            shipping_json=shipping.to_dict() if shipping and not shipping.is_empty() else None,
            shipping_country=shipping.country if shipping else None,
            items=self.build_items(lines, result),
        )
        created = self._store.create_pending(order)
        if result.free_items_applied:
            log_event(
                "info",
                "order.promotion_applied",
                order_id=created.id,
                promotion=result.promotion_name,
                free_items=result.free_items_applied,
                discount_amount=result.discount_amount(lines),
            )
        return created
