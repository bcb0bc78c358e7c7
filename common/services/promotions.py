"""Multi-buy promotion and shipping tier pricing.

The engine is pure: the same cart lines always produce the same
``PromotionResult``. Checkout calls it to build the charged order lines and
the cart preview calls it to show totals, and the two must agree to the cent.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Optional, Sequence, Tuple

from .errors import PromotionCapExceeded


NO_PROMOTION = "NONE"


@dataclass(frozen=True)
class CartLine:
    product_id: str
    unit_amount: int
    quantity: int
    display_name: str
    image_ref: Optional[str] = None
    category: Optional[str] = None
    options: Dict[str, str] = field(default_factory=dict)

    @property
    def line_amount(self) -> int:
        return self.unit_amount * max(0, self.quantity)


@dataclass(frozen=True)
class MultiBuy:
    """Every ``group_size`` qualifying units, ``free_units`` of them are free."""

    name: str
    group_size: int
    free_units: int


@dataclass(frozen=True)
class PricedLine:
    source_line_id: int
    pay_quantity: int
    free_quantity: int


@dataclass(frozen=True)
class PromotionResult:
    lines: Tuple[PricedLine, ...]
    shipping_amount: int
    promotion_name: str
    free_items_applied: int

    @property
    def payable_quantity(self) -> int:
        return sum(pl.pay_quantity for pl in self.lines)

    def subtotal_amount(self, cart: Sequence[CartLine]) -> int:
        return sum(cart[pl.source_line_id].line_amount for pl in self.lines)

    def charged_amount(self, cart: Sequence[CartLine]) -> int:
        return sum(cart[pl.source_line_id].unit_amount * pl.pay_quantity for pl in self.lines)

    def discount_amount(self, cart: Sequence[CartLine]) -> int:
        return self.subtotal_amount(cart) - self.charged_amount(cart)

    def total_amount(self, cart: Sequence[CartLine]) -> int:
        return self.charged_amount(cart) + self.shipping_amount


DEFAULT_MULTI_BUYS = (
    MultiBuy(name="BUY_5_PAY_3", group_size=5, free_units=2),
    MultiBuy(name="BUY_3_PAY_2", group_size=3, free_units=1),
    MultiBuy(name="BUY_2_PAY_1", group_size=2, free_units=1),
)


@dataclass(frozen=True)
class PromotionConfig:
    multi_buys: Tuple[MultiBuy, ...] = DEFAULT_MULTI_BUYS
    max_free_items_per_order: int = 2
    shipping_fee_amount: int = 500
    free_shipping_min_quantity: int = 3
    promotion_excluded_categories: FrozenSet[str] = frozenset()
    shipping_excluded_categories: FrozenSet[str] = frozenset()

    @classmethod
    def from_app_config(cls, cfg) -> "PromotionConfig":
        return cls(
            max_free_items_per_order=cfg.max_free_items_per_order,
            shipping_fee_amount=cfg.shipping_fee_amount,
            promotion_excluded_categories=frozenset(cfg.promotion_excluded_categories),
            shipping_excluded_categories=frozenset(cfg.shipping_excluded_categories),
        )


def _in(category: Optional[str], categories: FrozenSet[str]) -> bool:
    return bool(category) and category.lower() in categories


class PromotionEngine:
    def __init__(self, config: Optional[PromotionConfig] = None) -> None:
        self._config = config or PromotionConfig()

    @property
    def config(self) -> PromotionConfig:
        return self._config

    def _free_units_for(self, qualifying: int) -> Tuple[int, str]:
        """Greedy: largest group first, the remainder goes to smaller groups."""
        remaining = qualifying
        free = 0
        name = NO_PROMOTION
        for mb in sorted(self._config.multi_buys, key=lambda m: m.group_size, reverse=True):
            if mb.group_size <= 0 or mb.free_units <= 0:
                continue
            groups = remaining // mb.group_size
            if groups <= 0:
                continue
            free += groups * mb.free_units
            remaining -= groups * mb.group_size
            if name == NO_PROMOTION:
                name = mb.name
        return free, name

    def shipping_for(self, lines: Sequence[CartLine], priced: Sequence[PricedLine]) -> int:
        excluded = self._config.shipping_excluded_categories
        payable = sum(
            pl.pay_quantity for pl in priced if not _in(lines[pl.source_line_id].category, excluded)
        )
        if payable <= 0:
            return 0
        if payable >= self._config.free_shipping_min_quantity:
            return 0
        return self._config.shipping_fee_amount

    def apply(self, lines: Sequence[CartLine]) -> PromotionResult:
        cfg = self._config
        # one entry per qualifying unit: (unit_amount, input index)
        units: List[Tuple[int, int]] = []
        for idx, line in enumerate(lines):
            if line.quantity <= 0 or _in(line.category, cfg.promotion_excluded_categories):
                continue
            units.extend((line.unit_amount, idx) for _ in range(line.quantity))

        free_to_apply, promotion_name = self._free_units_for(len(units))
        free_to_apply = min(free_to_apply, max(0, cfg.max_free_items_per_order))

        # cheapest units go free; sort is stable so equal prices keep input order
        units.sort(key=lambda u: u[0])
        free_by_line: Dict[int, int] = {}
        for _, idx in units[:free_to_apply]:
            free_by_line[idx] = free_by_line.get(idx, 0) + 1

        priced = []
        for idx, line in enumerate(lines):
            qty = max(0, line.quantity)
            free = min(free_by_line.get(idx, 0), qty)
            priced.append(PricedLine(source_line_id=idx, pay_quantity=qty - free, free_quantity=free))

        applied = sum(pl.free_quantity for pl in priced)
        if applied > cfg.max_free_items_per_order:
            raise PromotionCapExceeded(applied, cfg.max_free_items_per_order)

        return PromotionResult(
            lines=tuple(priced),
            shipping_amount=self.shipping_for(lines, priced),
            promotion_name=promotion_name if applied else NO_PROMOTION,
            free_items_applied=applied,
        )
