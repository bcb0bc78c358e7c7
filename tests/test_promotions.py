import random

import pytest

from common.services.errors import PromotionCapExceeded
from common.services.promotions import (
    NO_PROMOTION,
    CartLine,
    MultiBuy,
    PromotionConfig,
    PromotionEngine,
)


def line(pid, amount, qty, category=None):
    return CartLine(product_id=pid, unit_amount=amount, quantity=qty, display_name=pid.title(), category=category)


def random_carts(seed=7, count=60):
    rng = random.Random(seed)
    for _ in range(count):
        yield [
            line(f"p{i}", rng.choice([0, 990, 1500, 2500, 3500]), rng.randint(0, 6))
            for i in range(rng.randint(0, 5))
        ]


class TestConservation:
    @pytest.mark.parametrize("cap", [0, 1, 2, 10])
    def test_pay_plus_free_equals_input_quantity(self, cap):
        engine = PromotionEngine(PromotionConfig(max_free_items_per_order=cap))
        for cart in random_carts():
            result = engine.apply(cart)
            assert len(result.lines) == len(cart)
            for priced in result.lines:
                src = cart[priced.source_line_id]
                assert priced.pay_quantity + priced.free_quantity == src.quantity
            assert result.free_items_applied == sum(pl.free_quantity for pl in result.lines)
            assert result.free_items_applied <= cap
            assert result.shipping_amount in (0, 500)

    def test_repeated_calls_are_identical(self, engine):
        for cart in random_carts(seed=11):
            assert engine.apply(cart) == engine.apply(list(cart))


class TestFreeItemAllocation:
    def test_buy_three_pay_two_end_to_end(self):
        engine = PromotionEngine(
            PromotionConfig(multi_buys=(MultiBuy("BUY_3_PAY_2", 3, 1),), max_free_items_per_order=10)
        )
        cart = [line("A", 1000, 3)]
        result = engine.apply(cart)
        assert result.lines[0].pay_quantity == 2
        assert result.lines[0].free_quantity == 1
        assert result.promotion_name == "BUY_3_PAY_2"
        # two payable units still pay shipping
        assert result.shipping_amount == 500
        assert result.total_amount(cart) == 2000 + 500

    def test_cheapest_unit_goes_free(self, engine):
        cart = [line("jersey", 3000, 2), line("scarf", 1000, 1)]
        result = engine.apply(cart)
        assert [(pl.pay_quantity, pl.free_quantity) for pl in result.lines] == [(2, 0), (0, 1)]
        assert result.discount_amount(cart) == 1000

    def test_equal_prices_allocate_in_input_order(self, engine):
        cart = [line("a", 1000, 1), line("b", 1000, 1), line("c", 1000, 1)]
        result = engine.apply(cart)
        assert [pl.free_quantity for pl in result.lines] == [1, 0, 0]

    def test_duplicate_products_stay_separate_lines(self, engine):
        cart = [line("A", 1000, 2), line("A", 1000, 1)]
        result = engine.apply(cart)
        assert [(pl.source_line_id, pl.pay_quantity, pl.free_quantity) for pl in result.lines] == [
            (0, 1, 1),
            (1, 1, 0),
        ]

    def test_zero_quantity_lines_are_ignored(self, engine):
        cart = [line("gone", 500, 0), line("A", 1000, 3)]
        result = engine.apply(cart)
        assert result.lines[0].pay_quantity == 0 and result.lines[0].free_quantity == 0
        assert result.lines[1].free_quantity == 1

    def test_global_cap_limits_whole_order(self, engine):
        # ten units would earn four free under buy-5-pay-3, the order cap is two
        cart = [line("A", 1000, 5), line("B", 1200, 5)]
        result = engine.apply(cart)
        assert result.free_items_applied == 2
        assert result.promotion_name == "BUY_5_PAY_3"
        assert [pl.free_quantity for pl in result.lines] == [2, 0]
        assert result.payable_quantity == 8

    def test_greedy_uses_largest_group_first(self):
        engine = PromotionEngine(PromotionConfig(max_free_items_per_order=10))
        # 8 units = one group of 5 (2 free) + one group of 3 (1 free)
        result = engine.apply([line("A", 1000, 8)])
        assert result.free_items_applied == 3

    def test_two_units_get_one_free(self, engine):
        result = engine.apply([line("A", 1000, 1), line("B", 800, 1)])
        assert result.promotion_name == "BUY_2_PAY_1"
        assert [pl.free_quantity for pl in result.lines] == [0, 1]
        assert result.shipping_amount == 500

    def test_single_unit_gets_no_promotion(self, engine):
        result = engine.apply([line("A", 1000, 1)])
        assert result.promotion_name == NO_PROMOTION
        assert result.free_items_applied == 0

    @pytest.mark.parametrize("qty, free", [(1, 0), (2, 1), (3, 1), (4, 1), (5, 2), (6, 2), (9, 2)])
    def test_default_tiers_by_cart_size(self, engine, qty, free):
        assert engine.apply([line("A", 1000, qty)]).free_items_applied == free

    def test_excluded_category_never_qualifies(self):
        engine = PromotionEngine(PromotionConfig(promotion_excluded_categories=frozenset({"socks"})))
        cart = [line("jersey", 3000, 1), line("socks", 500, 3, category="Socks")]
        result = engine.apply(cart)
        assert result.free_items_applied == 0

    def test_negative_cap_is_reported_as_invariant_violation(self):
        engine = PromotionEngine(PromotionConfig(max_free_items_per_order=-1))
        with pytest.raises(PromotionCapExceeded):
            engine.apply([line("A", 1000, 1)])


class TestShippingTiers:
    def test_two_payable_units_pay_fixed_fee(self):
        engine = PromotionEngine(PromotionConfig(multi_buys=()))
        assert engine.apply([line("A", 1000, 2)]).shipping_amount == 500

    def test_three_payable_units_ship_free(self):
        engine = PromotionEngine(PromotionConfig(multi_buys=()))
        assert engine.apply([line("A", 1000, 3)]).shipping_amount == 0

    def test_three_payable_after_free_unit_ship_free(self, engine):
        result = engine.apply([line("A", 1000, 4)])
        assert result.payable_quantity == 3
        assert result.shipping_amount == 0

    def test_free_gifts_do_not_earn_free_shipping(self):
        engine = PromotionEngine(
            PromotionConfig(multi_buys=(MultiBuy("BUY_1_GET_2", 3, 2),), max_free_items_per_order=10)
        )
        result = engine.apply([line("A", 1000, 3)])
        assert (result.lines[0].pay_quantity, result.lines[0].free_quantity) == (1, 2)
        assert result.shipping_amount == 500

    def test_empty_cart_has_no_shipping(self, engine):
        result = engine.apply([])
        assert result.shipping_amount == 0
        assert result.lines == ()

    def test_shipping_excluded_category_does_not_count(self):
        cart = [line("jersey", 3000, 2), line("socks", 500, 1, category="socks")]
        plain = PromotionEngine(PromotionConfig(multi_buys=()))
        excluding = PromotionEngine(
            PromotionConfig(multi_buys=(), shipping_excluded_categories=frozenset({"socks"}))
        )
        assert plain.apply(cart).shipping_amount == 0
        assert excluding.apply(cart).shipping_amount == 500

    def test_fee_comes_from_config(self):
        engine = PromotionEngine(PromotionConfig(shipping_fee_amount=799))
        assert engine.apply([line("A", 1000, 1)]).shipping_amount == 799
