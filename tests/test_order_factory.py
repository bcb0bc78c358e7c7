import pytest

from common.models.order import Order
from common.services.errors import EmptyCart
from common.services.order_factory import OrderFactory, parse_cart_lines
from common.services.promotions import CartLine
from common.services.shipping import Address, ShippingInfo


def cart():
    return [
        CartLine(product_id="jersey-home", unit_amount=3500, quantity=2, display_name="Home Jersey",
                 options={"size": "M"}),
        CartLine(product_id="scarf", unit_amount=1500, quantity=1, display_name="Club Scarf", category="accessories"),
    ]


class TestCreatePendingOrder:
    def test_amounts_and_items(self, factory):
        order = factory.create_pending_order(cart())
        assert order.status == "pending"
        assert order.version == 1
        assert order.currency == "EUR"
        assert order.subtotal_amount == 8500
        # scarf is the cheapest unit and goes free; two payable units pay shipping
        assert order.shipping_amount == 500
        assert order.total_amount == 7000 + 500
        assert order.discount_amount == 1500
        assert order.promotion_name == "BUY_3_PAY_2"

        paid = [it for it in order.items if not it.is_free_gift]
        free = [it for it in order.items if it.is_free_gift]
        assert [(it.product_id, it.quantity, it.unit_amount, it.total_amount) for it in paid] == [
            ("jersey-home", 2, 3500, 7000)
        ]
        assert [(it.product_id, it.quantity, it.unit_amount) for it in free] == [("scarf", 1, 0)]
        assert free[0].snapshot["original_unit_amount"] == 1500
        assert free[0].snapshot["promotion"] == "BUY_3_PAY_2"
        assert paid[0].snapshot["options"] == {"size": "M"}

    def test_items_keep_cart_order(self, factory):
        order = factory.create_pending_order(cart())
        assert [it.position for it in order.items] == list(range(len(order.items)))

    def test_shipping_snapshot_is_stored(self, factory):
        shipping = ShippingInfo(name="Ana", address=Address(city="Lisbon", country="pt"))
        order = factory.create_pending_order(cart(), shipping, session_id="sess-1")
        assert order.shipping_json["address"]["city"] == "Lisbon"
        assert order.shipping_country == "PT"
        assert order.session_id == "sess-1"

    def test_currency_override(self, factory):
        order = factory.create_pending_order(cart(), currency="usd")
        assert order.currency == "USD"

    @pytest.mark.parametrize(
        "lines",
        [[], [CartLine(product_id="x", unit_amount=1000, quantity=0, display_name="X")]],
    )
    def test_empty_cart_persists_nothing(self, factory, session_factory, lines):
        with pytest.raises(EmptyCart):
            factory.create_pending_order(lines)
        with session_factory() as session:
            assert session.query(Order).count() == 0

    def test_preview_matches_created_order(self, factory):
        preview = factory.preview(cart())
        order = factory.create_pending_order(cart())
        assert preview["subtotal_amount"] == order.subtotal_amount
        assert preview["shipping_amount"] == order.shipping_amount
        assert preview["total_amount"] == order.total_amount
        assert preview["discount_amount"] == order.discount_amount
        assert preview["promotion_name"] == order.promotion_name
        assert preview["lines"][1] == {"product_id": "scarf", "pay_quantity": 0, "free_quantity": 1}

    def test_default_engine(self, store):
        order = OrderFactory(store).create_pending_order(cart())
        assert order.total_amount == 7500


class TestParseCartLines:
    def test_valid_items(self):
        lines = parse_cart_lines(
            [
                {"product_id": "jersey-home", "unit_amount": 3500, "quantity": "2", "name": "Home Jersey",
                 "options": {"size": "L"}},
                {"product_id": "scarf", "unit_amount": 1500, "quantity": 1, "category": "accessories"},
            ]
        )
        assert lines[0].quantity == 2
        assert lines[0].options == {"size": "L"}
        assert lines[1].display_name == "scarf"
        assert lines[1].category == "accessories"

    @pytest.mark.parametrize(
        "payload",
        [
            None,
            {"product_id": "x"},
            ["x"],
            [{"unit_amount": 100, "quantity": 1}],
            [{"product_id": "x", "unit_amount": -1, "quantity": 1}],
            [{"product_id": "x", "unit_amount": 100, "quantity": 1.5}],
            [{"product_id": "x", "unit_amount": 100, "quantity": True}],
            [{"product_id": "x", "unit_amount": "abc", "quantity": 1}],
            [{"product_id": "x", "unit_amount": 100, "quantity": 1, "options": ["red"]}],
        ],
    )
    def test_rejects_bad_input(self, payload):
        with pytest.raises(ValueError):
            parse_cart_lines(payload)
