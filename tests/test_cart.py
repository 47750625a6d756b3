"""Tests for the order-building cart."""

import random
from decimal import Decimal

import pytest

from cart import Cart
from catalog import StockProduct, UniqueEquipment
from errors import AlreadyInCartError, InsufficientStockError, InvalidQuantityError


def product(item_id="p1", price="10.50", stock=3, name="Cabo Cat6"):
    return StockProduct(
        id=item_id, name=name, sku=f"SKU-{item_id}", category="network", unit_price=Decimal(price), stock=stock
    )


def equipment(item_id="e1", price="100.00", status="active", name="Switch 48p"):
    return UniqueEquipment(
        id=item_id, name=name, sku=f"SN-{item_id}", category="network", unit_price=Decimal(price), status=status
    )


class TestAddItem:
    def test_new_line_starts_at_requested_quantity(self):
        cart = Cart()
        cart.add_item(product(), 2)
        assert cart.quantity_of("p1") == 2
        assert len(cart) == 1

    def test_repeated_adds_stop_at_available_stock(self):
        cart = Cart()
        item = product(stock=2)
        cart.add_item(item)
        assert cart.quantity_of("p1") == 1
        cart.add_item(item)
        assert cart.quantity_of("p1") == 2

        with pytest.raises(InsufficientStockError) as exc_info:
            cart.add_item(item)

        assert cart.quantity_of("p1") == 2
        assert exc_info.value.available == 2
        assert exc_info.value.remaining == 0

    def test_non_positive_quantity_rejected(self):
        cart = Cart()
        with pytest.raises(InvalidQuantityError):
            cart.add_item(product(), 0)
        assert cart.is_empty()

    def test_equipment_twice_is_already_in_cart(self):
        cart = Cart()
        item = equipment()
        cart.add_item(item)
        with pytest.raises(AlreadyInCartError):
            cart.add_item(item)
        assert cart.quantity_of("e1") == 1

    def test_equipment_quantity_must_be_one(self):
        cart = Cart()
        with pytest.raises(InvalidQuantityError):
            cart.add_item(equipment(), 2)
        assert "e1" not in cart

    def test_inactive_equipment_is_unavailable(self):
        cart = Cart()
        with pytest.raises(InsufficientStockError):
            cart.add_item(equipment(status="maintenance"))

    def test_out_of_stock_product(self):
        cart = Cart()
        with pytest.raises(InsufficientStockError) as exc_info:
            cart.add_item(product(stock=0))
        assert exc_info.value.remaining == 0


class TestUpdateQuantity:
    def test_below_one_removes_line(self):
        cart = Cart()
        cart.add_item(product(), 2)
        cart.update_quantity("p1", 0)
        assert "p1" not in cart

    def test_over_stock_keeps_previous_quantity(self):
        cart = Cart()
        cart.add_item(product(stock=3), 2)
        with pytest.raises(InsufficientStockError):
            cart.update_quantity("p1", 4)
        assert cart.quantity_of("p1") == 2

    def test_within_stock(self):
        cart = Cart()
        cart.add_item(product(stock=3))
        cart.update_quantity("p1", 3)
        assert cart.quantity_of("p1") == 3

    def test_equipment_other_than_one_is_invalid(self):
        cart = Cart()
        cart.add_item(equipment())
        with pytest.raises(InvalidQuantityError):
            cart.update_quantity("e1", 2)
        assert cart.quantity_of("e1") == 1

    def test_equipment_to_zero_removes(self):
        cart = Cart()
        cart.add_item(equipment())
        cart.update_quantity("e1", 0)
        assert cart.is_empty()

    def test_unknown_item_is_ignored(self):
        cart = Cart()
        cart.update_quantity("missing", 5)
        assert cart.is_empty()


def test_remove_absent_item_is_silent():
    cart = Cart()
    cart.remove_item("nope")
    assert cart.is_empty()


def test_remaining_available():
    cart = Cart()
    item = product(stock=5)
    assert cart.remaining_available(item) == 5
    cart.add_item(item, 3)
    assert cart.remaining_available(item) == 2

    unique = equipment()
    assert cart.remaining_available(unique) == 1
    cart.add_item(unique)
    assert cart.remaining_available(unique) == 0


def test_total_sums_line_subtotals():
    cart = Cart()
    cart.add_item(product("a", price="10.50", stock=3), 2)
    cart.add_item(equipment("b", price="100.00"))
    assert cart.total() == Decimal("121.00")


def test_total_independent_of_line_order():
    items = [product("a", "1.25", 9), product("b", "3.10", 9), equipment("c", "7.00")]
    quantities = {"a": 4, "b": 2, "c": 1}

    forward, backward = Cart(), Cart()
    for item in items:
        forward.add_item(item, quantities[item.id])
    for item in reversed(items):
        backward.add_item(item, quantities[item.id])

    assert forward.total() == backward.total() == Decimal("18.20")


def test_empty_cart_total_is_zero():
    assert Cart().total() == Decimal("0")


def test_clear():
    cart = Cart()
    cart.add_item(product(), 1)
    cart.add_item(equipment())
    cart.clear()
    assert cart.is_empty()
    assert len(cart) == 0


def test_random_operations_never_exceed_availability():
    rng = random.Random(1234)
    items = [product("a", stock=4), product("b", stock=1), equipment("c"), equipment("d", status="inactive")]
    cart = Cart()
    for _ in range(500):
        item = rng.choice(items)
        try:
            if rng.random() < 0.5:
                cart.add_item(item, rng.randint(1, 3))
            else:
                cart.update_quantity(item.id, rng.randint(-1, 5))
        except (InsufficientStockError, InvalidQuantityError, AlreadyInCartError):
            pass
        for line in cart:
            assert 1 <= line.quantity <= line.item.available_quantity
            if isinstance(line.item, UniqueEquipment):
                assert line.quantity == 1
