"""Tests for order submission and order queries."""

from decimal import Decimal

import mongomock
import pytest
from bson.decimal128 import Decimal128
from pymongo.errors import AutoReconnect

from approval import ApprovalStateMachine
from cart import Cart
from database import parse_object_id, to_decimal, to_mongo
from errors import OrderCreationPartialFailure, OrderNotFoundError, ValidationError
from orders import OrderQueryService, OrderSubmissionService


@pytest.fixture
def submission(db):
    return OrderSubmissionService(db)


@pytest.fixture
def queries(db):
    return OrderQueryService(db)


@pytest.fixture
def jane_cart(catalog, make_product, make_equipment):
    cart = Cart()
    cart.add_item(catalog.get_item("product", make_product(name="Memória DDR4", price="10.50", quantity=3)), 2)
    cart.add_item(catalog.get_item("equipment", make_equipment(name="Switch 48p", price="100.00")))
    return cart


def test_submit_creates_pending_order_with_items(db, submission, queries, jane_cart):
    order_id = submission.submit("Jane", jane_cart)

    order = queries.get_order(order_id)
    assert order["status"] == "pending_approval"
    assert order["customer_name"] == "Jane"
    assert to_decimal(order["total_amount"]) == Decimal("121.00") == jane_cart.total()
    assert len(order["items"]) == 2
    assert order["approved_by"] is None
    assert db["order"].count_documents({}) == 1

    by_name = {item["name"]: item for item in order["items"]}
    assert by_name["Memória DDR4"]["quantity"] == 2
    assert by_name["Memória DDR4"]["item_kind"] == "product"
    assert to_decimal(by_name["Memória DDR4"]["unit_price"]) == Decimal("10.50")
    assert by_name["Switch 48p"]["quantity"] == 1
    assert by_name["Switch 48p"]["item_kind"] == "equipment"


def test_submit_does_not_touch_stock(db, submission, jane_cart):
    submission.submit("Jane", jane_cart)
    product = db["product"].find_one({"name": "Memória DDR4"})
    assert product["quantity_available"] == 3
    assert db["equipment"].find_one({"name": "Switch 48p"})["status"] == "active"


def test_empty_cart_rejected(db, submission):
    with pytest.raises(ValidationError, match="cart empty"):
        submission.submit("Jane", Cart())
    assert db["order"].count_documents({}) == 0


@pytest.mark.parametrize("name", ["", "   ", None])
def test_customer_name_required(db, submission, jane_cart, name):
    with pytest.raises(ValidationError, match="name required"):
        submission.submit(name, jane_cart)
    assert db["order"].count_documents({}) == 0


def test_invalid_email_rejected(db, submission, jane_cart):
    with pytest.raises(ValidationError):
        submission.submit("Jane", jane_cart, customer_email="not-an-email")
    assert db["order"].count_documents({}) == 0


def test_blank_email_stored_as_none(submission, queries, jane_cart):
    order_id = submission.submit("Jane", jane_cart, customer_email="")
    assert queries.get_order(order_id)["customer_email"] is None


def test_price_change_does_not_rewrite_history(db, submission, queries, jane_cart):
    order_id = submission.submit("Jane", jane_cart)
    db["product"].update_one({"name": "Memória DDR4"}, {"$set": to_mongo({"price": Decimal("99.99")})})

    order = queries.get_order(order_id)
    item = next(i for i in order["items"] if i["name"] == "Memória DDR4")
    assert to_decimal(item["unit_price"]) == Decimal("10.50")
    assert to_decimal(order["total_amount"]) == Decimal("121.00")


@pytest.mark.parametrize("stored_price, expected_unit", [("0.005", "0.00"), ("1.235", "1.24"), ("7.1", "7.10")])
def test_total_matches_item_snapshots_for_sub_cent_prices(db, catalog, submission, queries, stored_price, expected_unit):
    # written around the schema, as a legacy import might have done
    product_id = str(
        db["product"]
        .insert_one({"name": "Parafuso M3", "sku": "PAR-M3", "category": "other", "price": Decimal128(stored_price), "quantity_available": 10})
        .inserted_id
    )
    cart = Cart()
    cart.add_item(catalog.get_item("product", product_id), 3)

    order = queries.get_order(submission.submit("Jane", cart))

    item = order["items"][0]
    items_sum = sum(to_decimal(i["unit_price"]) * i["quantity"] for i in order["items"])
    assert to_decimal(item["unit_price"]) == Decimal(expected_unit)
    assert to_decimal(order["total_amount"]) == items_sum == cart.total()


def test_same_submission_token_never_duplicates(db, submission, jane_cart):
    first = submission.submit("Jane", jane_cart, submission_token="tok-1")
    second = submission.submit("Jane", jane_cart, submission_token="tok-1")
    assert first == second
    assert db["order"].count_documents({}) == 1
    assert db["orderitem"].count_documents({}) == 2


def test_item_insert_failure_rolls_back(db, submission, jane_cart, monkeypatch):
    original = mongomock.collection.Collection.insert_many

    def failing_insert_many(self, *args, **kwargs):
        if self.name == "orderitem":
            raise AutoReconnect("connection reset")
        return original(self, *args, **kwargs)

    monkeypatch.setattr(mongomock.collection.Collection, "insert_many", failing_insert_many)

    with pytest.raises(OrderCreationPartialFailure):
        submission.submit("Jane", jane_cart)

    assert db["order"].count_documents({}) == 0
    assert db["orderitem"].count_documents({}) == 0
    # selections survive for a retry
    assert len(jane_cart) == 2


def test_get_missing_order(queries):
    with pytest.raises(OrderNotFoundError):
        queries.get_order("65a0c0ffee0000000000beef")


def test_list_orders_with_status_filter(db, identity, admin_id, catalog, make_product, submission, queries):
    pid = make_product(quantity=10)
    ids = []
    for qty in (1, 2, 3):
        cart = Cart()
        cart.add_item(catalog.get_item("product", pid), qty)
        ids.append(submission.submit(f"Requester {qty}", cart))
    ApprovalStateMachine(db, identity).reject(ids[0], admin_id)

    all_orders = queries.list_orders()
    assert len(all_orders) == 3
    assert {o["item_count"] for o in all_orders} == {1, 2, 3}

    pending = queries.list_orders(status="pending_approval")
    assert {str(o["_id"]) for o in pending} == set(ids[1:])
    assert len(queries.list_orders(limit=1)) == 1


def test_summary(db, identity, admin_id, catalog, make_product, submission, queries):
    pid = make_product(quantity=10)
    ids = []
    for qty in (2, 3, 4):
        cart = Cart()
        cart.add_item(catalog.get_item("product", pid), qty)
        ids.append(submission.submit("Jane", cart))
    machine = ApprovalStateMachine(db, identity)
    machine.approve(ids[0], admin_id)
    machine.reject(ids[1], admin_id)

    summary = queries.summary()
    assert summary.total == 3
    assert summary.pending == 1
    assert summary.items_sold == 2
    assert db["order"].find_one({"_id": parse_object_id(ids[2])})["status"] == "pending_approval"
