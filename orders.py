"""Order submission and read-side queries."""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as SchemaValidationError
from pymongo.errors import DuplicateKeyError, PyMongoError

from approval import OrderStatus
from cart import Cart
from catalog import CENTS
from database import now_utc, parse_object_id, to_decimal, to_mongo
from errors import OrderCreationPartialFailure, OrderNotFoundError, ValidationError
from schemas import Order as OrderSchema, OrderItem as OrderItemSchema

logger = logging.getLogger(__name__)

# Statuses whose items count as handed out
FULFILLED_STATUSES = (
    OrderStatus.APPROVED.value,
    OrderStatus.SHIPPING.value,
    OrderStatus.COMPLETED.value,
)


class OrderSubmissionService:
    def __init__(self, db):
        self.db = db

    def submit(
        self,
        customer_name: Optional[str],
        cart: Cart,
        customer_email: Optional[str] = None,
        submission_token: Optional[str] = None,
    ) -> str:
        """Persist `cart` as a pending order and return the new order id.

        The caller clears the cart on success. On failure the cart is left
        untouched so the same selection can be resubmitted; passing the same
        `submission_token` again never creates a second order.
        """
        name = (customer_name or "").strip()
        if not name:
            raise ValidationError("name required")
        if cart.is_empty():
            raise ValidationError("cart empty")

        if submission_token:
            existing = self.db["order"].find_one({"submission_token": submission_token})
            if existing:
                logger.info("Submission token %s already used by order %s", submission_token, existing["_id"])
                return str(existing["_id"])

        prices = {line.item_id: line.item.unit_price.quantize(CENTS) for line in cart}
        total = sum((prices[line.item_id] * line.quantity for line in cart), Decimal("0"))
        try:
            order = OrderSchema(
                customer_name=name,
                customer_email=customer_email,
                status=OrderStatus.PENDING_APPROVAL.value,
                total_amount=total,
                submission_token=submission_token,
            )
        except SchemaValidationError as exc:
            raise ValidationError(f"invalid order: {exc.errors()[0]['msg']}") from exc
        doc = order.model_dump()
        if submission_token is None:
            # keep the sparse unique index from seeing a null token
            doc.pop("submission_token")
        stamp = now_utc()
        doc.update(created_at=stamp, updated_at=stamp)

        try:
            order_id = str(self.db["order"].insert_one(to_mongo(doc)).inserted_id)
        except DuplicateKeyError:
            if not submission_token:
                raise
            # lost a race with a concurrent resubmission of the same token
            existing = self.db["order"].find_one({"submission_token": submission_token})
            if existing is None:
                raise
            return str(existing["_id"])

        items = [
            OrderItemSchema(
                order_id=order_id,
                item_id=line.item.id,
                item_kind=line.item.kind,
                name=line.item.name,
                sku=line.item.sku,
                quantity=line.quantity,
                unit_price=prices[line.item_id],
            ).model_dump()
            for line in cart
        ]
        for item in items:
            item.update(created_at=stamp, updated_at=stamp)

        try:
            self.db["orderitem"].insert_many([to_mongo(item) for item in items])
        except PyMongoError as exc:
            logger.error("Inserting items for order %s failed: %s", order_id, exc)
            self._discard(order_id)
            raise OrderCreationPartialFailure(order_id, exc) from exc

        logger.info("Order %s created for %s: %d items, total %s", order_id, name, len(items), total)
        return order_id

    def _discard(self, order_id: str) -> None:
        try:
            self.db["orderitem"].delete_many({"order_id": order_id})
            self.db["order"].delete_one({"_id": parse_object_id(order_id, "order id")})
        except PyMongoError:
            logger.exception("Could not roll back partial order %s", order_id)


@dataclass
class OrderSummary:
    total: int
    pending: int
    items_sold: int


class OrderQueryService:
    def __init__(self, db):
        self.db = db

    def list_orders(self, status: Optional[str] = None, limit: int = 50) -> List[Dict[str, Any]]:
        query: Dict[str, Any] = {}
        if status:
            query["status"] = status
        cursor = self.db["order"].find(query).sort("created_at", -1)
        if limit:
            cursor = cursor.limit(int(limit))
        orders = list(cursor)
        counts = self._item_counts([str(o["_id"]) for o in orders])
        for order in orders:
            order["item_count"] = counts.get(str(order["_id"]), 0)
        return orders

    def get_order(self, order_id: str) -> Dict[str, Any]:
        order = self.db["order"].find_one({"_id": parse_object_id(order_id, "order id")})
        if not order:
            raise OrderNotFoundError(order_id)
        order["items"] = list(self.db["orderitem"].find({"order_id": order_id}).sort("created_at", 1))
        order["item_count"] = sum(int(i["quantity"]) for i in order["items"])
        return order

    def summary(self) -> OrderSummary:
        total = self.db["order"].count_documents({})
        pending = self.db["order"].count_documents({"status": OrderStatus.PENDING_APPROVAL.value})
        fulfilled = [
            str(o["_id"]) for o in self.db["order"].find({"status": {"$in": list(FULFILLED_STATUSES)}}, {"_id": 1})
        ]
        items_sold = sum(self._item_counts(fulfilled).values())
        return OrderSummary(total=total, pending=pending, items_sold=items_sold)

    def _item_counts(self, order_ids: List[str]) -> Dict[str, int]:
        if not order_ids:
            return {}
        counts: Dict[str, int] = {}
        for item in self.db["orderitem"].find({"order_id": {"$in": order_ids}}, {"order_id": 1, "quantity": 1}):
            counts[item["order_id"]] = counts.get(item["order_id"], 0) + int(item["quantity"])
        return counts


def subtotal(item: Dict[str, Any]) -> Decimal:
    return (to_decimal(item.get("unit_price")) * int(item.get("quantity", 0))).quantize(CENTS)
