"""Order status state machine and the inventory effects of approval.

Every transition is a compare-and-set on the order's current status, so two
admins acting on the same order cannot both succeed. Approval commits stock:
each product's `quantity_available` is decremented with a conditional update
that only matches while enough units remain, and each unique equipment item is
claimed by flipping its status from active to assigned. If any item cannot be
claimed, the effects already applied are undone and the order stays pending.
"""

import logging
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional

from pymongo.errors import PyMongoError

from catalog import EQUIPMENT, PRODUCT
from database import now_utc, parse_object_id
from errors import (
    AuthenticationRequiredError,
    InvalidTransitionError,
    InventoryError,
    OrderNotFoundError,
    PermissionDeniedError,
    StockRaceError,
)
from identity import IdentityService

logger = logging.getLogger(__name__)


class OrderStatus(str, Enum):
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    REJECTED = "rejected"
    SHIPPING = "shipping"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return not TRANSITIONS.get(self)


TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING_APPROVAL: frozenset(
        {OrderStatus.APPROVED, OrderStatus.REJECTED, OrderStatus.CANCELLED}
    ),
    OrderStatus.APPROVED: frozenset({OrderStatus.SHIPPING}),
    OrderStatus.SHIPPING: frozenset({OrderStatus.COMPLETED}),
}

STATUS_LABELS: Dict[OrderStatus, str] = {
    OrderStatus.PENDING_APPROVAL: "Aguardando Aprovação",
    OrderStatus.APPROVED: "Aprovado",
    OrderStatus.REJECTED: "Rejeitado",
    OrderStatus.SHIPPING: "Enviando",
    OrderStatus.COMPLETED: "Concluído",
    OrderStatus.CANCELLED: "Cancelado",
}


def can_transition(current: str, target: str) -> bool:
    try:
        current_status = OrderStatus(current)
        target_status = OrderStatus(target)
    except ValueError:
        return False
    return target_status in TRANSITIONS.get(current_status, frozenset())


class ApprovalStateMachine:
    def __init__(self, db, identity: IdentityService):
        self.db = db
        self.identity = identity

    def approve(self, order_id: str, acting_user_id: Optional[str]) -> Dict[str, Any]:
        self._require_admin(acting_user_id, "approve")
        order = self._load(order_id)
        self._check(order, OrderStatus.APPROVED)

        items = list(self.db["orderitem"].find({"order_id": order_id}))
        if not items:
            # left behind by a submission whose rollback failed
            logger.warning("Order %s has no items and cannot be approved", order_id)
            raise InvalidTransitionError(order_id, order["status"], OrderStatus.APPROVED.value, "order has no items")
        applied: List[Dict[str, Any]] = []
        try:
            for item in items:
                self._commit_stock(order_id, item)
                applied.append(item)
            now = now_utc()
            updated = self._compare_and_set(
                order,
                OrderStatus.APPROVED,
                {"approved_by": acting_user_id, "approved_at": now, "updated_at": now},
            )
        except (InventoryError, PyMongoError):
            self._release_stock(order_id, applied)
            raise
        logger.info("Order %s approved by %s (%d items committed)", order_id, acting_user_id, len(applied))
        return updated

    def reject(self, order_id: str, acting_user_id: Optional[str]) -> Dict[str, Any]:
        return self._simple_transition(order_id, acting_user_id, OrderStatus.REJECTED, "reject")

    def cancel(self, order_id: str, acting_user_id: Optional[str]) -> Dict[str, Any]:
        return self._simple_transition(order_id, acting_user_id, OrderStatus.CANCELLED, "cancel")

    def mark_shipping(self, order_id: str, acting_user_id: Optional[str]) -> Dict[str, Any]:
        return self._simple_transition(order_id, acting_user_id, OrderStatus.SHIPPING, "ship")

    def complete(self, order_id: str, acting_user_id: Optional[str]) -> Dict[str, Any]:
        return self._simple_transition(order_id, acting_user_id, OrderStatus.COMPLETED, "complete")

    def _simple_transition(self, order_id, acting_user_id, target: OrderStatus, action: str) -> Dict[str, Any]:
        self._require_admin(acting_user_id, action)
        order = self._load(order_id)
        self._check(order, target)
        updated = self._compare_and_set(order, target, {"updated_at": now_utc()})
        logger.info("Order %s moved %s -> %s by %s", order_id, order["status"], target.value, acting_user_id)
        return updated

    def _require_admin(self, acting_user_id: Optional[str], action: str) -> None:
        if not acting_user_id:
            raise AuthenticationRequiredError()
        if not self.identity.is_admin(acting_user_id):
            logger.warning("User %s denied permission to %s an order", acting_user_id, action)
            raise PermissionDeniedError(acting_user_id, action)

    def _load(self, order_id: str) -> Dict[str, Any]:
        order = self.db["order"].find_one({"_id": parse_object_id(order_id, "order id")})
        if not order:
            raise OrderNotFoundError(order_id)
        return order

    def _check(self, order: Dict[str, Any], target: OrderStatus) -> None:
        if not can_transition(order.get("status"), target.value):
            raise InvalidTransitionError(str(order["_id"]), order.get("status"), target.value)

    def _compare_and_set(self, order: Dict[str, Any], target: OrderStatus, fields: Dict[str, Any]) -> Dict[str, Any]:
        current = order["status"]
        result = self.db["order"].update_one(
            {"_id": order["_id"], "status": current},
            {"$set": dict(fields, status=target.value)},
        )
        if result.matched_count == 0:
            fresh = self.db["order"].find_one({"_id": order["_id"]}) or {}
            raise InvalidTransitionError(
                str(order["_id"]), fresh.get("status", current), target.value, "order changed concurrently"
            )
        return self.db["order"].find_one({"_id": order["_id"]})

    def _commit_stock(self, order_id: str, item: Dict[str, Any]) -> None:
        kind = item.get("item_kind", PRODUCT)
        oid = parse_object_id(item["item_id"], f"{kind} id")
        qty = int(item["quantity"])
        if kind == EQUIPMENT:
            result = self.db[EQUIPMENT].update_one(
                {"_id": oid, "status": "active"},
                {"$set": {"status": "assigned", "assigned_order_id": order_id, "updated_at": now_utc()}},
            )
        else:
            result = self.db[PRODUCT].update_one(
                {"_id": oid, "quantity_available": {"$gte": qty}},
                {"$inc": {"quantity_available": -qty}, "$set": {"updated_at": now_utc()}},
            )
        if result.matched_count == 0:
            logger.warning("Order %s lost the race for %s %s (qty %d)", order_id, kind, item["item_id"], qty)
            raise StockRaceError(
                order_id,
                OrderStatus.PENDING_APPROVAL.value,
                OrderStatus.APPROVED.value,
                item["item_id"],
                item.get("name", item["item_id"]),
                qty,
            )

    def _release_stock(self, order_id: str, applied: List[Dict[str, Any]]) -> None:
        for item in reversed(applied):
            kind = item.get("item_kind", PRODUCT)
            oid = parse_object_id(item["item_id"], f"{kind} id")
            try:
                if kind == EQUIPMENT:
                    self.db[EQUIPMENT].update_one(
                        {"_id": oid, "assigned_order_id": order_id},
                        {"$set": {"status": "active", "updated_at": now_utc()}, "$unset": {"assigned_order_id": ""}},
                    )
                else:
                    self.db[PRODUCT].update_one(
                        {"_id": oid},
                        {"$inc": {"quantity_available": int(item["quantity"])}, "$set": {"updated_at": now_utc()}},
                    )
            except PyMongoError:
                # the approval error is re-raised by the caller; keep releasing the rest
                logger.exception("Failed to release %s %s for order %s", kind, item["item_id"], order_id)
