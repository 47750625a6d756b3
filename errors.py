"""Exceptions raised by the ordering workflow."""

from typing import Any, Dict


class InventoryError(Exception):
    """Base exception for all ordering workflow errors."""

    def context(self) -> Dict[str, Any]:
        """Extra fields surfaced next to the message in API responses."""
        return {}


class ValidationError(InventoryError):
    """Raised when a required field is missing, e.g. customer name or cart lines."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class InvalidIdentifierError(InventoryError):
    def __init__(self, what: str, value: Any):
        self.what = what
        self.value = value
        super().__init__(f"Invalid {what}: {value}")


class InvalidQuantityError(InventoryError):
    """Raised for non-positive quantities, or unique equipment quantities other than 1."""

    def __init__(self, item_id: str, quantity: int, reason: str | None = None):
        self.item_id = item_id
        self.quantity = quantity
        msg = f"Invalid quantity {quantity} for item {item_id}"
        if reason:
            msg = f"{msg} ({reason})"
        super().__init__(msg)


class InsufficientStockError(InventoryError):
    """Raised when a requested quantity exceeds what the catalog has available."""

    def __init__(self, item_id: str, name: str, requested: int, available: int, remaining: int):
        self.item_id = item_id
        self.name = name
        self.requested = requested
        self.available = available
        self.remaining = remaining
        super().__init__(
            f"Insufficient stock for {name}: requested {requested}, available {available}"
        )

    def context(self) -> Dict[str, Any]:
        return {
            "item_id": self.item_id,
            "requested": self.requested,
            "available": self.available,
            "remaining": self.remaining,
        }


class AlreadyInCartError(InventoryError):
    """Raised when a unique equipment item is added to a cart that already holds it."""

    def __init__(self, item_id: str, name: str):
        self.item_id = item_id
        self.name = name
        super().__init__(f"Equipment {name} is already in the cart")


class CatalogItemNotFoundError(InventoryError):
    def __init__(self, kind: str, item_id: str):
        self.kind = kind
        self.item_id = item_id
        super().__init__(f"Catalog item not found: {kind} {item_id}")


class OrderNotFoundError(InventoryError):
    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order not found: {order_id}")


class AuthenticationRequiredError(InventoryError):
    def __init__(self):
        super().__init__("Missing X-User-Id header")


class PermissionDeniedError(InventoryError):
    """Raised when a non-admin user attempts an admin-only order action."""

    def __init__(self, user_id: str, action: str):
        self.user_id = user_id
        self.action = action
        super().__init__(f"User {user_id} is not allowed to {action} orders")


class InvalidTransitionError(InventoryError):
    """Raised when an order cannot move from its current status to the target one."""

    def __init__(self, order_id: str, current: str, target: str, reason: str | None = None):
        self.order_id = order_id
        self.current = current
        self.target = target
        self.reason = reason
        msg = f"Order {order_id} cannot move from {current} to {target}"
        if reason:
            msg = f"{msg}: {reason}"
        super().__init__(msg)

    def context(self) -> Dict[str, Any]:
        return {"current_status": self.current, "target_status": self.target}


class StockRaceError(InvalidTransitionError):
    """Raised when approval finds an item no longer has the stock the order claims.

    Stock is re-validated at approval time; another approval may have consumed
    it since the order was submitted.
    """

    def __init__(self, order_id: str, current: str, target: str, item_id: str, name: str, requested: int):
        self.item_id = item_id
        self.name = name
        self.requested = requested
        super().__init__(
            order_id, current, target, f"{name} no longer has {requested} unit(s) available"
        )

    def context(self) -> Dict[str, Any]:
        ctx = super().context()
        ctx.update({"item_id": self.item_id, "requested": self.requested})
        return ctx


class OrderCreationPartialFailure(InventoryError):
    """Raised when an order record was written but its items were not.

    The partial order is rolled back; the submission should be retried as a whole.
    """

    def __init__(self, order_id: str, cause: Exception):
        self.order_id = order_id
        self.cause = cause
        super().__init__(f"Order {order_id} could not be created completely, try again: {cause}")


# Map exception types to HTTP status codes
ERROR_STATUS_CODES: Dict[type, int] = {
    ValidationError: 400,
    InvalidIdentifierError: 400,
    InvalidQuantityError: 400,
    AuthenticationRequiredError: 401,
    PermissionDeniedError: 403,
    CatalogItemNotFoundError: 404,
    OrderNotFoundError: 404,
    InsufficientStockError: 409,
    AlreadyInCartError: 409,
    InvalidTransitionError: 409,
    StockRaceError: 409,
    OrderCreationPartialFailure: 503,
}
