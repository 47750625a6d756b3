"""Order-building cart.

A Cart lives for a single ordering session and is never persisted. It only
checks quantities against the availability figures of the catalog items it
was handed; stock is committed later, when an admin approves the order.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterator, List

from catalog import CatalogItem, UniqueEquipment
from errors import AlreadyInCartError, InsufficientStockError, InvalidQuantityError


@dataclass
class CartLine:
    item: CatalogItem
    quantity: int

    @property
    def item_id(self) -> str:
        return self.item.id

    @property
    def subtotal(self) -> Decimal:
        return self.item.unit_price * self.quantity


class Cart:
    def __init__(self) -> None:
        self._lines: Dict[str, CartLine] = {}

    def __len__(self) -> int:
        return len(self._lines)

    def __iter__(self) -> Iterator[CartLine]:
        return iter(list(self._lines.values()))

    def __contains__(self, item_id: str) -> bool:
        return item_id in self._lines

    @property
    def lines(self) -> List[CartLine]:
        return list(self._lines.values())

    def is_empty(self) -> bool:
        return not self._lines

    def quantity_of(self, item_id: str) -> int:
        line = self._lines.get(item_id)
        return line.quantity if line else 0

    def add_item(self, item: CatalogItem, requested_qty: int = 1) -> CartLine:
        """Add `requested_qty` units of `item`, merging with an existing line.

        Raises:
            InvalidQuantityError: requested_qty < 1, or != 1 for equipment.
            AlreadyInCartError: the equipment item already has a line.
            InsufficientStockError: the resulting quantity exceeds availability.
        """
        if requested_qty < 1:
            raise InvalidQuantityError(item.id, requested_qty, "must be at least 1")

        existing = self._lines.get(item.id)
        if isinstance(item, UniqueEquipment):
            if existing is not None:
                raise AlreadyInCartError(item.id, item.name)
            if requested_qty != 1:
                raise InvalidQuantityError(item.id, requested_qty, "equipment quantity is always 1")

        new_qty = requested_qty + (existing.quantity if existing else 0)
        self._check_available(item, new_qty)

        if existing is not None:
            existing.quantity = new_qty
            # keep the freshest catalog snapshot for price and availability
            existing.item = item
            return existing
        line = CartLine(item=item, quantity=new_qty)
        self._lines[item.id] = line
        return line

    def remove_item(self, item_id: str) -> None:
        self._lines.pop(item_id, None)

    def update_quantity(self, item_id: str, new_qty: int) -> None:
        line = self._lines.get(item_id)
        if line is None:
            return
        if new_qty < 1:
            self.remove_item(item_id)
            return
        if isinstance(line.item, UniqueEquipment) and new_qty != 1:
            raise InvalidQuantityError(item_id, new_qty, "equipment quantity is always 1")
        self._check_available(line.item, new_qty)
        line.quantity = new_qty

    def remaining_available(self, item: CatalogItem) -> int:
        """How many more units of `item` could still be added to this cart."""
        return max(item.max_quantity() - self.quantity_of(item.id), 0)

    def total(self) -> Decimal:
        return sum((line.subtotal for line in self._lines.values()), Decimal("0"))

    def clear(self) -> None:
        self._lines.clear()

    def _check_available(self, item: CatalogItem, quantity: int) -> None:
        limit = item.max_quantity()
        if quantity > limit:
            raise InsufficientStockError(
                item.id,
                item.name,
                requested=quantity,
                available=item.available_quantity,
                remaining=self.remaining_available(item),
            )
