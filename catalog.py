"""Catalog of orderable items: stock products and unique equipment."""

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional

from database import parse_object_id, to_decimal
from errors import CatalogItemNotFoundError

logger = logging.getLogger(__name__)

PRODUCT = "product"
EQUIPMENT = "equipment"

# Prices are whole cents; line totals and order totals are exact sums of them
CENTS = Decimal("0.01")

# Category code -> display label
CATEGORY_LABELS: Dict[str, str] = {
    "server": "Servidores",
    "network": "Equipamento de Rede",
    "storage": "Armazenamento",
    "workstation": "Estações de Trabalho",
    "peripheral": "Periféricos",
    "other": "Outros",
}


def category_label(code: Optional[str]) -> str:
    if not code:
        return CATEGORY_LABELS["other"]
    return CATEGORY_LABELS.get(code, code)


@dataclass(frozen=True)
class CatalogItem(ABC):
    """Fields shared by every orderable item."""

    id: str
    name: str
    sku: str
    category: str
    unit_price: Decimal
    description: Optional[str] = None

    kind = "item"

    @property
    @abstractmethod
    def available_quantity(self) -> int:
        """Units the catalog can currently hand out."""

    def max_quantity(self) -> int:
        """Largest quantity of this item a single cart line may hold."""
        return self.available_quantity

    @property
    def category_label(self) -> str:
        return category_label(self.category)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind,
            "name": self.name,
            "sku": self.sku,
            "category": self.category,
            "category_label": self.category_label,
            "description": self.description,
            "unit_price": self.unit_price,
            "available_quantity": self.available_quantity,
        }


@dataclass(frozen=True)
class StockProduct(CatalogItem):
    stock: int = 0

    kind = PRODUCT

    @property
    def available_quantity(self) -> int:
        return max(self.stock, 0)

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> "StockProduct":
        return cls(
            id=str(doc["_id"]),
            name=doc.get("name", ""),
            sku=doc.get("sku", ""),
            category=doc.get("category", "other"),
            unit_price=to_decimal(doc.get("price")).quantize(CENTS),
            description=doc.get("description"),
            stock=int(doc.get("quantity_available", 0)),
        )


@dataclass(frozen=True)
class UniqueEquipment(CatalogItem):
    status: str = "active"

    kind = EQUIPMENT

    @property
    def available_quantity(self) -> int:
        return 1 if self.status == "active" else 0

    def max_quantity(self) -> int:
        return min(self.available_quantity, 1)

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> "UniqueEquipment":
        return cls(
            id=str(doc["_id"]),
            name=doc.get("name", ""),
            sku=doc.get("serial_number", ""),
            category=doc.get("category", "other"),
            unit_price=to_decimal(doc.get("price")).quantize(CENTS),
            description=doc.get("description"),
            status=doc.get("status", "active"),
        )


_VARIANTS = {
    PRODUCT: StockProduct,
    EQUIPMENT: UniqueEquipment,
}

# Products at or below this many units (but not out) count as low stock
LOW_STOCK_THRESHOLD = 5


@dataclass
class InventorySummary:
    total_products: int
    total_categories: int
    total_value: Decimal
    low_stock_items: int
    out_of_stock_items: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_products": self.total_products,
            "total_categories": self.total_categories,
            "total_value": self.total_value,
            "low_stock_items": self.low_stock_items,
            "out_of_stock_items": self.out_of_stock_items,
        }


class CatalogProvider:
    """Read-only view over the product and equipment collections."""

    def __init__(self, db):
        self.db = db

    def get_item(self, kind: str, item_id: str) -> CatalogItem:
        variant = _VARIANTS.get(kind)
        if variant is None:
            raise CatalogItemNotFoundError(kind, item_id)
        doc = self.db[kind].find_one({"_id": parse_object_id(item_id, f"{kind} id")})
        if not doc:
            raise CatalogItemNotFoundError(kind, item_id)
        return variant.from_doc(doc)

    def list_items(
        self,
        category: Optional[str] = None,
        search: Optional[str] = None,
        kind: Optional[str] = None,
        only_available: bool = True,
        limit: int = 200,
    ) -> List[CatalogItem]:
        kinds = [kind] if kind else [PRODUCT, EQUIPMENT]
        items: List[CatalogItem] = []
        for k in kinds:
            variant = _VARIANTS.get(k)
            if variant is None:
                continue
            query = self._query(k, category, search, only_available)
            for doc in self.db[k].find(query).sort("name", 1).limit(limit):
                items.append(variant.from_doc(doc))
        items.sort(key=lambda item: item.name.lower())
        logger.debug("Catalog listing returned %d items (category=%s, search=%s)", len(items), category, search)
        return items

    @staticmethod
    def _query(kind: str, category: Optional[str], search: Optional[str], only_available: bool) -> Dict[str, Any]:
        query: Dict[str, Any] = {}
        if category and category != "all":
            query["category"] = category
        if only_available:
            if kind == PRODUCT:
                query["quantity_available"] = {"$gt": 0}
            else:
                query["status"] = "active"
        if search:
            pattern = re.escape(search.strip())
            code_field = "sku" if kind == PRODUCT else "serial_number"
            query["$or"] = [
                {"name": {"$regex": pattern, "$options": "i"}},
                {code_field: {"$regex": pattern, "$options": "i"}},
            ]
        return query

    def inventory_summary(self, threshold: int = LOW_STOCK_THRESHOLD) -> InventorySummary:
        """Stock figures for the dashboard, over products only.

        Equipment is counted by status on its own pages and has no stock value here.
        """
        total = 0
        categories = set()
        value = Decimal("0")
        low = out = 0
        for doc in self.db[PRODUCT].find({}, {"category": 1, "price": 1, "quantity_available": 1}):
            qty = int(doc.get("quantity_available", 0))
            total += 1
            categories.add(doc.get("category") or "other")
            value += to_decimal(doc.get("price")).quantize(CENTS) * max(qty, 0)
            if qty <= 0:
                out += 1
            elif qty <= threshold:
                low += 1
        return InventorySummary(
            total_products=total,
            total_categories=len(categories),
            total_value=value,
            low_stock_items=low,
            out_of_stock_items=out,
        )

    def low_stock(self, limit: int = 5) -> List[StockProduct]:
        """Products closest to running out, lowest stock first. Empty ones are left out."""
        cursor = self.db[PRODUCT].find({"quantity_available": {"$gt": 0}}).sort("quantity_available", 1).limit(limit)
        return [StockProduct.from_doc(doc) for doc in cursor]
