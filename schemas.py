"""
Database Schemas

Pydantic models that define MongoDB collections used by the app.
Each class name (lowercased) maps to a collection name.
"""

from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

ItemKind = Literal["product", "equipment"]


# Product collection (replenishable stock)
class Product(BaseModel):
    name: str = Field(..., min_length=1, description="Product name")
    sku: str = Field(..., min_length=1, description="Stock keeping unit")
    category: str = Field(..., description="Category code")
    description: Optional[str] = Field(None, description="Product description")
    price: Decimal = Field(..., ge=0, decimal_places=2, description="Unit price")
    cost: Optional[Decimal] = Field(None, ge=0, decimal_places=2, description="Unit cost")
    quantity_available: int = Field(0, ge=0, description="Units in stock")
    supplier: Optional[str] = Field(None, description="Supplier name")


# Equipment collection (unique, non-fungible assets)
class Equipment(BaseModel):
    name: str = Field(..., min_length=1, description="Equipment name")
    serial_number: str = Field(..., min_length=1, description="Manufacturer serial number")
    model: str = Field("", description="Model designation")
    category: str = Field("other", description="Category code, e.g. server, network, storage")
    description: Optional[str] = None
    price: Decimal = Field(Decimal("0"), ge=0, decimal_places=2, description="Unit price when requested")
    status: Literal["active", "maintenance", "inactive", "assigned"] = Field("active")
    location_id: Optional[str] = Field(None, description="Current location")
    purchase_date: Optional[datetime] = None
    warranty_expiry: Optional[datetime] = None


# Order collection
class Order(BaseModel):
    customer_name: str = Field(..., min_length=1, description="Requester full name")
    customer_email: Optional[EmailStr] = Field(None, description="Requester email")
    status: str = Field("pending_approval", description="Order status")
    total_amount: Decimal = Field(..., ge=0, description="Sum of item subtotals at submission")
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    submission_token: Optional[str] = Field(None, description="Client supplied idempotency token")

    @field_validator("customer_email", mode="before")
    @classmethod
    def blank_email_is_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value


# Order item collection, one document per ordered line
class OrderItem(BaseModel):
    order_id: str = Field(..., description="Parent order _id as string")
    item_id: str = Field(..., description="Referenced catalog item _id as string")
    item_kind: ItemKind = Field("product")
    name: str = Field(..., description="Snapshot of item name at order time")
    sku: str = Field("", description="Snapshot of sku or serial number at order time")
    quantity: int = Field(..., ge=1, description="Quantity ordered")
    unit_price: Decimal = Field(..., ge=0, decimal_places=2, description="Unit price at order time")


# Role assignments consulted by the identity service
class UserRole(BaseModel):
    user_id: str
    role: Literal["admin", "staff"] = "staff"
