import logging
import os
from contextlib import asynccontextmanager
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from bson import ObjectId
from bson.decimal128 import Decimal128
from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field, field_validator
from pymongo.errors import PyMongoError

import database
from approval import STATUS_LABELS, ApprovalStateMachine, OrderStatus
from cart import Cart
from catalog import CatalogProvider
from database import create_document, ensure_indexes, get_documents, parse_object_id
from errors import ERROR_STATUS_CODES, InventoryError
from identity import IdentityService
from orders import OrderQueryService, OrderSubmissionService, subtotal
from schemas import Equipment as EquipmentSchema, Product as ProductSchema

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        ensure_indexes()
    except PyMongoError as e:
        logger.warning("Could not create indexes at startup: %s", e)
    yield


app = FastAPI(title="Inventory Orders API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",")],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def serialize_value(v: Any):
    if isinstance(v, ObjectId):
        return str(v)
    if isinstance(v, Decimal128):
        return str(v.to_decimal())
    if isinstance(v, Decimal):
        return str(v)
    if isinstance(v, dict):
        return serialize_doc(v)
    if isinstance(v, list):
        return [serialize_value(x) for x in v]
    if hasattr(v, "isoformat"):
        return v.isoformat()
    return v


def serialize_doc(doc: Dict[str, Any]):
    if not doc:
        return doc
    out = {}
    for k, v in doc.items():
        if k == "_id":
            out["id"] = str(v)
        else:
            out[k] = serialize_value(v)
    return out


def serialize_order(order: Dict[str, Any]):
    out = serialize_doc(order)
    try:
        out["status_label"] = STATUS_LABELS[OrderStatus(order.get("status"))]
    except ValueError:
        out["status_label"] = order.get("status")
    if "items" in order:
        out["items"] = [dict(serialize_doc(i), subtotal=str(subtotal(i))) for i in order["items"]]
    return out


@app.exception_handler(InventoryError)
async def inventory_error_handler(request: Request, exc: InventoryError) -> JSONResponse:
    """Map InventoryError subclasses to HTTP responses with a readable reason."""
    status_code = ERROR_STATUS_CODES.get(type(exc), 400)
    content = {"detail": str(exc), "error_type": type(exc).__name__}
    content.update(serialize_doc(exc.context()) or {})
    return JSONResponse(status_code=status_code, content=content)


@app.exception_handler(PyMongoError)
async def database_error_handler(request: Request, exc: PyMongoError) -> JSONResponse:
    logger.error("Database error on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=503,
        content={"detail": "Database unavailable, please try again", "error_type": "DatabaseError"},
    )


def get_db():
    if database.db is None:
        raise HTTPException(status_code=503, detail="Database not initialized")
    return database.db


def get_identity(db=Depends(get_db)) -> IdentityService:
    return IdentityService(db)


@app.get("/")
def read_root():
    return {"message": "Inventory orders backend is running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "running",
        "database": "unavailable",
        "database_url": None,
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": []
    }
    db = database.db
    if db is not None:
        response["database"] = "available"
        response["database_url"] = "set" if os.getenv("DATABASE_URL") else "not set"
        response["database_name"] = db.name
        response["connection_status"] = "Connected"
        try:
            collections = db.list_collection_names()
            response["collections"] = collections[:10]
            response["database"] = "connected"
        except PyMongoError as e:
            logger.warning("Health check could not list collections: %s", e)
            response["database"] = f"error: {str(e)[:50]}"
    return response


# Identity
@app.get("/api/me")
def who_am_i(x_user_id: Optional[str] = Header(None), identity: IdentityService = Depends(get_identity)):
    return {"user_id": x_user_id, "is_admin": identity.is_admin(x_user_id)}


# Catalog
@app.get("/api/catalog")
def list_catalog(
    category: Optional[str] = None,
    search: Optional[str] = None,
    kind: Optional[Literal["product", "equipment"]] = None,
    db=Depends(get_db),
):
    items = CatalogProvider(db).list_items(category=category, search=search, kind=kind)
    return [serialize_doc(item.to_dict()) for item in items]


# Products
@app.get("/api/products")
def list_products(limit: int = 100, db=Depends(get_db)):
    docs = get_documents("product", {}, limit)
    return [serialize_doc(d) for d in docs]


@app.get("/api/products/seed")
def seed_products(db=Depends(get_db)):
    existing = db["product"].count_documents({})
    if existing > 0:
        return {"message": "Products already exist", "count": existing}
    samples = [
        ProductSchema(name="Cabo de Rede Cat6 2m", sku="CAB-CAT6-2M", category="network", price=Decimal("12.90"), quantity_available=150),
        ProductSchema(name="Memória DDR4 16GB", sku="MEM-DDR4-16", category="server", price=Decimal("389.00"), quantity_available=40),
        ProductSchema(name="SSD NVMe 1TB", sku="SSD-NVME-1T", category="storage", price=Decimal("549.90"), quantity_available=25),
        ProductSchema(name="Teclado USB", sku="PER-TEC-USB", category="peripheral", price=Decimal("79.90"), quantity_available=60),
    ]
    equipment = [
        EquipmentSchema(name="Servidor Dell R740", serial_number="DL-R740-0001", model="PowerEdge R740", category="server", price=Decimal("32000.00")),
        EquipmentSchema(name="Switch Cisco 48p", serial_number="CS-2960-0042", model="Catalyst 2960", category="network", price=Decimal("7800.00")),
    ]
    ids = [create_document("product", s) for s in samples]
    ids += [create_document("equipment", e) for e in equipment]
    return {"message": "Seeded catalog", "ids": ids}


class CreateProductRequest(ProductSchema):
    pass


@app.post("/api/products", status_code=201)
def create_product(payload: CreateProductRequest, db=Depends(get_db)):
    new_id = create_document("product", payload)
    doc = db["product"].find_one({"_id": ObjectId(new_id)})
    return serialize_doc(doc)


@app.get("/api/products/{product_id}")
def get_product(product_id: str, db=Depends(get_db)):
    doc = db["product"].find_one({"_id": parse_object_id(product_id, "product id")})
    if not doc:
        raise HTTPException(status_code=404, detail="Product not found")
    return serialize_doc(doc)


# Equipment
@app.get("/api/equipment")
def list_equipment(limit: int = 100, status: Optional[str] = None, db=Depends(get_db)):
    docs = get_documents("equipment", {"status": status} if status else {}, limit)
    return [serialize_doc(d) for d in docs]


class CreateEquipmentRequest(EquipmentSchema):
    pass


@app.post("/api/equipment", status_code=201)
def create_equipment(payload: CreateEquipmentRequest, db=Depends(get_db)):
    new_id = create_document("equipment", payload)
    doc = db["equipment"].find_one({"_id": ObjectId(new_id)})
    return serialize_doc(doc)


@app.get("/api/equipment/{equipment_id}")
def get_equipment(equipment_id: str, db=Depends(get_db)):
    doc = db["equipment"].find_one({"_id": parse_object_id(equipment_id, "equipment id")})
    if not doc:
        raise HTTPException(status_code=404, detail="Equipment not found")
    return serialize_doc(doc)


# Cart
class CartLineRequest(BaseModel):
    item_id: str = Field(..., description="Catalog item _id as string")
    kind: Literal["product", "equipment"] = "product"
    quantity: int = Field(1, description="Requested quantity")


class QuoteRequest(BaseModel):
    lines: List[CartLineRequest] = Field(default_factory=list)


def build_cart(lines: List[CartLineRequest], catalog: CatalogProvider) -> Cart:
    # Replays the client's selections so availability is checked against live stock
    cart = Cart()
    for line in lines:
        cart.add_item(catalog.get_item(line.kind, line.item_id), line.quantity)
    return cart


@app.post("/api/cart/quote")
def quote_cart(payload: QuoteRequest, db=Depends(get_db)):
    cart = build_cart(payload.lines, CatalogProvider(db))
    lines = [
        {
            "item": serialize_doc(line.item.to_dict()),
            "quantity": line.quantity,
            "subtotal": str(line.subtotal),
            "remaining": cart.remaining_available(line.item),
        }
        for line in cart
    ]
    return {"lines": lines, "total": str(cart.total())}


# Orders
class CreateOrderRequest(BaseModel):
    customer_name: str = Field("", description="Requester full name")
    customer_email: Optional[EmailStr] = None
    lines: List[CartLineRequest] = Field(default_factory=list)
    submission_token: Optional[str] = Field(None, description="Resubmitting with the same token never duplicates the order")

    @field_validator("customer_email", mode="before")
    @classmethod
    def blank_email_is_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value


@app.post("/api/orders", status_code=201)
def create_order(order: CreateOrderRequest, db=Depends(get_db)):
    cart = build_cart(order.lines, CatalogProvider(db))
    order_id = OrderSubmissionService(db).submit(
        order.customer_name,
        cart,
        customer_email=order.customer_email,
        submission_token=order.submission_token,
    )
    cart.clear()
    return serialize_order(OrderQueryService(db).get_order(order_id))


@app.get("/api/orders")
def list_orders(
    status: Optional[OrderStatus] = None,
    limit: int = Query(50, ge=1, le=500),
    db=Depends(get_db),
):
    docs = OrderQueryService(db).list_orders(status=status.value if status else None, limit=limit)
    return [serialize_order(d) for d in docs]


@app.get("/api/orders/summary")
def orders_summary(db=Depends(get_db)):
    summary = OrderQueryService(db).summary()
    return {"total": summary.total, "pending": summary.pending, "items_sold": summary.items_sold}


@app.get("/api/dashboard")
def dashboard(db=Depends(get_db)):
    catalog = CatalogProvider(db)
    orders = OrderQueryService(db).summary()
    return {
        "inventory": serialize_doc(catalog.inventory_summary().to_dict()),
        "low_stock": [serialize_doc(item.to_dict()) for item in catalog.low_stock()],
        "orders": {"total": orders.total, "pending": orders.pending, "items_sold": orders.items_sold},
    }


@app.get("/api/orders/{order_id}")
def get_order(order_id: str, db=Depends(get_db)):
    return serialize_order(OrderQueryService(db).get_order(order_id))


class OrderAction(str, Enum):
    approve = "approve"
    reject = "reject"
    cancel = "cancel"
    ship = "ship"
    complete = "complete"


ORDER_ACTIONS = {
    OrderAction.approve: ApprovalStateMachine.approve,
    OrderAction.reject: ApprovalStateMachine.reject,
    OrderAction.cancel: ApprovalStateMachine.cancel,
    OrderAction.ship: ApprovalStateMachine.mark_shipping,
    OrderAction.complete: ApprovalStateMachine.complete,
}


@app.post("/api/orders/{order_id}/{action}")
def order_action(
    order_id: str,
    action: OrderAction,
    x_user_id: Optional[str] = Header(None),
    db=Depends(get_db),
    identity: IdentityService = Depends(get_identity),
):
    machine = ApprovalStateMachine(db, identity)
    ORDER_ACTIONS[action](machine, order_id, x_user_id)
    return serialize_order(OrderQueryService(db).get_order(order_id))


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
