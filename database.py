"""
Database helpers

Thin layer over the MongoDB connection shared by the services. Collection
names follow the schema class name lowercased (see schemas.py).
"""

import os
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from bson.decimal128 import Decimal128
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient

from errors import InvalidIdentifierError

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "inventory")

client = MongoClient(DATABASE_URL) if DATABASE_URL else None
db = client[DATABASE_NAME] if client is not None else None


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def to_mongo(value: Any) -> Any:
    """Convert Decimals (recursively) into Decimal128 so bson can encode them."""
    if isinstance(value, Decimal):
        return Decimal128(str(value))
    if isinstance(value, dict):
        return {k: to_mongo(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_mongo(v) for v in value]
    return value


def to_decimal(value: Any) -> Decimal:
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal128):
        return value.to_decimal()
    return Decimal(str(value))


def parse_object_id(value: str, what: str = "id") -> ObjectId:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise InvalidIdentifierError(what, value)


def create_document(collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    if db is None:
        raise RuntimeError("Database not initialized")
    doc = data.model_dump() if isinstance(data, BaseModel) else dict(data)
    stamp = now_utc()
    doc.setdefault("created_at", stamp)
    doc["updated_at"] = stamp
    result = db[collection_name].insert_one(to_mongo(doc))
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[Dict[str, Any]] = None, limit: Optional[int] = None) -> List[Dict[str, Any]]:
    if db is None:
        raise RuntimeError("Database not initialized")
    cursor = db[collection_name].find(filter_dict or {}).sort("created_at", -1)
    if limit:
        cursor = cursor.limit(int(limit))
    return list(cursor)


def ensure_indexes(target=None) -> None:
    target = target if target is not None else db
    if target is None:
        return
    target["order"].create_index([("submission_token", ASCENDING)], unique=True, sparse=True)
    target["orderitem"].create_index([("order_id", ASCENDING)])
    target["userrole"].create_index([("user_id", ASCENDING)])
