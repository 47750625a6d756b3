"""Pytest fixtures for the ordering workflow tests."""

from decimal import Decimal

import mongomock
import pytest
from fastapi.testclient import TestClient

import database
from catalog import CatalogProvider
from identity import IdentityService
from schemas import Equipment as EquipmentSchema, Product as ProductSchema

ADMIN_ID = "admin-user"
STAFF_ID = "staff-user"


@pytest.fixture
def db(monkeypatch):
    """In-memory MongoDB standing in for the real database."""
    client = mongomock.MongoClient()
    mock_db = client["inventory_test"]
    monkeypatch.setattr(database, "db", mock_db)
    yield mock_db
    client.drop_database("inventory_test")


@pytest.fixture
def identity(db):
    service = IdentityService(db)
    service.grant(ADMIN_ID)
    service.grant(STAFF_ID, role="staff")
    return service


@pytest.fixture
def catalog(db):
    return CatalogProvider(db)


@pytest.fixture
def make_product(db):
    def _make(name="SSD NVMe 1TB", price="100.00", quantity=3, category="storage", sku=None):
        product = ProductSchema(
            name=name,
            sku=sku or name.upper().replace(" ", "-"),
            category=category,
            price=Decimal(price),
            quantity_available=quantity,
        )
        return database.create_document("product", product)

    return _make


@pytest.fixture
def make_equipment(db):
    def _make(name="Servidor Dell R740", price="32000.00", status="active", category="server", serial=None):
        equipment = EquipmentSchema(
            name=name,
            serial_number=serial or f"SN-{name.upper().replace(' ', '-')}",
            category=category,
            price=Decimal(price),
            status=status,
        )
        return database.create_document("equipment", equipment)

    return _make


@pytest.fixture
def api_client(db, identity):
    from main import app

    return TestClient(app)


@pytest.fixture
def admin_id(identity):
    return ADMIN_ID


@pytest.fixture
def staff_id(identity):
    return STAFF_ID
