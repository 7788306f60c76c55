"""Pytest configuration and fixtures."""

import os

# Settings are read once and cached; set them before the package is imported.
os.environ["IDENTITY_SECRET"] = "test_secret"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENVIRONMENT"] = "test"
os.environ["LOG_TO_FILE"] = "false"

import pytest

from stock_ledger.models.identity import CallerIdentity
from stock_ledger.models.movement import MovementType
from stock_ledger.services.audit_service import AuditService
from stock_ledger.services.catalog import ProductCatalog
from stock_ledger.services.ledger import StockLedger
from stock_ledger.storage.database import Database
from stock_ledger.storage.repository import LedgerStore


@pytest.fixture
def database():
    """Fresh in-memory database per test."""
    db = Database("sqlite://")
    db.create_all()
    yield db
    db.dispose()


@pytest.fixture
def store(database):
    return LedgerStore(database)


@pytest.fixture
def ledger(store):
    return StockLedger(store)


@pytest.fixture
def catalog(store):
    return ProductCatalog(store)


@pytest.fixture
def audit_service(store):
    return AuditService(store)


@pytest.fixture
def caller():
    return CallerIdentity(id="user-1", name="Ana Souza")


@pytest.fixture
def other_caller():
    return CallerIdentity(id="user-2", name="Bruno Lima")


@pytest.fixture
def product_p1(catalog, caller):
    """P1: quantity 10, price 20.00, cost 12.00."""
    return catalog.create_product(caller, {
        "name": "P1",
        "category": "Bebidas",
        "quantity": 10,
        "price": "20.00",
        "cost": "12.00",
        "supplier": "Acme"
    })


@pytest.fixture
def sample_products(catalog, caller):
    """A small catalog across two categories, one product without cost."""
    return [
        catalog.create_product(caller, {"name": "Cola 2L", "category": "Bebidas", "quantity": 24,
                                        "price": "8.50", "cost": "5.00"}),
        catalog.create_product(caller, {"name": "Suco de Uva", "category": "Bebidas", "quantity": 6,
                                        "price": "12.00"}),
        catalog.create_product(caller, {"name": "Fone Bluetooth", "category": "Eletronicos", "quantity": 3,
                                        "price": "150.00", "cost": "90.00"}),
    ]


def ledger_balance(ledger, caller, product_id, opening):
    """Opening quantity plus entries minus exits, from the movement log."""
    total = opening
    for movement in ledger.list_movements(caller):
        if movement.product_id != product_id:
            continue
        if movement.type == MovementType.ENTRY:
            total += movement.quantity
        else:
            total -= movement.quantity
    return total
