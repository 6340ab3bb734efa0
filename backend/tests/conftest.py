"""
Test Configuration - Fixtures for async DB, test client, and ledger data.

Each test gets its own in-memory SQLite database. A StaticPool keeps every
session on the same connection, so batches committed by the code under
test are visible to the assertions that follow.
"""

import csv
import io
import os
import uuid
from datetime import datetime

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("APP_ENV", "test")

import pytest
from httpx import ASGITransport, AsyncClient
from openpyxl import Workbook
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from api.deps import get_current_user, get_db
from api.main import app
from db.session import Base
from reconciliation.plan import PlanRegistry

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
async def test_engine():
    """Create a fresh database engine and build all tables."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def test_db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def mock_user():
    """Mock authenticated user."""
    return {"sub": "auth0|test-user-id", "email": "test@yarnops.local"}


@pytest.fixture
async def client(test_db, mock_user):
    """Create an async test client with dependency overrides."""

    async def override_get_db():
        yield test_db

    def override_get_current_user():
        return mock_user

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    app.state.plan_registry = PlanRegistry()

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


def allocation_payload(order_id: str, customer_id: str, quantity: float, fabric_name: str = "Single Jersey") -> dict:
    return {
        "orderId": order_id,
        "customerId": customer_id,
        "clientName": "Nile Textiles",
        "fabricName": fabric_name,
        "quantity": quantity,
        "timestamp": "2026-10-01T08:00:00",
    }


def xlsx_bytes(rows: list[list]) -> bytes:
    """Build a one-sheet workbook from a list of rows."""
    workbook = Workbook()
    sheet = workbook.active
    for row in rows:
        sheet.append(row)
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


@pytest.fixture
async def seeded_ledger(test_db):
    """A small ledger: one located lot with allocations, one plain, one legacy."""
    from db.models import CustomerOrder, CustomerSheet, InventoryLot

    allocated = InventoryLot(
        lot_id=uuid.uuid4(),
        yarn_name="Cotton 30/1",
        lot_number="L100",
        quantity=100.0,
        location="BU/Main Store",
        last_updated=datetime(2026, 10, 1),
        allocations=[
            allocation_payload("ord-1", "cust-nile", 30.0),
            allocation_payload("ord-2", "cust-nile", 20.0, fabric_name="Rib 1x1"),
        ],
    )
    plain = InventoryLot(
        lot_id=uuid.uuid4(),
        yarn_name="Polyester 150D",
        lot_number="P7",
        quantity=250.0,
        location="BU/Main Store",
        last_updated=datetime(2026, 10, 1),
        allocations=[],
    )
    legacy = InventoryLot(
        lot_id=uuid.uuid4(),
        yarn_name="Viscose 30/1",
        lot_number="V9",
        quantity=80.0,
        location=None,
        last_updated=datetime(2026, 9, 1),
        allocations=[],
    )
    test_db.add_all([allocated, plain, legacy])

    sheet = CustomerSheet(
        customer_id="cust-nile",
        name="Nile Textiles",
        orders=[
            {
                "id": "ord-1",
                "material": "Single Jersey",
                "requiredQty": 120.0,
                "remainingQty": 90.0,
                "yarnAllocations": {
                    "Cotton 30/1": [
                        {"lotId": str(allocated.lot_id), "lotNumber": "L100", "quantity": 30.0, "allocatedAt": "2026-10-01"},
                        {"lotId": "other-lot", "lotNumber": "L200", "quantity": 5.0, "allocatedAt": "2026-10-01"},
                    ]
                },
            }
        ],
    )
    test_db.add(sheet)
    await test_db.flush()

    child = CustomerOrder(
        order_id="ord-2",
        customer_id="cust-nile",
        material="Rib 1x1",
        required_qty=200.0,
        remaining_qty=150.0,
        yarn_allocations={
            "Cotton 30/1": [
                {"lotId": str(allocated.lot_id), "lotNumber": "L100", "quantity": 20.0, "allocatedAt": "2026-10-01"}
            ]
        },
    )
    test_db.add(child)
    await test_db.commit()

    return {"allocated": allocated, "plain": plain, "legacy": legacy, "sheet": sheet, "child_order": child}


@pytest.fixture
def make_xlsx():
    return xlsx_bytes


@pytest.fixture
def make_allocation():
    return allocation_payload


def csv_bytes(rows: list[list]) -> bytes:
    buffer = io.StringIO()
    csv.writer(buffer).writerows(rows)
    return buffer.getvalue().encode("utf-8")


@pytest.fixture
def make_csv():
    return csv_bytes
