"""
YarnOps Database Models

Tables:
  1. yarn_inventory    - Per-lot stock ledger; allocations embedded as JSON
  2. customer_sheets   - Customers; legacy orders embedded as a JSON array
  3. customer_orders   - Orders stored as separate child records

An allocation lives twice: once inside the lot's ``allocations`` list and
once inside the owning order's ``yarn_allocations`` map (keyed by yarn,
each entry referencing the lot by ``lotId``).
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    String,
    TypeDecorator,
    types,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.ext.mutable import MutableDict, MutableList


class GUID(TypeDecorator):
    """Platform-independent UUID type.

    Uses PostgreSQL UUID when available, stores as CHAR(36) on SQLite.
    """

    impl = types.String(36)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PG_UUID(as_uuid=True))
        return dialect.type_descriptor(types.String(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if dialect.name == "postgresql":
            return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
        return str(value) if isinstance(value, uuid.UUID) else value

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(str(value))


from sqlalchemy.orm import relationship

from db.session import Base

# ─── 1. Yarn Inventory Lots ────────────────────────────────────────────────


class InventoryLot(Base):
    __tablename__ = "yarn_inventory"

    lot_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    yarn_name = Column(String(255), nullable=False)
    lot_number = Column(String(100), nullable=False)
    quantity = Column(Float, nullable=False, default=0.0)
    location = Column(String(255))  # NULL on lots created before locations were tracked
    last_updated = Column(DateTime, nullable=False, default=datetime.utcnow)
    allocations = Column(MutableList.as_mutable(JSON), nullable=False, default=list)

    __table_args__ = (
        Index("ix_yarn_inventory_identity", "yarn_name", "lot_number", "location"),
        CheckConstraint("quantity >= 0", name="ck_yarn_inventory_qty_positive"),
    )


# ─── 2. Customer Sheets ────────────────────────────────────────────────────


class CustomerSheet(Base):
    __tablename__ = "customer_sheets"

    customer_id = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=False)
    orders = Column(MutableList.as_mutable(JSON), nullable=False, default=list)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    child_orders = relationship("CustomerOrder", back_populates="customer")


# ─── 3. Customer Orders (child records) ────────────────────────────────────


class CustomerOrder(Base):
    __tablename__ = "customer_orders"

    order_id = Column(String(64), primary_key=True)
    customer_id = Column(String(64), ForeignKey("customer_sheets.customer_id"), nullable=False)
    material = Column(String(255))
    required_qty = Column(Float, default=0.0)
    remaining_qty = Column(Float, default=0.0)
    yarn_allocations = Column(MutableDict.as_mutable(JSON), nullable=False, default=dict)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (Index("ix_customer_orders_customer", "customer_id"),)

    customer = relationship("CustomerSheet", back_populates="child_orders")
