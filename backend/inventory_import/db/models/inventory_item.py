"""SQLAlchemy model for inventory item records."""

from sqlalchemy import JSON, Boolean, Column, Float, Integer, String, Text, func
from sqlalchemy.types import DateTime

from inventory_import.db.base import Base


class InventoryItem(Base):
    __tablename__ = "inventory_items"

    id = Column(Integer, primary_key=True)
    sku = Column(String(64), index=True)
    name = Column(String(255), index=True)
    description = Column(Text)
    category = Column(String(128))
    subcategory = Column(String(128))
    supplier = Column(String(255))
    vendor_id = Column(String(64))
    location = Column(String(128))
    unit = Column(String(32))
    quantity = Column(Integer, nullable=False, default=0)
    reorder_point = Column(Integer)
    cost_price = Column(Float)
    selling_price = Column(Float)
    unit_price = Column(Float, nullable=False, default=0)
    active = Column(Boolean, nullable=False, default=True)
    tags = Column(JSON)
    # Descriptive and domain-specific fields without a dedicated column
    attributes = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
