"""Inventory item persistence used by the import row loop."""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional, Protocol

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from inventory_import.core.exceptions import StoreError
from inventory_import.db.models.inventory_item import InventoryItem
from inventory_import.services.import_models import ItemRef
from inventory_import.utils.field_schema import FieldTarget, fields_for

logger = logging.getLogger(__name__)

COLUMN_FIELDS = fields_for(FieldTarget.COLUMN)
ATTRIBUTE_FIELDS = fields_for(FieldTarget.ATTRIBUTE)

# Fallback order for unit_price when a new item arrives without one
UNIT_PRICE_SOURCES = ("selling_price", "price_per_unit", "cost_price")


class ItemStore(Protocol):
    """What the import engine needs from an inventory backend.

    Implementations raise StoreError on failure; the controller records any
    exception from these calls as an error for the row being processed.
    """

    def lookup(self, sku: Optional[str] = None, name: Optional[str] = None) -> Optional[ItemRef]: ...

    def create(self, fields: dict[str, Any]) -> Any: ...

    def update(self, item_id: Any, fields: dict[str, Any]) -> None: ...


def split_fields(fields: dict[str, Any]) -> tuple[dict[str, Any], dict[str, Any]]:
    """Separate dedicated-column values from JSON attribute values."""
    columns = {k: v for k, v in fields.items() if k in COLUMN_FIELDS}
    attributes = {k: v for k, v in fields.items() if k in ATTRIBUTE_FIELDS}
    return columns, attributes


def derive_unit_price(fields: dict[str, Any]) -> float:
    for source in UNIT_PRICE_SOURCES:
        value = fields.get(source)
        if value:
            return value
    return 0


class SqlItemStore:
    """ItemStore over the inventory_items table.

    Every call opens its own session and commits, so a failed row never
    affects rows already written.
    """

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def lookup(self, sku: str | None = None, name: str | None = None) -> ItemRef | None:
        """Exact SKU match first, then exact name match; lowest id wins."""
        try:
            with self._session_factory() as session:
                if sku:
                    item = self._first(session, InventoryItem.sku == sku)
                    if item is not None:
                        return item
                if name:
                    return self._first(session, InventoryItem.name == name)
                return None
        except SQLAlchemyError as e:
            raise StoreError(f"Lookup failed: {e}") from e

    def create(self, fields: dict[str, Any]) -> int:
        columns, attributes = split_fields(fields)
        if columns.get("unit_price") is None:
            columns["unit_price"] = derive_unit_price(fields)
        columns.setdefault("active", True)
        columns.setdefault("quantity", 0)

        try:
            with self._session_factory() as session:
                item = InventoryItem(**columns, attributes=attributes)
                session.add(item)
                session.commit()
                return item.id
        except SQLAlchemyError as e:
            raise StoreError(f"Could not create item: {e}") from e

    def update(self, item_id: int, fields: dict[str, Any]) -> None:
        """Write only the supplied fields; attributes are merged, not replaced."""
        columns, attributes = split_fields(fields)
        try:
            with self._session_factory() as session:
                item = session.get(InventoryItem, item_id)
                if item is None:
                    raise StoreError(
                        f"Item {item_id} no longer exists", details={"item_id": item_id}
                    )
                for key, value in columns.items():
                    setattr(item, key, value)
                if attributes:
                    item.attributes = {**(item.attributes or {}), **attributes}
                session.commit()
        except SQLAlchemyError as e:
            raise StoreError(f"Could not update item {item_id}: {e}") from e

    @staticmethod
    def _first(session: Session, criterion) -> ItemRef | None:
        row = session.execute(
            select(InventoryItem.id, InventoryItem.sku, InventoryItem.name)
            .where(criterion)
            .order_by(InventoryItem.id)
            .limit(1)
        ).first()
        if row is None:
            return None
        return ItemRef(id=row.id, sku=row.sku, name=row.name)
