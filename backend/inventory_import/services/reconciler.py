"""Decide what a candidate record does to the inventory under a given mode."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Protocol

from inventory_import.services.import_models import (
    CandidateRecord,
    ItemRef,
    ReconciliationMode,
)

SKU_REQUIRED_MESSAGE = "SKU required for update mode"


class ItemLookup(Protocol):
    def lookup(self, sku: Optional[str] = None, name: Optional[str] = None) -> Optional[ItemRef]:
        """Return the item with this exact SKU, else the one with this exact name."""
        ...


class DecisionAction(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    ERROR = "error"


@dataclass(frozen=True)
class Decision:
    action: DecisionAction
    item_id: Any = None
    message: str | None = None

    @classmethod
    def insert(cls) -> "Decision":
        return cls(DecisionAction.INSERT)

    @classmethod
    def update(cls, item_id: Any) -> "Decision":
        return cls(DecisionAction.UPDATE, item_id=item_id)

    @classmethod
    def error(cls, message: str) -> "Decision":
        return cls(DecisionAction.ERROR, message=message)


def reconcile(
    record: CandidateRecord,
    mode: ReconciliationMode,
    lookup: ItemLookup,
) -> Decision:
    """Pick insert, update or error for one record.

    Makes at most one store lookup and writes nothing; the caller applies the
    decision. Exceptions raised by the lookup propagate to the caller.
    """
    if mode is ReconciliationMode.CREATE:
        # Duplicates are allowed here; use upsert to merge on SKU or name.
        return Decision.insert()

    if mode is ReconciliationMode.UPDATE_BY_SKU:
        sku = record.sku
        if not sku:
            return Decision.error(SKU_REQUIRED_MESSAGE)
        existing = lookup.lookup(sku=sku)
        if existing is None:
            return Decision.error(f'SKU "{sku}" not found for update')
        return Decision.update(existing.id)

    if mode is ReconciliationMode.UPSERT:
        existing = lookup.lookup(sku=record.sku, name=record.name)
        if existing is None:
            return Decision.insert()
        return Decision.update(existing.id)

    raise ValueError(f"Unsupported reconciliation mode: {mode!r}")
