"""Plain data types shared by the parser, reconciler and controller."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ReconciliationMode(str, Enum):
    CREATE = "create"
    UPDATE_BY_SKU = "update_by_sku"
    UPSERT = "upsert"


class ImportStatus(str, Enum):
    IDLE = "idle"
    PREPARING = "preparing"
    PROCESSING = "processing"
    PAUSED = "paused"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (ImportStatus.COMPLETED, ImportStatus.ERROR)

    @property
    def is_running(self) -> bool:
        return self in (ImportStatus.PREPARING, ImportStatus.PROCESSING, ImportStatus.PAUSED)


CANCELLED_MESSAGE = "cancelled by user"


@dataclass(frozen=True)
class CandidateRecord:
    """One parsed data row; row_number is the 1-based line in the source file."""

    row_number: int
    fields: dict[str, Any]
    error: str | None = None

    @property
    def is_valid(self) -> bool:
        return self.error is None

    @property
    def sku(self) -> str | None:
        return self.fields.get("sku") or None

    @property
    def name(self) -> str | None:
        return self.fields.get("name") or None


@dataclass(frozen=True)
class ImportErrorEntry:
    row: int
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {"row": self.row, "message": self.message}


@dataclass(frozen=True)
class ItemRef:
    id: Any
    sku: str | None = None
    name: str | None = None


@dataclass
class ImportJob:
    """Mutable state of one import run. Only ImportController writes to it."""

    status: ImportStatus = ImportStatus.IDLE
    mode: ReconciliationMode | None = None
    total: int = 0
    current: int = 0
    success_count: int = 0
    updated_count: int = 0
    error_count: int = 0
    errors: list[ImportErrorEntry] = field(default_factory=list)
    message: str | None = None

    def record_error(self, row: int, message: str) -> None:
        self.errors.append(ImportErrorEntry(row=row, message=message))
        self.error_count += 1
