"""Shared helpers for shaping import job responses."""
from __future__ import annotations

from typing import Iterable

from inventory_import.api.schemas.job import ImportErrorRead, ImportJobStatus
from inventory_import.services.import_models import ImportErrorEntry
from inventory_import.services.progress_tracker import ProgressSnapshot


def serialize_snapshot(snap: ProgressSnapshot) -> ImportJobStatus:
    return ImportJobStatus.model_validate(snap.to_dict())


def serialize_errors(errors: Iterable[ImportErrorEntry]) -> list[ImportErrorRead]:
    return [ImportErrorRead(row=entry.row, message=entry.message) for entry in errors]


def sse_frame(status: ImportJobStatus) -> str:
    return f"data: {status.model_dump_json()}\n\n"
