"""
CSV parsing for inventory imports.

Two stages:
  - parse()         raw text -> header cells + data rows (with source line numbers)
  - to_candidate()  one data row -> CandidateRecord typed by the field schema

The dialect is simple: one record per line, cells split on every
comma, double quotes stripped, no escaping of embedded delimiters.
"""

from __future__ import annotations

import logging
import math
import re
from typing import Any, NamedTuple, Sequence

from inventory_import.core.exceptions import MalformedInputError
from inventory_import.services.import_models import CandidateRecord
from inventory_import.utils.field_schema import (
    IDENTITY_FIELDS,
    TAG_DELIMITER,
    FieldKind,
    FieldSpec,
    resolve_header,
)

logger = logging.getLogger(__name__)

MISSING_IDENTITY_MESSAGE = "Missing name or sku"

_LINE_BREAK = re.compile(r"\r?\n")


class ParsedCsv(NamedTuple):
    headers: list[str]
    rows: list[list[str]]
    line_numbers: list[int]


def parse(raw: str | bytes) -> ParsedCsv:
    """Split CSV text into headers and data rows.

    Blank lines are skipped but still advance the line counter, so every row
    keeps the line number the user sees in their spreadsheet.

    Raises:
        MalformedInputError: fewer than two non-blank lines are present.
    """
    text = _decode(raw)
    lines = [
        (number, line)
        for number, line in enumerate(_LINE_BREAK.split(text), start=1)
        if line.strip()
    ]
    if len(lines) < 2:
        raise MalformedInputError(
            "CSV must have a header row and at least one data row",
            details={"non_blank_lines": len(lines)},
        )

    headers = _split_cells(lines[0][1])
    rows = [_split_cells(line) for _, line in lines[1:]]
    line_numbers = [number for number, _ in lines[1:]]
    return ParsedCsv(headers=headers, rows=rows, line_numbers=line_numbers)


def to_candidate(
    headers: Sequence[str],
    cells: Sequence[str],
    row_number: int,
) -> CandidateRecord:
    """Apply the canonical field schema to one data row."""
    return _build_record(_resolve_headers(headers), cells, row_number)


def parse_candidates(raw: str | bytes) -> list[CandidateRecord]:
    """Parse a whole file into candidate records, in source order.

    Rows whose cells are all empty (e.g. ``,,,``) are skipped.
    """
    parsed = parse(raw)
    specs = _resolve_headers(parsed.headers)

    unknown = [h for h, spec in zip(parsed.headers, specs) if spec is None and h]
    if unknown:
        logger.debug(f"Ignoring unrecognised CSV columns: {', '.join(unknown)}")

    records: list[CandidateRecord] = []
    for cells, line_number in zip(parsed.rows, parsed.line_numbers):
        if not any(cells):
            continue
        records.append(_build_record(specs, cells, line_number))
    return records


def _decode(raw: str | bytes) -> str:
    if isinstance(raw, bytes):
        # Strip UTF-8 BOM
        if raw.startswith(b"\xef\xbb\xbf"):
            raw = raw[3:]
        return raw.decode("utf-8", errors="replace")
    if raw.startswith("\ufeff"):
        return raw[1:]
    return raw


def _split_cells(line: str) -> list[str]:
    return [cell.replace('"', "").strip() for cell in line.split(",")]


def _resolve_headers(headers: Sequence[str]) -> list[FieldSpec | None]:
    return [resolve_header(header) for header in headers]


def _build_record(
    specs: Sequence[FieldSpec | None],
    cells: Sequence[str],
    row_number: int,
) -> CandidateRecord:
    fields: dict[str, Any] = {}
    problems: list[str] = []

    for spec, cell in zip(specs, cells):
        if spec is None or not cell:
            continue
        try:
            value = _coerce(spec, cell)
        except ValueError:
            continue
        if value is None:
            continue
        fields[spec.name] = value

    if not any(fields.get(name) for name in IDENTITY_FIELDS):
        problems.insert(0, MISSING_IDENTITY_MESSAGE)

    for spec in specs:
        if spec is None or not spec.non_negative:
            continue
        value = fields.get(spec.name)
        if value is not None and value < 0:
            message = f"{spec.display_name} must be a non-negative number"
            if message not in problems:
                problems.append(message)

    error = "; ".join(problems) if problems else None
    return CandidateRecord(row_number=row_number, fields=fields, error=error)


def _coerce(spec: FieldSpec, text: str) -> Any:
    """Convert a non-empty cell; raise ValueError when a number will not parse."""
    if spec.kind is FieldKind.INTEGER:
        number = _parse_number(text)
        if not number.is_integer():
            raise ValueError(f"{text!r} is not a whole number")
        return int(number)
    if spec.kind is FieldKind.DECIMAL:
        return _parse_number(text)
    if spec.kind is FieldKind.BOOLEAN:
        return text.lower() == "true"
    if spec.kind is FieldKind.TAG_LIST:
        tags = [tag.strip() for tag in text.split(TAG_DELIMITER)]
        return [tag for tag in tags if tag] or None
    return text


def _parse_number(text: str) -> float:
    number = float(text)
    if not math.isfinite(number):
        raise ValueError(f"{text!r} is not a finite number")
    return number
