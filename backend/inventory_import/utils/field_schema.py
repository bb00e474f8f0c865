"""Canonical inventory field table used to coerce CSV cells into typed values."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum


class FieldKind(str, Enum):
    TEXT = "text"
    INTEGER = "integer"
    DECIMAL = "decimal"
    BOOLEAN = "boolean"
    TAG_LIST = "tag_list"


class FieldTarget(str, Enum):
    """Where the SQL item store keeps a field."""

    COLUMN = "column"
    ATTRIBUTE = "attribute"


@dataclass(frozen=True)
class FieldSpec:
    name: str
    kind: FieldKind = FieldKind.TEXT
    target: FieldTarget = FieldTarget.COLUMN
    # Identity fields; a record needs at least one of them
    required: bool = False
    non_negative: bool = False
    label: str | None = None

    @property
    def display_name(self) -> str:
        return self.label or self.name.replace("_", " ").capitalize()

    @property
    def is_numeric(self) -> bool:
        return self.kind in (FieldKind.INTEGER, FieldKind.DECIMAL)


# Tags share a row with comma-separated cells, so they use their own delimiter.
TAG_DELIMITER = ";"

_C = FieldTarget.COLUMN
_A = FieldTarget.ATTRIBUTE

_SPECS = [
    # identity
    FieldSpec("name", required=True),
    FieldSpec("sku", required=True, label="SKU"),
    # classification and placement
    FieldSpec("description"),
    FieldSpec("category"),
    FieldSpec("subcategory"),
    FieldSpec("supplier"),
    FieldSpec("vendor_id"),
    FieldSpec("location"),
    FieldSpec("unit"),
    FieldSpec("price_group", target=_A),
    FieldSpec("product_category", target=_A),
    # stock and pricing
    FieldSpec("quantity", FieldKind.INTEGER, non_negative=True),
    FieldSpec("reorder_point", FieldKind.INTEGER, non_negative=True),
    FieldSpec("cost_price", FieldKind.DECIMAL, non_negative=True),
    FieldSpec("selling_price", FieldKind.DECIMAL, non_negative=True),
    FieldSpec("unit_price", FieldKind.DECIMAL, non_negative=True),
    FieldSpec("price_per_yard", FieldKind.DECIMAL, _A),
    FieldSpec("price_per_meter", FieldKind.DECIMAL, _A),
    FieldSpec("price_per_unit", FieldKind.DECIMAL, _A),
    FieldSpec("markup_percentage", FieldKind.DECIMAL, _A),
    # fabric
    FieldSpec("width_cm", FieldKind.DECIMAL, _A),
    FieldSpec("fabric_width", FieldKind.DECIMAL, _A),
    FieldSpec("pattern_repeat_horizontal", FieldKind.DECIMAL, _A),
    FieldSpec("pattern_repeat_vertical", FieldKind.DECIMAL, _A),
    FieldSpec("fullness_ratio", FieldKind.DECIMAL, _A),
    FieldSpec("fabric_composition", target=_A),
    FieldSpec("fabric_care_instructions", target=_A),
    FieldSpec("fabric_origin", target=_A),
    FieldSpec("fabric_grade", target=_A),
    FieldSpec("fabric_collection", target=_A),
    FieldSpec("is_flame_retardant", FieldKind.BOOLEAN, _A),
    # hardware
    FieldSpec("hardware_weight", FieldKind.DECIMAL, _A),
    FieldSpec("hardware_load_capacity", FieldKind.DECIMAL, _A),
    FieldSpec("hardware_finish", target=_A),
    FieldSpec("hardware_material", target=_A),
    FieldSpec("hardware_dimensions", target=_A),
    FieldSpec("hardware_mounting_type", target=_A),
    # dimensions, look and services
    FieldSpec("width", FieldKind.DECIMAL, _A),
    FieldSpec("height", FieldKind.DECIMAL, _A),
    FieldSpec("depth", FieldKind.DECIMAL, _A),
    FieldSpec("weight", FieldKind.DECIMAL, _A),
    FieldSpec("color", target=_A),
    FieldSpec("finish", target=_A),
    FieldSpec("collection_name", target=_A),
    FieldSpec("image_url", target=_A),
    FieldSpec("labor_hours", FieldKind.DECIMAL, _A),
    FieldSpec("service_rate", FieldKind.DECIMAL, _A),
    # flags and labels
    FieldSpec("active", FieldKind.BOOLEAN),
    FieldSpec("tags", FieldKind.TAG_LIST),
]

FIELD_SCHEMA: dict[str, FieldSpec] = {spec.name: spec for spec in _SPECS}

IDENTITY_FIELDS = tuple(spec.name for spec in _SPECS if spec.required)

# Alternative header spellings seen in supplier sheets and older exports.
HEADER_ALIASES: dict[str, str] = {
    "product_name": "name",
    "item_name": "name",
    "title": "name",
    "product_code": "sku",
    "item_code": "sku",
    "part_number": "sku",
    "sub_category": "subcategory",
    "desc": "description",
    "qty": "quantity",
    "stock": "quantity",
    "stock_quantity": "quantity",
    "on_hand": "quantity",
    "cost": "cost_price",
    "purchase_price": "cost_price",
    "sell_price": "selling_price",
    "retail_price": "selling_price",
    "uom": "unit",
    "unit_of_measure": "unit",
    "labels": "tags",
}

_SEPARATORS = re.compile(r"[\s\-]+")


def normalize_header(header: str) -> str:
    """Lower-case a header and fold spaces/dashes into underscores."""
    return _SEPARATORS.sub("_", header.strip().lower()).strip("_")


def resolve_header(header: str) -> FieldSpec | None:
    """Return the field spec a CSV header maps to, or None for unknown columns."""
    key = normalize_header(header)
    key = HEADER_ALIASES.get(key, key)
    return FIELD_SCHEMA.get(key)


def fields_for(target: FieldTarget) -> frozenset[str]:
    return frozenset(name for name, spec in FIELD_SCHEMA.items() if spec.target is target)
