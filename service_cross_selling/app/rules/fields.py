"""
Dotted field-path resolution over catalog records.

Rules address product attributes with camelCase paths such as
``dimensions.height``, ``manufacturer.name`` or ``customFields.shelfSystem``.
``resolve_field`` walks such a path over pydantic models, mappings, lists and
plain objects and returns ``MISSING`` instead of raising when any step is
absent.
"""

from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Dict, List, Mapping

from pydantic import BaseModel


class _Missing:
    """Marker for a field path that does not resolve to a value."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "MISSING"


MISSING = _Missing()


@lru_cache(maxsize=None)
def _model_field_names(model_cls: type) -> Dict[str, str]:
    names = {}
    for name, info in model_cls.model_fields.items():
        names[name] = name
        if info.alias:
            names[info.alias] = name
    return names


def _step(value: Any, part: str) -> Any:
    if isinstance(value, BaseModel):
        attr = _model_field_names(type(value)).get(part)
        if attr is not None:
            return getattr(value, attr)
        extra = value.model_extra or {}
        return extra.get(part, MISSING)

    if isinstance(value, Mapping):
        return value.get(part, MISSING)

    if isinstance(value, (list, tuple)):
        if part.isdigit() and int(part) < len(value):
            return value[int(part)]
        return MISSING

    if isinstance(value, (str, int, float, bool)):
        return MISSING

    return getattr(value, part, MISSING)


def resolve_field(record: Any, path: str) -> Any:
    """Resolve ``path`` on ``record``; ``None`` anywhere along the way is absent."""
    value = record
    for part in path.split("."):
        if value is None or value is MISSING:
            return MISSING
        value = _step(value, part)

    if value is None:
        return MISSING
    return value


@dataclass(frozen=True)
class FieldDescriptor:
    field: str
    label: str
    description: str

    def to_dict(self) -> Dict[str, str]:
        return {"field": self.field, "label": self.label, "description": self.description}


STANDARD_FIELDS: List[FieldDescriptor] = [
    FieldDescriptor("name", "Product Name", "The product name"),
    FieldDescriptor("productNumber", "Product Number", "The unique product number/SKU"),
    FieldDescriptor("manufacturerNumber", "Manufacturer Number", "Manufacturer's product number"),
    FieldDescriptor("ean", "EAN", "European Article Number / Barcode"),
    FieldDescriptor("stock", "Stock", "Current stock level"),
    FieldDescriptor("available", "Available", "Product availability status"),
    FieldDescriptor("price", "Price", "Product price"),
    FieldDescriptor("weight", "Weight", "Product weight"),
    FieldDescriptor("dimensions.width", "Width", "Product width dimension"),
    FieldDescriptor("dimensions.height", "Height", "Product height dimension"),
    FieldDescriptor("dimensions.length", "Length", "Product length/depth dimension"),
    FieldDescriptor("categoryNames", "Categories", "Product categories (array)"),
    FieldDescriptor("manufacturer.name", "Manufacturer Name", "Name of the manufacturer"),
]
