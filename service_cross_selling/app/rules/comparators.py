"""
Value comparators used by the rule engine.

All comparators are total: unsupported type combinations and absent
values compare as ``False`` instead of raising.
"""

import math
from typing import Any, Optional

from .fields import MISSING, resolve_field

DIMENSION_KEYS = ("width", "height", "length")

# matchesDimensions: every specified dimension within 5% of the requested value
MATCHES_DIMENSIONS_TOLERANCE = 0.05
# sameDimensions: any shared dimension within 10% of the larger value
COMPATIBLE_DIMENSIONS_TOLERANCE = 0.10


def _is_array(value: Any) -> bool:
    return isinstance(value, (list, tuple))


def _same(a: Any, b: Any) -> bool:
    """Strict equality: booleans never equal numbers."""
    if isinstance(a, bool) != isinstance(b, bool):
        return False
    return a == b


def _member(value: Any, values: Any) -> bool:
    return any(_same(value, item) for item in values)


def compare_equals(field_value: Any, target_value: Any) -> bool:
    """Array-aware strict equality.

    Two arrays are equal when they have the same length and every element
    of the field array appears in the target array. An array on one side
    and a scalar on the other is a membership test.
    """
    if field_value is MISSING or target_value is MISSING:
        return False

    if _is_array(field_value) and _is_array(target_value):
        return len(field_value) == len(target_value) and all(_member(v, target_value) for v in field_value)

    if _is_array(field_value):
        return _member(target_value, field_value)

    if _is_array(target_value):
        return _member(field_value, target_value)

    return _same(field_value, target_value)


def compare_contains(field_value: Any, target_value: Any) -> bool:
    """Membership for array fields, case-insensitive substring for strings."""
    if field_value is None or field_value is MISSING:
        return False

    if _is_array(field_value):
        if _is_array(target_value):
            return any(_member(v, field_value) for v in target_value)
        return _member(target_value, field_value)

    if isinstance(field_value, str) and isinstance(target_value, str):
        return target_value.casefold() in field_value.casefold()

    return False


def to_number(value: Any) -> Optional[float]:
    """Coerce a scalar to a float, or ``None`` if it is not numeric."""
    if isinstance(value, bool):
        return float(value)

    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
    else:
        return None

    return None if math.isnan(number) else number


def compare_numeric(operator: str, field_value: Any, target_value: Any) -> bool:
    """Ordered comparison; ``False`` when either side is not numeric."""
    left = to_number(field_value)
    right = to_number(target_value)
    if left is None or right is None:
        return False

    if operator == "greaterThan":
        return left > right
    if operator == "lessThan":
        return left < right
    if operator == "greaterThanOrEqual":
        return left >= right
    if operator == "lessThanOrEqual":
        return left <= right
    raise ValueError(f"Not a numeric operator: {operator}")


def _dimension(record: Any, key: str) -> Optional[float]:
    value = resolve_field(record, key)
    if value is MISSING:
        return None
    return to_number(value)


def matches_dimensions(dimensions: Any, spec: Any, tolerance: float = MATCHES_DIMENSIONS_TOLERANCE) -> bool:
    """Check the product dimensions against a ``{width, height, length}`` spec.

    Only dimensions present on both sides are compared, and each of them
    must lie within ``tolerance`` of the requested value.
    """
    if dimensions is None or dimensions is MISSING or spec is None:
        return False
    if not isinstance(spec, dict):
        return False

    for key in DIMENSION_KEYS:
        wanted = to_number(spec[key]) if spec.get(key) is not None else None
        actual = _dimension(dimensions, key)
        if wanted is None or actual is None:
            continue
        if abs(actual - wanted) > wanted * tolerance:
            return False

    return True


def has_compatible_dimensions(first: Any, second: Any, tolerance: float = COMPATIBLE_DIMENSIONS_TOLERANCE) -> bool:
    """True if at least one dimension present on both is within ``tolerance`` of the larger value."""
    if first is None or first is MISSING or second is None or second is MISSING:
        return False

    for key in DIMENSION_KEYS:
        a = _dimension(first, key)
        b = _dimension(second, key)
        if a is None or b is None:
            continue
        if abs(a - b) <= max(a, b) * tolerance:
            return True

    return False
