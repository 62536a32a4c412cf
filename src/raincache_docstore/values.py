"""Value kinds and the upsert merge rule."""

from collections.abc import Iterable, Mapping
from enum import Enum
from typing import Any


class ValueKind(str, Enum):
    """Shape of a stored value, as far as merging is concerned."""
    ABSENT = "absent"
    SCALAR = "scalar"
    STRUCTURED = "structured"


def classify(value: Any) -> ValueKind:
    """
    Classify a stored value.

    Mappings are structured. ``None`` is absent. Everything else, including
    JSON arrays, is treated as an opaque scalar.
    """
    if value is None:
        return ValueKind.ABSENT
    if isinstance(value, Mapping):
        return ValueKind.STRUCTURED
    return ValueKind.SCALAR


def merge_value(existing: Any, patch: Any) -> Any:
    """
    Combine an existing value with an upsert patch.

    Absent and scalar values are replaced by the patch. Structured values
    are shallow-merged: fields in ``patch`` overwrite, other fields stay.
    A non-mapping patch replaces a structured value outright.
    """
    kind = classify(existing)
    if kind is ValueKind.ABSENT or kind is ValueKind.SCALAR:
        return patch
    if kind is ValueKind.STRUCTURED:
        if classify(patch) is not ValueKind.STRUCTURED:
            return patch
        merged = dict(existing)
        merged.update(patch)
        return merged
    raise ValueError(f"Unhandled value kind: {kind}")


def values_equal(left: Any, right: Any) -> bool:
    """
    Compare two stored values the way a JSON document store does.

    Booleans never equal numbers (``True != 1``); mappings and arrays are
    compared element by element with the same rule.
    """
    if isinstance(left, bool) or isinstance(right, bool):
        return type(left) is type(right) and left == right
    if isinstance(left, Mapping) and isinstance(right, Mapping):
        return left.keys() == right.keys() and all(values_equal(left[field], right[field]) for field in left)
    if isinstance(left, (list, tuple)) and isinstance(right, (list, tuple)):
        return len(left) == len(right) and all(values_equal(a, b) for a, b in zip(left, right))
    return left == right


def contains_value(values: Iterable[Any], value: Any) -> bool:
    """``value in values`` using :func:`values_equal`."""
    return any(values_equal(item, value) for item in values)
