"""Payload filter evaluation and FilterSpec merging.

Two filter shapes cross the store boundary:

- flat filters: ``{"content_uuid": "a"}`` or ``{"content_uuid": ["a", "b"]}``
  (AND across keys, a list is an OR on that key)
- FilterSpec: ``{"must": {...}, "any": {...}, "must_not": {...}}``

When a payload field holds a list, a scalar condition means "contains".
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Union

from models.rag import FilterSpec

FilterLike = Union[FilterSpec, Mapping[str, Any]]

SPEC_GROUPS = ("must", "any", "must_not")


class FilterSource(Protocol):
    def get_filter_spec(self) -> Optional[FilterLike]:
        ...


class StaticFilterSource:
    """Filter source returning a fixed spec, configured by the host."""

    def __init__(self, spec: Optional[FilterLike] = None):
        self._spec = coerce_filter_spec(spec) if spec is not None else None

    def get_filter_spec(self) -> Optional[FilterSpec]:
        return self._spec


def _values_equal(actual: Any, expected: Any) -> bool:
    # bool is an int subclass; True must not match 1
    if isinstance(actual, bool) or isinstance(expected, bool):
        return isinstance(actual, bool) and isinstance(expected, bool) and actual == expected
    return actual == expected


def _is_list(value: Any) -> bool:
    return isinstance(value, (list, tuple, set))


def is_filter_spec(value: Any) -> bool:
    """Whether a mapping uses FilterSpec groups rather than flat keys."""
    if isinstance(value, FilterSpec):
        return True
    return isinstance(value, Mapping) and bool(value) and all(k in SPEC_GROUPS for k in value)


def coerce_filter_spec(value: Optional[FilterLike]) -> Optional[FilterSpec]:
    """Turn a FilterSpec, a spec-shaped dict or a flat dict into a FilterSpec."""
    if value is None:
        return None
    if isinstance(value, FilterSpec):
        return value
    if not isinstance(value, Mapping):
        raise TypeError(f"Unsupported filter type: {type(value).__name__}")
    if is_filter_spec(value):
        return FilterSpec(
            must=dict(value.get("must") or {}),
            any=dict(value.get("any") or {}),
            must_not=dict(value.get("must_not") or {}),
        )
    return FilterSpec(must=dict(value))


def matches_value(actual: Any, expected: Any) -> bool:
    if _is_list(actual):
        return any(_values_equal(item, expected) for item in actual)
    return _values_equal(actual, expected)


def matches_field(payload: Mapping[str, Any], key: str, expected: Any) -> bool:
    key = str(key).strip()
    if not key:
        return False

    actual = payload.get(key)

    if _is_list(expected):
        return any(matches_value(actual, v) for v in expected)

    return matches_value(actual, expected)


def matches_flat_filter(payload: Mapping[str, Any], flt: Mapping[str, Any]) -> bool:
    return all(matches_field(payload, key, value) for key, value in flt.items())


def matches_filter_spec(payload: Mapping[str, Any], spec: FilterLike) -> bool:
    spec = coerce_filter_spec(spec)

    if spec.must and not all(matches_field(payload, k, v) for k, v in spec.must.items()):
        return False

    if spec.must_not and any(matches_field(payload, k, v) for k, v in spec.must_not.items()):
        return False

    # Empty "any" is no constraint, not "match nothing"
    if spec.any and not any(matches_field(payload, k, v) for k, v in spec.any.items()):
        return False

    return True


def matches_filter(payload: Mapping[str, Any], flt: Optional[FilterLike]) -> bool:
    """Dispatch on the filter shape; ``None`` matches everything."""
    if flt is None:
        return True
    if is_filter_spec(flt):
        return matches_filter_spec(payload, flt)
    return matches_flat_filter(payload, flt)


def _unique(values: Iterable[Any]) -> List[Any]:
    out: List[Any] = []
    for v in values:
        if not any(_values_equal(v, seen) and type(v) is type(seen) for seen in out):
            out.append(v)
    return out


def merge_field_constraint(a: Any, b: Any) -> Any:
    if not _is_list(a) and not _is_list(b):
        return a if (_values_equal(a, b) and type(a) is type(b)) else [a, b]

    aa = list(a) if _is_list(a) else [a]
    bb = list(b) if _is_list(b) else [b]
    return _unique(aa + bb)


def merge_filter_group(a: Optional[Mapping[str, Any]], b: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    out: Dict[str, Any] = dict(a or {})
    for key, value in (b or {}).items():
        if key not in out:
            out[key] = value
        else:
            out[key] = merge_field_constraint(out[key], value)
    return out


def merge_filter_specs(specs: Iterable[Optional[FilterLike]]) -> Optional[FilterSpec]:
    """Merge filter fragments; ``None`` when no fragment contributed anything."""
    merged: Optional[FilterSpec] = None

    for raw in specs:
        spec = coerce_filter_spec(raw)
        if spec is None:
            continue
        if merged is None:
            merged = FilterSpec()
        merged = FilterSpec(
            must=merge_filter_group(merged.must, spec.must),
            any=merge_filter_group(merged.any, spec.any),
            must_not=merge_filter_group(merged.must_not, spec.must_not),
        )

    return merged


__all__ = [
    "FilterLike",
    "FilterSource",
    "StaticFilterSource",
    "coerce_filter_spec",
    "is_filter_spec",
    "matches_field",
    "matches_filter",
    "matches_filter_spec",
    "matches_flat_filter",
    "merge_filter_specs",
]
