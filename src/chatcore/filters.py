"""Predicate evaluation for record-store queries.

A filter is a dict. Plain ``field: value`` pairs test equality; a value that
is itself a dict of operators (``eq``, ``not``, ``in``, ``not_in``, ``gt``,
``gte``, ``lt``, ``lte``) applies each comparison; ``AND`` and ``OR`` keys
hold lists of nested filters. Keys at the same level are combined with AND.
"""

from __future__ import annotations

from typing import Any, Iterable, List, Mapping, Sequence, Tuple

from .errors import ValidationError

OrderBy = Tuple[str, str]

_OPERATORS = {"eq", "not", "in", "not_in", "gt", "gte", "lt", "lte"}
_MISSING = object()


def _compare(op: str, actual: Any, expected: Any) -> bool:
    if op == "eq":
        return actual == expected
    if op == "not":
        return actual != expected
    if op == "in":
        return actual in expected
    if op == "not_in":
        return actual not in expected
    if actual is None or actual is _MISSING:
        return False
    try:
        if op == "gt":
            return actual > expected
        if op == "gte":
            return actual >= expected
        if op == "lt":
            return actual < expected
        return actual <= expected
    except TypeError:
        return False


def _matches_field(record: Mapping[str, Any], name: str, condition: Any) -> bool:
    actual = record.get(name, _MISSING)
    if isinstance(condition, dict):
        unknown = set(condition) - _OPERATORS
        if unknown:
            raise ValidationError(f"unsupported filter operator: {sorted(unknown)[0]}")
        if actual is _MISSING:
            actual = None
        return all(_compare(op, actual, expected) for op, expected in condition.items())
    if actual is _MISSING:
        actual = None
    return actual == condition


def matches(record: Mapping[str, Any], where: Mapping[str, Any] | None) -> bool:
    if not where:
        return True
    for key, condition in where.items():
        if key == "AND":
            if not all(matches(record, sub) for sub in _as_filters(condition)):
                return False
        elif key == "OR":
            if not any(matches(record, sub) for sub in _as_filters(condition)):
                return False
        elif not _matches_field(record, key, condition):
            return False
    return True


def _as_filters(value: Any) -> Sequence[Mapping[str, Any]]:
    if not isinstance(value, (list, tuple)) or any(not isinstance(v, dict) for v in value):
        raise ValidationError("AND/OR must hold a list of filters")
    return value


def _sort_key(name: str):
    def key(record: Mapping[str, Any]):
        value = record.get(name)
        return (value is not None, value if value is not None else 0)

    return key


def apply_query(
    records: Iterable[Mapping[str, Any]],
    where: Mapping[str, Any] | None = None,
    *,
    order_by: OrderBy | None = None,
    limit: int | None = None,
) -> List[dict]:
    """Filter, order and truncate ``records``; ties keep their input order."""

    selected = [dict(record) for record in records if matches(record, where)]
    if order_by is not None:
        name, direction = order_by
        if direction not in ("asc", "desc"):
            raise ValidationError("order_by direction must be 'asc' or 'desc'")
        selected.sort(key=_sort_key(name), reverse=direction == "desc")
    if limit is not None:
        if limit < 0:
            raise ValidationError("limit must be non-negative")
        selected = selected[:limit]
    return selected
