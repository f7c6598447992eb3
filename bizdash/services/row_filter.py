"""Period and column-value filters applied before layout evaluation."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from bizdash.models.entities import Cadence
from bizdash.services.dataset_ingestion import TypedRow
from bizdash.services.periods import period_key_from_value

_MISSING = object()


@dataclass(slots=True)
class PeriodFilterResult:
    rows: list[Mapping[str, Any]] = field(default_factory=list)
    parse_failures: int = 0


def filter_rows_by_period(
    rows: Iterable[Mapping[str, Any]],
    date_column_key: str,
    target_period_key: str,
    cadence: Cadence | str,
) -> PeriodFilterResult:
    result = PeriodFilterResult()
    for row in rows:
        key = period_key_from_value(row.get(date_column_key), cadence)
        if key is None:
            result.parse_failures += 1
        elif key == target_period_key:
            result.rows.append(row)
    return result


def _strict_equals(left: object, right: object) -> bool:
    # bool is an int subclass; True must not match 1.
    if isinstance(left, bool) != isinstance(right, bool):
        return False
    if isinstance(left, str) != isinstance(right, str):
        return False
    return left == right


def row_matches_filters(row: Mapping[str, Any], filters: Mapping[str, Any] | None) -> bool:
    """AND of every non-None filter; list/tuple/set values mean "any of"."""

    if not filters:
        return True
    for key, expected in filters.items():
        if expected is None:
            continue
        actual = row.get(key, _MISSING)
        if actual is _MISSING:
            return False
        if isinstance(expected, (list, tuple, set, frozenset)):
            if not any(_strict_equals(actual, option) for option in expected):
                return False
        elif not _strict_equals(actual, expected):
            return False
    return True


def filter_rows_by_column_values(
    rows: Iterable[Mapping[str, Any]],
    filters: Mapping[str, Any] | None,
) -> list[Mapping[str, Any]]:
    return [row for row in rows if row_matches_filters(row, filters)]


def filter_typed_rows(rows: Iterable[TypedRow], filters: Mapping[str, Any] | None) -> list[TypedRow]:
    return [row for row in rows if row_matches_filters(row.values, filters)]
