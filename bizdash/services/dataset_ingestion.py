"""One-pass typed ingestion of raw dataset rows.

Every raw row is visited once: its period key is computed at the report
cadence and each numeric-looking cell is coerced to a float. Downstream
filtering and layout evaluation read the cached values instead of
re-parsing strings per formula.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from bizdash.models.entities import Cadence
from bizdash.services.expressions import parse_numeric_value
from bizdash.services.periods import period_key_from_value, period_options
from bizdash.services.report_definition import ColumnDataType

logger = logging.getLogger(__name__)

_CURRENCY_SYMBOLS = frozenset("$£€¥")


@dataclass(slots=True)
class TypedRow:
    values: Mapping[str, Any]
    numbers: dict[str, float]
    period_key: str | None


@dataclass(slots=True)
class IngestedDataset:
    rows: list[TypedRow]
    column_types: dict[str, ColumnDataType]
    cadence: Cadence
    date_column_key: str
    parse_failures: int = 0
    _by_period: dict[str, list[TypedRow]] = field(default_factory=dict, repr=False)

    def __post_init__(self) -> None:
        for row in self.rows:
            if row.period_key is not None:
                self._by_period.setdefault(row.period_key, []).append(row)

    def rows_for_period(self, period_key: str) -> list[TypedRow]:
        return list(self._by_period.get(period_key, ()))

    def available_periods(self) -> list[dict[str, str]]:
        return period_options(self._by_period.keys(), self.cadence)


def classify_value(value: object) -> ColumnDataType | None:
    """Data type suggested by a single cell; None for empty cells."""

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, date):
        return ColumnDataType.DATE
    if isinstance(value, (int, float)):
        return ColumnDataType.NUMBER
    if not isinstance(value, str):
        return ColumnDataType.TEXT

    text = value.strip()
    if not text:
        return None
    if parse_numeric_value(text) is not None:
        if text.endswith("%"):
            return ColumnDataType.PERCENT
        if any(symbol in text for symbol in _CURRENCY_SYMBOLS):
            return ColumnDataType.CURRENCY
        return ColumnDataType.NUMBER
    if period_key_from_value(text, Cadence.DAILY) is not None:
        return ColumnDataType.DATE
    return ColumnDataType.TEXT


def _merge_types(seen: set[ColumnDataType]) -> ColumnDataType:
    if not seen:
        return ColumnDataType.TEXT
    if len(seen) == 1:
        return next(iter(seen))
    numeric = {ColumnDataType.NUMBER, ColumnDataType.CURRENCY, ColumnDataType.PERCENT}
    if seen <= numeric:
        # Mixed plain and decorated numbers: keep the decoration.
        for candidate in (ColumnDataType.CURRENCY, ColumnDataType.PERCENT):
            if candidate in seen:
                return candidate
    return ColumnDataType.TEXT


def ingest_rows(
    raw_rows: Iterable[object],
    date_column_key: str,
    cadence: Cadence,
) -> IngestedDataset:
    """Classify columns, coerce numbers and bucket every row by period.

    Rows that are not mappings are treated as empty rows. A row whose date
    cell cannot be bucketed counts as one parse failure.
    """

    rows: list[TypedRow] = []
    seen_types: dict[str, set[ColumnDataType]] = {}
    parse_failures = 0

    for raw in raw_rows:
        values: Mapping[str, Any] = raw if isinstance(raw, Mapping) else {}
        numbers: dict[str, float] = {}
        for key, value in values.items():
            kind = classify_value(value)
            if kind is None:
                continue
            seen_types.setdefault(key, set()).add(kind)
            number = parse_numeric_value(value)
            if number is not None:
                numbers[key] = number

        period_key = period_key_from_value(values.get(date_column_key), cadence)
        if period_key is None:
            parse_failures += 1
        rows.append(TypedRow(values=values, numbers=numbers, period_key=period_key))

    column_types = {key: _merge_types(kinds) for key, kinds in seen_types.items()}
    if parse_failures:
        logger.debug(
            "Ingested %s rows with %s unparseable %r values", len(rows), parse_failures, date_column_key
        )
    return IngestedDataset(
        rows=rows,
        column_types=column_types,
        cadence=cadence,
        date_column_key=date_column_key,
        parse_failures=parse_failures,
    )
