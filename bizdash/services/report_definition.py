"""Typed report definition structures and save-time validation.

Definitions are stored as loosely-shaped JSON (camelCase keys, written by
the report builder UI). ``from_payload`` constructors coerce that JSON
into frozen dataclasses; unknown enum values fall back to safe defaults so
a half-edited definition still previews.
"""

from __future__ import annotations

import enum
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from typing import Any, TypeVar
from uuid import UUID

from bizdash.models.entities import Cadence, CompareMode, PivotDuplicatePolicy, ReportLayout
from bizdash.services.expressions import (
    ExpressionSyntaxError,
    parse_aggregate_expression,
    parse_bare_aggregate,
    parse_expression,
    parse_simple_aggregate_expression,
    referenced_names,
)


class ColumnType(str, enum.Enum):
    SOURCE = "source"
    FORMULA = "formula"


class ColumnDataType(str, enum.Enum):
    TEXT = "text"
    NUMBER = "number"
    CURRENCY = "currency"
    PERCENT = "percent"
    DATE = "date"


class MetricRowType(str, enum.Enum):
    SOURCE = "source"
    FORMULA = "formula"
    COMPARISON = "comparison"


class MetricFormat(str, enum.Enum):
    TEXT = "text"
    NUMBER = "number"
    CURRENCY = "currency"
    PERCENT = "percent"


class ComparePeriod(str, enum.Enum):
    MOM = "mom"
    QOQ = "qoq"
    YOY = "yoy"


class CompareOutput(str, enum.Enum):
    VALUE = "value"
    DELTA = "delta"
    PERCENT = "percent"


E = TypeVar("E", bound=enum.Enum)


def _enum_or(enum_cls: type[E], value: object, default: E | None) -> E | None:
    if value is None:
        return default
    try:
        return enum_cls(value.strip().lower() if isinstance(value, str) else value)
    except ValueError:
        return default


def _field(payload: Mapping[str, Any], camel: str, snake: str | None = None) -> Any:
    if camel in payload:
        return payload[camel]
    if snake is not None:
        return payload.get(snake)
    return None


def _optional_str(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _order(value: object, fallback: int) -> int:
    if isinstance(value, bool):
        return fallback
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return fallback


@dataclass(frozen=True, slots=True)
class ReportColumn:
    key: str
    label: str
    type: ColumnType
    data_type: ColumnDataType
    order: int
    source_column_key: str | None = None
    expression: str | None = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any], position: int = 0) -> ReportColumn:
        expression = _optional_str(_field(payload, "expression"))
        default_type = ColumnType.FORMULA if expression else ColumnType.SOURCE
        key = str(payload.get("key") or "")
        return cls(
            key=key,
            label=str(payload.get("label") or key),
            type=_enum_or(ColumnType, payload.get("type"), default_type),
            data_type=_enum_or(ColumnDataType, _field(payload, "dataType", "data_type"), ColumnDataType.TEXT),
            order=_order(payload.get("order"), position),
            source_column_key=_optional_str(_field(payload, "sourceColumnKey", "source_column_key")),
            expression=expression,
        )


@dataclass(frozen=True, slots=True)
class FormulaRowDefinition:
    key: str
    label: str
    column_formulas: dict[str, str]
    order: int

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any], position: int = 0) -> FormulaRowDefinition:
        raw_formulas = _field(payload, "columnFormulas", "column_formulas")
        formulas = (
            {str(column_key): str(formula) for column_key, formula in raw_formulas.items() if formula is not None}
            if isinstance(raw_formulas, Mapping)
            else {}
        )
        key = str(payload.get("key") or "")
        return cls(
            key=key,
            label=str(payload.get("label") or key),
            column_formulas=formulas,
            order=_order(payload.get("order"), position),
        )


@dataclass(frozen=True, slots=True)
class MetricRowDefinition:
    key: str
    label: str
    type: MetricRowType
    format: MetricFormat
    order: int
    source_column_key: str | None = None
    expression: str | None = None
    compare_row_key: str | None = None
    compare_period: ComparePeriod | None = None
    compare_output: CompareOutput | None = None

    @property
    def is_numeric(self) -> bool:
        return self.format is not MetricFormat.TEXT

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any], position: int = 0) -> MetricRowDefinition:
        key = str(payload.get("key") or "")
        return cls(
            key=key,
            label=str(payload.get("label") or key),
            type=_enum_or(MetricRowType, payload.get("type"), MetricRowType.SOURCE),
            format=_enum_or(MetricFormat, payload.get("format"), MetricFormat.NUMBER),
            order=_order(payload.get("order"), position),
            source_column_key=_optional_str(_field(payload, "sourceColumnKey", "source_column_key")),
            expression=_optional_str(payload.get("expression")),
            compare_row_key=_optional_str(_field(payload, "compareRowKey", "compare_row_key")),
            compare_period=_enum_or(ComparePeriod, _field(payload, "comparePeriod", "compare_period"), None),
            compare_output=_enum_or(CompareOutput, _field(payload, "compareOutput", "compare_output"), None),
        )


def _parse_list(items: object, factory: Any) -> tuple[Any, ...]:
    if not isinstance(items, Iterable) or isinstance(items, (str, bytes, Mapping)):
        return ()
    return tuple(
        factory(item, position) for position, item in enumerate(items) if isinstance(item, Mapping)
    )


def parse_columns(items: object) -> tuple[ReportColumn, ...]:
    return _parse_list(items, ReportColumn.from_payload)


def parse_formula_rows(items: object) -> tuple[FormulaRowDefinition, ...]:
    return _parse_list(items, FormulaRowDefinition.from_payload)


def parse_metric_rows(items: object) -> tuple[MetricRowDefinition, ...]:
    return _parse_list(items, MetricRowDefinition.from_payload)


@dataclass(frozen=True, slots=True)
class LiveConfig:
    """Unsaved builder state overriding parts of a stored definition."""

    columns: tuple[ReportColumn, ...] | None = None
    formula_rows: tuple[FormulaRowDefinition, ...] | None = None
    metric_rows: tuple[MetricRowDefinition, ...] | None = None
    pivot_column_key: str | None = None
    overrides_pivot_column_key: bool = False

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any] | None) -> LiveConfig | None:
        if not payload:
            return None
        columns = _field(payload, "columns")
        formula_rows = _field(payload, "formulaRows", "formula_rows")
        metric_rows = _field(payload, "metricRows", "metric_rows")
        has_pivot_key = "pivotColumnKey" in payload or "pivot_column_key" in payload
        return cls(
            columns=parse_columns(columns) if columns is not None else None,
            formula_rows=parse_formula_rows(formula_rows) if formula_rows is not None else None,
            metric_rows=parse_metric_rows(metric_rows) if metric_rows is not None else None,
            pivot_column_key=_optional_str(_field(payload, "pivotColumnKey", "pivot_column_key")),
            overrides_pivot_column_key=has_pivot_key,
        )


@dataclass(frozen=True, slots=True)
class ReportDefinitionData:
    id: UUID
    organization_id: UUID
    dataset_id: UUID
    name: str
    cadence: Cadence
    date_column_key: str
    layout: ReportLayout = ReportLayout.STANDARD
    compare_mode: CompareMode = CompareMode.NONE
    columns: tuple[ReportColumn, ...] = ()
    formula_rows: tuple[FormulaRowDefinition, ...] = ()
    pivot_column_key: str | None = None
    metric_rows: tuple[MetricRowDefinition, ...] = ()
    pivot_duplicate_policy: PivotDuplicatePolicy = PivotDuplicatePolicy.LAST
    dataset_columns: tuple[str, ...] = field(default=())

    def with_live_config(self, live_config: LiveConfig | None) -> ReportDefinitionData:
        if live_config is None:
            return self
        changes: dict[str, Any] = {}
        if live_config.columns is not None:
            changes["columns"] = live_config.columns
        if live_config.formula_rows is not None:
            changes["formula_rows"] = live_config.formula_rows
        if live_config.metric_rows is not None:
            changes["metric_rows"] = live_config.metric_rows
        if live_config.overrides_pivot_column_key:
            changes["pivot_column_key"] = live_config.pivot_column_key
        return replace(self, **changes) if changes else self

    def sorted_columns(self) -> list[ReportColumn]:
        return sorted(self.columns, key=lambda column: column.order)

    def sorted_formula_rows(self) -> list[FormulaRowDefinition]:
        return sorted(self.formula_rows, key=lambda row: row.order)

    def sorted_metric_rows(self) -> list[MetricRowDefinition]:
        return sorted(self.metric_rows, key=lambda row: row.order)


def is_recognized_aggregate(formula: str) -> bool:
    return (
        parse_aggregate_expression(formula) is not None
        or parse_bare_aggregate(formula) is not None
        or parse_simple_aggregate_expression(formula) is not None
    )


def _duplicates(values: Iterable[object]) -> list[str]:
    seen: set[object] = set()
    repeated: list[str] = []
    for value in values:
        if value in seen and str(value) not in repeated:
            repeated.append(str(value))
        seen.add(value)
    return repeated


def _expression_problem(owner: str, expression: str) -> tuple[str | None, set[str]]:
    try:
        node = parse_expression(expression)
    except ExpressionSyntaxError as exc:
        return f"{owner} has an invalid expression: {exc}", set()
    return None, referenced_names(node)


def _standard_layout_problems(definition: ReportDefinitionData, known: set[str]) -> list[str]:
    problems: list[str] = []
    columns = definition.columns

    for key in _duplicates(column.key for column in columns):
        problems.append(f'Column key "{key}" is used more than once.')
    for order in _duplicates(column.order for column in columns):
        problems.append(f"Column order {order} is used more than once.")

    formula_keys = {column.key for column in columns if column.type is ColumnType.FORMULA}
    for column in columns:
        owner = f'Column "{column.key}"'
        if not column.key:
            problems.append("Every column needs a key.")
        if column.type is ColumnType.SOURCE:
            if not column.source_column_key:
                problems.append(f"{owner} is a source column without sourceColumnKey.")
            elif known and column.source_column_key not in known:
                problems.append(f'{owner} reads unknown dataset column "{column.source_column_key}".')
            continue
        if not column.expression:
            problems.append(f"{owner} is a formula column without an expression.")
            continue
        problem, names = _expression_problem(owner, column.expression)
        if problem:
            problems.append(problem)
        for name in sorted(names & (formula_keys - {column.key})):
            problems.append(f'{owner} references formula column "{name}"; formulas may only use source columns.')
        if column.key in names:
            problems.append(f"{owner} references itself.")

    column_keys = {column.key for column in columns}
    for row in definition.formula_rows:
        for column_key, formula in row.column_formulas.items():
            if column_key not in column_keys:
                problems.append(f'Formula row "{row.key}" targets unknown column "{column_key}".')
            if formula.strip() and not is_recognized_aggregate(formula):
                problems.append(f'Formula row "{row.key}" has an unrecognized formula "{formula}".')
    return problems


def _pivot_layout_problems(definition: ReportDefinitionData, known: set[str]) -> list[str]:
    problems: list[str] = []
    metrics = definition.metric_rows

    if not definition.pivot_column_key:
        problems.append("Pivot layout requires a pivot column.")
    elif known and definition.pivot_column_key not in known:
        problems.append(f'Pivot column "{definition.pivot_column_key}" is not in the dataset.')
    if not metrics:
        problems.append("Pivot layout requires at least one metric row.")

    for key in _duplicates(metric.key for metric in metrics):
        problems.append(f'Metric row key "{key}" is used more than once.')
    for order in _duplicates(metric.order for metric in metrics):
        problems.append(f"Metric row order {order} is used more than once.")

    metric_keys = {metric.key for metric in metrics}
    for metric in metrics:
        owner = f'Metric row "{metric.key}"'
        if metric.type is MetricRowType.SOURCE:
            if not metric.source_column_key:
                problems.append(f"{owner} is a source row without sourceColumnKey.")
            elif known and metric.source_column_key not in known:
                problems.append(f'{owner} reads unknown dataset column "{metric.source_column_key}".')
        elif metric.type is MetricRowType.FORMULA:
            if not metric.expression:
                problems.append(f"{owner} is a formula row without an expression.")
                continue
            problem, names = _expression_problem(owner, metric.expression)
            if problem:
                problems.append(problem)
            for name in sorted(names - metric_keys):
                problems.append(f'{owner} references unknown metric "{name}".')
        else:
            if not metric.compare_row_key:
                problems.append(f"{owner} is a comparison row without compareRowKey.")
            elif metric.compare_row_key not in metric_keys:
                problems.append(f'{owner} compares unknown metric "{metric.compare_row_key}".')
            if metric.compare_output is None:
                problems.append(f"{owner} is a comparison row without compareOutput.")
    return problems


def collect_definition_problems(definition: ReportDefinitionData) -> list[str]:
    """Everything a strict save would reject. Preview tolerates all of these."""

    known = set(definition.dataset_columns)
    problems: list[str] = []
    if not definition.date_column_key:
        problems.append("dateColumnKey is required.")
    elif known and definition.date_column_key not in known:
        problems.append(f'Date column "{definition.date_column_key}" is not in the dataset.')

    if definition.layout is ReportLayout.PIVOT:
        problems.extend(_pivot_layout_problems(definition, known))
    else:
        problems.extend(_standard_layout_problems(definition, known))
    return problems
