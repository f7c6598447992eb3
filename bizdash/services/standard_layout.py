"""Standard layout: one output row per dataset row plus aggregate formula rows."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from bizdash.services.dataset_ingestion import TypedRow
from bizdash.services.expressions import (
    AggregateContext,
    AggregateFunction,
    ExpressionCache,
    compute_aggregate,
    parse_aggregate_expression,
    parse_bare_aggregate,
    parse_simple_aggregate_expression,
)
from bizdash.services.report_definition import ColumnType, FormulaRowDefinition, ReportColumn, ReportDefinitionData
from bizdash.services.report_results import FormulaRowOutput, ReportTable, TableColumn

logger = logging.getLogger(__name__)


def _warn(warnings: list[str], message: str) -> None:
    if message not in warnings:
        warnings.append(message)


def formula_bindings(row: TypedRow, source_columns: Sequence[ReportColumn]) -> dict[str, float]:
    """Numeric bindings for one row, built from source columns only.

    Each value is bound under the dataset key and under the report column
    key; the dataset key wins on collision.
    """

    bindings: dict[str, float] = {}
    for column in source_columns:
        number = row.numbers.get(column.source_column_key or "")
        if number is not None:
            bindings.setdefault(column.key, number)
    for column in source_columns:
        number = row.numbers.get(column.source_column_key or "")
        if number is not None:
            bindings[column.source_column_key] = number
    return bindings


class _SeriesResolver:
    """Numeric series per (context, column), memoised for one execution."""

    def __init__(
        self,
        current_rows: Sequence[TypedRow],
        compare_rows: Sequence[TypedRow] | None,
        formula_columns: dict[str, ReportColumn],
        source_columns: Sequence[ReportColumn],
        cache: ExpressionCache,
    ) -> None:
        self._rows = {AggregateContext.CURRENT: current_rows, AggregateContext.COMPARE: compare_rows}
        self._formula_columns = formula_columns
        self._source_columns = source_columns
        self._cache = cache
        self._series: dict[tuple[AggregateContext, str], list[float] | None] = {}

    def series(self, context: AggregateContext, column_name: str) -> list[float] | None:
        cache_key = (context, column_name)
        if cache_key not in self._series:
            self._series[cache_key] = self._build(context, column_name)
        return self._series[cache_key]

    def _build(self, context: AggregateContext, column_name: str) -> list[float] | None:
        rows = self._rows[context]
        if rows is None:
            return None
        formula_column = self._formula_columns.get(column_name)
        if formula_column is None:
            return [row.numbers[column_name] for row in rows if column_name in row.numbers]
        if not formula_column.expression:
            return []

        values: list[float] = []
        for row in rows:
            value = self._cache.evaluate(
                formula_column.expression, formula_bindings(row, self._source_columns)
            )
            if value is not None:
                values.append(value)
        return values


def _aggregate(fn: AggregateFunction, series: list[float] | None) -> float | int | None:
    if series is None:
        return None
    return compute_aggregate(fn, series)


def _formula_row_values(
    formula_row: FormulaRowDefinition,
    columns_by_key: dict[str, ReportColumn],
    resolver: _SeriesResolver,
    warnings: list[str],
) -> dict[str, float | int | None]:
    values: dict[str, float | int | None] = {}
    for column_key, formula in formula_row.column_formulas.items():
        column = columns_by_key.get(column_key)
        if column is not None and column.type is ColumnType.SOURCE:
            target = column.source_column_key
        else:
            target = column_key
        if not target:
            values[column_key] = None
            continue

        dual = parse_aggregate_expression(formula)
        if dual is not None:
            values[column_key] = _aggregate(dual.fn, resolver.series(dual.context, dual.column))
            continue

        bare = parse_bare_aggregate(formula)
        if bare is not None:
            values[column_key] = _aggregate(bare, resolver.series(AggregateContext.CURRENT, target))
            continue

        simple = parse_simple_aggregate_expression(formula)
        if simple is not None:
            values[column_key] = _aggregate(simple.fn, resolver.series(AggregateContext.CURRENT, simple.column))
            continue

        values[column_key] = None
        _warn(warnings, f'Formula row "{formula_row.key}" has an unrecognized formula for "{column_key}": {formula}')
    return values


def evaluate_standard_layout(
    definition: ReportDefinitionData,
    current_rows: Sequence[TypedRow],
    compare_rows: Sequence[TypedRow] | None,
    *,
    cache: ExpressionCache,
    warnings: list[str],
    row_limit: int = 100,
) -> ReportTable:
    columns = definition.sorted_columns()
    if not columns:
        return ReportTable.empty()

    source_columns = [column for column in columns if column.type is ColumnType.SOURCE]
    formula_columns = {column.key: column for column in columns if column.type is ColumnType.FORMULA}

    table = ReportTable(
        columns=[
            TableColumn(key=column.key, label=column.label, type=column.type.value, data_type=column.data_type.value)
            for column in columns
        ]
    )

    for row in current_rows[:row_limit]:
        bindings = formula_bindings(row, source_columns)
        output: dict[str, object] = {}
        for column in columns:
            if column.type is ColumnType.SOURCE:
                output[column.key] = row.values.get(column.source_column_key) if column.source_column_key else None
            elif column.expression:
                output[column.key] = cache.evaluate(column.expression, bindings)
            else:
                output[column.key] = None
        table.rows.append(output)

    resolver = _SeriesResolver(current_rows, compare_rows, formula_columns, source_columns, cache)
    columns_by_key = {column.key: column for column in columns}
    for formula_row in definition.sorted_formula_rows():
        table.formula_rows.append(
            FormulaRowOutput(
                key=formula_row.key,
                label=formula_row.label,
                values=_formula_row_values(formula_row, columns_by_key, resolver, warnings),
            )
        )

    logger.debug(
        "Standard layout rendered %s of %s rows and %s formula rows",
        len(table.rows),
        len(current_rows),
        len(table.formula_rows),
    )
    return table
