"""Pivot layout: metric rows down, distinct pivot-column values across.

Evaluation runs in three passes per pivot value. Source metrics read the
dataset, formula metrics combine metrics computed before them, and
comparison metrics relate a metric's current value to its compare-period
value.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from typing import Any

from bizdash.models.entities import Cadence, CompareMode, PivotDuplicatePolicy
from bizdash.services.dataset_ingestion import TypedRow
from bizdash.services.expressions import ExpressionCache, round_half_up
from bizdash.services.report_definition import (
    ComparePeriod,
    CompareOutput,
    MetricRowDefinition,
    MetricRowType,
    ReportDefinitionData,
)
from bizdash.services.report_results import ReportTable, TableColumn

logger = logging.getLogger(__name__)

LABEL_COLUMN_KEY = "_label"


def _warn(warnings: list[str], message: str) -> None:
    if message not in warnings:
        warnings.append(message)


def pivot_label(value: object) -> str | None:
    """String form of a pivot cell; None when the cell is empty."""

    if value is None:
        return None
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    label = str(value)
    return label if label.strip() else None


def _group_by_pivot(rows: Sequence[TypedRow], pivot_column_key: str) -> dict[str, list[TypedRow]]:
    groups: dict[str, list[TypedRow]] = {}
    for row in rows:
        label = pivot_label(row.values.get(pivot_column_key))
        if label is not None:
            groups.setdefault(label, []).append(row)
    return groups


def _source_value(
    metric: MetricRowDefinition,
    group: Sequence[TypedRow],
    policy: PivotDuplicatePolicy,
) -> Any:
    if not group or not metric.source_column_key:
        return None
    key = metric.source_column_key
    if not metric.is_numeric:
        return group[-1].values.get(key)
    if policy is PivotDuplicatePolicy.SUM and len(group) > 1:
        numbers = [row.numbers[key] for row in group if key in row.numbers]
        return round(math.fsum(numbers), 6) if numbers else None
    return group[-1].numbers.get(key)


def _numeric_bindings(values: dict[str, Any]) -> dict[str, float]:
    return {
        key: value
        for key, value in values.items()
        if isinstance(value, (int, float)) and not isinstance(value, bool)
    }


def compare_output_value(output: CompareOutput | None, current: Any, compare: Any) -> float | None:
    """Apply a comparison output to a current/compare pair."""

    if not isinstance(current, (int, float)) or not isinstance(compare, (int, float)):
        return None
    if isinstance(current, bool) or isinstance(compare, bool):
        return None
    if output is CompareOutput.DELTA:
        return round_half_up(current - compare, 2)
    if output is CompareOutput.PERCENT:
        if compare == 0:
            return None
        return round_half_up((current - compare) / compare * 100, 2)
    return compare


def _compare_period_matches(period: ComparePeriod, mode: CompareMode, cadence: Cadence) -> bool:
    if mode is CompareMode.YOY:
        return period is ComparePeriod.YOY
    if mode is CompareMode.MOM:
        if period is ComparePeriod.QOQ:
            return cadence is Cadence.QUARTERLY
        return period is ComparePeriod.MOM
    return True


def _check_comparisons(
    metrics: Sequence[MetricRowDefinition],
    definition: ReportDefinitionData,
    compare_mode: CompareMode,
    has_compare_rows: bool,
    warnings: list[str],
) -> None:
    comparisons = [metric for metric in metrics if metric.type is MetricRowType.COMPARISON]
    if not comparisons:
        return
    if not has_compare_rows:
        _warn(warnings, "Comparison rows need a compare period; their values are empty.")
        return
    for metric in comparisons:
        if metric.compare_period is None:
            continue
        if not _compare_period_matches(metric.compare_period, compare_mode, definition.cadence):
            _warn(
                warnings,
                f'Metric row "{metric.key}" is labelled {metric.compare_period.value} '
                f"but this preview compares {compare_mode.value} at {definition.cadence.value} cadence.",
            )


def evaluate_pivot_layout(
    definition: ReportDefinitionData,
    current_rows: Sequence[TypedRow],
    compare_rows: Sequence[TypedRow] | None,
    *,
    cache: ExpressionCache,
    warnings: list[str],
    compare_mode: CompareMode = CompareMode.NONE,
) -> ReportTable:
    pivot_column_key = definition.pivot_column_key
    metrics = definition.sorted_metric_rows()
    if not pivot_column_key or not metrics:
        return ReportTable.empty()

    current_groups = _group_by_pivot(current_rows, pivot_column_key)
    pivot_values = sorted(current_groups)
    if not pivot_values:
        return ReportTable.empty()
    compare_groups = _group_by_pivot(compare_rows, pivot_column_key) if compare_rows is not None else None

    policy = definition.pivot_duplicate_policy
    duplicated = [value for value in pivot_values if len(current_groups[value]) > 1]
    if duplicated:
        resolution = "summed" if policy is PivotDuplicatePolicy.SUM else "taken from the last row"
        _warn(
            warnings,
            f'Pivot column "{pivot_column_key}" repeats {", ".join(duplicated)}; values were {resolution}.',
        )
    _check_comparisons(metrics, definition, compare_mode, compare_groups is not None, warnings)

    current_values: dict[str, dict[str, Any]] = {value: {} for value in pivot_values}
    compare_values: dict[str, dict[str, Any]] = {value: {} for value in pivot_values}

    for pivot_value in pivot_values:
        for metric in metrics:
            if metric.type is not MetricRowType.SOURCE:
                continue
            current_values[pivot_value][metric.key] = _source_value(metric, current_groups[pivot_value], policy)
            if compare_groups is not None:
                compare_values[pivot_value][metric.key] = _source_value(
                    metric, compare_groups.get(pivot_value, []), policy
                )

    for pivot_value in pivot_values:
        for metric in metrics:
            if metric.type is not MetricRowType.FORMULA or not metric.expression:
                continue
            current_values[pivot_value][metric.key] = cache.evaluate(
                metric.expression, _numeric_bindings(current_values[pivot_value])
            )
            if compare_groups is not None:
                compare_values[pivot_value][metric.key] = cache.evaluate(
                    metric.expression, _numeric_bindings(compare_values[pivot_value])
                )

    for pivot_value in pivot_values:
        for metric in metrics:
            if metric.type is not MetricRowType.COMPARISON or not metric.compare_row_key:
                continue
            current_values[pivot_value][metric.key] = compare_output_value(
                metric.compare_output,
                current_values[pivot_value].get(metric.compare_row_key),
                compare_values[pivot_value].get(metric.compare_row_key),
            )

    table = ReportTable(
        columns=[TableColumn(key=LABEL_COLUMN_KEY, label="", type="source", data_type="text")]
        + [TableColumn(key=value, label=value, type="source", data_type="text") for value in pivot_values]
    )
    for metric in metrics:
        row: dict[str, Any] = {"_key": metric.key, LABEL_COLUMN_KEY: metric.label, "_format": metric.format.value}
        for pivot_value in pivot_values:
            row[pivot_value] = current_values[pivot_value].get(metric.key)
        table.rows.append(row)

    logger.debug("Pivot layout rendered %s metrics across %s pivot values", len(metrics), len(pivot_values))
    return table
