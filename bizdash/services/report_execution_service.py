"""Report execution service layer.

One call loads a definition and its dataset, buckets rows by period,
applies filters and renders the configured layout. Nothing is cached
between calls.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any
from uuid import UUID

from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from bizdash.core.config import get_settings
from bizdash.models.entities import CompareMode, ReportLayout
from bizdash.repositories.report_repository import ReportDataSource, ReportRepository
from bizdash.services.dataset_ingestion import TypedRow, ingest_rows
from bizdash.services.expressions import ExpressionCache
from bizdash.services.periods import (
    label_for_period_key,
    period_key_from_value,
    recent_periods,
    resolve_compare_period,
)
from bizdash.services.pivot_layout import evaluate_pivot_layout
from bizdash.services.report_definition import LiveConfig, ReportDefinitionData, collect_definition_problems
from bizdash.services.report_results import ExecutePreviewResult, PeriodInfo, PreviewDiagnostics, ReportTable
from bizdash.services.row_filter import filter_typed_rows
from bizdash.services.standard_layout import evaluate_standard_layout

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ExecutePreviewInput:
    report_id: UUID
    organization_id: UUID
    current_period_key: str | None = None
    compare_mode: CompareMode | None = None
    live_config: LiveConfig | None = None
    filters: Mapping[str, Any] | None = None


class ReportExecutionService:
    """Preview, period listing and validation for report definitions."""

    def __init__(self, db: Session | None, repo: ReportDataSource | None = None) -> None:
        self.db = db
        self.repo = repo if repo is not None else ReportRepository(db)
        self.settings = get_settings()

    def load_definition(
        self,
        report_id: UUID,
        organization_id: UUID,
        live_config: LiveConfig | None = None,
    ) -> ReportDefinitionData:
        definition = self.repo.get_report_definition(report_id, organization_id)
        if definition is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Report definition not found.")
        return definition.with_live_config(live_config)

    def execute_preview(self, request: ExecutePreviewInput) -> ExecutePreviewResult:
        definition = self.load_definition(request.report_id, request.organization_id, request.live_config)
        return self.execute_definition(definition, request)

    def execute_definition(self, definition: ReportDefinitionData, request: ExecutePreviewInput) -> ExecutePreviewResult:
        """Run an already loaded (and live-config merged) definition."""

        raw_rows = self.repo.get_dataset_rows(definition.dataset_id, request.organization_id)

        diagnostics = PreviewDiagnostics(total_database_rows=len(raw_rows))
        cache = ExpressionCache(diagnostics.warnings)
        dataset = ingest_rows(raw_rows, definition.date_column_key, definition.cadence)
        available_periods = dataset.available_periods()

        current: PeriodInfo | None = None
        compare: PeriodInfo | None = None
        current_rows: list[TypedRow]
        compare_rows: list[TypedRow] | None = None
        compare_key: str | None = None
        compare_mode = request.compare_mode or definition.compare_mode

        if request.current_period_key:
            diagnostics.parse_failures = dataset.parse_failures
            current_key = period_key_from_value(request.current_period_key, definition.cadence)
            if current_key is None:
                current_key = request.current_period_key
                diagnostics.warn(
                    f'"{current_key}" is not a {definition.cadence.value} period; no rows match it.'
                )
            current_rows = dataset.rows_for_period(current_key)

            if compare_mode is not CompareMode.NONE:
                compare_key = resolve_compare_period(current_key, definition.cadence, compare_mode)
                if compare_key is None:
                    diagnostics.warn(
                        f"No {compare_mode.value} comparison period exists for {current_key}; comparison skipped."
                    )
                else:
                    compare_rows = dataset.rows_for_period(compare_key)

            current_rows = filter_typed_rows(current_rows, request.filters)
            current = PeriodInfo(
                period_key=current_key,
                label=label_for_period_key(current_key, definition.cadence),
                row_count=len(current_rows),
            )
            if compare_rows is not None and compare_key is not None:
                compare_rows = filter_typed_rows(compare_rows, request.filters)
                compare = PeriodInfo(
                    period_key=compare_key,
                    label=label_for_period_key(compare_key, definition.cadence),
                    row_count=len(compare_rows),
                )
        else:
            current_rows = filter_typed_rows(dataset.rows, request.filters)

        table = self._evaluate_layout(definition, current_rows, compare_rows, cache, diagnostics, compare_mode)

        if diagnostics.parse_failures:
            logger.warning(
                "Report %s: %s rows have an unparseable %r value",
                definition.id,
                diagnostics.parse_failures,
                definition.date_column_key,
            )
        logger.info(
            "Executed report %s (%s, %s) period=%s compare=%s rows=%s warnings=%s",
            definition.id,
            definition.layout.value,
            definition.cadence.value,
            current.period_key if current else None,
            compare.period_key if compare else None,
            len(current_rows),
            len(diagnostics.warnings),
        )
        return ExecutePreviewResult(
            current=current,
            compare=compare,
            available_periods=available_periods,
            table=table,
            diagnostics=diagnostics,
        )

    def _evaluate_layout(
        self,
        definition: ReportDefinitionData,
        current_rows: list[TypedRow],
        compare_rows: list[TypedRow] | None,
        cache: ExpressionCache,
        diagnostics: PreviewDiagnostics,
        compare_mode: CompareMode,
    ) -> ReportTable:
        if definition.layout is ReportLayout.PIVOT:
            return evaluate_pivot_layout(
                definition,
                current_rows,
                compare_rows,
                cache=cache,
                warnings=diagnostics.warnings,
                compare_mode=compare_mode,
            )
        return evaluate_standard_layout(
            definition,
            current_rows,
            compare_rows,
            cache=cache,
            warnings=diagnostics.warnings,
            row_limit=self.settings.preview_row_limit,
        )

    def available_periods(self, report_id: UUID, organization_id: UUID) -> dict[str, object]:
        definition = self.load_definition(report_id, organization_id)
        raw_rows = self.repo.get_dataset_rows(definition.dataset_id, organization_id)
        dataset = ingest_rows(raw_rows, definition.date_column_key, definition.cadence)
        return {
            "cadence": definition.cadence.value,
            "availablePeriods": dataset.available_periods(),
            "recentPeriods": recent_periods(definition.cadence),
        }

    def validate_definition(
        self,
        report_id: UUID,
        organization_id: UUID,
        live_config: LiveConfig | None = None,
    ) -> dict[str, object]:
        definition = self.load_definition(report_id, organization_id, live_config)
        problems = collect_definition_problems(definition)
        if problems:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail={"message": "Report definition is invalid.", "problems": problems},
            )
        return {"valid": True, "problems": []}
