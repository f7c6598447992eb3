"""Repository helpers for report definitions and their datasets."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any, Protocol
from uuid import UUID

from sqlalchemy import and_, select
from sqlalchemy.orm import Session

from bizdash.models.entities import (
    Cadence,
    CompareMode,
    Dataset,
    Organization,
    PivotDuplicatePolicy,
    ReportDefinition,
    ReportLayout,
)
from bizdash.services.report_definition import (
    ReportDefinitionData,
    parse_columns,
    parse_formula_rows,
    parse_metric_rows,
)

logger = logging.getLogger(__name__)


class ReportDataSource(Protocol):
    """Read surface the execution service depends on."""

    def get_report_definition(self, report_id: UUID, organization_id: UUID) -> ReportDefinitionData | None: ...

    def get_dataset_rows(self, dataset_id: UUID, organization_id: UUID) -> list[dict[str, Any]]: ...


def _stored_enum(enum_cls: Any, value: str | None, default: Any, *, field_name: str, report_id: UUID) -> Any:
    try:
        return enum_cls(value)
    except ValueError:
        logger.warning("Report %s has unknown %s %r; using %s", report_id, field_name, value, default.value)
        return default


def dataset_column_keys(dataset: Dataset) -> tuple[str, ...]:
    """Column keys from the uploaded schema, or from the rows when there is none."""

    keys: list[str] = []
    for column in dataset.schema or []:
        if isinstance(column, dict) and column.get("key"):
            keys.append(str(column["key"]))
    if keys:
        return tuple(dict.fromkeys(keys))
    for row in dataset.rows or []:
        if isinstance(row, dict):
            keys.extend(str(key) for key in row)
    return tuple(dict.fromkeys(keys))


def to_definition_data(report: ReportDefinition, dataset_columns: Sequence[str] = ()) -> ReportDefinitionData:
    return ReportDefinitionData(
        id=report.id,
        organization_id=report.organization_id,
        dataset_id=report.dataset_id,
        name=report.name,
        cadence=_stored_enum(Cadence, report.cadence, Cadence.MONTHLY, field_name="cadence", report_id=report.id),
        date_column_key=report.date_column_key,
        layout=_stored_enum(
            ReportLayout, report.layout, ReportLayout.STANDARD, field_name="layout", report_id=report.id
        ),
        compare_mode=_stored_enum(
            CompareMode, report.compare_mode, CompareMode.NONE, field_name="compare mode", report_id=report.id
        ),
        columns=parse_columns(report.columns),
        formula_rows=parse_formula_rows(report.formula_rows),
        pivot_column_key=report.pivot_column_key,
        metric_rows=parse_metric_rows(report.metric_rows),
        pivot_duplicate_policy=_stored_enum(
            PivotDuplicatePolicy,
            report.pivot_duplicate_policy,
            PivotDuplicatePolicy.LAST,
            field_name="pivot duplicate policy",
            report_id=report.id,
        ),
        dataset_columns=tuple(dataset_columns),
    )


class ReportRepository:
    """Persistence operations used by report execution.

    Datasets are loaded at most once per repository instance; the definition
    lookup (column keys) and the row read share that load.
    """

    def __init__(self, db: Session) -> None:
        self.db = db
        self._datasets: dict[tuple[UUID, UUID], Dataset | None] = {}

    # ---------- Organizations ----------
    def get_organization(self, organization_id: UUID) -> Organization | None:
        return self.db.scalar(select(Organization).where(Organization.id == organization_id))

    def add_organization(self, organization: Organization) -> Organization:
        self.db.add(organization)
        self.db.flush()
        return organization

    # ---------- Datasets ----------
    def get_dataset(self, dataset_id: UUID, organization_id: UUID) -> Dataset | None:
        cache_key = (dataset_id, organization_id)
        if cache_key not in self._datasets:
            self._datasets[cache_key] = self.db.scalar(
                select(Dataset).where(and_(Dataset.id == dataset_id, Dataset.organization_id == organization_id))
            )
        return self._datasets[cache_key]

    def get_dataset_rows(self, dataset_id: UUID, organization_id: UUID) -> list[dict[str, Any]]:
        dataset = self.get_dataset(dataset_id, organization_id)
        if dataset is None:
            return []
        return list(dataset.rows or [])

    def get_dataset_columns(self, dataset_id: UUID, organization_id: UUID) -> tuple[str, ...]:
        dataset = self.get_dataset(dataset_id, organization_id)
        return dataset_column_keys(dataset) if dataset is not None else ()

    def add_dataset(self, dataset: Dataset) -> Dataset:
        dataset.row_count = len(dataset.rows or [])
        self.db.add(dataset)
        self.db.flush()
        self._datasets[(dataset.id, dataset.organization_id)] = dataset
        return dataset

    # ---------- Report definitions ----------
    def get_report_entity(self, report_id: UUID, organization_id: UUID) -> ReportDefinition | None:
        return self.db.scalar(
            select(ReportDefinition).where(
                and_(ReportDefinition.id == report_id, ReportDefinition.organization_id == organization_id)
            )
        )

    def get_report_definition(self, report_id: UUID, organization_id: UUID) -> ReportDefinitionData | None:
        report = self.get_report_entity(report_id, organization_id)
        if report is None:
            return None
        return to_definition_data(report, self.get_dataset_columns(report.dataset_id, organization_id))

    def add_report_definition(self, report: ReportDefinition) -> ReportDefinition:
        self.db.add(report)
        self.db.flush()
        return report
