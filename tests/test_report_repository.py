from __future__ import annotations

import logging
import uuid

import pytest
from sqlalchemy.orm import Session

from bizdash.models.entities import Cadence, CompareMode, Dataset, Organization, ReportDefinition, ReportLayout
from bizdash.repositories.report_repository import ReportRepository, dataset_column_keys, to_definition_data


def test_dataset_column_keys_prefer_schema_then_rows() -> None:
    with_schema = Dataset(schema=[{"key": "date"}, {"key": "revenue"}, {"label": "no key"}], rows=[{"other": 1}])
    without_schema = Dataset(schema=[], rows=[{"date": "2024-01-01", "revenue": 1}, {"revenue": 2, "cost": 1}])

    assert dataset_column_keys(with_schema) == ("date", "revenue")
    assert dataset_column_keys(without_schema) == ("date", "revenue", "cost")


def test_unknown_stored_values_fall_back_with_warning(caplog: pytest.LogCaptureFixture) -> None:
    report = ReportDefinition(
        id=uuid.uuid4(),
        organization_id=uuid.uuid4(),
        dataset_id=uuid.uuid4(),
        name="Legacy",
        cadence="annual",
        date_column_key="date",
        layout="grid",
        compare_mode="wow",
        pivot_duplicate_policy="last",
        columns=[{"key": "a", "sourceColumnKey": "a"}],
        formula_rows=[],
        metric_rows=[],
    )

    with caplog.at_level(logging.WARNING, logger="bizdash.repositories.report_repository"):
        definition = to_definition_data(report, ["date", "a"])

    assert definition.cadence is Cadence.YEARLY
    assert definition.layout is ReportLayout.STANDARD
    assert definition.compare_mode is CompareMode.NONE
    assert definition.dataset_columns == ("date", "a")
    assert len(caplog.records) == 2


def test_rows_and_definitions_are_organization_scoped(db_session: Session, make_report) -> None:
    report = make_report([{"date": "2024-01-01", "revenue": 5}], columns=[{"key": "revenue", "sourceColumnKey": "revenue"}])
    repo = ReportRepository(db_session)
    stranger = repo.add_organization(Organization(id=uuid.uuid4(), name="Other Co"))

    definition = repo.get_report_definition(report.id, report.organization_id)

    assert definition is not None
    assert definition.dataset_columns == ("date", "revenue")
    assert repo.get_dataset_rows(report.dataset_id, report.organization_id) == [{"date": "2024-01-01", "revenue": 5}]
    assert repo.get_report_definition(report.id, stranger.id) is None
    assert repo.get_dataset_rows(report.dataset_id, stranger.id) == []
    assert repo.get_dataset(report.dataset_id, report.organization_id).row_count == 1
