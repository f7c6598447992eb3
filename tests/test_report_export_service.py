from __future__ import annotations

from collections.abc import Callable

from sqlalchemy import event
from sqlalchemy.orm import Session

from bizdash.models.entities import ReportDefinition
from bizdash.services.report_execution_service import ExecutePreviewInput, ReportExecutionService
from bizdash.services.report_export_service import ReportExportService

MakeReport = Callable[..., ReportDefinition]

ROWS = [
    {"date": "2024-01-15", "region": "East", "revenue": 100},
    {"date": "2024-02-03", "region": "West", "revenue": 200},
]
COLUMNS = [{"key": "revenue", "label": "Revenue", "sourceColumnKey": "revenue", "order": 1}]


def _capture_statements(db: Session) -> list[str]:
    statements: list[str] = []

    @event.listens_for(db.get_bind(), "before_cursor_execute")
    def record(conn, cursor, statement, parameters, context, executemany) -> None:
        statements.append(statement)

    return statements


def test_export_loads_definition_and_dataset_once(db_session: Session, make_report: MakeReport) -> None:
    report = make_report(ROWS, columns=COLUMNS)
    request = ExecutePreviewInput(report_id=report.id, organization_id=report.organization_id, current_period_key="2024-02")
    statements = _capture_statements(db_session)

    exported = ReportExportService(db_session).export_preview(request, "csv")

    assert exported.filename == "monthly-sales-2024-02.csv"
    assert sum("FROM report_definitions" in statement for statement in statements) == 1
    assert sum("FROM datasets" in statement for statement in statements) == 1


def test_preview_reads_dataset_once(db_session: Session, make_report: MakeReport) -> None:
    report = make_report(ROWS, columns=COLUMNS)
    request = ExecutePreviewInput(report_id=report.id, organization_id=report.organization_id)
    statements = _capture_statements(db_session)

    result = ReportExecutionService(db_session).execute_preview(request)

    assert len(result.table.rows) == 2
    assert sum("FROM datasets" in statement for statement in statements) == 1


def test_unparseable_period_key_is_left_out_of_filename(db_session: Session, make_report: MakeReport) -> None:
    report = make_report(ROWS, columns=COLUMNS, name="Ventas por región")
    service = ReportExportService(db_session)

    for period_key in ("二月", 'Feb "24"', "2024\r\n"):
        request = ExecutePreviewInput(
            report_id=report.id, organization_id=report.organization_id, current_period_key=period_key
        )
        exported = service.export_preview(request, "xlsx")

        assert exported.filename == "ventas-por-regi-n.xlsx"
        assert exported.filename.isascii()
