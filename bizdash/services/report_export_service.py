"""CSV and XLSX export of rendered report previews."""

from __future__ import annotations

import csv
import io
import re
from dataclasses import dataclass

from fastapi import HTTPException, status
from openpyxl import Workbook
from sqlalchemy.orm import Session

from bizdash.repositories.report_repository import ReportDataSource
from bizdash.services.periods import is_valid_period_key
from bizdash.services.report_execution_service import ExecutePreviewInput, ReportExecutionService
from bizdash.services.report_results import ExecutePreviewResult

EXPORT_FORMATS = {"csv", "xlsx"}
_SLUG_NOISE = re.compile(r"[^a-z0-9]+")


@dataclass(slots=True)
class ExportFilePayload:
    media_type: str
    filename: str
    content: bytes


def _slug(text: str) -> str:
    return _SLUG_NOISE.sub("-", text.strip().lower()).strip("-") or "report"


def table_records(result: ExecutePreviewResult) -> tuple[list[str], list[list[object]]]:
    """Header labels and cell rows of a preview table, formula rows last."""

    columns = result.table.columns
    header = [column.label or "Metric" for column in columns]
    records: list[list[object]] = [[row.get(column.key) for column in columns] for row in result.table.rows]
    for formula_row in result.table.formula_rows:
        record: list[object] = [formula_row.values.get(column.key) for column in columns]
        if record and record[0] is None:
            record[0] = formula_row.label
        records.append(record)
    return header, records


class ReportExportService:
    def __init__(self, db: Session | None, repo: ReportDataSource | None = None) -> None:
        self.execution = ReportExecutionService(db, repo=repo)

    def export_preview(self, request: ExecutePreviewInput, format_name: str) -> ExportFilePayload:
        normalized_format = format_name.strip().lower()
        if normalized_format not in EXPORT_FORMATS:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail="format must be one of: csv, xlsx.",
            )

        definition = self.execution.load_definition(request.report_id, request.organization_id, request.live_config)
        result = self.execution.execute_definition(definition, request)
        header, records = table_records(result)

        # Unparseable period keys are echoed back verbatim; keep them out of the header.
        base_filename = _slug(definition.name)
        if result.current is not None and is_valid_period_key(result.current.period_key, definition.cadence):
            base_filename = f"{base_filename}-{result.current.period_key}"

        if normalized_format == "csv":
            sio = io.StringIO()
            writer = csv.writer(sio)
            if header:
                writer.writerow(header)
                writer.writerows([["" if cell is None else cell for cell in record] for record in records])
            return ExportFilePayload(
                media_type="text/csv; charset=utf-8",
                filename=f"{base_filename}.csv",
                content=sio.getvalue().encode("utf-8"),
            )

        workbook = Workbook()
        sheet = workbook.active
        sheet.title = "report"
        if header:
            sheet.append(header)
            for record in records:
                sheet.append([_xlsx_cell(cell) for cell in record])

        output = io.BytesIO()
        workbook.save(output)
        return ExportFilePayload(
            media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
            filename=f"{base_filename}.xlsx",
            content=output.getvalue(),
        )


def _xlsx_cell(value: object) -> object:
    if value is None or isinstance(value, (str, int, float)):
        return value
    return str(value)
