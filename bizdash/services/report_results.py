"""Result structures returned by report execution."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(slots=True)
class TableColumn:
    key: str
    label: str
    type: str
    data_type: str

    def to_payload(self) -> dict[str, object]:
        return {"key": self.key, "label": self.label, "type": self.type, "dataType": self.data_type}


@dataclass(slots=True)
class FormulaRowOutput:
    key: str
    label: str
    values: dict[str, float | int | None]

    def to_payload(self) -> dict[str, object]:
        return {"key": self.key, "label": self.label, "values": dict(self.values)}


@dataclass(slots=True)
class ReportTable:
    columns: list[TableColumn] = field(default_factory=list)
    rows: list[dict[str, Any]] = field(default_factory=list)
    formula_rows: list[FormulaRowOutput] = field(default_factory=list)

    @classmethod
    def empty(cls) -> ReportTable:
        return cls()

    def to_payload(self) -> dict[str, object]:
        return {
            "columns": [column.to_payload() for column in self.columns],
            "rows": [dict(row) for row in self.rows],
            "formulaRows": [row.to_payload() for row in self.formula_rows],
        }


@dataclass(slots=True)
class PeriodInfo:
    period_key: str
    label: str
    row_count: int

    def to_payload(self) -> dict[str, object]:
        return {"periodKey": self.period_key, "label": self.label, "rowCount": self.row_count}


@dataclass(slots=True)
class PreviewDiagnostics:
    total_database_rows: int = 0
    parse_failures: int = 0
    warnings: list[str] = field(default_factory=list)

    def warn(self, message: str) -> None:
        if message not in self.warnings:
            self.warnings.append(message)

    def to_payload(self) -> dict[str, object]:
        return {
            "totalDatabaseRows": self.total_database_rows,
            "parseFailures": self.parse_failures,
            "warnings": list(self.warnings),
        }


@dataclass(slots=True)
class ExecutePreviewResult:
    current: PeriodInfo | None
    compare: PeriodInfo | None
    available_periods: list[dict[str, str]]
    table: ReportTable
    diagnostics: PreviewDiagnostics

    def to_payload(self) -> dict[str, object]:
        return {
            "current": self.current.to_payload() if self.current else None,
            "compare": self.compare.to_payload() if self.compare else None,
            "availablePeriods": [dict(option) for option in self.available_periods],
            "table": self.table.to_payload(),
            "diagnostics": self.diagnostics.to_payload(),
        }
