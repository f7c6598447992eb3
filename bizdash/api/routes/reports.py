"""Report preview, period, export and validation endpoints."""

from __future__ import annotations

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from bizdash.core.auth import RequestUserContext, get_current_user_context
from bizdash.db.dependencies import get_db_session
from bizdash.models.entities import CompareMode
from bizdash.services.report_definition import LiveConfig
from bizdash.services.report_execution_service import ExecutePreviewInput, ReportExecutionService
from bizdash.services.report_export_service import ReportExportService

router = APIRouter(prefix="/reports", tags=["reports"])


class LiveConfigPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    columns: list[dict[str, Any]] | None = None
    formula_rows: list[dict[str, Any]] | None = Field(default=None, alias="formulaRows")
    metric_rows: list[dict[str, Any]] | None = Field(default=None, alias="metricRows")
    pivot_column_key: str | None = Field(default=None, alias="pivotColumnKey")

    def to_live_config(self) -> LiveConfig | None:
        # Unset fields keep the stored definition; an explicit null pivot key clears it.
        return LiveConfig.from_payload(self.model_dump(by_alias=True, exclude_unset=True))


class PreviewPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    current_period_key: str | None = Field(default=None, alias="currentPeriodKey", max_length=64)
    compare_mode: CompareMode | None = Field(default=None, alias="compareMode")
    live_config: LiveConfigPayload | None = Field(default=None, alias="liveConfig")
    filters: dict[str, Any] | None = None


class ValidatePayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    live_config: LiveConfigPayload | None = Field(default=None, alias="liveConfig")


def _service(db: Session) -> ReportExecutionService:
    return ReportExecutionService(db)


def _preview_input(report_id: UUID, context: RequestUserContext, payload: PreviewPayload | None) -> ExecutePreviewInput:
    if payload is None:
        return ExecutePreviewInput(report_id=report_id, organization_id=context.organization_id)
    return ExecutePreviewInput(
        report_id=report_id,
        organization_id=context.organization_id,
        current_period_key=payload.current_period_key,
        compare_mode=payload.compare_mode,
        live_config=payload.live_config.to_live_config() if payload.live_config else None,
        filters=payload.filters,
    )


@router.post("/{report_id}/preview")
def preview_report(
    report_id: UUID,
    payload: PreviewPayload,
    context: RequestUserContext = Depends(get_current_user_context),
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    service = _service(db)
    return service.execute_preview(_preview_input(report_id, context, payload)).to_payload()


@router.get("/{report_id}/preview")
def preview_report_all_rows(
    report_id: UUID,
    context: RequestUserContext = Depends(get_current_user_context),
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    service = _service(db)
    return service.execute_preview(_preview_input(report_id, context, None)).to_payload()


@router.get("/{report_id}/periods")
def list_report_periods(
    report_id: UUID,
    context: RequestUserContext = Depends(get_current_user_context),
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    service = _service(db)
    return service.available_periods(report_id, context.organization_id)


@router.post("/{report_id}/validate")
def validate_report(
    report_id: UUID,
    payload: ValidatePayload | None = None,
    context: RequestUserContext = Depends(get_current_user_context),
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    service = _service(db)
    live_config = payload.live_config.to_live_config() if payload and payload.live_config else None
    return service.validate_definition(report_id, context.organization_id, live_config)


@router.post("/{report_id}/export")
def export_report(
    report_id: UUID,
    payload: PreviewPayload | None = None,
    format: str = Query(default="xlsx"),
    context: RequestUserContext = Depends(get_current_user_context),
    db: Session = Depends(get_db_session),
) -> Response:
    exported = ReportExportService(db).export_preview(_preview_input(report_id, context, payload), format)
    return Response(
        content=exported.content,
        media_type=exported.media_type,
        headers={"Content-Disposition": f'attachment; filename="{exported.filename}"'},
    )
