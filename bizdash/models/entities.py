"""ORM entities for the reporting schema."""

from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import JSON, DateTime, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from bizdash.db.base import Base

JSONDocument = JSON().with_variant(JSONB(), "postgresql")


class Cadence(str, enum.Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"

    @classmethod
    def _missing_(cls, value: object) -> Cadence | None:
        # Definitions saved before weekly support used "annual".
        if isinstance(value, str):
            normalized = value.strip().lower()
            if normalized == "annual":
                return cls.YEARLY
            for member in cls:
                if member.value == normalized:
                    return member
        return None


class ReportLayout(str, enum.Enum):
    STANDARD = "standard"
    PIVOT = "pivot"


class CompareMode(str, enum.Enum):
    NONE = "none"
    MOM = "mom"
    YOY = "yoy"


class PivotDuplicatePolicy(str, enum.Enum):
    LAST = "last"
    SUM = "sum"


class Organization(Base):
    __tablename__ = "organizations"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)


class Dataset(Base):
    __tablename__ = "datasets"
    __table_args__ = (
        UniqueConstraint("organization_id", "name", name="uq_datasets_org_name"),
        Index("ix_datasets_organization_id", "organization_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("organizations.id"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    # Column schema as uploaded: [{"key": ..., "label": ..., "dataType": ...}]
    schema: Mapped[list] = mapped_column(JSONDocument, nullable=False, default=list)
    rows: Mapped[list] = mapped_column(JSONDocument, nullable=False, default=list)
    row_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)


class ReportDefinition(Base):
    __tablename__ = "report_definitions"
    __table_args__ = (
        Index("ix_report_definitions_organization_id", "organization_id"),
        Index("ix_report_definitions_dataset_id", "dataset_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("organizations.id"), nullable=False
    )
    dataset_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("datasets.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    cadence: Mapped[str] = mapped_column(String(16), nullable=False, default=Cadence.MONTHLY.value)
    date_column_key: Mapped[str] = mapped_column(String(255), nullable=False)
    layout: Mapped[str] = mapped_column(String(16), nullable=False, default=ReportLayout.STANDARD.value)
    compare_mode: Mapped[str] = mapped_column(String(16), nullable=False, default=CompareMode.NONE.value)
    columns: Mapped[list] = mapped_column(JSONDocument, nullable=False, default=list)
    formula_rows: Mapped[list] = mapped_column(JSONDocument, nullable=False, default=list)
    pivot_column_key: Mapped[str | None] = mapped_column(String(255), nullable=True)
    metric_rows: Mapped[list] = mapped_column(JSONDocument, nullable=False, default=list)
    pivot_duplicate_policy: Mapped[str] = mapped_column(
        String(16), nullable=False, default=PivotDuplicatePolicy.LAST.value
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)
