from __future__ import annotations

import uuid
from collections.abc import Callable, Generator
from typing import Any

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from bizdash.db.base import Base
from bizdash.db.dependencies import get_db_session
import bizdash.models.entities  # noqa: F401
from bizdash.main import create_app
from bizdash.models.entities import Dataset, Organization, ReportDefinition
from bizdash.repositories.report_repository import ReportRepository

TEST_TABLES = [
    Organization.__table__,
    Dataset.__table__,
    ReportDefinition.__table__,
]


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(bind=engine, tables=TEST_TABLES)
    TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)

    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine, tables=TEST_TABLES)


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    app = create_app()

    def override_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db_session] = override_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture()
def organization(db_session: Session) -> Organization:
    repo = ReportRepository(db_session)
    row = repo.add_organization(Organization(id=uuid.uuid4(), name="Acme Retail"))
    db_session.commit()
    return row


@pytest.fixture()
def make_report(db_session: Session, organization: Organization) -> Callable[..., ReportDefinition]:
    """Persist a dataset plus a report definition over it."""

    repo = ReportRepository(db_session)

    def factory(rows: list[dict[str, Any]], **fields: Any) -> ReportDefinition:
        dataset = repo.add_dataset(
            Dataset(
                organization_id=organization.id,
                name=fields.pop("dataset_name", f"dataset-{uuid.uuid4().hex[:8]}"),
                schema=fields.pop("schema", []),
                rows=rows,
            )
        )
        fields.setdefault("name", "Monthly sales")
        fields.setdefault("cadence", "monthly")
        fields.setdefault("date_column_key", "date")
        report = repo.add_report_definition(
            ReportDefinition(organization_id=organization.id, dataset_id=dataset.id, **fields)
        )
        db_session.commit()
        return report

    return factory


@pytest.fixture()
def org_headers(organization: Organization) -> dict[str, str]:
    return {
        "X-Organization-Id": str(organization.id),
        "X-User-Email": "analyst@acme.test",
    }
