"""Organization context extraction for tenant-scoped endpoints."""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from bizdash.core.config import get_settings
from bizdash.db.dependencies import get_db_session
from bizdash.models.entities import Organization


@dataclass(frozen=True)
class RequestUserContext:
    """Request actor and the organization every query is scoped to."""

    organization_id: UUID
    email: str


def _parse_organization_id(raw: str) -> UUID:
    try:
        return UUID(raw.strip())
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-Organization-Id must be a UUID.",
        ) from exc


def _resolve_identity(x_organization_id: str | None, x_user_email: str | None) -> tuple[UUID, str]:
    settings = get_settings()
    if x_organization_id:
        email = (x_user_email or settings.auth_dev_email).strip().lower()
        return _parse_organization_id(x_organization_id), email

    if settings.auth_allow_dev_principal:
        return _parse_organization_id(settings.auth_dev_organization_id), settings.auth_dev_email.strip().lower()

    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Missing organization header. Expected X-Organization-Id or enable development principal fallback.",
    )


def get_current_user_context(
    x_organization_id: str | None = Header(default=None, alias="X-Organization-Id"),
    x_user_email: str | None = Header(default=None, alias="X-User-Email"),
    db: Session = Depends(get_db_session),
) -> RequestUserContext:
    """Resolve the caller's organization.

    Header strategy: trusted headers set by the gateway (or test clients),
    with a development fallback controlled by settings.
    """

    organization_id, email = _resolve_identity(x_organization_id, x_user_email)
    ensure_organization_exists(db, organization_id)
    return RequestUserContext(organization_id=organization_id, email=email)


def ensure_organization_exists(db: Session, organization_id: UUID) -> Organization:
    """Resolve organization or raise 404."""

    organization = db.scalar(select(Organization).where(Organization.id == organization_id))
    if organization is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Organization not found.",
        )
    return organization
