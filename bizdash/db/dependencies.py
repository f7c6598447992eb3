"""Database dependencies for FastAPI endpoints."""

from collections.abc import Generator

from sqlalchemy.orm import Session

from bizdash.db.session import SessionLocal


def get_db_session() -> Generator[Session, None, None]:
    """Yield a SQLAlchemy session scoped to one request.

    Report execution only reads, so nothing is committed here.
    """

    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
