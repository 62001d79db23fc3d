"""
app/db/session.py — SQLAlchemy engine and session factory.

The engine is created on first use, so modules that never touch the
database import cleanly when DATABASE_URL is unset.

Usage:
    from app.db.session import get_db

    # As a FastAPI dependency:
    def my_route(db: Session = Depends(get_db)):
        ...

    # In scripts:
    with get_session() as db:
        ...
"""

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from app.config import settings

_engine: Engine | None = None
_SessionLocal: sessionmaker | None = None


class DatabaseNotConfiguredError(RuntimeError):
    """DATABASE_URL is not set."""


def is_database_configured() -> bool:
    return bool(settings.database_url)


def get_engine() -> Engine:
    global _engine, _SessionLocal
    if _engine is None:
        if not is_database_configured():
            raise DatabaseNotConfiguredError("DATABASE_URL is not set")
        kwargs = {"pool_pre_ping": True, "echo": False}
        if not settings.database_url.startswith("sqlite"):
            kwargs.update(pool_size=5, max_overflow=10)
        _engine = create_engine(settings.database_url, **kwargs)
        _SessionLocal = sessionmaker(
            bind=_engine,
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
        )
    return _engine


def _new_session() -> Session:
    get_engine()
    return _SessionLocal()


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency that yields a DB session and ensures it's closed."""
    db = _new_session()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@contextmanager
def get_session() -> Generator[Session, None, None]:
    """Context manager for use in scripts and services (non-FastAPI code)."""
    db = _new_session()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
