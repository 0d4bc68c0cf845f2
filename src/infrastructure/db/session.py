# src/infrastructure/db/session.py

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from src.infrastructure.config import settings


# -----------------------------
# Engine
# -----------------------------
def build_engine(database_url: str, **kwargs) -> Engine:
    if database_url.startswith("sqlite"):
        # SQLite connections are shared across the request threads.
        kwargs.setdefault("connect_args", {"check_same_thread": False})
    return create_engine(
        database_url,
        echo=False,
        future=True,
        pool_pre_ping=True,
        **kwargs,
    )


engine: Engine = build_engine(settings.database_url)


# -----------------------------
# Base Class for Models
# -----------------------------
class Base(DeclarativeBase):
    pass


# -----------------------------
# Session Factory
# -----------------------------
SessionLocal = sessionmaker(
    bind=engine,
    autoflush=False,
    autocommit=False,
    expire_on_commit=False,
)


# -----------------------------
# Context Managers
# -----------------------------
@contextmanager
def session_scope(factory: sessionmaker) -> Iterator[Session]:
    """One short unit of work: commit on success, roll back on error."""
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
