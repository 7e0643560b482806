"""Database session helpers built on SQLModel."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import text
from sqlalchemy.engine import Engine, make_url
from sqlmodel import Session, SQLModel, create_engine

from guestpilot.core.config import AppSettings

EngineCacheKey = tuple[str, bool]
_ENGINE_CACHE: dict[EngineCacheKey, Engine] = {}


def engine_options(dsn: str) -> dict[str, Any]:
    """Driver-specific engine arguments.

    SQLite connections are shared between FastAPI's worker threads, so the
    same-thread check is disabled; server databases get liveness pings.
    """

    if make_url(dsn).get_backend_name() == "sqlite":
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True}


def create_engine_from_settings(settings: AppSettings, *, echo: bool = False) -> Engine:
    """Create (or reuse) a SQLModel engine based on ``AppSettings``."""

    dsn = settings.postgres.dsn
    cache_key: EngineCacheKey = (dsn, echo)
    if cache_key not in _ENGINE_CACHE:
        _ENGINE_CACHE[cache_key] = create_engine(dsn, echo=echo, **engine_options(dsn))
    return _ENGINE_CACHE[cache_key]


def init_db(engine: Engine) -> None:
    """Create every GuestPilot table that does not exist yet.

    On Postgres the pgvector extension backing chunk embeddings is enabled first.
    """

    from . import models  # noqa: F401  registers the tables on SQLModel.metadata

    if engine.dialect.name == "postgresql":
        with engine.begin() as connection:
            connection.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
    SQLModel.metadata.create_all(engine)


@contextmanager
def session_scope(settings: AppSettings, *, echo: bool = False) -> Iterator[Session]:
    """Session that commits on success and rolls back on any error."""

    engine = create_engine_from_settings(settings, echo=echo)
    with Session(engine) as session:
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
