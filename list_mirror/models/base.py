"""Declarative base plus the process-wide engine and session factory."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from importlib import import_module
from typing import Any

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.schema import CreateSchema
from sqlalchemy.orm import DeclarativeBase, Session, close_all_sessions, sessionmaker

from ..utils.config import GlobalSettings, get_settings

# Every table lives in one schema so foreign keys stay schema-local; SQLite
# maps it to the main database.
RAW_SCHEMA = "mirror_raw"
DEFAULT_DATABASE_URL = "sqlite:///./list_mirror.db"

MODEL_MODULES = (
    "list_mirror.models.sync_attempt",
    "list_mirror.models.artifact",
    "list_mirror.models.contracts",
)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""


_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None


def load_models() -> None:
    """Import every model module so ``Base.metadata`` knows all tables."""

    for module in MODEL_MODULES:
        import_module(module)


def engine_options(database_url: str, settings: GlobalSettings) -> dict[str, Any]:
    """Keyword arguments for :func:`create_engine` on the given backend."""

    if database_url.startswith("sqlite"):
        return {
            "connect_args": {"check_same_thread": False},
            "execution_options": {"schema_translate_map": {RAW_SCHEMA: None}},
        }

    pool = settings.database
    options: dict[str, Any] = {
        "pool_size": pool.pool_size,
        "max_overflow": pool.max_overflow,
        "pool_timeout": pool.timeout,
        "pool_pre_ping": pool.pre_ping,
    }
    if pool.recycle_seconds > 0:
        options["pool_recycle"] = pool.recycle_seconds
    return options


def _enforce_sqlite_foreign_keys(dbapi_connection: Any, connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def get_engine() -> Engine:
    """Return the shared engine, creating it and any missing tables on first use."""

    global _engine
    if _engine is None:
        settings = get_settings()
        database_url = settings.database_url or DEFAULT_DATABASE_URL
        engine = create_engine(database_url, **engine_options(database_url, settings))
        if engine.dialect.name == "sqlite":
            event.listen(engine, "connect", _enforce_sqlite_foreign_keys)
        else:
            with engine.begin() as connection:
                connection.execute(CreateSchema(RAW_SCHEMA, if_not_exists=True))
        load_models()
        Base.metadata.create_all(bind=engine)
        _engine = engine
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    """Return the session factory bound to the shared engine."""

    global _session_factory
    if _session_factory is None:
        _session_factory = sessionmaker(bind=get_engine(), autoflush=False, expire_on_commit=False)
    return _session_factory


def get_session() -> Session:
    return get_session_factory()()


@contextmanager
def session_scope() -> Iterator[Session]:
    """Commit on success, roll back on any error, always close."""

    session = get_session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def reset_engine() -> None:
    """Dispose the shared engine so the next call reads fresh settings."""

    global _engine, _session_factory
    if _session_factory is not None:
        close_all_sessions()
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None
