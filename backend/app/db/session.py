"""Database engine, session factory, and startup migration helpers."""

from __future__ import annotations

import asyncio
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any

from alembic.config import Config
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from app import models as _models
from app.core.config import settings
from app.core.exceptions import StorageUnavailable
from app.core.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Iterator

# Import model modules so SQLModel metadata is fully registered at startup.
_MODEL_REGISTRY = _models

_SQLITE_BUSY_TIMEOUT_SECONDS = 30


def _normalize_database_url(database_url: str) -> str:
    if "://" not in database_url:
        return database_url
    scheme, rest = database_url.split("://", 1)
    if scheme in {"postgresql", "postgres"}:
        return f"postgresql+psycopg://{rest}"
    if scheme == "sqlite":
        return f"sqlite+aiosqlite://{rest}"
    return database_url


def engine_kwargs(database_url: str) -> dict[str, Any]:
    """Driver-specific engine options; SQLite writers wait on the file lock."""
    if database_url.startswith("sqlite"):
        return {"connect_args": {"timeout": _SQLITE_BUSY_TIMEOUT_SECONDS}}
    return {"pool_pre_ping": True}


def make_engine(database_url: str) -> AsyncEngine:
    url = _normalize_database_url(database_url)
    return create_async_engine(url, **engine_kwargs(url))


def make_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async_engine: AsyncEngine = make_engine(settings.database_url)
async_session_maker = make_session_maker(async_engine)
logger = get_logger(__name__)


@contextmanager
def storage_errors(operation: str) -> Iterator[None]:
    """Re-raise SQLAlchemy failures as `StorageUnavailable` tagged with the operation."""
    try:
        yield
    except SQLAlchemyError as exc:
        logger.error(
            "storage.operation_failed",
            extra={"operation": operation, "error": str(exc)},
        )
        raise StorageUnavailable(f"{operation} failed: {exc.__class__.__name__}") from exc


def _alembic_config() -> Config:
    alembic_ini = Path(__file__).resolve().parents[2] / "alembic.ini"

    alembic_cfg = Config(str(alembic_ini))
    alembic_cfg.attributes["configure_logger"] = False
    return alembic_cfg


def run_migrations() -> None:
    """Apply Alembic migrations to the latest revision."""
    from alembic import command

    logger.info("db.migrations.start")
    command.upgrade(_alembic_config(), "head")
    logger.info("db.migrations.complete")


async def init_db() -> None:
    """Initialize database schema, running migrations when configured."""
    if settings.db_auto_migrate:
        versions_dir = Path(__file__).resolve().parents[2] / "migrations" / "versions"
        if any(versions_dir.glob("*.py")):
            await asyncio.to_thread(run_migrations)
            return
        logger.warning("db.migrations.none_found_using_create_all")

    async with async_engine.connect() as conn, conn.begin():
        await conn.run_sync(SQLModel.metadata.create_all)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield a request-scoped async DB session with safe rollback on errors."""
    async with async_session_maker() as session:
        try:
            yield session
        finally:
            in_txn = False
            try:
                in_txn = bool(session.in_transaction())
            except SQLAlchemyError:
                logger.exception("db.session.inspect_failed")
            if in_txn:
                try:
                    await session.rollback()
                except SQLAlchemyError:
                    logger.exception("db.session.rollback_failed")
