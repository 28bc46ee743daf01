"""
Kindred — async engine, sessions and ORM base.

Two ways to reach PostgreSQL:

* the Cloud SQL Python Connector with IAM auth, when
  ``CLOUD_SQL_USE_UNIX_SOCKET`` is set and an instance connection name is
  configured;
* a plain ``asyncpg`` URL from ``DATABASE_URL`` otherwise.

Nothing connects at import time, so models can be imported by tests,
Alembic and scripts without a database.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, AsyncGenerator, AsyncIterator

import structlog
from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from app.config import Settings, get_settings

logger = structlog.get_logger("kindred.database")


class Base(DeclarativeBase):
    """Declarative base shared by every Kindred model."""


# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests).
JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _normalise_url(url: str) -> str:
    for prefix in ("postgres://", "postgresql://"):
        if url.startswith(prefix):
            return "postgresql+asyncpg://" + url[len(prefix):]
    return url


def _engine_kwargs(settings: Settings) -> dict[str, Any]:
    return {
        "echo": settings.LOG_LEVEL.upper() == "DEBUG",
        "pool_size": 10,
        "max_overflow": 5,
        "pool_timeout": 30,
        "pool_recycle": 1800,
        "pool_pre_ping": True,
    }


def _cloud_sql_creator(settings: Settings):
    from google.cloud.sql.connector import Connector

    connector = Connector()

    async def _connect():
        return await connector.connect_async(
            settings.CLOUD_SQL_INSTANCE_CONNECTION,
            "asyncpg",
            user=settings.DB_USER,
            password=settings.DB_PASSWORD,
            db=settings.DB_NAME,
            enable_iam_auth=True,
        )

    return _connect


@lru_cache(maxsize=1)
def get_engine() -> AsyncEngine:
    """The process-wide engine, built on first call."""
    settings = get_settings()
    kwargs = _engine_kwargs(settings)

    if settings.CLOUD_SQL_USE_UNIX_SOCKET and settings.CLOUD_SQL_INSTANCE_CONNECTION:
        engine = create_async_engine(
            "postgresql+asyncpg://",
            async_creator=_cloud_sql_creator(settings),
            **kwargs,
        )
        logger.info(
            "database_engine_created",
            strategy="cloud_sql_connector",
            instance=settings.CLOUD_SQL_INSTANCE_CONNECTION,
        )
        return engine

    engine = create_async_engine(_normalise_url(settings.DATABASE_URL), **kwargs)
    logger.info("database_engine_created", strategy="database_url")
    return engine


@lru_cache(maxsize=1)
def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=get_engine(),
        class_=AsyncSession,
        expire_on_commit=False,
    )


@asynccontextmanager
async def session_scope() -> AsyncIterator[AsyncSession]:
    """Commit on success, roll back on any exception."""
    async with get_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: one transactional session per request."""
    async with session_scope() as session:
        yield session
