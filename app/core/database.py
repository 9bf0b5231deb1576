from __future__ import annotations

import logging
from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from app.config import get_database_settings

logger = logging.getLogger(__name__)

_ASYNC_SCHEMES = {"postgres": "postgresql+asyncpg", "postgresql": "postgresql+asyncpg"}


class Base(DeclarativeBase):
  pass


engine: AsyncEngine | None = None
SessionLocal: async_sessionmaker[AsyncSession] | None = None


def normalize_dsn(dsn: str | None) -> str | None:
  """Route plain Postgres DSNs through asyncpg; other schemes pass through untouched."""
  if not dsn:
    return None
  scheme, separator, rest = dsn.partition("://")
  if not separator:
    return dsn
  return f"{_ASYNC_SCHEMES.get(scheme, scheme)}://{rest}"


def get_db_engine() -> AsyncEngine | None:
  global engine
  if engine is None:
    settings = get_database_settings()
    database_url = normalize_dsn(settings.pg_dsn)
    if database_url:
      engine = create_async_engine(database_url, echo=settings.debug, pool_pre_ping=True, connect_args={"timeout": settings.pg_connect_timeout})
  return engine


def get_session_factory() -> async_sessionmaker[AsyncSession] | None:
  """Session factory for repositories; None when no database is configured."""
  global SessionLocal
  if SessionLocal is None:
    db_engine = get_db_engine()
    if db_engine is not None:
      SessionLocal = async_sessionmaker(bind=db_engine, expire_on_commit=False, class_=AsyncSession)
  return SessionLocal


async def dispose_engine() -> None:
  """Close pooled connections; the next session request rebuilds the engine."""
  global engine, SessionLocal
  if engine is None:
    return
  await engine.dispose()
  logger.info("Database engine disposed.")
  engine = None
  SessionLocal = None


async def get_db() -> AsyncGenerator[AsyncSession]:
  """Dependency to get a database session."""
  session_factory = get_session_factory()
  if session_factory is None:
    raise RuntimeError("Database connection is not configured (CARE_PG_DSN is missing).")

  async with session_factory() as session:
    yield session
