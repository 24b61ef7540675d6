"""Database engine and session factory for the durable short URL store.

This module provides SQLAlchemy async engine setup and database lifecycle
operations. PostgreSQL (asyncpg) is the deployment backend; any SQLAlchemy
async URL works.

Flow Diagram — Database Operations
=================================
::
    ┌─────────────┐
    │ ShortURL    │
    │ Store call  │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ async_      │
    │ session()   │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Execute +    │
    │ commit      │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Auto-close   │
    │ (async with) │
    └─────────────┘

How to Use
===========
**Step 1 — Initialize on startup**::
    await init_db()  # Creates tables

**Step 2 — Open a session**::
    async with async_session() as session:
        result = await session.execute(select(ShortURL))

**Step 3 — Cleanup on shutdown**::
    await close_db()

Key Behaviours
===============
- Sessions are short-lived and owned by the store, one per operation, so the
  background flush task and request handlers never share one.
- Connection pooling is configured for production workloads.
- Tables are created automatically on application startup.

Classes:
    Base:  SQLAlchemy declarative base for all models.

Functions:
    init_db():  Creates all tables on startup.
    close_db():  Disposes the engine on shutdown.
"""

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from shortener.config import get_settings

__all__ = ["Base", "async_session", "close_db", "engine", "init_db"]

settings = get_settings()

engine = create_async_engine(
    settings.DATABASE_URL,
    echo=(settings.APP_ENV == "development"),
    pool_size=settings.DATABASE_POOL_SIZE,
    max_overflow=settings.DATABASE_MAX_OVERFLOW,
    pool_pre_ping=True,
)

async_session = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    pass


async def init_db() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    await engine.dispose()
