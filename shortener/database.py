"""Database configuration and session management for the relational backend.

This module provides SQLAlchemy async engine setup, session factories,
and schema lifecycle operations. PostgreSQL is the production target;
SQLite (aiosqlite) is supported for tests and local runs.

Flow Diagram — Database Operations
=================================
::
    ┌─────────────┐
    │  Storage    │
    │  operation  │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ session     │
    │ factory     │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ begin()      │
    │ transaction │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ execute      │
    │ statements  │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ commit or    │
    │ rollback     │
    └─────────────┘

How to Use
===========
**Step 1 — Build the engine**::
    engine = create_engine(settings.DATABASE_URL)

**Step 2 — Create tables**::
    await init_db(engine)

**Step 3 — Open sessions**::
    session_factory = create_session_factory(engine)
    async with session_factory() as session, session.begin():
        ...

**Step 4 — Cleanup on shutdown**::
    await close_db(engine)

Key Behaviours
===============
- Connection pooling is configured for PostgreSQL workloads.
- In-memory SQLite uses a single shared connection so every session sees the same data.
- Tables are created on startup; there is no migration tool.

Classes:
    Base:  SQLAlchemy declarative base for all models.

Functions:
    create_engine():  Builds an AsyncEngine for a DSN.
    create_session_factory():  Session factory bound to an engine.
    init_db():  Creates all tables.
    close_db():  Disposes the engine.
"""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

__all__ = ["Base", "create_engine", "create_session_factory", "init_db", "close_db"]


class Base(DeclarativeBase):
    pass


def create_engine(
    database_url: str,
    pool_size: int = 20,
    max_overflow: int = 10,
    echo: bool = False,
) -> AsyncEngine:
    if database_url.startswith("sqlite"):
        # aiosqlite: keep one connection so ":memory:" databases survive across sessions
        return create_async_engine(
            database_url,
            echo=echo,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )

    return create_async_engine(
        database_url,
        echo=echo,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=True,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def init_db(engine: AsyncEngine) -> None:
    # Registers the table on Base.metadata before create_all runs.
    from shortener import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db(engine: AsyncEngine) -> None:
    await engine.dispose()
