"""Relational storage backend on SQLAlchemy 2.0 async.

Flow Diagram — save()
=====================
::
    ┌─────────────┐
    │ INSERT … ON │
    │ CONFLICT    │
    │ (user_id,   │
    │ original_url)│
    │ DO NOTHING  │
    │ RETURNING   │
    └──────┬──────┘
    ROW?  │
    ┌─────┴─────┐
    │ NO         │ YES
    ▼            ▼
┌─────────┐  ┌─────────┐
│ SELECT  │  │ commit  │
│ existing│  │ (new)   │
│ key →   │  └─────────┘
│ conflict│
└─────────┘

A unique violation on ``short_url`` is not covered by the ON CONFLICT target,
so it surfaces as IntegrityError and becomes ShortKeyCollisionError; the
service then retries with a fresh key.

Key Behaviours
===============
- One transaction per mutating operation; batch inserts share a single transaction.
- ``batch_mark_deleted`` is one UPDATE restricted to the owner's rows.
- ``ping`` runs ``SELECT 1`` with a 5 second deadline.
- Task cancellation propagates into the driver call.
"""

import asyncio
import logging
from collections.abc import Sequence

from sqlalchemy import func, select, text, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from shortener.database import close_db, create_session_factory, init_db
from shortener.exceptions import NotFoundError, ShortKeyCollisionError, StorageError, URLConflictError
from shortener.models import ShortURL, URLMapping
from shortener.storage.base import BatchItem, SavedURL

__all__ = ["DatabaseStorage"]

PING_TIMEOUT_SECONDS = 5.0


class DatabaseStorage:
    def __init__(self, engine: AsyncEngine, logger: logging.Logger | None = None) -> None:
        self._engine = engine
        self._sessions = create_session_factory(engine)
        self._logger = logger or logging.getLogger("shortener.storage.database")

    async def init(self) -> None:
        try:
            await init_db(self._engine)
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to initialise schema: {exc}") from exc

    async def close(self) -> None:
        await close_db(self._engine)

    async def ping(self) -> None:
        try:
            async with asyncio.timeout(PING_TIMEOUT_SECONDS):
                async with self._engine.connect() as conn:
                    await conn.execute(text("SELECT 1"))
        except (SQLAlchemyError, OSError, TimeoutError) as exc:
            raise StorageError(f"Database ping failed: {exc}") from exc

    # ========================================================================
    # READS
    # ========================================================================

    async def get_by_short_key(self, short_key: str) -> URLMapping:
        async with self._sessions() as session:
            try:
                row = await session.scalar(select(ShortURL).where(ShortURL.short_url == short_key))
            except SQLAlchemyError as exc:
                raise StorageError(f"Lookup of '{short_key}' failed: {exc}") from exc
        if row is None:
            raise NotFoundError(f"Short key '{short_key}' not found")
        return row.to_mapping()

    async def find_short_key(self, user_id: str, original_url: str) -> str:
        async with self._sessions() as session:
            try:
                short_key = await self._existing_key(session, user_id, original_url)
            except SQLAlchemyError as exc:
                raise StorageError(f"Lookup of '{original_url}' failed: {exc}") from exc
        if short_key is None:
            raise NotFoundError(f"URL '{original_url}' is not shortened for this user")
        return short_key

    async def list_by_user(self, user_id: str) -> list[URLMapping]:
        stmt = select(ShortURL).where(ShortURL.user_id == user_id, ShortURL.is_deleted.is_(False)).order_by(ShortURL.id)
        async with self._sessions() as session:
            try:
                rows = (await session.scalars(stmt)).all()
            except SQLAlchemyError as exc:
                raise StorageError(f"Listing URLs of '{user_id}' failed: {exc}") from exc
        return [row.to_mapping() for row in rows]

    async def count_urls(self) -> int:
        return await self._count(select(func.count()).select_from(ShortURL))

    async def count_users(self) -> int:
        return await self._count(select(func.count(func.distinct(ShortURL.user_id))))

    # ========================================================================
    # MUTATIONS
    # ========================================================================

    async def save(self, mapping: URLMapping) -> None:
        async with self._sessions() as session:
            try:
                async with session.begin():
                    created = await self._insert_one(session, mapping.user_id, mapping.original_url, mapping.short_key)
                    if created is None:
                        existing = await self._existing_key(session, mapping.user_id, mapping.original_url)
                        raise URLConflictError(existing or "")
            except IntegrityError as exc:
                raise ShortKeyCollisionError(mapping.short_key) from exc
            except SQLAlchemyError as exc:
                raise StorageError(f"Saving '{mapping.original_url}' failed: {exc}") from exc

    async def batch_save(self, user_id: str, items: Sequence[BatchItem]) -> list[SavedURL]:
        results: list[SavedURL] = []
        current: BatchItem | None = None
        async with self._sessions() as session:
            try:
                async with session.begin():
                    for current in items:
                        created = await self._insert_one(session, user_id, current.original_url, current.short_key)
                        if created is not None:
                            results.append(SavedURL(short_key=created, created=True))
                            continue
                        existing = await self._existing_key(session, user_id, current.original_url)
                        if existing is None:
                            raise StorageError(f"Conflicting row for '{current.original_url}' vanished")
                        results.append(SavedURL(short_key=existing, created=False))
            except IntegrityError as exc:
                raise ShortKeyCollisionError(current.short_key if current else "") from exc
            except SQLAlchemyError as exc:
                raise StorageError(f"Batch insert of {len(items)} URLs failed: {exc}") from exc
        return results

    async def batch_mark_deleted(self, user_id: str, short_keys: Sequence[str]) -> None:
        if not short_keys:
            return
        stmt = (
            update(ShortURL)
            .where(ShortURL.short_url.in_(list(short_keys)), ShortURL.user_id == user_id)
            .values(is_deleted=True)
        )
        async with self._sessions() as session:
            try:
                async with session.begin():
                    await session.execute(stmt)
            except SQLAlchemyError as exc:
                raise StorageError(f"Marking {len(short_keys)} URLs deleted failed: {exc}") from exc

    # ========================================================================
    # PRIVATE HELPERS
    # ========================================================================

    def _insert_statement(self):
        if self._engine.dialect.name == "postgresql":
            return postgresql.insert(ShortURL)
        return sqlite.insert(ShortURL)

    async def _insert_one(self, session: AsyncSession, user_id: str, original_url: str, short_key: str) -> str | None:
        stmt = (
            self._insert_statement()
            .values(short_url=short_key, original_url=original_url, user_id=user_id)
            .on_conflict_do_nothing(index_elements=[ShortURL.user_id, ShortURL.original_url])
            .returning(ShortURL.short_url)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    async def _existing_key(self, session: AsyncSession, user_id: str, original_url: str) -> str | None:
        return await session.scalar(
            select(ShortURL.short_url).where(ShortURL.user_id == user_id, ShortURL.original_url == original_url)
        )

    async def _count(self, stmt) -> int:
        async with self._sessions() as session:
            try:
                return int(await session.scalar(stmt) or 0)
            except SQLAlchemyError as exc:
                raise StorageError(f"Count query failed: {exc}") from exc
