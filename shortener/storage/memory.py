"""In-memory storage backend with JSON-lines file persistence.

Two dictionaries hold the data:

- ``short_key -> URLMapping`` answers redirects;
- ``(user_id, original_url) -> short_key`` enforces per-user idempotence.

Both sit behind one reader/writer lock: lookups take the read side, every
mutation takes the write side.

Persistence
===========
::
    {"uuid": 1, "short_url": "aB3dE5fG", "original_url": "https://a/", "user_id": "u1", "is_deleted": false}
    {"uuid": 1, "short_url": "aB3dE5fG", "original_url": "https://a/", "user_id": "u1", "is_deleted": true}

- Every insert and every tombstone is appended to the file as it happens.
- Loading replays the file; a later line for the same mapping can only set
  ``is_deleted``. Lines that contradict an earlier binding are rejected.
- ``close()`` compacts the file to one line per mapping.
"""

import asyncio
import json
import logging
import os
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from shortener.exceptions import NotFoundError, ShortKeyCollisionError, StorageError, URLConflictError
from shortener.models import URLMapping
from shortener.storage.base import BatchItem, SavedURL

__all__ = ["InMemoryStorage", "ReadWriteLock", "StoredRecord"]


class StoredRecord(BaseModel):
    """One line of the persistence file."""

    model_config = ConfigDict(populate_by_name=True)

    uuid: int
    short_key: str = Field(alias="short_url", min_length=1)
    original_url: str = Field(min_length=1)
    user_id: str = Field(min_length=1)
    deleted: bool = Field(default=False, alias="is_deleted")

    @classmethod
    def from_mapping(cls, uuid: int, mapping: URLMapping) -> "StoredRecord":
        return cls(
            uuid=uuid,
            short_key=mapping.short_key,
            original_url=mapping.original_url,
            user_id=mapping.user_id,
            deleted=mapping.deleted,
        )

    def to_mapping(self) -> URLMapping:
        return URLMapping(
            short_key=self.short_key,
            original_url=self.original_url,
            user_id=self.user_id,
            deleted=self.deleted,
        )

    def to_line(self) -> str:
        return json.dumps(self.model_dump(by_alias=True), ensure_ascii=False) + "\n"


class ReadWriteLock:
    """Asyncio reader/writer lock; waiting writers block new readers."""

    def __init__(self) -> None:
        self._cond = asyncio.Condition()
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0

    @asynccontextmanager
    async def read(self) -> AsyncIterator[None]:
        async with self._cond:
            await self._cond.wait_for(lambda: not self._writer and self._waiting_writers == 0)
            self._readers += 1
        try:
            yield
        finally:
            async with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @asynccontextmanager
    async def write(self) -> AsyncIterator[None]:
        async with self._cond:
            self._waiting_writers += 1
            try:
                await self._cond.wait_for(lambda: not self._writer and self._readers == 0)
            except BaseException:
                self._waiting_writers -= 1
                self._cond.notify_all()
                raise
            self._waiting_writers -= 1
            self._writer = True
        try:
            yield
        finally:
            async with self._cond:
                self._writer = False
                self._cond.notify_all()


class InMemoryStorage:
    def __init__(self, file_path: str | os.PathLike[str], logger: logging.Logger | None = None) -> None:
        self._path = Path(file_path)
        self._logger = logger or logging.getLogger("shortener.storage.memory")
        self._by_short_key: dict[str, URLMapping] = {}
        self._by_user_url: dict[tuple[str, str], str] = {}
        self._uuids: dict[str, int] = {}
        self._last_uuid = 0
        self._lock = ReadWriteLock()
        self._closed = False

    @property
    def file_path(self) -> Path:
        return self._path

    # ========================================================================
    # LIFECYCLE
    # ========================================================================

    async def init(self) -> None:
        async with self._lock.write():
            await asyncio.to_thread(self._load)

    async def close(self) -> None:
        async with self._lock.write():
            if self._closed:
                return
            lines = [
                StoredRecord.from_mapping(self._uuids[key], mapping).to_line()
                for key, mapping in self._by_short_key.items()
            ]
            try:
                await asyncio.to_thread(self._rewrite, lines)
            except OSError as exc:
                raise StorageError(f"Failed to compact {self._path}: {exc}") from exc
            self._closed = True
            self._logger.info(f"In-memory storage flushed {len(lines)} mappings to {self._path}")

    async def ping(self) -> None:
        return None

    # ========================================================================
    # READS
    # ========================================================================

    async def get_by_short_key(self, short_key: str) -> URLMapping:
        async with self._lock.read():
            mapping = self._by_short_key.get(short_key)
        if mapping is None:
            raise NotFoundError(f"Short key '{short_key}' not found")
        return mapping

    async def find_short_key(self, user_id: str, original_url: str) -> str:
        async with self._lock.read():
            short_key = self._by_user_url.get((user_id, original_url))
        if short_key is None:
            raise NotFoundError(f"URL '{original_url}' is not shortened for this user")
        return short_key

    async def list_by_user(self, user_id: str) -> list[URLMapping]:
        async with self._lock.read():
            return [
                self._by_short_key[short_key]
                for (owner, _), short_key in self._by_user_url.items()
                if owner == user_id and not self._by_short_key[short_key].deleted
            ]

    async def count_urls(self) -> int:
        async with self._lock.read():
            return len(self._by_short_key)

    async def count_users(self) -> int:
        async with self._lock.read():
            return len({user_id for user_id, _ in self._by_user_url})

    # ========================================================================
    # MUTATIONS
    # ========================================================================

    async def save(self, mapping: URLMapping) -> None:
        async with self._lock.write():
            existing = self._by_user_url.get((mapping.user_id, mapping.original_url))
            if existing is not None:
                raise URLConflictError(existing)
            if mapping.short_key in self._by_short_key:
                raise ShortKeyCollisionError(mapping.short_key)

            record = self._insert(mapping)
            try:
                await self._append([record.to_line()])
            except StorageError:
                self._discard(mapping.short_key)
                raise

    async def batch_save(self, user_id: str, items: Sequence[BatchItem]) -> list[SavedURL]:
        async with self._lock.write():
            # Validate everything first so a collision leaves no partial batch behind.
            planned: dict[str, str] = {}
            results: list[SavedURL] = []
            for item in items:
                existing = self._by_user_url.get((user_id, item.original_url))
                if existing is not None:
                    results.append(SavedURL(short_key=existing, created=False))
                    continue
                if item.original_url in planned:
                    results.append(SavedURL(short_key=planned[item.original_url], created=False))
                    continue
                if item.short_key in self._by_short_key or item.short_key in planned.values():
                    raise ShortKeyCollisionError(item.short_key)
                planned[item.original_url] = item.short_key
                results.append(SavedURL(short_key=item.short_key, created=True))

            lines = [
                self._insert(URLMapping(short_key=short_key, original_url=original_url, user_id=user_id)).to_line()
                for original_url, short_key in planned.items()
            ]
            try:
                await self._append(lines)
            except StorageError:
                for short_key in planned.values():
                    self._discard(short_key)
                raise
            return results

    async def batch_mark_deleted(self, user_id: str, short_keys: Sequence[str]) -> None:
        async with self._lock.write():
            tombstones: dict[str, URLMapping] = {}
            for short_key in short_keys:
                mapping = self._by_short_key.get(short_key)
                if mapping is None or mapping.user_id != user_id or mapping.deleted:
                    continue
                tombstone = URLMapping(
                    short_key=mapping.short_key,
                    original_url=mapping.original_url,
                    user_id=mapping.user_id,
                    deleted=True,
                )
                tombstones[short_key] = tombstone

            # Memory only changes once the tombstones are on disk.
            await self._append(
                [StoredRecord.from_mapping(self._uuids[key], mapping).to_line() for key, mapping in tombstones.items()]
            )
            self._by_short_key.update(tombstones)

    # ========================================================================
    # PRIVATE HELPERS
    # ========================================================================

    def _insert(self, mapping: URLMapping) -> StoredRecord:
        self._last_uuid += 1
        self._by_short_key[mapping.short_key] = mapping
        self._by_user_url[(mapping.user_id, mapping.original_url)] = mapping.short_key
        self._uuids[mapping.short_key] = self._last_uuid
        return StoredRecord.from_mapping(self._last_uuid, mapping)

    def _discard(self, short_key: str) -> None:
        mapping = self._by_short_key.pop(short_key)
        self._by_user_url.pop((mapping.user_id, mapping.original_url), None)
        self._uuids.pop(short_key, None)

    async def _append(self, lines: list[str]) -> None:
        if not lines:
            return
        try:
            await asyncio.to_thread(self._write_lines, lines)
        except OSError as exc:
            raise StorageError(f"Failed to persist to {self._path}: {exc}") from exc

    def _write_lines(self, lines: list[str]) -> None:
        with self._path.open("a", encoding="utf-8") as fh:
            fh.writelines(lines)

    def _rewrite(self, lines: list[str]) -> None:
        tmp_path = self._path.with_name(self._path.name + ".tmp")
        with tmp_path.open("w", encoding="utf-8") as fh:
            fh.writelines(lines)
        os.replace(tmp_path, self._path)

    def _load(self) -> None:
        if not self._path.exists():
            self._path.touch()
            return

        loaded = rejected = 0
        with self._path.open("r", encoding="utf-8") as fh:
            for line_no, line in enumerate(fh, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    record = StoredRecord.model_validate_json(line)
                except ValidationError:
                    self._logger.warning(f"Skipping unreadable record at {self._path}:{line_no}")
                    rejected += 1
                    continue

                if self._replay(record):
                    loaded += 1
                else:
                    self._logger.warning(
                        f"Rejecting conflicting record for '{record.short_key}' at {self._path}:{line_no}"
                    )
                    rejected += 1

        self._logger.info(f"Loaded {loaded} records from {self._path} ({rejected} rejected)")

    def _replay(self, record: StoredRecord) -> bool:
        current = self._by_short_key.get(record.short_key)
        if current is not None:
            if (current.user_id, current.original_url) != (record.user_id, record.original_url):
                return False
            if record.deleted and not current.deleted:
                self._by_short_key[record.short_key] = record.to_mapping()
            return True

        if (record.user_id, record.original_url) in self._by_user_url:
            return False

        self._by_short_key[record.short_key] = record.to_mapping()
        self._by_user_url[(record.user_id, record.original_url)] = record.short_key
        self._uuids[record.short_key] = record.uuid
        self._last_uuid = max(self._last_uuid, record.uuid)
        return True
