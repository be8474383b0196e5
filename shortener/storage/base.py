"""Storage contract shared by the in-memory and relational backends."""

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

from shortener.models import URLMapping

__all__ = ["URLRepository", "BatchItem", "SavedURL"]


@dataclass(frozen=True, slots=True)
class BatchItem:
    """One URL of a batch insert together with the key minted for it."""

    original_url: str
    short_key: str


@dataclass(frozen=True, slots=True)
class SavedURL:
    """Outcome of one batch item: the bound key and whether it was new."""

    short_key: str
    created: bool


class URLRepository(Protocol):
    """Capability interface the service and the deletion pipeline rely on.

    Implementations raise:
        URLConflictError: ``save`` of an already shortened (user_id, original_url).
        ShortKeyCollisionError: short key already bound to another mapping.
        NotFoundError: lookups of unknown keys.
        StorageError: any backend failure.
    """

    async def init(self) -> None: ...

    async def close(self) -> None: ...

    async def ping(self) -> None: ...

    async def save(self, mapping: URLMapping) -> None: ...

    async def get_by_short_key(self, short_key: str) -> URLMapping: ...

    async def find_short_key(self, user_id: str, original_url: str) -> str: ...

    async def list_by_user(self, user_id: str) -> list[URLMapping]: ...

    async def batch_save(self, user_id: str, items: Sequence[BatchItem]) -> list[SavedURL]: ...

    async def batch_mark_deleted(self, user_id: str, short_keys: Sequence[str]) -> None: ...

    async def count_urls(self) -> int: ...

    async def count_users(self) -> int: ...
