"""Tests for the SQLAlchemy backend, run against in-memory SQLite."""

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio

from shortener.database import create_engine
from shortener.exceptions import NotFoundError, ShortKeyCollisionError, URLConflictError
from shortener.models import URLMapping
from shortener.storage import BatchItem, DatabaseStorage


@pytest_asyncio.fixture
async def storage() -> AsyncGenerator[DatabaseStorage, None]:
    storage = DatabaseStorage(create_engine("sqlite+aiosqlite:///:memory:"))
    await storage.init()
    yield storage
    await storage.close()


@pytest.mark.asyncio
async def test_ping(storage: DatabaseStorage) -> None:
    await storage.ping()


@pytest.mark.asyncio
async def test_save_and_get(storage: DatabaseStorage) -> None:
    await storage.save(URLMapping(short_key="abc12345", original_url="https://example.com/", user_id="u1"))

    mapping = await storage.get_by_short_key("abc12345")
    assert mapping == URLMapping(short_key="abc12345", original_url="https://example.com/", user_id="u1")
    assert await storage.find_short_key("u1", "https://example.com/") == "abc12345"

    with pytest.raises(NotFoundError):
        await storage.get_by_short_key("missing0")


@pytest.mark.asyncio
async def test_save_same_url_for_same_user_conflicts(storage: DatabaseStorage) -> None:
    await storage.save(URLMapping(short_key="abc12345", original_url="https://example.com/", user_id="u1"))

    with pytest.raises(URLConflictError) as exc_info:
        await storage.save(URLMapping(short_key="new00000", original_url="https://example.com/", user_id="u1"))
    assert exc_info.value.short_key == "abc12345"

    # Same URL, other user: a separate mapping
    await storage.save(URLMapping(short_key="new00000", original_url="https://example.com/", user_id="u2"))
    assert await storage.count_urls() == 2


@pytest.mark.asyncio
async def test_save_key_collision(storage: DatabaseStorage) -> None:
    await storage.save(URLMapping(short_key="abc12345", original_url="https://a.example/", user_id="u1"))

    with pytest.raises(ShortKeyCollisionError):
        await storage.save(URLMapping(short_key="abc12345", original_url="https://b.example/", user_id="u2"))
    assert await storage.count_urls() == 1


@pytest.mark.asyncio
async def test_batch_save_in_one_transaction(storage: DatabaseStorage) -> None:
    await storage.save(URLMapping(short_key="taken000", original_url="https://existing.example/", user_id="u1"))

    saved = await storage.batch_save(
        "u1",
        [
            BatchItem(original_url="https://a.example/", short_key="key00001"),
            BatchItem(original_url="https://a.example/", short_key="key00002"),
            BatchItem(original_url="https://existing.example/", short_key="key00003"),
        ],
    )
    assert [(s.short_key, s.created) for s in saved] == [
        ("key00001", True),
        ("key00001", False),
        ("taken000", False),
    ]

    with pytest.raises(ShortKeyCollisionError):
        await storage.batch_save(
            "u1",
            [
                BatchItem(original_url="https://new.example/", short_key="key00004"),
                BatchItem(original_url="https://newer.example/", short_key="taken000"),
            ],
        )
    with pytest.raises(NotFoundError):
        await storage.get_by_short_key("key00004")


@pytest.mark.asyncio
async def test_mark_deleted_is_owner_scoped(storage: DatabaseStorage) -> None:
    await storage.save(URLMapping(short_key="abc12345", original_url="https://a.example/", user_id="owner"))
    await storage.save(URLMapping(short_key="def67890", original_url="https://b.example/", user_id="owner"))

    await storage.batch_mark_deleted("intruder", ["abc12345"])
    assert (await storage.get_by_short_key("abc12345")).deleted is False

    await storage.batch_mark_deleted("owner", ["abc12345", "unknown0"])
    assert (await storage.get_by_short_key("abc12345")).deleted is True

    remaining = await storage.list_by_user("owner")
    assert [m.short_key for m in remaining] == ["def67890"]


@pytest.mark.asyncio
async def test_counts(storage: DatabaseStorage) -> None:
    assert await storage.count_urls() == 0
    assert await storage.count_users() == 0

    await storage.save(URLMapping(short_key="abc12345", original_url="https://a.example/", user_id="u1"))
    await storage.save(URLMapping(short_key="def67890", original_url="https://b.example/", user_id="u1"))
    await storage.save(URLMapping(short_key="ghi13579", original_url="https://a.example/", user_id="u2"))
    await storage.batch_mark_deleted("u2", ["ghi13579"])

    assert await storage.count_urls() == 3
    assert await storage.count_users() == 2
