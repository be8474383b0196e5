"""Tests for the in-memory backend and its JSON-lines persistence."""

import json

import pytest

from shortener.exceptions import NotFoundError, ShortKeyCollisionError, StorageError, URLConflictError
from shortener.models import URLMapping
from shortener.storage import BatchItem, InMemoryStorage


def _mapping(short_key: str, url: str = "https://example.com/", user_id: str = "user-1") -> URLMapping:
    return URLMapping(short_key=short_key, original_url=url, user_id=user_id)


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "short-url-db.json"


@pytest.mark.asyncio
async def test_init_creates_missing_file(db_path) -> None:
    storage = InMemoryStorage(db_path)
    await storage.init()
    assert db_path.exists()
    assert await storage.count_urls() == 0


@pytest.mark.asyncio
async def test_save_and_lookup(db_path) -> None:
    storage = InMemoryStorage(db_path)
    await storage.init()
    await storage.save(_mapping("abc12345"))

    mapping = await storage.get_by_short_key("abc12345")
    assert mapping.original_url == "https://example.com/"
    assert await storage.find_short_key("user-1", "https://example.com/") == "abc12345"
    with pytest.raises(NotFoundError):
        await storage.get_by_short_key("missing0")
    with pytest.raises(NotFoundError):
        await storage.find_short_key("user-2", "https://example.com/")


@pytest.mark.asyncio
async def test_save_conflict_reports_existing_key(db_path) -> None:
    storage = InMemoryStorage(db_path)
    await storage.init()
    await storage.save(_mapping("abc12345"))

    with pytest.raises(URLConflictError) as exc_info:
        await storage.save(_mapping("zzz99999"))
    assert exc_info.value.short_key == "abc12345"

    with pytest.raises(ShortKeyCollisionError):
        await storage.save(_mapping("abc12345", url="https://other.example/"))
    assert await storage.count_urls() == 1


@pytest.mark.asyncio
async def test_every_mutation_is_appended(db_path) -> None:
    storage = InMemoryStorage(db_path)
    await storage.init()
    await storage.save(_mapping("abc12345"))
    await storage.batch_mark_deleted("user-1", ["abc12345"])

    lines = [json.loads(line) for line in db_path.read_text().splitlines()]
    assert len(lines) == 2
    assert lines[0] == {
        "uuid": 1,
        "short_url": "abc12345",
        "original_url": "https://example.com/",
        "user_id": "user-1",
        "is_deleted": False,
    }
    assert lines[1]["is_deleted"] is True


@pytest.mark.asyncio
async def test_restart_replays_file(db_path) -> None:
    storage = InMemoryStorage(db_path)
    await storage.init()
    await storage.save(_mapping("abc12345"))
    await storage.save(_mapping("def67890", url="https://two.example/"))
    await storage.batch_mark_deleted("user-1", ["def67890"])

    reloaded = InMemoryStorage(db_path)
    await reloaded.init()

    assert (await reloaded.get_by_short_key("abc12345")).deleted is False
    assert (await reloaded.get_by_short_key("def67890")).deleted is True
    assert [m.short_key for m in await reloaded.list_by_user("user-1")] == ["abc12345"]

    await reloaded.save(_mapping("ghi13579", url="https://three.example/"))
    last = json.loads(db_path.read_text().splitlines()[-1])
    assert last["uuid"] == 3


@pytest.mark.asyncio
async def test_close_compacts_to_one_line_per_mapping(db_path) -> None:
    storage = InMemoryStorage(db_path)
    await storage.init()
    await storage.save(_mapping("abc12345"))
    await storage.batch_mark_deleted("user-1", ["abc12345"])
    await storage.close()

    lines = [json.loads(line) for line in db_path.read_text().splitlines()]
    assert len(lines) == 1
    assert lines[0]["is_deleted"] is True


@pytest.mark.asyncio
async def test_load_skips_corrupt_and_conflicting_lines(db_path) -> None:
    def line(uuid: int, short_url: str, original_url: str) -> str:
        return json.dumps(
            {"uuid": uuid, "short_url": short_url, "original_url": original_url, "user_id": "u1", "is_deleted": False}
        )

    lines = [
        line(1, "abc12345", "https://a.example/"),
        "not json at all",
        line(2, "abc12345", "https://b.example/"),
        line(3, "xyz00000", "https://a.example/"),
        line(4, "", "https://c.example/"),
    ]
    db_path.write_text("\n".join(lines) + "\n")

    storage = InMemoryStorage(db_path)
    await storage.init()

    assert await storage.count_urls() == 1
    assert (await storage.get_by_short_key("abc12345")).original_url == "https://a.example/"


@pytest.mark.asyncio
async def test_batch_mark_deleted_only_touches_owner_rows(db_path) -> None:
    storage = InMemoryStorage(db_path)
    await storage.init()
    await storage.save(_mapping("abc12345", user_id="owner"))

    await storage.batch_mark_deleted("intruder", ["abc12345", "unknown0"])
    assert (await storage.get_by_short_key("abc12345")).deleted is False

    await storage.batch_mark_deleted("owner", ["abc12345"])
    await storage.batch_mark_deleted("owner", ["abc12345"])
    assert (await storage.get_by_short_key("abc12345")).deleted is True
    assert await storage.count_urls() == 1
    assert len(db_path.read_text().splitlines()) == 2


@pytest.mark.asyncio
async def test_batch_save_dedupes_and_rejects_collisions_atomically(db_path) -> None:
    storage = InMemoryStorage(db_path)
    await storage.init()
    await storage.save(_mapping("taken000", url="https://existing.example/"))

    saved = await storage.batch_save(
        "user-1",
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
            "user-1",
            [
                BatchItem(original_url="https://new.example/", short_key="key00004"),
                BatchItem(original_url="https://newer.example/", short_key="taken000"),
            ],
        )
    with pytest.raises(NotFoundError):
        await storage.get_by_short_key("key00004")


@pytest.mark.asyncio
async def test_counts_include_tombstones(db_path) -> None:
    storage = InMemoryStorage(db_path)
    await storage.init()
    await storage.save(_mapping("abc12345", user_id="u1"))
    await storage.save(_mapping("def67890", user_id="u2"))
    await storage.batch_mark_deleted("u2", ["def67890"])

    assert await storage.count_urls() == 2
    assert await storage.count_users() == 2


@pytest.mark.asyncio
async def test_failed_tombstone_write_leaves_mapping_live(db_path, monkeypatch) -> None:
    storage = InMemoryStorage(db_path)
    await storage.init()
    await storage.save(_mapping("abcdefgh", user_id="u1"))

    def disk_full(lines: list[str]) -> None:
        raise OSError("No space left on device")

    monkeypatch.setattr(storage, "_write_lines", disk_full)
    with pytest.raises(StorageError):
        await storage.batch_mark_deleted("u1", ["abcdefgh"])

    assert (await storage.get_by_short_key("abcdefgh")).deleted is False
    assert [m.short_key for m in await storage.list_by_user("u1")] == ["abcdefgh"]

    # Once the disk recovers the same delete goes through
    monkeypatch.undo()
    await storage.batch_mark_deleted("u1", ["abcdefgh"])
    assert (await storage.get_by_short_key("abcdefgh")).deleted is True
