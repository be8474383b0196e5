"""URL Shortener Service Layer - Core Business Logic

Both dispatch surfaces (HTTP routes and the gRPC servicer) call into
``ShorteningService``; it owns key generation, URL validation, idempotent
inserts and the hand-off of delete requests to the deletion pipeline.

Architecture Overview
=====================
::
    ┌──────────────┐   ┌──────────────┐
    │ HTTP routes  │   │ gRPC servicer│
    └──────┬───────┘   └──────┬───────┘
           └────────┬─────────┘
                    ▼
         ┌─────────────────────┐
         │ ShorteningService   │
         │ • shorten / batch   │
         │ • resolve           │
         │ • list / delete     │
         │ • stats / ping      │
         └────┬───────────┬────┘
              ▼           ▼
     ┌──────────────┐ ┌──────────────────┐
     │ URLRepository│◀│ DeletionPipeline │
     │ (memory / db)│ │ (async, batched) │
     └──────────────┘ └──────────────────┘

URL Creation Flow
-----------------
::
    ┌─────────────┐
    │ Validate URL│──invalid──▶ InvalidArgumentError
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Generate key│◀──────────────┐
    └──────┬──────┘               │ ShortKeyCollisionError
           ▼                      │ (max 3 attempts)
    ┌─────────────┐               │
    │ storage.save│───────────────┘
    └──────┬──────┘
     OK    │    URLConflictError
    ┌──────┴──────────┐
    ▼                 ▼
 created=True     created=False, existing key

Key Behaviours
===============
- Shortening is idempotent per (user_id, original_url).
- A tombstoned key resolves to GoneError, never NotFoundError.
- Batches keep input order and reuse one key for duplicates within the batch.
- Delete requests are only enqueued; the response never waits for storage.

Functions:
    generate_short_code():  Random base62 key.
    is_valid_url():  Absolute URL check.
    build_short_url():  Joins the public base URL and a key.
"""

import logging
import random
import re
import string
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Union
from urllib.parse import urlsplit

import validators
from prometheus_client import Counter

from shortener.deletion import DeleteTask, DeletionPipeline
from shortener.exceptions import (
    GoneError,
    InternalError,
    InvalidArgumentError,
    NotFoundError,
    ShortKeyCollisionError,
    StorageError,
    UnavailableError,
    URLConflictError,
)
from shortener.models import URLMapping
from shortener.storage.base import BatchItem, URLRepository

if TYPE_CHECKING:
    from shortener.dependencies import RequestContext

__all__ = [
    "ALPHABET",
    "MAX_KEY_ATTEMPTS",
    "generate_short_code",
    "is_valid_url",
    "build_short_url",
    "ShortenResult",
    "BatchEntry",
    "BatchResult",
    "UserURL",
    "StatsSnapshot",
    "ShorteningService",
]


# ============================================================================
# CONSTANTS AND CONFIGURATION
# ============================================================================

ALPHABET = string.ascii_letters + string.digits
_REG_NAME = re.compile(r"[A-Za-z0-9._~!$&'()*+,;=%-]+")
DEFAULT_SHORT_CODE_LENGTH = 8
MAX_KEY_ATTEMPTS = 3

# Seeded from os.urandom at import; short keys are not secrets.
_rng = random.Random()


# ============================================================================
# PROMETHEUS METRICS
# ============================================================================

URLS_CREATED_TOTAL = Counter(
    "shortener_urls_created_total",
    "Short URLs minted",
)
REDIRECTS_TOTAL = Counter(
    "shortener_redirects_total",
    "Short key resolutions",
    ["status"],
)


def generate_short_code(length: int = DEFAULT_SHORT_CODE_LENGTH) -> str:
    return "".join(_rng.choices(ALPHABET, k=length))


def is_valid_url(url: str) -> bool:
    """Accept any absolute URL with a scheme and a host.

    ``validators`` covers the common shapes. Hosts it refuses but RFC 3986
    still allows as a reg-name (underscores, for one) pass the second check.
    """
    if validators.url(url, simple_host=True, strict_query=False):
        return True
    try:
        parts = urlsplit(url)
    except ValueError:
        return False
    return bool(parts.scheme and parts.hostname and _REG_NAME.fullmatch(parts.hostname))


def build_short_url(base_url: str, short_key: str) -> str:
    return f"{base_url.rstrip('/')}/{short_key}"


# ============================================================================
# DATA STRUCTURES
# ============================================================================


@dataclass(frozen=True, slots=True)
class ShortenResult:
    short_key: str
    created: bool


@dataclass(frozen=True, slots=True)
class BatchEntry:
    correlation_id: str
    original_url: str


@dataclass(frozen=True, slots=True)
class BatchResult:
    correlation_id: str
    short_url: str


@dataclass(frozen=True, slots=True)
class UserURL:
    short_url: str
    original_url: str


@dataclass(frozen=True, slots=True)
class StatsSnapshot:
    urls: int
    users: int


# ============================================================================
# CORE SERVICE CLASS
# ============================================================================


class ShorteningService:
    """Core service class for URL shortening operations.

    Example:
        >>> service = ShorteningService(storage, pipeline)
        >>> result = await service.shorten("user-1", "https://example.com/")
        >>> result.created
        True
    """

    def __init__(
        self,
        storage: URLRepository,
        pipeline: DeletionPipeline,
        logger: Union[logging.Logger, logging.LoggerAdapter, None] = None,
        key_generator: Callable[[], str] = generate_short_code,
    ) -> None:
        self._storage = storage
        self._pipeline = pipeline
        self._logger = logger or logging.getLogger("shortener.service")
        self._key_generator = key_generator

    @classmethod
    def from_context(cls, ctx: "RequestContext") -> "ShorteningService":
        """Per-request view sharing the process-wide storage and pipeline.

        Args:
            ctx: Request context with the service manager and request logger

        Returns:
            ShorteningService: Service logging through the request's logger
        """
        manager = ctx.service_manager
        return cls(manager.storage, manager.pipeline, logger=ctx.logger, key_generator=manager.key_generator)

    # ========================================================================
    # PUBLIC API METHODS
    # ========================================================================

    async def shorten(self, user_id: str, original_url: str) -> ShortenResult:
        """Return the key bound to (user_id, original_url), minting one if needed.

        Raises:
            InvalidArgumentError: ``original_url`` is not an absolute URL.
            InternalError: no free key after ``MAX_KEY_ATTEMPTS`` tries, or storage failure.
        """
        assert user_id, "user_id must be set by the auth layer"
        self._require_valid_url(original_url)

        for attempt in range(1, MAX_KEY_ATTEMPTS + 1):
            short_key = self._key_generator()
            try:
                await self._storage.save(URLMapping(short_key=short_key, original_url=original_url, user_id=user_id))
            except URLConflictError as exc:
                self._logger.info(f"URL already shortened: {original_url} -> {exc.short_key}")
                return ShortenResult(short_key=exc.short_key, created=False)
            except ShortKeyCollisionError:
                self._logger.warning(f"Short key collision on attempt {attempt}: {short_key}")
                continue

            URLS_CREATED_TOTAL.inc()
            self._logger.info(f"URL shortened: {original_url} -> {short_key}")
            return ShortenResult(short_key=short_key, created=True)

        raise InternalError(f"Could not allocate a unique short key after {MAX_KEY_ATTEMPTS} attempts")

    async def resolve(self, short_key: str) -> str:
        """Map a short key back to its original URL.

        Raises:
            InvalidArgumentError: empty key.
            NotFoundError: the key was never issued.
            GoneError: the key was deleted by its owner.
        """
        if not short_key:
            raise InvalidArgumentError("Short key must not be empty")

        try:
            mapping = await self._storage.get_by_short_key(short_key)
        except StorageError:
            REDIRECTS_TOTAL.labels(status="error").inc()
            raise
        except NotFoundError:
            REDIRECTS_TOTAL.labels(status="not_found").inc()
            raise

        if mapping.deleted:
            REDIRECTS_TOTAL.labels(status="gone").inc()
            raise GoneError(f"Short key '{short_key}' has been deleted")
        REDIRECTS_TOTAL.labels(status="ok").inc()
        return mapping.original_url

    async def batch_shorten(self, user_id: str, items: Sequence[BatchEntry], base_url: str) -> list[BatchResult]:
        """Shorten many URLs in one storage transaction.

        Args:
            user_id: Owner of the new mappings
            items: Correlated URLs; order is kept in the result
            base_url: Public prefix of the returned short URLs

        Returns:
            list[BatchResult]: One entry per input item, in input order
        """
        assert user_id, "user_id must be set by the auth layer"
        if not items:
            raise InvalidArgumentError("Batch must contain at least one URL")
        for item in items:
            if not item.correlation_id:
                raise InvalidArgumentError("correlation_id must not be empty")
            self._require_valid_url(item.original_url)

        for attempt in range(1, MAX_KEY_ATTEMPTS + 1):
            planned = [BatchItem(original_url=item.original_url, short_key=self._key_generator()) for item in items]
            try:
                saved = await self._storage.batch_save(user_id, planned)
            except ShortKeyCollisionError as exc:
                self._logger.warning(f"Short key collision in batch on attempt {attempt}: {exc.short_key}")
                continue

            created = sum(1 for entry in saved if entry.created)
            URLS_CREATED_TOTAL.inc(created)
            self._logger.info(f"Batch shortened {len(items)} URLs ({created} new) for user {user_id}")
            return [
                BatchResult(correlation_id=item.correlation_id, short_url=build_short_url(base_url, entry.short_key))
                for item, entry in zip(items, saved)
            ]

        raise InternalError(f"Could not allocate unique short keys after {MAX_KEY_ATTEMPTS} attempts")

    async def list_user_urls(self, user_id: str, base_url: str) -> list[UserURL]:
        mappings = await self._storage.list_by_user(user_id)
        return [
            UserURL(short_url=build_short_url(base_url, mapping.short_key), original_url=mapping.original_url)
            for mapping in mappings
        ]

    def enqueue_delete(self, user_id: str, short_keys: Sequence[str]) -> None:
        """Queue keys for asynchronous tombstoning; never waits for storage.

        Raises:
            InvalidArgumentError: empty list or an empty key.
            OverloadedError: the pipeline ingress is full.
            ShuttingDownError: the pipeline is stopping.
        """
        if not short_keys:
            raise InvalidArgumentError("At least one short key is required")
        if any(not key for key in short_keys):
            raise InvalidArgumentError("Short keys must not be empty")

        self._pipeline.submit(DeleteTask(user_id=user_id, short_keys=tuple(short_keys)))
        self._logger.info(f"Queued {len(short_keys)} URLs for deletion for user {user_id}")

    async def stats(self) -> StatsSnapshot:
        return StatsSnapshot(urls=await self._storage.count_urls(), users=await self._storage.count_users())

    async def ping(self) -> None:
        try:
            await self._storage.ping()
        except StorageError as exc:
            self._logger.error(f"Storage ping failed: {exc}")
            raise UnavailableError(str(exc)) from exc

    async def stop(self, timeout: float) -> None:
        """Stop the deletion pipeline, then close storage."""
        drained = await self._pipeline.stop(timeout)
        if not drained:
            self._logger.warning("Deletion pipeline did not drain before shutdown")
        await self._storage.close()

    # ========================================================================
    # PRIVATE HELPERS
    # ========================================================================

    @staticmethod
    def _require_valid_url(original_url: str) -> None:
        if not isinstance(original_url, str) or not is_valid_url(original_url):
            raise InvalidArgumentError(f"Invalid URL provided: {original_url!r}")
