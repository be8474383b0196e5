"""Error taxonomy shared by the storage, service and dispatch layers.

Each surface (HTTP routes, gRPC servicer) translates these classes to its own
status codes; business code only raises them.
"""

__all__ = [
    "ShortenerError",
    "InvalidArgumentError",
    "NotFoundError",
    "GoneError",
    "UnauthenticatedError",
    "ForbiddenError",
    "UnavailableError",
    "OverloadedError",
    "ShuttingDownError",
    "InternalError",
    "StorageError",
    "URLConflictError",
    "ShortKeyCollisionError",
]


class ShortenerError(Exception):
    """Base class for every error raised by the service."""


class InvalidArgumentError(ShortenerError):
    """Malformed input: bad JSON, non-absolute URL, empty key."""


class NotFoundError(ShortenerError):
    """No mapping exists for the requested short key."""


class GoneError(ShortenerError):
    """The mapping exists but has been tombstoned."""


class UnauthenticatedError(ShortenerError):
    """A valid token was required and not presented."""


class ForbiddenError(ShortenerError):
    """Client address is outside the trusted subnet."""


class UnavailableError(ShortenerError):
    """Storage liveness probe failed."""


class OverloadedError(ShortenerError):
    """The deletion ingress queue is full."""


class ShuttingDownError(ShortenerError):
    """The deletion pipeline no longer accepts tasks."""


class InternalError(ShortenerError):
    """Anything that is not the caller's fault."""


class StorageError(InternalError):
    """A storage backend failed to complete an operation."""


class URLConflictError(ShortenerError):
    """The (user_id, original_url) pair is already shortened.

    Carries the pre-existing short key so callers can report it.
    """

    def __init__(self, short_key: str) -> None:
        super().__init__(f"URL already shortened as '{short_key}'")
        self.short_key = short_key


class ShortKeyCollisionError(ShortenerError):
    """A freshly generated short key is already bound to another URL."""

    def __init__(self, short_key: str) -> None:
        super().__init__(f"Short key '{short_key}' collision detected")
        self.short_key = short_key
