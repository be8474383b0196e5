"""gRPC servicer for ``shortener.Shortener``.

Each method parses its JSON request, calls ShorteningService and translates
domain errors to status codes.

Status Mapping
==============
::
    URL already shortened   ALREADY_EXISTS  (short URL in trailing metadata "short-url")
    InvalidArgumentError    INVALID_ARGUMENT
    UnauthenticatedError    UNAUTHENTICATED
    ForbiddenError          PERMISSION_DENIED
    NotFoundError           NOT_FOUND
    GoneError               NOT_FOUND       "URL has been deleted"
    OverloadedError         RESOURCE_EXHAUSTED
    ShuttingDownError       UNAVAILABLE
    UnavailableError        UNAVAILABLE
    anything else           INTERNAL
"""

from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

import grpc
from pydantic import ValidationError

from shortener.auth import current_user_id
from shortener.exceptions import (
    ForbiddenError,
    GoneError,
    InvalidArgumentError,
    NotFoundError,
    OverloadedError,
    ShortenerError,
    ShuttingDownError,
    UnauthenticatedError,
    UnavailableError,
)
from shortener.rpc import messages as pb
from shortener.service import BatchEntry, build_short_url

if TYPE_CHECKING:
    from shortener.dependencies import ServiceManager

__all__ = ["SERVICE_NAME", "SHORT_URL_METADATA_KEY", "ShortenerServicer", "status_code_for", "method_path"]

SERVICE_NAME = "shortener.Shortener"
SHORT_URL_METADATA_KEY = "short-url"
GONE_MESSAGE = "URL has been deleted"

_CODE_BY_ERROR: list[tuple[type[ShortenerError], grpc.StatusCode]] = [
    (InvalidArgumentError, grpc.StatusCode.INVALID_ARGUMENT),
    (UnauthenticatedError, grpc.StatusCode.UNAUTHENTICATED),
    (ForbiddenError, grpc.StatusCode.PERMISSION_DENIED),
    (GoneError, grpc.StatusCode.NOT_FOUND),
    (NotFoundError, grpc.StatusCode.NOT_FOUND),
    (OverloadedError, grpc.StatusCode.RESOURCE_EXHAUSTED),
    (ShuttingDownError, grpc.StatusCode.UNAVAILABLE),
    (UnavailableError, grpc.StatusCode.UNAVAILABLE),
]


def status_code_for(exc: ShortenerError) -> grpc.StatusCode:
    for error_type, code in _CODE_BY_ERROR:
        if isinstance(exc, error_type):
            return code
    return grpc.StatusCode.INTERNAL


def method_path(name: str) -> str:
    return f"/{SERVICE_NAME}/{name}"


class ShortenerServicer:
    def __init__(self, manager: "ServiceManager") -> None:
        self._manager = manager
        self._base_url = manager.settings.BASE_URL
        self._logger = manager.logger.getChild("rpc")

    @property
    def _service(self):
        return self._manager.service

    # ========================================================================
    # RPC METHODS
    # ========================================================================

    async def CreateShortURL(self, request: pb.CreateRequest, context: grpc.aio.ServicerContext) -> pb.CreateResponse:
        result = await self._service.shorten(current_user_id.get(), request.original_url)
        short_url = build_short_url(self._base_url, result.short_key)
        if not result.created:
            await context.abort(
                grpc.StatusCode.ALREADY_EXISTS,
                f"URL already shortened: {short_url}",
                trailing_metadata=((SHORT_URL_METADATA_KEY, short_url),),
            )
        return pb.CreateResponse(short_url=short_url)

    async def GetOriginalURL(self, request: pb.GetRequest, context: grpc.aio.ServicerContext) -> pb.GetResponse:
        original_url = await self._service.resolve(request.short_url)
        return pb.GetResponse(original_url=original_url)

    async def BatchCreate(
        self, request: pb.BatchCreateRequest, context: grpc.aio.ServicerContext
    ) -> pb.BatchCreateResponse:
        entries = [BatchEntry(correlation_id=i.correlation_id, original_url=i.original_url) for i in request.items]
        results = await self._service.batch_shorten(current_user_id.get(), entries, self._base_url)
        return pb.BatchCreateResponse(
            items=[pb.BatchCreateResult(correlation_id=r.correlation_id, short_url=r.short_url) for r in results]
        )

    async def GetUserURLs(
        self, request: pb.UserURLsRequest, context: grpc.aio.ServicerContext
    ) -> pb.UserURLsResponse:
        urls = await self._service.list_user_urls(current_user_id.get(), self._base_url)
        return pb.UserURLsResponse(urls=[pb.UserURL(short_url=u.short_url, original_url=u.original_url) for u in urls])

    async def DeleteUserURLs(self, request: pb.DeleteRequest, context: grpc.aio.ServicerContext) -> pb.DeleteResponse:
        self._service.enqueue_delete(current_user_id.get(), request.short_urls)
        return pb.DeleteResponse()

    async def GetStats(self, request: pb.StatsRequest, context: grpc.aio.ServicerContext) -> pb.StatsResponse:
        snapshot = await self._service.stats()
        return pb.StatsResponse(urls=snapshot.urls, users=snapshot.users)

    async def Ping(self, request: pb.PingRequest, context: grpc.aio.ServicerContext) -> pb.PingResponse:
        await self._service.ping()
        return pb.PingResponse(ok=True)

    # ========================================================================
    # REGISTRATION
    # ========================================================================

    def generic_handler(self) -> grpc.GenericRpcHandler:
        methods: dict[str, tuple[Callable[..., Awaitable[pb.Message]], type[pb.Message]]] = {
            "CreateShortURL": (self.CreateShortURL, pb.CreateRequest),
            "GetOriginalURL": (self.GetOriginalURL, pb.GetRequest),
            "BatchCreate": (self.BatchCreate, pb.BatchCreateRequest),
            "GetUserURLs": (self.GetUserURLs, pb.UserURLsRequest),
            "DeleteUserURLs": (self.DeleteUserURLs, pb.DeleteRequest),
            "GetStats": (self.GetStats, pb.StatsRequest),
            "Ping": (self.Ping, pb.PingRequest),
        }
        handlers = {
            name: grpc.unary_unary_rpc_method_handler(
                self._wrap(name, behavior, request_type),
                response_serializer=pb.Message.serialize,
            )
            for name, (behavior, request_type) in methods.items()
        }
        return grpc.method_handlers_generic_handler(SERVICE_NAME, handlers)

    def _wrap(self, name: str, behavior, request_type: type[pb.Message]):
        # The request arrives as raw bytes so that malformed JSON maps to INVALID_ARGUMENT.
        async def handle(raw: bytes, context: grpc.aio.ServicerContext) -> pb.Message:
            try:
                request = request_type.deserialize(raw)
            except ValidationError as exc:
                details = f"Malformed {name} request: {exc.error_count()} errors"
                await context.abort(grpc.StatusCode.INVALID_ARGUMENT, details)

            try:
                return await behavior(request, context)
            except GoneError:
                await context.abort(grpc.StatusCode.NOT_FOUND, GONE_MESSAGE)
            except ShortenerError as exc:
                code = status_code_for(exc)
                if code is grpc.StatusCode.INTERNAL:
                    self._logger.error(f"{name} failed: {exc}")
                await context.abort(code, str(exc))

        return handle
