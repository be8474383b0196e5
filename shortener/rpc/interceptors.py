"""gRPC server interceptors: logging, token auth, trusted subnet.

Interceptor Chain (outermost first)
===================================
::
    LoggingInterceptor        method, outcome, duration
      └─ AuthInterceptor      metadata "token" → current_user_id
          └─ TrustedSubnetInterceptor   protected methods only
              └─ ShortenerServicer

Key Behaviours
===============
- Public methods skip authentication entirely.
- Without a valid token a new one is sent back as initial metadata ``token``;
  strict methods then fail with UNAUTHENTICATED, the others proceed as the new user.
- A protected method matches either exactly or by prefix, so a whole service
  can be protected with ``/package.Service/``.
"""

import logging
import time
from collections.abc import Awaitable, Callable, Iterable

import grpc

from shortener.auth import TokenManager, current_user_id
from shortener.exceptions import ForbiddenError, InternalError
from shortener.trustednet import TrustedSubnet, client_ip_from, parse_grpc_peer

__all__ = [
    "PUBLIC_METHODS",
    "LoggingInterceptor",
    "AuthInterceptor",
    "TrustedSubnetInterceptor",
]

PUBLIC_METHODS = frozenset(
    {
        "/grpc.health.v1.Health/Check",
        "/shortener.Shortener/Ping",
    }
)

Continuation = Callable[[grpc.HandlerCallDetails], Awaitable[grpc.RpcMethodHandler | None]]


def _metadata(details: grpc.HandlerCallDetails) -> dict[str, str]:
    return {key.lower(): value for key, value in (details.invocation_metadata or ()) if isinstance(value, str)}


def _wrap_unary(handler: grpc.RpcMethodHandler, behavior) -> grpc.RpcMethodHandler:
    return grpc.unary_unary_rpc_method_handler(
        behavior,
        request_deserializer=handler.request_deserializer,
        response_serializer=handler.response_serializer,
    )


class LoggingInterceptor(grpc.aio.ServerInterceptor):
    def __init__(self, logger: logging.Logger) -> None:
        self._logger = logger

    async def intercept_service(
        self, continuation: Continuation, handler_call_details: grpc.HandlerCallDetails
    ) -> grpc.RpcMethodHandler | None:
        handler = await continuation(handler_call_details)
        if handler is None or handler.unary_unary is None:
            return handler

        method = handler_call_details.method
        inner = handler.unary_unary
        logger = self._logger

        async def logged(request, context: grpc.aio.ServicerContext):
            start = time.perf_counter()
            try:
                response = await inner(request, context)
            except Exception as exc:
                duration = (time.perf_counter() - start) * 1000
                logger.info(f"RPC {method} failed in {duration:.1f}ms: {exc!r}")
                raise
            duration = (time.perf_counter() - start) * 1000
            logger.info(f"RPC {method} OK in {duration:.1f}ms")
            return response

        return _wrap_unary(handler, logged)


class AuthInterceptor(grpc.aio.ServerInterceptor):
    def __init__(
        self,
        tokens: TokenManager,
        strict_methods: Iterable[str] = (),
        public_methods: Iterable[str] = PUBLIC_METHODS,
        metadata_key: str = "token",
        logger: logging.Logger | None = None,
    ) -> None:
        self._tokens = tokens
        self._strict_methods = frozenset(strict_methods)
        self._public_methods = frozenset(public_methods)
        self._metadata_key = metadata_key
        self._logger = logger or logging.getLogger("shortener.rpc.auth")

    async def intercept_service(
        self, continuation: Continuation, handler_call_details: grpc.HandlerCallDetails
    ) -> grpc.RpcMethodHandler | None:
        handler = await continuation(handler_call_details)
        method = handler_call_details.method
        if handler is None or handler.unary_unary is None or method in self._public_methods:
            return handler

        strict = method in self._strict_methods
        token = _metadata(handler_call_details).get(self._metadata_key)
        inner = handler.unary_unary

        async def authenticated(request, context: grpc.aio.ServicerContext):
            try:
                result = self._tokens.authenticate(token)
            except InternalError as exc:
                self._logger.error(f"Token issuance failed for {method}: {exc}")
                await context.abort(grpc.StatusCode.INTERNAL, "failed to issue auth token")

            if result.new_token is not None:
                await context.send_initial_metadata(((self._metadata_key, result.new_token),))
            if strict and not result.authenticated:
                self._logger.warning(f"Rejected unauthenticated call to {method}")
                await context.abort(grpc.StatusCode.UNAUTHENTICATED, "authentication required")

            reset_token = current_user_id.set(result.user_id)
            try:
                return await inner(request, context)
            finally:
                current_user_id.reset(reset_token)

        return _wrap_unary(handler, authenticated)


class TrustedSubnetInterceptor(grpc.aio.ServerInterceptor):
    def __init__(self, subnet: TrustedSubnet, protected_methods: Iterable[str]) -> None:
        self._subnet = subnet
        self._protected_methods = frozenset(protected_methods)

    def is_protected(self, method: str) -> bool:
        if method in self._protected_methods:
            return True
        return any(method.startswith(prefix) for prefix in self._protected_methods)

    async def intercept_service(
        self, continuation: Continuation, handler_call_details: grpc.HandlerCallDetails
    ) -> grpc.RpcMethodHandler | None:
        handler = await continuation(handler_call_details)
        if handler is None or handler.unary_unary is None or not self.is_protected(handler_call_details.method):
            return handler

        headers = _metadata(handler_call_details)
        inner = handler.unary_unary

        async def guarded(request, context: grpc.aio.ServicerContext):
            client_ip = client_ip_from(headers, parse_grpc_peer(context.peer()))
            try:
                self._subnet.check(client_ip)
            except ForbiddenError as exc:
                await context.abort(grpc.StatusCode.PERMISSION_DENIED, str(exc))
            except InternalError as exc:
                await context.abort(grpc.StatusCode.INTERNAL, str(exc))
            return await inner(request, context)

        return _wrap_unary(handler, guarded)
