"""HTTP middleware: request logging, cookie authentication, gzip request bodies.

Middleware Stack (outermost first)
==================================
::
    RequestLoggingMiddleware   method, path, status, duration
      └─ GZipMiddleware        compress responses (Accept-Encoding: gzip)
          └─ GzipRequestMiddleware  inflate bodies (Content-Encoding: gzip)
              └─ AuthMiddleware     token cookie → request.state.user_id
                  └─ routes

Key Behaviours
===============
- A missing or invalid cookie always yields a fresh token in ``Set-Cookie``,
  including on requests that strict routes reject with 401.
- A request body that is not valid gzip is rejected with 400.
"""

import gzip
import logging
import time
import zlib

from fastapi import Request
from fastapi.responses import JSONResponse, PlainTextResponse
from prometheus_client import Counter, Histogram
from starlette.datastructures import Headers
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from shortener.exceptions import InternalError

__all__ = ["AuthMiddleware", "GzipRequestMiddleware", "RequestLoggingMiddleware"]

HTTP_REQUESTS_TOTAL = Counter(
    "shortener_http_requests_total",
    "HTTP requests handled",
    ["method", "status"],
)
HTTP_REQUEST_DURATION = Histogram(
    "shortener_http_request_duration_seconds",
    "HTTP request latency",
    ["method"],
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5],
)


class AuthMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        manager = request.app.state.manager
        cookie_name = manager.settings.AUTH_COOKIE_NAME
        try:
            result = manager.tokens.authenticate(request.cookies.get(cookie_name))
        except InternalError as exc:
            manager.logger.error(f"Token issuance failed: {exc}")
            return JSONResponse(status_code=500, content={"detail": "Failed to issue auth token"})

        request.state.user_id = result.user_id
        request.state.authenticated = result.authenticated

        response = await call_next(request)
        if result.new_token is not None:
            response.set_cookie(
                cookie_name,
                result.new_token,
                httponly=True,
                path="/",
                samesite="strict",
            )
        return response


class GzipRequestMiddleware:
    """Transparently inflates gzip-encoded request bodies."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = Headers(scope=scope)
        if "gzip" not in headers.get("content-encoding", "").lower():
            await self.app(scope, receive, send)
            return

        chunks: list[bytes] = []
        while True:
            message = await receive()
            if message["type"] == "http.disconnect":
                return
            chunks.append(message.get("body", b""))
            if not message.get("more_body", False):
                break

        try:
            body = gzip.decompress(b"".join(chunks))
        except (OSError, EOFError, zlib.error):
            response = PlainTextResponse("Invalid gzip request body", status_code=400)
            await response(scope, receive, send)
            return

        raw_headers = [
            (name, value) for name, value in scope["headers"] if name not in (b"content-encoding", b"content-length")
        ]
        raw_headers.append((b"content-length", str(len(body)).encode("latin-1")))
        scope = dict(scope, headers=raw_headers)

        delivered = False

        async def inflated_receive() -> Message:
            nonlocal delivered
            if not delivered:
                delivered = True
                return {"type": "http.request", "body": body, "more_body": False}
            return await receive()

        await self.app(scope, inflated_receive, send)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        logger = logging.getLogger("shortener.http")
        start = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start

        HTTP_REQUESTS_TOTAL.labels(method=request.method, status=str(response.status_code)).inc()
        HTTP_REQUEST_DURATION.labels(method=request.method).observe(duration)
        logger.info(
            f"{request.method} {request.url.path} -> {response.status_code} in {duration * 1000:.1f}ms",
            extra={"method": request.method, "path": request.url.path, "status": response.status_code},
        )
        return response
