"""FastAPI route definitions for the URL shortener REST API.

API Endpoint Overview
=====================
::
    POST   /                      text/plain URL ─▶ 201 short URL | 409 existing short URL
    POST   /api/shorten           {"url"} ─▶ 201 {"result"} | 409 {"result"}
    POST   /api/shorten/batch     [{"correlation_id","original_url"}] ─▶ 201 [{"correlation_id","short_url"}]
    GET    /api/user/urls         (strict auth) ─▶ 200 [{"short_url","original_url"}] | 204
    DELETE /api/user/urls         (strict auth) ["key", …] ─▶ 202
    GET    /api/internal/stats    (trusted subnet) ─▶ 200 {"urls","users"}
    GET    /ping                  ─▶ 200 | 500
    GET    /metrics               ─▶ 200 Prometheus text format
    GET    /{short_key}           ─▶ 307 Location | 404 | 410

Key Behaviours
===============
- Every handler resolves the caller through the auth middleware (lenient);
  the user URL endpoints additionally require a pre-existing valid token.
- Domain errors raised by the service are translated to status codes by
  the exception handlers registered in ``shortener.main``.
- ``/{short_key}`` is registered last so it never shadows fixed paths.
"""

from fastapi import APIRouter, Body, Depends, Request, Response
from fastapi.responses import JSONResponse, PlainTextResponse, RedirectResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from shortener.dependencies import (
    RequestContext,
    get_request_context,
    get_service,
    get_user_id,
    require_trusted_subnet,
    require_user,
)
from shortener.enums import HealthStatus
from shortener.exceptions import InvalidArgumentError
from shortener.schemas import (
    BatchShortenItem,
    BatchShortenResult,
    HealthResponse,
    ShortenRequest,
    ShortenResponse,
    StatsResponse,
    UserURLResponse,
)
from shortener.service import BatchEntry, ShorteningService, build_short_url

__all__ = ["router"]

router = APIRouter()


@router.post("/", status_code=201, response_class=PlainTextResponse, tags=["urls"])
async def shorten_text(
    request: Request,
    user_id: str = Depends(get_user_id),
    ctx: RequestContext = Depends(get_request_context),
    service: ShorteningService = Depends(get_service),
) -> PlainTextResponse:
    ctx.add_tag("url_creation")
    raw = await request.body()
    try:
        original_url = raw.decode("utf-8").strip()
    except UnicodeDecodeError as exc:
        raise InvalidArgumentError("Request body must be UTF-8 text") from exc

    result = await service.shorten(user_id, original_url)
    short_url = build_short_url(ctx.settings.BASE_URL, result.short_key)
    return PlainTextResponse(short_url, status_code=201 if result.created else 409)


@router.post("/api/shorten", status_code=201, response_model=ShortenResponse, tags=["urls"])
async def shorten_json(
    payload: ShortenRequest,
    user_id: str = Depends(get_user_id),
    ctx: RequestContext = Depends(get_request_context),
    service: ShorteningService = Depends(get_service),
) -> JSONResponse:
    ctx.add_tag("url_creation")
    ctx.add_tag("api_endpoint")

    result = await service.shorten(user_id, payload.url)
    body = ShortenResponse(result=build_short_url(ctx.settings.BASE_URL, result.short_key))
    return JSONResponse(content=body.model_dump(), status_code=201 if result.created else 409)


@router.post(
    "/api/shorten/batch",
    status_code=201,
    response_model=list[BatchShortenResult],
    tags=["urls"],
)
async def shorten_batch(
    items: list[BatchShortenItem],
    user_id: str = Depends(get_user_id),
    ctx: RequestContext = Depends(get_request_context),
    service: ShorteningService = Depends(get_service),
) -> list[BatchShortenResult]:
    ctx.add_tag("batch_creation")
    entries = [BatchEntry(correlation_id=item.correlation_id, original_url=item.original_url) for item in items]
    results = await service.batch_shorten(user_id, entries, ctx.settings.BASE_URL)
    ctx.logger.info(f"Batch of {len(results)} URLs shortened in {ctx.get_duration():.1f}ms")
    return [BatchShortenResult(correlation_id=r.correlation_id, short_url=r.short_url) for r in results]


@router.get("/api/user/urls", response_model=list[UserURLResponse], tags=["user"])
async def list_user_urls(
    user_id: str = Depends(require_user),
    ctx: RequestContext = Depends(get_request_context),
    service: ShorteningService = Depends(get_service),
):
    urls = await service.list_user_urls(user_id, ctx.settings.BASE_URL)
    if not urls:
        return Response(status_code=204)
    return [UserURLResponse(short_url=u.short_url, original_url=u.original_url) for u in urls]


@router.delete("/api/user/urls", status_code=202, tags=["user"])
async def delete_user_urls(
    short_keys: list[str] = Body(...),
    user_id: str = Depends(require_user),
    ctx: RequestContext = Depends(get_request_context),
    service: ShorteningService = Depends(get_service),
) -> Response:
    ctx.add_tag("deletion")
    service.enqueue_delete(user_id, short_keys)
    return Response(status_code=202)


@router.get(
    "/api/internal/stats",
    response_model=StatsResponse,
    dependencies=[Depends(require_trusted_subnet)],
    tags=["internal"],
)
async def internal_stats(service: ShorteningService = Depends(get_service)) -> StatsResponse:
    snapshot = await service.stats()
    return StatsResponse(urls=snapshot.urls, users=snapshot.users)


@router.get("/ping", response_model=HealthResponse, tags=["health"])
async def ping(
    ctx: RequestContext = Depends(get_request_context),
    service: ShorteningService = Depends(get_service),
) -> HealthResponse:
    ctx.logger.debug("Ping requested")
    await service.ping()
    return HealthResponse(status=HealthStatus.HEALTHY, storage=HealthStatus.HEALTHY)


@router.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


@router.get("/{short_key}", tags=["redirect"])
async def redirect_to_url(
    short_key: str,
    ctx: RequestContext = Depends(get_request_context),
    service: ShorteningService = Depends(get_service),
) -> RedirectResponse:
    ctx.add_tag("redirect")
    original_url = await service.resolve(short_key)
    ctx.logger.info(f"Redirect {short_key} -> {original_url}")
    return RedirectResponse(url=original_url, status_code=307)
