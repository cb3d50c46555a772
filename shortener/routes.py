"""FastAPI route definitions for the URL shortener REST API.

API Endpoint Overview
=====================
::
    GET  /health
        └─ HealthResponse (200)

    POST /api/shorten
        ├─ ShortenRequest (request body)
        └─ ShortenResponse (201) or 422/429/503

    GET  /api/stats/:short_code
        └─ LinkStatsResponse (200) or 404/429

    GET  /:short_code
        └─ 302 Redirect or 404/410/429

Request Flow Diagram
====================
::
    ┌─────────────┐
    │  HTTP       │
    │  Request    │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Validate &  │
    │ Parse       │
    │ (Pydantic)  │
    └──────┬──────┘
           ▼
    ┌─────────────┐  over limit
    │ Rate limit  │ ───────────► 429
    │ (client id) │
    └──────┬──────┘
           ▼
    ┌─────────────┐  LinkNotFoundError ─► 404
    │ Call Service│  LinkExpiredError ──► 410
    │ Layer       │  AllocationError ───► 503
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ HTTP        │
    │ Response    │
    └─────────────┘

Key Behaviours
===============
- Domain exceptions are translated to status codes by the handlers registered
  in shortener.main, so the endpoints only handle the success path.
- 302 redirects: every hit goes back through the service and is counted.
- Rate limiting keys on the first X-Forwarded-For address, else the peer.

Endpoints:
    /health:  Health check for monitoring.
    /api/shorten:  Create (or reuse) a short URL.
    /api/stats/:code:  Get URL statistics.
    /:code:  Redirect to original URL.
"""

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import RedirectResponse
from sqlalchemy import text

from shortener.dependencies import RequestContext, get_request_context, get_url_service
from shortener.enums import HealthStatus
from shortener.schemas import HealthResponse, LinkStatsResponse, ShortenRequest, ShortenResponse
from shortener.url_service import URLShorteningService

__all__ = ["router"]

router = APIRouter()


async def enforce_rate_limit(
    ctx: RequestContext = Depends(get_request_context),
    service: URLShorteningService = Depends(get_url_service),
) -> None:
    if not await service.allow_request(ctx.client_id):
        ctx.logger.warning(f"Rate limit exceeded for client {ctx.client_id}")
        raise HTTPException(status_code=429, detail="Too many requests")


@router.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check(ctx: RequestContext = Depends(get_request_context)) -> HealthResponse:
    manager = ctx.service_manager
    db_status = HealthStatus.HEALTHY
    cache_status = HealthStatus.HEALTHY

    try:
        async with manager.session_factory() as session:
            await session.execute(text("SELECT 1"))
    except Exception as e:
        ctx.logger.error(f"Database health check failed: {e}")
        db_status = HealthStatus.UNHEALTHY

    try:
        await manager.cache.ping()
    except Exception as e:
        ctx.logger.error(f"Cache health check failed: {e}")
        cache_status = HealthStatus.UNHEALTHY

    status = (
        HealthStatus.HEALTHY
        if db_status is HealthStatus.HEALTHY and cache_status is HealthStatus.HEALTHY
        else HealthStatus.UNHEALTHY
    )
    return HealthResponse(status=status, database=db_status, cache=cache_status)


@router.post(
    "/api/shorten",
    response_model=ShortenResponse,
    status_code=201,
    tags=["urls"],
    dependencies=[Depends(enforce_rate_limit)],
)
async def shorten_url(
    payload: ShortenRequest,
    ctx: RequestContext = Depends(get_request_context),
    service: URLShorteningService = Depends(get_url_service),
) -> ShortenResponse:
    link = await service.shorten_url(payload.url)
    ctx.logger.info(
        f"URL shortened: {link.short_code}",
        extra={"operation": "shorten", "short_code": link.short_code, "duration_ms": ctx.get_duration()},
    )
    return ShortenResponse(
        short_code=link.short_code,
        short_url=f"{ctx.settings.BASE_URL}/{link.short_code}",
        original_url=link.original_url,
        expiry_date=link.expiry_date,
    )


@router.get(
    "/api/stats/{short_code}",
    response_model=LinkStatsResponse,
    tags=["urls"],
    dependencies=[Depends(enforce_rate_limit)],
)
async def get_stats(
    short_code: str,
    ctx: RequestContext = Depends(get_request_context),
    service: URLShorteningService = Depends(get_url_service),
) -> LinkStatsResponse:
    stats = await service.stats(short_code)
    return LinkStatsResponse(
        **stats.model_dump(),
        short_url=f"{ctx.settings.BASE_URL}/{stats.short_code}",
    )


@router.get("/{short_code}", tags=["redirect"], dependencies=[Depends(enforce_rate_limit)])
async def redirect_to_url(
    short_code: str,
    ctx: RequestContext = Depends(get_request_context),
    service: URLShorteningService = Depends(get_url_service),
) -> RedirectResponse:
    resolved = await service.resolve(short_code)
    ctx.logger.info(
        f"Redirect: {short_code} -> {resolved.original_url}",
        extra={
            "operation": "redirect",
            "short_code": short_code,
            "clicks": resolved.clicks,
            "degraded": resolved.degraded,
            "duration_ms": ctx.get_duration(),
        },
    )
    return RedirectResponse(url=resolved.original_url, status_code=302)
