"""FastAPI application entry point for the URL shortener service.

Application Lifecycle Diagram
===========================
::
    ┌─────────────┐
    │  uvicorn    │
    │  startup    │
    └──────┬──────┘
           ▼
    ┌──────────────┐
    │ lifespan()   │
    │ startup:     │
    │ init_db()    │
    │ manager init │
    │ ensure seq   │
    │ sync start   │
    └──────┬───────┘
           ▼
    ┌─────────────┐
    │ Serve HTTP  │
    │ requests    │
    └──────┬──────┘
           ▼
    ┌──────────────┐
    │ lifespan()   │
    │ shutdown:    │
    │ sync stop    │
    │ cleanup()    │
    │ close_db()   │
    └──────────────┘

How to Use
===========
**Step 1 — Run with uvicorn**::
    uvicorn shortener.main:app --host 0.0.0.0 --port 8080

**Step 2 — Make API calls**::
    curl -X POST http://localhost:8080/api/shorten \
         -H "Content-Type: application/json" \
         -d '{"url": "https://example.com"}'

    curl -i http://localhost:8080/0

Key Behaviours
===============
- Database tables and the id counter row are created on startup.
- The sync worker runs as a task in the same event loop (SYNC_ENABLED).
- Domain exceptions map to 404 / 410 / 503; database failures map to 503.
- Prometheus HTTP metrics are exposed on /metrics.
"""

__all__ = ["app"]

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from sqlalchemy.exc import SQLAlchemyError

from shortener.config import get_settings
from shortener.database import close_db, init_db
from shortener.dependencies import _service_manager
from shortener.exceptions import AllocationError, LinkExpiredError, LinkNotFoundError
from shortener.routes import router

logger = logging.getLogger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # Startup
    await init_db()
    await _service_manager.initialize()
    await _service_manager.allocator.ensure_counter(_service_manager.settings.ID_SEQUENCE_NAME)
    if _service_manager.settings.SYNC_ENABLED:
        _service_manager.sync_worker.start()
    yield
    # Shutdown
    await _service_manager.cleanup()
    await close_db()


async def link_not_found_handler(request: Request, exc: LinkNotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": "Short URL not found"})


async def link_expired_handler(request: Request, exc: LinkExpiredError) -> JSONResponse:
    return JSONResponse(status_code=410, content={"detail": "Short URL has expired"})


async def allocation_error_handler(request: Request, exc: AllocationError) -> JSONResponse:
    logger.error(f"Short code allocation failed: {exc}")
    return JSONResponse(status_code=503, content={"detail": "Could not allocate a short code"})


async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error(f"Database error on {request.url.path}: {exc}")
    return JSONResponse(status_code=503, content={"detail": "Storage temporarily unavailable"})


app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
    description="URL shortener with range-allocated codes and Redis click tracking",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(LinkNotFoundError, link_not_found_handler)
app.add_exception_handler(LinkExpiredError, link_expired_handler)
app.add_exception_handler(AllocationError, allocation_error_handler)
app.add_exception_handler(SQLAlchemyError, database_error_handler)

# /metrics has to be registered before the catch-all /{short_code} route.
Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=False,
    should_respect_env_var=False,
).instrument(app).expose(app)

app.include_router(router)
