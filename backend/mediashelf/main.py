"""mediashelf: FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from mediashelf import __version__
from mediashelf.config import settings
from mediashelf.errors import MediaShelfError
from mediashelf.api import collections, health, imports

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    # Startup: check config, create tables, wire clients, start the import worker
    from mediashelf.clients.cache import RedisCache
    from mediashelf.clients.jikan import JikanClient
    from mediashelf.clients.mailer import SmtpMailer
    from mediashelf.database import async_session, init_db
    from mediashelf.services.collections import CacheTTLs
    from mediashelf.services.import_jobs import ImportProcessor, ImportQueue
    from mediashelf.services.integration_probe import probe_all

    logging.basicConfig(level=settings.log_level.upper())
    settings.validate_required()
    await init_db()

    cache = RedisCache.from_url(settings.redis_url)
    metadata = JikanClient(
        base_url=settings.jikan_base_url,
        max_rate=settings.jikan_max_rate,
        time_period=settings.jikan_time_period,
        timeout=settings.jikan_timeout,
    )
    mailer = SmtpMailer(
        host=settings.smtp_host,
        port=settings.smtp_port,
        user=settings.smtp_user,
        password=settings.smtp_password,
        sender=settings.sender_address,
        frontend_url=settings.frontend_url,
    )
    processor = ImportProcessor(
        async_session,
        cache,
        mailer,
        metadata=metadata,
        ttls=CacheTTLs.from_settings(settings),
        notification_ttl=settings.import_notification_ttl,
    )
    queue = ImportQueue(
        processor,
        max_attempts=settings.import_max_attempts,
        backoff_seconds=settings.import_backoff_seconds,
        retention_seconds=settings.import_job_retention,
    )
    queue.start()

    app.state.cache = cache
    app.state.metadata = metadata
    app.state.import_queue = queue
    app.state.integrations = await probe_all(settings, cache, metadata)
    logger.info(f"{settings.app_name} {__version__} started: {app.state.integrations}")
    yield
    # Shutdown: stop the worker, close the cache connection
    await queue.stop()
    await cache.close()


async def domain_error_handler(request: Request, exc: MediaShelfError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc!r}")
    return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)})


def register_routes(app: FastAPI) -> None:
    app.add_exception_handler(MediaShelfError, domain_error_handler)

    # ── Mount routers ────────────────────────────────────────────
    app.include_router(health.router,       prefix="/api/v1", tags=["system"])
    app.include_router(collections.router,  prefix="/api/v1", tags=["collections"])
    app.include_router(imports.router,      prefix="/api/v1", tags=["import-export"])


app = FastAPI(
    title=settings.app_name,
    version=__version__,
    description="Personal anime, manga and game collections with MyAnimeList import/export",
    lifespan=lifespan,
    docs_url="/api/docs" if settings.debug else None,
    redoc_url="/api/redoc" if settings.debug else None,
)

# CORS: allow frontend dev server + production URL
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:5173",     # Vite dev server
        settings.frontend_url,
        settings.app_url,
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_routes(app)
