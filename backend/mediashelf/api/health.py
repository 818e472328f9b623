"""Health and system status endpoints."""

from fastapi import APIRouter, Depends, Request
from datetime import datetime, timezone
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from mediashelf import __version__
from mediashelf.database import get_db

router = APIRouter()


@router.get("/health")
async def health_check(request: Request, db: AsyncSession = Depends(get_db)):
    """Service health check, with integration status."""
    integrations = getattr(request.app.state, "integrations", {})
    cache = getattr(request.app.state, "cache", None)

    try:
        await db.execute(text("SELECT 1"))
        database = "ok"
    except Exception:
        database = "unreachable"

    return {
        "status": "ok" if database == "ok" else "degraded",
        "version": __version__,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "database": database,
        "cache": "ok" if cache is not None and await cache.ping() else "unavailable",
        "integrations": integrations,
    }


@router.get("/import/stats")
async def import_stats(request: Request):
    """Import queue counters."""
    return request.app.state.import_queue.stats()
