"""Probe all configured integrations on startup and report status."""

from mediashelf.clients.base import ICacheBackend, IMetadataProvider
from mediashelf.config import Settings


async def probe_all(settings: Settings, cache: ICacheBackend, metadata: IMetadataProvider) -> dict:
    """Check reachability of all configured services. Returns status dict."""
    results = {}

    # Redis
    if settings.has_redis:
        results["redis"] = await _probe(cache.ping)
    else:
        results["redis"] = {"status": "not_configured"}

    # Jikan
    results["jikan"] = await _probe(metadata.test_connection)

    # SMTP: reported from config only
    results["smtp"] = {"status": "configured" if settings.has_smtp else "not_configured"}

    return results


async def _probe(check) -> dict:
    """Run a single async reachability check."""
    try:
        ok = await check()
        return {"status": "ok" if ok else "unreachable"}
    except Exception as e:
        return {"status": "error", "detail": str(e)[:200]}
