"""Health check endpoint.

Learn: reports whether Postgres is reachable and how many SSE streams
this process is holding open. The connection count is per process;
behind several workers each one reports its own.
"""

from fastapi import APIRouter, Depends
from sqlalchemy import text

from placement import __version__
from placement.db.engine import engine
from placement.realtime.registry import ConnectionRegistry, get_registry

router = APIRouter()


@router.get("/health")
async def health_check(registry: ConnectionRegistry = Depends(get_registry)):
    """Check server health and dependency connectivity."""
    checks = {"server": "ok", "version": __version__}

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        checks["postgres"] = "ok"
    except Exception as e:
        checks["postgres"] = f"error: {e}"

    status = "healthy" if checks["postgres"] == "ok" else "degraded"
    return {"status": status, **checks, "connections": registry.count_connections()}
