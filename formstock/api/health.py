"""
FormStock Service — Health endpoint

200 when the database and Redis both answer within HEALTH_CHECK_TIMEOUT,
503 otherwise. Redis only backs caches here, so a Redis outage degrades the
service without stopping submissions.
"""
import asyncio
import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text

from formstock.core.config import get_settings
from formstock.core.redis_client import get_redis
from formstock.db.database import engine

settings = get_settings()
logger = logging.getLogger(__name__)
router = APIRouter(tags=["health"])


async def _ping_database() -> None:
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))


async def _ping_redis() -> None:
    await get_redis().ping()


async def _probe(name: str, check) -> str:
    try:
        await asyncio.wait_for(check(), timeout=settings.HEALTH_CHECK_TIMEOUT)
    except Exception as exc:
        logger.warning("Health probe %s failed: %s", name, exc)
        return f"error: {str(exc)[:100]}"
    return "ok"


@router.get("/health")
async def health_check():
    deps = {
        "database": await _probe("database", _ping_database),
        "redis": await _probe("redis", _ping_redis),
    }
    healthy = all(state == "ok" for state in deps.values())
    return JSONResponse(
        content={
            "status": "healthy" if healthy else "degraded",
            "service": settings.SERVICE_NAME,
            "version": settings.SERVICE_VERSION,
            "dependencies": deps,
        },
        status_code=200 if healthy else 503,
    )
