"""Health check and system info routes."""

import asyncio
import logging

import redis
from fastapi import APIRouter, Request
from sqlalchemy import text

from doctor_media.config import get_settings
from doctor_media.schemas.schemas import HealthResponse, LanguageInfo
from doctor_media.services.storage import storage_service

router = APIRouter(tags=["System"])

settings = get_settings()
logger = logging.getLogger(__name__)

VERSION = "1.0.0"


def _ping_redis() -> bool:
    client = redis.from_url(settings.redis_url, socket_connect_timeout=2)
    try:
        return bool(client.ping())
    finally:
        client.close()


async def _probe(name: str, check) -> str:
    """Run one dependency check; any failure or falsy result reads as "error"."""
    try:
        healthy = await check()
    except Exception as e:
        logger.warning(f"{name} health check failed: {e}")
        return "error"
    if not healthy:
        logger.warning(f"{name} health check reported unavailable")
        return "error"
    return "ok"


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Database, Redis and object storage status. Any failing dependency makes the service `degraded`.",
)
async def health_check(request: Request):
    database = request.app.state.db

    async def database_ok() -> bool:
        async with database.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True

    db_status, redis_status, storage_status = await asyncio.gather(
        _probe("Database", database_ok),
        _probe("Redis", lambda: asyncio.to_thread(_ping_redis)),
        _probe("Storage", lambda: asyncio.to_thread(storage_service.health_check)),
    )
    statuses = (db_status, redis_status, storage_status)
    return HealthResponse(
        status="healthy" if all(s == "ok" for s in statuses) else "degraded",
        version=VERSION,
        database=db_status,
        redis=redis_status,
        storage=storage_status,
    )


@router.get(
    "/v1/languages",
    response_model=list[LanguageInfo],
    summary="List supported languages",
    description="Languages a doctor can select, with the speech-to-speech model used for each.",
)
async def list_languages():
    native = settings.native_language_names
    return [
        LanguageInfo(
            code=code,
            name=name,
            native_name=native.get(code, name),
            sts_model=settings.sts_model_for(code),
        )
        for code, name in settings.language_names.items()
    ]


@router.get(
    "/v1/info",
    summary="Service information",
)
async def service_info():
    return {
        "name": settings.app_name,
        "version": VERSION,
        "environment": settings.app_env,
        "supported_languages": list(settings.language_names.keys()),
        "max_language_selections": settings.max_language_selections,
        "max_audio_files": settings.max_audio_files,
        "min_audio_duration_seconds": settings.min_audio_duration_seconds,
        "documentation": "/docs",
        "redoc": "/redoc",
    }
