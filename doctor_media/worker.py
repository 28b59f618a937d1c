"""Celery worker configuration and periodic tasks."""

import asyncio
import logging

from celery import Celery, Task

from doctor_media.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)

celery_app = Celery(
    "doctor_media_worker",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
)

beat_schedule = {}
if settings.voice_cleanup_schedule_enabled:
    beat_schedule["cleanup-idle-voices"] = {
        "task": "doctor_media.worker.cleanup_idle_voices",
        "schedule": float(settings.voice_cleanup_interval_seconds),
    }

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=1800,
    task_soft_time_limit=1700,
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_default_queue="default",
    beat_schedule=beat_schedule,
)


class BaseTask(Task):
    """Base task with retry configuration."""

    autoretry_for = (Exception,)
    retry_backoff = True
    retry_backoff_max = 600
    retry_jitter = True
    max_retries = 3


async def _with_database(work):
    """Run ``work(session)`` against a database opened for this task only."""
    from doctor_media.db.session import Database

    database = Database(settings.database_url).open()
    try:
        async with database.session() as db:
            return await work(db)
    finally:
        await database.close()


@celery_app.task(base=BaseTask, name="doctor_media.worker.cleanup_idle_voices")
def cleanup_idle_voices(dry_run: bool = False) -> dict:
    """Release voices whose submissions are finished and idle past the cooldown."""
    from doctor_media.services import audit
    from doctor_media.services.voice_service import voice_service

    async def run(db):
        outcome = await voice_service.cleanup(db, dry_run=dry_run)
        if not dry_run:
            audit.record(
                db,
                "voice.cleanup",
                resource_type="voice",
                actor="worker",
                details={"released": outcome.released, "failed": [sid for sid, _ in outcome.failed]},
            )
            await db.commit()
        return {
            "candidates": [s.id for s in outcome.candidates],
            "released": outcome.released,
            "failed": [{"submission_id": sid, "error": err} for sid, err in outcome.failed],
        }

    result = asyncio.run(_with_database(run))
    logger.info(f"Idle voice cleanup finished: {result}")
    return result


@celery_app.task(base=BaseTask, name="doctor_media.worker.resync_reporting_sheet")
def resync_reporting_sheet() -> int:
    """Upsert every non-deleted submission into the reporting sheet."""
    from doctor_media.services.sheets import resync_all

    rows = asyncio.run(_with_database(resync_all))
    logger.info(f"Reporting sheet resync sent {rows} rows")
    return rows
