"""Admin routes: bulk actions, hard delete and audit log."""

import asyncio
import logging
from typing import Optional

from botocore.exceptions import BotoCoreError, ClientError
from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from doctor_media.auth.security import require_admin
from doctor_media.db.models import ApiKey, VoiceCloneStatus
from doctor_media.db.session import get_db
from doctor_media.errors import ServiceError
from doctor_media.schemas.schemas import (
    AuditLogEntry,
    BulkActionFailure,
    BulkActionRequest,
    BulkActionResponse,
)
from doctor_media.services import audit
from doctor_media.services.elevenlabs import elevenlabs_client
from doctor_media.services.qc_service import qc_service
from doctor_media.services.sheets import queue_sheet_sync, resync_all
from doctor_media.services.side_effects import run_side_effect
from doctor_media.services.storage import storage_service
from doctor_media.services.submission_service import submission_service

router = APIRouter(prefix="/v1/admin", tags=["Admin"])

logger = logging.getLogger(__name__)


async def _delete_objects(paths: list[str]):
    deleted = 0
    for path in paths:
        try:
            await asyncio.to_thread(storage_service.delete, path)
        except (BotoCoreError, ClientError) as e:
            logger.warning(f"Could not delete stored object {path}: {e}")
            continue
        deleted += 1
    logger.info(f"Deleted {deleted} of {len(paths)} stored objects")


@router.post(
    "/bulk-action",
    response_model=BulkActionResponse,
    summary="Apply one action to many submissions",
    description=(
        "approve, reject, delete (soft) or retry. Each submission is handled on its own; "
        "failures are reported per id and do not stop the batch."
    ),
)
async def bulk_action(
    request: BulkActionRequest,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    api_key: ApiKey = Depends(require_admin),
):
    succeeded: list[int] = []
    failed: list[BulkActionFailure] = []

    for submission_id in dict.fromkeys(request.submission_ids):
        try:
            submission = await submission_service.get_submission(db, submission_id, lock=True)
            if request.action == "approve":
                qc_service.approve(db, submission, request.reviewer_name, request.notes)
            elif request.action == "reject":
                qc_service.reject(
                    db, submission, request.reviewer_name, request.notes or "Rejected in bulk"
                )
            elif request.action == "delete":
                submission_service.soft_delete(submission)
            else:
                submission_service.retry(submission)
        except ServiceError as e:
            failed.append(BulkActionFailure(submission_id=submission_id, error=e.message))
            continue

        audit.record(
            db,
            f"bulk.{request.action}",
            submission.id,
            api_key=api_key,
            actor=request.reviewer_name,
            details={"notes": request.notes} if request.notes else None,
        )
        await db.commit()
        await queue_sheet_sync(background_tasks, db, submission)
        succeeded.append(submission_id)

    logger.info(
        f"Bulk {request.action}: {len(succeeded)} succeeded, {len(failed)} failed"
    )
    return BulkActionResponse(action=request.action, succeeded=succeeded, failed=failed)


@router.delete(
    "/submissions/{submission_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Permanently delete a submission",
    description="Removes the submission, all child rows and its stored objects. Cannot be undone.",
)
async def hard_delete_submission(
    submission_id: int,
    http_request: Request,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    api_key: ApiKey = Depends(require_admin),
):
    submission = await submission_service.get_submission(db, submission_id, lock=True)
    voice_id = (
        submission.voice_id
        if submission.voice_clone_status == VoiceCloneStatus.COMPLETED
        else None
    )
    doctor_name = submission.doctor_name

    paths = await submission_service.hard_delete(db, submission)
    audit.record(
        db,
        "submission.hard_deleted",
        submission_id,
        api_key=api_key,
        details={"doctor_name": doctor_name, "objects": len(paths)},
        ip_address=http_request.client.host if http_request.client else None,
    )
    await db.commit()

    if paths:
        background_tasks.add_task(run_side_effect, "stored object cleanup", _delete_objects, paths)
    if voice_id:
        background_tasks.add_task(
            run_side_effect, "voice release", elevenlabs_client.delete_voice, voice_id
        )


@router.get(
    "/audit-log",
    response_model=list[AuditLogEntry],
    summary="Audit log",
    description="Most recent entries first.",
)
async def audit_log(
    resource_id: Optional[str] = Query(None, description="Usually a submission id"),
    action: Optional[str] = Query(None, description="e.g. consent.verified"),
    limit: int = Query(100, ge=1, le=1000),
    db: AsyncSession = Depends(get_db),
    api_key: ApiKey = Depends(require_admin),
):
    entries = await audit.list_entries(db, resource_id=resource_id, action=action, limit=limit)
    return [AuditLogEntry.model_validate(e) for e in entries]


@router.get(
    "/elevenlabs-status",
    summary="Voice provider quota",
    description="Character usage from the provider subscription and the number of voices it holds.",
)
async def elevenlabs_status(api_key: ApiKey = Depends(require_admin)):
    subscription = await elevenlabs_client.get_subscription()
    voices = await elevenlabs_client.list_voices()
    used = subscription.get("character_count", 0)
    limit = subscription.get("character_limit", 0)
    return {
        "tier": subscription.get("tier"),
        "character_count": used,
        "character_limit": limit,
        "characters_remaining": max(limit - used, 0),
        "voice_count": len(voices),
        "voice_limit": subscription.get("voice_limit"),
    }


@router.post(
    "/sync-sheets",
    summary="Rebuild the reporting sheet",
    description="Upsert every non-deleted submission's rows into the reporting sheet.",
)
async def sync_sheets(
    db: AsyncSession = Depends(get_db),
    api_key: ApiKey = Depends(require_admin),
):
    rows = await resync_all(db)
    return {"rows": rows}
