"""Voice cloning and voice lifecycle routes."""

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from doctor_media.auth.security import require_admin, require_intake
from doctor_media.db.models import ApiKey, Submission, utcnow
from doctor_media.db.session import get_db
from doctor_media.errors import ProviderError
from doctor_media.schemas.schemas import (
    LanguageGenerationResult,
    VoiceCleanupFailure,
    VoiceCleanupRequest,
    VoiceCleanupResponse,
    VoiceCloneResponse,
    VoiceInfo,
    VoiceProcessResponse,
    VoiceReleaseResponse,
)
from doctor_media.services import audit
from doctor_media.services.sheets import queue_sheet_sync
from doctor_media.services.submission_service import submission_service
from doctor_media.services.voice_service import (
    can_delete_voice,
    is_cleanup_eligible,
    voice_age_hours,
    voice_service,
)

router = APIRouter(prefix="/v1/voice", tags=["Voice"])


def voice_info(submission: Submission, now) -> VoiceInfo:
    return VoiceInfo(
        submission_id=submission.id,
        doctor_name=submission.doctor_name,
        voice_id=submission.voice_id,
        voice_clone_status=submission.voice_clone_status.value,
        status=submission.status.value,
        age_hours=round(voice_age_hours(submission, now), 2),
        can_delete=can_delete_voice(submission),
        recommended_for_cleanup=is_cleanup_eligible(submission, now),
        updated_at=submission.updated_at,
    )


@router.post(
    "/clone/{submission_id}",
    response_model=VoiceCloneResponse,
    summary="Clone the doctor's voice",
    description="Requires verified consent. Provider failures are recorded on the submission and returned as 502.",
)
async def clone_voice(
    submission_id: int,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    api_key: ApiKey = Depends(require_intake),
):
    submission = await submission_service.get_submission(db, submission_id, lock=True)
    try:
        voice_id = await voice_service.clone(submission)
    except ProviderError as e:
        audit.record(db, "voice.clone_failed", submission.id, api_key=api_key, details={"error": e.message})
        await db.commit()
        raise
    audit.record(db, "voice.cloned", submission.id, api_key=api_key, details={"voice_id": voice_id})
    await db.commit()

    await queue_sheet_sync(background_tasks, db, submission)
    return VoiceCloneResponse(
        submission_id=submission.id,
        voice_id=submission.voice_id,
        voice_clone_status=submission.voice_clone_status.value,
        status=submission.status.value,
    )


@router.post(
    "/process/{submission_id}",
    response_model=VoiceProcessResponse,
    summary="Clone and generate audio for every language",
    description=(
        "Clones the voice if needed, then runs speech-to-speech against the active "
        "audio master of each selected language. Per-language failures are reported, "
        "not raised."
    ),
)
async def process_submission(
    submission_id: int,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    api_key: ApiKey = Depends(require_intake),
):
    submission = await submission_service.get_submission(db, submission_id, lock=True)
    try:
        outcome = await voice_service.process(db, submission)
    except ProviderError as e:
        audit.record(db, "voice.clone_failed", submission.id, api_key=api_key, details={"error": e.message})
        await db.commit()
        raise
    audit.record(
        db,
        "voice.processed",
        submission.id,
        api_key=api_key,
        details={"results": {r.language_code: r.status.value for r in outcome.results}},
    )
    await db.commit()

    await queue_sheet_sync(background_tasks, db, submission)
    return VoiceProcessResponse(
        submission_id=submission.id,
        voice_id=submission.voice_id,
        voice_clone_status=submission.voice_clone_status.value,
        status=submission.status.value,
        results=[
            LanguageGenerationResult(
                language_code=r.language_code,
                status=r.status.value,
                audio_id=r.audio_id,
                storage_path=r.storage_path,
                error=r.error,
            )
            for r in outcome.results
        ],
        errors=outcome.errors,
    )


@router.delete(
    "/{submission_id}",
    response_model=VoiceReleaseResponse,
    summary="Release a cloned voice",
    description="Deletes the voice at the provider once the submission is finished and idle. Admins may force.",
)
async def release_voice(
    submission_id: int,
    force: bool = Query(False, description="Skip the eligibility check (admin only)"),
    db: AsyncSession = Depends(get_db),
    api_key: ApiKey = Depends(require_intake),
):
    if force and "admin" not in (api_key.scopes or []):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Forced voice release requires the admin scope",
        )
    submission = await submission_service.get_submission(db, submission_id, lock=True)
    released = await voice_service.release(submission, force=force)
    if released:
        audit.record(
            db, "voice.released", submission.id, api_key=api_key, details={"forced": force}
        )
    await db.commit()

    return VoiceReleaseResponse(
        submission_id=submission.id,
        voice_id=submission.voice_id,
        voice_clone_status=submission.voice_clone_status.value,
        status=submission.status.value,
        already_released=not released,
    )


@router.post(
    "/cleanup",
    response_model=VoiceCleanupResponse,
    summary="Release idle voices",
    description="Release every voice whose submission is completed or failed and idle past the cooldown.",
)
async def cleanup_voices(
    request: VoiceCleanupRequest,
    db: AsyncSession = Depends(get_db),
    api_key: ApiKey = Depends(require_admin),
):
    outcome = await voice_service.cleanup(
        db, dry_run=request.dry_run, max_age_hours=request.max_age_hours
    )
    if not request.dry_run:
        audit.record(
            db,
            "voice.cleanup",
            resource_type="voice",
            api_key=api_key,
            details={"released": outcome.released, "failed": [sid for sid, _ in outcome.failed]},
        )
        await db.commit()

    now = utcnow()
    return VoiceCleanupResponse(
        dry_run=request.dry_run,
        candidates=[voice_info(s, now) for s in outcome.candidates],
        released=outcome.released,
        failed=[VoiceCleanupFailure(submission_id=sid, error=err) for sid, err in outcome.failed],
    )


@router.get(
    "/active",
    response_model=list[VoiceInfo],
    summary="Voices currently held at the provider",
    description="Each entry says whether the voice can be deleted and whether cleanup is recommended.",
)
async def active_voices(
    db: AsyncSession = Depends(get_db),
    api_key: ApiKey = Depends(require_intake),
):
    now = utcnow()
    return [voice_info(s, now) for s in await voice_service.voices_in_use(db)]
