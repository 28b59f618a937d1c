"""Submission intake and per-language tracking routes."""

import asyncio
import json
import logging
from typing import Optional

from botocore.exceptions import BotoCoreError, ClientError
from fastapi import (
    APIRouter,
    BackgroundTasks,
    Depends,
    File,
    Form,
    Query,
    Request,
    UploadFile,
    status,
)
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from doctor_media.auth.security import require_admin, require_intake
from doctor_media.db.models import ApiKey, GenerationStatus, SubmissionStatus, UploadSource
from doctor_media.db.session import get_db
from doctor_media.config import get_settings
from doctor_media.errors import ProviderError, ValidationFailed
from doctor_media.middleware.rate_limit import rate_limit_general
from doctor_media.schemas.schemas import (
    AudioRegisterRequest,
    AudioRegisterResponse,
    AudioSampleRef,
    LanguageStatusResponse,
    StatusEcho,
    SubmissionCreateResponse,
    SubmissionFields,
    SubmissionFromStorageRequest,
    SubmissionListResponse,
    SubmissionResponse,
    UploadUrlRequest,
    UploadUrlResponse,
    VideoRegisterRequest,
    VideoRegisterResponse,
)
from doctor_media.services import audit, media_validation
from doctor_media.services.messaging import messaging_service
from doctor_media.services.sheets import queue_sheet_sync
from doctor_media.services.side_effects import run_side_effect
from doctor_media.services.storage import storage_service
from doctor_media.services.submission_service import ImageRef, submission_service

router = APIRouter(prefix="/v1/submissions", tags=["Submissions"])
storage_router = APIRouter(prefix="/v1/storage", tags=["Storage"])

settings = get_settings()
logger = logging.getLogger(__name__)


def _parse_languages(raw: str) -> list[str]:
    """Accept a JSON list or a comma-separated string."""
    raw = raw.strip()
    if raw.startswith("["):
        try:
            return [str(code) for code in json.loads(raw)]
        except json.JSONDecodeError as e:
            raise ValidationFailed(f"selected_languages is not valid JSON: {e}") from e
    return [code for code in raw.split(",") if code.strip()]


async def _after_create(background_tasks: BackgroundTasks, db: AsyncSession, submission):
    await queue_sheet_sync(background_tasks, db, submission)
    background_tasks.add_task(
        run_side_effect,
        "whatsapp notification",
        messaging_service.notify_mr_submission_created,
        submission.mr_phone,
        submission.mr_name,
        submission.doctor_name,
        submission.id,
    )


def _create_response(submission, warnings: list[str]) -> SubmissionCreateResponse:
    return SubmissionCreateResponse(
        submission_id=submission.id,
        status=submission.status.value,
        consent_status=submission.consent_status.value,
        selected_languages=submission.selected_languages,
        audio_files_count=len(submission.audio_samples),
        validation_warnings=warnings,
        created_at=submission.created_at,
    )


@router.post(
    "",
    response_model=SubmissionCreateResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a submission (multipart upload)",
    description="Upload the doctor's image and voice samples with the intake form.",
)
@rate_limit_general()
async def create_submission(
    request: Request,
    background_tasks: BackgroundTasks,
    doctor_name: str = Form(...),
    selected_languages: str = Form(..., description="JSON list or comma-separated codes"),
    doctor_email: Optional[str] = Form(None),
    doctor_phone: Optional[str] = Form(None),
    doctor_specialization: Optional[str] = Form(None),
    doctor_clinic_name: Optional[str] = Form(None),
    doctor_city: Optional[str] = Form(None),
    doctor_state: Optional[str] = Form(None),
    years_of_practice: Optional[int] = Form(None),
    mr_name: Optional[str] = Form(None),
    mr_code: Optional[str] = Form(None),
    mr_phone: Optional[str] = Form(None),
    campaign_name: Optional[str] = Form(None),
    image: UploadFile = File(...),
    audio_files: list[UploadFile] = File(...),
    db: AsyncSession = Depends(get_db),
    api_key: ApiKey = Depends(require_intake),
):
    """
    Create a submission from a multipart form.

    - **image**: doctor photo (JPG/PNG)
    - **audio_files**: 1-5 voice samples (MP3/WAV/M4A)
    - **selected_languages**: up to 3 language codes
    """
    try:
        fields = SubmissionFields(
            doctor_name=doctor_name,
            doctor_email=doctor_email,
            doctor_phone=doctor_phone,
            doctor_specialization=doctor_specialization,
            doctor_clinic_name=doctor_clinic_name,
            doctor_city=doctor_city,
            doctor_state=doctor_state,
            years_of_practice=years_of_practice,
            mr_name=mr_name,
            mr_code=mr_code,
            mr_phone=mr_phone,
            campaign_name=campaign_name,
            selected_languages=_parse_languages(selected_languages),
        )
    except ValidationError as e:
        raise RequestValidationError(e.errors(include_url=False))

    if len(audio_files) > settings.max_audio_files:
        raise ValidationFailed(
            f"At most {settings.max_audio_files} audio files are allowed, got {len(audio_files)}"
        )

    image_bytes = await image.read()
    audio_payloads = [(f, await f.read()) for f in audio_files]

    # Reject bad formats before anything reaches storage
    checks = [media_validation.validate_image(image.filename, image.content_type, len(image_bytes))]
    checks += [
        media_validation.validate_audio(f.filename, f.content_type, len(content), None)
        for f, content in audio_payloads
    ]
    errors = [e for check in checks for e in check.errors]
    if errors:
        raise ValidationFailed("Uploaded media failed validation", errors=errors)

    prefix = storage_service.new_submission_prefix()
    image_path = storage_service.image_path(prefix, image.content_type)
    samples = []
    try:
        await asyncio.to_thread(
            storage_service.upload_bytes, image_bytes, image_path, image.content_type or "image/jpeg"
        )
        for position, (upload, content) in enumerate(audio_payloads, start=1):
            path = storage_service.audio_sample_path(prefix, position, upload.content_type)
            await asyncio.to_thread(
                storage_service.upload_bytes, content, path, upload.content_type or "audio/wav"
            )
            samples.append(
                AudioSampleRef(
                    storage_path=path,
                    filename=upload.filename,
                    content_type=upload.content_type,
                    size_bytes=len(content),
                )
            )
    except (BotoCoreError, ClientError) as e:
        logger.error(f"Upload to storage failed: {e}")
        raise ProviderError("storage", f"Upload to storage failed: {e}") from e

    submission, warnings = await submission_service.create_submission(
        db,
        fields,
        ImageRef(
            storage_path=image_path,
            public_url=storage_service.public_url(image_path),
            filename=image.filename,
            content_type=image.content_type,
            size_bytes=len(image_bytes),
        ),
        samples,
        UploadSource.DIRECT,
        submission_prefix=prefix,
        created_by_key_id=api_key.id,
    )
    audit.record(db, "submission.created", submission.id, api_key=api_key)
    await db.commit()

    await _after_create(background_tasks, db, submission)
    return _create_response(submission, warnings)


@router.post(
    "/from-storage",
    response_model=SubmissionCreateResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a submission from pre-uploaded media",
    description="Create a submission whose image and voice samples are already in object storage.",
)
@rate_limit_general()
async def create_submission_from_storage(
    request: Request,
    body: SubmissionFromStorageRequest,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    api_key: ApiKey = Depends(require_intake),
):
    """Create a submission referencing media uploaded through presigned URLs."""
    submission, warnings = await submission_service.create_submission(
        db,
        body,
        ImageRef(storage_path=body.image_path, public_url=body.image_public_url),
        body.audio_samples,
        UploadSource.STORAGE,
        submission_prefix=body.submission_prefix,
        created_by_key_id=api_key.id,
    )
    audit.record(db, "submission.created", submission.id, api_key=api_key)
    await db.commit()

    await _after_create(background_tasks, db, submission)
    return _create_response(submission, warnings)


@router.get(
    "",
    response_model=SubmissionListResponse,
    summary="List submissions",
    description="Get a paginated list of submissions, newest first.",
)
async def list_submissions(
    status_filter: Optional[SubmissionStatus] = Query(None, alias="status"),
    qc_status: Optional[str] = Query(None, description="Filter by QC status"),
    mr_code: Optional[str] = Query(None),
    include_deleted: bool = Query(False),
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(20, ge=1, le=100, description="Items per page"),
    db: AsyncSession = Depends(get_db),
    api_key: ApiKey = Depends(require_intake),
):
    submissions, total = await submission_service.list_submissions(
        db,
        status=status_filter,
        qc_statuses=[qc_status] if qc_status else None,
        mr_code=mr_code,
        include_deleted=include_deleted,
        page=page,
        page_size=page_size,
    )
    return SubmissionListResponse(
        submissions=[submission_service.submission_to_response(s) for s in submissions],
        total=total,
        page=page,
        page_size=page_size,
        total_pages=(total + page_size - 1) // page_size,
    )


@router.get(
    "/{submission_id}",
    response_model=SubmissionResponse,
    summary="Get a submission",
)
async def get_submission(
    submission_id: int,
    db: AsyncSession = Depends(get_db),
    api_key: ApiKey = Depends(require_intake),
):
    submission = await submission_service.get_submission(db, submission_id)
    return submission_service.submission_to_response(submission)


@router.delete(
    "/{submission_id}",
    response_model=StatusEcho,
    summary="Delete a submission",
    description="Soft delete: the submission is kept with status 'deleted'.",
)
async def delete_submission(
    submission_id: int,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    api_key: ApiKey = Depends(require_intake),
):
    submission = await submission_service.get_submission(db, submission_id, lock=True)
    submission_service.soft_delete(submission)
    audit.record(db, "submission.deleted", submission.id, api_key=api_key)
    await db.commit()

    await queue_sheet_sync(background_tasks, db, submission)
    return submission_service.status_echo(submission, "Submission deleted")


@router.post(
    "/{submission_id}/complete",
    response_model=StatusEcho,
    summary="Mark an approved submission as delivered",
)
async def complete_submission(
    submission_id: int,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    api_key: ApiKey = Depends(require_admin),
):
    """Move a QC-approved submission to completed."""
    submission = await submission_service.get_submission(db, submission_id, lock=True)
    submission_service.mark_delivered(submission)
    audit.record(db, "submission.completed", submission.id, api_key=api_key)
    await db.commit()

    await queue_sheet_sync(background_tasks, db, submission)
    return submission_service.status_echo(submission, "Submission completed")


@router.get(
    "/{submission_id}/languages",
    response_model=LanguageStatusResponse,
    summary="Per-language progress",
    description="Audio and video status for each selected language.",
)
async def get_language_status(
    submission_id: int,
    db: AsyncSession = Depends(get_db),
    api_key: ApiKey = Depends(require_intake),
):
    submission = await submission_service.get_submission(db, submission_id)
    return await submission_service.language_status(db, submission)


@router.post(
    "/{submission_id}/audio/{language_code}",
    response_model=AudioRegisterResponse,
    summary="Register a generated audio",
    description="Record an audio result for one language produced outside the voice pipeline.",
)
async def register_audio(
    submission_id: int,
    language_code: str,
    request: AudioRegisterRequest,
    db: AsyncSession = Depends(get_db),
    api_key: ApiKey = Depends(require_intake),
):
    submission = await submission_service.get_submission(db, submission_id, lock=True)
    audio = await submission_service.upsert_audio(
        db,
        submission,
        language_code,
        GenerationStatus(request.status),
        storage_path=request.storage_path,
        public_url=request.public_url,
        duration_seconds=request.duration_seconds,
        error_message=request.error_message,
        audio_master_id=request.audio_master_id,
    )
    await db.commit()

    return AudioRegisterResponse(
        submission_id=submission.id,
        language_code=audio.language_code,
        audio_id=audio.id,
        audio_status=audio.status.value,
        status=submission.status.value,
    )


@router.post(
    "/{submission_id}/video/{language_code}",
    response_model=VideoRegisterResponse,
    summary="Register the final video for a language",
    description="Idempotent per language. Moves the submission to pending_qc once every language has a video.",
)
async def register_video(
    submission_id: int,
    language_code: str,
    request: VideoRegisterRequest,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    api_key: ApiKey = Depends(require_intake),
):
    submission = await submission_service.get_submission(db, submission_id, lock=True)
    progress = await submission_service.upsert_video(
        db,
        submission,
        language_code,
        request.storage_path,
        public_url=request.public_url,
        duration_seconds=request.duration_seconds,
        uploaded_by=request.uploaded_by or api_key.owner,
    )
    audit.record(
        db,
        "video.registered",
        submission.id,
        api_key=api_key,
        details={"language_code": progress.video.language_code, "storage_path": request.storage_path},
    )
    await db.commit()

    await queue_sheet_sync(background_tasks, db, submission)
    return VideoRegisterResponse(
        submission_id=submission.id,
        language_code=progress.video.language_code,
        video_id=progress.video.id,
        status=submission.status.value,
        qc_status=submission.qc_status.value,
        all_videos_complete=progress.all_videos_complete,
        videos_completed=progress.videos_completed,
        total_languages=progress.total_languages,
    )


@router.delete(
    "/{submission_id}/video/{language_code}",
    response_model=StatusEcho,
    summary="Delete the video for a language",
)
async def delete_video(
    submission_id: int,
    language_code: str,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    api_key: ApiKey = Depends(require_intake),
):
    """Remove a language's video. The aggregate status is left as it is."""
    submission = await submission_service.get_submission(db, submission_id, lock=True)
    path = await submission_service.delete_video(db, submission, language_code)
    audit.record(
        db, "video.deleted", submission.id, api_key=api_key, details={"language_code": language_code}
    )
    await db.commit()

    if path:
        background_tasks.add_task(
            run_side_effect, "video object delete", asyncio.to_thread, storage_service.delete, path
        )
    await queue_sheet_sync(background_tasks, db, submission)
    return submission_service.status_echo(submission, f"Video for {language_code} deleted")


@storage_router.post(
    "/upload-urls",
    response_model=UploadUrlResponse,
    summary="Get presigned upload URLs",
    description="Presigned PUT URLs for a new submission's image and voice samples.",
)
async def create_upload_urls(
    request: UploadUrlRequest,
    api_key: ApiKey = Depends(require_intake),
):
    try:
        urls = await asyncio.to_thread(
            storage_service.generate_submission_upload_urls,
            request.image_content_type,
            request.audio_content_types,
        )
    except (BotoCoreError, ClientError) as e:
        logger.error(f"Presigning upload URLs failed: {e}")
        raise ProviderError("storage", f"Could not create upload URLs: {e}") from e
    return UploadUrlResponse(**urls)
