"""Submission intake and per-language generation tracking."""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from doctor_media.config import get_settings
from doctor_media.db.models import (
    VALIDATION_MODELS,
    AudioValidation,
    GeneratedAudio,
    GeneratedVideo,
    GenerationStatus,
    ImageValidation,
    QCHistory,
    Submission,
    SubmissionAudioSample,
    SubmissionLanguage,
    SubmissionStatus,
    UploadSource,
    utcnow,
)
from doctor_media.errors import NotFoundError, ValidationFailed
from doctor_media.schemas.schemas import (
    AudioSampleInfo,
    AudioSampleRef,
    GeneratedMediaInfo,
    LanguageProgress,
    LanguageStatusResponse,
    LanguageSummary,
    StatusEcho,
    SubmissionFields,
    SubmissionResponse,
)
from doctor_media.services import media_validation
from doctor_media.services.workflow import apply_event, sync_aggregate_status

settings = get_settings()
logger = logging.getLogger(__name__)


@dataclass
class ImageRef:
    storage_path: str
    public_url: Optional[str] = None
    filename: Optional[str] = None
    content_type: Optional[str] = None
    size_bytes: Optional[int] = None


@dataclass
class VideoProgress:
    video: GeneratedVideo
    videos_completed: int
    total_languages: int
    status_changed: bool

    @property
    def all_videos_complete(self) -> bool:
        return self.videos_completed >= self.total_languages


class SubmissionService:
    """Service for submissions and their per-language audio/video rows."""

    async def create_submission(
        self,
        db: AsyncSession,
        fields: SubmissionFields,
        image: ImageRef,
        samples: list[AudioSampleRef],
        upload_source: UploadSource,
        submission_prefix: Optional[str] = None,
        created_by_key_id: Optional[str] = None,
    ) -> tuple[Submission, list[str]]:
        """
        Create a submission in pending_consent with its languages and samples.

        Args:
            db: Database session
            fields: Validated doctor/MR/language fields
            image: The uploaded doctor image
            samples: Uploaded voice samples, in order
            upload_source: How the media reached storage
            submission_prefix: Storage folder of the uploads
            created_by_key_id: API key that created the submission

        Returns:
            (submission, validation warnings)
        """
        if not samples:
            raise ValidationFailed("At least one audio sample is required")
        if len(samples) > settings.max_audio_files:
            raise ValidationFailed(
                f"At most {settings.max_audio_files} audio files are allowed",
                audio_files_count=len(samples),
            )

        image_check = media_validation.validate_image(
            image.filename, image.content_type, image.size_bytes, image.storage_path
        )
        audio_checks = [
            media_validation.validate_audio(
                s.filename, s.content_type, s.size_bytes, s.duration_seconds, s.storage_path
            )
            for s in samples
        ]
        errors = image_check.errors + [e for c in audio_checks for e in c.errors]
        if errors:
            raise ValidationFailed("Uploaded media failed validation", errors=errors)

        durations = [s.duration_seconds for s in samples if s.duration_seconds is not None]
        submission = Submission(
            **fields.model_dump(
                include=set(SubmissionFields.model_fields) - {"selected_languages"}
            ),
            image_path=image.storage_path,
            image_public_url=image.public_url,
            submission_prefix=submission_prefix,
            upload_source=upload_source,
            audio_duration_seconds=sum(durations) if durations else None,
            status=SubmissionStatus.PENDING_CONSENT,
            created_by_key_id=created_by_key_id,
            languages=[
                SubmissionLanguage(position=i, language_code=code)
                for i, code in enumerate(fields.selected_languages)
            ],
            audio_samples=[
                SubmissionAudioSample(
                    position=i,
                    storage_path=s.storage_path,
                    filename=s.filename,
                    content_type=s.content_type,
                    size_bytes=s.size_bytes,
                    duration_seconds=s.duration_seconds,
                )
                for i, s in enumerate(samples, start=1)
            ],
        )
        db.add(submission)
        await db.flush()

        warnings = []
        for check in [image_check, *audio_checks]:
            db.add(
                VALIDATION_MODELS[check.media_type](
                    submission_id=submission.id,
                    storage_path=check.storage_path,
                    is_valid=check.is_valid,
                    errors=check.errors,
                    warnings=check.warnings,
                    details=check.details,
                )
            )
            warnings.extend(check.warnings)
        await db.flush()

        logger.info(
            f"Created submission {submission.id} for {submission.doctor_name} "
            f"({', '.join(fields.selected_languages)})"
        )
        return submission, warnings

    async def get_submission(
        self,
        db: AsyncSession,
        submission_id: int,
        lock: bool = False,
    ) -> Submission:
        """
        Get a submission by ID, optionally locking its row for the transaction.

        Raises NotFoundError if it does not exist.
        """
        query = select(Submission).where(Submission.id == submission_id)
        if lock:
            query = query.with_for_update().execution_options(populate_existing=True)

        result = await db.execute(query)
        submission = result.scalar_one_or_none()
        if submission is None:
            raise NotFoundError(f"Submission {submission_id} not found")
        return submission

    async def list_submissions(
        self,
        db: AsyncSession,
        status: Optional[SubmissionStatus] = None,
        qc_statuses: Optional[list[str]] = None,
        mr_code: Optional[str] = None,
        include_deleted: bool = False,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[Submission], int]:
        """
        List submissions, newest first.

        Returns:
            Tuple of (submissions, total_count)
        """
        query = select(Submission)
        if status:
            query = query.where(Submission.status == status)
        elif not include_deleted:
            query = query.where(Submission.status != SubmissionStatus.DELETED)
        if qc_statuses:
            query = query.where(Submission.qc_status.in_(qc_statuses))
        if mr_code:
            query = query.where(Submission.mr_code == mr_code)

        count_query = select(func.count()).select_from(query.subquery())
        total = (await db.execute(count_query)).scalar() or 0

        query = (
            query.order_by(Submission.created_at.desc(), Submission.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        result = await db.execute(query)
        return list(result.scalars().all()), total

    def soft_delete(self, submission: Submission):
        apply_event(submission, "deleted")

    def retry(self, submission: Submission):
        """Move a failed submission back to consent_verified."""
        apply_event(submission, "retry")
        submission.voice_clone_error = None

    def mark_delivered(self, submission: Submission):
        apply_event(submission, "delivered")

    async def hard_delete(self, db: AsyncSession, submission: Submission) -> list[str]:
        """
        Delete a submission and every child row.

        Returns:
            Storage paths that belonged to the submission, for cleanup.
        """
        submission_id = submission.id
        paths = [p for p in [submission.image_path] if p]
        paths.extend(s.storage_path for s in submission.audio_samples)
        for model in (GeneratedVideo, GeneratedAudio):
            result = await db.execute(
                select(model.storage_path).where(
                    model.submission_id == submission_id, model.storage_path.is_not(None)
                )
            )
            paths.extend(result.scalars().all())

        for model in (
            GeneratedVideo,
            GeneratedAudio,
            QCHistory,
            ImageValidation,
            AudioValidation,
            SubmissionAudioSample,
            SubmissionLanguage,
        ):
            await db.execute(delete(model).where(model.submission_id == submission_id))
        await db.execute(delete(Submission).where(Submission.id == submission_id))

        logger.info(f"Hard deleted submission {submission_id} ({len(paths)} stored objects)")
        return paths

    def _check_language(self, submission: Submission, language_code: str) -> str:
        code = language_code.lower().strip()
        if code not in submission.selected_languages:
            raise ValidationFailed(
                f"Language {code} is not selected for submission {submission.id}",
                selected_languages=submission.selected_languages,
            )
        return code

    async def get_audio_rows(self, db: AsyncSession, submission_id: int) -> dict[str, GeneratedAudio]:
        result = await db.execute(
            select(GeneratedAudio).where(GeneratedAudio.submission_id == submission_id)
        )
        return {row.language_code: row for row in result.scalars().all()}

    async def get_video_rows(self, db: AsyncSession, submission_id: int) -> dict[str, GeneratedVideo]:
        result = await db.execute(
            select(GeneratedVideo).where(GeneratedVideo.submission_id == submission_id)
        )
        return {row.language_code: row for row in result.scalars().all()}

    async def upsert_audio(
        self,
        db: AsyncSession,
        submission: Submission,
        language_code: str,
        status: GenerationStatus,
        storage_path: Optional[str] = None,
        public_url: Optional[str] = None,
        duration_seconds: Optional[float] = None,
        error_message: Optional[str] = None,
        audio_master_id: Optional[int] = None,
        provider_request_id: Optional[str] = None,
    ) -> GeneratedAudio:
        """Insert or update the audio row for (submission, language)."""
        code = self._check_language(submission, language_code)
        result = await db.execute(
            select(GeneratedAudio).where(
                GeneratedAudio.submission_id == submission.id,
                GeneratedAudio.language_code == code,
            )
        )
        audio = result.scalar_one_or_none()
        if audio is None:
            audio = GeneratedAudio(submission_id=submission.id, language_code=code)
            db.add(audio)

        audio.status = status
        audio.error_message = error_message
        if storage_path is not None:
            audio.storage_path = storage_path
        if public_url is not None:
            audio.public_url = public_url
        if duration_seconds is not None:
            audio.duration_seconds = duration_seconds
        if audio_master_id is not None:
            audio.audio_master_id = audio_master_id
        if provider_request_id is not None:
            audio.provider_request_id = provider_request_id
        audio.updated_at = utcnow()
        audio.completed_at = utcnow() if status == GenerationStatus.COMPLETED else None

        await db.flush()
        return audio

    async def upsert_video(
        self,
        db: AsyncSession,
        submission: Submission,
        language_code: str,
        storage_path: str,
        public_url: Optional[str] = None,
        duration_seconds: Optional[float] = None,
        uploaded_by: Optional[str] = None,
    ) -> VideoProgress:
        """
        Register the completed video for a language and re-derive the status.

        The caller must hold the submission row lock.
        """
        code = self._check_language(submission, language_code)
        videos = await self.get_video_rows(db, submission.id)
        audio = (await self.get_audio_rows(db, submission.id)).get(code)

        video = videos.get(code)
        if video is None:
            video = GeneratedVideo(submission_id=submission.id, language_code=code)
            db.add(video)
            videos[code] = video

        video.status = GenerationStatus.COMPLETED
        video.storage_path = storage_path
        video.public_url = public_url
        video.error_message = None
        if duration_seconds is not None:
            video.duration_seconds = duration_seconds
        if uploaded_by is not None:
            video.uploaded_by = uploaded_by
        if audio is not None:
            video.generated_audio_id = audio.id
        video.updated_at = utcnow()
        video.completed_at = utcnow()
        await db.flush()

        changed = sync_aggregate_status(submission, videos.values())
        completed = {
            lang
            for lang, row in videos.items()
            if row.status == GenerationStatus.COMPLETED and lang in submission.selected_languages
        }
        await db.flush()

        logger.info(
            f"Video for submission {submission.id} [{code}] registered: "
            f"{len(completed)}/{len(submission.selected_languages)} languages done"
        )
        return VideoProgress(
            video=video,
            videos_completed=len(completed),
            total_languages=len(submission.selected_languages),
            status_changed=changed,
        )

    async def delete_video(
        self, db: AsyncSession, submission: Submission, language_code: str
    ) -> Optional[str]:
        """Remove the video row for a language. Returns its storage path."""
        code = self._check_language(submission, language_code)
        videos = await self.get_video_rows(db, submission.id)
        video = videos.get(code)
        if video is None:
            raise NotFoundError(f"No video for submission {submission.id} in {code}")
        path = video.storage_path
        await db.delete(video)
        await db.flush()
        return path

    async def language_status(
        self, db: AsyncSession, submission: Submission
    ) -> LanguageStatusResponse:
        """Per-language audio/video progress and summary."""
        audio_rows = await self.get_audio_rows(db, submission.id)
        video_rows = await self.get_video_rows(db, submission.id)

        languages = []
        for code in submission.selected_languages:
            audio = audio_rows.get(code)
            video = video_rows.get(code)
            audio_complete = audio is not None and audio.status == GenerationStatus.COMPLETED
            video_complete = video is not None and video.status == GenerationStatus.COMPLETED
            languages.append(
                LanguageProgress(
                    language_code=code,
                    language_name=settings.language_names.get(code, code),
                    audio=self.media_to_response(audio) if audio else None,
                    video=self.media_to_response(video) if video else None,
                    audio_complete=audio_complete,
                    video_complete=video_complete,
                    ready_for_qc=audio_complete and video_complete,
                )
            )

        summary = LanguageSummary(
            total_languages=len(languages),
            audio_completed=sum(1 for lang in languages if lang.audio_complete),
            videos_completed=sum(1 for lang in languages if lang.video_complete),
            ready_for_qc=sum(1 for lang in languages if lang.ready_for_qc),
            all_complete=bool(languages) and all(lang.ready_for_qc for lang in languages),
        )
        return LanguageStatusResponse(
            submission_id=submission.id,
            status=submission.status.value,
            qc_status=submission.qc_status.value,
            languages=languages,
            summary=summary,
        )

    def media_to_response(self, row) -> GeneratedMediaInfo:
        return GeneratedMediaInfo(
            id=row.id,
            language_code=row.language_code,
            status=row.status.value,
            storage_path=row.storage_path,
            public_url=row.public_url,
            duration_seconds=row.duration_seconds,
            error_message=row.error_message,
            created_at=row.created_at,
            updated_at=row.updated_at,
            completed_at=row.completed_at,
        )

    def submission_to_response(self, submission: Submission) -> SubmissionResponse:
        """Convert Submission model to response schema."""
        return SubmissionResponse(
            id=submission.id,
            doctor_name=submission.doctor_name,
            doctor_email=submission.doctor_email,
            doctor_phone=submission.doctor_phone,
            doctor_specialization=submission.doctor_specialization,
            doctor_clinic_name=submission.doctor_clinic_name,
            doctor_city=submission.doctor_city,
            doctor_state=submission.doctor_state,
            years_of_practice=submission.years_of_practice,
            mr_name=submission.mr_name,
            mr_code=submission.mr_code,
            mr_phone=submission.mr_phone,
            campaign_name=submission.campaign_name,
            selected_languages=submission.selected_languages,
            image_path=submission.image_path,
            image_public_url=submission.image_public_url,
            upload_source=submission.upload_source.value,
            audio_samples=[AudioSampleInfo.model_validate(s) for s in submission.audio_samples],
            audio_duration_seconds=submission.audio_duration_seconds,
            status=submission.status.value,
            consent_status=submission.consent_status.value,
            consent_verified_at=submission.consent_verified_at,
            voice_id=submission.voice_id,
            voice_clone_status=submission.voice_clone_status.value,
            voice_clone_error=submission.voice_clone_error,
            qc_status=submission.qc_status.value,
            qc_notes=submission.qc_notes,
            qc_reviewed_by=submission.qc_reviewed_by,
            qc_reviewed_at=submission.qc_reviewed_at,
            created_at=submission.created_at,
            updated_at=submission.updated_at,
        )

    def status_echo(self, submission: Submission, message: Optional[str] = None) -> StatusEcho:
        return StatusEcho(
            submission_id=submission.id,
            status=submission.status.value,
            qc_status=submission.qc_status.value,
            consent_status=submission.consent_status.value,
            voice_clone_status=submission.voice_clone_status.value,
            message=message,
        )


# Singleton instance
submission_service = SubmissionService()
