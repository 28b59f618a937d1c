"""Voice cloning, per-language speech generation and voice release."""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from botocore.exceptions import BotoCoreError, ClientError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from doctor_media.config import get_settings
from doctor_media.db.models import (
    AudioMaster,
    ConsentStatus,
    GenerationStatus,
    Submission,
    SubmissionStatus,
    VoiceCloneStatus,
    as_utc,
    utcnow,
)
from doctor_media.errors import ConflictError, ConsentRequired, ProviderError
from doctor_media.services.elevenlabs import elevenlabs_client
from doctor_media.services.storage import storage_service
from doctor_media.services.submission_service import submission_service
from doctor_media.services.workflow import apply_event, sync_aggregate_status

settings = get_settings()
logger = logging.getLogger(__name__)

# Submission statuses after which a cloned voice is no longer needed.
RELEASABLE_STATUSES = frozenset({SubmissionStatus.COMPLETED, SubmissionStatus.FAILED})

STORAGE_ERRORS = (BotoCoreError, ClientError)


def can_delete_voice(submission: Submission) -> bool:
    return submission.status in RELEASABLE_STATUSES


def voice_age_hours(submission: Submission, now: datetime) -> float:
    reference = as_utc(submission.updated_at) or as_utc(submission.created_at)
    return max((now - reference).total_seconds() / 3600, 0.0)


def is_cleanup_eligible(
    submission: Submission, now: datetime, min_age_hours: Optional[float] = None
) -> bool:
    """A voice may be released once the submission is finished and has been idle long enough."""
    if min_age_hours is None:
        min_age_hours = settings.voice_cleanup_cooldown_hours
    return can_delete_voice(submission) and voice_age_hours(submission, now) >= min_age_hours


@dataclass
class LanguageResult:
    language_code: str
    status: GenerationStatus
    audio_id: Optional[int] = None
    storage_path: Optional[str] = None
    error: Optional[str] = None


@dataclass
class ProcessOutcome:
    results: list[LanguageResult] = field(default_factory=list)

    @property
    def errors(self) -> list[str]:
        return [f"{r.language_code}: {r.error}" for r in self.results if r.error]

    @property
    def any_completed(self) -> bool:
        return any(r.status == GenerationStatus.COMPLETED for r in self.results)


@dataclass
class CleanupOutcome:
    candidates: list[Submission]
    released: list[int] = field(default_factory=list)
    failed: list[tuple[int, str]] = field(default_factory=list)


class VoiceService:
    """Wraps the voice provider around the submission lifecycle."""

    def _require_consent(self, submission: Submission):
        if submission.consent_status != ConsentStatus.VERIFIED:
            raise ConsentRequired(
                f"Consent for submission {submission.id} is not verified",
                consent_status=submission.consent_status.value,
            )

    async def _load_samples(self, submission: Submission) -> list[tuple[str, bytes, str]]:
        samples = []
        for sample in submission.audio_samples:
            content = await asyncio.to_thread(storage_service.download, sample.storage_path)
            filename = sample.filename or sample.storage_path.rsplit("/", 1)[-1]
            samples.append((filename, content, sample.content_type or "audio/mpeg"))
        return samples

    async def clone(self, submission: Submission) -> str:
        """
        Clone the doctor's voice from the stored samples.

        On failure the submission records voice_clone_status=failed with the
        error and the ProviderError is raised; the aggregate status is untouched.
        """
        self._require_consent(submission)
        if submission.voice_clone_status == VoiceCloneStatus.COMPLETED and submission.voice_id:
            raise ConflictError(
                f"Voice already cloned for submission {submission.id}",
                voice_id=submission.voice_id,
            )

        try:
            samples = await self._load_samples(submission)
            voice_id = await elevenlabs_client.clone_voice(
                name=f"Dr. {submission.doctor_name} - {submission.id}",
                samples=samples,
                description=f"Cloned voice for submission {submission.id}",
                labels={"submission_id": str(submission.id)},
            )
        except STORAGE_ERRORS as e:
            self._record_clone_failure(submission, f"Could not read voice samples: {e}")
            raise ProviderError("storage", f"Could not read voice samples: {e}") from e
        except ProviderError as e:
            self._record_clone_failure(submission, e.message)
            raise

        submission.voice_id = voice_id
        submission.voice_clone_status = VoiceCloneStatus.COMPLETED
        submission.voice_clone_error = None
        submission.voice_cloned_at = utcnow()
        submission.updated_at = utcnow()
        return voice_id

    def _record_clone_failure(self, submission: Submission, message: str):
        logger.error(f"Voice clone failed for submission {submission.id}: {message}")
        submission.voice_clone_status = VoiceCloneStatus.FAILED
        submission.voice_clone_error = message
        submission.updated_at = utcnow()

    async def active_masters(self, db: AsyncSession) -> dict[str, AudioMaster]:
        """Newest active audio master per language."""
        result = await db.execute(
            select(AudioMaster)
            .where(AudioMaster.is_active == True)  # noqa: E712
            .order_by(AudioMaster.created_at.asc(), AudioMaster.id.asc())
        )
        return {master.language_code: master for master in result.scalars().all()}

    async def _generate_language(
        self,
        db: AsyncSession,
        submission: Submission,
        language_code: str,
        master: Optional[AudioMaster],
    ) -> LanguageResult:
        if master is None:
            error = f"No active audio master for {language_code}"
            audio = await submission_service.upsert_audio(
                db, submission, language_code, GenerationStatus.FAILED, error_message=error
            )
            return LanguageResult(language_code, GenerationStatus.FAILED, audio.id, error=error)

        try:
            source = await asyncio.to_thread(storage_service.download, master.storage_path)
            content, request_id = await elevenlabs_client.speech_to_speech(
                submission.voice_id,
                source,
                filename=master.storage_path.rsplit("/", 1)[-1],
                model_id=settings.sts_model_for(language_code),
                voice_settings=settings.voice_settings,
            )
            path = storage_service.generated_audio_path(submission.id, language_code)
            await asyncio.to_thread(storage_service.upload_bytes, content, path, "audio/mpeg")
        except (ProviderError, *STORAGE_ERRORS) as e:
            error = getattr(e, "message", None) or str(e)
            logger.error(f"Audio generation failed for submission {submission.id} [{language_code}]: {error}")
            audio = await submission_service.upsert_audio(
                db,
                submission,
                language_code,
                GenerationStatus.FAILED,
                error_message=error,
                audio_master_id=master.id,
            )
            return LanguageResult(language_code, GenerationStatus.FAILED, audio.id, error=error)

        audio = await submission_service.upsert_audio(
            db,
            submission,
            language_code,
            GenerationStatus.COMPLETED,
            storage_path=path,
            public_url=storage_service.public_url(path),
            audio_master_id=master.id,
            provider_request_id=request_id,
        )
        logger.info(f"Generated {language_code} audio for submission {submission.id}")
        return LanguageResult(language_code, GenerationStatus.COMPLETED, audio.id, path)

    async def process(self, db: AsyncSession, submission: Submission) -> ProcessOutcome:
        """
        Clone the voice if needed, then generate audio for every selected language.

        Languages are independent: a failure is recorded on that language's row
        and processing moves on. The submission fails only if every language failed.
        """
        self._require_consent(submission)
        apply_event(submission, "processing_started")

        if submission.voice_clone_status != VoiceCloneStatus.COMPLETED or not submission.voice_id:
            try:
                await self.clone(submission)
            except ProviderError:
                apply_event(submission, "processing_failed")
                raise

        masters = await self.active_masters(db)
        outcome = ProcessOutcome()
        for code in submission.selected_languages:
            outcome.results.append(
                await self._generate_language(db, submission, code, masters.get(code))
            )

        if not outcome.any_completed:
            apply_event(submission, "processing_failed")

        # Videos already registered for every language still put it back in QC
        videos = await submission_service.get_video_rows(db, submission.id)
        sync_aggregate_status(submission, videos.values())
        return outcome

    async def release(self, submission: Submission, force: bool = False) -> bool:
        """
        Delete the cloned voice at the provider.

        Returns False if it was already released. Without ``force`` the
        submission must be finished and idle past the cooldown.
        """
        if submission.voice_clone_status == VoiceCloneStatus.DELETED:
            return False
        if submission.voice_clone_status != VoiceCloneStatus.COMPLETED or not submission.voice_id:
            raise ConflictError(
                f"Submission {submission.id} has no active voice",
                voice_clone_status=submission.voice_clone_status.value,
            )

        now = utcnow()
        if not force and not is_cleanup_eligible(submission, now):
            raise ConflictError(
                f"Voice for submission {submission.id} is not eligible for release",
                status=submission.status.value,
                can_delete=can_delete_voice(submission),
                age_hours=round(voice_age_hours(submission, now), 2),
            )

        await elevenlabs_client.delete_voice(submission.voice_id)
        submission.voice_clone_status = VoiceCloneStatus.DELETED
        submission.voice_released_at = now
        logger.info(f"Released voice {submission.voice_id} of submission {submission.id}")
        return True

    async def voices_in_use(self, db: AsyncSession) -> list[Submission]:
        result = await db.execute(
            select(Submission)
            .where(
                Submission.voice_clone_status == VoiceCloneStatus.COMPLETED,
                Submission.voice_id.is_not(None),
            )
            .order_by(Submission.updated_at.asc())
        )
        return list(result.scalars().all())

    async def cleanup(
        self,
        db: AsyncSession,
        dry_run: bool = False,
        max_age_hours: Optional[float] = None,
    ) -> CleanupOutcome:
        """Release every voice whose submission is eligible for cleanup."""
        now = utcnow()
        candidates = [
            s for s in await self.voices_in_use(db) if is_cleanup_eligible(s, now, max_age_hours)
        ]
        outcome = CleanupOutcome(candidates=candidates)
        if dry_run:
            return outcome

        for submission in candidates:
            try:
                await self.release(submission, force=True)
            except ProviderError as e:
                logger.error(f"Voice cleanup failed for submission {submission.id}: {e.message}")
                outcome.failed.append((submission.id, e.message))
            else:
                outcome.released.append(submission.id)

        logger.info(
            f"Voice cleanup released {len(outcome.released)} of {len(candidates)} voices"
        )
        return outcome


voice_service = VoiceService()
