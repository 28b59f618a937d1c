"""Quality-control review gate."""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from doctor_media.config import get_settings
from doctor_media.db.models import (
    AudioValidation,
    ImageValidation,
    QCHistory,
    QCStatus,
    Submission,
    SubmissionStatus,
    as_utc,
    utcnow,
)
from doctor_media.errors import ConflictError
from doctor_media.services.workflow import apply_event

settings = get_settings()
logger = logging.getLogger(__name__)


def lease_is_live(submission: Submission, now: datetime) -> bool:
    expires_at = as_utc(submission.qc_lease_expires_at)
    return (
        submission.qc_status == QCStatus.IN_REVIEW
        and expires_at is not None
        and expires_at > now
    )


class QCService:
    """Review leases, decisions and the append-only history."""

    def _record(
        self,
        db: AsyncSession,
        submission: Submission,
        reviewer_name: str,
        previous_status: Optional[QCStatus],
        new_status: str,
        notes: Optional[str] = None,
    ) -> QCHistory:
        entry = QCHistory(
            submission_id=submission.id,
            reviewer_name=reviewer_name,
            previous_status=previous_status.value if previous_status else None,
            new_status=new_status,
            notes=notes,
        )
        db.add(entry)
        return entry

    def _stamp(self, submission: Submission, reviewer_name: str, now: datetime):
        submission.qc_reviewed_by = reviewer_name
        submission.qc_reviewed_at = now
        submission.qc_lease_expires_at = None
        submission.updated_at = now

    def _check_not_deleted(self, submission: Submission):
        if submission.status == SubmissionStatus.DELETED:
            raise ConflictError(f"Submission {submission.id} is deleted")

    def start_review(
        self,
        db: AsyncSession,
        submission: Submission,
        reviewer_name: str,
        now: Optional[datetime] = None,
    ) -> bool:
        """
        Take (or renew) the review lease.

        Returns True if the lease was renewed by its current holder.
        Raises ConflictError if another reviewer holds a live lease.
        """
        self._check_not_deleted(submission)
        now = now or utcnow()
        previous = submission.qc_status

        if previous in (QCStatus.APPROVED, QCStatus.REJECTED):
            raise ConflictError(
                f"Submission {submission.id} was already {previous.value}",
                qc_status=previous.value,
                reviewed_by=submission.qc_reviewed_by,
            )

        renewed = False
        if lease_is_live(submission, now):
            if submission.qc_reviewed_by != reviewer_name:
                raise ConflictError(
                    "Submission is being reviewed by another reviewer",
                    reviewed_by=submission.qc_reviewed_by,
                    lease_expires_at=as_utc(submission.qc_lease_expires_at).isoformat(),
                )
            renewed = True
        elif previous == QCStatus.IN_REVIEW:
            logger.info(
                f"Review lease on submission {submission.id} held by "
                f"{submission.qc_reviewed_by} expired; taken over by {reviewer_name}"
            )

        submission.qc_status = QCStatus.IN_REVIEW
        submission.qc_reviewed_by = reviewer_name
        submission.qc_lease_expires_at = now + timedelta(minutes=settings.qc_lease_minutes)
        submission.updated_at = now
        self._record(
            db,
            submission,
            reviewer_name,
            previous,
            QCStatus.IN_REVIEW.value,
            "Renewed review" if renewed else "Started review",
        )
        return renewed

    def release_review(
        self, db: AsyncSession, submission: Submission, reviewer_name: str
    ):
        """Drop the review lease held by ``reviewer_name``."""
        if submission.qc_status != QCStatus.IN_REVIEW or submission.qc_reviewed_by != reviewer_name:
            raise ConflictError(
                f"{reviewer_name} does not hold the review of submission {submission.id}",
                qc_status=submission.qc_status.value,
                reviewed_by=submission.qc_reviewed_by,
            )
        submission.qc_status = QCStatus.PENDING
        submission.qc_lease_expires_at = None
        submission.updated_at = utcnow()
        self._record(
            db, submission, reviewer_name, QCStatus.IN_REVIEW, QCStatus.PENDING.value, "Released review"
        )

    def approve(
        self,
        db: AsyncSession,
        submission: Submission,
        reviewer_name: str,
        notes: Optional[str] = None,
    ):
        previous = submission.qc_status
        apply_event(submission, "qc_approved")
        submission.qc_status = QCStatus.APPROVED
        submission.qc_notes = notes
        self._stamp(submission, reviewer_name, utcnow())
        self._record(db, submission, reviewer_name, previous, QCStatus.APPROVED.value, notes)
        logger.info(f"Submission {submission.id} approved by {reviewer_name}")

    def reject(
        self,
        db: AsyncSession,
        submission: Submission,
        reviewer_name: str,
        notes: str,
        rejection_reasons: Optional[list[str]] = None,
    ):
        previous = submission.qc_status
        full_notes = notes
        if rejection_reasons:
            full_notes = f"Reasons: {', '.join(rejection_reasons)}. {notes}"

        apply_event(submission, "qc_rejected")
        submission.qc_status = QCStatus.REJECTED
        submission.qc_notes = full_notes
        self._stamp(submission, reviewer_name, utcnow())
        self._record(db, submission, reviewer_name, previous, QCStatus.REJECTED.value, full_notes)
        logger.info(f"Submission {submission.id} rejected by {reviewer_name}")

    def request_changes(
        self,
        db: AsyncSession,
        submission: Submission,
        reviewer_name: str,
        changes_requested: list[str],
        notes: Optional[str] = None,
    ):
        previous = submission.qc_status
        full_notes = f"Changes requested: {', '.join(changes_requested)}"
        if notes:
            full_notes = f"{full_notes}. {notes}"

        apply_event(submission, "changes_requested")
        submission.qc_status = QCStatus.PENDING
        submission.qc_notes = full_notes
        self._stamp(submission, reviewer_name, utcnow())
        self._record(db, submission, reviewer_name, previous, "changes_requested", full_notes)
        logger.info(f"Changes requested on submission {submission.id} by {reviewer_name}")

    async def history(self, db: AsyncSession, submission_id: int) -> list[QCHistory]:
        result = await db.execute(
            select(QCHistory)
            .where(QCHistory.submission_id == submission_id)
            .order_by(QCHistory.created_at.asc(), QCHistory.id.asc())
        )
        return list(result.scalars().all())

    async def validations(self, db: AsyncSession, submission_id: int) -> list:
        """Image checks first, then the voice samples in upload order."""
        checks = []
        for model in (ImageValidation, AudioValidation):
            result = await db.execute(
                select(model).where(model.submission_id == submission_id).order_by(model.id.asc())
            )
            checks.extend(result.scalars().all())
        return checks


qc_service = QCService()
