"""Submission status transitions and aggregate status derivation.

Every change to ``Submission.status`` goes through :func:`apply_event`, which
checks the event against ``TRANSITIONS``. The per-language tracker calls
:func:`derive_aggregate_status` after each video upsert.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Optional, Protocol

from doctor_media.db.models import (
    GenerationStatus,
    QCStatus,
    Submission,
    SubmissionStatus,
    utcnow,
)
from doctor_media.errors import InvalidTransition

logger = logging.getLogger(__name__)

ALL_STATUSES = frozenset(SubmissionStatus)

# Statuses that per-language upserts may never move the submission out of.
LOCKED_STATUSES = frozenset(
    {SubmissionStatus.QC_APPROVED, SubmissionStatus.COMPLETED, SubmissionStatus.DELETED}
)


@dataclass(frozen=True)
class Transition:
    allowed_from: frozenset
    target: SubmissionStatus
    # A silent transition is a no-op instead of an error when not allowed.
    silent: bool = False


TRANSITIONS: dict[str, Transition] = {
    "consent_verified": Transition(
        frozenset({SubmissionStatus.PENDING_CONSENT}),
        SubmissionStatus.CONSENT_VERIFIED,
    ),
    "processing_started": Transition(
        frozenset(
            {
                SubmissionStatus.CONSENT_VERIFIED,
                SubmissionStatus.PROCESSING,
                SubmissionStatus.FAILED,
                SubmissionStatus.PENDING_CHANGES,
                SubmissionStatus.QC_REJECTED,
            }
        ),
        SubmissionStatus.PROCESSING,
    ),
    "processing_failed": Transition(
        frozenset({SubmissionStatus.PROCESSING}),
        SubmissionStatus.FAILED,
    ),
    "videos_completed": Transition(
        ALL_STATUSES - LOCKED_STATUSES,
        SubmissionStatus.PENDING_QC,
        silent=True,
    ),
    "qc_approved": Transition(
        ALL_STATUSES - {SubmissionStatus.DELETED},
        SubmissionStatus.QC_APPROVED,
    ),
    "qc_rejected": Transition(
        ALL_STATUSES - {SubmissionStatus.DELETED},
        SubmissionStatus.QC_REJECTED,
    ),
    "changes_requested": Transition(
        ALL_STATUSES - {SubmissionStatus.DELETED},
        SubmissionStatus.PENDING_CHANGES,
    ),
    "delivered": Transition(
        frozenset({SubmissionStatus.QC_APPROVED}),
        SubmissionStatus.COMPLETED,
    ),
    "retry": Transition(
        frozenset({SubmissionStatus.FAILED}),
        SubmissionStatus.CONSENT_VERIFIED,
    ),
    "deleted": Transition(ALL_STATUSES, SubmissionStatus.DELETED),
}


def can_apply(event: str, current: SubmissionStatus) -> bool:
    return SubmissionStatus(current) in TRANSITIONS[event].allowed_from


def next_status(event: str, current: SubmissionStatus) -> Optional[SubmissionStatus]:
    """
    Resolve the status an event leads to from ``current``.

    Returns None for a silent event that does not apply.
    Raises InvalidTransition for any other event that does not apply.
    """
    transition = TRANSITIONS[event]
    current = SubmissionStatus(current)
    if current in transition.allowed_from:
        return transition.target
    if transition.silent:
        return None
    raise InvalidTransition(event, current.value)


def apply_event(submission: Submission, event: str) -> bool:
    """Apply a status event to a submission. Returns True if the status changed."""
    target = next_status(event, submission.status)
    if target is None or target == submission.status:
        return False

    logger.info(
        f"Submission {submission.id}: {submission.status.value} -> {target.value} ({event})"
    )
    submission.status = target
    submission.updated_at = utcnow()
    return True


class _VideoRow(Protocol):
    language_code: str
    status: GenerationStatus


def completed_languages(video_rows: Iterable[_VideoRow]) -> set[str]:
    """Distinct language codes that have a completed video."""
    return {
        row.language_code
        for row in video_rows
        if GenerationStatus(row.status) == GenerationStatus.COMPLETED
    }


def derive_aggregate_status(
    current_status: SubmissionStatus,
    selected_languages: list[str],
    video_rows: Iterable[_VideoRow],
) -> SubmissionStatus:
    """
    Derive the aggregate status from the per-language video rows.

    The submission is ready for QC once every selected language has a
    completed video. Locked statuses are returned unchanged.
    """
    current_status = SubmissionStatus(current_status)
    done = completed_languages(video_rows) & set(selected_languages)
    if selected_languages and len(done) >= len(set(selected_languages)):
        target = next_status("videos_completed", current_status)
        if target is not None:
            return target
    return current_status


def sync_aggregate_status(
    submission: Submission, video_rows: Iterable[_VideoRow]
) -> bool:
    """
    Recompute and store the aggregate status after per-language rows change.

    On entering pending_qc the QC status is reset to pending (unless already
    approved) and any review lease is dropped.
    """
    derived = derive_aggregate_status(
        submission.status, submission.selected_languages, video_rows
    )
    if derived == submission.status:
        return False

    apply_event(submission, "videos_completed")
    if submission.qc_status != QCStatus.APPROVED:
        submission.qc_status = QCStatus.PENDING
    submission.qc_lease_expires_at = None
    return True
