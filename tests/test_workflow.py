"""Tests for status transitions and aggregate status derivation."""

from types import SimpleNamespace

import pytest

from doctor_media.db.models import GenerationStatus, QCStatus, Submission, SubmissionLanguage
from doctor_media.db.models import SubmissionStatus as S
from doctor_media.errors import InvalidTransition
from doctor_media.services.workflow import (
    LOCKED_STATUSES,
    apply_event,
    derive_aggregate_status,
    next_status,
    sync_aggregate_status,
)


def video(code: str, status: GenerationStatus = GenerationStatus.COMPLETED):
    return SimpleNamespace(language_code=code, status=status)


def make_submission(status: S, languages=("en", "hi")) -> Submission:
    return Submission(
        id=1,
        doctor_name="Dr. Test",
        status=status,
        qc_status=QCStatus.PENDING,
        languages=[
            SubmissionLanguage(position=i, language_code=code) for i, code in enumerate(languages)
        ],
    )


def test_pending_qc_once_every_language_has_a_video():
    rows = [video("en"), video("hi")]
    assert derive_aggregate_status(S.PROCESSING, ["en", "hi"], rows) == S.PENDING_QC


def test_partial_videos_keep_status():
    assert derive_aggregate_status(S.PROCESSING, ["en", "hi"], [video("en")]) == S.PROCESSING


def test_only_completed_videos_count():
    rows = [video("en"), video("hi", GenerationStatus.FAILED)]
    assert derive_aggregate_status(S.PROCESSING, ["en", "hi"], rows) == S.PROCESSING


def test_videos_for_unselected_languages_do_not_count():
    rows = [video("en"), video("ta")]
    assert derive_aggregate_status(S.PROCESSING, ["en", "hi"], rows) == S.PROCESSING


def test_duplicate_rows_count_once():
    rows = [video("en"), video("en")]
    assert derive_aggregate_status(S.PROCESSING, ["en", "hi"], rows) == S.PROCESSING


@pytest.mark.parametrize("status", sorted(LOCKED_STATUSES, key=lambda s: s.value))
def test_locked_statuses_never_regress(status):
    rows = [video("en"), video("hi")]
    assert derive_aggregate_status(status, ["en", "hi"], rows) == status


def test_videos_complete_from_pending_consent():
    # Videos can be produced outside the voice pipeline
    assert derive_aggregate_status(S.PENDING_CONSENT, ["en"], [video("en")]) == S.PENDING_QC


@pytest.mark.parametrize(
    "event,current,expected",
    [
        ("consent_verified", S.PENDING_CONSENT, S.CONSENT_VERIFIED),
        ("processing_started", S.CONSENT_VERIFIED, S.PROCESSING),
        ("processing_started", S.PENDING_CHANGES, S.PROCESSING),
        ("processing_failed", S.PROCESSING, S.FAILED),
        ("qc_approved", S.PENDING_QC, S.QC_APPROVED),
        ("qc_rejected", S.PENDING_QC, S.QC_REJECTED),
        ("changes_requested", S.QC_APPROVED, S.PENDING_CHANGES),
        ("delivered", S.QC_APPROVED, S.COMPLETED),
        ("retry", S.FAILED, S.CONSENT_VERIFIED),
        ("deleted", S.COMPLETED, S.DELETED),
    ],
)
def test_allowed_transitions(event, current, expected):
    assert next_status(event, current) == expected


@pytest.mark.parametrize(
    "event,current",
    [
        ("consent_verified", S.PROCESSING),
        ("processing_started", S.PENDING_CONSENT),
        ("delivered", S.PENDING_QC),
        ("retry", S.PROCESSING),
        ("qc_approved", S.DELETED),
    ],
)
def test_rejected_transitions(event, current):
    with pytest.raises(InvalidTransition) as exc_info:
        next_status(event, current)
    assert exc_info.value.extra["current_status"] == current.value


def test_silent_transition_returns_none():
    assert next_status("videos_completed", S.QC_APPROVED) is None


def test_apply_event_changes_status():
    submission = make_submission(S.PENDING_CONSENT)
    assert apply_event(submission, "consent_verified") is True
    assert submission.status == S.CONSENT_VERIFIED
    assert submission.updated_at is not None


def test_sync_resets_qc_and_lease_on_entering_pending_qc():
    submission = make_submission(S.PROCESSING, languages=("en",))
    submission.qc_status = QCStatus.REJECTED

    assert sync_aggregate_status(submission, [video("en")]) is True
    assert submission.status == S.PENDING_QC
    assert submission.qc_status == QCStatus.PENDING
    assert submission.qc_lease_expires_at is None


def test_sync_leaves_approved_submission_alone():
    submission = make_submission(S.QC_APPROVED, languages=("en",))
    submission.qc_status = QCStatus.APPROVED

    assert sync_aggregate_status(submission, [video("en")]) is False
    assert submission.status == S.QC_APPROVED
    assert submission.qc_status == QCStatus.APPROVED
