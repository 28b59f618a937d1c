"""Quality-control review routes."""

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from doctor_media.auth.security import require_review
from doctor_media.db.models import ApiKey, QCStatus, Submission, SubmissionStatus, as_utc
from doctor_media.db.session import get_db
from doctor_media.schemas.schemas import (
    MediaValidationInfo,
    QCActionResponse,
    QCApproveRequest,
    QCDetailResponse,
    QCHistoryEntry,
    QCHistoryResponse,
    QCRejectRequest,
    QCRequestChangesRequest,
    ReviewerRequest,
    SubmissionListResponse,
)
from doctor_media.services import audit
from doctor_media.services.qc_service import qc_service
from doctor_media.services.sheets import queue_sheet_sync
from doctor_media.services.submission_service import submission_service

router = APIRouter(prefix="/v1/qc", tags=["QC"])


def qc_to_response(submission: Submission) -> QCActionResponse:
    return QCActionResponse(
        submission_id=submission.id,
        status=submission.status.value,
        qc_status=submission.qc_status.value,
        qc_notes=submission.qc_notes,
        qc_reviewed_by=submission.qc_reviewed_by,
        qc_reviewed_at=as_utc(submission.qc_reviewed_at),
        qc_lease_expires_at=as_utc(submission.qc_lease_expires_at),
    )


@router.get(
    "/pending",
    response_model=SubmissionListResponse,
    summary="QC queue",
    description="Submissions in pending_qc that are waiting for or under review.",
)
async def pending_queue(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    api_key: ApiKey = Depends(require_review),
):
    submissions, total = await submission_service.list_submissions(
        db,
        status=SubmissionStatus.PENDING_QC,
        qc_statuses=[QCStatus.PENDING, QCStatus.IN_REVIEW],
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
    "/submission/{submission_id}",
    response_model=QCDetailResponse,
    summary="Everything a reviewer needs for one submission",
)
async def submission_detail(
    submission_id: int,
    db: AsyncSession = Depends(get_db),
    api_key: ApiKey = Depends(require_review),
):
    submission = await submission_service.get_submission(db, submission_id)
    return QCDetailResponse(
        submission=submission_service.submission_to_response(submission),
        languages=await submission_service.language_status(db, submission),
        validations=[
            MediaValidationInfo.model_validate(v)
            for v in await qc_service.validations(db, submission.id)
        ],
        history=[
            QCHistoryEntry.model_validate(h) for h in await qc_service.history(db, submission.id)
        ],
    )


@router.get(
    "/history/{submission_id}",
    response_model=QCHistoryResponse,
    summary="QC history",
)
async def qc_history(
    submission_id: int,
    db: AsyncSession = Depends(get_db),
    api_key: ApiKey = Depends(require_review),
):
    submission = await submission_service.get_submission(db, submission_id)
    history = await qc_service.history(db, submission.id)
    return QCHistoryResponse(
        submission_id=submission.id,
        history=[QCHistoryEntry.model_validate(h) for h in history],
    )


@router.post(
    "/start-review/{submission_id}",
    response_model=QCActionResponse,
    summary="Start or renew a review",
    description="Takes a time-limited review lease. Returns 409 if another reviewer holds a live lease.",
)
async def start_review(
    submission_id: int,
    request: ReviewerRequest,
    db: AsyncSession = Depends(get_db),
    api_key: ApiKey = Depends(require_review),
):
    submission = await submission_service.get_submission(db, submission_id, lock=True)
    qc_service.start_review(db, submission, request.reviewer_name)
    await db.commit()
    return qc_to_response(submission)


@router.post(
    "/release-review/{submission_id}",
    response_model=QCActionResponse,
    summary="Give up a review lease",
)
async def release_review(
    submission_id: int,
    request: ReviewerRequest,
    db: AsyncSession = Depends(get_db),
    api_key: ApiKey = Depends(require_review),
):
    submission = await submission_service.get_submission(db, submission_id, lock=True)
    qc_service.release_review(db, submission, request.reviewer_name)
    await db.commit()
    return qc_to_response(submission)


@router.post(
    "/approve/{submission_id}",
    response_model=QCActionResponse,
    summary="Approve a submission",
)
async def approve(
    submission_id: int,
    request: QCApproveRequest,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    api_key: ApiKey = Depends(require_review),
):
    submission = await submission_service.get_submission(db, submission_id, lock=True)
    qc_service.approve(db, submission, request.reviewer_name, request.notes)
    audit.record(
        db, "qc.approved", submission.id, api_key=api_key, actor=request.reviewer_name,
        details={"notes": request.notes},
    )
    await db.commit()

    await queue_sheet_sync(background_tasks, db, submission)
    return qc_to_response(submission)


@router.post(
    "/reject/{submission_id}",
    response_model=QCActionResponse,
    summary="Reject a submission",
)
async def reject(
    submission_id: int,
    request: QCRejectRequest,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    api_key: ApiKey = Depends(require_review),
):
    submission = await submission_service.get_submission(db, submission_id, lock=True)
    qc_service.reject(
        db, submission, request.reviewer_name, request.notes, request.rejection_reasons
    )
    audit.record(
        db, "qc.rejected", submission.id, api_key=api_key, actor=request.reviewer_name,
        details={"reasons": request.rejection_reasons, "notes": request.notes},
    )
    await db.commit()

    await queue_sheet_sync(background_tasks, db, submission)
    return qc_to_response(submission)


@router.post(
    "/request-changes/{submission_id}",
    response_model=QCActionResponse,
    summary="Send a submission back for changes",
)
async def request_changes(
    submission_id: int,
    request: QCRequestChangesRequest,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    api_key: ApiKey = Depends(require_review),
):
    submission = await submission_service.get_submission(db, submission_id, lock=True)
    qc_service.request_changes(
        db, submission, request.reviewer_name, request.changes_requested, request.notes
    )
    audit.record(
        db, "qc.changes_requested", submission.id, api_key=api_key, actor=request.reviewer_name,
        details={"changes_requested": request.changes_requested},
    )
    await db.commit()

    await queue_sheet_sync(background_tasks, db, submission)
    return qc_to_response(submission)
