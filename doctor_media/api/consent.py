"""Consent OTP routes."""

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from doctor_media.auth.security import require_intake
from doctor_media.db.models import ApiKey, as_utc
from doctor_media.db.session import get_db
from doctor_media.errors import ValidationFailed
from doctor_media.middleware.rate_limit import rate_limit_otp
from doctor_media.schemas.schemas import (
    ConsentStatusResponse,
    OtpSendRequest,
    OtpSendResponse,
    OtpVerifyRequest,
    OtpVerifyResponse,
)
from doctor_media.services import audit
from doctor_media.services.consent_service import consent_service
from doctor_media.services.messaging import messaging_service
from doctor_media.services.sheets import queue_sheet_sync
from doctor_media.services.side_effects import run_side_effect
from doctor_media.services.submission_service import submission_service

router = APIRouter(prefix="/v1/consent", tags=["Consent"])


@router.post(
    "/{submission_id}/send-otp",
    response_model=OtpSendResponse,
    summary="Send a consent OTP",
    description="Send a one-time code to the doctor by email or SMS. Sending again replaces the previous code.",
)
@rate_limit_otp()
async def send_otp(
    request: Request,
    submission_id: int,
    body: OtpSendRequest,
    db: AsyncSession = Depends(get_db),
    api_key: ApiKey = Depends(require_intake),
):
    submission = await submission_service.get_submission(db, submission_id, lock=True)
    dispatch = await consent_service.send_otp(submission, body.channel)
    audit.record(
        db,
        "consent.otp_sent",
        submission.id,
        api_key=api_key,
        details={"channel": dispatch.channel, "destination": dispatch.destination},
        ip_address=request.client.host if request.client else None,
    )
    await db.commit()

    return OtpSendResponse(
        submission_id=submission.id,
        channel=dispatch.channel,
        destination=dispatch.destination,
        expires_at=dispatch.expires_at,
        consent_status=submission.consent_status.value,
        status=submission.status.value,
    )


@router.post(
    "/{submission_id}/verify",
    response_model=OtpVerifyResponse,
    summary="Verify the consent OTP",
    description="Verify the code sent to the doctor. A wrong code returns 400 with the remaining attempts.",
)
@rate_limit_otp()
async def verify_otp(
    request: Request,
    submission_id: int,
    body: OtpVerifyRequest,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    api_key: ApiKey = Depends(require_intake),
):
    submission = await submission_service.get_submission(db, submission_id, lock=True)
    outcome = consent_service.verify(submission, body.code)

    if not outcome.already_verified:
        audit.record(
            db,
            "consent.verified" if outcome.verified else "consent.otp_failed",
            submission.id,
            api_key=api_key,
            details={"remaining_attempts": outcome.remaining_attempts},
            ip_address=request.client.host if request.client else None,
        )
    await db.commit()

    if not outcome.verified:
        raise ValidationFailed(
            outcome.message,
            verified=False,
            remaining_attempts=outcome.remaining_attempts,
            consent_status=submission.consent_status.value,
            status=submission.status.value,
        )

    if not outcome.already_verified:
        await queue_sheet_sync(background_tasks, db, submission)
        background_tasks.add_task(
            run_side_effect,
            "consent confirmation sms",
            messaging_service.send_consent_confirmation,
            submission.doctor_phone,
            submission.doctor_name,
        )

    return OtpVerifyResponse(
        submission_id=submission.id,
        verified=True,
        already_verified=outcome.already_verified,
        remaining_attempts=outcome.remaining_attempts,
        consent_status=submission.consent_status.value,
        status=submission.status.value,
        message=outcome.message,
    )


@router.get(
    "/{submission_id}/status",
    response_model=ConsentStatusResponse,
    summary="Consent status",
)
async def consent_status(
    submission_id: int,
    db: AsyncSession = Depends(get_db),
    api_key: ApiKey = Depends(require_intake),
):
    submission = await submission_service.get_submission(db, submission_id)
    return ConsentStatusResponse(
        submission_id=submission.id,
        consent_status=submission.consent_status.value,
        status=submission.status.value,
        otp_sent_at=as_utc(submission.consent_otp_sent_at),
        otp_expires_at=as_utc(submission.consent_otp_expires_at),
        otp_channel=submission.consent_otp_channel,
        remaining_attempts=consent_service.remaining_attempts(submission),
        consent_verified_at=as_utc(submission.consent_verified_at),
    )
