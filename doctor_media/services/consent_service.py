"""OTP-gated doctor consent."""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from doctor_media.auth.security import hash_secret, verify_secret
from doctor_media.config import get_settings
from doctor_media.db.models import ConsentStatus, Submission, SubmissionStatus, as_utc, utcnow
from doctor_media.errors import ConflictError, ValidationFailed
from doctor_media.services.messaging import messaging_service
from doctor_media.services.workflow import apply_event

settings = get_settings()
logger = logging.getLogger(__name__)


@dataclass
class OtpDispatch:
    channel: str
    destination: str
    expires_at: datetime


@dataclass
class VerifyOutcome:
    verified: bool
    remaining_attempts: int
    message: str
    already_verified: bool = False


def generate_code(length: int) -> str:
    return f"{secrets.randbelow(10 ** length):0{length}d}"


class ConsentService:
    """Issues and checks one-time codes confirming the doctor's consent."""

    def remaining_attempts(self, submission: Submission) -> int:
        if submission.consent_otp_hash is None:
            return 0
        return max(settings.otp_max_attempts - (submission.consent_otp_attempts or 0), 0)

    def _invalidate(self, submission: Submission):
        submission.consent_otp_hash = None
        submission.consent_otp_expires_at = None

    async def send_otp(
        self, submission: Submission, channel: str = "email", now: Optional[datetime] = None
    ) -> OtpDispatch:
        """
        Generate a fresh code, deliver it, and store its hash.

        Delivery happens first; if it fails the previous OTP state is kept
        and the ProviderError propagates.
        """
        if submission.consent_status == ConsentStatus.VERIFIED:
            raise ConflictError(
                "Consent is already verified",
                consent_status=submission.consent_status.value,
            )
        if submission.status == SubmissionStatus.DELETED:
            raise ConflictError(f"Submission {submission.id} is deleted")

        destination = submission.doctor_phone if channel == "sms" else submission.doctor_email
        if not destination:
            raise ValidationFailed(f"Submission {submission.id} has no doctor {'phone' if channel == 'sms' else 'email'}")

        code = generate_code(settings.otp_length)
        masked = await messaging_service.send_otp(channel, destination, code, submission.doctor_name)

        now = now or utcnow()
        submission.consent_otp_hash = hash_secret(code)
        submission.consent_otp_expires_at = now + timedelta(minutes=settings.otp_expiry_minutes)
        submission.consent_otp_attempts = 0
        submission.consent_otp_channel = channel
        submission.consent_otp_sent_at = now
        submission.updated_at = now

        logger.info(f"Consent OTP issued for submission {submission.id} via {channel}")
        return OtpDispatch(channel, masked, submission.consent_otp_expires_at)

    def verify(
        self, submission: Submission, code: str, now: Optional[datetime] = None
    ) -> VerifyOutcome:
        """
        Check a code against the stored OTP.

        A correct code verifies consent. The code is invalidated once it
        expires or once the attempt budget is spent.
        """
        if submission.consent_status == ConsentStatus.VERIFIED:
            return VerifyOutcome(True, 0, "Consent already verified", already_verified=True)

        if submission.consent_otp_hash is None:
            return VerifyOutcome(False, 0, "No active code. Request a new one.")

        if (submission.consent_otp_attempts or 0) >= settings.otp_max_attempts:
            self._invalidate(submission)
            return VerifyOutcome(False, 0, "Too many attempts. Request a new code.")

        now = now or utcnow()
        if now > as_utc(submission.consent_otp_expires_at):
            self._invalidate(submission)
            return VerifyOutcome(False, 0, "Code expired. Request a new one.")

        if not verify_secret(code, submission.consent_otp_hash):
            submission.consent_otp_attempts = (submission.consent_otp_attempts or 0) + 1
            remaining = settings.otp_max_attempts - submission.consent_otp_attempts
            if remaining <= 0:
                self._invalidate(submission)
                logger.warning(f"Consent OTP for submission {submission.id} exhausted")
                return VerifyOutcome(False, 0, "Too many attempts. Request a new code.")
            return VerifyOutcome(False, remaining, "Invalid code")

        apply_event(submission, "consent_verified")
        submission.consent_status = ConsentStatus.VERIFIED
        submission.consent_verified_at = now
        submission.consent_otp_attempts = 0
        self._invalidate(submission)
        logger.info(f"Consent verified for submission {submission.id}")
        return VerifyOutcome(True, 0, "Consent verified")


consent_service = ConsentService()
