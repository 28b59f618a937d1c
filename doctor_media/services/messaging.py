"""Outbound messages: OTP email (SES), SMS (SNS) and WhatsApp (Gupshup)."""

import asyncio
import json
import logging
from typing import Optional

import boto3
import httpx
from botocore.exceptions import BotoCoreError, ClientError

from doctor_media.config import get_settings
from doctor_media.errors import ProviderError

settings = get_settings()
logger = logging.getLogger(__name__)

GUPSHUP_TEMPLATE_URL = "https://api.gupshup.io/wa/api/v1/template/msg"


def mask_email(email: str) -> str:
    local, _, domain = email.partition("@")
    return f"{local[:2]}***@{domain}"


def mask_phone(phone: str) -> str:
    return f"{phone[:3]}******{phone[-4:]}"


class MessagingService:
    """Delivers OTPs and notifications."""

    def __init__(self):
        self._ses = None
        self._sns = None

    @property
    def ses(self):
        if self._ses is None:
            self._ses = boto3.client("ses", region_name=settings.aws_region)
        return self._ses

    @property
    def sns(self):
        if self._sns is None:
            self._sns = boto3.client("sns", region_name=settings.aws_region)
        return self._sns

    def _send_email(self, to: str, subject: str, body: str):
        if not settings.ses_sender:
            raise ProviderError("ses", "Email delivery is not configured")
        try:
            self.ses.send_email(
                Source=settings.ses_sender,
                Destination={"ToAddresses": [to]},
                Message={
                    "Subject": {"Data": subject, "Charset": "UTF-8"},
                    "Body": {"Text": {"Data": body, "Charset": "UTF-8"}},
                },
            )
        except (BotoCoreError, ClientError) as e:
            raise ProviderError("ses", f"Email delivery failed: {e}") from e

    def _send_sms(self, phone: str, message: str):
        if not settings.sms_enabled:
            raise ProviderError("sns", "SMS delivery is not enabled")
        try:
            self.sns.publish(
                PhoneNumber=phone,
                Message=message,
                MessageAttributes={
                    "AWS.SNS.SMS.SMSType": {"DataType": "String", "StringValue": "Transactional"}
                },
            )
        except (BotoCoreError, ClientError) as e:
            raise ProviderError("sns", f"SMS delivery failed: {e}") from e

    async def send_otp(self, channel: str, destination: str, code: str, doctor_name: str) -> str:
        """
        Deliver a consent OTP. Returns the masked destination.

        Raises ProviderError if the message could not be handed to the provider.
        """
        minutes = settings.otp_expiry_minutes
        if channel == "sms":
            message = (
                f"Your consent verification code is {code}. "
                f"It is valid for {minutes} minutes. Do not share it."
            )
            await asyncio.to_thread(self._send_sms, destination, message)
            logger.info(f"Consent OTP sent by SMS to {mask_phone(destination)}")
            return mask_phone(destination)

        body = (
            f"Dear Dr. {doctor_name},\n\n"
            f"Your consent verification code is {code}.\n"
            f"The code is valid for {minutes} minutes.\n\n"
            "If you did not expect this message, please ignore it."
        )
        await asyncio.to_thread(
            self._send_email, destination, "Consent verification code", body
        )
        logger.info(f"Consent OTP sent by email to {mask_email(destination)}")
        return mask_email(destination)

    async def send_consent_confirmation(self, phone: Optional[str], doctor_name: str):
        """Confirmation SMS once consent is verified. Skipped when SMS is off."""
        if not phone or not settings.sms_enabled:
            logger.debug("Consent confirmation SMS skipped")
            return
        await asyncio.to_thread(
            self._send_sms,
            phone,
            f"Dear Dr. {doctor_name}, thank you. Your consent has been recorded.",
        )

    async def send_whatsapp_template(
        self, template_id: str, destination: str, params: list[str]
    ) -> dict:
        """Send a Gupshup WhatsApp template message."""
        digits = destination.lstrip("+")
        if not digits.startswith("91"):
            digits = f"91{digits}"
        payload = {
            "channel": "whatsapp",
            "source": settings.gupshup_source,
            "src.name": settings.gupshup_src_name,
            "destination": digits,
            "template": json.dumps({"id": template_id, "params": params}),
        }
        async with httpx.AsyncClient(timeout=30) as client:
            response = await client.post(
                GUPSHUP_TEMPLATE_URL,
                data=payload,
                headers={"apikey": settings.gupshup_api_key or ""},
            )
            response.raise_for_status()
            return response.json()

    async def notify_mr_submission_created(
        self,
        mr_phone: Optional[str],
        mr_name: Optional[str],
        doctor_name: str,
        submission_id: int,
    ):
        """Tell the medical representative their submission was received."""
        if not (settings.gupshup_api_key and settings.gupshup_mr_template_id and mr_phone):
            logger.debug(f"WhatsApp notification skipped for submission {submission_id}")
            return
        result = await self.send_whatsapp_template(
            settings.gupshup_mr_template_id,
            mr_phone,
            [mr_name or "", doctor_name, str(submission_id)],
        )
        logger.info(f"WhatsApp notification sent for submission {submission_id}: {result}")


messaging_service = MessagingService()
