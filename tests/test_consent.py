"""Tests for the consent OTP flow."""

from datetime import timedelta

import pytest
from httpx import AsyncClient

from doctor_media.db.models import Submission, utcnow
from doctor_media.errors import ProviderError
from doctor_media.services.messaging import messaging_service


def wrong(code: str) -> str:
    return f"{(int(code) + 1) % 10 ** len(code):0{len(code)}d}"


@pytest.mark.asyncio
async def test_send_and_verify_otp(
    client: AsyncClient, auth_headers: dict, create_submission, sent_codes: list
):
    submission_id = await create_submission()

    response = await client.post(
        f"/v1/consent/{submission_id}/send-otp", headers=auth_headers, json={"channel": "email"}
    )
    assert response.status_code == 200
    data = response.json()
    assert data["consent_status"] == "pending"
    assert data["status"] == "pending_consent"
    assert sent_codes[0]["destination"] == "asha.rao@example.com"
    assert len(sent_codes[0]["code"]) == 6

    response = await client.post(
        f"/v1/consent/{submission_id}/verify",
        headers=auth_headers,
        json={"code": sent_codes[0]["code"]},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["verified"] is True
    assert data["consent_status"] == "verified"
    assert data["status"] == "consent_verified"

    response = await client.get(f"/v1/consent/{submission_id}/status", headers=auth_headers)
    assert response.json()["consent_verified_at"] is not None


@pytest.mark.asyncio
async def test_sms_channel_uses_normalized_phone(
    client: AsyncClient, auth_headers: dict, create_submission, sent_codes: list
):
    submission_id = await create_submission()
    response = await client.post(
        f"/v1/consent/{submission_id}/send-otp", headers=auth_headers, json={"channel": "sms"}
    )
    assert response.status_code == 200
    assert sent_codes[0]["destination"] == "+919876543210"


@pytest.mark.asyncio
async def test_wrong_code_reports_remaining_attempts(
    client: AsyncClient, auth_headers: dict, create_submission, sent_codes: list
):
    submission_id = await create_submission()
    await client.post(f"/v1/consent/{submission_id}/send-otp", headers=auth_headers, json={})

    response = await client.post(
        f"/v1/consent/{submission_id}/verify",
        headers=auth_headers,
        json={"code": wrong(sent_codes[0]["code"])},
    )
    assert response.status_code == 400
    data = response.json()
    assert data["verified"] is False
    assert data["remaining_attempts"] == 2
    assert data["consent_status"] == "pending"


@pytest.mark.asyncio
async def test_correct_code_fails_after_three_wrong_attempts(
    client: AsyncClient, auth_headers: dict, create_submission, sent_codes: list
):
    submission_id = await create_submission()
    await client.post(f"/v1/consent/{submission_id}/send-otp", headers=auth_headers, json={})
    code = sent_codes[0]["code"]

    for _ in range(3):
        response = await client.post(
            f"/v1/consent/{submission_id}/verify", headers=auth_headers, json={"code": wrong(code)}
        )
        assert response.status_code == 400

    response = await client.post(
        f"/v1/consent/{submission_id}/verify", headers=auth_headers, json={"code": code}
    )
    assert response.status_code == 400
    data = response.json()
    assert data["verified"] is False
    assert data["status"] == "pending_consent"


@pytest.mark.asyncio
async def test_expired_code_is_rejected(
    client: AsyncClient, auth_headers: dict, create_submission, sent_codes: list, db_session
):
    submission_id = await create_submission()
    await client.post(f"/v1/consent/{submission_id}/send-otp", headers=auth_headers, json={})

    submission = await db_session.get(Submission, submission_id)
    submission.consent_otp_expires_at = utcnow() - timedelta(minutes=1)
    await db_session.commit()

    response = await client.post(
        f"/v1/consent/{submission_id}/verify",
        headers=auth_headers,
        json={"code": sent_codes[0]["code"]},
    )
    assert response.status_code == 400
    assert "expired" in response.json()["error"]


@pytest.mark.asyncio
async def test_resend_replaces_previous_code(
    client: AsyncClient, auth_headers: dict, create_submission, sent_codes: list
):
    submission_id = await create_submission()
    await client.post(f"/v1/consent/{submission_id}/send-otp", headers=auth_headers, json={})
    await client.post(f"/v1/consent/{submission_id}/send-otp", headers=auth_headers, json={})
    first, second = sent_codes[0]["code"], sent_codes[1]["code"]

    if first != second:
        response = await client.post(
            f"/v1/consent/{submission_id}/verify", headers=auth_headers, json={"code": first}
        )
        assert response.status_code == 400

    response = await client.post(
        f"/v1/consent/{submission_id}/verify", headers=auth_headers, json={"code": second}
    )
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_send_otp_after_verification_conflicts(
    client: AsyncClient, auth_headers: dict, create_submission, verify_consent
):
    submission_id = await create_submission()
    await verify_consent(submission_id)

    response = await client.post(
        f"/v1/consent/{submission_id}/send-otp", headers=auth_headers, json={}
    )
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_delivery_failure_keeps_no_code(
    client: AsyncClient, auth_headers: dict, create_submission, monkeypatch
):
    async def failing_send(channel, destination, code, doctor_name):
        raise ProviderError("ses", "Email delivery failed")

    monkeypatch.setattr(messaging_service, "send_otp", failing_send)
    submission_id = await create_submission()

    response = await client.post(
        f"/v1/consent/{submission_id}/send-otp", headers=auth_headers, json={}
    )
    assert response.status_code == 502
    assert response.json()["provider"] == "ses"

    response = await client.get(f"/v1/consent/{submission_id}/status", headers=auth_headers)
    assert response.json()["otp_sent_at"] is None
