"""Tests for voice cloning, generation and release."""

from datetime import timedelta

import pytest
from httpx import AsyncClient

from doctor_media.db.models import Submission, SubmissionStatus, VoiceCloneStatus, utcnow
from doctor_media.errors import ProviderError
from doctor_media.services.elevenlabs import elevenlabs_client
from doctor_media.services.storage import storage_service
from doctor_media.services.voice_service import is_cleanup_eligible


@pytest.fixture
def fake_provider(monkeypatch):
    """Stand-in voice provider and storage recording what was called."""
    calls = {"cloned": [], "generated": [], "deleted": [], "uploaded": []}

    async def clone_voice(name, samples, description=None, labels=None):
        calls["cloned"].append(name)
        return "voice-123"

    async def speech_to_speech(voice_id, audio, filename, model_id, voice_settings):
        calls["generated"].append((voice_id, filename, model_id))
        return b"mp3-bytes", "req-1"

    async def delete_voice(voice_id):
        calls["deleted"].append(voice_id)
        return True

    monkeypatch.setattr(elevenlabs_client, "clone_voice", clone_voice)
    monkeypatch.setattr(elevenlabs_client, "speech_to_speech", speech_to_speech)
    monkeypatch.setattr(elevenlabs_client, "delete_voice", delete_voice)
    monkeypatch.setattr(storage_service, "download", lambda path: b"sample-bytes")
    monkeypatch.setattr(
        storage_service,
        "upload_bytes",
        lambda content, path, content_type: calls["uploaded"].append(path) or path,
    )
    return calls


@pytest.mark.asyncio
async def test_clone_requires_consent(
    client: AsyncClient, auth_headers: dict, create_submission, fake_provider
):
    submission_id = await create_submission()

    response = await client.post(f"/v1/voice/clone/{submission_id}", headers=auth_headers)
    assert response.status_code == 409
    assert response.json()["consent_status"] == "pending"

    response = await client.post(f"/v1/voice/process/{submission_id}", headers=auth_headers)
    assert response.status_code == 409
    assert fake_provider["cloned"] == []


@pytest.mark.asyncio
async def test_clone_voice(
    client: AsyncClient, auth_headers: dict, create_submission, verify_consent, fake_provider
):
    submission_id = await create_submission()
    await verify_consent(submission_id)

    response = await client.post(f"/v1/voice/clone/{submission_id}", headers=auth_headers)
    assert response.status_code == 200
    data = response.json()
    assert data["voice_id"] == "voice-123"
    assert data["voice_clone_status"] == "completed"
    assert data["status"] == "consent_verified"

    response = await client.post(f"/v1/voice/clone/{submission_id}", headers=auth_headers)
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_clone_failure_is_recorded(
    client: AsyncClient, auth_headers: dict, create_submission, verify_consent, monkeypatch
):
    async def failing_clone(name, samples, description=None, labels=None):
        raise ProviderError("elevenlabs", "ElevenLabs returned 401: quota exceeded", provider_status=401)

    monkeypatch.setattr(elevenlabs_client, "clone_voice", failing_clone)
    monkeypatch.setattr(storage_service, "download", lambda path: b"sample-bytes")
    submission_id = await create_submission()
    await verify_consent(submission_id)

    response = await client.post(f"/v1/voice/clone/{submission_id}", headers=auth_headers)
    assert response.status_code == 502
    assert response.json()["provider"] == "elevenlabs"

    response = await client.get(f"/v1/submissions/{submission_id}", headers=auth_headers)
    data = response.json()
    assert data["voice_clone_status"] == "failed"
    assert "quota exceeded" in data["voice_clone_error"]
    assert data["status"] == "consent_verified"


@pytest.mark.asyncio
async def test_process_generates_each_language(
    client: AsyncClient, auth_headers: dict, create_submission, verify_consent, fake_provider
):
    response = await client.post(
        "/v1/audio-masters",
        headers=auth_headers,
        json={"language_code": "en", "name": "English script", "storage_path": "masters/en.mp3"},
    )
    assert response.status_code == 201

    submission_id = await create_submission()
    await verify_consent(submission_id)

    response = await client.post(f"/v1/voice/process/{submission_id}", headers=auth_headers)
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "processing"
    assert data["voice_id"] == "voice-123"
    results = {r["language_code"]: r for r in data["results"]}
    assert results["en"]["status"] == "completed"
    assert results["hi"]["status"] == "failed"
    assert "No active audio master" in results["hi"]["error"]
    assert fake_provider["generated"] == [("voice-123", "en.mp3", "eleven_multilingual_sts_v2")]
    assert fake_provider["uploaded"] == [f"generated/{submission_id}/audio/en.mp3"]

    response = await client.get(f"/v1/submissions/{submission_id}/languages", headers=auth_headers)
    summary = response.json()["summary"]
    assert summary["audio_completed"] == 1


@pytest.mark.asyncio
async def test_process_fails_when_every_language_fails(
    client: AsyncClient, auth_headers: dict, create_submission, verify_consent, fake_provider
):
    submission_id = await create_submission()
    await verify_consent(submission_id)

    response = await client.post(f"/v1/voice/process/{submission_id}", headers=auth_headers)
    assert response.status_code == 200
    assert response.json()["status"] == "failed"

    response = await client.post(
        "/v1/admin/bulk-action",
        headers=auth_headers,
        json={"action": "retry", "submission_ids": [submission_id]},
    )
    assert response.json()["succeeded"] == [submission_id]

    response = await client.get(f"/v1/submissions/{submission_id}", headers=auth_headers)
    assert response.json()["status"] == "consent_verified"


def make_voice_submission(status: SubmissionStatus, idle_hours: float) -> Submission:
    return Submission(
        id=7,
        doctor_name="Dr. Test",
        status=status,
        voice_id="voice-7",
        voice_clone_status=VoiceCloneStatus.COMPLETED,
        updated_at=utcnow() - timedelta(hours=idle_hours),
    )


@pytest.mark.parametrize(
    "status,idle_hours,expected",
    [
        (SubmissionStatus.COMPLETED, 30, True),
        (SubmissionStatus.FAILED, 25, True),
        (SubmissionStatus.COMPLETED, 2, False),
        (SubmissionStatus.PENDING_QC, 100, False),
        (SubmissionStatus.QC_APPROVED, 100, False),
    ],
)
def test_cleanup_eligibility(status, idle_hours, expected):
    submission = make_voice_submission(status, idle_hours)
    assert is_cleanup_eligible(submission, utcnow()) is expected


async def _finish_with_voice(db_session, submission_id: int, idle_hours: float):
    submission = await db_session.get(Submission, submission_id)
    submission.status = SubmissionStatus.FAILED
    submission.voice_id = "voice-123"
    submission.voice_clone_status = VoiceCloneStatus.COMPLETED
    submission.updated_at = utcnow() - timedelta(hours=idle_hours)
    await db_session.commit()


@pytest.mark.asyncio
async def test_release_respects_cooldown(
    client: AsyncClient, auth_headers: dict, make_headers, create_submission, db_session, fake_provider
):
    submission_id = await create_submission()
    await _finish_with_voice(db_session, submission_id, idle_hours=1)

    response = await client.delete(f"/v1/voice/{submission_id}", headers=auth_headers)
    assert response.status_code == 409

    intake_only = await make_headers("intake")
    response = await client.delete(
        f"/v1/voice/{submission_id}", headers=intake_only, params={"force": True}
    )
    assert response.status_code == 403

    response = await client.delete(
        f"/v1/voice/{submission_id}", headers=auth_headers, params={"force": True}
    )
    assert response.status_code == 200
    assert response.json()["voice_clone_status"] == "deleted"
    assert fake_provider["deleted"] == ["voice-123"]

    response = await client.delete(
        f"/v1/voice/{submission_id}", headers=auth_headers, params={"force": True}
    )
    assert response.json()["already_released"] is True


@pytest.mark.asyncio
async def test_cleanup_releases_idle_voices(
    client: AsyncClient, auth_headers: dict, create_submission, db_session, fake_provider
):
    idle = await create_submission()
    recent = await create_submission()
    await _finish_with_voice(db_session, idle, idle_hours=48)
    await _finish_with_voice(db_session, recent, idle_hours=1)

    response = await client.get("/v1/voice/active", headers=auth_headers)
    recommended = {v["submission_id"]: v["recommended_for_cleanup"] for v in response.json()}
    assert recommended == {idle: True, recent: False}

    response = await client.post("/v1/voice/cleanup", headers=auth_headers, json={"dry_run": True})
    data = response.json()
    assert [c["submission_id"] for c in data["candidates"]] == [idle]
    assert data["released"] == []
    assert fake_provider["deleted"] == []

    response = await client.post("/v1/voice/cleanup", headers=auth_headers, json={})
    assert response.json()["released"] == [idle]
    assert fake_provider["deleted"] == ["voice-123"]

    response = await client.get("/v1/voice/active", headers=auth_headers)
    assert [v["submission_id"] for v in response.json()] == [recent]


@pytest.mark.asyncio
@pytest.mark.parametrize("with_master", [True, False])
async def test_reprocess_returns_to_qc_when_videos_exist(
    client: AsyncClient,
    auth_headers: dict,
    create_submission,
    verify_consent,
    fake_provider,
    with_master,
):
    if with_master:
        await client.post(
            "/v1/audio-masters",
            headers=auth_headers,
            json={"language_code": "en", "name": "English script", "storage_path": "masters/en.mp3"},
        )
    submission_id = await create_submission()
    await verify_consent(submission_id)
    for code in ("en", "hi"):
        response = await client.post(
            f"/v1/submissions/{submission_id}/video/{code}",
            headers=auth_headers,
            json={"storage_path": f"generated/{submission_id}/video/{code}.mp4"},
        )
    assert response.json()["status"] == "pending_qc"

    response = await client.post(
        f"/v1/qc/request-changes/{submission_id}",
        headers=auth_headers,
        json={"reviewer_name": "Nisha", "changes_requested": ["re-record intro"]},
    )
    assert response.json()["status"] == "pending_changes"

    response = await client.post(f"/v1/voice/process/{submission_id}", headers=auth_headers)
    assert response.status_code == 200
    assert response.json()["status"] == "pending_qc"

    response = await client.get(f"/v1/submissions/{submission_id}/languages", headers=auth_headers)
    data = response.json()
    assert data["summary"]["videos_completed"] == 2
    assert data["summary"]["audio_completed"] == (1 if with_master else 0)

    response = await client.get(f"/v1/submissions/{submission_id}", headers=auth_headers)
    assert response.json()["qc_status"] == "pending"
