"""Tests for submission intake and per-language tracking."""

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select

from doctor_media.db.models import AudioValidation, Base, GeneratedVideo, ImageValidation
from doctor_media.services.storage import storage_service


async def register_audio(client, headers, submission_id, code):
    response = await client.post(
        f"/v1/submissions/{submission_id}/audio/{code}",
        headers=headers,
        json={"status": "completed", "gcsPath": f"generated/{submission_id}/audio/{code}.mp3"},
    )
    assert response.status_code == 200, response.text
    return response.json()


async def register_video(client, headers, submission_id, code, path=None):
    response = await client.post(
        f"/v1/submissions/{submission_id}/video/{code}",
        headers=headers,
        json={
            "gcsPath": path or f"generated/{submission_id}/video/{code}.mp4",
            "publicUrl": f"https://cdn.example.com/{submission_id}/{code}.mp4",
        },
    )
    return response


@pytest.mark.asyncio
async def test_create_submission_from_storage(
    client: AsyncClient, auth_headers: dict, submission_payload: dict
):
    response = await client.post(
        "/v1/submissions/from-storage", headers=auth_headers, json=submission_payload
    )
    assert response.status_code == 201
    data = response.json()
    assert data["status"] == "pending_consent"
    assert data["consent_status"] == "pending"
    assert data["selected_languages"] == ["en", "hi"]
    assert data["audio_files_count"] == 1

    response = await client.get(f"/v1/submissions/{data['submission_id']}", headers=auth_headers)
    assert response.status_code == 200
    submission = response.json()
    assert submission["doctor_phone"] == "+919876543210"
    assert submission["upload_source"] == "storage"
    assert submission["audio_samples"][0]["storage_path"].endswith("sample_1.mp3")


@pytest.mark.asyncio
async def test_short_audio_is_a_warning(
    client: AsyncClient, auth_headers: dict, submission_payload: dict, db_session
):
    payload = {
        **submission_payload,
        "audio_samples": [{"storage_path": "submissions/x/audio/sample_1.wav", "duration_seconds": 20}],
    }
    response = await client.post("/v1/submissions/from-storage", headers=auth_headers, json=payload)
    assert response.status_code == 201
    warnings = response.json()["validation_warnings"]
    assert any("recommended" in w for w in warnings)

    for model in (ImageValidation, AudioValidation):
        count = await db_session.scalar(select(func.count()).select_from(model))
        assert count == 1


def test_validation_and_audit_tables():
    tables = set(Base.metadata.tables)
    assert {"image_validations", "audio_validations", "audit_log"} <= tables
    assert ImageValidation.media_type == "image"
    assert AudioValidation.media_type == "audio"


@pytest.mark.asyncio
async def test_bad_audio_format_is_rejected(
    client: AsyncClient, auth_headers: dict, submission_payload: dict
):
    payload = {**submission_payload, "audio_samples": [{"storage_path": "submissions/x/notes.txt"}]}
    response = await client.post("/v1/submissions/from-storage", headers=auth_headers, json=payload)
    assert response.status_code == 400
    assert response.json()["errors"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "languages",
    [[], ["xx"], ["en", "hi", "ta", "te"]],
)
async def test_invalid_language_selection(
    client: AsyncClient, auth_headers: dict, submission_payload: dict, languages
):
    payload = {**submission_payload, "selected_languages": languages}
    response = await client.post("/v1/submissions/from-storage", headers=auth_headers, json=payload)
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_create_submission_multipart(client: AsyncClient, auth_headers: dict, monkeypatch):
    uploaded = []
    monkeypatch.setattr(
        storage_service,
        "upload_bytes",
        lambda content, path, content_type: uploaded.append(path) or path,
    )

    response = await client.post(
        "/v1/submissions",
        headers=auth_headers,
        data={"doctor_name": "Dr. Meera Iyer", "selected_languages": "ta,en"},
        files=[
            ("image", ("photo.png", b"\x89PNG fake", "image/png")),
            ("audio_files", ("one.mp3", b"ID3 fake", "audio/mpeg")),
            ("audio_files", ("two.wav", b"RIFF fake", "audio/wav")),
        ],
    )
    assert response.status_code == 201, response.text
    data = response.json()
    assert data["selected_languages"] == ["ta", "en"]
    assert data["audio_files_count"] == 2
    assert len(uploaded) == 3
    assert uploaded[0].endswith("image.png")


@pytest.mark.asyncio
async def test_multipart_rejects_bad_image_before_upload(
    client: AsyncClient, auth_headers: dict, monkeypatch
):
    uploaded = []
    monkeypatch.setattr(
        storage_service, "upload_bytes", lambda *args: uploaded.append(args)
    )

    response = await client.post(
        "/v1/submissions",
        headers=auth_headers,
        data={"doctor_name": "Dr. Meera Iyer", "selected_languages": '["en"]'},
        files=[
            ("image", ("photo.gif", b"GIF89a", "image/gif")),
            ("audio_files", ("one.mp3", b"ID3 fake", "audio/mpeg")),
        ],
    )
    assert response.status_code == 400
    assert uploaded == []


@pytest.mark.asyncio
async def test_two_language_scenario(
    client: AsyncClient, auth_headers: dict, create_submission, verify_consent
):
    submission_id = await create_submission()
    await verify_consent(submission_id)
    await register_audio(client, auth_headers, submission_id, "en")
    await register_audio(client, auth_headers, submission_id, "hi")

    response = await register_video(client, auth_headers, submission_id, "en")
    assert response.status_code == 200
    data = response.json()
    assert data["all_videos_complete"] is False
    assert data["videos_completed"] == 1
    assert data["total_languages"] == 2
    assert data["status"] != "pending_qc"

    response = await client.get(f"/v1/submissions/{submission_id}/languages", headers=auth_headers)
    summary = response.json()["summary"]
    assert summary["ready_for_qc"] == 1
    assert summary["all_complete"] is False

    response = await register_video(client, auth_headers, submission_id, "hi")
    data = response.json()
    assert data["all_videos_complete"] is True
    assert data["status"] == "pending_qc"
    assert data["qc_status"] == "pending"

    response = await client.get(f"/v1/submissions/{submission_id}/languages", headers=auth_headers)
    summary = response.json()["summary"]
    assert summary["ready_for_qc"] == 2
    assert summary["all_complete"] is True


@pytest.mark.asyncio
async def test_video_registration_is_idempotent(
    client: AsyncClient, auth_headers: dict, create_submission, db_session
):
    submission_id = await create_submission(selected_languages=["en"])

    first = (await register_video(client, auth_headers, submission_id, "en")).json()
    second = (await register_video(client, auth_headers, submission_id, "EN")).json()

    assert first["video_id"] == second["video_id"]
    assert first["status"] == second["status"] == "pending_qc"
    assert second["videos_completed"] == 1

    count = await db_session.scalar(
        select(func.count()).select_from(GeneratedVideo).where(
            GeneratedVideo.submission_id == submission_id
        )
    )
    assert count == 1


@pytest.mark.asyncio
async def test_video_for_unselected_language_is_rejected(
    client: AsyncClient, auth_headers: dict, create_submission
):
    submission_id = await create_submission()
    response = await register_video(client, auth_headers, submission_id, "ta")
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_approved_submission_does_not_regress(
    client: AsyncClient, auth_headers: dict, create_submission
):
    submission_id = await create_submission(selected_languages=["en"])
    await register_video(client, auth_headers, submission_id, "en")

    response = await client.post(
        f"/v1/qc/approve/{submission_id}", headers=auth_headers, json={"reviewer_name": "Nisha"}
    )
    assert response.json()["status"] == "qc_approved"

    response = await register_video(
        client, auth_headers, submission_id, "en", path=f"generated/{submission_id}/video/en_v2.mp4"
    )
    data = response.json()
    assert data["status"] == "qc_approved"
    assert data["qc_status"] == "approved"

    response = await client.post(f"/v1/submissions/{submission_id}/complete", headers=auth_headers)
    assert response.json()["status"] == "completed"

    response = await register_video(client, auth_headers, submission_id, "en")
    assert response.json()["status"] == "completed"


@pytest.mark.asyncio
async def test_complete_requires_approval(
    client: AsyncClient, auth_headers: dict, create_submission
):
    submission_id = await create_submission()
    response = await client.post(f"/v1/submissions/{submission_id}/complete", headers=auth_headers)
    assert response.status_code == 409
    assert response.json()["current_status"] == "pending_consent"


@pytest.mark.asyncio
async def test_delete_video_keeps_status(
    client: AsyncClient, auth_headers: dict, create_submission, monkeypatch
):
    monkeypatch.setattr(storage_service, "delete", lambda path: None)
    submission_id = await create_submission(selected_languages=["en"])
    await register_video(client, auth_headers, submission_id, "en")

    response = await client.delete(f"/v1/submissions/{submission_id}/video/en", headers=auth_headers)
    assert response.status_code == 200
    assert response.json()["status"] == "pending_qc"

    response = await client.get(f"/v1/submissions/{submission_id}/languages", headers=auth_headers)
    assert response.json()["summary"]["videos_completed"] == 0


@pytest.mark.asyncio
async def test_soft_delete_and_listing(
    client: AsyncClient, auth_headers: dict, create_submission
):
    kept = await create_submission()
    deleted = await create_submission(mr_code="MR-007")

    response = await client.delete(f"/v1/submissions/{deleted}", headers=auth_headers)
    assert response.status_code == 200
    assert response.json()["status"] == "deleted"

    response = await client.get("/v1/submissions", headers=auth_headers)
    assert [s["id"] for s in response.json()["submissions"]] == [kept]

    response = await client.get(
        "/v1/submissions", headers=auth_headers, params={"status": "deleted"}
    )
    assert [s["id"] for s in response.json()["submissions"]] == [deleted]

    response = await client.get(
        "/v1/submissions", headers=auth_headers, params={"mr_code": "MR-042"}
    )
    assert response.json()["total"] == 1


@pytest.mark.asyncio
async def test_get_missing_submission(client: AsyncClient, auth_headers: dict):
    response = await client.get("/v1/submissions/999", headers=auth_headers)
    assert response.status_code == 404
    assert response.json()["error"] == "Submission 999 not found"
