"""Tests for admin routes and audio masters."""

import pytest
from botocore.exceptions import ClientError
from httpx import AsyncClient

from doctor_media.services.elevenlabs import elevenlabs_client
from doctor_media.services.storage import storage_service


@pytest.mark.asyncio
async def test_admin_routes_require_admin_scope(client: AsyncClient, make_headers):
    headers = await make_headers("intake", "review")
    response = await client.get("/v1/admin/audit-log", headers=headers)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_bulk_action_reports_each_submission(
    client: AsyncClient, auth_headers: dict, create_submission
):
    ready = await create_submission(selected_languages=["en"])
    await client.post(
        f"/v1/submissions/{ready}/video/en",
        headers=auth_headers,
        json={"storage_path": f"generated/{ready}/video/en.mp4"},
    )
    removed = await create_submission()
    await client.delete(f"/v1/submissions/{removed}", headers=auth_headers)

    response = await client.post(
        "/v1/admin/bulk-action",
        headers=auth_headers,
        json={"action": "approve", "submission_ids": [ready, removed, ready, 999]},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["succeeded"] == [ready]
    assert {f["submission_id"] for f in data["failed"]} == {removed, 999}

    response = await client.get(f"/v1/submissions/{ready}", headers=auth_headers)
    assert response.json()["status"] == "qc_approved"

    response = await client.get(
        "/v1/admin/audit-log", headers=auth_headers, params={"action": "bulk.approve"}
    )
    assert [e["resource_id"] for e in response.json()] == [str(ready)]


@pytest.mark.asyncio
async def test_bulk_delete_is_soft(client: AsyncClient, auth_headers: dict, create_submission):
    submission_id = await create_submission()

    response = await client.post(
        "/v1/admin/bulk-action",
        headers=auth_headers,
        json={"action": "delete", "submission_ids": [submission_id]},
    )
    assert response.json()["succeeded"] == [submission_id]

    response = await client.get(f"/v1/submissions/{submission_id}", headers=auth_headers)
    assert response.json()["status"] == "deleted"


@pytest.mark.asyncio
async def test_hard_delete_removes_submission_and_objects(
    client: AsyncClient, auth_headers: dict, create_submission, monkeypatch
):
    deleted_paths = []
    monkeypatch.setattr(storage_service, "delete", deleted_paths.append)
    submission_id = await create_submission()

    response = await client.delete(f"/v1/admin/submissions/{submission_id}", headers=auth_headers)
    assert response.status_code == 204

    response = await client.get(f"/v1/submissions/{submission_id}", headers=auth_headers)
    assert response.status_code == 404
    assert "submissions/20261019-abcd1234/image.jpg" in deleted_paths
    assert len(deleted_paths) == 2

    response = await client.get(
        "/v1/admin/audit-log", headers=auth_headers, params={"resource_id": str(submission_id)}
    )
    assert response.json()[0]["action"] == "submission.hard_deleted"


@pytest.mark.asyncio
async def test_hard_delete_keeps_deleting_after_a_storage_error(
    client: AsyncClient, auth_headers: dict, create_submission, monkeypatch
):
    attempted = []

    def flaky_delete(path):
        attempted.append(path)
        if len(attempted) == 1:
            raise ClientError({"Error": {"Code": "AccessDenied", "Message": "denied"}}, "DeleteObject")

    monkeypatch.setattr(storage_service, "delete", flaky_delete)
    submission_id = await create_submission()

    response = await client.delete(f"/v1/admin/submissions/{submission_id}", headers=auth_headers)
    assert response.status_code == 204
    assert attempted == [
        "submissions/20261019-abcd1234/image.jpg",
        "submissions/20261019-abcd1234/audio/sample_1.mp3",
    ]


@pytest.mark.asyncio
async def test_elevenlabs_status(client: AsyncClient, auth_headers: dict, monkeypatch):
    async def get_subscription():
        return {"tier": "creator", "character_count": 1200, "character_limit": 1000, "voice_limit": 30}

    async def list_voices():
        return [{"voice_id": "a"}, {"voice_id": "b"}]

    monkeypatch.setattr(elevenlabs_client, "get_subscription", get_subscription)
    monkeypatch.setattr(elevenlabs_client, "list_voices", list_voices)

    response = await client.get("/v1/admin/elevenlabs-status", headers=auth_headers)
    assert response.status_code == 200
    data = response.json()
    assert data["characters_remaining"] == 0
    assert data["voice_count"] == 2
    assert data["voice_limit"] == 30


@pytest.mark.asyncio
async def test_one_active_audio_master_per_language(client: AsyncClient, auth_headers: dict):
    async def create(name):
        response = await client.post(
            "/v1/audio-masters",
            headers=auth_headers,
            json={"language_code": "HI", "name": name, "storage_path": f"masters/{name}.mp3"},
        )
        assert response.status_code == 201
        return response.json()

    first = await create("v1")
    second = await create("v2")
    assert first["language_code"] == "hi"

    response = await client.get(
        "/v1/audio-masters", headers=auth_headers, params={"active_only": True}
    )
    assert [m["id"] for m in response.json()] == [second["id"]]

    response = await client.post(f"/v1/audio-masters/{first['id']}/set-active", headers=auth_headers)
    assert response.json()["is_active"] is True

    response = await client.get(
        "/v1/audio-masters", headers=auth_headers, params={"active_only": True}
    )
    assert [m["id"] for m in response.json()] == [first["id"]]

    response = await client.post("/v1/audio-masters/999/set-active", headers=auth_headers)
    assert response.status_code == 404
