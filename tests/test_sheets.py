"""Tests for the reporting sheet projection and upsert."""

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from httpx import AsyncClient

from doctor_media.db.models import (
    ConsentStatus,
    QCStatus,
    Submission,
    SubmissionLanguage,
    SubmissionStatus,
    VoiceCloneStatus,
    utcnow,
)
from doctor_media.services.sheets import HEADERS, build_language_rows, sheets_service


def make_submission() -> Submission:
    now = utcnow()
    return Submission(
        id=12,
        doctor_name="Dr. Asha Rao",
        doctor_email="asha.rao@example.com",
        mr_code="MR-042",
        status=SubmissionStatus.PENDING_QC,
        consent_status=ConsentStatus.VERIFIED,
        qc_status=QCStatus.PENDING,
        voice_clone_status=VoiceCloneStatus.COMPLETED,
        created_at=now,
        updated_at=now,
        languages=[
            SubmissionLanguage(position=0, language_code="en"),
            SubmissionLanguage(position=1, language_code="hi"),
        ],
    )


def test_one_row_per_selected_language():
    video = SimpleNamespace(storage_path="generated/12/video/hi.mp4")
    rows = build_language_rows(make_submission(), {}, {"hi": video})

    assert [row[0] for row in rows] == ["12-en", "12-hi"]
    assert all(len(row) == len(HEADERS) for row in rows)

    by_header = dict(zip(HEADERS, rows[1]))
    assert by_header["Language"] == "Hindi"
    assert by_header["Consent Status"] == "verified"
    assert by_header["Processing Status"] == "pending_qc"
    assert by_header["Generated Video Path"] == "generated/12/video/hi.mp4"
    assert by_header["Doctor Phone"] == ""
    assert dict(zip(HEADERS, rows[0]))["Generated Video Path"] == ""


def test_upsert_updates_known_entries_and_appends_new(monkeypatch):
    values = MagicMock()
    values.get.return_value.execute.side_effect = [
        {"values": [HEADERS]},
        {"values": [["Entry ID"], ["12-en"]]},
    ]
    service = MagicMock()
    service.spreadsheets.return_value.values.return_value = values
    monkeypatch.setattr(sheets_service, "_service", service)

    rows = build_language_rows(make_submission(), {}, {})
    assert sheets_service.upsert_rows(rows) == (1, 1)

    update_body = values.batchUpdate.call_args.kwargs["body"]
    assert update_body["data"][0]["range"].endswith("!A2")
    appended = values.append.call_args.kwargs["body"]["values"]
    assert [row[0] for row in appended] == ["12-hi"]
    values.update.assert_not_called()


def test_upsert_nothing_is_a_no_op(monkeypatch):
    service = MagicMock()
    monkeypatch.setattr(sheets_service, "_service", service)
    assert sheets_service.upsert_rows([]) == (0, 0)
    service.spreadsheets.assert_not_called()


@pytest.mark.asyncio
async def test_resync_skips_deleted_submissions(
    client: AsyncClient, auth_headers: dict, create_submission, monkeypatch
):
    synced = []

    async def fake_sync_rows(rows):
        synced.extend(rows)

    monkeypatch.setattr(sheets_service, "sync_rows", fake_sync_rows)
    kept = await create_submission()
    deleted = await create_submission(selected_languages=["ta"])
    await client.delete(f"/v1/submissions/{deleted}", headers=auth_headers)
    synced.clear()

    response = await client.post("/v1/admin/sync-sheets", headers=auth_headers)
    assert response.status_code == 200
    assert response.json() == {"rows": 2}
    assert [row[0] for row in synced] == [f"{kept}-en", f"{kept}-hi"]
