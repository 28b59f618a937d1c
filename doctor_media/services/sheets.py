"""Reporting projection: one spreadsheet row per (submission, language)."""

import asyncio
import logging
from datetime import datetime
from typing import Optional

from fastapi import BackgroundTasks
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from doctor_media.config import get_settings
from doctor_media.db.models import GeneratedAudio, GeneratedVideo, Submission, SubmissionStatus
from doctor_media.services.side_effects import run_side_effect

settings = get_settings()
logger = logging.getLogger(__name__)

SHEETS_SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]

HEADERS = [
    "Entry ID",
    "Submission ID",
    "Language",
    "Language Code",
    "Created At",
    "Doctor Name",
    "Doctor Email",
    "Doctor Phone",
    "Specialty",
    "Clinic Name",
    "City",
    "State",
    "MR Name",
    "MR Code",
    "Consent Status",
    "Consent Verified At",
    "QC Status",
    "QC Notes",
    "QC Reviewed By",
    "QC Reviewed At",
    "Voice Clone Status",
    "Processing Status",
    "Image Path",
    "Audio Path",
    "Generated Video Path",
    "Updated At",
]


def entry_id(submission_id: int, language_code: str) -> str:
    return f"{submission_id}-{language_code}"


def _cell(value) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.isoformat()
    if hasattr(value, "value"):
        return str(value.value)
    return str(value)


def build_language_rows(
    submission: Submission,
    audio_by_language: dict[str, GeneratedAudio],
    video_by_language: dict[str, GeneratedVideo],
) -> list[list[str]]:
    """Project a submission into one row per selected language."""
    rows = []
    for code in submission.selected_languages:
        audio = audio_by_language.get(code)
        video = video_by_language.get(code)
        values = [
            entry_id(submission.id, code),
            submission.id,
            settings.language_names.get(code, code),
            code,
            submission.created_at,
            submission.doctor_name,
            submission.doctor_email,
            submission.doctor_phone,
            submission.doctor_specialization,
            submission.doctor_clinic_name,
            submission.doctor_city,
            submission.doctor_state,
            submission.mr_name,
            submission.mr_code,
            submission.consent_status,
            submission.consent_verified_at,
            submission.qc_status,
            submission.qc_notes,
            submission.qc_reviewed_by,
            submission.qc_reviewed_at,
            submission.voice_clone_status,
            submission.status,
            submission.image_path,
            audio.storage_path if audio else None,
            video.storage_path if video else None,
            submission.updated_at,
        ]
        rows.append([_cell(v) for v in values])
    return rows


async def load_language_rows(db: AsyncSession, submission: Submission) -> list[list[str]]:
    """Query the per-language rows and build the projection."""
    audio = await db.execute(
        select(GeneratedAudio).where(GeneratedAudio.submission_id == submission.id)
    )
    videos = await db.execute(
        select(GeneratedVideo).where(GeneratedVideo.submission_id == submission.id)
    )
    return build_language_rows(
        submission,
        {row.language_code: row for row in audio.scalars().all()},
        {row.language_code: row for row in videos.scalars().all()},
    )


class SheetsSyncService:
    """Upserts projection rows into a Google Sheet, keyed by entry id."""

    def __init__(self):
        self._service = None

    @property
    def enabled(self) -> bool:
        return bool(settings.sheets_spreadsheet_id and settings.sheets_credentials_file)

    @property
    def service(self):
        """Lazy initialization of the Sheets API client."""
        if self._service is None:
            from google.oauth2.service_account import Credentials
            from googleapiclient.discovery import build

            credentials = Credentials.from_service_account_file(
                settings.sheets_credentials_file, scopes=SHEETS_SCOPES
            )
            self._service = build(
                "sheets", "v4", credentials=credentials, cache_discovery=False
            )
            logger.info("Google Sheets client initialized")
        return self._service

    def _values(self):
        return self.service.spreadsheets().values()

    def _ensure_headers(self):
        sheet = settings.sheets_worksheet
        response = self._values().get(
            spreadsheetId=settings.sheets_spreadsheet_id, range=f"{sheet}!A1:Z1"
        ).execute()
        existing = response.get("values", [[]])
        if not existing or not existing[0] or existing[0][0] != HEADERS[0]:
            self._values().update(
                spreadsheetId=settings.sheets_spreadsheet_id,
                range=f"{sheet}!A1",
                valueInputOption="RAW",
                body={"values": [HEADERS]},
            ).execute()
            logger.info("Sheet headers written")

    def _entry_rows(self) -> dict[str, int]:
        """Map entry id to its 1-based sheet row."""
        response = self._values().get(
            spreadsheetId=settings.sheets_spreadsheet_id,
            range=f"{settings.sheets_worksheet}!A:A",
        ).execute()
        index = {}
        for number, row in enumerate(response.get("values", []), start=1):
            if number > 1 and row:
                index[row[0]] = number
        return index

    def upsert_rows(self, rows: list[list[str]]) -> tuple[int, int]:
        """
        Update rows whose entry id already exists and append the rest.

        Returns:
            (updated, appended)
        """
        if not rows:
            return 0, 0
        sheet = settings.sheets_worksheet
        self._ensure_headers()
        existing = self._entry_rows()

        updates = []
        appends = []
        for row in rows:
            number: Optional[int] = existing.get(row[0])
            if number:
                updates.append({"range": f"{sheet}!A{number}", "values": [row]})
            else:
                appends.append(row)

        if updates:
            self._values().batchUpdate(
                spreadsheetId=settings.sheets_spreadsheet_id,
                body={"valueInputOption": "RAW", "data": updates},
            ).execute()
        if appends:
            self._values().append(
                spreadsheetId=settings.sheets_spreadsheet_id,
                range=f"{sheet}!A1",
                valueInputOption="RAW",
                insertDataOption="INSERT_ROWS",
                body={"values": appends},
            ).execute()
        return len(updates), len(appends)

    async def sync_rows(self, rows: list[list[str]]):
        if not self.enabled:
            logger.debug("Sheets sync skipped: not configured")
            return
        updated, appended = await asyncio.to_thread(self.upsert_rows, rows)
        logger.info(f"Sheets sync: {updated} rows updated, {appended} appended")


sheets_service = SheetsSyncService()


async def queue_sheet_sync(
    background_tasks: BackgroundTasks, db: AsyncSession, submission: Submission
):
    """Snapshot the submission's rows now and sync them after the response."""
    rows = await load_language_rows(db, submission)
    background_tasks.add_task(run_side_effect, "sheets sync", sheets_service.sync_rows, rows)


async def resync_all(db: AsyncSession) -> int:
    """Rebuild and upsert the rows of every non-deleted submission.

    Returns the number of rows sent.
    """
    result = await db.execute(
        select(Submission)
        .where(Submission.status != SubmissionStatus.DELETED)
        .order_by(Submission.id.asc())
    )
    rows: list[list[str]] = []
    for submission in result.scalars().all():
        rows.extend(await load_language_rows(db, submission))
    await sheets_service.sync_rows(rows)
    return len(rows)
