"""Audio master management routes."""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from doctor_media.auth.security import actor_name, require_admin
from doctor_media.db.models import ApiKey, AudioMaster
from doctor_media.db.session import get_db
from doctor_media.errors import NotFoundError
from doctor_media.schemas.schemas import AudioMasterCreate, AudioMasterInfo
from doctor_media.services import audit

router = APIRouter(prefix="/v1/audio-masters", tags=["Audio Masters"])


async def _deactivate_others(db: AsyncSession, language_code: str, keep_id: int):
    await db.execute(
        update(AudioMaster)
        .where(AudioMaster.language_code == language_code, AudioMaster.id != keep_id)
        .values(is_active=False)
    )


@router.get(
    "",
    response_model=list[AudioMasterInfo],
    summary="List audio masters",
)
async def list_audio_masters(
    language_code: Optional[str] = Query(None),
    active_only: bool = Query(False),
    db: AsyncSession = Depends(get_db),
    api_key: ApiKey = Depends(require_admin),
):
    query = select(AudioMaster)
    if language_code:
        query = query.where(AudioMaster.language_code == language_code.lower())
    if active_only:
        query = query.where(AudioMaster.is_active == True)  # noqa: E712
    query = query.order_by(AudioMaster.language_code, AudioMaster.created_at.desc())
    result = await db.execute(query)
    return [AudioMasterInfo.model_validate(m) for m in result.scalars().all()]


@router.post(
    "",
    response_model=AudioMasterInfo,
    status_code=status.HTTP_201_CREATED,
    summary="Register an audio master",
    description="An active master replaces the previous active master of the same language.",
)
async def create_audio_master(
    request: AudioMasterCreate,
    db: AsyncSession = Depends(get_db),
    api_key: ApiKey = Depends(require_admin),
):
    master = AudioMaster(
        language_code=request.language_code,
        name=request.name,
        description=request.description,
        storage_path=request.storage_path,
        duration_seconds=request.duration_seconds,
        is_active=request.is_active,
        created_by=actor_name(api_key),
    )
    db.add(master)
    await db.flush()
    if master.is_active:
        await _deactivate_others(db, master.language_code, master.id)

    audit.record(
        db, "audio_master.created", master.id, resource_type="audio_master", api_key=api_key,
        details={"language_code": master.language_code},
    )
    await db.commit()
    return AudioMasterInfo.model_validate(master)


@router.post(
    "/{master_id}/set-active",
    response_model=AudioMasterInfo,
    summary="Make an audio master the active one for its language",
)
async def set_active(
    master_id: int,
    db: AsyncSession = Depends(get_db),
    api_key: ApiKey = Depends(require_admin),
):
    master = await db.get(AudioMaster, master_id)
    if master is None:
        raise NotFoundError(f"Audio master {master_id} not found")

    await _deactivate_others(db, master.language_code, master.id)
    master.is_active = True
    audit.record(
        db, "audio_master.activated", master.id, resource_type="audio_master", api_key=api_key,
        details={"language_code": master.language_code},
    )
    await db.commit()
    return AudioMasterInfo.model_validate(master)
