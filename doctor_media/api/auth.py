"""API key management, guarded by the X-Admin-Key secret rather than an API key."""

import secrets
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from doctor_media.auth.security import create_api_key
from doctor_media.config import get_settings
from doctor_media.db.models import ApiKey
from doctor_media.db.session import get_db
from doctor_media.errors import NotFoundError
from doctor_media.schemas.schemas import ApiKeyCreate, ApiKeyInfo, ApiKeyResponse
from doctor_media.services import audit

settings = get_settings()


def require_admin_secret(x_admin_key: Optional[str] = Header(None)):
    if x_admin_key is None or not secrets.compare_digest(x_admin_key, settings.secret_key):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid admin key")


router = APIRouter(
    prefix="/v1/admin/api-keys",
    tags=["Admin - API Keys"],
    dependencies=[Depends(require_admin_secret)],
)


async def load_key(db: AsyncSession, key_id: str) -> ApiKey:
    api_key = await db.get(ApiKey, key_id)
    if api_key is None:
        raise NotFoundError(f"API key {key_id} not found")
    return api_key


@router.post(
    "",
    response_model=ApiKeyResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Issue an API key",
    description=(
        "Scopes: `intake` for MR apps, `review` for QC reviewers, `admin` for operators. "
        "The full key appears in this response only."
    ),
)
async def issue_key(body: ApiKeyCreate, db: AsyncSession = Depends(get_db)):
    api_key, raw = await create_api_key(
        db,
        name=body.name,
        owner=body.owner,
        scopes=list(body.scopes),
        rate_limit_per_minute=body.rate_limit_per_minute,
        rate_limit_per_hour=body.rate_limit_per_hour,
        expires_in_days=body.expires_in_days,
    )
    audit.record(
        db,
        "api_key.created",
        api_key.id,
        resource_type="api_key",
        actor="admin",
        details={"owner": api_key.owner, "scopes": api_key.scopes},
    )
    await db.commit()
    return ApiKeyResponse(**ApiKeyInfo.model_validate(api_key).model_dump(), api_key=raw)


@router.get("", response_model=list[ApiKeyInfo], summary="List API keys")
async def list_keys(
    include_inactive: bool = Query(False, description="Include revoked keys"),
    owner: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
):
    query = select(ApiKey).order_by(ApiKey.created_at.desc())
    if not include_inactive:
        query = query.where(ApiKey.is_active == True)  # noqa: E712
    if owner:
        query = query.where(ApiKey.owner == owner)
    result = await db.execute(query)
    return [ApiKeyInfo.model_validate(k) for k in result.scalars().all()]


@router.get("/{key_id}", response_model=ApiKeyInfo, summary="Show one API key")
async def show_key(key_id: str, db: AsyncSession = Depends(get_db)):
    return ApiKeyInfo.model_validate(await load_key(db, key_id))


@router.delete(
    "/{key_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Revoke an API key",
    description="The row stays so audit entries keep pointing at it.",
)
async def revoke_key(key_id: str, db: AsyncSession = Depends(get_db)):
    api_key = await load_key(db, key_id)
    if api_key.is_active:
        api_key.is_active = False
        audit.record(db, "api_key.revoked", api_key.id, resource_type="api_key", actor="admin")
        await db.commit()
