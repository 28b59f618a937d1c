"""Audit log writes and queries."""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from doctor_media.db.models import ApiKey, AuditLog


def record(
    db: AsyncSession,
    action: str,
    resource_id: Optional[object] = None,
    resource_type: str = "submission",
    api_key: Optional[ApiKey] = None,
    actor: Optional[str] = None,
    details: Optional[dict] = None,
    ip_address: Optional[str] = None,
) -> AuditLog:
    """Add an audit entry to the session. Flushed with the caller's transaction."""
    entry = AuditLog(
        api_key_id=api_key.id if api_key else None,
        action=action,
        resource_type=resource_type,
        resource_id=str(resource_id) if resource_id is not None else None,
        actor=actor or (f"{api_key.owner}:{api_key.name}" if api_key else None),
        details=details,
        ip_address=ip_address,
    )
    db.add(entry)
    return entry


async def list_entries(
    db: AsyncSession,
    resource_id: Optional[str] = None,
    action: Optional[str] = None,
    limit: int = 100,
) -> list[AuditLog]:
    query = select(AuditLog)
    if resource_id:
        query = query.where(AuditLog.resource_id == resource_id)
    if action:
        query = query.where(AuditLog.action == action)
    query = query.order_by(AuditLog.created_at.desc()).limit(limit)
    result = await db.execute(query)
    return list(result.scalars().all())
