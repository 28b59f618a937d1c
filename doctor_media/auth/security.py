"""API keys, scopes and secret hashing."""

import secrets
from datetime import timedelta
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, status
from passlib.context import CryptContext
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from doctor_media.db.models import ApiKey, as_utc, utcnow
from doctor_media.db.session import get_db

# Used for API keys and consent OTPs alike
pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

KEY_PREFIX = "dmp_"
KEY_LENGTH = len(KEY_PREFIX) + 32
LOOKUP_LENGTH = 12

SCOPES = ("intake", "review", "admin")


def hash_secret(value: str) -> str:
    return pwd_context.hash(value)


def verify_secret(plain: str, hashed: str) -> bool:
    return pwd_context.verify(plain, hashed)


def new_key() -> str:
    """A fresh key: ``dmp_`` followed by 32 hex characters."""
    return KEY_PREFIX + secrets.token_hex(16)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


def _forbidden(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


def presented_key(authorization: Optional[str], x_api_key: Optional[str]) -> str:
    """Pull the raw key out of the Authorization or X-API-Key header."""
    if authorization:
        scheme, _, token = authorization.partition(" ")
        if scheme != "Bearer" or not token:
            raise _unauthorized("Use 'Authorization: Bearer <api_key>'")
        raw = token.strip()
    elif x_api_key:
        raw = x_api_key.strip()
    else:
        raise _unauthorized("API key required in the Authorization or X-API-Key header")

    if len(raw) != KEY_LENGTH or not raw.startswith(KEY_PREFIX):
        raise _unauthorized("Malformed API key")
    return raw


async def find_key(db: AsyncSession, raw: str) -> Optional[ApiKey]:
    """Active, unexpired key matching ``raw``, or None."""
    result = await db.execute(
        select(ApiKey).where(
            ApiKey.key_prefix == raw[:LOOKUP_LENGTH],
            ApiKey.is_active == True,  # noqa: E712
        )
    )
    now = utcnow()
    for candidate in result.scalars().all():
        expires_at = as_utc(candidate.expires_at)
        if expires_at is not None and expires_at <= now:
            continue
        if verify_secret(raw, candidate.key_hash):
            return candidate
    return None


class RequireScope:
    """
    Dependency resolving the caller's API key.

    The key must hold at least one of ``accepted`` scopes. The resolved
    key is also stored on ``request.state.api_key`` for the rate limiter.
    """

    def __init__(self, *accepted: str):
        self.accepted = frozenset(accepted)

    async def __call__(
        self,
        request: Request,
        authorization: Optional[str] = Header(None),
        x_api_key: Optional[str] = Header(None, alias="X-API-Key"),
        db: AsyncSession = Depends(get_db),
    ) -> ApiKey:
        raw = presented_key(authorization, x_api_key)
        api_key = await find_key(db, raw)
        if api_key is None:
            raise _forbidden("Unknown, revoked or expired API key")

        held = set(api_key.scopes or [])
        if not held & self.accepted:
            raise _forbidden(f"This route needs one of the scopes {sorted(self.accepted)}")

        request.state.api_key = api_key
        return api_key


require_intake = RequireScope("intake", "admin")
require_review = RequireScope("review", "admin")
require_admin = RequireScope("admin")


def actor_name(api_key: ApiKey) -> str:
    """Name recorded in the audit log for actions taken with a key."""
    return f"{api_key.owner}:{api_key.name}"


async def create_api_key(
    db: AsyncSession,
    name: str,
    owner: str,
    scopes: list[str],
    rate_limit_per_minute: int = 60,
    rate_limit_per_hour: int = 500,
    expires_in_days: Optional[int] = None,
) -> tuple[ApiKey, str]:
    """
    Store a new key and return it with its plaintext.

    The plaintext is never persisted; callers must hand it out right away.
    """
    unknown = set(scopes) - set(SCOPES)
    if unknown:
        raise ValueError(f"Unknown scopes: {sorted(unknown)}")

    raw = new_key()
    api_key = ApiKey(
        key_hash=hash_secret(raw),
        key_prefix=raw[:LOOKUP_LENGTH],
        name=name,
        owner=owner,
        scopes=list(dict.fromkeys(scopes)),
        rate_limit_per_minute=rate_limit_per_minute,
        rate_limit_per_hour=rate_limit_per_hour,
        expires_at=utcnow() + timedelta(days=expires_in_days) if expires_in_days else None,
    )
    db.add(api_key)
    await db.flush()
    return api_key, raw
