"""Rate limiting using SlowAPI."""

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from doctor_media.config import get_settings

settings = get_settings()


def get_api_key_or_ip(request: Request) -> str:
    """
    Get rate limit key from API key or IP address.

    Uses API key if authenticated, falls back to IP address.
    """
    api_key = getattr(request.state, "api_key", None)
    if api_key is not None:
        return f"key:{api_key.id}"
    return f"ip:{get_remote_address(request)}"


limiter = Limiter(
    key_func=get_api_key_or_ip,
    storage_uri=settings.rate_limit_storage_uri,
    strategy="fixed-window",
)


def rate_limit_otp():
    """Rate limit for OTP send and verify endpoints."""
    return limiter.limit(settings.otp_rate_limit, key_func=get_api_key_or_ip)


def rate_limit_general():
    """Rate limit for general write endpoints."""
    return limiter.limit(
        f"{settings.rate_limit_per_minute}/minute",
        key_func=get_api_key_or_ip,
    )
