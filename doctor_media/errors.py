"""Service-layer exceptions and their HTTP mapping."""

from typing import Any, Optional

from fastapi import status


class ServiceError(Exception):
    """Base class for errors raised by the service layer.

    Rendered by the exception handler in ``main.py`` as
    ``{"error": message, **extra}`` with ``status_code``.
    """

    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, **extra: Any):
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_content(self) -> dict:
        return {"error": self.message, **self.extra}


class NotFoundError(ServiceError):
    status_code = status.HTTP_404_NOT_FOUND


class ValidationFailed(ServiceError):
    status_code = status.HTTP_400_BAD_REQUEST


class ConflictError(ServiceError):
    status_code = status.HTTP_409_CONFLICT


class ConsentRequired(ConflictError):
    """Processing was attempted before the doctor's consent was verified."""


class InvalidTransition(ConflictError):
    """A status event is not allowed from the submission's current status."""

    def __init__(self, event: str, current: str, message: Optional[str] = None):
        super().__init__(
            message or f"Cannot apply '{event}' to a submission in status '{current}'",
            event=event,
            current_status=current,
        )


class ProviderError(ServiceError):
    """An external provider (voice, storage, messaging) call failed."""

    status_code = status.HTTP_502_BAD_GATEWAY

    def __init__(self, provider: str, message: str, provider_status: Optional[int] = None, **extra: Any):
        super().__init__(message, provider=provider, **extra)
        self.provider = provider
        self.provider_status = provider_status
