"""Pydantic schemas for request/response validation."""

import re
from datetime import datetime
from typing import Literal, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from doctor_media.config import get_settings

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def normalize_phone(phone: str | None) -> str | None:
    """Normalize an Indian phone number to +91XXXXXXXXXX."""
    if phone is None or not phone.strip():
        return None
    digits = re.sub(r"\D", "", phone)
    if len(digits) == 10:
        return f"+91{digits}"
    if len(digits) == 12 and digits.startswith("91"):
        return f"+{digits}"
    raise ValueError(f"Invalid Indian phone number: {phone}")


def normalize_languages(codes: list[str]) -> list[str]:
    """Lowercase, de-duplicate (keeping order) and check against the catalog."""
    settings = get_settings()
    seen: list[str] = []
    for code in codes:
        code = code.lower().strip()
        if code not in settings.supported_languages:
            raise ValueError(f"Unsupported language: {code}")
        if code not in seen:
            seen.append(code)
    if not seen:
        raise ValueError("At least one language must be selected")
    if len(seen) > settings.max_language_selections:
        raise ValueError(
            f"At most {settings.max_language_selections} languages can be selected"
        )
    return seen


# ============== Submission Schemas ==============


class SubmissionFields(BaseModel):
    """Doctor, MR and language fields shared by both intake paths."""

    doctor_name: str = Field(..., min_length=2, max_length=200)
    doctor_email: Optional[str] = Field(None, max_length=255)
    doctor_phone: Optional[str] = None
    doctor_specialization: Optional[str] = Field(None, max_length=200)
    doctor_clinic_name: Optional[str] = Field(None, max_length=200)
    doctor_city: Optional[str] = Field(None, max_length=100)
    doctor_state: Optional[str] = Field(None, max_length=100)
    years_of_practice: Optional[int] = Field(None, ge=0, le=80)
    mr_name: Optional[str] = Field(None, max_length=200)
    mr_code: Optional[str] = Field(None, max_length=50)
    mr_phone: Optional[str] = None
    campaign_name: Optional[str] = Field(None, max_length=200)
    selected_languages: list[str] = Field(..., min_length=1)

    @field_validator("doctor_name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        return v.strip()

    @field_validator("doctor_email")
    @classmethod
    def check_email(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        v = v.strip().lower()
        if not EMAIL_RE.match(v):
            raise ValueError(f"Invalid email address: {v}")
        return v

    @field_validator("doctor_phone", "mr_phone")
    @classmethod
    def check_phone(cls, v: str | None) -> str | None:
        return normalize_phone(v)

    @field_validator("selected_languages")
    @classmethod
    def check_languages(cls, v: list[str]) -> list[str]:
        return normalize_languages(v)


class AudioSampleRef(BaseModel):
    """A voice sample already uploaded to object storage."""

    storage_path: str = Field(
        ..., min_length=1, validation_alias=AliasChoices("storage_path", "gcsPath")
    )
    filename: Optional[str] = None
    content_type: Optional[str] = None
    size_bytes: Optional[int] = Field(None, ge=0)
    duration_seconds: Optional[float] = Field(None, ge=0)


class SubmissionFromStorageRequest(SubmissionFields):
    """Intake where the image and voice samples were uploaded beforehand."""

    image_path: str = Field(..., min_length=1)
    image_public_url: Optional[str] = None
    audio_samples: list[AudioSampleRef] = Field(..., min_length=1)
    submission_prefix: Optional[str] = None


class SubmissionCreateResponse(BaseModel):
    submission_id: int
    status: str
    consent_status: str
    selected_languages: list[str]
    audio_files_count: int
    validation_warnings: list[str] = []
    next_step: str = "consent_verification"
    created_at: datetime


class AudioSampleInfo(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    position: int
    storage_path: str
    filename: Optional[str] = None
    content_type: Optional[str] = None
    size_bytes: Optional[int] = None
    duration_seconds: Optional[float] = None


class SubmissionResponse(BaseModel):
    """Full submission state."""

    id: int
    doctor_name: str
    doctor_email: Optional[str] = None
    doctor_phone: Optional[str] = None
    doctor_specialization: Optional[str] = None
    doctor_clinic_name: Optional[str] = None
    doctor_city: Optional[str] = None
    doctor_state: Optional[str] = None
    years_of_practice: Optional[int] = None
    mr_name: Optional[str] = None
    mr_code: Optional[str] = None
    mr_phone: Optional[str] = None
    campaign_name: Optional[str] = None
    selected_languages: list[str]
    image_path: Optional[str] = None
    image_public_url: Optional[str] = None
    upload_source: str
    audio_samples: list[AudioSampleInfo] = []
    audio_duration_seconds: Optional[float] = None
    status: str
    consent_status: str
    consent_verified_at: Optional[datetime] = None
    voice_id: Optional[str] = None
    voice_clone_status: str
    voice_clone_error: Optional[str] = None
    qc_status: str
    qc_notes: Optional[str] = None
    qc_reviewed_by: Optional[str] = None
    qc_reviewed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class SubmissionListResponse(BaseModel):
    """Paginated list of submissions."""

    submissions: list[SubmissionResponse]
    total: int
    page: int
    page_size: int
    total_pages: int


class StatusEcho(BaseModel):
    """Resulting status fields after a mutation."""

    submission_id: int
    status: str
    qc_status: str
    consent_status: str
    voice_clone_status: str
    message: Optional[str] = None


class UploadUrlRequest(BaseModel):
    """Request presigned upload URLs for an image and voice samples."""

    image_content_type: str = Field("image/jpeg", pattern=r"^image/")
    audio_content_types: list[str] = Field(..., min_length=1)

    @field_validator("audio_content_types")
    @classmethod
    def check_audio_types(cls, v: list[str]) -> list[str]:
        settings = get_settings()
        if len(v) > settings.max_audio_files:
            raise ValueError(f"At most {settings.max_audio_files} audio files are allowed")
        for content_type in v:
            if not content_type.startswith("audio/"):
                raise ValueError(f"Not an audio content type: {content_type}")
        return v


class UploadUrlInfo(BaseModel):
    upload_url: str
    storage_path: str
    content_type: str
    expires_in: int


class UploadUrlResponse(BaseModel):
    submission_prefix: str
    image: UploadUrlInfo
    audio: list[UploadUrlInfo]


# ============== Per-language Schemas ==============


class GeneratedMediaInfo(BaseModel):
    """One per-language audio or video row."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    language_code: str
    status: str
    storage_path: Optional[str] = None
    public_url: Optional[str] = None
    duration_seconds: Optional[float] = None
    error_message: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None


class LanguageProgress(BaseModel):
    language_code: str
    language_name: str
    audio: Optional[GeneratedMediaInfo] = None
    video: Optional[GeneratedMediaInfo] = None
    audio_complete: bool
    video_complete: bool
    ready_for_qc: bool


class LanguageSummary(BaseModel):
    total_languages: int
    audio_completed: int
    videos_completed: int
    ready_for_qc: int
    all_complete: bool


class LanguageStatusResponse(BaseModel):
    submission_id: int
    status: str
    qc_status: str
    languages: list[LanguageProgress]
    summary: LanguageSummary


class AudioRegisterRequest(BaseModel):
    """Register an audio result produced outside the voice pipeline."""

    status: Literal["completed", "failed"] = "completed"
    storage_path: Optional[str] = Field(
        None, validation_alias=AliasChoices("storage_path", "gcsPath")
    )
    public_url: Optional[str] = Field(
        None, validation_alias=AliasChoices("public_url", "publicUrl")
    )
    duration_seconds: Optional[float] = Field(None, ge=0)
    error_message: Optional[str] = None
    audio_master_id: Optional[int] = None

    @model_validator(mode="after")
    def check_result(self) -> "AudioRegisterRequest":
        if self.status == "completed" and not self.storage_path:
            raise ValueError("storage_path is required for a completed audio")
        if self.status == "failed" and not self.error_message:
            raise ValueError("error_message is required for a failed audio")
        return self


class AudioRegisterResponse(BaseModel):
    submission_id: int
    language_code: str
    audio_id: int
    audio_status: str
    status: str


class VideoRegisterRequest(BaseModel):
    """Register the final video for a language."""

    storage_path: str = Field(
        ..., min_length=1, validation_alias=AliasChoices("storage_path", "gcsPath")
    )
    public_url: Optional[str] = Field(
        None, validation_alias=AliasChoices("public_url", "publicUrl")
    )
    duration_seconds: Optional[float] = Field(None, ge=0)
    uploaded_by: Optional[str] = Field(None, max_length=100)


class VideoRegisterResponse(BaseModel):
    submission_id: int
    language_code: str
    video_id: int
    status: str
    qc_status: str
    all_videos_complete: bool
    videos_completed: int
    total_languages: int


# ============== Consent Schemas ==============


class OtpSendRequest(BaseModel):
    channel: Literal["email", "sms"] = "email"


class OtpSendResponse(BaseModel):
    submission_id: int
    channel: str
    destination: str  # masked
    expires_at: datetime
    consent_status: str
    status: str


class OtpVerifyRequest(BaseModel):
    code: str = Field(..., min_length=4, max_length=10, pattern=r"^\d+$")


class OtpVerifyResponse(BaseModel):
    submission_id: int
    verified: bool
    already_verified: bool = False
    remaining_attempts: int
    consent_status: str
    status: str
    message: str


class ConsentStatusResponse(BaseModel):
    submission_id: int
    consent_status: str
    status: str
    otp_sent_at: Optional[datetime] = None
    otp_expires_at: Optional[datetime] = None
    otp_channel: Optional[str] = None
    remaining_attempts: int
    consent_verified_at: Optional[datetime] = None


# ============== Voice Schemas ==============


class VoiceCloneResponse(BaseModel):
    submission_id: int
    voice_id: Optional[str] = None
    voice_clone_status: str
    status: str


class LanguageGenerationResult(BaseModel):
    language_code: str
    status: str
    audio_id: Optional[int] = None
    storage_path: Optional[str] = None
    error: Optional[str] = None


class VoiceProcessResponse(BaseModel):
    submission_id: int
    voice_id: Optional[str] = None
    voice_clone_status: str
    status: str
    results: list[LanguageGenerationResult]
    errors: list[str] = []


class VoiceReleaseResponse(BaseModel):
    submission_id: int
    voice_id: Optional[str] = None
    voice_clone_status: str
    status: str
    already_released: bool = False


class VoiceInfo(BaseModel):
    submission_id: int
    doctor_name: str
    voice_id: Optional[str] = None
    voice_clone_status: str
    status: str
    age_hours: float
    can_delete: bool
    recommended_for_cleanup: bool
    updated_at: datetime


class VoiceCleanupRequest(BaseModel):
    dry_run: bool = False
    max_age_hours: Optional[float] = Field(None, ge=0)


class VoiceCleanupFailure(BaseModel):
    submission_id: int
    error: str


class VoiceCleanupResponse(BaseModel):
    dry_run: bool
    candidates: list[VoiceInfo]
    released: list[int] = []
    failed: list[VoiceCleanupFailure] = []


# ============== QC Schemas ==============


class ReviewerRequest(BaseModel):
    reviewer_name: str = Field(..., min_length=1, max_length=100)

    @field_validator("reviewer_name")
    @classmethod
    def strip_reviewer(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("reviewer_name must not be blank")
        return v


class QCApproveRequest(ReviewerRequest):
    notes: Optional[str] = None


class QCRejectRequest(ReviewerRequest):
    notes: str = Field(..., min_length=1)
    rejection_reasons: list[str] = []


class QCRequestChangesRequest(ReviewerRequest):
    changes_requested: list[str] = Field(..., min_length=1)
    notes: Optional[str] = None


class QCActionResponse(BaseModel):
    submission_id: int
    status: str
    qc_status: str
    qc_notes: Optional[str] = None
    qc_reviewed_by: Optional[str] = None
    qc_reviewed_at: Optional[datetime] = None
    qc_lease_expires_at: Optional[datetime] = None


class QCHistoryEntry(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    submission_id: int
    reviewer_name: str
    previous_status: Optional[str] = None
    new_status: str
    notes: Optional[str] = None
    created_at: datetime


class QCHistoryResponse(BaseModel):
    submission_id: int
    history: list[QCHistoryEntry]


class MediaValidationInfo(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    media_type: str
    storage_path: Optional[str] = None
    is_valid: bool
    errors: list[str] = []
    warnings: list[str] = []
    details: Optional[dict] = None


class QCDetailResponse(BaseModel):
    submission: SubmissionResponse
    languages: LanguageStatusResponse
    validations: list[MediaValidationInfo]
    history: list[QCHistoryEntry]


# ============== Audio Master Schemas ==============


class AudioMasterCreate(BaseModel):
    language_code: str
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    storage_path: str = Field(..., min_length=1)
    duration_seconds: Optional[float] = Field(None, ge=0)
    is_active: bool = True

    @field_validator("language_code")
    @classmethod
    def check_language(cls, v: str) -> str:
        return normalize_languages([v])[0]


class AudioMasterInfo(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    language_code: str
    name: str
    description: Optional[str] = None
    storage_path: str
    duration_seconds: Optional[float] = None
    is_active: bool
    created_by: Optional[str] = None
    created_at: datetime


# ============== Admin Schemas ==============


class BulkActionRequest(BaseModel):
    action: Literal["approve", "reject", "delete", "retry"]
    submission_ids: list[int] = Field(..., min_length=1, max_length=500)
    reviewer_name: str = Field("admin", min_length=1, max_length=100)
    notes: Optional[str] = None


class BulkActionFailure(BaseModel):
    submission_id: int
    error: str


class BulkActionResponse(BaseModel):
    action: str
    succeeded: list[int]
    failed: list[BulkActionFailure]


class AuditLogEntry(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    action: str
    resource_type: str
    resource_id: Optional[str] = None
    actor: Optional[str] = None
    details: Optional[dict] = None
    created_at: datetime


# ============== API Key Schemas ==============

ApiScope = Literal["intake", "review", "admin"]


class ApiKeyCreate(BaseModel):
    """Request to create a new API key."""

    name: str = Field(..., min_length=1, max_length=100)
    owner: str = Field(..., min_length=1, max_length=100)
    scopes: list[ApiScope] = Field(default=["intake"])
    rate_limit_per_minute: int = Field(60, ge=1, le=10000)
    rate_limit_per_hour: int = Field(500, ge=1, le=100000)
    expires_in_days: Optional[int] = Field(None, ge=1, le=365)


class ApiKeyInfo(BaseModel):
    """API key info (without full key)."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    key_prefix: str
    name: str
    owner: str
    scopes: list[str]
    rate_limit_per_minute: int
    rate_limit_per_hour: int
    is_active: bool
    created_at: datetime
    expires_at: Optional[datetime] = None


class ApiKeyResponse(ApiKeyInfo):
    """A newly created key. The only response that carries the full key."""

    api_key: str


# ============== Health & Misc Schemas ==============


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    database: str
    redis: str
    storage: str


class ErrorResponse(BaseModel):
    """Standard error response."""

    error: str
    detail: Optional[str] = None


class LanguageInfo(BaseModel):
    """A language that can be selected for a submission."""

    code: str
    name: str
    native_name: str
    sts_model: str
