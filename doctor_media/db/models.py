"""Database models for the doctor media pipeline."""

import enum
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from doctor_media.db.session import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite drops the offset)."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _str_enum(enum_cls: type[enum.Enum]) -> Enum:
    # Persist the lowercase values, not the member names.
    return Enum(
        enum_cls,
        native_enum=False,
        length=30,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )


class SubmissionStatus(str, enum.Enum):
    """Aggregate status of a submission."""

    PENDING_CONSENT = "pending_consent"
    CONSENT_VERIFIED = "consent_verified"
    PROCESSING = "processing"
    PENDING_QC = "pending_qc"
    QC_APPROVED = "qc_approved"
    QC_REJECTED = "qc_rejected"
    PENDING_CHANGES = "pending_changes"
    COMPLETED = "completed"
    FAILED = "failed"
    DELETED = "deleted"


class ConsentStatus(str, enum.Enum):
    PENDING = "pending"
    VERIFIED = "verified"


class VoiceCloneStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    DELETED = "deleted"


class QCStatus(str, enum.Enum):
    PENDING = "pending"
    IN_REVIEW = "in_review"
    APPROVED = "approved"
    REJECTED = "rejected"


class GenerationStatus(str, enum.Enum):
    """Status of one per-language audio or video row."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class UploadSource(str, enum.Enum):
    DIRECT = "direct"  # multipart upload through this service
    STORAGE = "storage"  # client uploaded to object storage first


class ApiKey(Base):
    """API keys for authentication."""

    __tablename__ = "api_keys"

    id: Mapped[str] = mapped_column(
        Uuid(as_uuid=False), primary_key=True, default=lambda: str(uuid4())
    )
    key_hash: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    key_prefix: Mapped[str] = mapped_column(String(12), index=True)  # "dmp_" + 8 chars
    name: Mapped[str] = mapped_column(String(100))
    owner: Mapped[str] = mapped_column(String(100))
    scopes: Mapped[list] = mapped_column(JSON, default=list)  # ["intake", "review", "admin"]
    rate_limit_per_minute: Mapped[int] = mapped_column(Integer, default=60)
    rate_limit_per_hour: Mapped[int] = mapped_column(Integer, default=500)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class Submission(Base):
    """One doctor intake and its processing state."""

    __tablename__ = "submissions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Doctor snapshot
    doctor_name: Mapped[str] = mapped_column(String(200))
    doctor_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    doctor_phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    doctor_specialization: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    doctor_clinic_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    doctor_city: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    doctor_state: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    years_of_practice: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Medical representative snapshot
    mr_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    mr_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True, index=True)
    mr_phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    campaign_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    # Media
    image_path: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    image_public_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    submission_prefix: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    upload_source: Mapped[UploadSource] = mapped_column(
        _str_enum(UploadSource), default=UploadSource.DIRECT
    )
    audio_duration_seconds: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    status: Mapped[SubmissionStatus] = mapped_column(
        _str_enum(SubmissionStatus), default=SubmissionStatus.PENDING_CONSENT, index=True
    )

    # Consent
    consent_status: Mapped[ConsentStatus] = mapped_column(
        _str_enum(ConsentStatus), default=ConsentStatus.PENDING
    )
    consent_otp_hash: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    consent_otp_expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    consent_otp_attempts: Mapped[int] = mapped_column(Integer, default=0)
    consent_otp_channel: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    consent_otp_sent_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    consent_verified_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Voice clone
    voice_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    voice_clone_status: Mapped[VoiceCloneStatus] = mapped_column(
        _str_enum(VoiceCloneStatus), default=VoiceCloneStatus.PENDING
    )
    voice_clone_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    voice_cloned_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    voice_released_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # QC
    qc_status: Mapped[QCStatus] = mapped_column(
        _str_enum(QCStatus), default=QCStatus.PENDING, index=True
    )
    qc_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    qc_reviewed_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    qc_reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    qc_lease_expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_by_key_id: Mapped[Optional[str]] = mapped_column(Uuid(as_uuid=False), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    # Relationships
    languages: Mapped[list["SubmissionLanguage"]] = relationship(
        "SubmissionLanguage",
        order_by="SubmissionLanguage.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    audio_samples: Mapped[list["SubmissionAudioSample"]] = relationship(
        "SubmissionAudioSample",
        order_by="SubmissionAudioSample.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def selected_languages(self) -> list[str]:
        return [lang.language_code for lang in self.languages]


class SubmissionLanguage(Base):
    """A language selected for a submission, in selection order."""

    __tablename__ = "submission_languages"
    __table_args__ = (UniqueConstraint("submission_id", "language_code"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    submission_id: Mapped[int] = mapped_column(
        ForeignKey("submissions.id", ondelete="CASCADE"), index=True
    )
    position: Mapped[int] = mapped_column(Integer)
    language_code: Mapped[str] = mapped_column(String(10))


class SubmissionAudioSample(Base):
    """A voice sample uploaded for cloning."""

    __tablename__ = "submission_audio_samples"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    submission_id: Mapped[int] = mapped_column(
        ForeignKey("submissions.id", ondelete="CASCADE"), index=True
    )
    position: Mapped[int] = mapped_column(Integer)
    storage_path: Mapped[str] = mapped_column(Text)
    filename: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    content_type: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    size_bytes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    duration_seconds: Mapped[Optional[float]] = mapped_column(Float, nullable=True)


class AudioMaster(Base):
    """Master script audio for a language, used as speech-to-speech input."""

    __tablename__ = "audio_masters"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    language_code: Mapped[str] = mapped_column(String(10), index=True)
    name: Mapped[str] = mapped_column(String(200))
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    storage_path: Mapped[str] = mapped_column(Text)
    duration_seconds: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class GeneratedAudio(Base):
    """Speech generated in the cloned voice for one language."""

    __tablename__ = "generated_audio"
    __table_args__ = (UniqueConstraint("submission_id", "language_code"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    submission_id: Mapped[int] = mapped_column(
        ForeignKey("submissions.id", ondelete="CASCADE"), index=True
    )
    language_code: Mapped[str] = mapped_column(String(10))
    status: Mapped[GenerationStatus] = mapped_column(
        _str_enum(GenerationStatus), default=GenerationStatus.PENDING
    )
    storage_path: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    public_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    duration_seconds: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    audio_master_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("audio_masters.id", ondelete="SET NULL"), nullable=True
    )
    provider_request_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class GeneratedVideo(Base):
    """Final video for one language."""

    __tablename__ = "generated_videos"
    __table_args__ = (UniqueConstraint("submission_id", "language_code"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    submission_id: Mapped[int] = mapped_column(
        ForeignKey("submissions.id", ondelete="CASCADE"), index=True
    )
    language_code: Mapped[str] = mapped_column(String(10))
    generated_audio_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("generated_audio.id", ondelete="SET NULL"), nullable=True
    )
    status: Mapped[GenerationStatus] = mapped_column(
        _str_enum(GenerationStatus), default=GenerationStatus.PENDING
    )
    storage_path: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    public_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    duration_seconds: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    uploaded_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class QCHistory(Base):
    """Append-only ledger of QC transitions."""

    __tablename__ = "qc_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    submission_id: Mapped[int] = mapped_column(
        ForeignKey("submissions.id", ondelete="CASCADE"), index=True
    )
    reviewer_name: Mapped[str] = mapped_column(String(100))
    previous_status: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    new_status: Mapped[str] = mapped_column(String(30))
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class _ValidationColumns:
    """Columns shared by the per-media validation tables."""

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    submission_id: Mapped[int] = mapped_column(
        ForeignKey("submissions.id", ondelete="CASCADE"), index=True
    )
    storage_path: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_valid: Mapped[bool] = mapped_column(Boolean, default=True)
    errors: Mapped[list] = mapped_column(JSON, default=list)
    warnings: Mapped[list] = mapped_column(JSON, default=list)
    details: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class ImageValidation(_ValidationColumns, Base):
    """Metadata checks recorded for the doctor's photo."""

    __tablename__ = "image_validations"

    media_type = "image"


class AudioValidation(_ValidationColumns, Base):
    """Metadata checks recorded for one voice sample."""

    __tablename__ = "audio_validations"

    media_type = "audio"


VALIDATION_MODELS = {"image": ImageValidation, "audio": AudioValidation}


class AuditLog(Base):
    """Audit log for consent, voice, QC and admin actions."""

    __tablename__ = "audit_log"

    id: Mapped[str] = mapped_column(
        Uuid(as_uuid=False), primary_key=True, default=lambda: str(uuid4())
    )
    api_key_id: Mapped[Optional[str]] = mapped_column(Uuid(as_uuid=False), nullable=True, index=True)
    action: Mapped[str] = mapped_column(String(50), index=True)  # e.g. "consent.verified"
    resource_type: Mapped[str] = mapped_column(String(50))  # "submission", "voice", "api_key"
    resource_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    actor: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    details: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
