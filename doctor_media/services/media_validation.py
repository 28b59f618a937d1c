"""Metadata checks for uploaded doctor images and voice samples."""

import os
from dataclasses import dataclass, field
from typing import Optional

from doctor_media.config import get_settings

settings = get_settings()

IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png"}
IMAGE_CONTENT_TYPES = {"image/jpeg", "image/jpg", "image/png"}
AUDIO_EXTENSIONS = {".mp3", ".wav", ".m4a"}
AUDIO_CONTENT_TYPES = {
    "audio/mpeg",
    "audio/mp3",
    "audio/wav",
    "audio/x-wav",
    "audio/wave",
    "audio/m4a",
    "audio/x-m4a",
    "audio/mp4",
}

MB = 1024 * 1024


@dataclass
class ValidationResult:
    media_type: str
    storage_path: Optional[str] = None
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    details: dict = field(default_factory=dict)

    @property
    def is_valid(self) -> bool:
        return not self.errors


def _format_ok(
    filename: Optional[str],
    content_type: Optional[str],
    extensions: set[str],
    content_types: set[str],
) -> Optional[bool]:
    """True/False when the format can be judged, None when nothing is known."""
    if filename:
        ext = os.path.splitext(filename)[1].lower()
        if ext:
            return ext in extensions
    if content_type:
        return content_type.lower() in content_types
    return None


def validate_image(
    filename: Optional[str],
    content_type: Optional[str],
    size_bytes: Optional[int],
    storage_path: Optional[str] = None,
) -> ValidationResult:
    result = ValidationResult("image", storage_path=storage_path or filename)
    result.details = {"filename": filename, "content_type": content_type, "size_bytes": size_bytes}

    fmt = _format_ok(filename or storage_path, content_type, IMAGE_EXTENSIONS, IMAGE_CONTENT_TYPES)
    if fmt is False:
        result.errors.append("Image must be a JPG or PNG file")
    elif fmt is None:
        result.warnings.append("Image format could not be determined")

    if size_bytes is not None and size_bytes > settings.max_image_size_mb * MB:
        result.errors.append(f"Image exceeds {settings.max_image_size_mb}MB")
    return result


def validate_audio(
    filename: Optional[str],
    content_type: Optional[str],
    size_bytes: Optional[int],
    duration_seconds: Optional[float],
    storage_path: Optional[str] = None,
) -> ValidationResult:
    result = ValidationResult("audio", storage_path=storage_path or filename)
    result.details = {
        "filename": filename,
        "content_type": content_type,
        "size_bytes": size_bytes,
        "duration_seconds": duration_seconds,
    }

    fmt = _format_ok(filename or storage_path, content_type, AUDIO_EXTENSIONS, AUDIO_CONTENT_TYPES)
    if fmt is False:
        result.errors.append("Audio must be an MP3, WAV or M4A file")
    elif fmt is None:
        result.warnings.append("Audio format could not be determined")

    if size_bytes is not None and size_bytes > settings.max_audio_size_mb * MB:
        result.errors.append(f"Audio exceeds {settings.max_audio_size_mb}MB")

    if duration_seconds is None:
        result.warnings.append("Audio duration unknown")
    elif duration_seconds < settings.min_audio_duration_seconds:
        result.warnings.append(
            f"Audio is {duration_seconds:.0f}s; at least "
            f"{settings.min_audio_duration_seconds}s is recommended for cloning"
        )
    return result
