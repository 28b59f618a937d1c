"""Object storage service for doctor images, voice samples and generated media."""

import logging
from datetime import datetime, timezone
from io import BytesIO
from typing import Optional
from uuid import uuid4

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

from doctor_media.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)

EXTENSIONS = {
    "audio/wav": ".wav",
    "audio/x-wav": ".wav",
    "audio/wave": ".wav",
    "audio/mpeg": ".mp3",
    "audio/mp3": ".mp3",
    "audio/m4a": ".m4a",
    "audio/x-m4a": ".m4a",
    "audio/mp4": ".m4a",
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/png": ".png",
    "video/mp4": ".mp4",
}


class StorageService:
    """Service for managing object storage (S3 compatible)."""

    def __init__(self):
        self._client = None
        self._bucket = settings.storage_bucket

    @property
    def client(self):
        """Lazy initialization of S3 client."""
        if self._client is None:
            scheme = "https" if settings.storage_use_ssl else "http"
            self._client = boto3.client(
                "s3",
                endpoint_url=f"{scheme}://{settings.storage_endpoint}",
                aws_access_key_id=settings.storage_access_key,
                aws_secret_access_key=settings.storage_secret_key,
                config=Config(signature_version="s3v4"),
            )
            self._ensure_bucket()
        return self._client

    def _ensure_bucket(self):
        """Create bucket if it doesn't exist."""
        try:
            self._client.head_bucket(Bucket=self._bucket)
        except ClientError:
            self._client.create_bucket(Bucket=self._bucket)

    @staticmethod
    def new_submission_prefix() -> str:
        """Folder name grouping one submission's uploads."""
        stamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
        return f"{stamp}-{uuid4().hex[:8]}"

    @staticmethod
    def image_path(prefix: str, content_type: str) -> str:
        return f"submissions/{prefix}/image{get_extension(content_type, '.jpg')}"

    @staticmethod
    def audio_sample_path(prefix: str, position: int, content_type: str) -> str:
        return f"submissions/{prefix}/audio/sample_{position}{get_extension(content_type, '.wav')}"

    @staticmethod
    def generated_audio_path(submission_id: int, language_code: str) -> str:
        return f"generated/{submission_id}/audio/{language_code}.mp3"

    def upload_bytes(self, content: bytes, storage_path: str, content_type: str) -> str:
        """Upload raw bytes. Returns the storage path."""
        self.client.upload_fileobj(
            BytesIO(content),
            self._bucket,
            storage_path,
            ExtraArgs={"ContentType": content_type},
        )
        return storage_path

    def download(self, storage_path: str) -> bytes:
        """Download a file from storage."""
        response = self.client.get_object(Bucket=self._bucket, Key=storage_path)
        return response["Body"].read()

    def delete(self, storage_path: str):
        self.client.delete_object(Bucket=self._bucket, Key=storage_path)

    def delete_prefix(self, prefix: str) -> int:
        """Delete every object under a prefix. Returns the number deleted."""
        response = self.client.list_objects_v2(Bucket=self._bucket, Prefix=prefix)
        objects = [{"Key": obj["Key"]} for obj in response.get("Contents", [])]
        if objects:
            self.client.delete_objects(Bucket=self._bucket, Delete={"Objects": objects})
        return len(objects)

    def public_url(self, storage_path: str) -> Optional[str]:
        """Stable public URL when a public base URL is configured."""
        if not settings.storage_public_base_url:
            return None
        return f"{settings.storage_public_base_url.rstrip('/')}/{storage_path}"

    def generate_presigned_url(self, storage_path: str, expires_in: int = 3600) -> str:
        """Generate a presigned URL for downloading a file."""
        return self.client.generate_presigned_url(
            "get_object",
            Params={"Bucket": self._bucket, "Key": storage_path},
            ExpiresIn=expires_in,
        )

    def generate_upload_url(
        self, storage_path: str, content_type: str, expires_in: int = 3600
    ) -> dict:
        """
        Generate a presigned URL for uploading a file directly to storage.

        Returns:
            dict with 'upload_url', 'storage_path', 'content_type' and 'expires_in'
        """
        url = self.client.generate_presigned_url(
            "put_object",
            Params={
                "Bucket": self._bucket,
                "Key": storage_path,
                "ContentType": content_type,
            },
            ExpiresIn=expires_in,
        )
        return {
            "upload_url": url,
            "storage_path": storage_path,
            "content_type": content_type,
            "expires_in": expires_in,
        }

    def generate_submission_upload_urls(
        self, image_content_type: str, audio_content_types: list[str], expires_in: int = 3600
    ) -> dict:
        """Presigned PUT URLs for one image and the voice samples of a new submission."""
        prefix = self.new_submission_prefix()
        return {
            "submission_prefix": prefix,
            "image": self.generate_upload_url(
                self.image_path(prefix, image_content_type), image_content_type, expires_in
            ),
            "audio": [
                self.generate_upload_url(
                    self.audio_sample_path(prefix, position, content_type),
                    content_type,
                    expires_in,
                )
                for position, content_type in enumerate(audio_content_types, start=1)
            ],
        }

    def health_check(self) -> bool:
        """Check if storage is accessible."""
        try:
            self.client.head_bucket(Bucket=self._bucket)
            return True
        except Exception:
            return False


def get_extension(content_type: Optional[str], default: str) -> str:
    """Get file extension from content type."""
    if not content_type:
        return default
    return EXTENSIONS.get(content_type.lower(), default)


# Singleton instance
storage_service = StorageService()
