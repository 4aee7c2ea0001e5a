"""
MinIO (S3-compatible) client for profile pictures and post media.

Decodes a base64 payload, stores it and returns the public URL:
  images  {owner_id}/{uuid}.{ext}
  audio   audio/{owner_id}/{uuid}.{ext}   (long-lived cache headers)

Public base is media_public_base_url when set (CDN), else the MinIO endpoint
+ bucket. The boto3 client is blocking; callers hop to a thread.
"""
import base64
import binascii
import logging
import uuid
from io import BytesIO

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError

from musicnet.config import Settings, settings
from musicnet.errors import ObjectStorageError, ValidationFailedError

logger = logging.getLogger(__name__)

_IMAGE_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/gif": "gif",
}
_AUDIO_EXTENSIONS = {
    "audio/mpeg": "mp3",
    "audio/wav": "wav",
    "audio/flac": "flac",
    "audio/aac": "aac",
    "audio/ogg": "ogg",
    "audio/mp4": "m4a",
}
IMAGE_CONTENT_TYPES = tuple(_IMAGE_EXTENSIONS)
AUDIO_CONTENT_TYPES = tuple(_AUDIO_EXTENSIONS)


def _decode(media_base64: str) -> bytes:
    try:
        data = base64.b64decode(media_base64, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValidationFailedError("media_base64", "not valid base64") from exc
    if not data:
        raise ValidationFailedError("media_base64", "file is empty")
    return data


class ObjectStorage:
    def __init__(self, client, config: Settings = settings):
        self._s3 = client
        self._settings = config

    @classmethod
    def from_settings(cls, config: Settings = settings) -> "ObjectStorage":
        scheme = "https" if config.minio_use_ssl else "http"
        client = boto3.client(
            "s3",
            endpoint_url=f"{scheme}://{config.minio_endpoint}",
            aws_access_key_id=config.minio_access_key,
            aws_secret_access_key=config.minio_secret_key,
            config=Config(signature_version="s3v4"),
            region_name="us-east-1",
        )
        return cls(client, config)

    def ensure_bucket(self) -> None:
        """Create the media bucket if missing."""
        bucket = self._settings.minio_bucket
        try:
            existing = [b["Name"] for b in self._s3.list_buckets().get("Buckets", [])]
            if bucket not in existing:
                self._s3.create_bucket(Bucket=bucket)
                logger.info("Created MinIO bucket '%s'", bucket)
            else:
                logger.info("MinIO bucket '%s' already exists", bucket)
        except (BotoCoreError, ClientError) as exc:
            raise ObjectStorageError("Failed to prepare media bucket", str(exc)) from exc

    def public_url(self, key: str) -> str:
        base = self._settings.media_public_base_url
        if not base:
            scheme = "https" if self._settings.minio_use_ssl else "http"
            base = f"{scheme}://{self._settings.minio_endpoint}/{self._settings.minio_bucket}"
        return f"{base.rstrip('/')}/{key}"

    def upload_image(self, owner_id: str, media_base64: str, content_type: str) -> str:
        """Decode, size-check and upload an image; return its public URL."""
        ext = _IMAGE_EXTENSIONS.get(content_type)
        if ext is None:
            raise ValidationFailedError("content_type", f"unsupported image type {content_type}")
        data = _decode(media_base64)
        if len(data) > self._settings.max_image_bytes:
            raise ValidationFailedError(
                "media_base64",
                f"image exceeds {self._settings.max_image_bytes} bytes",
            )
        return self._put(f"{owner_id}/{uuid.uuid4()}.{ext}", data, content_type)

    def upload_audio(self, owner_id: str, media_base64: str, content_type: str) -> str:
        ext = _AUDIO_EXTENSIONS.get(content_type)
        if ext is None:
            raise ValidationFailedError("content_type", f"unsupported audio type {content_type}")
        data = _decode(media_base64)
        if len(data) > self._settings.max_audio_bytes:
            raise ValidationFailedError(
                "media_base64",
                f"audio exceeds {self._settings.max_audio_bytes} bytes",
            )
        return self._put(
            f"audio/{owner_id}/{uuid.uuid4()}.{ext}",
            data,
            content_type,
            CacheControl="public, max-age=31536000",
            Metadata={"file-type": "audio", "owner-id": owner_id},
        )

    def upload_media(
        self, owner_id: str, media_base64: str, content_type: str
    ) -> tuple[str, str]:
        """Upload a post attachment; returns (url, media_type)."""
        if content_type in _IMAGE_EXTENSIONS:
            return self.upload_image(owner_id, media_base64, content_type), "image"
        if content_type in _AUDIO_EXTENSIONS:
            return self.upload_audio(owner_id, media_base64, content_type), "audio"
        raise ValidationFailedError("content_type", f"unsupported media type {content_type}")

    def _put(self, key: str, data: bytes, content_type: str, **extra) -> str:
        try:
            self._s3.put_object(
                Bucket=self._settings.minio_bucket,
                Key=key,
                Body=BytesIO(data),
                ContentType=content_type,
                **extra,
            )
        except (BotoCoreError, ClientError) as exc:
            logger.warning("Upload of %s failed: %s", key, exc)
            raise ObjectStorageError("Failed to upload media", str(exc)) from exc

        logger.debug("Uploaded to MinIO: %s", key)
        return self.public_url(key)
