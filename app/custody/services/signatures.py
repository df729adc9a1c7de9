from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import logging
from pathlib import Path
from urllib.parse import urlparse

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError

from app.custody.core.config import settings

logger = logging.getLogger(__name__)

_ALLOWED_EXTENSIONS = {"png", "jpg", "jpeg", "webp"}
_CONTENT_TYPE_TO_EXT = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/webp": "webp",
}
_EXT_TO_CONTENT_TYPE = {"png": "image/png", "jpg": "image/jpeg", "webp": "image/webp"}


@dataclass(frozen=True)
class StoredSignature:
    signature_url: str
    signature_path: str


class SignatureUploadError(Exception):
    def __init__(self, message: str, *, error_code: str = "VALIDATION_ERROR") -> None:
        super().__init__(message)
        self.error_code = error_code


class SignatureStorage:
    """Stores remittance signature images in an S3-compatible bucket."""

    def __init__(self, client=None) -> None:
        self._access_key = settings.SIGNATURE_STORAGE_ACCESS_KEY
        self._secret_key = settings.SIGNATURE_STORAGE_SECRET_KEY
        self._bucket = settings.SIGNATURE_STORAGE_BUCKET
        self._region = settings.SIGNATURE_STORAGE_REGION
        self._endpoint = settings.SIGNATURE_STORAGE_ENDPOINT
        self._public_base_url = settings.SIGNATURE_STORAGE_PUBLIC_BASE_URL
        self._client = client

    def upload_signature(
        self,
        *,
        file_bytes: bytes,
        original_filename: str | None,
        content_type: str | None,
        agent_id: str,
        leader_id: str,
        trace_id: str | None = None,
    ) -> StoredSignature:
        if not file_bytes:
            raise SignatureUploadError("signature image is required", error_code="MISSING_SIGNATURE")
        if len(file_bytes) > settings.SIGNATURE_MAX_BYTES:
            raise SignatureUploadError("signature image exceeds max size")
        extension = self._resolve_extension(original_filename=original_filename, content_type=content_type)
        self._validate_settings()

        now = datetime.now(timezone.utc)
        key = f"{agent_id}/{leader_id}/{int(now.timestamp() * 1000)}.{extension}"
        logger.info(
            "signature_upload_start",
            extra={"bucket": self._bucket, "agent_id": agent_id, "leader_id": leader_id, "trace_id": trace_id},
        )
        try:
            self._s3_client().put_object(
                Bucket=self._bucket,
                Key=key,
                Body=file_bytes,
                ContentType=_EXT_TO_CONTENT_TYPE[extension],
                CacheControl="private, max-age=31536000",
            )
        except ClientError as exc:
            s3_response = getattr(exc, "response", {}) or {}
            logger.exception(
                "signature_upload_error",
                extra={
                    "exception_type": type(exc).__name__,
                    "s3_error": s3_response.get("Error"),
                    "trace_id": trace_id,
                },
            )
            error_message = (s3_response.get("Error") or {}).get("Message") or str(exc)
            raise SignatureUploadError(f"storage upload failed: {error_message}", error_code="STORAGE_ERROR") from exc
        except BotoCoreError as exc:
            logger.exception(
                "signature_upload_error",
                extra={"exception_type": type(exc).__name__, "trace_id": trace_id},
            )
            raise SignatureUploadError(f"storage upload failed: {exc}", error_code="STORAGE_ERROR") from exc

        logger.info("signature_upload_ok", extra={"key": key, "bytes": len(file_bytes), "trace_id": trace_id})
        public_base = (self._public_base_url or self._normalized_endpoint_url()).rstrip("/")
        return StoredSignature(signature_url=f"{public_base}/{key}", signature_path=key)

    def _validate_settings(self) -> None:
        required = {
            "SIGNATURE_STORAGE_ACCESS_KEY": self._access_key,
            "SIGNATURE_STORAGE_SECRET_KEY": self._secret_key,
            "SIGNATURE_STORAGE_BUCKET": self._bucket,
            "SIGNATURE_STORAGE_ENDPOINT": self._endpoint,
        }
        missing = [name for name, value in required.items() if not value]
        if missing and self._client is None:
            raise SignatureUploadError(
                f"missing signature storage configuration: {', '.join(missing)}",
                error_code="STORAGE_ERROR",
            )

    def _normalized_endpoint_url(self) -> str:
        endpoint = (self._endpoint or "").strip()
        if not endpoint:
            return ""
        parsed = urlparse(endpoint)
        if parsed.scheme:
            return f"{parsed.scheme}://{parsed.netloc}{parsed.path}".rstrip("/")
        return f"https://{endpoint.lstrip('/')}".rstrip("/")

    def _s3_client(self):
        if self._client is None:
            self._client = boto3.client(
                "s3",
                region_name=self._region or None,
                endpoint_url=self._normalized_endpoint_url() or None,
                aws_access_key_id=self._access_key,
                aws_secret_access_key=self._secret_key,
                config=Config(signature_version="s3v4"),
            )
        return self._client

    @staticmethod
    def _resolve_extension(*, original_filename: str | None, content_type: str | None) -> str:
        from_filename = Path(original_filename or "").suffix.lower().lstrip(".")
        if from_filename in _ALLOWED_EXTENSIONS:
            return "jpg" if from_filename == "jpeg" else from_filename
        from_content_type = _CONTENT_TYPE_TO_EXT.get((content_type or "").lower())
        if from_content_type:
            return from_content_type
        raise SignatureUploadError("unsupported signature image type")
