"""
Signed-URL issuer for carriers that fetch documents by URL.

Uploads go through a boto3 S3 client. Grants prefer the client's native
presigner and fall back to building the same SigV4 canonical form by hand.
Every URL is parsed back before it is returned; a URL that fails that check
is never handed out.
"""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Literal

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from faxrelay.errors import ConfigurationError, SigningError, TransportError
from faxrelay.shared.logging import get_logger, mask_secret
from faxrelay.storage.config import MAX_SIGNED_URL_TTL_SECONDS, ObjectStoreConfig
from faxrelay.storage.sigv4 import parse_presigned_url, presign_url

logger = get_logger(__name__)

SigningMethod = Literal["native", "manual"]


@dataclass(frozen=True)
class SignedUrlGrant:
    """Time-limited, credential-free read access to one stored object."""

    url: str
    key: str
    issued_at: datetime
    expires_at: datetime
    method: SigningMethod

    @property
    def ttl_seconds(self) -> int:
        return int((self.expires_at - self.issued_at).total_seconds())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SignedUrlIssuer:
    """Uploads fax documents and issues presigned GET URLs for them.

    Does not retry; callers decide whether a failed upload or grant is
    worth another attempt.
    """

    def __init__(
        self,
        config: ObjectStoreConfig,
        s3_client: Any | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._config = config
        self._s3_client = s3_client
        self._clock = clock or _utcnow

    @property
    def bucket(self) -> str:
        return self._config.bucket

    def _get_client(self) -> Any:
        if self._s3_client is None:
            if not self._config.is_configured:
                raise ConfigurationError(
                    "Object store bucket, endpoint and credentials are required",
                    error_code="OBJECT_STORE_NOT_CONFIGURED",
                )
            session = boto3.Session(
                aws_access_key_id=self._config.access_key_id,
                aws_secret_access_key=self._config.secret_access_key,
                region_name=self._config.region,
            )
            config = Config(
                signature_version="s3v4",
                s3={"addressing_style": self._config.addressing_style},
                connect_timeout=self._config.connect_timeout_seconds,
                read_timeout=self._config.read_timeout_seconds,
                retries={"total_max_attempts": 1},
                request_checksum_calculation="when_required",
                response_checksum_validation="when_required",
            )
            self._s3_client = session.client(
                "s3",
                endpoint_url=self._config.endpoint_url,
                config=config,
            )
            logger.info(
                "Object store client created",
                extra={
                    "endpoint_url": self._config.endpoint_url,
                    "bucket": self._config.bucket,
                    "access_key_id": mask_secret(self._config.access_key_id),
                },
            )
        return self._s3_client

    def build_object_key(self, reference: str, index: int, suffix: str = "pdf") -> str:
        """Object key for the ``index``-th (1-based) document of a submission."""
        timestamp = int(self._clock().timestamp())
        name = f"{reference}/document_{index}_{timestamp}.{suffix}"
        return f"{self._config.key_prefix}/{name}" if self._config.key_prefix else name

    def upload(self, content: bytes, key: str, content_type: str = "application/pdf") -> None:
        """Store ``content`` under ``key``."""
        client = self._get_client()
        try:
            client.put_object(
                Bucket=self._config.bucket,
                Key=key,
                Body=content,
                ContentType=content_type,
            )
        except ClientError as e:
            error = e.response.get("Error", {})
            logger.error(
                "Object upload rejected",
                extra={"key": key, "bucket": self._config.bucket, "error": error},
            )
            raise TransportError(
                message=f"Upload of {key} failed: {error.get('Message') or e!s}",
                error_code=str(error.get("Code") or "UPLOAD_FAILED"),
                provider_response=dict(error),
            ) from e
        except BotoCoreError as e:
            logger.error(
                "Object upload failed",
                extra={"key": key, "bucket": self._config.bucket, "error": str(e)},
            )
            raise TransportError(
                message=f"Upload of {key} failed: {e!s}",
                error_code="UPLOAD_FAILED",
            ) from e

        logger.info(
            "Uploaded fax document",
            extra={"key": key, "bucket": self._config.bucket, "bytes": len(content)},
        )

    def grant(self, key: str, ttl_seconds: int | None = None) -> SignedUrlGrant:
        """Issue a presigned GET URL for ``key`` valid for ``ttl_seconds``.

        Raises:
            SigningError: If neither the native presigner nor the manual
                construction yields a well-formed URL.
        """
        ttl = self._config.signed_url_ttl_seconds if ttl_seconds is None else ttl_seconds
        if not 1 <= ttl <= MAX_SIGNED_URL_TTL_SECONDS:
            raise SigningError(
                f"Signed URL lifetime must be between 1 and {MAX_SIGNED_URL_TTL_SECONDS} seconds",
                error_code="INVALID_TTL",
            )

        native_error: str | None = None
        try:
            url = self._native_presign(key, ttl)
            return self._checked_grant(url, key, ttl, "native")
        except (BotoCoreError, ClientError, ConfigurationError, ValueError) as e:
            native_error = str(e)
            logger.warning(
                "Native presigning unavailable; building signature manually",
                extra={"key": key, "error": native_error},
            )

        try:
            url = presign_url(
                endpoint_url=self._config.endpoint_url,
                bucket=self._config.bucket,
                key=key,
                region=self._config.region,
                access_key_id=self._config.access_key_id,
                secret_access_key=self._config.secret_access_key,
                expires_in=ttl,
                issued_at=self._clock(),
                addressing_style=self._config.addressing_style,
            )
            return self._checked_grant(url, key, ttl, "manual")
        except ValueError as e:
            logger.error(
                "Signed URL issuance failed",
                extra={"key": key, "native_error": native_error, "manual_error": str(e)},
            )
            raise SigningError(
                message=f"Could not sign URL for {key}: {e!s}",
                error_code="SIGNING_FAILED",
                provider_response={"native_error": native_error, "manual_error": str(e)},
            ) from e

    def _native_presign(self, key: str, ttl: int) -> str:
        client = self._get_client()
        return client.generate_presigned_url(
            "get_object",
            Params={"Bucket": self._config.bucket, "Key": key},
            ExpiresIn=ttl,
            HttpMethod="GET",
        )

    def _checked_grant(self, url: str, key: str, ttl: int, method: SigningMethod) -> SignedUrlGrant:
        """Parse ``url`` back and build the grant, or raise ``ValueError``."""
        if not isinstance(url, str):
            raise ValueError(f"Presigner returned {type(url).__name__}, expected str")
        parts = parse_presigned_url(url)
        if parts.expires_in != ttl:
            raise ValueError(f"Presigned URL expiry {parts.expires_in}s does not match {ttl}s")
        if parts.params.get("X-Amz-SignedHeaders") != "host":
            raise ValueError("Presigned URL must sign only the host header")

        return SignedUrlGrant(
            url=url,
            key=key,
            issued_at=parts.issued_at,
            expires_at=parts.expires_at,
            method=method,
        )
