"""
Signed-URL storage backends for message attachments.

The core never moves attachment bytes itself. It issues short-lived grants
keyed to an attachment's storage_path; clients PUT bytes to the upload grant
and GET them from the download grant.

Backends:
    S3StorageBackend: boto3 presigned put_object/get_object URLs
    LocalStorageBackend: TimestampSigner tokens served by LocalStorageView

Both raise core.exceptions.UpstreamFailureError when signing or lookups fail
so that services surface one retryable error code regardless of backend.

Usage:
    from chat.storage import get_storage_backend

    backend = get_storage_backend()
    grant = backend.create_upload_grant(path, "image/png")
    # -> SignedGrant(url=..., token=..., expires_in_seconds=300)
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from urllib.parse import urlencode

from django.conf import settings
from django.core import signing
from django.core.files.storage import FileSystemStorage
from django.urls import reverse

from chat.constants import ATTACHMENT_CONFIG
from core.exceptions import GrantExpiredError, NotFoundError, UpstreamFailureError

logger = logging.getLogger(__name__)


@dataclass
class SignedGrant:
    """
    A time-limited capability to upload or download one object.

    Attributes:
        url: Where the client sends the request
        method: HTTP method the grant is valid for
        token: Opaque token (None when embedded in the URL, as for S3)
        expires_in_seconds: Lifetime of the grant
    """

    url: str
    method: str
    expires_in_seconds: int
    token: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)


def upload_ttl() -> int:
    return getattr(
        settings, "CHAT_UPLOAD_URL_TTL_SECONDS", ATTACHMENT_CONFIG.UPLOAD_URL_TTL_SECONDS
    )


def download_ttl() -> int:
    return getattr(
        settings,
        "CHAT_DOWNLOAD_URL_TTL_SECONDS",
        ATTACHMENT_CONFIG.DOWNLOAD_URL_TTL_SECONDS,
    )


class StorageBackend(ABC):
    """Interface shared by every attachment storage backend."""

    @abstractmethod
    def create_upload_grant(self, storage_path: str, content_type: str) -> SignedGrant:
        """Issue a grant to PUT the bytes of storage_path."""

    @abstractmethod
    def create_download_grant(self, storage_path: str) -> SignedGrant:
        """Issue a grant to GET the bytes of storage_path."""

    @abstractmethod
    def exists(self, storage_path: str) -> bool:
        """Whether bytes have been uploaded for storage_path."""


# =============================================================================
# S3
# =============================================================================


class S3StorageBackend(StorageBackend):
    """
    Presigned S3 URLs.

    Note: boto3 is imported lazily so that local development without AWS
    credentials can load this module.
    """

    def __init__(self, bucket_name: str | None = None) -> None:
        self.bucket_name = bucket_name or settings.CHAT_STORAGE_BUCKET
        self._s3_client = None

    @property
    def s3_client(self):
        """Get or create S3 client."""
        if self._s3_client is None:
            import boto3

            self._s3_client = boto3.client("s3")
        return self._s3_client

    def _presign(self, operation: str, params: dict, expires_in: int) -> str:
        from botocore.exceptions import BotoCoreError, ClientError

        try:
            return self.s3_client.generate_presigned_url(
                operation,
                Params={"Bucket": self.bucket_name, **params},
                ExpiresIn=expires_in,
            )
        except (BotoCoreError, ClientError) as e:
            raise UpstreamFailureError(
                "Could not sign storage URL",
                details={"operation": operation},
            ) from e

    def create_upload_grant(self, storage_path: str, content_type: str) -> SignedGrant:
        expires_in = upload_ttl()
        params = {"Key": storage_path}
        if content_type:
            params["ContentType"] = content_type
        url = self._presign("put_object", params, expires_in)
        return SignedGrant(url=url, method="PUT", expires_in_seconds=expires_in)

    def create_download_grant(self, storage_path: str) -> SignedGrant:
        expires_in = download_ttl()
        url = self._presign("get_object", {"Key": storage_path}, expires_in)
        return SignedGrant(url=url, method="GET", expires_in_seconds=expires_in)

    def exists(self, storage_path: str) -> bool:
        from botocore.exceptions import BotoCoreError, ClientError

        try:
            self.s3_client.head_object(Bucket=self.bucket_name, Key=storage_path)
            return True
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            if code in ("404", "NoSuchKey", "NotFound"):
                return False
            raise UpstreamFailureError("Could not check stored object") from e
        except BotoCoreError as e:
            raise UpstreamFailureError("Could not check stored object") from e


# =============================================================================
# Local filesystem
# =============================================================================


class LocalStorageBackend(StorageBackend):
    """
    Filesystem storage for development and tests.

    Grants are TimestampSigner tokens carrying the path, the operation and
    the lifetime. LocalStorageView checks them before reading or writing.
    """

    SALT = "chat.storage"

    def __init__(self, location: str | None = None) -> None:
        self.storage = FileSystemStorage(
            location=location or str(settings.MEDIA_ROOT / "chat"),
        )
        self.signer = signing.TimestampSigner(salt=self.SALT)

    def _grant(self, storage_path: str, operation: str, expires_in: int) -> SignedGrant:
        token = self.signer.sign_object(
            {"path": storage_path, "op": operation, "ttl": expires_in}
        )
        url = reverse("chat:storage", kwargs={"storage_path": storage_path})
        url = f"{url}?{urlencode({'token': token})}"
        return SignedGrant(
            url=url,
            method=operation,
            token=token,
            expires_in_seconds=expires_in,
        )

    def create_upload_grant(self, storage_path: str, content_type: str) -> SignedGrant:
        return self._grant(storage_path, "PUT", upload_ttl())

    def create_download_grant(self, storage_path: str) -> SignedGrant:
        return self._grant(storage_path, "GET", download_ttl())

    def verify(self, token: str, storage_path: str, operation: str) -> None:
        """
        Check a token against the requested path and operation.

        Raises:
            GrantExpiredError: The token is genuine but past its lifetime
            NotFoundError: The token is forged or issued for another object
        """
        try:
            claims = self.signer.unsign_object(token)
            self.signer.unsign_object(token, max_age=claims["ttl"])
        except signing.SignatureExpired as e:
            raise GrantExpiredError("Storage grant has expired") from e
        except (signing.BadSignature, KeyError, TypeError) as e:
            raise NotFoundError("Storage grant is not valid") from e

        if claims.get("path") != storage_path or claims.get("op") != operation:
            raise NotFoundError("Storage grant is not valid")

    def save(self, storage_path: str, content) -> None:
        if self.storage.exists(storage_path):
            self.storage.delete(storage_path)
        self.storage.save(storage_path, content)

    def open(self, storage_path: str):
        return self.storage.open(storage_path, "rb")

    def exists(self, storage_path: str) -> bool:
        try:
            return self.storage.exists(storage_path)
        except OSError as e:
            raise UpstreamFailureError("Could not check stored object") from e


def is_s3_storage() -> bool:
    return getattr(settings, "CHAT_STORAGE_BACKEND", "local") == "s3"


def get_storage_backend() -> StorageBackend:
    """
    Get the attachment storage backend for the current configuration.

    Returns S3StorageBackend when CHAT_STORAGE_BACKEND is "s3" and
    LocalStorageBackend otherwise.
    """
    if is_s3_storage():
        return S3StorageBackend()
    return LocalStorageBackend()
