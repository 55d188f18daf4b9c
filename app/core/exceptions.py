"""
Exception hierarchy and error taxonomy shared by services, views and clients.

Services return ServiceResult.failure(..., error_code=...) for expected
failures. Infrastructure adapters (object storage, the HTTP client) raise the
exceptions below. Both sides agree on the same machine-readable codes so that
an error produced deep in the storage layer reaches the client unchanged.

Exception Hierarchy:
    BaseApplicationError (base)
    ├── UnauthorizedError - No resolvable caller identity (401)
    ├── BlockedError - Block relation between the two parties (403)
    ├── NotAcceptingError - Target does not accept new chats (403)
    ├── ValidationError - Missing or malformed input (400)
    ├── PayloadTooLargeError - Attachment above the size limit (413)
    ├── PermissionDeniedError - Actor lacks permission (403)
    ├── NotFoundError - Resource missing or not visible (404)
    └── UpstreamFailureError - Storage / signing failure (502, retryable)
        └── GrantExpiredError - Signed grant used after expiry (410, retryable)

Usage:
    from core.exceptions import UpstreamFailureError

    try:
        url = client.generate_presigned_url(...)
    except ClientError as e:
        raise UpstreamFailureError("Could not sign upload URL") from e

    # Mapping codes back to exceptions (client side)
    raise exception_for_code(body["error_code"], body["error"])
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typing import Any


class ErrorCode:
    """Machine-readable error codes used in ServiceResult and API payloads."""

    UNAUTHORIZED = "UNAUTHORIZED"
    BLOCKED = "BLOCKED"
    NOT_ACCEPTING = "NOT_ACCEPTING"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    PAYLOAD_TOO_LARGE = "PAYLOAD_TOO_LARGE"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    UPSTREAM_FAILURE = "UPSTREAM_FAILURE"
    GRANT_EXPIRED = "GRANT_EXPIRED"


class BaseApplicationError(Exception):
    """
    Base exception for all application-specific errors.

    Attributes:
        message: Human-readable error description
        error_code: Machine-readable code for client-side handling
        details: Additional error context (field errors, metadata, etc.)
        status_code: HTTP status used when the error reaches the API
        retryable: Whether retrying the same request may succeed
    """

    default_error_code: str = "APPLICATION_ERROR"
    status_code: int = 500
    retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert exception to the API error envelope.

        Example:
            {"ok": False, "error": "User is blocked", "error_code": "BLOCKED"}
        """
        result: dict[str, Any] = {
            "ok": False,
            "error": self.message,
            "error_code": self.error_code,
        }
        if self.details:
            result["details"] = self.details
        return result

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code!r}, "
            f"details={self.details!r})"
        )


class UnauthorizedError(BaseApplicationError):
    """Raised when no caller identity can be resolved."""

    default_error_code = ErrorCode.UNAUTHORIZED
    status_code = 401


class BlockedError(BaseApplicationError):
    """Raised when a block relation exists between two users (either direction)."""

    default_error_code = ErrorCode.BLOCKED
    status_code = 403


class NotAcceptingError(BaseApplicationError):
    """Raised when the target user's settings disallow new direct chats."""

    default_error_code = ErrorCode.NOT_ACCEPTING
    status_code = 403


class ValidationError(BaseApplicationError):
    """
    Raised when input validation fails.

    Use for missing required fields (threadId, title, otherUserId), empty
    send payloads and groups with fewer than two members.
    """

    default_error_code = ErrorCode.VALIDATION_ERROR
    status_code = 400


class PayloadTooLargeError(BaseApplicationError):
    """Raised when an attachment exceeds the configured size limit."""

    default_error_code = ErrorCode.PAYLOAD_TOO_LARGE
    status_code = 413


class PermissionDeniedError(BaseApplicationError):
    """
    Raised when the actor lacks permission for an operation.

    Examples: editing another user's message, a plain member managing
    group membership.
    """

    default_error_code = ErrorCode.FORBIDDEN
    status_code = 403


class NotFoundError(BaseApplicationError):
    """Raised when a thread, message or attachment is missing or not visible."""

    default_error_code = ErrorCode.NOT_FOUND
    status_code = 404


class UpstreamFailureError(BaseApplicationError):
    """
    Raised when object storage or URL signing fails.

    Surfaced to clients as retryable: a failed send stays in the Failed
    state and can be retried by the user.
    """

    default_error_code = ErrorCode.UPSTREAM_FAILURE
    status_code = 502
    retryable = True


class GrantExpiredError(UpstreamFailureError):
    """Raised when a signed upload/download grant is used after it expired."""

    default_error_code = ErrorCode.GRANT_EXPIRED
    status_code = 410


EXCEPTIONS_BY_CODE: dict[str, type[BaseApplicationError]] = {
    exc.default_error_code: exc
    for exc in (
        UnauthorizedError,
        BlockedError,
        NotAcceptingError,
        ValidationError,
        PayloadTooLargeError,
        PermissionDeniedError,
        NotFoundError,
        UpstreamFailureError,
        GrantExpiredError,
    )
}


def status_for_code(error_code: str | None, default: int = 400) -> int:
    """Return the HTTP status for an error code (default for unknown codes)."""
    exc_class = EXCEPTIONS_BY_CODE.get(error_code or "")
    return exc_class.status_code if exc_class else default


def exception_for_code(
    error_code: str | None,
    message: str,
    details: dict[str, Any] | None = None,
) -> BaseApplicationError:
    """
    Build the exception matching an error code received over the wire.

    Unknown codes fall back to BaseApplicationError so callers can still
    inspect the original code.
    """
    exc_class = EXCEPTIONS_BY_CODE.get(error_code or "", BaseApplicationError)
    return exc_class(message, error_code=error_code, details=details)
