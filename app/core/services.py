"""
Result type and base class shared by every messaging service.

ServiceResult carries either the data of a successful operation or a failure
with a machine-readable code from core.exceptions.ErrorCode. Views turn a
failure into the {ok: false, error, error_code} envelope with to_response()
and pick the HTTP status from status_code.

Expected failures (blocks, missing threads, bad input) are returned, never
raised. Storage and network errors arrive as core.exceptions instances and
are converted with handle_exception() where the service catches them.

Usage:
    from core.services import BaseService, ServiceResult

    class ThreadService(BaseService):
        @classmethod
        def create_group(cls, creator, title, member_ids) -> ServiceResult[Thread]:
            if not title.strip():
                return ServiceResult.failure(
                    "Title is required", error_code=ErrorCode.VALIDATION_ERROR
                )

            with cls.atomic():
                thread = Thread.objects.create(...)

            cls.get_logger().info(f"Created group {thread.id}")
            return ServiceResult.success(thread)
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Generic, TypeVar

from django.db import transaction

from core.exceptions import BaseApplicationError, ErrorCode, status_for_code

if TYPE_CHECKING:
    from collections.abc import Generator
    from typing import Any

T = TypeVar("T")


@dataclass
class ServiceResult(Generic[T]):
    """
    Outcome of a service call: data on success, a coded error otherwise.

    Truthiness follows success, so lookups read as
    "if not lookup: return lookup". Helpers that return
    "ServiceResult | None" must be compared against None instead.

    Attributes:
        success: Whether the operation succeeded
        data: Payload of a successful call
        error: Human-readable failure message
        error_code: One of core.exceptions.ErrorCode
        errors: Per-field messages for VALIDATION_ERROR failures
        details: Extra failure context the client can act on
    """

    success: bool
    data: T | None = None
    error: str | None = None
    error_code: str | None = None
    errors: dict[str, list[str]] | None = field(default=None)
    details: dict[str, Any] | None = field(default=None)

    @classmethod
    def success(cls, data: T) -> ServiceResult[T]:
        """Create a successful result."""
        return cls(success=True, data=data)

    @classmethod
    def failure(
        cls,
        error: str,
        error_code: str | None = None,
        errors: dict[str, list[str]] | None = None,
        details: dict[str, Any] | None = None,
    ) -> ServiceResult[T]:
        """
        Create a failed result.

        Args:
            error: Human-readable error message
            error_code: Machine-readable error code for client handling
            errors: Field-level errors (for validation failures)
            details: Rows the failed call still committed, for recovery
        """
        return cls(
            success=False,
            error=error,
            error_code=error_code,
            errors=errors,
            details=details,
        )

    @classmethod
    def from_exception(
        cls, exc: Exception, error_code: str | None = None
    ) -> ServiceResult[T]:
        """
        Create a failed result from an exception.

        Application errors keep their own message and code; anything else
        uses the exception text and the given (or derived) code.
        """
        if isinstance(exc, BaseApplicationError):
            return cls(
                success=False,
                error=exc.message,
                error_code=error_code or exc.error_code,
            )
        return cls(
            success=False,
            error=str(exc),
            error_code=error_code or exc.__class__.__name__.upper(),
        )

    @property
    def status_code(self) -> int:
        """HTTP status matching this result (200 on success)."""
        if self.success:
            return 200
        return status_for_code(self.error_code)

    def to_response(self) -> dict[str, Any]:
        """
        Convert a failed result to the API error envelope.

        Successful results are shaped by the view, which knows the payload
        key the client expects.
        """
        if self.success:
            return {"ok": True}

        response: dict[str, Any] = {
            "ok": False,
            "error": self.error,
        }
        if self.error_code:
            response["error_code"] = self.error_code
        if self.errors:
            response["errors"] = self.errors
        if self.details:
            response["details"] = self.details
        return response

    def __bool__(self) -> bool:
        return self.success


class BaseService:
    """
    Stateless base for ThreadService, MessageService and the other services.

    Subclasses expose classmethods only. Programming errors propagate;
    IntegrityError races are handled where the unique constraint lives.
    """

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """Return a logger named after the service class."""
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @classmethod
    @contextmanager
    def atomic(cls) -> Generator[None, None, None]:
        """
        Execute operations in a database transaction.

        Thin wrapper around transaction.atomic() that makes transaction
        boundaries explicit in service code.
        """
        with transaction.atomic():
            yield

    @classmethod
    def handle_exception(
        cls,
        exc: Exception,
        context: str = "",
        log_level: int = logging.ERROR,
    ) -> ServiceResult:
        """
        Log an infrastructure exception and convert it to a ServiceResult.

        Example:
            try:
                grant = backend.create_upload_grant(path, content_type)
            except UpstreamFailureError as e:
                return cls.handle_exception(e, "signing upload url")
        """
        message = f"{context}: {exc}" if context else str(exc)
        cls.get_logger().log(log_level, message, exc_info=True)
        return ServiceResult.from_exception(exc)

    @classmethod
    def validate_required(cls, **kwargs) -> ServiceResult | None:
        """
        Validate that required fields are provided.

        Returns a VALIDATION_ERROR failure naming every missing field, or
        None when all values are present. Strings made of whitespace count
        as missing.

        Example:
            validation = cls.validate_required(thread_id=thread_id)
            if validation is not None:
                return validation
        """
        errors = {}
        for field_name, value in kwargs.items():
            if value is None or (isinstance(value, str) and not value.strip()):
                errors[field_name] = ["This field is required."]

        if errors:
            missing = ", ".join(errors)
            return ServiceResult.failure(
                f"Missing required field: {missing}",
                error_code=ErrorCode.VALIDATION_ERROR,
                errors=errors,
            )
        return None
