"""
Tests for the error taxonomy in core.exceptions.

These tests verify that:
- Every error code maps to one exception class and HTTP status
- Codes received over the wire rebuild the matching exception
- Upstream failures are marked retryable
"""

import pytest

from core.exceptions import (
    BaseApplicationError,
    BlockedError,
    ErrorCode,
    GrantExpiredError,
    NotAcceptingError,
    NotFoundError,
    PayloadTooLargeError,
    PermissionDeniedError,
    UnauthorizedError,
    UpstreamFailureError,
    ValidationError,
    exception_for_code,
    status_for_code,
)


class TestStatusForCode:
    @pytest.mark.parametrize(
        "code,status",
        [
            (ErrorCode.UNAUTHORIZED, 401),
            (ErrorCode.BLOCKED, 403),
            (ErrorCode.NOT_ACCEPTING, 403),
            (ErrorCode.VALIDATION_ERROR, 400),
            (ErrorCode.PAYLOAD_TOO_LARGE, 413),
            (ErrorCode.FORBIDDEN, 403),
            (ErrorCode.NOT_FOUND, 404),
            (ErrorCode.UPSTREAM_FAILURE, 502),
            (ErrorCode.GRANT_EXPIRED, 410),
        ],
    )
    def test_known_codes(self, code, status):
        assert status_for_code(code) == status

    def test_unknown_code_uses_default(self):
        assert status_for_code("SOMETHING_NEW") == 400
        assert status_for_code(None, default=500) == 500


class TestExceptionForCode:
    @pytest.mark.parametrize(
        "code,exc_class",
        [
            (ErrorCode.UNAUTHORIZED, UnauthorizedError),
            (ErrorCode.BLOCKED, BlockedError),
            (ErrorCode.NOT_ACCEPTING, NotAcceptingError),
            (ErrorCode.VALIDATION_ERROR, ValidationError),
            (ErrorCode.PAYLOAD_TOO_LARGE, PayloadTooLargeError),
            (ErrorCode.FORBIDDEN, PermissionDeniedError),
            (ErrorCode.NOT_FOUND, NotFoundError),
            (ErrorCode.UPSTREAM_FAILURE, UpstreamFailureError),
            (ErrorCode.GRANT_EXPIRED, GrantExpiredError),
        ],
    )
    def test_rebuilds_matching_class(self, code, exc_class):
        exc = exception_for_code(code, "boom")

        assert type(exc) is exc_class
        assert exc.error_code == code
        assert exc.message == "boom"

    def test_unknown_code_keeps_original(self):
        exc = exception_for_code("SOMETHING_NEW", "boom", details={"field": ["x"]})

        assert type(exc) is BaseApplicationError
        assert exc.error_code == "SOMETHING_NEW"
        assert exc.details == {"field": ["x"]}


class TestBaseApplicationError:
    def test_to_dict(self):
        exc = ValidationError("Title is required", details={"title": ["required"]})

        assert exc.to_dict() == {
            "ok": False,
            "error": "Title is required",
            "error_code": "VALIDATION_ERROR",
            "details": {"title": ["required"]},
        }

    def test_str_includes_code(self):
        assert str(NotFoundError("Thread not found")) == "[NOT_FOUND] Thread not found"

    def test_retryable(self):
        """
        Only storage and network failures are worth retrying as-is.

        Why it matters: Clients offer "retry" on Failed messages only when
        the failure is transient.
        """
        assert UpstreamFailureError("down").retryable is True
        assert GrantExpiredError("expired").retryable is True
        assert ValidationError("bad").retryable is False
