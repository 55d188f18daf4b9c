"""
Tests for ServiceResult and BaseService.

These tests verify that:
- Failures carry their code into the API envelope and HTTP status
- Exceptions convert to failures without losing the application code
- validate_required names every missing field
"""

import logging

import pytest

from core.exceptions import ErrorCode, NotFoundError, UpstreamFailureError
from core.services import BaseService, ServiceResult


class ExampleService(BaseService):
    pass


class TestServiceResult:
    def test_success(self):
        result = ServiceResult.success({"id": 1})

        assert result
        assert result.status_code == 200
        assert result.to_response() == {"ok": True}

    def test_failure_envelope(self):
        result = ServiceResult.failure(
            "Thread not found",
            error_code=ErrorCode.NOT_FOUND,
        )

        assert not result
        assert result.status_code == 404
        assert result.to_response() == {
            "ok": False,
            "error": "Thread not found",
            "error_code": "NOT_FOUND",
        }

    def test_failure_with_field_errors(self):
        result = ServiceResult.failure(
            "Missing required field: title",
            error_code=ErrorCode.VALIDATION_ERROR,
            errors={"title": ["This field is required."]},
        )

        assert result.status_code == 400
        assert result.to_response()["errors"] == {"title": ["This field is required."]}

    def test_failure_with_details(self):
        result = ServiceResult.failure(
            "Could not sign upload URL",
            error_code=ErrorCode.UPSTREAM_FAILURE,
            details={"attachment_ids": ["a-1"]},
        )

        assert result.to_response()["details"] == {"attachment_ids": ["a-1"]}
        assert "details" not in ServiceResult.failure("x").to_response()

    def test_from_application_error_keeps_code(self):
        result = ServiceResult.from_exception(UpstreamFailureError("Could not sign URL"))

        assert result.error == "Could not sign URL"
        assert result.error_code == ErrorCode.UPSTREAM_FAILURE
        assert result.status_code == 502

    def test_from_other_exception(self):
        result = ServiceResult.from_exception(KeyError("x"))

        assert result.error_code == "KEYERROR"


class TestBaseService:
    def test_logger_named_after_service(self):
        assert ExampleService.get_logger().name == f"{__name__}.ExampleService"

    def test_handle_exception_logs_and_converts(self, caplog):
        with caplog.at_level(logging.ERROR):
            result = ExampleService.handle_exception(
                NotFoundError("Attachment not found"), "issuing download grant"
            )

        assert result.error_code == ErrorCode.NOT_FOUND
        assert "issuing download grant" in caplog.text

    @pytest.mark.parametrize("blank", [None, "", "   "])
    def test_validate_required_missing(self, blank):
        result = ExampleService.validate_required(title=blank, content="ok")

        assert result is not None
        assert result.error_code == ErrorCode.VALIDATION_ERROR
        assert result.errors == {"title": ["This field is required."]}

    def test_validate_required_names_every_field(self):
        result = ExampleService.validate_required(title=None, content="")

        assert set(result.errors) == {"title", "content"}

    def test_validate_required_ok(self):
        assert ExampleService.validate_required(title="Hi", content=0) is None
