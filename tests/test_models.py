"""Tests for Pydantic models."""

import pytest
from pydantic import ValidationError

from cv_extract_api.models import (
    ErrorResponse,
    HealthResponse,
    ProcessCVRequest,
    ProcessCVResponse,
)


class TestProcessCVRequest:
    """Tests for ProcessCVRequest model."""

    def test_alias(self):
        """Test the wire name populates the field."""
        request = ProcessCVRequest.model_validate({"pdfBase64": "QUJD"})
        assert request.pdf_base64 == "QUJD"

    def test_populate_by_name(self):
        """Test the Python name also works."""
        assert ProcessCVRequest(pdf_base64="QUJD").pdf_base64 == "QUJD"

    def test_field_optional(self):
        """Test absence is left for the validator to report."""
        assert ProcessCVRequest.model_validate({}).pdf_base64 is None

    def test_extra_fields_ignored(self):
        """Test unknown fields do not fail parsing."""
        request = ProcessCVRequest.model_validate({"pdfBase64": "QUJD", "name": "cv.pdf"})
        assert request.pdf_base64 == "QUJD"

    def test_rejects_non_string(self):
        """Test a non-string payload fails model validation."""
        with pytest.raises(ValidationError):
            ProcessCVRequest.model_validate({"pdfBase64": 42})


class TestProcessCVResponse:
    """Tests for ProcessCVResponse model."""

    def test_dump_by_alias(self):
        """Test both objects serialize under their wire names."""
        response = ProcessCVResponse(cvData={"a": 1}, jobData={"b": 2})
        assert response.model_dump(by_alias=True) == {"cvData": {"a": 1}, "jobData": {"b": 2}}

    def test_extra_keys_kept(self):
        """Test additional top-level keys survive."""
        response = ProcessCVResponse.model_validate({"cvData": {}, "jobData": {}, "meta": {"x": 1}})
        assert response.model_dump(by_alias=True)["meta"] == {"x": 1}

    def test_requires_both_objects(self):
        """Test both objects are required."""
        with pytest.raises(ValidationError):
            ProcessCVResponse.model_validate({"cvData": {}})


class TestErrorResponse:
    """Tests for ErrorResponse model."""

    def test_message_only(self):
        """Test the internal detail is omitted when unset."""
        body = ErrorResponse(message="Method not allowed")
        assert body.model_dump(exclude_none=True) == {"message": "Method not allowed"}

    def test_with_detail(self):
        """Test the detail field."""
        body = ErrorResponse(message="oops", error="KeyError: cvData")
        assert body.error == "KeyError: cvData"


class TestHealthResponse:
    """Tests for HealthResponse model."""

    def test_valid(self):
        """Test a complete health body."""
        health = HealthResponse(
            status="healthy",
            provider="gemini",
            model="gemini-2.5-flash",
            ai_configured=True,
            mock_mode=False,
            rate_limited_clients=0,
            version="0.3.0",
        )
        assert health.status == "healthy"

    def test_invalid_status(self):
        """Test unknown status values are rejected."""
        with pytest.raises(ValidationError):
            HealthResponse(
                status="unknown",
                provider="gemini",
                model="m",
                ai_configured=False,
                mock_mode=False,
                rate_limited_clients=0,
                version="0.3.0",
            )
