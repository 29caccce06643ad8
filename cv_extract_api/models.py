"""Pydantic models for API requests and responses."""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

# =============================================================================
# Extraction API Models
# =============================================================================


class ProcessCVRequest(BaseModel):
    """Request body for the CV processing endpoint."""

    model_config = ConfigDict(populate_by_name=True)

    pdf_base64: str | None = Field(
        default=None,
        alias="pdfBase64",
        description="Base64-encoded PDF, optionally prefixed with data:application/pdf;base64,",
    )


class ProcessCVResponse(BaseModel):
    """Successful extraction. Nested shapes follow the prompt contract and are not enforced."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    cv_data: dict[str, Any] = Field(..., alias="cvData", description="Candidate profile")
    job_data: dict[str, Any] = Field(..., alias="jobData", description="Synthetic job posting")


class ErrorResponse(BaseModel):
    """Error body returned for every failed request."""

    message: str = Field(..., description="User-facing error message")
    error: str | None = Field(default=None, description="Internal detail (development only)")


# =============================================================================
# Health API Models
# =============================================================================


class HealthResponse(BaseModel):
    """Response for health check endpoint."""

    status: Literal["healthy", "degraded"] = Field(..., description="Service status")
    provider: str = Field(..., description="Configured model provider")
    model: str = Field(..., description="Configured model identifier")
    ai_configured: bool = Field(..., description="Whether an API key is configured")
    mock_mode: bool = Field(..., description="Whether canned model output is served")
    rate_limited_clients: int = Field(..., description="Client keys tracked by the rate limiter")
    version: str = Field(..., description="API version")
