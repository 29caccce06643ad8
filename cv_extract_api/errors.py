"""Error taxonomy for the CV extraction pipeline.

Every failure the pipeline can produce is a ``CVProcessingError`` subclass that
knows its HTTP status and the sanitized message shown to the caller. The
``detail`` string is for server-side logs (and the development-only ``error``
field); it must never be the only place a user-facing message lives.
"""


class CVProcessingError(Exception):
    """Base exception for all pipeline failures."""

    status_code: int = 500
    user_message: str = "Unable to process CV. An unexpected error occurred."
    kind: str = "unexpected"

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.user_message
        super().__init__(self.detail)


# =============================================================================
# Request errors (400)
# =============================================================================


class RequestBodyMissing(CVProcessingError):
    """Raised when the POST body is absent or not a JSON object."""

    status_code = 400
    user_message = "Request body is missing"
    kind = "request_body_missing"


class MissingField(CVProcessingError):
    """Raised when the pdfBase64 field is absent or empty."""

    status_code = 400
    user_message = "Missing required field: pdfBase64"
    kind = "missing_field"


class InvalidEncoding(CVProcessingError):
    """Raised when the payload is not valid base64."""

    status_code = 400
    user_message = "Invalid pdfBase64: contains non-base64 characters"
    kind = "invalid_encoding"


class PayloadTooLarge(CVProcessingError):
    """Raised when the estimated decoded size exceeds the configured ceiling."""

    status_code = 400
    user_message = "PDF size exceeds the allowed limit"
    kind = "payload_too_large"

    def __init__(self, limit_mb: float, detail: str | None = None):
        self.limit_mb = limit_mb
        self.user_message = f"PDF size exceeds limit of {limit_mb:g}MB"
        super().__init__(detail)


class MalformedDocument(CVProcessingError):
    """Raised when the decoded bytes do not look like a PDF."""

    status_code = 400
    user_message = "Uploaded file does not appear to be a valid PDF"
    kind = "malformed_document"


# =============================================================================
# Abuse control (429)
# =============================================================================


class RateLimitExceeded(CVProcessingError):
    """Raised when a client exceeds its request budget or is blocked."""

    status_code = 429
    user_message = "Too many requests. Please try again later."
    kind = "rate_limited"

    def __init__(self, retry_after_seconds: int, detail: str | None = None):
        self.retry_after_seconds = retry_after_seconds
        self.user_message = (
            f"Too many requests. Please try again in {retry_after_seconds} seconds."
        )
        super().__init__(detail)


# =============================================================================
# Model invocation errors
# =============================================================================


class MissingCredential(CVProcessingError):
    """Raised when the provider API key is not configured."""

    status_code = 500
    user_message = "Service configuration error. Please contact administrator."
    kind = "missing_credential"


class ModelTimeout(CVProcessingError):
    """Raised when every attempt ran past its deadline."""

    status_code = 504
    user_message = "Request timed out. Please try a smaller PDF file."
    kind = "timeout"


class ModelTransientError(CVProcessingError):
    """A provider failure that is likely to succeed on retry.

    Network errors, provider rate limiting and overload (429/5xx) land here.
    """

    status_code = 503
    user_message = "AI service is temporarily busy. Please try again in 30 seconds."
    kind = "transient"


class ModelUnavailable(ModelTransientError):
    """Raised when transient failures persisted through every retry."""

    kind = "unavailable"


class ModelFatalError(CVProcessingError):
    """A provider failure that retrying will not fix (bad request, blocked content)."""

    status_code = 502
    user_message = "AI service error. Please try again later."
    kind = "fatal"


# =============================================================================
# Response content errors (502)
# =============================================================================


class ContentError(CVProcessingError):
    """Base for failures to turn model text into an ExtractionResult."""

    status_code = 502
    user_message = "AI service returned invalid data format. Please try again."
    kind = "content"


class NoJsonFound(ContentError):
    """Raised when the model output holds no JSON object."""

    kind = "no_json"


class ParseError(ContentError):
    """Raised when the JSON span fails to parse even after repair.

    Both texts are kept for diagnostics and are never returned to callers.
    """

    kind = "parse_error"

    def __init__(self, detail: str, original: str = "", repaired: str = ""):
        self.original = original
        self.repaired = repaired
        super().__init__(detail)


class IncompleteExtraction(ContentError):
    """Raised when the parsed object lacks cvData or jobData."""

    kind = "incomplete"
