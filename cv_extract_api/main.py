"""FastAPI application entrypoint for CV Extract API."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_fastapi_instrumentator import Instrumentator
from starlette.exceptions import HTTPException as StarletteHTTPException

from cv_extract_api import __version__
from cv_extract_api.config import get_settings
from cv_extract_api.errors import CVProcessingError, RateLimitExceeded
from cv_extract_api.model_invoker import close_model_client, get_model_client
from cv_extract_api.models import (
    ErrorResponse,
    HealthResponse,
    ProcessCVRequest,
    ProcessCVResponse,
)
from cv_extract_api.observability import (
    extraction_failures_total,
    generate_trace_id,
    set_trace_id,
)
from cv_extract_api.pipeline import ExtractionPipeline, get_pipeline
from cv_extract_api.rate_limiter import client_key_from_request, get_rate_limiter

settings = get_settings()

logging.basicConfig(format="%(message)s", level=settings.log_level)

# Configure structlog
structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan handler for startup/shutdown."""
    logger.info(
        "Starting CV Extract API",
        version=__version__,
        provider=settings.ai_provider,
        model=settings.active_model,
    )

    try:
        await get_model_client()
        logger.info("Model client initialized")
    except Exception as e:
        logger.warning("Failed to initialize model client", error=str(e))

    yield

    logger.info("Shutting down CV Extract API")
    await close_model_client()


# Create FastAPI app
app = FastAPI(
    title="CV Extract API",
    description="Extracts a structured profile and matching job posting from a PDF resume",
    version=__version__,
    lifespan=lifespan,
)

if settings.cors_enabled:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origin_list,
        allow_methods=["POST", "OPTIONS"],
        allow_headers=["Content-Type"],
        max_age=86400,
    )


# Trace ID middleware for request correlation
@app.middleware("http")
async def trace_id_middleware(request: Request, call_next):
    """Add trace ID to every request for log correlation."""
    trace_id = request.headers.get("X-Trace-ID", generate_trace_id())
    set_trace_id(trace_id)

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(trace_id=trace_id)

    response = await call_next(request)

    response.headers["X-Trace-ID"] = trace_id
    return response


# Add Prometheus metrics
Instrumentator().instrument(app).expose(app)


# =============================================================================
# Error Mapping
# =============================================================================


def _error_response(
    status_code: int,
    message: str,
    detail: str | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    body = ErrorResponse(message=message)
    if detail and get_settings().is_development:
        body.error = detail
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(exclude_none=True),
        headers=headers,
    )


@app.exception_handler(CVProcessingError)
async def processing_error_handler(request: Request, exc: CVProcessingError) -> JSONResponse:
    """Single exit point for every pipeline failure."""
    extraction_failures_total.labels(kind=exc.kind).inc()
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        "CV process failed",
        kind=exc.kind,
        status=exc.status_code,
        error=exc.detail,
        error_type=type(exc).__name__,
    )

    headers = None
    if isinstance(exc, RateLimitExceeded):
        headers = {"Retry-After": str(exc.retry_after_seconds)}
    return _error_response(exc.status_code, exc.user_message, exc.detail, headers)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Render routing errors (404, 405) with the same body shape."""
    message = "Method not allowed" if exc.status_code == 405 else str(exc.detail)
    return _error_response(exc.status_code, message, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed JSON or wrongly typed fields are client errors, not 422s."""
    errors = exc.errors()
    logger.warning("Request body failed validation", errors=len(errors))
    first = errors[0] if errors else {}
    detail = f"{'.'.join(str(p) for p in first.get('loc', ()))}: {first.get('msg', '')}"
    return _error_response(400, "Invalid request body", detail)


# =============================================================================
# Health Endpoints
# =============================================================================


@app.get("/health", response_model=HealthResponse)
@app.get("/api/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Report configuration health of the service."""
    current = get_settings()
    ready = current.has_api_key or current.mock_ai

    return HealthResponse(
        status="healthy" if ready else "degraded",
        provider=current.ai_provider,
        model=current.active_model,
        ai_configured=current.has_api_key,
        mock_mode=current.mock_ai,
        rate_limited_clients=get_rate_limiter().count(),
        version=__version__,
    )


# =============================================================================
# Extraction Endpoint
# =============================================================================


@app.options("/api/processCV", include_in_schema=False)
async def process_cv_preflight() -> Response:
    """Answer bare OPTIONS requests (CORS preflights are handled by the middleware)."""
    return Response(status_code=200)


@app.post(
    "/api/processCV",
    response_model=ProcessCVResponse,
    responses={
        400: {"model": ErrorResponse},
        429: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
        504: {"model": ErrorResponse},
    },
)
async def process_cv(
    request: Request,
    body: ProcessCVRequest | None = None,
    pipeline: ExtractionPipeline = Depends(get_pipeline),
) -> JSONResponse:
    """
    Extract structured CV data and a matching job posting from a PDF.

    - **pdfBase64**: Base64-encoded PDF (a `data:application/pdf;base64,` prefix is accepted)

    Returns:
    - **cvData**: Candidate profile
    - **jobData**: Synthetic job posting matching the profile
    """
    client_key = client_key_from_request(request)
    logger.info("CV process request received", client_key=client_key)

    try:
        result = await pipeline.run(body, client_key)
    except CVProcessingError:
        raise
    except Exception as e:
        logger.exception("Unexpected error while processing CV")
        raise CVProcessingError(f"{type(e).__name__}: {e}") from e

    return JSONResponse(content=result.data)


# =============================================================================
# Entry point
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "cv_extract_api.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.is_development,
    )
