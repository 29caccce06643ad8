"""Observability utilities: trace IDs, model call metrics, and payload logging.

This module provides:
- Trace ID generation and propagation via context vars
- Prometheus metrics for model calls (attempts, latency, retries)
- Prometheus counters for rate-limit rejections and pipeline failures
- Structured logging helpers for model request/response correlation
"""

import secrets
import time
from contextvars import ContextVar
from dataclasses import dataclass

import structlog
from prometheus_client import Counter, Gauge, Histogram

logger = structlog.get_logger()

# =============================================================================
# Trace ID Context
# =============================================================================

# Context variable for trace ID propagation across async calls
trace_id_ctx: ContextVar[str] = ContextVar("trace_id", default="")


def generate_trace_id() -> str:
    """Generate cryptographically secure trace ID for request tracking."""
    return secrets.token_hex(16)


def get_trace_id() -> str:
    """Get current trace ID from context, or empty string if not set."""
    return trace_id_ctx.get()


def set_trace_id(trace_id: str) -> None:
    """Set trace ID in context."""
    trace_id_ctx.set(trace_id)


# =============================================================================
# Prometheus Metrics
# =============================================================================

model_requests_total = Counter(
    "cv_model_requests_total",
    "Total model API attempts",
    ["provider", "model", "status"],  # status: success, timeout, transient, fatal, cancelled
)

model_latency_seconds = Histogram(
    "cv_model_latency_seconds",
    "Model response latency per attempt in seconds",
    ["provider", "model"],
    buckets=[1.0, 2.0, 5.0, 10.0, 20.0, 30.0, 45.0, 60.0, 90.0],
)

model_retries_total = Counter(
    "cv_model_retries_total",
    "Model attempts retried after a failure",
    ["provider", "reason"],  # reason: transient, content
)

model_active_requests = Gauge(
    "cv_model_active_requests",
    "Currently in-flight model attempts",
    ["provider"],
)

document_size_bytes = Histogram(
    "cv_document_size_bytes",
    "Decoded size of submitted PDF documents",
    buckets=[10_000, 50_000, 100_000, 250_000, 500_000, 1_000_000, 2_000_000, 5_000_000],
)

rate_limit_rejections_total = Counter(
    "cv_rate_limit_rejections_total",
    "Requests rejected by the rate limiter",
    ["reason"],  # reason: ceiling, blocked
)

extraction_failures_total = Counter(
    "cv_extraction_failures_total",
    "Pipeline failures by error kind",
    ["kind"],
)


# =============================================================================
# Model Call Logging
# =============================================================================


@dataclass
class ModelRequestLog:
    """Structured log data for one model attempt."""

    trace_id: str
    provider: str
    model: str
    attempt: int
    document_bytes: int
    prompt_chars: int
    timestamp: float = 0.0

    def __post_init__(self) -> None:
        if self.timestamp == 0.0:
            self.timestamp = time.time()


def log_model_request(
    provider: str,
    model: str,
    attempt: int,
    document_bytes: int,
    prompt: str,
) -> ModelRequestLog:
    """Log a model attempt and mark it in flight.

    Returns ModelRequestLog for correlation with the response.
    """
    log_data = ModelRequestLog(
        trace_id=get_trace_id(),
        provider=provider,
        model=model,
        attempt=attempt,
        document_bytes=document_bytes,
        prompt_chars=len(prompt),
    )

    logger.info(
        "model_request",
        trace_id=log_data.trace_id,
        provider=provider,
        model=model,
        attempt=attempt,
        document_bytes=document_bytes,
        prompt_chars=log_data.prompt_chars,
    )

    model_active_requests.labels(provider=provider).inc()
    return log_data


def log_model_response(
    request_log: ModelRequestLog,
    status: str = "success",
    response_chars: int = 0,
    error: str | None = None,
) -> None:
    """Log the outcome of a model attempt with metrics and correlation."""
    latency_ms = int((time.time() - request_log.timestamp) * 1000)

    if error:
        logger.error(
            "model_response",
            trace_id=request_log.trace_id,
            provider=request_log.provider,
            model=request_log.model,
            attempt=request_log.attempt,
            status=status,
            latency_ms=latency_ms,
            error=error,
        )
    else:
        logger.info(
            "model_response",
            trace_id=request_log.trace_id,
            provider=request_log.provider,
            model=request_log.model,
            attempt=request_log.attempt,
            status=status,
            latency_ms=latency_ms,
            response_chars=response_chars,
        )

    model_active_requests.labels(provider=request_log.provider).dec()
    model_requests_total.labels(
        provider=request_log.provider,
        model=request_log.model,
        status=status,
    ).inc()
    model_latency_seconds.labels(
        provider=request_log.provider,
        model=request_log.model,
    ).observe(latency_ms / 1000.0)


def preview(text: str, limit: int = 200) -> str:
    """Bounded preview of untrusted text for logs."""
    return text[:limit] + ("..." if len(text) > limit else "")
