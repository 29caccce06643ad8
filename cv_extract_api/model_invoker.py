"""Bounded-time, bounded-retry invocation of the generative model."""

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Protocol, TypeVar

import structlog

from cv_extract_api.config import get_settings
from cv_extract_api.errors import (
    ModelTimeout,
    ModelTransientError,
    ModelUnavailable,
)
from cv_extract_api.gemini_client import GeminiClient
from cv_extract_api.observability import (
    log_model_request,
    log_model_response,
    model_retries_total,
)
from cv_extract_api.openrouter_client import OpenRouterClient
from cv_extract_api.validation import ExtractionRequest

logger = structlog.get_logger()

T = TypeVar("T")


class DeadlineExceeded(Exception):
    """Raised by with_deadline when the timer wins the race."""

    def __init__(self, seconds: float):
        self.seconds = seconds
        super().__init__(f"deadline of {seconds:g}s exceeded")


async def with_deadline(operation: Awaitable[T], seconds: float) -> T:
    """Race ``operation`` against a timer.

    Returns the operation's result if it finishes first, raises
    DeadlineExceeded otherwise. A losing operation is sent a cancel request
    and abandoned; it is never awaited, so a provider call that ignores
    cancellation may keep running (and billing) server-side.
    """
    task = asyncio.ensure_future(operation)
    try:
        done, _ = await asyncio.wait({task}, timeout=seconds)
    except asyncio.CancelledError:
        task.cancel()
        raise
    if task in done:
        return task.result()

    task.cancel()
    # Retrieve any late exception so it is not reported as never retrieved
    task.add_done_callback(lambda t: t.cancelled() or t.exception())
    raise DeadlineExceeded(seconds)


class ModelClient(Protocol):
    """A provider that turns a document and prompt into generated text."""

    provider: str
    model: str

    async def generate(self, request: ExtractionRequest, prompt: str) -> str:
        ...

    async def connect(self) -> None:
        ...

    async def close(self) -> None:
        ...


def backoff_delay(attempt: int, base: float, cap: float) -> float:
    """Exponential delay before retry number ``attempt`` (0-based), capped."""
    return min(cap, base * (2**attempt))


class ModelInvoker:
    """Calls a ModelClient under one overall deadline with transient-only retries.

    The deadline covers every attempt and backoff of an ``invoke`` call. A
    timeout ends the call immediately, and a transient failure is retried only
    if the backoff still leaves time before the deadline.
    """

    def __init__(
        self,
        client: ModelClient,
        timeout_seconds: float | None = None,
        max_attempts: int | None = None,
        backoff_base: float | None = None,
        backoff_cap: float | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the invoker.

        Args:
            client: Provider client.
            timeout_seconds: Deadline for the whole call. Defaults to config value.
            max_attempts: Total attempts for transient failures. Defaults to config value.
            backoff_base: First retry delay in seconds. Defaults to config value.
            backoff_cap: Maximum retry delay in seconds. Defaults to config value.
            sleep: Awaitable sleep, injectable for tests.
            clock: Monotonic time source in seconds, injectable for tests.
        """
        settings = get_settings()
        self.client = client
        self._timeout = timeout_seconds if timeout_seconds is not None else settings.ai_timeout_seconds
        self._max_attempts = max(
            1, max_attempts if max_attempts is not None else settings.model_max_attempts
        )
        self._backoff_base = (
            backoff_base if backoff_base is not None else settings.retry_backoff_base_seconds
        )
        self._backoff_cap = (
            backoff_cap if backoff_cap is not None else settings.retry_backoff_cap_seconds
        )
        self._sleep = sleep
        self._clock = clock

    @property
    def timeout_seconds(self) -> float:
        return self._timeout

    async def invoke(self, request: ExtractionRequest, prompt: str) -> str:
        """Return the model's raw text for ``request``.

        Raises:
            ModelTimeout: the deadline passed before the model answered.
            ModelUnavailable: transient failures persisted until attempts or time ran out.
            ModelFatalError, MissingCredential: raised immediately, never retried.
        """
        provider = self.client.provider
        deadline = self._clock() + self._timeout
        last_error: ModelTransientError | None = None
        attempts_made = 0

        for attempt in range(self._max_attempts):
            if attempt > 0:
                delay = backoff_delay(attempt - 1, self._backoff_base, self._backoff_cap)
                if deadline - self._clock() <= delay:
                    logger.warning(
                        "No time left for another model attempt",
                        provider=provider,
                        attempt=attempt + 1,
                        delay_seconds=delay,
                    )
                    break
                model_retries_total.labels(provider=provider, reason="transient").inc()
                logger.warning(
                    "Retrying model call",
                    provider=provider,
                    attempt=attempt + 1,
                    max_attempts=self._max_attempts,
                    delay_seconds=delay,
                )
                await self._sleep(delay)

            attempts_made += 1
            request_log = log_model_request(
                provider=provider,
                model=self.client.model,
                attempt=attempt + 1,
                document_bytes=request.size,
                prompt=prompt,
            )
            try:
                text = await with_deadline(
                    self.client.generate(request, prompt),
                    max(0.0, deadline - self._clock()),
                )
            except DeadlineExceeded as e:
                log_model_response(request_log, status="timeout", error=str(e))
                raise ModelTimeout(f"AI request timed out after {self._timeout:g}s") from e
            except ModelTransientError as e:
                log_model_response(request_log, status="transient", error=e.detail)
                last_error = e
                continue
            except asyncio.CancelledError:
                log_model_response(request_log, status="cancelled", error="request cancelled")
                raise
            except Exception as e:
                log_model_response(request_log, status="fatal", error=str(e))
                raise

            log_model_response(request_log, response_chars=len(text))
            return text

        raise ModelUnavailable(
            f"model unavailable after {attempts_made} attempts: {last_error.detail}"
        ) from last_error


# Global client instance
_model_client: ModelClient | None = None


def build_model_client() -> ModelClient:
    """Create the client for the configured provider."""
    settings = get_settings()
    if settings.ai_provider == "openrouter":
        return OpenRouterClient()
    return GeminiClient()


async def get_model_client() -> ModelClient:
    """Get or create the global model client instance."""
    global _model_client
    if _model_client is None:
        _model_client = build_model_client()
        await _model_client.connect()
    return _model_client


async def close_model_client() -> None:
    """Close the global model client."""
    global _model_client
    if _model_client:
        await _model_client.close()
        _model_client = None


def reset_model_client() -> None:
    """Reset the global model client (for testing)."""
    global _model_client
    _model_client = None
