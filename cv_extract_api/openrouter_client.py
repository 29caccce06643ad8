"""OpenRouter client for document extraction (OpenAI-compatible chat API)."""

from typing import Any

import httpx
import structlog

from cv_extract_api.config import get_settings
from cv_extract_api.errors import (
    MissingCredential,
    ModelFatalError,
    ModelTransientError,
)
from cv_extract_api.prompts import MOCK_MODEL_RESPONSE
from cv_extract_api.validation import ExtractionRequest

logger = structlog.get_logger()


class OpenRouterClient:
    """Async client that sends a PDF plus prompt to OpenRouter."""

    provider = "openrouter"

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        model: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ):
        """Initialize the OpenRouter client.

        Args:
            api_key: OpenRouter API key. Defaults to config value.
            base_url: API base URL. Defaults to config value.
            model: Model ID to use. Defaults to config value.
            max_tokens: Maximum tokens in response. Defaults to config value.
            temperature: Sampling temperature. Defaults to config value.
        """
        settings = get_settings()
        self._api_key = api_key or settings.openrouter_api_key
        self._base_url = base_url or settings.openrouter_base_url
        self.model = model or settings.openrouter_model
        self._max_tokens = max_tokens or settings.llm_max_tokens
        self._temperature = temperature if temperature is not None else settings.llm_temperature
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "OpenRouterClient":
        """Enter async context."""
        await self.connect()
        return self

    async def __aexit__(self, _exc_type: Any, _exc_val: Any, _exc_tb: Any) -> None:
        """Exit async context."""
        await self.close()

    async def connect(self) -> None:
        """Create the HTTP client.

        Skipped when no key is configured; requests are then either served by
        the mock path or rejected with MissingCredential.
        """
        if not self.is_configured:
            logger.info("OpenRouter client has no API key, skipping HTTP client creation")
            return

        # No read timeout here: the invoker's deadline bounds every attempt
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers={
                "Authorization": f"Bearer {self._api_key}",
                "Content-Type": "application/json",
                "X-Title": "CV Extract API",
            },
            timeout=httpx.Timeout(None, connect=10.0),
        )
        logger.info("OpenRouter client connected", model=self.model)

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.info("OpenRouter client closed")

    def _build_messages(self, request: ExtractionRequest, prompt: str) -> list[dict[str, Any]]:
        """Build a single user message carrying the prompt and the PDF file part."""
        return [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": prompt},
                    {
                        "type": "file",
                        "file": {
                            "filename": "cv.pdf",
                            "file_data": f"data:{request.mime_type};base64,{request.base64}",
                        },
                    },
                ],
            }
        ]

    async def generate(self, request: ExtractionRequest, prompt: str) -> str:
        """Send the document and prompt, returning the raw completion text.

        Raises:
            MissingCredential: no API key and mock mode disabled.
            ModelTransientError: network failure, 429 or 5xx.
            ModelFatalError: any other API error or a malformed response body.
        """
        settings = get_settings()

        if not self.is_configured:
            if settings.mock_ai:
                logger.info("MOCK_AI=true: Using mock OpenRouter response")
                return MOCK_MODEL_RESPONSE
            raise MissingCredential("OPENROUTER_API_KEY is not configured and MOCK_AI is false")

        if not self._client:
            await self.connect()

        payload = {
            "model": self.model,
            "messages": self._build_messages(request, prompt),
            "max_tokens": self._max_tokens,
            "temperature": self._temperature,
            "stream": False,
        }

        try:
            response = await self._client.post("/chat/completions", json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            self._handle_http_error(e)
            raise
        except httpx.TransportError as e:
            raise ModelTransientError(f"OpenRouter network error: {e!r}") from e
        except ValueError as e:
            raise ModelFatalError(f"OpenRouter returned a non-JSON body: {e}") from e

        # OpenRouter reports some upstream failures inside a 200 body
        if "error" in data:
            error = data["error"] or {}
            code = error.get("code", 0)
            message = error.get("message", "unknown error")
            if code == 429 or (isinstance(code, int) and code >= 500):
                raise ModelTransientError(f"OpenRouter upstream error ({code}): {message}")
            raise ModelFatalError(f"OpenRouter upstream error ({code}): {message}")

        try:
            choice = data["choices"][0]
            content = choice["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as e:
            raise ModelFatalError(f"Unexpected OpenRouter response shape: {e!r}") from e

        logger.info(
            "OpenRouter response received",
            tokens=(data.get("usage") or {}).get("total_tokens", 0),
            finish_reason=choice.get("finish_reason"),
        )
        return content

    def _handle_http_error(self, error: httpx.HTTPStatusError) -> None:
        """Translate HTTP errors from OpenRouter into pipeline errors."""
        status = error.response.status_code
        try:
            detail = error.response.json().get("error", {}).get("message", str(error))
        except (ValueError, AttributeError):
            detail = str(error)

        logger.error("OpenRouter API error", status=status, detail=detail)

        if status in (401, 403):
            raise MissingCredential(f"Authentication failed: {detail}") from error
        elif status in (408, 429) or status >= 500:
            raise ModelTransientError(f"API error ({status}): {detail}") from error
        else:
            raise ModelFatalError(f"API error ({status}): {detail}") from error

    @property
    def is_configured(self) -> bool:
        """Check if the client is configured with an API key."""
        return bool(self._api_key and self._api_key.strip())
