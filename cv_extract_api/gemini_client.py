"""Google Gemini client for document extraction (google-genai SDK)."""

import httpx
import structlog
from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from cv_extract_api.config import get_settings
from cv_extract_api.errors import (
    MissingCredential,
    ModelFatalError,
    ModelTransientError,
)
from cv_extract_api.prompts import MOCK_MODEL_RESPONSE
from cv_extract_api.validation import ExtractionRequest

logger = structlog.get_logger()

# Provider status codes worth another attempt
TRANSIENT_STATUS_CODES = {408, 429, 500, 502, 503, 504}


class GeminiClient:
    """Async client that sends a PDF inline with the prompt to Gemini."""

    provider = "gemini"

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ):
        """Initialize the Gemini client.

        Args:
            api_key: Google AI API key. Defaults to config value.
            model: Model ID to use. Defaults to config value.
            max_tokens: Maximum output tokens. Defaults to config value.
            temperature: Sampling temperature. Defaults to config value.
        """
        settings = get_settings()
        self._api_key = api_key or settings.google_ai_api_key
        self.model = model or settings.gemini_model
        self._max_tokens = max_tokens or settings.llm_max_tokens
        self._temperature = temperature if temperature is not None else settings.llm_temperature
        self._client: genai.Client | None = None

    async def connect(self) -> None:
        """Create the SDK client when a key is configured."""
        if not self.is_configured:
            logger.info("Gemini client has no API key, skipping SDK client creation")
            return
        self._client = genai.Client(api_key=self._api_key)
        logger.info("Gemini client connected", model=self.model)

    async def close(self) -> None:
        """Drop the SDK client."""
        if self._client:
            self._client = None
            logger.info("Gemini client closed")

    def _build_contents(self, request: ExtractionRequest, prompt: str) -> list:
        return [
            types.Part.from_bytes(data=request.payload, mime_type=request.mime_type),
            prompt,
        ]

    async def generate(self, request: ExtractionRequest, prompt: str) -> str:
        """Send the document and prompt, returning the raw generated text.

        Raises:
            MissingCredential: no API key and mock mode disabled, or key rejected.
            ModelTransientError: network failure, overload or rate limiting.
            ModelFatalError: request rejected or output blocked.
        """
        settings = get_settings()

        if not self.is_configured:
            if settings.mock_ai:
                logger.info("MOCK_AI=true: Using mock Gemini response")
                return MOCK_MODEL_RESPONSE
            raise MissingCredential("GOOGLE_AI_API_KEY is not configured and MOCK_AI is false")

        if not self._client:
            await self.connect()

        try:
            response = await self._client.aio.models.generate_content(
                model=self.model,
                contents=self._build_contents(request, prompt),
                config=types.GenerateContentConfig(
                    temperature=self._temperature,
                    max_output_tokens=self._max_tokens,
                ),
            )
        except genai_errors.APIError as e:
            self._handle_api_error(e)
            raise
        except (httpx.TransportError, ConnectionError) as e:
            raise ModelTransientError(f"Gemini network error: {e!r}") from e

        text = response.text
        if not text:
            feedback = getattr(response, "prompt_feedback", None)
            block_reason = getattr(feedback, "block_reason", None)
            if block_reason:
                raise ModelFatalError(f"Gemini blocked the request: {block_reason}")
            logger.warning("Gemini returned an empty response", model=self.model)
            return ""

        usage = getattr(response, "usage_metadata", None)
        logger.info(
            "Gemini response received",
            tokens=getattr(usage, "total_token_count", 0) or 0,
            response_chars=len(text),
        )
        return text

    def _handle_api_error(self, error: genai_errors.APIError) -> None:
        """Translate SDK errors into pipeline errors."""
        code = error.code or 0
        logger.error("Gemini API error", status=code, detail=str(error))

        if code in (401, 403):
            raise MissingCredential(f"Authentication failed: {error}") from error
        if code in TRANSIENT_STATUS_CODES or isinstance(error, genai_errors.ServerError):
            raise ModelTransientError(f"API error ({code}): {error}") from error
        raise ModelFatalError(f"API error ({code}): {error}") from error

    @property
    def is_configured(self) -> bool:
        """Check if the client is configured with an API key."""
        return bool(self._api_key and self._api_key.strip())
