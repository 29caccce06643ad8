"""Tests for OpenRouter client."""

from collections.abc import Callable
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from cv_extract_api.errors import (
    MissingCredential,
    ModelFatalError,
    ModelTransientError,
)
from cv_extract_api.openrouter_client import OpenRouterClient
from cv_extract_api.prompts import MOCK_MODEL_RESPONSE
from cv_extract_api.validation import ExtractionRequest


@pytest.fixture
def request_obj(pdf_bytes: bytes) -> ExtractionRequest:
    return ExtractionRequest(payload=pdf_bytes)


def _mock_response(status_code: int = 200, body: Any = None) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = body
    if status_code >= 400:
        response.raise_for_status.side_effect = httpx.HTTPStatusError(
            message=f"{status_code} error",
            request=MagicMock(),
            response=response,
        )
    else:
        response.raise_for_status = MagicMock()
    return response


def _client_returning(response: MagicMock) -> OpenRouterClient:
    client = OpenRouterClient(api_key="sk-or-v1-test")
    client._client = MagicMock()
    client._client.post = AsyncMock(return_value=response)
    return client


class TestOpenRouterClient:
    """Tests for OpenRouterClient class."""

    def test_init_default_values(self) -> None:
        """Test client initialization with defaults."""
        client = OpenRouterClient()
        assert client.model == "google/gemini-2.5-flash"
        assert client._max_tokens == 8192
        assert client._temperature == 0.1
        assert client.provider == "openrouter"

    def test_init_custom_values(self) -> None:
        """Test client initialization with custom values."""
        client = OpenRouterClient(
            api_key="sk-test-key",
            model="anthropic/claude-sonnet",
            max_tokens=2048,
            temperature=0.5,
        )
        assert client._api_key == "sk-test-key"
        assert client.model == "anthropic/claude-sonnet"
        assert client._max_tokens == 2048
        assert client._temperature == 0.5

    def test_is_configured(self) -> None:
        """Test is_configured reflects key presence."""
        assert OpenRouterClient(api_key="sk-or-v1-test").is_configured is True
        assert OpenRouterClient(api_key="   ").is_configured is False
        assert OpenRouterClient().is_configured is False

    def test_build_messages(self, request_obj: ExtractionRequest) -> None:
        """Test the message carries the prompt and the PDF as a file part."""
        client = OpenRouterClient()
        messages = client._build_messages(request_obj, "Extract this")

        assert len(messages) == 1
        assert messages[0]["role"] == "user"
        text_part, file_part = messages[0]["content"]
        assert text_part == {"type": "text", "text": "Extract this"}
        assert file_part["type"] == "file"
        assert file_part["file"]["file_data"] == f"data:application/pdf;base64,{request_obj.base64}"


class TestOpenRouterClientAsync:
    """Async tests for OpenRouterClient."""

    @pytest.mark.asyncio
    async def test_connect_and_close(self) -> None:
        """Test connect and close lifecycle."""
        client = OpenRouterClient(api_key="sk-test")
        await client.connect()
        assert client._client is not None
        await client.close()
        assert client._client is None

    @pytest.mark.asyncio
    async def test_connect_skipped_without_key(self) -> None:
        """Test no HTTP client is created without a key."""
        client = OpenRouterClient()
        await client.connect()
        assert client._client is None

    @pytest.mark.asyncio
    async def test_context_manager(self) -> None:
        """Test async context manager."""
        async with OpenRouterClient(api_key="sk-test") as client:
            assert client._client is not None
        assert client._client is None

    @pytest.mark.asyncio
    async def test_generate_returns_content(self, request_obj: ExtractionRequest) -> None:
        """Test the completion text is returned verbatim."""
        client = _client_returning(
            _mock_response(
                body={
                    "choices": [{"message": {"content": '{"cvData": {}}'}, "finish_reason": "stop"}],
                    "usage": {"total_tokens": 10},
                }
            )
        )
        text = await client.generate(request_obj, "prompt")
        assert text == '{"cvData": {}}'

        payload = client._client.post.call_args.kwargs["json"]
        assert payload["model"] == client.model
        assert payload["stream"] is False

    @pytest.mark.asyncio
    async def test_generate_null_content(self, request_obj: ExtractionRequest) -> None:
        """Test a null content field becomes an empty string."""
        client = _client_returning(
            _mock_response(body={"choices": [{"message": {"content": None}}], "usage": None})
        )
        assert await client.generate(request_obj, "prompt") == ""

    @pytest.mark.asyncio
    async def test_generate_bad_shape(self, request_obj: ExtractionRequest) -> None:
        """Test a body without choices is fatal."""
        client = _client_returning(_mock_response(body={"choices": []}))
        with pytest.raises(ModelFatalError):
            await client.generate(request_obj, "prompt")

    @pytest.mark.asyncio
    async def test_generate_non_json_body(self, request_obj: ExtractionRequest) -> None:
        """Test an unparseable body is fatal."""
        response = _mock_response()
        response.json.side_effect = ValueError("Expecting value")
        client = _client_returning(response)
        with pytest.raises(ModelFatalError):
            await client.generate(request_obj, "prompt")

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "code,expected",
        [(429, ModelTransientError), (502, ModelTransientError), (400, ModelFatalError)],
    )
    async def test_generate_in_body_error(
        self, request_obj: ExtractionRequest, code: int, expected: type
    ) -> None:
        """Test upstream errors reported inside a 200 body are classified."""
        client = _client_returning(_mock_response(body={"error": {"code": code, "message": "upstream"}}))
        with pytest.raises(expected):
            await client.generate(request_obj, "prompt")

    @pytest.mark.asyncio
    async def test_generate_network_error(self, request_obj: ExtractionRequest) -> None:
        """Test transport failures are transient."""
        client = OpenRouterClient(api_key="sk-or-v1-test")
        client._client = MagicMock()
        client._client.post = AsyncMock(side_effect=httpx.ConnectError("refused"))
        with pytest.raises(ModelTransientError):
            await client.generate(request_obj, "prompt")


class TestOpenRouterHttpErrorHandling:
    """Tests for HTTP error handling."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status,expected",
        [
            (401, MissingCredential),
            (403, MissingCredential),
            (408, ModelTransientError),
            (429, ModelTransientError),
            (500, ModelTransientError),
            (503, ModelTransientError),
            (400, ModelFatalError),
            (404, ModelFatalError),
        ],
    )
    async def test_status_classification(
        self, request_obj: ExtractionRequest, status: int, expected: type
    ) -> None:
        """Test HTTP status codes map to error classes."""
        client = _client_returning(_mock_response(status, {"error": {"message": "nope"}}))
        with pytest.raises(expected) as exc_info:
            await client.generate(request_obj, "prompt")
        assert "nope" in exc_info.value.detail

    def test_handle_http_error_non_json_body(self) -> None:
        """Test error detail falls back to the exception text."""
        client = OpenRouterClient(api_key="sk-test")
        response = _mock_response(500)
        response.json.side_effect = ValueError("not json")
        error = httpx.HTTPStatusError(message="500 boom", request=MagicMock(), response=response)
        with pytest.raises(ModelTransientError) as exc_info:
            client._handle_http_error(error)
        assert "500 boom" in exc_info.value.detail


class TestOpenRouterMockModes:
    """Tests for mock mode functionality."""

    @pytest.mark.asyncio
    async def test_generate_with_mock_enabled(
        self, mock_settings: Callable[..., Any], request_obj: ExtractionRequest
    ) -> None:
        """Test the canned response is served without a key."""
        mock_settings(mock_ai="true", openrouter_api_key="")
        client = OpenRouterClient()
        assert await client.generate(request_obj, "prompt") == MOCK_MODEL_RESPONSE

    @pytest.mark.asyncio
    async def test_generate_without_key_or_mock(
        self, mock_settings: Callable[..., Any], request_obj: ExtractionRequest
    ) -> None:
        """Test a missing key without mock mode is a configuration error."""
        mock_settings(mock_ai="false", openrouter_api_key="")
        client = OpenRouterClient()
        with pytest.raises(MissingCredential) as exc_info:
            await client.generate(request_obj, "prompt")
        assert exc_info.value.status_code == 500
