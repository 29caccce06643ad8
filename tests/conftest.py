"""Pytest configuration and fixtures."""

import base64
import os
from collections.abc import Callable, Iterator

import pytest

from cv_extract_api.config import Settings

# Set test environment variables before importing app modules
os.environ.setdefault("GOOGLE_AI_API_KEY", "")
os.environ.setdefault("OPENROUTER_API_KEY", "")
os.environ.setdefault("AI_PROVIDER", "gemini")
os.environ.setdefault("MOCK_AI", "false")
os.environ.setdefault("ENVIRONMENT", "development")
# No real backoff waits in tests
os.environ.setdefault("RETRY_BACKOFF_BASE_SECONDS", "0")


@pytest.fixture(autouse=True)
def reset_caches() -> Iterator[None]:
    """Reset cached settings and global singletons before each test."""
    from cv_extract_api.config import get_settings
    from cv_extract_api.model_invoker import reset_model_client
    from cv_extract_api.pipeline import reset_pipeline
    from cv_extract_api.rate_limiter import reset_rate_limiter

    get_settings.cache_clear()
    reset_rate_limiter()
    reset_model_client()
    reset_pipeline()
    yield
    get_settings.cache_clear()
    reset_rate_limiter()
    reset_model_client()
    reset_pipeline()


@pytest.fixture
def mock_settings(monkeypatch: pytest.MonkeyPatch) -> Callable[..., Settings]:
    """Fixture to set test settings."""

    def _mock_settings(**kwargs: str) -> Settings:
        for key, value in kwargs.items():
            monkeypatch.setenv(key.upper(), str(value))
        from cv_extract_api.config import get_settings

        get_settings.cache_clear()
        return get_settings()

    return _mock_settings


@pytest.fixture
def pdf_bytes() -> bytes:
    """Smallest byte string that passes the PDF structure check."""
    return b"%PDF-1.4\n1 0 obj << /Type /Catalog >> endobj\ntrailer << /Root 1 0 R >>\n%%EOF\n"


@pytest.fixture
def pdf_base64(pdf_bytes: bytes) -> str:
    """Base64 form of pdf_bytes."""
    return base64.b64encode(pdf_bytes).decode("ascii")
