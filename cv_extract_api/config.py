"""Environment configuration using pydantic-settings."""

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Mock control (opt-in feature gate for local development and tests)
    mock_ai: bool = False  # Serve canned model output when no API key is configured

    # Model provider selection
    ai_provider: Literal["gemini", "openrouter"] = "gemini"

    # Google Gemini configuration
    google_ai_api_key: str = ""
    gemini_model: str = "gemini-2.5-flash"

    # OpenRouter configuration
    openrouter_api_key: str = ""
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    openrouter_model: str = "google/gemini-2.5-flash"

    # Shared generation parameters
    llm_max_tokens: int = 8192
    llm_temperature: float = 0.1

    # Input limits
    max_pdf_size_mb: float = 5
    verify_pdf_structure: bool = True

    # Model invocation
    ai_timeout_ms: int = 60000
    model_max_attempts: int = 3
    retry_backoff_base_seconds: float = 1.0
    retry_backoff_cap_seconds: float = 8.0
    parse_retry_limit: int = 1

    # Rate limiting (fixed window with temporary block)
    rate_limit_max_requests: int = 5
    rate_limit_window_seconds: float = 60
    rate_limit_block_seconds: float = 300
    rate_limit_max_clients: int = 10000

    # CORS
    allowed_origins: str = ""  # Comma-separated; empty means any origin
    cors_enabled: bool = True

    # Server configuration
    port: int = 3000
    host: str = "0.0.0.0"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    environment: Literal["development", "production"] = "development"

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == "development"

    @property
    def active_model(self) -> str:
        """Model identifier for the selected provider."""
        if self.ai_provider == "openrouter":
            return self.openrouter_model
        return self.gemini_model

    @property
    def active_api_key(self) -> str:
        """API credential for the selected provider."""
        if self.ai_provider == "openrouter":
            return self.openrouter_api_key
        return self.google_ai_api_key

    @property
    def has_api_key(self) -> bool:
        """Check if the selected provider has a credential configured."""
        return bool(self.active_api_key.strip())

    @property
    def max_pdf_size_bytes(self) -> int:
        """Decoded size ceiling in bytes."""
        return int(self.max_pdf_size_mb * 1024 * 1024)

    @property
    def ai_timeout_seconds(self) -> float:
        """Per-attempt model deadline in seconds."""
        return self.ai_timeout_ms / 1000

    @property
    def allowed_origin_list(self) -> list[str]:
        """Parse ALLOWED_ORIGINS into a list, defaulting to any origin.

        An empty value or an explicit "*" entry both mean every origin is allowed.
        """
        origins = [o.strip() for o in self.allowed_origins.split(",") if o.strip()]
        if not origins or "*" in origins:
            return ["*"]
        return origins


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
