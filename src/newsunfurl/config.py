"""Configuration loading for newsunfurl."""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/131.0.0.0 Safari/537.36"
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_prefix="NEWSUNFURL_")

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    json_logs: bool = Field(default=True, description="Render logs as JSON lines")

    # Token decoding
    source_base_url: str = Field(
        default="https://news.google.com",
        description="Base URL used to resolve modern tokens",
    )
    resolver_timeout: float = Field(
        default=10.0, description="Timeout in seconds for each resolver request"
    )
    max_redirects: int = Field(default=10, description="Maximum redirects the resolver follows")
    decode_deadline: float = Field(
        default=30.0, description="Overall deadline in seconds for one modern decode"
    )
    legacy_max_token_length: int = Field(
        default=150, description="Tokens at least this long are never treated as legacy"
    )

    # Destination validation
    max_url_length: int = Field(default=2000, description="Maximum accepted URL length")

    # Article fetching
    fetch_timeout: float = Field(default=30.0, description="Article fetch timeout in seconds")
    user_agent: str = Field(default=DEFAULT_USER_AGENT, description="HTTP User-Agent header")

    # Retry policy
    max_attempts: int = Field(default=3, description="Attempts before an item fails for good")
    base_backoff_seconds: float = Field(default=60.0, description="Backoff base delay")
    max_jitter_seconds: float = Field(default=10.0, description="Upper bound of backoff jitter")
    min_process_interval: float = Field(
        default=5.0, description="Minimum seconds between two processed items per worker"
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate the log level is a standard level name."""
        level = v.strip().upper()
        if level not in LOG_LEVELS:
            raise ValueError(
                f"NEWSUNFURL_LOG_LEVEL '{v}' is not valid. "
                f"Use one of: {', '.join(LOG_LEVELS)}."
            )
        return level

    @field_validator("source_base_url")
    @classmethod
    def validate_source_base_url(cls, v: str) -> str:
        """Validate the source base URL is an absolute http(s) URL."""
        v = v.strip().rstrip("/")
        if not v.startswith(("http://", "https://")):
            raise ValueError(
                f"NEWSUNFURL_SOURCE_BASE_URL '{v}' must start with http:// or https://."
            )
        return v

    @field_validator(
        "resolver_timeout",
        "decode_deadline",
        "fetch_timeout",
        "base_backoff_seconds",
    )
    @classmethod
    def validate_positive_seconds(cls, v: float) -> float:
        """Validate durations are strictly positive."""
        if v <= 0:
            raise ValueError("Durations must be greater than zero seconds.")
        return v

    @field_validator("max_jitter_seconds", "min_process_interval")
    @classmethod
    def validate_non_negative_seconds(cls, v: float) -> float:
        """Validate durations that may be disabled with zero."""
        if v < 0:
            raise ValueError("Durations cannot be negative.")
        return v

    @field_validator("max_redirects", "legacy_max_token_length", "max_url_length", "max_attempts")
    @classmethod
    def validate_positive_int(cls, v: int) -> int:
        """Validate limits are at least one."""
        if v < 1:
            raise ValueError("Limits must be at least 1.")
        return v


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
