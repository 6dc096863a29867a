"""Application settings and configuration.

This module defines all configuration options for the Emergency Connect service.
Settings are loaded from environment variables with sensible defaults.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Settings can be overridden via environment variables or a .env file.
    """

    # Application metadata
    app_name: str = Field(default="Emergency Connect", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Security and authentication
    secret_key: str = Field(alias="SECRET_KEY")
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    encryption_key: str | None = Field(default=None, alias="ENCRYPTION_KEY")
    phrase_hash_rounds: int = Field(default=10, alias="PHRASE_HASH_ROUNDS")
    challenge_ttl_seconds: int = Field(default=300, alias="CHALLENGE_TTL_SECONDS")
    session_ttl_hours: int = Field(default=24, alias="SESSION_TTL_HOURS")
    session_cookie_name: str = Field(default="ec-token", alias="SESSION_COOKIE_NAME")
    emergency_cookie_name: str = Field(default="ec-emergency", alias="EMERGENCY_COOKIE_NAME")
    secure_cookies: bool = Field(default=False, alias="SECURE_COOKIES")

    # Database configuration
    database_url: str = Field(default="sqlite:///./emergency_connect.db", alias="DATABASE_URL")
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")

    # Counter storage for rate limits, quotas and consumed credentials
    counter_backend: str = Field(default="memory", alias="COUNTER_BACKEND")
    redis_url: str = Field(default="redis://localhost:6379", alias="REDIS_URL")

    # Covert entry rate limiting (per caller address)
    rate_limit_attempts: int = Field(default=5, alias="RATE_LIMIT_ATTEMPTS")
    rate_limit_window_seconds: int = Field(default=300, alias="RATE_LIMIT_WINDOW_SECONDS")
    rate_limit_lock_seconds: int = Field(default=600, alias="RATE_LIMIT_LOCK_SECONDS")
    rate_limit_sweep_interval_seconds: int = Field(
        default=300,
        alias="RATE_LIMIT_SWEEP_INTERVAL_SECONDS",
    )

    # Risk analysis providers, tried in order before the rule-based fallback
    analyzer_chain: list[str] = Field(default=["gemini"], alias="ANALYZER_CHAIN")
    analyzer_timeout_seconds: float = Field(default=15.0, alias="ANALYZER_TIMEOUT_SECONDS")
    gemini_api_key: str | None = Field(default=None, alias="GEMINI_API_KEY")
    gemini_model: str = Field(default="gemini-2.0-flash", alias="GEMINI_MODEL")
    gemini_base_url: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta",
        alias="GEMINI_BASE_URL",
    )
    openai_api_key: str | None = Field(default=None, alias="OPENAI_API_KEY")
    openai_model: str = Field(default="gpt-4o-mini", alias="OPENAI_MODEL")
    openai_base_url: str = Field(default="https://api.openai.com/v1", alias="OPENAI_BASE_URL")

    # External analyzer budget (kept under the provider's free tier)
    quota_per_minute: int = Field(default=8, alias="ANALYZER_QUOTA_PER_MINUTE")
    quota_per_day: int = Field(default=200, alias="ANALYZER_QUOTA_PER_DAY")
    quota_timezone: str = Field(default="America/Los_Angeles", alias="ANALYZER_QUOTA_TIMEZONE")

    # SMS delivery
    sms_provider: str = Field(default="dev", alias="SMS_PROVIDER")
    sms_webhook_url: str | None = Field(default=None, alias="SMS_WEBHOOK_URL")
    sms_webhook_token: str | None = Field(default=None, alias="SMS_WEBHOOK_TOKEN")
    sms_timeout_seconds: float = Field(default=10.0, alias="SMS_TIMEOUT_SECONDS")
    dev_sms_failure_rate: float = Field(default=0.0, alias="DEV_SMS_FAILURE_RATE")

    # Notification retries
    notification_poll_interval_seconds: float = Field(
        default=10.0,
        alias="NOTIFICATION_POLL_INTERVAL_SECONDS",
    )
    notification_batch_size: int = Field(default=10, alias="NOTIFICATION_BATCH_SIZE")
    notification_max_attempts: int = Field(default=3, alias="NOTIFICATION_MAX_ATTEMPTS")
    notification_retry_delays: list[int] = Field(
        default=[60, 300, 900],
        alias="NOTIFICATION_RETRY_DELAYS",
    )
    notification_error_retry_seconds: int = Field(
        default=60,
        alias="NOTIFICATION_ERROR_RETRY_SECONDS",
    )
    notification_worker_embedded: bool = Field(
        default=False,
        alias="NOTIFICATION_WORKER_EMBEDDED",
    )

    # CORS configuration for the web frontend
    cors_origins: list[str] = Field(default=["*"], alias="CORS_ORIGINS")
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
    )

    @property
    def rate_limit_defaults(self) -> dict[str, int]:
        """Return the default covert-entry rate limit as a keyword dictionary."""
        return {
            "attempts_per_window": self.rate_limit_attempts,
            "window_seconds": self.rate_limit_window_seconds,
            "lock_seconds": self.rate_limit_lock_seconds,
        }


settings = Settings()  # type: ignore[call-arg]
