from pathlib import Path

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Read from OS env and optional .env file in project root.
    _project_root = Path(__file__).parent.parent

    model_config = SettingsConfigDict(
        env_file=str(_project_root / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Environment / mode
    environment: str = Field(
        "development",
        alias="APP_ENV",
        description="Current environment, e.g. development / production",
    )
    app_version: str = Field("0.1.0", alias="APP_VERSION")

    # CORS
    cors_allow_origins: str = Field(
        "http://localhost:5173,http://localhost:3000,capacitor://localhost",
        alias="CORS_ALLOW_ORIGINS",
        description="Comma-separated list of allowed origins",
    )
    cors_allow_credentials: bool = Field(True, alias="CORS_ALLOW_CREDENTIALS")

    # Upstream LLM provider
    upstream_api_key: str = Field(
        "",
        validation_alias=AliasChoices("UPSTREAM_API_KEY", "DEEPSEEK_API_KEY"),
        description="API key for the upstream provider; never sent to clients",
    )
    upstream_base_url: str = Field(
        "https://api.deepseek.com",
        alias="UPSTREAM_BASE_URL",
    )
    upstream_chat_path: str = Field("/chat/completions", alias="UPSTREAM_CHAT_PATH")
    upstream_timeout: float = Field(
        30.0,
        alias="UPSTREAM_TIMEOUT",
        description="Timeout (seconds) for a single upstream call",
        gt=0,
    )

    # Generation defaults and safety ceilings
    default_model: str = Field("deepseek-chat", alias="DEFAULT_MODEL")
    default_temperature: float = Field(0.7, alias="DEFAULT_TEMPERATURE", ge=0)
    default_top_p: float = Field(0.95, alias="DEFAULT_TOP_P", ge=0, le=1)
    default_max_tokens: int = Field(1000, alias="DEFAULT_MAX_TOKENS", ge=1)
    temperature_ceiling: float = Field(
        0.9,
        alias="TEMPERATURE_CEILING",
        description="Upper bound applied to any client-supplied temperature",
        ge=0,
    )
    max_tokens_ceiling: int = Field(
        2000,
        alias="MAX_TOKENS_CEILING",
        description="Upper bound applied to any client-supplied max_tokens",
        ge=1,
    )

    # Rate limiting (fixed window per client identity)
    rate_limit_window_seconds: int = Field(60, alias="RATE_LIMIT_WINDOW_SECONDS", ge=1)
    rate_limit_max_requests: int = Field(20, alias="RATE_LIMIT_MAX_REQUESTS", ge=1)
    trust_forwarded_headers: bool = Field(
        False,
        alias="TRUST_FORWARDED_HEADERS",
        description="Use X-Forwarded-For / X-Real-IP as client identity (only behind a trusted proxy)",
    )

    # Sessions
    session_duration_seconds: int = Field(1800, alias="SESSION_DURATION_SECONDS", ge=1)
    daily_usage_limit: int = Field(100, alias="DAILY_USAGE_LIMIT", ge=1)
    usage_day_timezone: str = Field(
        "UTC",
        alias="USAGE_DAY_TIMEZONE",
        description="Timezone whose calendar day bounds daily usage counters",
    )
    session_sweep_interval_seconds: float = Field(
        300.0,
        alias="SESSION_SWEEP_INTERVAL_SECONDS",
        description="Interval of the background sweep; 0 disables it",
        ge=0,
    )

    # State backend for sessions and rate limit buckets
    state_backend: str = Field(
        "memory",
        alias="STATE_BACKEND",
        description="'memory' for a single process, 'redis' to share state across processes",
    )
    redis_url: str = Field(
        "redis://localhost:6379/0",
        alias="REDIS_URL",
        description="Redis connection URL, e.g. 'redis://redis:6379/0'",
    )

    # Logging
    log_level: str = Field(
        "INFO",
        alias="LOG_LEVEL",
        description="Application log level: DEBUG, INFO, WARNING, ERROR, CRITICAL",
    )
    log_timezone: str | None = Field(
        default=None,
        alias="LOG_TIMEZONE",
        description="Timezone name for log timestamps. Defaults to system local time.",
    )
    log_dir: str = Field("logs", alias="LOG_DIR")

    # Client side (SecureChatClient)
    gateway_base_url: str = Field("http://localhost:3001", alias="GATEWAY_BASE_URL")
    client_timeout_seconds: float = Field(30.0, alias="CLIENT_TIMEOUT_SECONDS", gt=0)
    client_max_attempts: int = Field(3, alias="CLIENT_MAX_ATTEMPTS", ge=1)
    client_backoff_base_seconds: float = Field(1.0, alias="CLIENT_BACKOFF_BASE_SECONDS", ge=0)
    client_backoff_max_seconds: float = Field(10.0, alias="CLIENT_BACKOFF_MAX_SECONDS", ge=0)

    @property
    def upstream_chat_url(self) -> str:
        return f"{self.upstream_base_url.rstrip('/')}/{self.upstream_chat_path.lstrip('/')}"

    def get_cors_origins(self) -> list[str]:
        """
        Return configured CORS origins; whitespace is stripped and empty
        entries are ignored.
        """
        if not self.cors_allow_origins:
            return []
        return [
            item.strip()
            for item in self.cors_allow_origins.split(",")
            if item.strip()
        ]


settings = Settings()  # Reads from environment if available
