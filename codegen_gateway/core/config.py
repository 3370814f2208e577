from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Upstream provider credentials
    openai_api_key: str = ""
    anthropic_api_key: str = ""
    google_ai_api_key: str = ""
    groq_api_key: str = ""
    mistral_api_key: str = ""

    # Local Ollama engine (no credentials)
    ollama_enabled: bool = False
    ollama_base_url: str = "http://localhost:11434"

    # Provider selection for /ai/stream, fastest first
    provider_priority: str = "groq,openai,anthropic,google,mistral"

    # Upstream calls
    request_timeout_seconds: float = 60.0
    retry_max_retries: int = 2
    retry_base_delay_seconds: float = 0.3

    # Per-caller fixed window rate limit
    rate_limit_max_requests: int = 20
    rate_limit_window_seconds: float = 60.0

    # App
    app_env: str = "development"
    app_debug: bool = True

    # CORS
    allowed_origins: str = "*"  # comma-separated, e.g. "https://editor.example.com,https://admin.example.com"

    # Logging
    log_level: str = "INFO"
    log_json: bool = False  # set True in production for structured JSON logs

    # Sentry
    sentry_dsn: str = ""  # leave empty to disable

    @property
    def provider_api_keys(self) -> dict[str, str]:
        """Configured upstream keys by provider id (empty string = not configured)."""
        return {
            "openai": self.openai_api_key,
            "anthropic": self.anthropic_api_key,
            "google": self.google_ai_api_key,
            "groq": self.groq_api_key,
            "mistral": self.mistral_api_key,
        }

    @property
    def priority_order(self) -> list[str]:
        order = [p.strip().lower() for p in self.provider_priority.split(",") if p.strip()]
        if self.ollama_enabled and "ollama" not in order:
            order.append("ollama")
        return order


settings = Settings()


def validate_settings_for_production() -> None:
    """Validate critical settings. Called on startup in non-test environments."""
    errors: list[str] = []

    if settings.request_timeout_seconds <= 0:
        errors.append("REQUEST_TIMEOUT_SECONDS must be positive")

    if settings.rate_limit_max_requests < 1:
        errors.append("RATE_LIMIT_MAX_REQUESTS must be at least 1")

    if settings.app_env == "production":
        if settings.allowed_origins == "*":
            errors.append("ALLOWED_ORIGINS must not be '*' in production")
        if settings.app_debug:
            errors.append("APP_DEBUG must be false in production")
        if not any(settings.provider_api_keys.values()) and not settings.ollama_enabled:
            errors.append("At least one provider API key (or OLLAMA_ENABLED) must be configured")

    if errors:
        raise SystemExit("Configuration errors:\n  - " + "\n  - ".join(errors))
