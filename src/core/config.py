from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Database
    database_url: str

    @property
    def async_database_url(self) -> str:
        """Return database URL with asyncpg driver for SQLAlchemy async."""
        url = self.database_url
        if url.startswith("postgresql://"):
            return url.replace("postgresql://", "postgresql+asyncpg://", 1)
        if url.startswith("postgres://"):
            return url.replace("postgres://", "postgresql+asyncpg://", 1)
        return url

    # Redis (taskiq broker)
    redis_url: str = "redis://localhost:6379/0"

    # Google OAuth client
    google_client_id: str = ""
    google_client_secret: str = ""
    google_redirect_uri: str = ""

    # Token encryption at rest
    token_encryption_key: str = ""
    token_encryption_salt: str = "review-desk-token-cipher"

    # Google Business Profile API
    google_http_timeout: float = 20.0
    google_max_pages: int = 20
    token_refresh_skew_seconds: int = 60

    # Scheduler endpoint guard
    cron_secret: str = ""

    # LLM API Keys
    anthropic_api_key: str = ""
    openai_api_key: str = ""
    google_ai_api_key: str = ""
    reply_model: str = "gemini-2.5-flash"

    # Langfuse
    langfuse_secret_key: str = ""
    langfuse_public_key: str = ""
    langfuse_host: str = "http://localhost:3000"

    # App
    app_env: str = "development"
    log_level: str = "INFO"

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @property
    def google_oauth_configured(self) -> bool:
        return bool(self.google_client_id and self.google_client_secret)


settings = Settings()
