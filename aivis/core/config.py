from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # PostgreSQL
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_user: str = "aivis_user"
    postgres_password: str = "changeme"
    postgres_db: str = "aivis"

    # Full SQLAlchemy URL; overrides the postgres_* parts when set
    database_url: str = ""

    @property
    def postgres_url(self) -> str:
        if self.database_url:
            return self.database_url
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def postgres_url_sync(self) -> str:
        """For Alembic migrations (sync driver)."""
        return (
            f"postgresql+psycopg2://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    # Redis (Celery broker + result backend)
    redis_url: str = "redis://localhost:6379/0"

    # App
    app_env: str = "development"
    app_debug: bool = True

    # CORS
    allowed_origins: str = "*"  # comma-separated

    # Citation classification
    social_domains: str = "twitter.com,linkedin.com,facebook.com,instagram.com,youtube.com"  # comma-separated
    brand_tlds: str = ".com,.io,.ai,.in"  # comma-separated; the bare brand token is always a candidate

    # Maintenance schedule
    reprocess_hour: int = 2  # UTC hour for the daily citation reprocess pass

    # Logging
    log_level: str = "INFO"
    log_json: bool = False  # set True in production for structured JSON logs

    # Sentry
    sentry_dsn: str = ""  # leave empty to disable

    @property
    def social_domain_list(self) -> list[str]:
        return [d.strip().lower() for d in self.social_domains.split(",") if d.strip()]

    @property
    def brand_tld_list(self) -> list[str]:
        return [t.strip().lower() for t in self.brand_tlds.split(",") if t.strip()]


settings = Settings()


def validate_settings_for_production() -> None:
    """Validate critical settings. Called on startup in non-test environments."""
    errors: list[str] = []

    if settings.app_env == "production":
        if settings.allowed_origins == "*":
            errors.append("ALLOWED_ORIGINS must not be '*' in production")
        if settings.app_debug:
            errors.append("APP_DEBUG must be false in production")
        if settings.postgres_password == "changeme" and not settings.database_url:
            errors.append("POSTGRES_PASSWORD must be changed from the default in production")

    if not settings.social_domain_list:
        errors.append("SOCIAL_DOMAINS must list at least one domain")

    if errors:
        raise SystemExit("Configuration errors:\n  - " + "\n  - ".join(errors))
