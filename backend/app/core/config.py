from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _split_csv(raw: str) -> list[str]:
    return [value.strip() for value in raw.split(",") if value.strip()]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "Affiliate Marketplace Platform"
    app_env: str = "development"
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    frontend_origin: str = "http://localhost:5173"
    additional_frontend_origins: str = ""

    database_url: str | None = None
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_db: str = "affiliate_marketplace"
    postgres_user: str = "affiliate_marketplace"
    postgres_password: str = "affiliate_marketplace"

    redis_url: str | None = None
    redis_host: str = "localhost"
    redis_port: int = 6379

    jwt_secret_key: str = "change_this_in_production"
    jwt_algorithm: str = "HS256"
    jwt_access_token_expire_minutes: int = 60
    # Comma-separated; matched case-insensitively against the token's email claim.
    platform_admin_emails: str = ""

    fee_settings_cache_backend: str = "memory"
    fee_settings_cache_ttl_seconds: int = Field(default=300, ge=1)

    health_monitoring_enabled: bool = True
    health_metrics_path_prefix: str = "/api"
    health_metrics_flush_interval_seconds: float = Field(default=60.0, gt=0)
    health_snapshot_interval_seconds: float = Field(default=300.0, gt=0)
    health_report_recent_errors_limit: int = Field(default=20, ge=1, le=500)

    @property
    def sqlalchemy_database_uri(self) -> str:
        return self.database_url or (
            f"postgresql+psycopg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def cache_redis_url(self) -> str:
        return self.redis_url or f"redis://{self.redis_host}:{self.redis_port}/0"

    @property
    def cors_allowed_origins(self) -> list[str]:
        origins = [self.frontend_origin.strip(), *_split_csv(self.additional_frontend_origins)]
        return list(dict.fromkeys(origin for origin in origins if origin))

    @property
    def platform_admin_email_list(self) -> list[str]:
        return [email.lower() for email in _split_csv(self.platform_admin_emails)]


settings = Settings()
