"""Configuration and environment settings."""
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """App settings from env or .env."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Limitless upstream
    limitless_api_key: str | None = Field(default=None)
    limitless_api_base_url: str = Field(default="https://api.limitless.ai")
    limitless_timeout_seconds: float = Field(default=30.0, gt=0)
    limitless_page_size: int = Field(default=10, ge=1, le=100)
    limitless_max_pages: int = Field(default=100, ge=1)

    # Storage
    db_type: str = Field(default="sqlite")
    db_path: str = Field(default="data/limitless.db")

    # Ingestion
    ingestion_schedule: str = Field(default="*/30 * * * *")
    enable_scheduler: bool = Field(default=True)
    timezone: str | None = Field(default=None)

    # API
    enable_server: bool = Field(default=True)
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=3000)
    alternative_ports: list[int] = Field(default_factory=lambda: [3001, 3002, 8080, 8081, 8082])

    # Dashboard
    dashboard_api_url: str = Field(default="http://localhost:3000")

    log_level: str = Field(default="INFO")


settings = Settings()
