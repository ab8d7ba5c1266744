"""Application configuration loaded from environment variables."""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parents[2]


class Settings(BaseSettings):
    APP_NAME: str = "Jira Migrator"
    ENV: str = "development"

    DATABASE_URL: str = "postgresql+psycopg://postgres@localhost:5432/planner"

    JWT_SECRET: str = "change-me"
    JWT_ALGORITHM: str = "HS256"
    COOKIE_NAME: str = "tw_access"
    LOG_LEVEL: str = "INFO"

    SMTP_HOST: str = ""
    SMTP_PORT: int = 587
    SMTP_USER: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_FROM: str = ""
    SMTP_TLS: bool = True

    # public address of the planner web app, internal links are built from it
    WEB_URL: str = "http://localhost:3000"
    CORS_ORIGINS: str = "http://localhost:3000"
    STORAGE_DIR: str = str(BASE_DIR / "storage")

    # jira transport
    JIRA_PAGE_SIZE: int = 100
    JIRA_USERS_PAGE_SIZE: int = 100
    JIRA_TIMEOUT_SECONDS: float = 30.0
    JIRA_MAX_RETRIES: int = 5

    # import engine
    IMPORT_WORKERS: int = 10
    IMPORT_ATTACHMENT_ATTEMPTS: int = 5
    IMPORT_ATTACHMENT_RETRY_DELAY_SECONDS: float = 30.0
    IMPORT_IGNORE_ATTACHMENTS: bool = False
    IMPORT_NOTIFY_NEW_MEMBERS: bool = False
    IMPORT_RETENTION_HOURS: int = 24
    IMPORT_SWEEP_INTERVAL_SECONDS: int = 60
    IMPORT_DB_BATCH_SIZE: int = 100

    model_config = SettingsConfigDict(env_file=str(BASE_DIR / ".env"), env_file_encoding="utf-8")

    @property
    def cors_origins(self) -> list[str]:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    @property
    def web_url(self) -> str:
        return self.WEB_URL.rstrip("/")


settings = Settings()
