from __future__ import annotations

import os

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_database_url() -> str:
    return (
        "postgresql+asyncpg://"
        f"{os.getenv('PGUSER', 'postgres')}:{os.getenv('PGPASSWORD', 'postgres')}@"
        f"{os.getenv('PGHOST', 'db')}:{os.getenv('PGPORT', '5432')}/"
        f"{os.getenv('PGDATABASE', 'repairdesk')}"
    )


class Settings(BaseSettings):
    DATABASE_URL: str = Field(default_factory=_default_database_url)
    JWT_SECRET: str = Field(default="changeme")
    JWT_EXP_HOURS: int = Field(default=8)
    CORS_ORIGINS: str = Field(default="http://localhost:8080,http://127.0.0.1:8080")
    LOG_LEVEL: str = Field(default="INFO")

    # Scan resolution
    RESOLVE_TRANSIENT_RETRIES: int = Field(default=1, ge=0)
    RESOLVE_RETRY_DELAY_S: float = Field(default=0.2, ge=0)
    SCAN_SESSION_IDLE_S: float = Field(default=300.0, gt=0)
    SCAN_SESSIONS_PER_OWNER: int = Field(default=2, ge=1)

    # QR rendering
    QR_BOX_SIZE: int = Field(default=10, ge=1)
    QR_BORDER: int = Field(default=4, ge=0)

    # Labels / printing
    LABEL_COMPANY: str = Field(default="DYGITEC")
    PRINTER_MODE: str = Field(default="local")
    PRINTER_HOST: str = Field(default="192.168.1.50")
    PRINTER_PORT: int = Field(default=9100)

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    @property
    def cors_origins(self) -> list[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]


def _load_settings() -> Settings:
    return Settings()


settings = _load_settings()
