"""Application settings and logging bootstrap.

Settings are read from the environment (prefix ``IDEALEDGER_``) or an optional
``.env`` file in the working directory.
"""
from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

log = logging.getLogger(__name__)

DATA_DIR = Path(__file__).parent / "data"
DEV_SECRET = "dev-insecure-secret-change-me"

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


class Settings(BaseSettings):
    DATABASE_URL: str = Field(
        f"sqlite:///{DATA_DIR / 'idealedger.db'}",
        description="SQLAlchemy database URL",
    )
    JWT_SECRET_KEY: str = Field(DEV_SECRET, description="HMAC key used to sign access tokens")
    JWT_ALGORITHM: str = Field("HS256", description="JWT signing algorithm")
    JWT_EXPIRE_MINUTES: int = Field(60 * 24, ge=1, description="Access token lifetime (minutes)")
    PUBLIC_IDEAS_READABLE: bool = Field(
        False,
        description="Let non-members read the detail of public ideas",
    )
    LOG_LEVEL: str = Field("INFO", description="Root log level")

    model_config = SettingsConfigDict(
        env_prefix="IDEALEDGER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("JWT_SECRET_KEY", mode="before")
    @classmethod
    def strip_secret(cls, v):
        if isinstance(v, str):
            return v.strip()
        return v


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    settings = Settings()
    if settings.JWT_SECRET_KEY == DEV_SECRET:
        log.warning("IDEALEDGER_JWT_SECRET_KEY is not set; using the development secret")
    return settings


def configure_logging(level: str = "INFO") -> None:
    """Install the root log format. Call once at startup."""
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)
    log.info("Logging initialized with level %s", level)
