from __future__ import annotations

import os
from functools import lru_cache
from typing import Literal

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field


def _default_database_url() -> str:
    explicit = os.getenv("DATABASE_URL", os.getenv("DB_DSN"))
    if explicit:
        return explicit
    host = os.getenv("DB_HOST", "localhost")
    port = os.getenv("DB_PORT", "5432")
    user = os.getenv("DB_USER", "postgres")
    password = os.getenv("DB_PASSWORD", "")
    name = os.getenv("DB_NAME", "bitespeed")
    credentials = f"{user}:{password}" if password else user
    return f"postgresql://{credentials}@{host}:{port}/{name}"


class IdentitySettings(BaseModel):
    """Runtime configuration for the Identity Service."""

    model_config = ConfigDict(validate_default=True)

    database_url: str = Field(default_factory=_default_database_url)
    store_backend: Literal["postgres", "memory"] = Field(
        default_factory=lambda: os.getenv("STORE_BACKEND", "postgres").lower()
    )
    host: str = Field(default_factory=lambda: os.getenv("HOST", "0.0.0.0"))
    port: int = Field(default_factory=lambda: int(os.getenv("PORT", "3000")))
    environment: str = Field(default_factory=lambda: os.getenv("APP_ENV", "production"))
    log_level: str = Field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    service_name: str = Field(default_factory=lambda: os.getenv("SERVICE_NAME", "identity-service"))

    @property
    def is_development(self) -> bool:
        return self.environment.lower() == "development"


@lru_cache(maxsize=1)
def get_settings() -> IdentitySettings:
    load_dotenv()
    return IdentitySettings()


__all__ = ["IdentitySettings", "get_settings"]
