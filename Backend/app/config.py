# app/config.py
from __future__ import annotations

from pathlib import Path
from typing import Annotated, List, Optional

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

# Absoluut pad naar de .env (staat in Backend/.env)
# Dit bestand staat in Backend/app/config.py → parent = Backend
ENV_FILE = Path(__file__).resolve().parents[1] / ".env"
load_dotenv(ENV_FILE, override=False)  # pre-load in procesomgeving

DEFAULT_FEED_TYPES = ["home_swap", "rental", "service", "ad", "travel"]


class Settings(BaseSettings):
    # ---- App ----
    APP_VERSION: str = "0.1.0"
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"  # json | console

    # ---- Marketplace backend ----
    FEED_API_BASE_URL: str = "http://localhost:8080"
    FEED_API_TOKEN: Optional[str] = None
    FEED_USER_AGENT: str = "marketplace-feed/0.1"

    # ---- Aggregation ----
    # Uit = direct per-type aggregatie, zonder /feed te proberen.
    FEED_BACKEND_ENABLED: bool = True
    FEED_PRIMARY_TIMEOUT_S: float = 4.0
    FEED_SOURCE_TIMEOUT_S: float = 10.0
    FEED_SOURCE_MAX_RETRIES: int = 0
    FEED_MAX_CONCURRENCY: int = 6
    FEED_DEFAULT_LIMIT: int = 20
    FEED_MAX_LIMIT: int = 100
    FEED_MIN_PAGE_SIZE: int = 6
    FEED_DEFAULT_TYPES: Annotated[List[str], NoDecode] = Field(default_factory=lambda: list(DEFAULT_FEED_TYPES))

    # Pydantic v2 configuratie
    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("FEED_API_BASE_URL")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("FEED_DEFAULT_TYPES", mode="before")
    @classmethod
    def _split_types(cls, value):
        # "rental,travel" in .env naast een JSON-lijst
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return value


settings = Settings()
