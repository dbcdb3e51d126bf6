"""
Configuration for the Melita backend.
"""
from __future__ import annotations

import logging
from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Server
    HOST: str = Field(default="0.0.0.0")
    PORT: int = Field(default=8080)
    DEBUG: bool = Field(default=False)
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")
    ALLOWED_ORIGINS: str = Field(default="http://localhost:3000,http://localhost:5173")

    # Gemini
    GEMINI_API_KEY: str = Field(default="")
    GEMINI_MODEL: str = Field(default="gemini-3-pro-preview")
    MAX_TOKENS: int = Field(default=8192)
    TEMPERATURE: float = Field(default=0.1)  # Low for deterministic diagrams

    # Analysis
    ANALYSIS_TIMEOUT_SECONDS: float = Field(default=30.0)
    MAX_DIAGRAM_NODES: int = Field(default=25)
    MAX_IMAGE_BYTES: int = Field(default=5_242_880)  # 5 MB
    HISTORY_LIMIT: int = Field(default=20)

    # Connectivity
    CONNECTIVITY_PROBE_URL: str = Field(default="https://generativelanguage.googleapis.com")
    CONNECTIVITY_TIMEOUT_SECONDS: float = Field(default=3.0)
    CONNECTIVITY_POLL_SECONDS: float = Field(default=5.0)

    # Diagram rendering / export
    KROKI_URL: str = Field(default="https://kroki.io")
    RENDER_TIMEOUT_SECONDS: float = Field(default=15.0)
    EXPORT_SCALE: int = Field(default=3)
    EXPORT_BACKGROUND: str = Field(default="#0a0a0e")

    @property
    def cors_origins(self) -> list[str]:
        origins = [o.strip() for o in self.ALLOWED_ORIGINS.split(",") if o.strip()]
        if "*" in origins:
            return ["*"]
        return origins


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()


# Logging setup
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)

logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("google").setLevel(logging.WARNING)

logger = logging.getLogger("melita")
