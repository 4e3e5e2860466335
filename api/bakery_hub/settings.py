"""
Bakery Hub Settings.
"""
from __future__ import annotations
from pathlib import Path
from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, AliasChoices

class Settings(BaseSettings):
    # =========================================================================
    # File Storage (logs)
    # =========================================================================
    BAKERY_DATA_ROOT: Path = Field(
        default=(Path(__file__).resolve().parents[2] / "bakery-data"),
        validation_alias=AliasChoices("BAKERY_DATA_ROOT", "bh_data_root"),
    )

    # =========================================================================
    # PostgreSQL Database
    # =========================================================================
    DB_HOST: str = Field(default="localhost", validation_alias="DB_HOST")
    DB_PORT: int = Field(default=5432, validation_alias="DB_PORT")
    DB_NAME: str = Field(default="bakery_hub", validation_alias="DB_NAME")
    DB_USER: str = Field(default="postgres", validation_alias="DB_USER")
    DB_PASSWORD: str = Field(default="postgres", validation_alias="DB_PASSWORD")

    # Connection pool settings
    DB_POOL_SIZE: int = Field(default=5, validation_alias="DB_POOL_SIZE")
    DB_MAX_OVERFLOW: int = Field(default=10, validation_alias="DB_MAX_OVERFLOW")
    DB_ECHO: bool = Field(default=False, validation_alias="DB_ECHO")

    # Full URL override (sqlite+aiosqlite for local runs and tests)
    DATABASE_URL: Optional[str] = Field(default=None, validation_alias="DATABASE_URL")
    DB_CREATE_SCHEMA: bool = Field(
        default=False,
        validation_alias="DB_CREATE_SCHEMA",
        description="Run metadata.create_all on startup instead of relying on migrations",
    )

    # =========================================================================
    # Production stream
    # =========================================================================
    HEARTBEAT_INTERVAL_SECONDS: float = Field(default=30.0, validation_alias="HEARTBEAT_INTERVAL_SECONDS")
    SUBSCRIBER_QUEUE_SIZE: int = Field(default=100, validation_alias="SUBSCRIBER_QUEUE_SIZE")
    BROADCAST_BACKEND: str = Field(
        default="memory",
        validation_alias="BROADCAST_BACKEND",
        description="memory (single process) or postgres (LISTEN/NOTIFY fan-out)",
    )
    BROADCAST_CHANNEL: str = Field(default="production_events", validation_alias="BROADCAST_CHANNEL")

    # =========================================================================
    # Orders & ledger
    # =========================================================================
    ORDER_NUMBER_MAX_ATTEMPTS: int = Field(default=5, validation_alias="ORDER_NUMBER_MAX_ATTEMPTS")
    DEFAULT_CURRENCY: str = Field(default="CHF", validation_alias="DEFAULT_CURRENCY")

    # =========================================================================
    # Auth (bearer tokens per role)
    # =========================================================================
    OWNER_TOKEN: str = Field(default="owner-dev-token", validation_alias="OWNER_TOKEN")
    COOK_TOKEN: str = Field(default="cook-dev-token", validation_alias="COOK_TOKEN")

    CORS_ORIGINS: List[str] = Field(
        default=["http://localhost:3000", "http://127.0.0.1:3000"],
        validation_alias="CORS_ORIGINS",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="",
        case_sensitive=False,
        extra="ignore",
    )

settings = Settings()
