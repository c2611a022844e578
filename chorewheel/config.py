"""
Chorewheel — Centralized configuration.

Loads all settings from .env and validates them.
This module is the foundation for every other module in the project.
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

# Load .env from project root (two levels up from chorewheel/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)

_TRUE_VALUES = {"1", "true", "yes", "on"}


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # SQLite: one database file per household (tenant)
    DATABASE_DIR: str = "data"
    DATABASE_FILE_PATTERN: str = "database-{tenant}.sqlite"
    DEFAULT_TENANT: str = "default"
    MAX_OPEN_STORES: int = 16

    # Assignment engine
    GROUP_BY_RECURRENCE: bool = False
    HISTORY_LOOKBACK_DAYS: int = 100
    RANDOM_SEED: int | None = None

    # Penalty ledger
    MAX_PENALTY_POINTS_PER_TASK: int = 3

    # Logging
    LOG_LEVEL: str = "INFO"

    @field_validator("GROUP_BY_RECURRENCE", mode="before")
    @classmethod
    def parse_bool(cls, v: str | bool | None) -> bool:
        if isinstance(v, bool):
            return v
        if v is None:
            return False
        return str(v).strip().lower() in _TRUE_VALUES

    @field_validator(
        "MAX_OPEN_STORES", "HISTORY_LOOKBACK_DAYS", "MAX_PENALTY_POINTS_PER_TASK",
        mode="before",
    )
    @classmethod
    def parse_int(cls, v: str | int) -> int:
        return int(v)

    @field_validator("RANDOM_SEED", mode="before")
    @classmethod
    def parse_seed(cls, v: str | int | None) -> int | None:
        if v is None:
            return None
        if isinstance(v, str):
            v = v.strip()
            if not v:
                return None
        return int(v)

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def parse_level(cls, v: str) -> str:
        return str(v).strip().upper() or "INFO"

    def database_path(self, tenant: str) -> Path:
        """Return the SQLite file path for a tenant."""
        return Path(self.DATABASE_DIR) / self.DATABASE_FILE_PATTERN.format(tenant=tenant)


def _load_settings() -> Settings:
    """Load settings from environment."""
    group_by = os.getenv("GROUP_BY_RECURRENCE")
    if group_by is None:
        # Older deployments used this name for the same switch
        group_by = os.getenv("ENABLE_REPETITION_GROUPING", "false")

    return Settings(
        DATABASE_DIR=os.getenv("DATABASE_DIR", "data"),
        DATABASE_FILE_PATTERN=os.getenv(
            "DATABASE_FILE_PATTERN", "database-{tenant}.sqlite"
        ),
        DEFAULT_TENANT=os.getenv("DEFAULT_TENANT", "default"),
        MAX_OPEN_STORES=os.getenv("MAX_OPEN_STORES", "16"),
        GROUP_BY_RECURRENCE=group_by,
        HISTORY_LOOKBACK_DAYS=os.getenv("HISTORY_LOOKBACK_DAYS", "100"),
        RANDOM_SEED=os.getenv("RANDOM_SEED"),
        MAX_PENALTY_POINTS_PER_TASK=os.getenv("MAX_PENALTY_POINTS_PER_TASK", "3"),
        LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO"),
    )


# Singleton, imported by all other modules as:
#   from chorewheel.config import settings
settings = _load_settings()
