"""Configuration helpers for the founder-flow backend."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import List, Mapping

from dotenv import load_dotenv

ENV_PREFIX = "FOUNDERFLOW_"

DEFAULT_ALLOWED_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    "http://localhost:5000",
    "http://127.0.0.1:5000",
]

LOG_FORMATS = {"readable", "json"}

load_dotenv(override=False)


@dataclass(frozen=True)
class Settings:
    """Runtime settings for the API and its durable store.

    When ``database_url`` is unset the application runs against the in-memory
    store, which is what the test-suite and local demos use.
    """

    database_url: str | None = None
    allowed_origins: List[str] = field(default_factory=lambda: list(DEFAULT_ALLOWED_ORIGINS))
    log_level: str = "INFO"
    log_format: str = "readable"
    sql_echo: bool = False

    @property
    def uses_database(self) -> bool:
        """True when a relational store is configured."""

        return bool(self.database_url)


def _parse_bool(raw: str | None) -> bool:
    if raw is None:
        return False
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _parse_origins(raw: str | None) -> List[str]:
    """Split a comma separated origin list, falling back to the defaults."""

    if raw:
        origins = [origin.strip() for origin in raw.split(",") if origin.strip()]
        if origins:
            return origins
    return list(DEFAULT_ALLOWED_ORIGINS)


def settings_from_env(environ: Mapping[str, str]) -> Settings:
    """Build settings from an arbitrary environment mapping."""

    log_format = environ.get(f"{ENV_PREFIX}LOG_FORMAT", "readable").strip().lower()
    if log_format not in LOG_FORMATS:
        log_format = "readable"

    return Settings(
        database_url=environ.get(f"{ENV_PREFIX}DATABASE_URL") or None,
        allowed_origins=_parse_origins(environ.get(f"{ENV_PREFIX}ALLOWED_ORIGINS")),
        log_level=environ.get(f"{ENV_PREFIX}LOG_LEVEL", "INFO").strip().upper() or "INFO",
        log_format=log_format,
        sql_echo=_parse_bool(environ.get(f"{ENV_PREFIX}SQL_ECHO")),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Read environment variables and return cached settings."""

    return settings_from_env(os.environ)
