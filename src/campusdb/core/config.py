"""Runtime settings resolved from the environment."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

DEFAULT_DATABASE_URL = "sqlite:///./campusdb.db"

_TRUE_VALUES = {"1", "true", "yes", "on"}


def get_database_url(url: str | None = None) -> str:
    """Resolve database URL from an explicit value, environment variable, or default.

    Priority:
    1. Explicit URL argument
    2. CAMPUSDB_URL environment variable
    3. Default: sqlite:///./campusdb.db
    """
    if url:
        return url
    if env_url := os.getenv("CAMPUSDB_URL"):
        return env_url
    return DEFAULT_DATABASE_URL


@dataclass
class Settings:
    """Bootstrap settings.

    Attributes:
        database_url: SQLAlchemy database URL
        schema: Catalog schema to introspect (PostgreSQL). None uses current_schema().
        echo: Echo SQL statements
        log_level: Root log level name
        force: Drop and recreate tables during synchronization
        alter: Add missing columns to existing tables during synchronization
    """

    database_url: str = DEFAULT_DATABASE_URL
    schema: str | None = None
    echo: bool = False
    log_level: str = "INFO"
    force: bool = False
    alter: bool = True

    @classmethod
    def from_env(cls) -> Settings:
        """Build settings from CAMPUSDB_* environment variables."""
        return cls(
            database_url=get_database_url(),
            schema=os.getenv("CAMPUSDB_SCHEMA") or None,
            echo=os.getenv("CAMPUSDB_ECHO", "").lower() in _TRUE_VALUES,
            log_level=os.getenv("CAMPUSDB_LOG_LEVEL", "INFO").upper(),
            force=os.getenv("CAMPUSDB_SYNC_FORCE", "").lower() in _TRUE_VALUES,
            alter=os.getenv("CAMPUSDB_SYNC_ALTER", "true").lower() in _TRUE_VALUES,
        )


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging for the bootstrap process."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
