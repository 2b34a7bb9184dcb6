"""Persistence layer for levelforge runs."""

from __future__ import annotations

import os
from typing import Optional

from ..config import LevelForgeConfig
from ..constants import DEFAULT_DATABASE_URL
from .models import (
    Asset,
    AssetFile,
    Flow,
    FlowStageTemplate,
    Job,
    Run,
    RunEvent,
    Secret,
    StageRun,
    utcnow,
)
from .run_db import RunDB


def normalize_database_url(database_url: str) -> str:
    """Map plain driver URLs onto their async drivers."""
    if database_url.startswith("sqlite+aiosqlite://") or database_url.startswith(
        "postgresql+asyncpg://"
    ):
        return database_url
    if database_url.startswith("sqlite://"):
        return database_url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    if database_url.startswith("postgres://"):
        return database_url.replace("postgres://", "postgresql+asyncpg://", 1)
    if database_url.startswith("postgresql://"):
        return database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    raise ValueError(f"Unsupported database backend: {database_url}")


def get_database(
    database_url: Optional[str] = None, config: Optional[LevelForgeConfig] = None
) -> RunDB:
    """Factory function to obtain a ``RunDB``.

    The backend is selected from ``database_url``, which can be provided
    explicitly, via ``LEVELFORGE_DATABASE_URL`` or ``DATABASE_URL``, or from the
    loaded configuration. Without any of them a local SQLite file is used.
    """

    database_url = (
        database_url
        or os.getenv("LEVELFORGE_DATABASE_URL")
        or os.getenv("DATABASE_URL")
        or getattr(config, "database_url", None)
        or DEFAULT_DATABASE_URL
    )
    return RunDB(normalize_database_url(database_url))


__all__ = [
    "Asset",
    "AssetFile",
    "Flow",
    "FlowStageTemplate",
    "Job",
    "Run",
    "RunDB",
    "RunEvent",
    "Secret",
    "StageRun",
    "get_database",
    "normalize_database_url",
    "utcnow",
]
