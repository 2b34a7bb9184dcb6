from __future__ import annotations

import os
from typing import List, Literal, Optional

import yaml
from pydantic import BaseModel, Field

from .constants import (
    DEFAULT_POLL_INTERVAL_MS,
    DEFAULT_PROVIDER_TIMEOUT_S,
    DEFAULT_STALE_THRESHOLD_MS,
)
from .contracts import ErrorCategory, StageKind


class WorkerConfig(BaseModel):
    """Poll loop and dispatch timing."""

    poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS
    stale_threshold_ms: int = DEFAULT_STALE_THRESHOLD_MS
    provider_timeout_s: Optional[float] = DEFAULT_PROVIDER_TIMEOUT_S


class FallbackConfig(BaseModel):
    """Which provider failures may be replaced by a deterministic stub output."""

    enabled: bool = True
    categories: List[ErrorCategory] = Field(
        default_factory=lambda: [ErrorCategory.CONFIGURATION]
    )
    stage_kinds: List[StageKind] = Field(
        default_factory=lambda: [StageKind.LLM, StageKind.IMAGE, StageKind.MODEL3D]
    )

    def allows(self, kind: StageKind, category: ErrorCategory) -> bool:
        return self.enabled and kind in self.stage_kinds and category in self.categories


class StorageConfig(BaseModel):
    """Blob storage backend settings."""

    backend: Literal["local", "inmemory"] = "local"
    root: str = "blobs"
    base_url: str = "http://localhost:8080/blobs"
    signing_key: Optional[str] = None


class ProviderSettings(BaseModel):
    """Settings for the HTTP provider adapters."""

    openai_base_url: str = "https://api.openai.com/v1"
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta/openai"
    max_retries: int = 3
    request_timeout_s: float = 60.0


class LevelForgeConfig(BaseModel):
    """Top-level configuration model."""

    database_url: Optional[str] = None
    worker: WorkerConfig = Field(default_factory=WorkerConfig)
    fallback: FallbackConfig = Field(default_factory=FallbackConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    providers: ProviderSettings = Field(default_factory=ProviderSettings)


def load_config(path: Optional[str] = None) -> LevelForgeConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to LEVELFORGE_CONFIG env
            variable or 'config.yaml' in the current directory.

    Environment variables override the file: ``LEVELFORGE_DATABASE_URL`` or
    ``DATABASE_URL``, ``WORKER_POLL_INTERVAL_MS``, ``WORKER_STALE_RUN_MS`` and
    ``WORKER_PROVIDER_TIMEOUT_S``.
    """

    config_path = path or os.getenv("LEVELFORGE_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = LevelForgeConfig(**data)
    else:
        config = LevelForgeConfig()

    env_db_url = os.getenv("LEVELFORGE_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url

    poll_interval = os.getenv("WORKER_POLL_INTERVAL_MS")
    if poll_interval:
        config.worker.poll_interval_ms = int(poll_interval)
    stale_threshold = os.getenv("WORKER_STALE_RUN_MS")
    if stale_threshold:
        config.worker.stale_threshold_ms = int(stale_threshold)
    provider_timeout = os.getenv("WORKER_PROVIDER_TIMEOUT_S")
    if provider_timeout:
        config.worker.provider_timeout_s = float(provider_timeout)
    return config
