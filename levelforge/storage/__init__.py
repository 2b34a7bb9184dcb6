"""Blob store factory and initialization."""

from __future__ import annotations

import os
from typing import Optional

from ..config import LevelForgeConfig, load_config
from .base import BlobNotFoundError, BlobStore, validate_key
from .inmemory import InMemoryBlobStore
from .local import LocalBlobStore


def get_blob_store(
    backend: Optional[str] = None, config: Optional[LevelForgeConfig] = None
) -> BlobStore:
    """Factory function to get the configured blob store."""

    config = config or load_config()
    storage = config.storage
    backend = (backend or os.getenv("LEVELFORGE_STORAGE") or storage.backend).lower()
    signing_key = storage.signing_key.encode("utf-8") if storage.signing_key else None

    if backend == "inmemory":
        return InMemoryBlobStore(signing_key=signing_key)
    elif backend == "local":
        return LocalBlobStore(storage.root, base_url=storage.base_url, signing_key=signing_key)
    else:
        raise ValueError(f"Unsupported storage backend: {backend}")


__all__ = [
    "BlobNotFoundError",
    "BlobStore",
    "InMemoryBlobStore",
    "LocalBlobStore",
    "get_blob_store",
    "validate_key",
]
