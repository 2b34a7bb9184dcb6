"""Filesystem blob store."""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
from typing import Optional, Union

from .base import BlobNotFoundError, BlobStore, validate_key

logger = logging.getLogger(__name__)


class LocalBlobStore(BlobStore):
    """Store objects as files below ``root``."""

    def __init__(
        self,
        root: Union[str, Path],
        base_url: str = "http://localhost:8080/blobs",
        signing_key: Optional[bytes] = None,
    ) -> None:
        super().__init__(base_url, signing_key or os.urandom(32))
        self.root = Path(root)

    def _path(self, key: str) -> Path:
        return self.root.joinpath(*validate_key(key).split("/"))

    def _write(self, path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(path.name + ".tmp")
        tmp.write_bytes(data)
        os.replace(tmp, path)

    async def put(self, key: str, data: bytes, mime_type: Optional[str] = None) -> None:
        path = self._path(key)
        await asyncio.to_thread(self._write, path, data)
        logger.debug(f"Stored {len(data)} bytes at {path}")

    async def get(self, key: str) -> bytes:
        path = self._path(key)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError as exc:
            raise BlobNotFoundError(key) from exc

    async def exists(self, key: str) -> bool:
        return await asyncio.to_thread(self._path(key).is_file)
