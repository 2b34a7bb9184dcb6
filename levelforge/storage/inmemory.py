from __future__ import annotations

import os
from typing import Dict, Optional, Tuple

from .base import BlobNotFoundError, BlobStore, validate_key


class InMemoryBlobStore(BlobStore):
    """Keep objects in a dict. Useful for tests; nothing survives the process."""

    def __init__(
        self, base_url: str = "memory://blobs", signing_key: Optional[bytes] = None
    ) -> None:
        super().__init__(base_url, signing_key or os.urandom(32))
        self.objects: Dict[str, Tuple[bytes, Optional[str]]] = {}

    async def put(self, key: str, data: bytes, mime_type: Optional[str] = None) -> None:
        self.objects[validate_key(key)] = (bytes(data), mime_type)

    async def get(self, key: str) -> bytes:
        try:
            return self.objects[key][0]
        except KeyError as exc:
            raise BlobNotFoundError(key) from exc

    async def exists(self, key: str) -> bool:
        return key in self.objects
