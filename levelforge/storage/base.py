"""Base interface for binary object storage."""

from __future__ import annotations

import abc
import hashlib
import hmac
import time
from typing import Optional
from urllib.parse import urlencode


class BlobNotFoundError(KeyError):
    """No object is stored under the requested key."""


class BlobStore(metaclass=abc.ABCMeta):
    """Abstract store addressed by slash separated keys."""

    def __init__(self, base_url: str, signing_key: bytes) -> None:
        self._base_url = base_url.rstrip("/")
        self._signing_key = signing_key

    @abc.abstractmethod
    async def put(self, key: str, data: bytes, mime_type: Optional[str] = None) -> None:
        """Store ``data`` under ``key``, replacing any previous object."""
        raise NotImplementedError

    @abc.abstractmethod
    async def get(self, key: str) -> bytes:
        """Return the object bytes or raise ``BlobNotFoundError``."""
        raise NotImplementedError

    @abc.abstractmethod
    async def exists(self, key: str) -> bool:
        raise NotImplementedError

    def _signature(self, key: str, expires: int) -> str:
        message = f"{key}:{expires}".encode("utf-8")
        return hmac.new(self._signing_key, message, hashlib.sha256).hexdigest()

    def signed_url(self, key: str, ttl_seconds: int = 3600) -> str:
        """Time-limited URL for ``key``, verifiable with ``verify_signed_url``."""
        expires = int(time.time()) + ttl_seconds
        query = urlencode({"expires": expires, "signature": self._signature(key, expires)})
        return f"{self._base_url}/{key}?{query}"

    def verify_signed_url(
        self, key: str, expires: int, signature: str, now: Optional[float] = None
    ) -> bool:
        if (now if now is not None else time.time()) > expires:
            return False
        return hmac.compare_digest(self._signature(key, int(expires)), signature)


def validate_key(key: str) -> str:
    parts = key.split("/")
    if not key or key.startswith("/") or any(part in ("", ".", "..") for part in parts):
        raise ValueError(f"Invalid storage key: {key!r}")
    return key
