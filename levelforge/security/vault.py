"""AES-256-GCM envelope for provider credentials."""

from __future__ import annotations

import base64
import binascii
import logging
import os
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from pydantic import BaseModel

from ..constants import SECRET_ALGORITHM, SECRETS_MASTER_KEY_ENV

logger = logging.getLogger(__name__)

KEY_BYTES = 32
NONCE_BYTES = 12
TAG_BYTES = 16


class VaultConfigurationError(RuntimeError):
    """The master key is missing or malformed."""


class SecretDecryptError(RuntimeError):
    """A stored secret could not be authenticated or decoded."""


class EncryptedSecret(BaseModel):
    """Base64 encoded ciphertext, nonce and GCM tag."""

    algo: str = SECRET_ALGORITHM
    ciphertext: str
    nonce: str
    tag: str


def parse_master_key(raw: Optional[str]) -> bytes:
    if not raw:
        raise VaultConfigurationError(f"{SECRETS_MASTER_KEY_ENV} is not configured")
    try:
        key = base64.b64decode(raw.strip(), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise VaultConfigurationError(f"{SECRETS_MASTER_KEY_ENV} is not valid base64") from exc
    if len(key) != KEY_BYTES:
        raise VaultConfigurationError(
            f"{SECRETS_MASTER_KEY_ENV} must decode to {KEY_BYTES} bytes, got {len(key)}"
        )
    return key


def _b64decode(value: str, field: str) -> bytes:
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise SecretDecryptError(f"Malformed {field}") from exc


class SecretsVault:
    """Encrypts and decrypts secrets with a single 256-bit master key."""

    def __init__(self, master_key: bytes) -> None:
        if len(master_key) != KEY_BYTES:
            raise VaultConfigurationError(f"Master key must be {KEY_BYTES} bytes")
        self._aead = AESGCM(master_key)

    @classmethod
    def from_env(cls) -> "SecretsVault":
        return cls(parse_master_key(os.getenv(SECRETS_MASTER_KEY_ENV)))

    def encrypt(self, plaintext: str) -> EncryptedSecret:
        nonce = os.urandom(NONCE_BYTES)
        sealed = self._aead.encrypt(nonce, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-TAG_BYTES], sealed[-TAG_BYTES:]
        return EncryptedSecret(
            ciphertext=base64.b64encode(ciphertext).decode("ascii"),
            nonce=base64.b64encode(nonce).decode("ascii"),
            tag=base64.b64encode(tag).decode("ascii"),
        )

    def decrypt(self, record: EncryptedSecret) -> str:
        if record.algo != SECRET_ALGORITHM:
            raise SecretDecryptError(f"Unsupported algorithm {record.algo}")
        ciphertext = _b64decode(record.ciphertext, "ciphertext")
        nonce = _b64decode(record.nonce, "nonce")
        tag = _b64decode(record.tag, "tag")
        if len(nonce) != NONCE_BYTES or len(tag) != TAG_BYTES:
            raise SecretDecryptError("Malformed nonce or tag")
        try:
            plaintext = self._aead.decrypt(nonce, ciphertext + tag, None)
        except InvalidTag as exc:
            raise SecretDecryptError("Secret failed authentication") from exc
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise SecretDecryptError("Secret is not valid UTF-8") from exc
