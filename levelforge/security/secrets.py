from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel

from ..constants import KNOWN_SECRETS
from ..db import RunDB, Secret, utcnow
from .vault import EncryptedSecret, SecretDecryptError, SecretsVault

logger = logging.getLogger(__name__)

MASK_FILL = "••••"
DECRYPT_ERROR_MASK = "ERROR_DECRYPT"


class UnknownSecretError(KeyError):
    """The key is not in the list of supported credentials."""


class SecretStatus(BaseModel):
    key: str
    is_set: bool
    masked: Optional[str] = None
    updated_at: Optional[datetime] = None


def mask_secret(value: str) -> str:
    if len(value) <= 8:
        return "*" * 8
    return f"{value[:4]}{MASK_FILL}{value[-4:]}"


class SecretStore:
    """Persisted, encrypted credentials keyed by name."""

    def __init__(self, db: RunDB, vault: Optional[SecretsVault] = None) -> None:
        self._db = db
        self._vault = vault

    @property
    def vault(self) -> SecretsVault:
        # Created on first use so a missing master key only breaks stages that need secrets.
        if self._vault is None:
            self._vault = SecretsVault.from_env()
        return self._vault

    async def _get_row(self, key: str) -> Optional[Secret]:
        async with self._db.session() as session:
            return await session.get(Secret, key)

    async def get_decrypted_secret(self, key: str) -> Optional[str]:
        """Return the plaintext, or ``None`` when the secret was never set.

        Raises ``SecretDecryptError`` when a stored value fails to decrypt and
        ``VaultConfigurationError`` when the master key is unusable.
        """
        row = await self._get_row(key)
        if row is None:
            return None
        return self.vault.decrypt(
            EncryptedSecret(algo=row.algo, ciphertext=row.ciphertext, nonce=row.nonce, tag=row.tag)
        )

    async def get_many(self, keys: List[str]) -> Dict[str, str]:
        """Decrypt the given keys, skipping the ones that are not set."""
        values: Dict[str, str] = {}
        for key in keys:
            value = await self.get_decrypted_secret(key)
            if value is not None:
                values[key] = value
        return values

    async def set_secret(self, key: str, value: str) -> None:
        if key not in KNOWN_SECRETS:
            raise UnknownSecretError(key)
        value = (value or "").strip()
        if not value:
            raise ValueError(f"Secret {key} must not be empty")
        record = self.vault.encrypt(value)
        async with self._db.session() as session:
            row = await session.get(Secret, key)
            if row is None:
                row = Secret(key=key, ciphertext="", nonce="", tag="")
                session.add(row)
            row.algo = record.algo
            row.ciphertext = record.ciphertext
            row.nonce = record.nonce
            row.tag = record.tag
            row.updated_at = utcnow()
            await session.commit()
        logger.info(f"Secret {key} updated")

    async def list_secrets(self) -> List[SecretStatus]:
        """Status of every known secret, with set values masked."""
        async with self._db.session() as session:
            rows = {
                key: await session.get(Secret, key) for key in KNOWN_SECRETS
            }
        statuses = []
        for key in KNOWN_SECRETS:
            row = rows[key]
            if row is None:
                statuses.append(SecretStatus(key=key, is_set=False))
                continue
            try:
                masked = mask_secret(await self.get_decrypted_secret(key) or "")
            except SecretDecryptError:
                logger.warning(f"Secret {key} could not be decrypted")
                masked = DECRYPT_ERROR_MASK
            statuses.append(
                SecretStatus(key=key, is_set=True, masked=masked, updated_at=row.updated_at)
            )
        return statuses
