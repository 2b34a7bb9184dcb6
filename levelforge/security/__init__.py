"""Credential encryption and storage."""

from .secrets import SecretStatus, SecretStore, UnknownSecretError, mask_secret
from .vault import (
    EncryptedSecret,
    SecretDecryptError,
    SecretsVault,
    VaultConfigurationError,
    parse_master_key,
)

__all__ = [
    "EncryptedSecret",
    "SecretDecryptError",
    "SecretStatus",
    "SecretStore",
    "SecretsVault",
    "UnknownSecretError",
    "VaultConfigurationError",
    "mask_secret",
    "parse_master_key",
]
