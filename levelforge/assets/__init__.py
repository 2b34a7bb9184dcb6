"""Content-addressed asset store."""

from .hashing import canonical_json, compute_asset_key_hash, sha256_hex
from .store import AssetStore

__all__ = ["AssetStore", "canonical_json", "compute_asset_key_hash", "sha256_hex"]
