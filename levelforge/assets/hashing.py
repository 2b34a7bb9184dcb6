from __future__ import annotations

import hashlib
import json
from typing import Any, Dict, Optional


def _sort_keys(value: Any) -> Any:
    if isinstance(value, dict):
        return {key: _sort_keys(value[key]) for key in sorted(value)}
    if isinstance(value, (list, tuple)):
        return [_sort_keys(item) for item in value]
    return value


def canonical_json(value: Any) -> str:
    """Compact JSON with recursively sorted keys."""
    return json.dumps(_sort_keys(value), separators=(",", ":"), ensure_ascii=False, sort_keys=True)


def compute_asset_key_hash(
    kind: str, model_id: str, prompt: str, metadata: Optional[Dict[str, Any]] = None
) -> str:
    """Identity of a generated asset.

    Two requests with the same kind, model, trimmed prompt and metadata (in any
    key order) map to the same hash.
    """
    payload = {
        "kind": kind,
        "modelId": model_id,
        "prompt": (prompt or "").strip(),
        "metadata": metadata or {},
    }
    return hashlib.sha256(canonical_json(payload).encode("utf-8")).hexdigest()


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()
