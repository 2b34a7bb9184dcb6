from __future__ import annotations

import logging
import mimetypes
from typing import Any, Dict, List, Optional
from uuid import UUID, uuid4

from sqlalchemy.exc import IntegrityError
from sqlmodel import select

from ..db import Asset, AssetFile, RunDB
from ..storage import BlobStore
from .hashing import compute_asset_key_hash, sha256_hex

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "application/octet-stream"


def guess_extension(mime_type: str) -> str:
    ext = mimetypes.guess_extension(mime_type or "") or ".bin"
    return ext.lstrip(".")


class AssetStore:
    """Deduplicated asset records with their stored files."""

    def __init__(self, db: RunDB, blobs: BlobStore) -> None:
        self._db = db
        self._blobs = blobs

    async def _find_by_hash(self, key_hash: str) -> Optional[Asset]:
        async with self._db.session() as session:
            result = await session.execute(select(Asset).where(Asset.asset_key_hash == key_hash))
            return result.scalars().first()

    async def create_asset(
        self,
        kind: str,
        provider_model_id: str,
        prompt: str,
        metadata: Optional[Dict[str, Any]] = None,
        slug: str = "",
        provider: str = "internal",
    ) -> Asset:
        """Return the asset for this identity, inserting it on first sight.

        ``slug`` and ``provider`` are descriptive and take no part in the
        identity.
        """
        metadata = dict(metadata or {})
        key_hash = compute_asset_key_hash(kind, provider_model_id, prompt, metadata)
        existing = await self._find_by_hash(key_hash)
        if existing is not None:
            logger.debug(f"Asset {existing.id} reused for hash {key_hash[:12]}")
            return existing

        asset = Asset(
            asset_key_hash=key_hash,
            kind=kind,
            slug=slug,
            provider=provider,
            model_id=provider_model_id,
            prompt=prompt,
            prompt_hash=sha256_hex((prompt or "").strip().encode("utf-8")),
            metadata_json=metadata,
        )
        try:
            async with self._db.session() as session:
                session.add(asset)
                await session.commit()
        except IntegrityError:
            # Another writer inserted the same identity first.
            winner = await self._find_by_hash(key_hash)
            if winner is None:
                raise
            return winner
        logger.info(f"Created asset {asset.id} ({kind})")
        return asset

    async def create_asset_file(
        self,
        asset_id: UUID,
        data: bytes,
        file_kind: str = "original",
        mime_type: Optional[str] = None,
        file_ext: Optional[str] = None,
    ) -> AssetFile:
        """Store ``data`` as a new file of the asset. Files are never deduplicated."""
        mime_type = mime_type or (
            mimetypes.guess_type(f"file.{file_ext}")[0] if file_ext else None
        ) or DEFAULT_MIME_TYPE
        ext = (file_ext or guess_extension(mime_type)).lstrip(".")
        file_id = uuid4()
        storage_key = f"assets/{asset_id}/{file_kind}/{file_id}.{ext}"

        await self._blobs.put(storage_key, data, mime_type)
        asset_file = AssetFile(
            id=file_id,
            asset_id=asset_id,
            file_kind=file_kind,
            storage_key=storage_key,
            mime_type=mime_type,
            size_bytes=len(data),
            sha256=sha256_hex(data),
        )
        async with self._db.session() as session:
            session.add(asset_file)
            await session.commit()
        return asset_file

    async def get_asset(self, asset_id: UUID) -> Optional[Asset]:
        async with self._db.session() as session:
            return await session.get(Asset, asset_id)

    async def list_assets(
        self, kind: Optional[str] = None, limit: int = 50, offset: int = 0
    ) -> List[Asset]:
        stmt = select(Asset).order_by(Asset.created_at.desc()).offset(offset).limit(limit)
        if kind:
            stmt = stmt.where(Asset.kind == kind)
        async with self._db.session() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def list_files(self, asset_id: UUID) -> List[AssetFile]:
        async with self._db.session() as session:
            result = await session.execute(
                select(AssetFile)
                .where(AssetFile.asset_id == asset_id)
                .order_by(AssetFile.created_at)
            )
            return list(result.scalars().all())

    async def update_asset_metadata(
        self, asset_id: UUID, patch: Dict[str, Any]
    ) -> Optional[Asset]:
        """Shallow-merge ``patch`` into the asset metadata."""
        async with self._db.session() as session:
            asset = await session.get(Asset, asset_id)
            if asset is None:
                return None
            asset.metadata_json = {**(asset.metadata_json or {}), **patch}
            await session.commit()
        return asset

    async def read_file(self, asset_file: AssetFile) -> bytes:
        return await self._blobs.get(asset_file.storage_key)

    def signed_url(self, asset_file: AssetFile, ttl_seconds: int = 3600) -> str:
        return self._blobs.signed_url(asset_file.storage_key, ttl_seconds)
