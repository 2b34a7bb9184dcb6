from urllib.parse import parse_qs, urlsplit

import pytest

from levelforge.config import LevelForgeConfig, StorageConfig
from levelforge.storage import (
    BlobNotFoundError,
    InMemoryBlobStore,
    LocalBlobStore,
    get_blob_store,
    validate_key,
)


@pytest.mark.asyncio
async def test_local_store_round_trip(tmp_path):
    store = LocalBlobStore(tmp_path / "blobs")

    await store.put("assets/a/original/f.png", b"first")
    await store.put("assets/a/original/f.png", b"second")

    assert await store.exists("assets/a/original/f.png")
    assert await store.get("assets/a/original/f.png") == b"second"
    assert (tmp_path / "blobs" / "assets" / "a" / "original" / "f.png").read_bytes() == b"second"
    assert not list((tmp_path / "blobs").rglob("*.tmp"))


@pytest.mark.asyncio
async def test_local_store_missing_key(tmp_path):
    store = LocalBlobStore(tmp_path)
    assert not await store.exists("nope/x.bin")
    with pytest.raises(BlobNotFoundError):
        await store.get("nope/x.bin")


@pytest.mark.asyncio
@pytest.mark.parametrize("key", ["", "/etc/passwd", "a/../b", "a//b", "./a"])
async def test_invalid_keys_rejected(tmp_path, key):
    with pytest.raises(ValueError):
        await LocalBlobStore(tmp_path).put(key, b"x")
    with pytest.raises(ValueError):
        await InMemoryBlobStore().put(key, b"x")


def test_validate_key_accepts_nested_keys():
    assert validate_key("assets/1/original/2.glb") == "assets/1/original/2.glb"


def test_signed_urls():
    store = InMemoryBlobStore(base_url="https://cdn.example.com/", signing_key=b"k" * 32)

    url = store.signed_url("assets/a.png", ttl_seconds=120)
    parts = urlsplit(url)
    query = parse_qs(parts.query)
    expires = int(query["expires"][0])
    signature = query["signature"][0]

    assert f"{parts.scheme}://{parts.netloc}{parts.path}" == "https://cdn.example.com/assets/a.png"
    assert store.verify_signed_url("assets/a.png", expires, signature)
    assert not store.verify_signed_url("assets/b.png", expires, signature)
    assert not store.verify_signed_url("assets/a.png", expires, signature, now=expires + 1)

    other = InMemoryBlobStore(base_url="https://cdn.example.com/", signing_key=b"j" * 32)
    assert not other.verify_signed_url("assets/a.png", expires, signature)


def test_get_blob_store_factory(tmp_path, monkeypatch):
    monkeypatch.delenv("LEVELFORGE_STORAGE", raising=False)
    config = LevelForgeConfig(storage=StorageConfig(backend="local", root=str(tmp_path)))

    assert isinstance(get_blob_store(config=config), LocalBlobStore)
    assert isinstance(get_blob_store("inmemory", config=config), InMemoryBlobStore)

    monkeypatch.setenv("LEVELFORGE_STORAGE", "inmemory")
    assert isinstance(get_blob_store(config=config), InMemoryBlobStore)

    with pytest.raises(ValueError):
        get_blob_store("s3", config=config)
