import os
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest
import pytest_asyncio

from levelforge.assets import AssetStore
from levelforge.claims import RUN_CLAIM, ClaimQueue
from levelforge.config import LevelForgeConfig, WorkerConfig
from levelforge.contracts import FlowDefinition
from levelforge.db import RunDB
from levelforge.execute import RunExecutor
from levelforge.providers import InternalProvider, Provider, ProviderRegistry
from levelforge.security import SecretStore, SecretsVault
from levelforge.storage import InMemoryBlobStore


class ScriptedProvider(Provider):
    """Test provider returning canned outputs per stage_key."""

    def __init__(
        self,
        outputs: Optional[Dict[str, Any]] = None,
        error: Optional[BaseException] = None,
        required_secrets: Tuple[str, ...] = (),
    ) -> None:
        self.outputs = outputs or {}
        self.error = error
        self.required_secrets = required_secrets
        self.calls: List[Dict[str, Any]] = []

    async def run(self, run, stage, attempt, context, prompt, credentials):
        self.calls.append(
            {
                "stage_key": stage.stage_key,
                "attempt": attempt,
                "prompt": prompt,
                "context": context,
                "credentials": dict(credentials),
            }
        )
        if self.error is not None:
            raise self.error
        value = self.outputs.get(stage.stage_key, {"text": prompt})
        if callable(value):
            value = value(attempt)
        return value


@pytest_asyncio.fixture
async def db(tmp_path):
    database = RunDB(f"sqlite+aiosqlite:///{tmp_path/'levelforge.db'}")
    await database.init_db()
    yield database
    await database.dispose()


@pytest.fixture
def blobs():
    return InMemoryBlobStore()


@pytest.fixture
def assets(db, blobs):
    return AssetStore(db, blobs)


@pytest.fixture
def vault():
    return SecretsVault(os.urandom(32))


@pytest.fixture
def secrets(db, vault):
    return SecretStore(db, vault)


@pytest.fixture
def config():
    return LevelForgeConfig(worker=WorkerConfig(poll_interval_ms=10, provider_timeout_s=5))


@pytest.fixture
def scripted():
    return ScriptedProvider()


@pytest.fixture
def registry(scripted):
    providers = ProviderRegistry()
    providers.register("internal", InternalProvider())
    providers.register("scripted", scripted)
    return providers


@pytest.fixture
def executor(db, registry, secrets, assets, config):
    return RunExecutor(db, registry, secrets, assets, config)


@pytest.fixture
def make_flow(db) -> Callable:
    async def _make(stages, name="test-flow"):
        return await db.create_flow(FlowDefinition(name=name, stages=stages))

    return _make


@pytest.fixture
def claim_run(db: RunDB) -> Callable:
    async def _claim():
        return await ClaimQueue(db, RUN_CLAIM).claim(stale_threshold_ms=300_000)

    return _claim


@pytest.fixture
def provider_factory():
    return ScriptedProvider
