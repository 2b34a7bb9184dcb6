"""levelforge: durable orchestration of multi-stage generation flows."""

from .assets import AssetStore, compute_asset_key_hash
from .claims import JOB_CLAIM, RUN_CLAIM, ClaimQueue
from .config import LevelForgeConfig, load_config
from .contracts import FlowDefinition, ProviderOutput, RunOutcome, RunStatus, StageSpec
from .db import RunDB, get_database
from .execute import RunExecutor
from .jobs import JobProcessor
from .providers import Provider, ProviderError, ProviderRegistry, build_default_registry
from .security import SecretStore, SecretsVault
from .storage import get_blob_store
from .worker import Worker, create_worker

__version__ = "0.1.0"
__all__ = [
    "AssetStore",
    "ClaimQueue",
    "FlowDefinition",
    "JOB_CLAIM",
    "JobProcessor",
    "LevelForgeConfig",
    "Provider",
    "ProviderError",
    "ProviderOutput",
    "ProviderRegistry",
    "RUN_CLAIM",
    "RunDB",
    "RunExecutor",
    "RunOutcome",
    "RunStatus",
    "SecretStore",
    "SecretsVault",
    "StageSpec",
    "Worker",
    "build_default_registry",
    "compute_asset_key_hash",
    "create_worker",
    "get_blob_store",
    "get_database",
    "load_config",
]
