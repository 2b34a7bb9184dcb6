"""Poll loop that claims jobs and runs and hands them to their processors."""

from __future__ import annotations

import asyncio
import logging
import socket
from typing import Optional

from .assets import AssetStore
from .claims import JOB_CLAIM, RUN_CLAIM, ClaimQueue, run_claimed_event
from .config import LevelForgeConfig, load_config
from .db import RunDB, get_database
from .execute import RunExecutor
from .jobs import JobProcessor
from .providers import ProviderRegistry, build_default_registry
from .security import SecretStore
from .storage import get_blob_store

logger = logging.getLogger(__name__)


class Worker:
    """Claims one unit of work at a time; jobs take priority over runs."""

    def __init__(
        self,
        db: RunDB,
        executor: RunExecutor,
        jobs: JobProcessor,
        config: Optional[LevelForgeConfig] = None,
        worker_id: Optional[str] = None,
    ) -> None:
        self._db = db
        self._executor = executor
        self._jobs = jobs
        self._config = config or LevelForgeConfig()
        self.worker_id = worker_id or socket.gethostname()
        self._job_claims = ClaimQueue(db, JOB_CLAIM)
        self._run_claims = ClaimQueue(db, RUN_CLAIM, on_claim=run_claimed_event(self.worker_id))

    async def poll_once(self) -> bool:
        """Process at most one job or run. Returns True when work was found."""
        stale_ms = self._config.worker.stale_threshold_ms
        job = await self._job_claims.claim(stale_ms)
        if job is not None:
            await self._jobs.process(job)
            return True
        run = await self._run_claims.claim(stale_ms)
        if run is not None:
            outcome = await self._executor.execute(run)
            logger.info(f"Run {run.id} stopped: {outcome.value}")
            return True
        return False

    async def prepare(self) -> None:
        """Create missing tables before polling."""
        await self._db.init_db()

    async def start(self, lifespan: Optional[float] = None) -> None:
        """Poll until cancelled.

        Args:
            lifespan: Maximum time in seconds to keep polling. If None, runs indefinitely.
        """
        loop = asyncio.get_running_loop()
        start_time = loop.time()
        interval = self._config.worker.poll_interval_ms / 1000
        logger.info(f"Worker {self.worker_id} polling every {interval:.1f}s")

        while True:
            if lifespan is not None and loop.time() - start_time >= lifespan:
                break
            try:
                found = await self.poll_once()
            except Exception:
                logger.exception("Worker poll failed")
                found = False
            if not found:
                await asyncio.sleep(interval)

    async def aclose(self) -> None:
        await self._executor.providers.aclose()
        await self._db.dispose()


def create_worker(
    config: Optional[LevelForgeConfig] = None,
    database_url: Optional[str] = None,
    providers: Optional[ProviderRegistry] = None,
) -> Worker:
    """Wire a worker from configuration."""
    config = config or load_config()
    db = get_database(database_url, config)
    providers = providers or build_default_registry(config)
    secrets = SecretStore(db)
    assets = AssetStore(db, get_blob_store(config=config))
    executor = RunExecutor(db, providers, secrets, assets, config)
    jobs = JobProcessor(db, providers, secrets, config)
    return Worker(db, executor, jobs, config)
