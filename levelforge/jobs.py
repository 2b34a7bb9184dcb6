"""Flow-independent jobs processed by the worker."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional
from uuid import uuid4

from .claims import JOB_CLAIM, ClaimQueue
from .config import LevelForgeConfig
from .contracts import JobStatus, ProviderOutput, StageKind, StageSpec
from .db import Job, Run, RunDB
from .providers import ProviderRegistry
from .security import SecretStore

logger = logging.getLogger(__name__)

TEST_PROVIDER_CALL = "test_provider_call"

JobHandler = Callable[[Job], Awaitable[Dict[str, Any]]]


class JobProcessor:
    """Dispatch claimed jobs to handlers by ``job.type``."""

    def __init__(
        self,
        db: RunDB,
        providers: ProviderRegistry,
        secrets: SecretStore,
        config: Optional[LevelForgeConfig] = None,
    ) -> None:
        self._queue = ClaimQueue(db, JOB_CLAIM)
        self._providers = providers
        self._secrets = secrets
        self._config = config or LevelForgeConfig()
        self._handlers: Dict[str, JobHandler] = {TEST_PROVIDER_CALL: self.test_provider_call}

    def register(self, job_type: str, handler: JobHandler) -> None:
        self._handlers[job_type] = handler

    async def process(self, job: Job) -> bool:
        """Run the job's handler and record the result. Returns True on success."""
        handler = self._handlers.get(job.type)
        if handler is None:
            logger.error(f"Job {job.id} has unknown type {job.type}")
            await self._queue.release(job.id, JobStatus.FAILED, error=f"Unknown job type: {job.type}")
            return False
        try:
            result = await handler(job)
        except Exception as exc:
            logger.exception(f"Job {job.id} ({job.type}) failed")
            await self._queue.release(job.id, JobStatus.FAILED, error=str(exc) or type(exc).__name__)
            return False
        await self._queue.release(job.id, JobStatus.SUCCEEDED, result=result)
        logger.info(f"Job {job.id} ({job.type}) succeeded")
        return True

    async def test_provider_call(self, job: Job) -> Dict[str, Any]:
        """Make one provider call outside any flow.

        Payload: ``{"provider", "prompt", "model"?, "kind"?, "options"?}``.
        """
        payload = job.payload or {}
        provider_name = payload.get("provider")
        if not provider_name:
            raise ValueError("payload.provider is required")
        prompt = payload.get("prompt") or ""

        provider = self._providers.get(provider_name)
        stage = StageSpec(
            stage_key=TEST_PROVIDER_CALL,
            kind=payload.get("kind") or StageKind.LLM,
            provider=provider_name,
            model_id=payload.get("model") or "",
            provider_config=payload.get("options") or {},
        )
        run = Run(id=uuid4(), flow_id=uuid4(), user_prompt=prompt)
        credentials = await self._secrets.get_many(list(provider.required_secrets))
        result = ProviderOutput.coerce(
            await asyncio.wait_for(
                provider.run(run, stage, 1, {"user_prompt": prompt}, prompt, credentials),
                timeout=self._config.worker.provider_timeout_s,
            )
        )
        return {
            "output": result.output,
            "artifacts": [
                {"kind": a.kind, "slug": a.slug, "size": len(a.data)} for a in result.artifacts
            ],
        }
