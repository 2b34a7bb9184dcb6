"""Stage execution engine for levelforge runs."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Tuple

from .assets import AssetStore
from .config import LevelForgeConfig
from .contracts import (
    Artifact,
    EventLevel,
    ProviderOutput,
    RunMode,
    RunOutcome,
    RunStatus,
    StageSpec,
    StageStatus,
)
from .db import Run, RunDB, StageRun
from .orchestration import (
    BindingError,
    TemplateError,
    build_routing_context,
    build_run_context,
    generate_stub_output,
    resolve_bindings,
    resolve_prompt,
    safe_eval,
)
from .providers import ProviderRegistry, classify_error
from .security import SecretStore

logger = logging.getLogger(__name__)

_RESUMABLE = (StageStatus.RUNNING.value, StageStatus.STALE.value)
_COMPLETED = (StageStatus.SUCCEEDED.value, StageStatus.SKIPPED.value)


def next_attempt(history: List[StageRun], stage_key: str) -> int:
    attempts = [s.attempt for s in history if s.stage_key == stage_key]
    return max(attempts) + 1 if attempts else 1


def most_recent(history: List[StageRun]) -> StageRun:
    return max(history, key=lambda s: (s.started_at, s.ended_at or s.started_at, s.attempt))


class RunExecutor:
    """Advances one claimed run through its flow until it stops."""

    def __init__(
        self,
        db: RunDB,
        providers: ProviderRegistry,
        secrets: SecretStore,
        assets: AssetStore,
        config: Optional[LevelForgeConfig] = None,
    ) -> None:
        self._db = db
        self.providers = providers
        self._secrets = secrets
        self._assets = assets
        self._config = config or LevelForgeConfig()

    async def execute(self, run: Run) -> RunOutcome:
        """Run stages one at a time until the run finishes, fails, pauses or is taken away."""
        stages = await self._db.get_flow_stages(run.flow_id)
        by_key = {stage.stage_key: stage for stage in stages}
        logger.info(f"Executing run {run.id} ({len(stages)} stages, mode={run.mode})")

        while True:
            current = await self._db.get_run(run.id)
            if current is None or current.status != RunStatus.RUNNING.value:
                logger.info(f"Run {run.id} is no longer running, stopping")
                return RunOutcome.ABANDONED
            run = current

            if not stages:
                await self._db.fail_run(run.id, "Flow has no stages")
                return RunOutcome.FAILED

            history = await self._db.get_stage_runs(run.id)
            stage, outcome = await self._select_stage(run, stages, by_key, history)
            if outcome is not None:
                return outcome

            outcome = await self._run_stage(run, stage, next_attempt(history, stage.stage_key))
            if outcome is not None:
                return outcome

    async def _select_stage(
        self,
        run: Run,
        stages: List[StageSpec],
        by_key: Dict[str, StageSpec],
        history: List[StageRun],
    ) -> Tuple[Optional[StageSpec], Optional[RunOutcome]]:
        if not history:
            return stages[0], None

        latest = most_recent(history)
        template = by_key.get(latest.stage_key)
        if template is None:
            await self._db.fail_run(
                run.id, f"Stage {latest.stage_key} is no longer part of the flow"
            )
            return None, RunOutcome.FAILED

        if latest.status in _RESUMABLE:
            await self._db.mark_stage_stale(latest.id)
            logger.warning(f"Run {run.id}: re-executing interrupted stage {latest.stage_key}")
            return template, None

        if latest.status not in _COMPLETED:
            await self._db.fail_run(
                run.id,
                run.error_summary or f"Stage {latest.stage_key} failed",
                stage_key=latest.stage_key,
            )
            return None, RunOutcome.FAILED

        target = await self._route(run, template, latest)
        if target is not None:
            if target not in by_key:
                await self._db.fail_run(
                    run.id,
                    f"Routing target {target} from stage {template.stage_key} does not exist",
                    stage_key=template.stage_key,
                )
                return None, RunOutcome.FAILED
            return by_key[target], None

        following = [s for s in stages if s.order_index > template.order_index]
        if not following:
            await self._db.complete_run(run.id)
            return None, RunOutcome.SUCCEEDED
        return following[0], None

    async def _route(self, run: Run, template: StageSpec, latest: StageRun) -> Optional[str]:
        if not template.routing_rules:
            return None
        run_context = build_run_context(run, await self._db.get_latest_stage_runs(run.id))
        eval_context = build_routing_context(run_context, latest.output)
        for rule in template.routing_rules:
            if safe_eval(rule.condition, eval_context):
                await self._db.emit_event(
                    run.id,
                    "Routing rule matched",
                    stage_key=template.stage_key,
                    data={"condition": rule.condition, "target": rule.target},
                )
                return rule.target
        return None

    async def _dispatch(
        self, run: Run, stage: StageSpec, attempt: int, context: Dict[str, Any], prompt: str
    ) -> ProviderOutput:
        provider = self.providers.get(stage.provider)
        credentials = await self._secrets.get_many(list(provider.required_secrets))
        result = await asyncio.wait_for(
            provider.run(run, stage, attempt, context, prompt, credentials),
            timeout=self._config.worker.provider_timeout_s,
        )
        return ProviderOutput.coerce(result)

    async def _run_stage(self, run: Run, stage: StageSpec, attempt: int) -> Optional[RunOutcome]:
        key = stage.stage_key
        context = build_run_context(run, await self._db.get_latest_stage_runs(run.id))
        try:
            bindings = resolve_bindings(stage.input_bindings, context)
            bound = {**context, **bindings}
            prompt = resolve_prompt(stage.prompt_template, bound)
        except (TemplateError, BindingError) as exc:
            await self._db.fail_run(
                run.id,
                f"Stage {key}: {exc}",
                stage_key=key,
                data={"error_type": type(exc).__name__},
            )
            return RunOutcome.FAILED

        stage_run = await self._db.create_stage_run(run.id, key, attempt, prompt, bindings)
        logger.info(f"Run {run.id}: stage {key} attempt {attempt} started")

        fallback_used = False
        try:
            result = await self._dispatch(run, stage, attempt, bound, prompt)
        except Exception as exc:
            category = classify_error(exc)
            if not self._config.fallback.allows(stage.kind, category):
                logger.exception(f"Run {run.id}: stage {key} failed ({category.value})")
                await self._db.record_stage_failure(
                    stage_run.id,
                    {
                        "message": str(exc),
                        "category": category.value,
                        "type": type(exc).__name__,
                    },
                    summary=f"Stage {key} failed: {exc}",
                )
                return RunOutcome.FAILED
            logger.warning(f"Run {run.id}: stage {key} using stub output ({category.value}): {exc}")
            await self._db.emit_event(
                run.id,
                "Provider unavailable, using stub output",
                level=EventLevel.WARN,
                stage_key=key,
                data={"error": str(exc), "category": category.value, "fallback": True},
            )
            result = generate_stub_output(run, stage, attempt)
            fallback_used = True

        artifacts = [
            await self._store_artifact(run, stage, prompt, index, artifact)
            for index, artifact in enumerate(result.artifacts)
        ]
        pause_after = run.mode == RunMode.CUSTOM.value and stage.breakpoint_after
        advanced = await self._db.record_stage_success(
            stage_run.id, result.output, artifacts, fallback_used, pause_after=pause_after
        )
        logger.info(f"Run {run.id}: stage {key} succeeded")

        if not advanced:
            # Cancelled or otherwise taken away while the provider was running.
            return RunOutcome.ABANDONED
        if pause_after:
            logger.info(f"Run {run.id} paused after {key}")
            return RunOutcome.WAITING_USER
        return None

    async def _store_artifact(
        self, run: Run, stage: StageSpec, prompt: str, index: int, artifact: Artifact
    ) -> Dict[str, Any]:
        asset = await self._assets.create_asset(
            kind=artifact.kind,
            provider_model_id=stage.model_id or stage.provider,
            prompt=prompt,
            metadata={"stage_key": stage.stage_key, "artifact_index": index, "seed": run.seed},
            slug=artifact.slug,
            provider=stage.provider,
        )
        files = await self._assets.list_files(asset.id)
        if files:
            asset_file = files[0]
        else:
            asset_file = await self._assets.create_asset_file(
                asset.id,
                artifact.data,
                file_kind="original",
                mime_type=artifact.mime_type,
                file_ext=artifact.file_ext,
            )
        return {
            "asset_id": str(asset.id),
            "asset_file_id": str(asset_file.id),
            "kind": artifact.kind,
            "slug": artifact.slug,
            "storage_key": asset_file.storage_key,
            "mime_type": asset_file.mime_type,
            "size_bytes": asset_file.size_bytes,
        }
