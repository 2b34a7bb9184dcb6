from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional
from uuid import UUID

from sqlalchemy import delete, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel, select

from ..constants import BREAKPOINT_REASON
from ..contracts import (
    EventLevel,
    FlowDefinition,
    JobStatus,
    RunMode,
    RunStatus,
    StageSpec,
    StageStatus,
)
from .models import (
    Flow,
    FlowStageTemplate,
    Job,
    Run,
    RunEvent,
    StageRun,
    utcnow,
)

logger = logging.getLogger(__name__)

ACTIVE_RUN_STATUSES = (RunStatus.QUEUED.value, RunStatus.RUNNING.value, RunStatus.WAITING_USER.value)


def _paused_event(run_id: UUID, stage_key: str, reason: str) -> RunEvent:
    return RunEvent(
        run_id=run_id,
        stage_key=stage_key,
        message="Run paused at breakpoint",
        data={"reason": reason},
    )


class RunDB:
    """Async database helper for flows, runs, stage attempts, events and jobs."""

    def __init__(self, database_url: str) -> None:
        self.database_url = database_url
        connect_args: Dict[str, Any] = {}
        if database_url.startswith("sqlite"):
            connect_args = {"check_same_thread": False, "timeout": 30}
        self.engine = create_async_engine(
            database_url, echo=False, future=True, connect_args=connect_args
        )
        self._sessions = async_sessionmaker(self.engine, expire_on_commit=False)

    @property
    def dialect(self) -> str:
        return self.engine.dialect.name

    async def init_db(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)

    async def dispose(self) -> None:
        await self.engine.dispose()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        async with self._sessions() as session:
            yield session

    # Flows

    async def create_flow(self, definition: FlowDefinition) -> Flow:
        """Persist a flow and its stage templates in one transaction."""
        flow = Flow(
            name=definition.name,
            version=definition.version,
            description=definition.description,
        )
        async with self.session() as session:
            session.add(flow)
            await session.flush()
            for stage in definition.ordered_stages():
                session.add(
                    FlowStageTemplate(
                        flow_id=flow.id,
                        stage_key=stage.stage_key,
                        order_index=stage.order_index,
                        kind=stage.kind.value,
                        provider=stage.provider,
                        model_id=stage.model_id,
                        prompt_template=stage.prompt_template,
                        input_bindings=dict(stage.input_bindings),
                        provider_config=dict(stage.provider_config),
                        routing_rules=[rule.model_dump() for rule in stage.routing_rules],
                        breakpoint_after=stage.breakpoint_after,
                    )
                )
            await session.commit()
        logger.info(f"Created flow {flow.name} ({flow.id}) with {len(definition.stages)} stages")
        return flow

    async def get_flow(self, flow_id: UUID) -> Optional[Flow]:
        async with self.session() as session:
            return await session.get(Flow, flow_id)

    async def list_flows(self) -> List[Flow]:
        async with self.session() as session:
            result = await session.execute(select(Flow).order_by(Flow.created_at))
            return list(result.scalars().all())

    async def get_flow_stages(self, flow_id: UUID) -> List[StageSpec]:
        """Return the flow's stage templates ordered by ``order_index``."""
        async with self.session() as session:
            result = await session.execute(
                select(FlowStageTemplate)
                .where(FlowStageTemplate.flow_id == flow_id)
                .order_by(FlowStageTemplate.order_index)
            )
            rows = result.scalars().all()
        return [
            StageSpec(
                stage_key=row.stage_key,
                order_index=row.order_index,
                kind=row.kind,
                provider=row.provider,
                model_id=row.model_id,
                prompt_template=row.prompt_template,
                input_bindings=row.input_bindings or {},
                provider_config=row.provider_config or {},
                routing_rules=row.routing_rules or [],
                breakpoint_after=row.breakpoint_after,
            )
            for row in rows
        ]

    # Runs

    async def create_run(
        self,
        flow_id: UUID,
        user_prompt: str = "",
        mode: RunMode = RunMode.EXPRESS,
        seed: int = 0,
        inputs: Optional[Dict[str, Any]] = None,
    ) -> Run:
        async with self.session() as session:
            if await session.get(Flow, flow_id) is None:
                raise ValueError(f"Flow {flow_id} not found")
            run = Run(
                flow_id=flow_id,
                mode=RunMode(mode).value,
                status=RunStatus.QUEUED.value,
                user_prompt=user_prompt,
                seed=seed,
                context={"inputs": dict(inputs or {}), "context": {}},
            )
            session.add(run)
            await session.flush()
            session.add(RunEvent(run_id=run.id, message="Run created", data={"mode": run.mode}))
            await session.commit()
        return run

    async def get_run(self, run_id: UUID) -> Optional[Run]:
        async with self.session() as session:
            return await session.get(Run, run_id)

    async def list_runs(
        self, status: Optional[RunStatus] = None, limit: int = 50
    ) -> List[Run]:
        stmt = select(Run).order_by(Run.created_at.desc()).limit(limit)
        if status is not None:
            stmt = stmt.where(Run.status == RunStatus(status).value)
        async with self.session() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def update_run_status(self, run_id: UUID, status: RunStatus, **fields: Any) -> None:
        async with self.session() as session:
            run = await session.get(Run, run_id)
            if run is None:
                return
            run.status = RunStatus(status).value
            for name, value in fields.items():
                setattr(run, name, value)
            run.updated_at = utcnow()
            await session.commit()

    async def _transition(
        self,
        session: AsyncSession,
        run_id: UUID,
        from_statuses: Iterable[str],
        **values: Any,
    ) -> bool:
        result = await session.execute(
            update(Run)
            .where(Run.id == run_id, Run.status.in_(list(from_statuses)))
            .values(updated_at=utcnow(), **values)
        )
        return result.rowcount == 1

    async def fail_run(
        self,
        run_id: UUID,
        summary: str,
        stage_key: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """Mark a running run failed and record why."""
        async with self.session() as session:
            changed = await self._transition(
                session,
                run_id,
                [RunStatus.RUNNING.value],
                status=RunStatus.FAILED.value,
                error_summary=summary,
            )
            if changed:
                session.add(
                    RunEvent(
                        run_id=run_id,
                        stage_key=stage_key,
                        level=EventLevel.ERROR.value,
                        message="Run failed",
                        data={"error": summary, **(data or {})},
                    )
                )
            await session.commit()
        if changed:
            logger.error(f"Run {run_id} failed: {summary}")
        return changed

    async def complete_run(self, run_id: UUID) -> bool:
        async with self.session() as session:
            changed = await self._transition(
                session,
                run_id,
                [RunStatus.RUNNING.value],
                status=RunStatus.SUCCEEDED.value,
                current_stage_key=None,
            )
            if changed:
                session.add(RunEvent(run_id=run_id, message="Run succeeded"))
            await session.commit()
        if changed:
            logger.info(f"Run {run_id} succeeded")
        return changed

    async def pause_run(
        self, run_id: UUID, stage_key: str, reason: str = BREAKPOINT_REASON
    ) -> bool:
        """Park a running run in ``waiting_user`` after ``stage_key``."""
        async with self.session() as session:
            changed = await self._transition(
                session,
                run_id,
                [RunStatus.RUNNING.value],
                status=RunStatus.WAITING_USER.value,
                current_stage_key=None,
                waiting_for_stage_key=stage_key,
                waiting_reason=reason,
            )
            if changed:
                session.add(_paused_event(run_id, stage_key, reason))
            await session.commit()
        return changed

    async def resume_run(self, run_id: UUID) -> bool:
        """Requeue a run waiting on a breakpoint. Returns False for any other status."""
        async with self.session() as session:
            changed = await self._transition(
                session,
                run_id,
                [RunStatus.WAITING_USER.value],
                status=RunStatus.QUEUED.value,
                waiting_for_stage_key=None,
                waiting_reason=None,
            )
            if changed:
                session.add(RunEvent(run_id=run_id, message="Run resumed"))
            await session.commit()
        return changed

    async def cancel_run(self, run_id: UUID) -> bool:
        async with self.session() as session:
            changed = await self._transition(
                session,
                run_id,
                ACTIVE_RUN_STATUSES,
                status=RunStatus.CANCELLED.value,
                current_stage_key=None,
            )
            if changed:
                session.add(
                    RunEvent(run_id=run_id, level=EventLevel.WARN.value, message="Run cancelled")
                )
            await session.commit()
        return changed

    async def delete_run(self, run_id: UUID) -> bool:
        """Delete a run together with its stage runs and events."""
        async with self.session() as session:
            await session.execute(delete(RunEvent).where(RunEvent.run_id == run_id))
            await session.execute(delete(StageRun).where(StageRun.run_id == run_id))
            result = await session.execute(delete(Run).where(Run.id == run_id))
            await session.commit()
        return result.rowcount == 1

    # Stage runs

    async def get_stage_runs(self, run_id: UUID) -> List[StageRun]:
        """All attempts for a run, oldest first."""
        async with self.session() as session:
            result = await session.execute(
                select(StageRun)
                .where(StageRun.run_id == run_id)
                .order_by(StageRun.started_at, StageRun.attempt)
            )
            return list(result.scalars().all())

    async def get_latest_stage_runs(self, run_id: UUID) -> List[StageRun]:
        """The highest attempt per stage_key, oldest stage first."""
        latest: Dict[str, StageRun] = {}
        for stage_run in await self.get_stage_runs(run_id):
            current = latest.get(stage_run.stage_key)
            if current is None or stage_run.attempt > current.attempt:
                latest[stage_run.stage_key] = stage_run
        return sorted(latest.values(), key=lambda s: (s.started_at, s.attempt))

    async def create_stage_run(
        self,
        run_id: UUID,
        stage_key: str,
        attempt: int,
        resolved_prompt: str,
        resolved_bindings: Dict[str, Any],
    ) -> StageRun:
        """Start an attempt: insert the row, point the run at it, log the start."""
        stage_run = StageRun(
            run_id=run_id,
            stage_key=stage_key,
            attempt=attempt,
            status=StageStatus.RUNNING.value,
            resolved_prompt=resolved_prompt,
            resolved_bindings=resolved_bindings,
        )
        async with self.session() as session:
            session.add(stage_run)
            await session.execute(
                update(Run)
                .where(Run.id == run_id)
                .values(current_stage_key=stage_key, updated_at=utcnow())
            )
            session.add(
                RunEvent(
                    run_id=run_id,
                    stage_key=stage_key,
                    message="Stage started",
                    data={"attempt": attempt},
                )
            )
            await session.commit()
        return stage_run

    async def mark_stage_stale(self, stage_run_id: UUID) -> None:
        """Retire an attempt whose worker died; it will be re-executed as a new attempt."""
        async with self.session() as session:
            stage_run = await session.get(StageRun, stage_run_id)
            if stage_run is None:
                return
            if stage_run.status == StageStatus.RUNNING.value:
                stage_run.status = StageStatus.STALE.value
                stage_run.ended_at = utcnow()
            session.add(
                RunEvent(
                    run_id=stage_run.run_id,
                    stage_key=stage_run.stage_key,
                    level=EventLevel.WARN.value,
                    message="Recovering interrupted stage",
                    data={"attempt": stage_run.attempt},
                )
            )
            await session.commit()

    async def record_stage_success(
        self,
        stage_run_id: UUID,
        output: Dict[str, Any],
        artifacts: List[Dict[str, Any]],
        fallback_used: bool = False,
        pause_after: bool = False,
    ) -> bool:
        """Complete an attempt and fold its output into the run context.

        With ``pause_after`` the run moves to ``waiting_user`` in the same
        transaction. The context is only touched while the run is still
        running; the attempt row is finalised either way. Returns ``True``
        when the run was advanced.
        """
        async with self.session() as session:
            stage_run = await session.get(StageRun, stage_run_id)
            if stage_run is None:
                raise LookupError(f"Stage run {stage_run_id} not found")
            stage_run.status = StageStatus.SUCCEEDED.value
            stage_run.ended_at = utcnow()
            stage_run.output = dict(output)
            stage_run.produced_artifacts = list(artifacts)
            stage_run.fallback_used = fallback_used

            advanced = False
            run = await session.get(Run, stage_run.run_id)
            if run is not None and run.status == RunStatus.RUNNING.value:
                context = dict(run.context or {})
                entries = dict(context.get("context") or {})
                entries[stage_run.stage_key] = {
                    "output": dict(output),
                    "artifacts": list(artifacts),
                }
                context["context"] = entries
                values: Dict[str, Any] = {"context": context}
                if pause_after:
                    values.update(
                        status=RunStatus.WAITING_USER.value,
                        current_stage_key=None,
                        waiting_for_stage_key=stage_run.stage_key,
                        waiting_reason=BREAKPOINT_REASON,
                    )
                advanced = await self._transition(
                    session, stage_run.run_id, [RunStatus.RUNNING.value], **values
                )

            message = "Stage succeeded with stub fallback" if fallback_used else "Stage succeeded"
            session.add(
                RunEvent(
                    run_id=stage_run.run_id,
                    stage_key=stage_run.stage_key,
                    message=message,
                    data={
                        "attempt": stage_run.attempt,
                        "artifacts": len(artifacts),
                        "fallback": fallback_used,
                    },
                )
            )
            if advanced and pause_after:
                session.add(_paused_event(stage_run.run_id, stage_run.stage_key, BREAKPOINT_REASON))
            await session.commit()
        if not advanced:
            logger.info(
                f"Run {stage_run.run_id} left running state during stage {stage_run.stage_key}"
            )
        return advanced

    async def record_stage_failure(
        self, stage_run_id: UUID, error: Dict[str, Any], summary: str
    ) -> None:
        """Fail the attempt and its run together."""
        async with self.session() as session:
            stage_run = await session.get(StageRun, stage_run_id)
            if stage_run is None:
                raise LookupError(f"Stage run {stage_run_id} not found")
            stage_run.status = StageStatus.FAILED.value
            stage_run.ended_at = utcnow()
            stage_run.error = dict(error)
            await self._transition(
                session,
                stage_run.run_id,
                [RunStatus.RUNNING.value],
                status=RunStatus.FAILED.value,
                error_summary=summary,
            )
            session.add(
                RunEvent(
                    run_id=stage_run.run_id,
                    stage_key=stage_run.stage_key,
                    level=EventLevel.ERROR.value,
                    message="Stage failed",
                    data={"attempt": stage_run.attempt, **error},
                )
            )
            await session.commit()
        logger.error(f"Stage {stage_run.stage_key} of run {stage_run.run_id} failed: {summary}")

    # Events

    async def emit_event(
        self,
        run_id: UUID,
        message: str,
        level: EventLevel = EventLevel.INFO,
        stage_key: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> RunEvent:
        event = RunEvent(
            run_id=run_id,
            stage_key=stage_key,
            level=EventLevel(level).value,
            message=message,
            data=dict(data or {}),
        )
        async with self.session() as session:
            session.add(event)
            await session.commit()
        return event

    async def list_events(self, run_id: UUID) -> List[RunEvent]:
        async with self.session() as session:
            result = await session.execute(
                select(RunEvent)
                .where(RunEvent.run_id == run_id)
                .order_by(RunEvent.created_at, RunEvent.id)
            )
            return list(result.scalars().all())

    # Jobs

    async def create_job(self, job_type: str, payload: Optional[Dict[str, Any]] = None) -> Job:
        job = Job(type=job_type, status=JobStatus.PENDING.value, payload=dict(payload or {}))
        async with self.session() as session:
            session.add(job)
            await session.commit()
        return job

    async def get_job(self, job_id: UUID) -> Optional[Job]:
        async with self.session() as session:
            return await session.get(Job, job_id)
