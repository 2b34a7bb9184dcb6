"""Command line interface for levelforge workers and runs."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, TypeVar
from uuid import UUID

import typer

from .config import load_config
from .contracts import FlowDefinitionError, RunMode
from .db import RunDB, get_database
from .flows import load_flow_definition
from .jobs import TEST_PROVIDER_CALL
from .security import SecretStore, UnknownSecretError, VaultConfigurationError
from .worker import create_worker

app = typer.Typer(help="CLI for levelforge generation flows")

# Command groups
db_app = typer.Typer(help="Database maintenance")
worker_app = typer.Typer(help="Run worker processes")
flow_app = typer.Typer(help="Manage flow definitions")
run_app = typer.Typer(help="Create and inspect runs")
secret_app = typer.Typer(help="Manage encrypted provider credentials")
job_app = typer.Typer(help="Queue standalone jobs")

app.add_typer(db_app, name="db")
app.add_typer(worker_app, name="worker")
app.add_typer(flow_app, name="flow")
app.add_typer(run_app, name="run")
app.add_typer(secret_app, name="secret")
app.add_typer(job_app, name="job")

T = TypeVar("T")


@app.callback()
def main() -> None:
    """levelforge CLI entry point."""
    pass


def _with_db(action: Callable[[RunDB], Awaitable[T]]) -> T:
    async def _main() -> T:
        db = get_database(config=load_config())
        try:
            await db.init_db()
            return await action(db)
        finally:
            await db.dispose()

    return asyncio.run(_main())


def _parse_uuid(value: str) -> UUID:
    try:
        return UUID(value)
    except ValueError:
        typer.echo(f"Invalid id: {value}")
        raise typer.Exit(code=1)


@db_app.command("init")
def db_init() -> None:
    """Create all tables in the configured database."""

    async def action(db: RunDB) -> str:
        return db.database_url

    url = _with_db(action)
    typer.echo(f"Initialized database {url}")


@worker_app.command("start")
def worker_start(
    lifespan: Optional[float] = typer.Option(
        None, help="Stop after this many seconds (default: run indefinitely)"
    ),
    log_level: str = typer.Option("INFO", help="Logging level"),
) -> None:
    """
    Start a worker that claims jobs and runs from the configured database.

    Example:
        levelforge worker start
        levelforge worker start --lifespan 300
    """
    logging.basicConfig(
        level=log_level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
    config = load_config()

    async def _main() -> None:
        worker = create_worker(config)
        try:
            await worker.prepare()
            await worker.start(lifespan=lifespan)
        finally:
            await worker.aclose()

    typer.echo(f"Starting worker (poll every {config.worker.poll_interval_ms} ms)")
    asyncio.run(_main())


@flow_app.command("load")
def flow_load(path: Path) -> None:
    """Validate a YAML flow definition and store it."""
    try:
        definition = load_flow_definition(path)
    except (OSError, FlowDefinitionError) as exc:
        typer.echo(f"Invalid flow definition: {exc}")
        raise typer.Exit(code=1)

    flow = _with_db(lambda db: db.create_flow(definition))
    typer.echo(f"{flow.id}\t{flow.name}\t{len(definition.stages)} stages")


@flow_app.command("list")
def flow_list() -> None:
    """List stored flows."""
    flows = _with_db(lambda db: db.list_flows())
    if not flows:
        typer.echo("No flows found")
        return
    for flow in flows:
        typer.echo(f"{flow.id}\t{flow.name}\t{flow.version}")


@run_app.command("create")
def run_create(
    flow_id: str,
    prompt: str = typer.Option("", help="User prompt for the run"),
    mode: RunMode = typer.Option(RunMode.EXPRESS, help="express runs straight through"),
    seed: int = typer.Option(0, help="Seed passed to providers"),
    inputs: str = typer.Option("{}", help="JSON object of run inputs"),
) -> None:
    """Queue a new run of a flow."""
    flow_uuid = _parse_uuid(flow_id)
    try:
        parsed_inputs = json.loads(inputs)
    except ValueError as exc:
        typer.echo(f"--inputs is not valid JSON: {exc}")
        raise typer.Exit(code=1)
    if not isinstance(parsed_inputs, dict):
        typer.echo("--inputs must be a JSON object")
        raise typer.Exit(code=1)

    try:
        run = _with_db(
            lambda db: db.create_run(
                flow_uuid, user_prompt=prompt, mode=mode, seed=seed, inputs=parsed_inputs
            )
        )
    except ValueError as exc:
        typer.echo(str(exc))
        raise typer.Exit(code=1)
    typer.echo(f"{run.id}\t{run.status}")


@run_app.command("list")
def run_list(limit: int = typer.Option(50, help="Maximum runs to show")) -> None:
    """List recent runs with their status."""
    runs = _with_db(lambda db: db.list_runs(limit=limit))
    if not runs:
        typer.echo("No runs found")
        return
    for run in runs:
        typer.echo(f"{run.id}\t{run.status}\t{run.current_stage_key or '-'}")


@run_app.command("show")
def run_show(run_id: str) -> None:
    """Show a run with its stage attempts and events."""
    run_uuid = _parse_uuid(run_id)

    async def action(db: RunDB) -> Any:
        run = await db.get_run(run_uuid)
        if run is None:
            return None
        return run, await db.get_stage_runs(run_uuid), await db.list_events(run_uuid)

    found = _with_db(action)
    if found is None:
        typer.echo("Run not found")
        raise typer.Exit(code=1)
    run, stage_runs, events = found
    typer.echo(f"Run {run.id}: {run.status} (mode={run.mode}, seed={run.seed})")
    if run.waiting_for_stage_key:
        typer.echo(f"Waiting after {run.waiting_for_stage_key}: {run.waiting_reason}")
    if run.error_summary:
        typer.echo(f"Error: {run.error_summary}")
    for stage_run in stage_runs:
        flag = " (stub)" if stage_run.fallback_used else ""
        typer.echo(f"  {stage_run.stage_key}#{stage_run.attempt}\t{stage_run.status}{flag}")
    for event in events:
        typer.echo(f"  [{event.level}] {event.stage_key or '-'}: {event.message}")


@run_app.command("resume")
def run_resume(run_id: str) -> None:
    """Requeue a run paused at a breakpoint."""
    run_uuid = _parse_uuid(run_id)
    if not _with_db(lambda db: db.resume_run(run_uuid)):
        typer.echo("Run is not waiting for user input")
        raise typer.Exit(code=1)
    typer.echo(f"Run {run_uuid} resumed")


@run_app.command("cancel")
def run_cancel(run_id: str) -> None:
    """Cancel a run that has not finished."""
    run_uuid = _parse_uuid(run_id)
    if not _with_db(lambda db: db.cancel_run(run_uuid)):
        typer.echo("Run is already finished or does not exist")
        raise typer.Exit(code=1)
    typer.echo(f"Run {run_uuid} cancelled")


@secret_app.command("set")
def secret_set(key: str, value: str) -> None:
    """Encrypt and store a credential. Requires SECRETS_MASTER_KEY."""
    try:
        _with_db(lambda db: SecretStore(db).set_secret(key, value))
    except UnknownSecretError:
        typer.echo(f"Unknown secret key: {key}")
        raise typer.Exit(code=1)
    except (ValueError, VaultConfigurationError) as exc:
        typer.echo(str(exc))
        raise typer.Exit(code=1)
    typer.echo(f"Secret {key} saved")


@secret_app.command("list")
def secret_list() -> None:
    """Show which known credentials are set, masked."""
    try:
        statuses = _with_db(lambda db: SecretStore(db).list_secrets())
    except VaultConfigurationError as exc:
        typer.echo(str(exc))
        raise typer.Exit(code=1)
    for status in statuses:
        typer.echo(f"{status.key}\t{status.masked if status.is_set else '(not set)'}")


@job_app.command("test")
def job_test(
    provider: str,
    prompt: str,
    model: Optional[str] = typer.Option(None, help="Model id passed to the provider"),
) -> None:
    """Queue a single provider call for a worker to execute."""
    payload = {"provider": provider, "prompt": prompt, "model": model, "options": {}}
    job = _with_db(lambda db: db.create_job(TEST_PROVIDER_CALL, payload))
    typer.echo(f"{job.id}\t{job.status}")


if __name__ == "__main__":
    app()
