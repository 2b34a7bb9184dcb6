import pytest

from levelforge.config import LevelForgeConfig, StorageConfig, WorkerConfig
from levelforge.contracts import JobStatus, RunStatus, StageSpec
from levelforge.jobs import TEST_PROVIDER_CALL, JobProcessor
from levelforge.worker import Worker, create_worker


@pytest.fixture
def worker(db, executor, registry, secrets, config):
    jobs = JobProcessor(db, registry, secrets, config)
    return Worker(db, executor, jobs, config, worker_id="test-worker")


@pytest.mark.asyncio
async def test_poll_once_prefers_jobs_over_runs(db, make_flow, worker):
    flow = await make_flow([StageSpec(stage_key="S1", provider="internal")])
    run = await db.create_run(flow.id, user_prompt="hi")
    job = await db.create_job(TEST_PROVIDER_CALL, {"provider": "internal", "prompt": "ping"})

    assert await worker.poll_once()
    assert (await db.get_job(job.id)).status == JobStatus.SUCCEEDED.value
    assert (await db.get_run(run.id)).status == RunStatus.QUEUED.value

    assert await worker.poll_once()
    assert (await db.get_run(run.id)).status == RunStatus.SUCCEEDED.value

    assert not await worker.poll_once()


@pytest.mark.asyncio
async def test_run_claim_event_names_worker(db, make_flow, worker):
    flow = await make_flow([StageSpec(stage_key="S1", provider="internal")])
    run = await db.create_run(flow.id)

    await worker.poll_once()

    claimed = [e for e in await db.list_events(run.id) if e.message == "Worker claimed run"]
    assert len(claimed) == 1
    assert claimed[0].data["worker_id"] == "test-worker"


@pytest.mark.asyncio
async def test_start_drains_queue_within_lifespan(db, make_flow, worker):
    flow = await make_flow(
        [StageSpec(stage_key="S1", provider="internal"), StageSpec(stage_key="S2", provider="internal")]
    )
    runs = [await db.create_run(flow.id, user_prompt=f"run {i}") for i in range(3)]

    await worker.start(lifespan=2.0)

    for run in runs:
        assert (await db.get_run(run.id)).status == RunStatus.SUCCEEDED.value


@pytest.mark.asyncio
async def test_create_worker_from_config(tmp_path, monkeypatch):
    monkeypatch.delenv("LEVELFORGE_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    config = LevelForgeConfig(
        database_url=f"sqlite:///{tmp_path/'worker.db'}",
        worker=WorkerConfig(poll_interval_ms=10),
        storage=StorageConfig(backend="inmemory"),
    )
    worker = create_worker(config)
    try:
        await worker.prepare()
        assert not await worker.poll_once()
    finally:
        await worker.aclose()
