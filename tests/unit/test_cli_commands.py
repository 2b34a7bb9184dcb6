import base64
import os
import uuid

import pytest
from typer.testing import CliRunner

from levelforge.cli import app

FLOW_YAML = """
name: cli-flow
stages:
  - stage_key: S1
    kind: code
    prompt_template: "{{user_prompt}}"
  - stage_key: S2
    kind: code
"""

runner = CliRunner()


@pytest.fixture(autouse=True)
def cli_env(tmp_path, monkeypatch):
    monkeypatch.setenv("LEVELFORGE_DATABASE_URL", f"sqlite:///{tmp_path/'cli.db'}")
    monkeypatch.setenv("LEVELFORGE_CONFIG", str(tmp_path / "missing.yaml"))
    monkeypatch.setenv("SECRETS_MASTER_KEY", base64.b64encode(os.urandom(32)).decode())


def _invoke(*args):
    return runner.invoke(app, list(args))


def _load_flow(tmp_path) -> str:
    path = tmp_path / "flow.yaml"
    path.write_text(FLOW_YAML)
    result = _invoke("flow", "load", str(path))
    assert result.exit_code == 0, f"Command failed. Output: {result.output}"
    flow_id, name, stages = result.output.strip().split("\t")
    assert name == "cli-flow"
    assert stages == "2 stages"
    return flow_id


def test_db_init():
    result = _invoke("db", "init")
    assert result.exit_code == 0, f"Command failed. Output: {result.output}"
    assert "sqlite+aiosqlite" in result.output


def test_flow_load_and_list(tmp_path):
    assert "No flows found" in _invoke("flow", "list").output

    flow_id = _load_flow(tmp_path)

    result = _invoke("flow", "list")
    assert flow_id in result.output
    assert "cli-flow" in result.output


def test_flow_load_rejects_invalid_definition(tmp_path):
    path = tmp_path / "bad.yaml"
    path.write_text("name: bad\nstages:\n  - stage_key: A\n  - stage_key: A\n")

    result = _invoke("flow", "load", str(path))
    assert result.exit_code == 1
    assert "Invalid flow definition" in result.output


def test_run_lifecycle(tmp_path):
    flow_id = _load_flow(tmp_path)

    result = _invoke(
        "run", "create", flow_id, "--prompt", "castle", "--seed", "5", "--inputs", '{"theme": "ice"}'
    )
    assert result.exit_code == 0, f"Command failed. Output: {result.output}"
    run_id, status = result.output.strip().split("\t")
    assert status == "queued"

    result = _invoke("run", "list")
    assert run_id in result.output

    result = _invoke("run", "show", run_id)
    assert result.exit_code == 0
    assert f"Run {run_id}: queued (mode=express, seed=5)" in result.output
    assert "Run created" in result.output

    result = _invoke("run", "resume", run_id)
    assert result.exit_code == 1
    assert "Run is not waiting for user input" in result.output

    result = _invoke("run", "cancel", run_id)
    assert result.exit_code == 0
    assert "cancelled" in result.output
    assert "cancelled" in _invoke("run", "show", run_id).output

    assert _invoke("run", "cancel", run_id).exit_code == 1


def test_run_create_validation(tmp_path):
    flow_id = _load_flow(tmp_path)

    result = _invoke("run", "create", flow_id, "--inputs", "[1, 2]")
    assert result.exit_code == 1
    assert "--inputs must be a JSON object" in result.output

    result = _invoke("run", "create", str(uuid.uuid4()))
    assert result.exit_code == 1
    assert "not found" in result.output

    result = _invoke("run", "create", "not-a-uuid")
    assert result.exit_code == 1
    assert "Invalid id" in result.output


def test_run_show_missing():
    result = _invoke("run", "show", str(uuid.uuid4()))
    assert result.exit_code == 1
    assert "Run not found" in result.output


def test_secret_commands():
    result = _invoke("secret", "set", "OPENAI_API_KEY", "sk-abcdef123456")
    assert result.exit_code == 0, f"Command failed. Output: {result.output}"
    assert "Secret OPENAI_API_KEY saved" in result.output

    result = _invoke("secret", "set", "NOT_A_KEY", "value")
    assert result.exit_code == 1
    assert "Unknown secret key: NOT_A_KEY" in result.output

    result = _invoke("secret", "list")
    assert result.exit_code == 0
    assert "OPENAI_API_KEY\tsk-a••••3456" in result.output
    assert "GEMINI_API_KEY\t(not set)" in result.output
    assert "sk-abcdef123456" not in result.output


def test_secret_set_without_master_key(monkeypatch):
    monkeypatch.delenv("SECRETS_MASTER_KEY")
    result = _invoke("secret", "set", "OPENAI_API_KEY", "sk-abcdef123456")
    assert result.exit_code == 1
    assert "SECRETS_MASTER_KEY" in result.output


def test_job_test_queues_job():
    result = _invoke("job", "test", "openai", "ping", "--model", "gpt-4o-mini")
    assert result.exit_code == 0, f"Command failed. Output: {result.output}"
    job_id, status = result.output.strip().split("\t")
    uuid.UUID(job_id)
    assert status == "pending"
