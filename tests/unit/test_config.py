"""Tests for configuration loading."""

from levelforge.config import FallbackConfig, LevelForgeConfig, load_config
from levelforge.contracts import ErrorCategory, StageKind
from levelforge.db import get_database, normalize_database_url


def _clear_env(monkeypatch):
    for name in (
        "LEVELFORGE_DATABASE_URL",
        "DATABASE_URL",
        "WORKER_POLL_INTERVAL_MS",
        "WORKER_STALE_RUN_MS",
        "WORKER_PROVIDER_TIMEOUT_S",
    ):
        monkeypatch.delenv(name, raising=False)


def test_load_config_from_env(tmp_path, monkeypatch):
    _clear_env(monkeypatch)
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
database_url: sqlite:///from-file.db
worker:
  poll_interval_ms: 500
fallback:
  categories: [configuration, transient]
  stage_kinds: [llm]
storage:
  backend: inmemory
"""
    )
    monkeypatch.setenv("LEVELFORGE_CONFIG", str(config_path))

    config = load_config()
    assert config.database_url == "sqlite:///from-file.db"
    assert config.worker.poll_interval_ms == 500
    assert config.worker.stale_threshold_ms == 300_000
    assert config.fallback.categories == [ErrorCategory.CONFIGURATION, ErrorCategory.TRANSIENT]
    assert config.storage.backend == "inmemory"


def test_env_overrides_file(tmp_path, monkeypatch):
    _clear_env(monkeypatch)
    config_path = tmp_path / "config.yaml"
    config_path.write_text("database_url: sqlite:///from-file.db\n")
    monkeypatch.setenv("DATABASE_URL", "postgres://u:p@db/levelforge")
    monkeypatch.setenv("WORKER_POLL_INTERVAL_MS", "250")
    monkeypatch.setenv("WORKER_STALE_RUN_MS", "1000")
    monkeypatch.setenv("WORKER_PROVIDER_TIMEOUT_S", "2.5")

    config = load_config(str(config_path))
    assert config.database_url == "postgres://u:p@db/levelforge"
    assert config.worker.poll_interval_ms == 250
    assert config.worker.stale_threshold_ms == 1000
    assert config.worker.provider_timeout_s == 2.5

    monkeypatch.setenv("LEVELFORGE_DATABASE_URL", "sqlite:///preferred.db")
    assert load_config(str(config_path)).database_url == "sqlite:///preferred.db"


def test_missing_file_uses_defaults(tmp_path, monkeypatch):
    _clear_env(monkeypatch)
    config = load_config(str(tmp_path / "absent.yaml"))
    assert config == LevelForgeConfig()
    assert config.worker.poll_interval_ms == 2000


def test_fallback_allows():
    fallback = FallbackConfig()
    assert fallback.allows(StageKind.LLM, ErrorCategory.CONFIGURATION)
    assert fallback.allows(StageKind.MODEL3D, ErrorCategory.CONFIGURATION)
    assert not fallback.allows(StageKind.CODE, ErrorCategory.CONFIGURATION)
    assert not fallback.allows(StageKind.LLM, ErrorCategory.TRANSIENT)
    assert not FallbackConfig(enabled=False).allows(StageKind.LLM, ErrorCategory.CONFIGURATION)


def test_normalize_database_url():
    assert normalize_database_url("sqlite:///x.db") == "sqlite+aiosqlite:///x.db"
    assert normalize_database_url("sqlite+aiosqlite:///x.db") == "sqlite+aiosqlite:///x.db"
    assert normalize_database_url("postgres://u@h/db") == "postgresql+asyncpg://u@h/db"
    assert normalize_database_url("postgresql://u@h/db") == "postgresql+asyncpg://u@h/db"


def test_get_database_prefers_explicit_url(tmp_path, monkeypatch):
    _clear_env(monkeypatch)
    monkeypatch.setenv("LEVELFORGE_DATABASE_URL", f"sqlite:///{tmp_path/'env.db'}")
    config = LevelForgeConfig(database_url=f"sqlite:///{tmp_path/'config.db'}")

    assert get_database(f"sqlite:///{tmp_path/'explicit.db'}", config).database_url.endswith(
        "explicit.db"
    )
    assert get_database(config=config).database_url.endswith("env.db")

    monkeypatch.delenv("LEVELFORGE_DATABASE_URL")
    assert get_database(config=config).database_url.endswith("config.db")
