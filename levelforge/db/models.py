from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column, Text, UniqueConstraint
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    """Naive UTC timestamp, comparable across SQLite and PostgreSQL columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Flow(SQLModel, table=True):
    """A named, versioned flow definition."""

    __tablename__ = "flows"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    name: str = Field(index=True)
    version: str = "0.1.0"
    description: str = ""
    created_at: datetime = Field(default_factory=utcnow)


class FlowStageTemplate(SQLModel, table=True):
    """One stage of a flow; immutable once a run references the flow."""

    __tablename__ = "flow_stage_templates"
    __table_args__ = (
        UniqueConstraint("flow_id", "stage_key"),
        UniqueConstraint("flow_id", "order_index"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    flow_id: UUID = Field(foreign_key="flows.id", index=True)
    stage_key: str
    order_index: int
    kind: str = "llm"
    provider: str = "internal"
    model_id: str = ""
    prompt_template: str = Field(default="", sa_column=Column(Text, nullable=False))
    input_bindings: dict = Field(default_factory=dict, sa_column=Column(JSON))
    provider_config: dict = Field(default_factory=dict, sa_column=Column(JSON))
    routing_rules: list = Field(default_factory=list, sa_column=Column(JSON))
    breakpoint_after: bool = False


class Run(SQLModel, table=True):
    """One execution instance of a flow."""

    __tablename__ = "runs"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    flow_id: UUID = Field(foreign_key="flows.id", index=True)
    mode: str = Field(default="express")
    status: str = Field(default="queued", index=True)
    user_prompt: str = Field(default="", sa_column=Column(Text, nullable=False))
    seed: int = 0
    context: dict = Field(default_factory=dict, sa_column=Column(JSON))
    current_stage_key: Optional[str] = None
    waiting_for_stage_key: Optional[str] = None
    waiting_reason: Optional[str] = None
    error_summary: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow, index=True)
    updated_at: datetime = Field(default_factory=utcnow)


class StageRun(SQLModel, table=True):
    """One execution attempt of one stage within one run."""

    __tablename__ = "stage_runs"
    __table_args__ = (UniqueConstraint("run_id", "stage_key", "attempt"),)

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    run_id: UUID = Field(foreign_key="runs.id", index=True)
    stage_key: str
    attempt: int = 1
    status: str = Field(default="running")
    started_at: datetime = Field(default_factory=utcnow)
    ended_at: Optional[datetime] = None
    resolved_prompt: str = Field(default="", sa_column=Column(Text, nullable=False))
    resolved_bindings: dict = Field(default_factory=dict, sa_column=Column(JSON))
    output: dict = Field(default_factory=dict, sa_column=Column(JSON))
    produced_artifacts: list = Field(default_factory=list, sa_column=Column(JSON))
    error: dict = Field(default_factory=dict, sa_column=Column(JSON))
    fallback_used: bool = False
    created_at: datetime = Field(default_factory=utcnow)


class RunEvent(SQLModel, table=True):
    """Append-only observability log entry for a run."""

    __tablename__ = "run_events"

    id: Optional[int] = Field(default=None, primary_key=True)
    run_id: UUID = Field(foreign_key="runs.id", index=True)
    stage_key: Optional[str] = None
    level: str = "info"
    message: str
    data: dict = Field(default_factory=dict, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=utcnow)


class Job(SQLModel, table=True):
    """Flow-independent unit of work sharing the run claim semantics."""

    __tablename__ = "jobs"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    type: str
    status: str = Field(default="pending", index=True)
    payload: dict = Field(default_factory=dict, sa_column=Column(JSON))
    result: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow, index=True)
    updated_at: datetime = Field(default_factory=utcnow)


class Secret(SQLModel, table=True):
    """Encrypted credential; plaintext is never stored."""

    __tablename__ = "secrets"

    key: str = Field(primary_key=True)
    algo: str = "AES-256-GCM"
    ciphertext: str
    nonce: str
    tag: str
    updated_at: datetime = Field(default_factory=utcnow)


class Asset(SQLModel, table=True):
    """Logical generated artifact, deduplicated by ``asset_key_hash``."""

    __tablename__ = "assets"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    asset_key_hash: str = Field(unique=True, index=True)
    kind: str = Field(index=True)
    slug: str = ""
    provider: str = "internal"
    model_id: str = ""
    prompt: str = Field(default="", sa_column=Column(Text, nullable=False))
    prompt_hash: str = ""
    metadata_json: dict = Field(default_factory=dict, sa_column=Column("metadata", JSON))
    created_at: datetime = Field(default_factory=utcnow)


class AssetFile(SQLModel, table=True):
    """One stored binary belonging to an asset."""

    __tablename__ = "asset_files"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    asset_id: UUID = Field(foreign_key="assets.id", index=True)
    file_kind: str
    storage_key: str = Field(unique=True)
    mime_type: str = "application/octet-stream"
    size_bytes: int = 0
    sha256: str = ""
    created_at: datetime = Field(default_factory=utcnow)
