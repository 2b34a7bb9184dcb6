"""Core contracts shared by the orchestration engine and its collaborators."""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, Field, model_validator


class RunMode(str, Enum):
    EXPRESS = "express"
    CUSTOM = "custom"


class RunStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    WAITING_USER = "waiting_user"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.SUCCEEDED, RunStatus.FAILED, RunStatus.CANCELLED)


class StageStatus(str, Enum):
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    STALE = "stale"


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class StageKind(str, Enum):
    LLM = "llm"
    IMAGE = "image"
    MODEL3D = "model3d"
    CODE = "code"


class EventLevel(str, Enum):
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class ErrorCategory(str, Enum):
    """Explicit classification of failures raised at the provider boundary."""

    CONFIGURATION = "configuration"
    TRANSIENT = "transient"
    RATE_LIMITED = "rate_limited"
    INVALID_REQUEST = "invalid_request"
    FATAL = "fatal"


class RunOutcome(str, Enum):
    """Why the executor stopped working on a claimed run."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    WAITING_USER = "waiting_user"
    ABANDONED = "abandoned"


class RoutingRule(BaseModel):
    """Branch to ``target`` when ``condition`` evaluates true."""

    condition: str = Field(
        validation_alias=AliasChoices("condition", "condition_expression")
    )
    target: str = Field(validation_alias=AliasChoices("target", "next_stage_key"))


class StageSpec(BaseModel):
    """One named, ordered step of a flow."""

    stage_key: str
    order_index: int = 0
    kind: StageKind = StageKind.LLM
    provider: str = "internal"
    model_id: str = ""
    prompt_template: str = ""
    input_bindings: Dict[str, Any] = Field(default_factory=dict)
    provider_config: Dict[str, Any] = Field(default_factory=dict)
    routing_rules: List[RoutingRule] = Field(default_factory=list)
    breakpoint_after: bool = False


class FlowDefinitionError(ValueError):
    """Raised when a flow definition is structurally invalid."""


class FlowDefinition(BaseModel):
    """Ordered sequence of stage templates authored as a unit."""

    name: str
    version: str = "0.1.0"
    description: str = ""
    stages: List[StageSpec] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _default_order_index(cls, data: Any) -> Any:
        if isinstance(data, dict) and isinstance(data.get("stages"), list):
            stages = []
            for position, stage in enumerate(data["stages"], start=1):
                if isinstance(stage, dict) and stage.get("order_index") is None:
                    stage = {**stage, "order_index": position}
                elif isinstance(stage, StageSpec) and "order_index" not in stage.model_fields_set:
                    stage = stage.model_copy(update={"order_index": position})
                stages.append(stage)
            data = {**data, "stages": stages}
        return data

    @model_validator(mode="after")
    def _check_stages(self) -> "FlowDefinition":
        if not self.stages:
            raise FlowDefinitionError(f"Flow {self.name!r} has no stages")
        keys = [s.stage_key for s in self.stages]
        duplicates = sorted({k for k in keys if keys.count(k) > 1})
        if duplicates:
            raise FlowDefinitionError(f"Duplicate stage_key values: {duplicates}")
        orders = [s.order_index for s in self.stages]
        if len(set(orders)) != len(orders):
            raise FlowDefinitionError("order_index values must be unique per flow")
        known = set(keys)
        for stage in self.stages:
            for rule in stage.routing_rules:
                if rule.target not in known:
                    raise FlowDefinitionError(
                        f"Stage {stage.stage_key} routes to unknown stage {rule.target}"
                    )
        return self

    def ordered_stages(self) -> List[StageSpec]:
        return sorted(self.stages, key=lambda s: s.order_index)


class Artifact(BaseModel):
    """Binary produced by a provider, persisted through the asset store."""

    kind: str
    slug: str
    data: bytes
    mime_type: Optional[str] = None
    file_ext: Optional[str] = None


class ProviderOutput(BaseModel):
    """Normalized result of one provider call."""

    output: Dict[str, Any] = Field(default_factory=dict)
    artifacts: List[Artifact] = Field(default_factory=list)

    @classmethod
    def coerce(cls, value: Any) -> "ProviderOutput":
        """Accept either a ``ProviderOutput`` or a plain result mapping.

        Plain mappings may carry artifacts under the ``_artifacts`` key; the
        remaining keys become the stage output.
        """
        if isinstance(value, ProviderOutput):
            return value
        if isinstance(value, dict):
            output = dict(value)
            raw_artifacts = output.pop("_artifacts", None) or []
            artifacts = []
            for raw in raw_artifacts:
                data = raw.get("data", b"")
                if isinstance(data, str):
                    data = data.encode("utf-8")
                artifacts.append(Artifact(**{**raw, "data": data}))
            return cls(output=output, artifacts=artifacts)
        raise TypeError(f"Unsupported provider result type: {type(value).__name__}")
