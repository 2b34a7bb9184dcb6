"""Deterministic placeholder outputs used when a provider is not configured."""

from __future__ import annotations

import hashlib
import json
from typing import Any, Dict

from ..contracts import Artifact, ProviderOutput, StageKind, StageSpec
from ..db import Run


def stub_digest(run: Run, stage: StageSpec, attempt: int) -> str:
    base = json.dumps(
        {
            "runId": str(run.id),
            "userPrompt": run.user_prompt,
            "seed": run.seed,
            "stageKey": stage.stage_key,
            "attempt": attempt,
            "kind": stage.kind.value,
            "provider": stage.provider,
        },
        separators=(",", ":"),
    )
    return hashlib.sha256(base.encode("utf-8")).hexdigest()[:16]


def generate_stub_output(run: Run, stage: StageSpec, attempt: int) -> ProviderOutput:
    """Same run, stage and attempt always produce the same output."""
    common: Dict[str, Any] = {
        "stub": True,
        "kind": stage.kind.value,
        "stage_key": stage.stage_key,
        "attempt": attempt,
        "digest": stub_digest(run, stage, attempt),
    }

    if stage.kind is StageKind.CODE:
        return ProviderOutput(
            output={**common, "echo": {"user_prompt": run.user_prompt, "seed": run.seed}}
        )
    if stage.kind is StageKind.LLM:
        return ProviderOutput(
            output={
                **common,
                "text": f"STUB LLM OUTPUT for {stage.stage_key} (provider: {stage.provider})",
                "json_stub": {"analysis": "This is a stub", "score": 9000},
            }
        )
    if stage.kind is StageKind.IMAGE:
        return ProviderOutput(
            output={**common, "image_note": "STUB IMAGE", "width": 1024, "height": 1024},
            artifacts=[
                Artifact(
                    kind="grid_image",
                    slug=f"{run.id}_{stage.stage_key}_grid",
                    data=f"FAKE_IMAGE_DATA_FOR_{stage.stage_key}_{attempt}".encode("utf-8"),
                    mime_type="image/png",
                )
            ],
        )
    return ProviderOutput(
        output={**common, "model_note": "STUB 3D MODEL", "triangles": 10000},
        artifacts=[
            Artifact(
                kind="exterior_model_source",
                slug=f"{run.id}_{stage.stage_key}_model",
                data=f"FAKE_MODEL_DATA_FOR_{stage.stage_key}_{attempt}".encode("utf-8"),
                mime_type="model/gltf-binary",
                file_ext="glb",
            )
        ],
    )
