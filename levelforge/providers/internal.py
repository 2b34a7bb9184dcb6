from __future__ import annotations

import json
from typing import Any, Dict

from ..contracts import ProviderOutput, StageSpec
from ..db import Run
from .base import Provider


class InternalProvider(Provider):
    """Deterministic in-process provider for ``code`` stages.

    The rendered prompt is echoed back; a prompt that is a JSON object is
    merged into the output so templates can assemble structured data.
    """

    async def run(
        self,
        run: Run,
        stage: StageSpec,
        attempt: int,
        context: Dict[str, Any],
        prompt: str,
        credentials: Dict[str, str],
    ) -> ProviderOutput:
        output: Dict[str, Any] = {"text": prompt}
        stripped = prompt.strip()
        if stripped.startswith("{"):
            try:
                parsed = json.loads(stripped)
            except ValueError:
                parsed = None
            if isinstance(parsed, dict):
                output.update(parsed)
        return ProviderOutput(output=output)
