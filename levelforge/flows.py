"""Loading flow definitions from YAML."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Union

import yaml
from pydantic import ValidationError

from .contracts import FlowDefinition, FlowDefinitionError


def parse_flow_definition(data: Any) -> FlowDefinition:
    if not isinstance(data, dict):
        raise FlowDefinitionError("Flow definition must be a mapping")
    try:
        return FlowDefinition.model_validate(data)
    except ValidationError as exc:
        raise FlowDefinitionError(str(exc)) from exc


def load_flow_definition(path: Union[str, Path]) -> FlowDefinition:
    """Read a flow definition such as::

        name: castle
        stages:
          - stage_key: S1_PROMPT_ENHANCE
            kind: llm
            provider: openai
            prompt_template: "Improve: {{user_prompt}}"
            routing_rules:
              - condition: "score > 5"
                target: S3_DETAIL
    """
    with open(path) as f:
        data = yaml.safe_load(f)
    return parse_flow_definition(data)
