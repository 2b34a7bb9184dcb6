"""Pure helpers used by the run executor."""

from .context import build_run_context, resolve_bindings, stage_entry
from .paths import BindingError, get_path, parse_path, resolve_path
from .resolver import TemplateError, resolve_prompt
from .routing import Condition, Operator, build_routing_context, parse_condition, safe_eval
from .stubs import generate_stub_output

__all__ = [
    "BindingError",
    "Condition",
    "Operator",
    "TemplateError",
    "build_routing_context",
    "build_run_context",
    "generate_stub_output",
    "get_path",
    "parse_condition",
    "parse_path",
    "resolve_bindings",
    "resolve_path",
    "resolve_prompt",
    "safe_eval",
    "stage_entry",
]
