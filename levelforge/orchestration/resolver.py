"""Logic-less ``{{ }}`` prompt rendering."""

from __future__ import annotations

import json
from typing import Any, Dict, List

from .paths import BindingError, get_path


class TemplateError(ValueError):
    """A prompt template could not be rendered."""


def _stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=str)
    return str(value)


def _lookup(context: Dict[str, Any], path: str) -> Any:
    try:
        return get_path(context, path)
    except BindingError as exc:
        raise TemplateError(str(exc)) from exc


def _render_tag(tag: str, context: Dict[str, Any]) -> str:
    body = tag.strip()
    if not body:
        raise TemplateError("Empty tag")
    if body.startswith("!"):
        return ""
    if body[0] in "#/^>":
        raise TemplateError(f"Block and partial tags are not supported: {{{{{body}}}}}")
    if body.startswith("&"):
        body = body[1:].strip()

    parts = body.split()
    if len(parts) == 1:
        return _stringify(_lookup(context, parts[0]))
    if len(parts) == 2 and parts[0] == "json":
        value = _lookup(context, parts[1])
        try:
            return json.dumps(value, indent=2, ensure_ascii=False)
        except (TypeError, ValueError) as exc:
            raise TemplateError(f"Value at {parts[1]!r} is not JSON serialisable") from exc
    raise TemplateError(f"Unknown helper {parts[0]!r}")


def resolve_prompt(template: str, context: Dict[str, Any]) -> str:
    """Render ``template`` against ``context``.

    Supports ``{{path}}``, ``{{{path}}}``, ``{{json path}}`` and
    ``{{! comment}}``. No HTML escaping is applied.
    """
    if not template:
        return ""
    out: List[str] = []
    pos = 0
    while True:
        start = template.find("{{", pos)
        if start == -1:
            out.append(template[pos:])
            break
        out.append(template[pos:start])
        if template.startswith("{{{", start):
            end = template.find("}}}", start + 3)
            if end == -1:
                raise TemplateError(f"Unclosed '{{{{{{' at offset {start}")
            out.append(_render_tag(template[start + 3 : end], context))
            pos = end + 3
        else:
            end = template.find("}}", start + 2)
            if end == -1:
                raise TemplateError(f"Unclosed '{{{{' at offset {start}")
            out.append(_render_tag(template[start + 2 : end], context))
            pos = end + 2
    return "".join(out)
