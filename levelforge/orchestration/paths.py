"""Dotted/bracketed path parsing shared by bindings and templates."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any, List, Union

Segment = Union[str, int]


class BindingError(ValueError):
    """A binding path is syntactically malformed."""


def parse_path(path: str) -> List[Segment]:
    """Split ``foo.bar[2].baz`` into ``["foo", "bar", 2, "baz"]``.

    An empty path addresses the root.
    """
    text = path.strip()
    segments: List[Segment] = []
    pos = 0
    while pos < len(text):
        if text[pos] == "[":
            end = text.find("]", pos)
            if end == -1:
                raise BindingError(f"Unclosed '[' in path {path!r}")
            index = text[pos + 1 : end].strip()
            if not index.isdigit():
                raise BindingError(f"Index must be a non-negative integer in path {path!r}")
            segments.append(int(index))
            pos = end + 1
        else:
            end = pos
            while end < len(text) and text[end] not in ".[]":
                end += 1
            name = text[pos:end].strip()
            if not name:
                raise BindingError(f"Empty segment in path {path!r}")
            segments.append(name)
            pos = end
        if pos < len(text):
            if text[pos] == ".":
                pos += 1
                if pos == len(text):
                    raise BindingError(f"Trailing '.' in path {path!r}")
            elif text[pos] != "[":
                raise BindingError(f"Unexpected {text[pos]!r} in path {path!r}")
    return segments


def resolve_path(root: Any, segments: List[Segment]) -> Any:
    """Walk ``segments`` from ``root``; any missing step yields ``None``."""
    current = root
    for segment in segments:
        if isinstance(current, Mapping):
            if segment in current:
                current = current[segment]
            elif isinstance(segment, int) and str(segment) in current:
                current = current[str(segment)]
            else:
                return None
        elif isinstance(current, Sequence) and not isinstance(current, (str, bytes)):
            if isinstance(segment, str):
                if not segment.isdigit():
                    return None
                segment = int(segment)
            if segment >= len(current):
                return None
            current = current[segment]
        else:
            return None
    return current


def get_path(root: Any, path: str) -> Any:
    return resolve_path(root, parse_path(path))
