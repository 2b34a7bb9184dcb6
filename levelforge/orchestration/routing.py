"""Branch condition evaluation.

Conditions have the form ``<operand> [<op> <literal>]``. The language has no
function calls, attribute access or arithmetic; a condition that cannot be
parsed or compared evaluates to ``False`` instead of raising.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .paths import resolve_path

logger = logging.getLogger(__name__)


class ConditionSyntaxError(ValueError):
    pass


class Operator(str, Enum):
    EQ = "=="
    NE = "!="
    GT = ">"
    LT = "<"
    GE = ">="
    LE = "<="


@dataclass(frozen=True)
class Literal:
    value: Any


@dataclass(frozen=True)
class PathRef:
    segments: Tuple[str, ...]


@dataclass(frozen=True)
class Condition:
    operand: Any  # Literal | PathRef
    operator: Optional[Operator] = None
    literal: Optional[Literal] = None


_TOKEN_RE = re.compile(
    r"""
    (?P<ws>\s+)
    |(?P<op>==|!=|>=|<=|>|<)
    |(?P<string>"(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*')
    |(?P<number>-?\d+(?:\.\d+)?(?![\w.]))
    |(?P<word>[A-Za-z0-9_][A-Za-z0-9_.\-]*)
    """,
    re.VERBOSE,
)

_KEYWORDS = {"true": True, "false": False, "null": None}


def tokenize(expression: str) -> List[Tuple[str, str]]:
    tokens: List[Tuple[str, str]] = []
    pos = 0
    while pos < len(expression):
        match = _TOKEN_RE.match(expression, pos)
        if match is None:
            raise ConditionSyntaxError(f"Unexpected {expression[pos]!r} at offset {pos}")
        kind = match.lastgroup
        if kind != "ws":
            tokens.append((kind, match.group()))
        pos = match.end()
    return tokens


def _unquote(text: str) -> str:
    return re.sub(r"\\(.)", r"\1", text[1:-1])


def _literal(kind: str, text: str) -> Literal:
    if kind == "string":
        return Literal(_unquote(text))
    if kind == "number":
        return Literal(float(text) if "." in text else int(text))
    if text in _KEYWORDS:
        return Literal(_KEYWORDS[text])
    # Bare words on the right-hand side compare as strings.
    return Literal(text)


def _operand(kind: str, text: str) -> Any:
    if kind == "word" and text not in _KEYWORDS:
        segments = tuple(text.split("."))
        if any(not segment for segment in segments):
            raise ConditionSyntaxError(f"Malformed path {text!r}")
        return PathRef(segments)
    if kind in ("word", "string", "number"):
        return _literal(kind, text)
    raise ConditionSyntaxError(f"Expected an operand, got {text!r}")


def parse_condition(expression: str) -> Condition:
    tokens = tokenize(expression)
    if not tokens:
        raise ConditionSyntaxError("Empty condition")
    operand = _operand(*tokens[0])
    if len(tokens) == 1:
        return Condition(operand)
    if len(tokens) != 3 or tokens[1][0] != "op" or tokens[2][0] == "op":
        raise ConditionSyntaxError(f"Expected '<operand> <op> <literal>', got {expression!r}")
    return Condition(operand, Operator(tokens[1][1]), _literal(*tokens[2]))


def _as_number(value: Any) -> float:
    if value is None:
        raise ValueError("null is not a number")
    number = float(value)
    if math.isnan(number):
        raise ValueError("NaN is not comparable")
    return number


def _loose_equal(left: Any, right: Any) -> bool:
    if left is None or right is None:
        return left is None and right is None
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right
    if isinstance(left, (int, float)) or isinstance(right, (int, float)):
        try:
            return _as_number(left) == _as_number(right)
        except (TypeError, ValueError, OverflowError):
            return False
    return left == right


def _compare(left: Any, operator: Operator, right: Any) -> bool:
    if operator is Operator.EQ:
        return _loose_equal(left, right)
    if operator is Operator.NE:
        return not _loose_equal(left, right)
    lhs, rhs = _as_number(left), _as_number(right)
    if operator is Operator.GT:
        return lhs > rhs
    if operator is Operator.LT:
        return lhs < rhs
    if operator is Operator.GE:
        return lhs >= rhs
    return lhs <= rhs


def evaluate(condition: Condition, eval_context: Dict[str, Any]) -> bool:
    if isinstance(condition.operand, PathRef):
        value = resolve_path(eval_context, list(condition.operand.segments))
    else:
        value = condition.operand.value
    if condition.operator is None:
        return bool(value)
    return _compare(value, condition.operator, condition.literal.value)


def safe_eval(expression: str, eval_context: Dict[str, Any]) -> bool:
    """Evaluate ``expression`` against ``eval_context``; failures are ``False``."""
    try:
        return evaluate(parse_condition(expression or ""), eval_context)
    except (ConditionSyntaxError, TypeError, ValueError, ArithmeticError) as exc:
        logger.warning(f"Routing condition {expression!r} evaluated to false: {exc}")
        return False


def build_routing_context(
    run_context: Dict[str, Any], last_output: Optional[Dict[str, Any]]
) -> Dict[str, Any]:
    """Evaluation scope for rules of the stage that just finished.

    The finished stage's output keys sit at the root so ``score > 5`` refers
    to it; ``context``, ``inputs`` and ``last_output`` stay addressable.
    """
    last_output = dict(last_output or {})
    return {
        **run_context,
        **last_output,
        "context": run_context.get("context", {}),
        "inputs": run_context.get("inputs", {}),
        "last_output": last_output,
        "meta": {"last_output": last_output},
    }
