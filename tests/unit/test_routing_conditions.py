import pytest

from levelforge.orchestration import (
    Condition,
    Operator,
    build_routing_context,
    parse_condition,
    safe_eval,
)
from levelforge.orchestration.routing import ConditionSyntaxError, Literal, PathRef


@pytest.fixture
def scope():
    run_context = {
        "seed": 3,
        "inputs": {"difficulty": "hard"},
        "context": {"S1": {"score": 4, "label": "ok"}},
    }
    return build_routing_context(
        run_context, {"score": 7, "approved": True, "label": "castle", "items": [1, 2], "empty": ""}
    )


def test_parse_condition():
    assert parse_condition("score > 5") == Condition(PathRef(("score",)), Operator.GT, Literal(5))
    assert parse_condition("label == 'a b'") == Condition(
        PathRef(("label",)), Operator.EQ, Literal("a b")
    )
    assert parse_condition("approved") == Condition(PathRef(("approved",)))
    assert parse_condition("x != null").literal == Literal(None)
    assert parse_condition("x <= -1.5").literal == Literal(-1.5)


@pytest.mark.parametrize(
    "expression",
    ["", "score >", "> 5", "score > 5 and x", "score >> 5", "a..b == 1", "open(1)"],
)
def test_parse_errors(expression):
    with pytest.raises(ConditionSyntaxError):
        parse_condition(expression)


@pytest.mark.parametrize(
    "expression, expected",
    [
        ("score > 5", True),
        ("score >= 7", True),
        ("score < 7", False),
        ("score <= 6.5", False),
        ("score == 7", True),
        ("score == '7'", True),
        ("score != 7", False),
        ("label == castle", True),
        ('label == "castle"', True),
        ("label != castle", False),
        ("approved == true", True),
        ("approved == 1", False),
        ("approved", True),
        ("empty", False),
        ("missing", False),
        ("missing == null", True),
        ("context.S1.score > 3", True),
        ("last_output.score == 7", True),
        ("meta.last_output.label == castle", True),
        ("inputs.difficulty == hard", True),
        ("items.1 == 2", True),
        ("seed == 3", True),
    ],
)
def test_safe_eval(scope, expression, expected):
    assert safe_eval(expression, scope) is expected


@pytest.mark.parametrize(
    "expression",
    ["label > 5", "missing > 1", "score >", "__import__('os')", "score > castle"],
)
def test_safe_eval_failures_are_false(scope, expression, caplog):
    assert safe_eval(expression, scope) is False
    assert "evaluated to false" in caplog.text


def test_last_output_overrides_run_context():
    scope = build_routing_context({"score": 1, "context": {}, "inputs": {}}, {"score": 10})
    assert safe_eval("score > 5", scope)
    assert build_routing_context({}, None)["last_output"] == {}


def test_first_matching_rule_wins():
    rules = [("score>5", "B"), ("true", "C")]

    def route(output):
        scope = build_routing_context({"context": {}, "inputs": {}}, output)
        return next((target for condition, target in rules if safe_eval(condition, scope)), None)

    assert route({"score": 7}) == "B"
    assert route({"score": 2}) == "C"
    assert route({}) == "C"
    assert not safe_eval("score >>> 5", build_routing_context({}, {"score": 7}))


@pytest.mark.parametrize(
    "expression, value",
    [("score > 1", 10**400), ("score > " + "9" * 400, 1), ("score == " + "9" * 400, 1)],
)
def test_numbers_too_large_for_float_are_false(expression, value):
    scope = build_routing_context({}, {"score": value})
    assert safe_eval(expression, scope) is False
