from uuid import uuid4

import pytest

from levelforge.db import Run, StageRun
from levelforge.orchestration import (
    BindingError,
    build_run_context,
    get_path,
    parse_path,
    resolve_bindings,
    stage_entry,
)


def _run(**kwargs):
    defaults = dict(
        flow_id=uuid4(),
        user_prompt="a haunted castle",
        seed=42,
        mode="custom",
        context={
            "inputs": {"constraints": {"max_rooms": 6}, "theme": "gothic"},
            "context": {},
        },
    )
    defaults.update(kwargs)
    return Run(**defaults)


def _stage_run(run, stage_key, status="succeeded", output=None, artifacts=None, attempt=1):
    return StageRun(
        run_id=run.id,
        stage_key=stage_key,
        attempt=attempt,
        status=status,
        output=output or {},
        produced_artifacts=artifacts or [],
    )


def test_parse_path():
    assert parse_path("a.b[2].c") == ["a", "b", 2, "c"]
    assert parse_path("items[0][1]") == ["items", 0, 1]
    assert parse_path("") == []

    for bad in ("a..b", "a[", "a[x]", "a.", "a[-1]", ".a"):
        with pytest.raises(BindingError):
            parse_path(bad)


def test_get_path_missing_steps_are_none():
    tree = {"a": {"list": [{"x": 1}], "0": "zero"}}
    assert get_path(tree, "a.list[0].x") == 1
    assert get_path(tree, "a.list.0.x") == 1
    assert get_path(tree, "a[0]") == "zero"
    assert get_path(tree, "a.list[5]") is None
    assert get_path(tree, "a.missing.x") is None
    assert get_path(tree, "a.list[0].x.y") is None


def test_build_run_context_shape():
    run = _run()
    s1 = _stage_run(run, "S1_PROMPT", output={"text": "enhanced", "score": 7})
    failed = _stage_run(run, "S2_GRID", status="failed", output={"text": "nope"})

    ctx = build_run_context(run, [s1, failed])

    assert ctx["run"] == {"id": str(run.id), "flow_id": str(run.flow_id), "mode": "custom", "seed": 42}
    assert ctx["user_prompt"] == "a haunted castle"
    assert ctx["seed"] == 42
    assert ctx["constraints"] == {"max_rooms": 6}
    assert ctx["tile_roles_supported"] is None
    assert ctx["inputs"]["theme"] == "gothic"
    assert ctx["context"]["S1_PROMPT"] == {
        "text": "enhanced",
        "score": 7,
        "output": {"text": "enhanced", "score": 7},
        "artifacts": [],
    }
    assert ctx["outputs"] is ctx["context"]
    assert ctx["S1_PROMPT"]["text"] == "enhanced"
    assert "S2_GRID" not in ctx["context"]


def test_latest_stage_runs_overlay_persisted_entries():
    run = _run(
        context={
            "inputs": {},
            "context": {"S1": {"output": {"text": "old"}, "artifacts": [{"slug": "a"}]}},
        }
    )
    ctx = build_run_context(run, [_stage_run(run, "S1", output={"text": "new"}, attempt=2)])
    assert ctx["context"]["S1"]["text"] == "new"
    assert ctx["context"]["S1"]["artifacts"] == []

    ctx = build_run_context(run, [])
    assert ctx["context"]["S1"]["artifacts"] == [{"slug": "a"}]


def test_reserved_stage_keys_stay_under_context():
    run = _run()
    ctx = build_run_context(run, [_stage_run(run, "seed", output={"text": "x"})])
    assert ctx["seed"] == 42
    assert ctx["context"]["seed"]["text"] == "x"


def test_context_is_a_copy():
    run = _run()
    s1 = _stage_run(run, "S1", output={"items": [1, 2]})
    ctx = build_run_context(run, [s1])
    ctx["context"]["S1"]["items"].append(3)
    ctx["inputs"]["theme"] = "changed"
    assert s1.output == {"items": [1, 2]}
    assert run.context["inputs"]["theme"] == "gothic"


def test_resolve_bindings():
    context = {"S1": {"text": "hi", "list": [{"v": 3}]}, "seed": 7}

    resolved = resolve_bindings(
        {
            "text": "$S1.text",
            "dotted": "$.S1.list[0].v",
            "missing": "$S9.text",
            "whole": "$",
            "literal": "plain",
            "number": 5,
        },
        context,
    )

    assert resolved["text"] == "hi"
    assert resolved["dotted"] == 3
    assert resolved["missing"] is None
    assert resolved["whole"] == context
    assert resolved["whole"] is not context
    assert resolved["literal"] == "plain"
    assert resolved["number"] == 5
    assert resolve_bindings({}, context) == {}


@pytest.mark.parametrize("path", ["$.", "$S1..text", "$S1[abc]"])
def test_malformed_bindings_raise(path):
    with pytest.raises(BindingError):
        resolve_bindings({"x": path}, {})


def test_stage_entry_defaults():
    assert stage_entry(None, None) == {"output": {}, "artifacts": []}
