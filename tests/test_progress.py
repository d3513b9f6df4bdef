"""Tests for workflow and stage progress reporting."""

import pytest
from onboarding.workflow.compiler import compile_workflow
from onboarding.workflow.progress import (
    completed_stages,
    stage_completed,
    stage_for_step,
    stage_progress,
    steps_in_stage,
    workflow_progress,
)


@pytest.fixture
def machine(onboarding_defs):
    loader = onboarding_defs.loader()
    return compile_workflow(loader.load_workflow("corporate.yaml"), loader)


def test_workflow_progress(machine):
    progress = workflow_progress(machine, ["A", "R"])

    assert progress.total == 4
    assert progress.completed == 2
    assert progress.remaining == 2
    assert progress.percentage == 50


def test_workflow_progress_ignores_unknown_and_duplicate_ids(machine):
    progress = workflow_progress(machine, ["A", "A", "ghost"])

    assert progress.completed == 1
    assert progress.percentage == 25


def test_workflow_progress_rounds_half_up(defs):
    defs.task("t", "id: t\nname: T\ncomponent_id: form\n")
    steps = "\n".join(
        f"  - {{ id: s{i}, task_ref: t, next: {{ default: {'s%d' % (i + 1) if i < 7 else 'END'} }} }}"
        for i in range(8)
    )
    defs.workflow("eight.yaml", f"id: eight\nname: Eight\nsteps:\n{steps}\n")
    loader = defs.loader()
    machine = compile_workflow(loader.load_workflow("eight.yaml"), loader)

    assert workflow_progress(machine, ["s0"]).percentage == 13


def test_workflow_progress_empty_workflow_is_zero(defs):
    defs.workflow("empty.yaml", "id: empty\nname: Empty\nsteps: []\n")
    loader = defs.loader()
    machine = compile_workflow(loader.load_workflow("empty.yaml"), loader)

    progress = workflow_progress(machine, [])

    assert progress.total == 0
    assert progress.percentage == 0


def test_stage_progress(machine):
    stages = {s.stage_id: s for s in stage_progress(machine, ["A", "R"])}

    assert list(stages) == ["info", "compliance", "archive"]
    assert (stages["info"].total, stages["info"].completed, stages["info"].percentage) == (2, 1, 50)
    assert (stages["compliance"].total, stages["compliance"].completed) == (2, 1)
    assert stages["compliance"].stage_name == "Compliance"


def test_stage_without_steps_reports_zero(machine):
    archive = next(s for s in stage_progress(machine, ["A", "R", "B", "C"]) if s.stage_id == "archive")

    assert archive.total == 0
    assert archive.percentage == 0


@pytest.mark.parametrize("completed", [[], ["A"], ["A", "R", "B", "C"], ["ghost", "A", "A"]])
def test_stage_percentages_are_bounded(machine, completed):
    for stage in stage_progress(machine, completed):
        assert 0 <= stage.percentage <= 100
        assert isinstance(stage.percentage, int)


def test_stage_completed(machine):
    assert stage_completed(machine, "compliance", ["R", "B"]) is True
    assert stage_completed(machine, "compliance", ["R"]) is False
    assert stage_completed(machine, "archive", ["A", "R", "B", "C"]) is False
    assert stage_completed(machine, "unknown", ["A"]) is False


def test_completed_stages(machine):
    assert completed_stages(machine, ["A", "C", "R"]) == ["info"]
    assert completed_stages(machine, ["A", "R", "B", "C"]) == ["info", "compliance"]


def test_stage_lookups(machine):
    assert [s.id for s in steps_in_stage(machine, "info")] == ["A", "C"]
    assert stage_for_step(machine, "B").id == "compliance"
    assert stage_for_step(machine, "ghost") is None
