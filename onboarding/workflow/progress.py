"""
Progress reporting over a compiled workflow.

Stages are for reporting only; nothing here feeds back into transitions.
"""
import math
from typing import Iterable, List, Optional

from .models import CompiledWorkflowStep, RuntimeMachine, StageProgress, WorkflowProgress
from .schema import StageDefinition


def _percentage(completed: int, total: int) -> int:
    if total <= 0:
        return 0
    # half-up: 1 of 8 reports 13
    return int(math.floor(completed / total * 100 + 0.5))


def workflow_progress(machine: RuntimeMachine, completed_steps: Iterable[str]) -> WorkflowProgress:
    """Counts only completed ids that belong to the machine, each once."""
    known = set(machine.step_ids())
    completed = len(known & set(completed_steps))
    total = len(machine.steps)
    return WorkflowProgress(
        total=total,
        completed=completed,
        remaining=total - completed,
        percentage=_percentage(completed, total),
    )


def steps_in_stage(machine: RuntimeMachine, stage_id: str) -> List[CompiledWorkflowStep]:
    return [step for step in machine.steps if step.stage == stage_id]


def stage_progress(machine: RuntimeMachine, completed_steps: Iterable[str]) -> List[StageProgress]:
    """One entry per declared stage. A stage without steps reports 0%."""
    done = set(completed_steps)
    result = []
    for stage in machine.stages:
        members = steps_in_stage(machine, stage.id)
        completed = sum(1 for step in members if step.id in done)
        result.append(StageProgress(
            stage_id=stage.id,
            stage_name=stage.name,
            total=len(members),
            completed=completed,
            percentage=_percentage(completed, len(members)),
        ))
    return result


def stage_completed(machine: RuntimeMachine, stage_id: str, completed_steps: Iterable[str]) -> bool:
    members = steps_in_stage(machine, stage_id)
    if not members:
        return False
    done = set(completed_steps)
    return all(step.id in done for step in members)


def completed_stages(machine: RuntimeMachine, completed_steps: Iterable[str]) -> List[str]:
    """Ids of completed stages in declaration order."""
    done = list(completed_steps)
    return [stage.id for stage in machine.stages if stage_completed(machine, stage.id, done)]


def stage_for_step(machine: RuntimeMachine, step_id: str) -> Optional[StageDefinition]:
    step = machine.step_index_by_id.get(step_id)
    if step is None or not step.stage:
        return None
    return next((stage for stage in machine.stages if stage.id == step.stage), None)
