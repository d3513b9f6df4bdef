""" Compile a WorkflowDefinition into a validated RuntimeMachine. """

import logging
from types import MappingProxyType
from typing import Dict, List, Sequence

from .errors import InvalidTransitionTargetError, NotFoundError, SchemaInvalidError, TaskFieldMismatchError
from .loader import DefinitionLoader, select_applicable
from .models import CompiledWorkflowStep, RuntimeMachine
from .schema import END, EntityProfile, TaskDefinition, WorkflowDefinition, WorkflowStepReference

logger = logging.getLogger(__name__)


def compile_workflow(workflow: WorkflowDefinition, loader: DefinitionLoader) -> RuntimeMachine:
    """
    Resolve every step's task and build the step index.

    All-or-nothing: any error raises before a machine exists, so a returned
    machine never holds a transition to an unknown step.
    """
    steps = [_compile_step(ref, loader) for ref in workflow.steps]

    index: Dict[str, CompiledWorkflowStep] = {}
    for step in steps:
        if step.id in index:
            raise SchemaInvalidError(
                f"Duplicate step id '{step.id}' in workflow {workflow.id}",
                {"workflow_id": workflow.id, "step_id": step.id},
            )
        index[step.id] = step

    _validate_transitions(steps, index)

    machine = RuntimeMachine(
        workflow_id=workflow.id,
        version=workflow.version,
        stages=tuple(workflow.stages),
        initial_step_id=steps[0].id if steps else "",
        steps=tuple(steps),
        step_index_by_id=MappingProxyType(index),
    )
    logger.info("Compiled workflow %s v%s with %d steps", machine.workflow_id, machine.version, len(steps))
    return machine


def _compile_step(ref: WorkflowStepReference, loader: DefinitionLoader) -> CompiledWorkflowStep:
    task = loader.load_resolved_task(ref.task_ref)
    _validate_task_fields(ref.id, ref.task_ref, task)
    return CompiledWorkflowStep(
        id=ref.id,
        stage=ref.stage,
        task_ref=ref.task_ref,
        task_definition=task,
        component_id=task.component_id,
        schema=task.field_schema,
        required_fields=tuple(task.required_fields),
        next=ref.next,
    )


def _validate_task_fields(step_id: str, task_ref: str, task: TaskDefinition) -> None:
    """Required fields and the field schema are kept in sync by hand in the sources."""
    if not task.required_fields:
        return
    names = set(task.field_schema.field_names())
    missing = [name for name in task.required_fields if name not in names]
    if missing:
        raise TaskFieldMismatchError(step_id, task_ref, missing)


def _validate_transitions(steps: Sequence[CompiledWorkflowStep], index: Dict[str, CompiledWorkflowStep]) -> None:
    for step in steps:
        for condition in step.next.conditions:
            if condition.then != END and condition.then not in index:
                raise InvalidTransitionTargetError(step.id, condition.then, kind="condition")
        if step.next.default != END and step.next.default not in index:
            raise InvalidTransitionTargetError(step.id, step.next.default, kind="default")


def load_machine_for(profile: EntityProfile, loader: DefinitionLoader) -> RuntimeMachine:
    """Load all workflows, pick the one for `profile` and compile it."""
    workflows: List[WorkflowDefinition] = loader.load_all()
    workflow = select_applicable(workflows, profile)
    if workflow is None:
        raise NotFoundError(
            f"No workflow definitions found in {loader.workflows_dir}",
            {"workflows_dir": str(loader.workflows_dir)},
        )
    return compile_workflow(workflow, loader)
