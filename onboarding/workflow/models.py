""" Data models for the compiled runtime representation of a workflow """

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import List, Optional, Tuple, Dict, Any, Mapping

from .schema import END, StageDefinition, TaskDefinition, TaskSchema, WorkflowStepNext


@dataclass(frozen=True)
class CompiledWorkflowStep:
    """A step reference merged with its resolved task definition."""
    id: str
    task_ref: str
    task_definition: TaskDefinition
    component_id: str
    schema: TaskSchema
    required_fields: Tuple[str, ...]
    next: WorkflowStepNext
    stage: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "stage": self.stage,
            "task_ref": self.task_ref,
            "task_definition": self.task_definition.model_dump(by_alias=True, exclude_none=True),
            "component_id": self.component_id,
            "schema": self.schema.model_dump(by_alias=True, exclude_none=True),
            "required_fields": list(self.required_fields),
            "next": self.next.model_dump(),
        }


@dataclass(frozen=True)
class RuntimeMachine:
    workflow_id: str
    version: int
    stages: Tuple[StageDefinition, ...]
    initial_step_id: str
    steps: Tuple[CompiledWorkflowStep, ...]
    step_index_by_id: Mapping[str, CompiledWorkflowStep] = field(default_factory=lambda: MappingProxyType({}))

    def step_ids(self) -> List[str]:
        return [step.id for step in self.steps]

    def to_dict(self) -> Dict[str, Any]:
        """Plain-data form for transport; the step index is flattened to a dict."""
        steps = [step.to_dict() for step in self.steps]
        return {
            "workflowId": self.workflow_id,
            "version": self.version,
            "stages": [stage.model_dump(exclude_none=True) for stage in self.stages],
            "initialStepId": self.initial_step_id,
            "steps": steps,
            "stepIndexById": {s["id"]: s for s in steps},
        }


@dataclass
class ValidationResult:
    valid: bool
    errors: List[str] = field(default_factory=list)


@dataclass
class TransitionCheck:
    allowed: bool
    missing_fields: List[str] = field(default_factory=list)
    reason: str = ""


@dataclass
class TransitionResult:
    next_step_id: str
    next_step: Optional[CompiledWorkflowStep]
    is_end: bool
    reason: str = "default"  # "default" or "condition:<index>:<expression>"


@dataclass
class WorkflowProgress:
    total: int
    completed: int
    remaining: int
    percentage: int


@dataclass
class StageProgress:
    stage_id: str
    stage_name: str
    total: int
    completed: int
    percentage: int


def is_end(step_id: Optional[str]) -> bool:
    return step_id == END
