"""
Transition engine.

`execute_transition` is the one operation that validates inputs and advances an
entity. Callers must not combine the lower-level helpers into their own
validate-then-advance sequence.
"""
import logging
import re
from typing import Any, Dict, List, Optional

from .errors import MissingRequiredFieldsError
from .guards import find_matching_condition
from .models import CompiledWorkflowStep, RuntimeMachine, TransitionCheck, TransitionResult, ValidationResult
from .schema import END

logger = logging.getLogger(__name__)

_EMAIL = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

REASON_MISSING = "Missing required fields"
REASON_READY = "All required fields are filled"


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str) and value == "":
        return True
    if isinstance(value, (list, tuple, set, dict)) and len(value) == 0:
        return True
    return False


def missing_required_fields(step: CompiledWorkflowStep, inputs: Dict[str, Any]) -> List[str]:
    """Required fields that are absent, None, "" or an empty collection, in declaration order."""
    return [name for name in step.required_fields if _is_blank(inputs.get(name))]


def _rule(validation: Dict[str, Any], snake: str, camel: str) -> Any:
    return validation.get(snake, validation.get(camel))


def validate_inputs(step: CompiledWorkflowStep, inputs: Dict[str, Any]) -> ValidationResult:
    """Completeness plus the type and rule checks a field declares. Never raises."""
    errors: List[str] = []

    missing = missing_required_fields(step, inputs)
    if missing:
        errors.append(f"Missing required fields: {', '.join(missing)}")

    for field in step.schema.fields:
        value = inputs.get(field.name)
        if value is None or value == "":
            continue

        if field.type == "email" and isinstance(value, str) and not _EMAIL.match(value):
            errors.append(f'Invalid email format for field "{field.name}"')

        if field.type == "number" and not _is_number(value):
            errors.append(f'Field "{field.name}" must be a number')

        validation = field.validation or {}
        if not isinstance(value, str):
            continue

        pattern = validation.get("pattern")
        if pattern:
            if not isinstance(pattern, str):
                errors.append(f'Field "{field.name}" has an invalid pattern: {pattern!r} is not a string')
            else:
                try:
                    if not re.search(pattern, value):
                        errors.append(f'Field "{field.name}" does not match required pattern')
                except re.error as e:
                    errors.append(f'Field "{field.name}" has an invalid pattern: {e}')

        min_length = _length_rule(validation, "min_length", "minLength", field.name, errors)
        if min_length and len(value) < min_length:
            errors.append(f'Field "{field.name}" must be at least {min_length} characters')

        max_length = _length_rule(validation, "max_length", "maxLength", field.name, errors)
        if max_length and len(value) > max_length:
            errors.append(f'Field "{field.name}" must be at most {max_length} characters')

    return ValidationResult(valid=not errors, errors=errors)


def _length_rule(validation: Dict[str, Any], snake: str, camel: str,
                 field_name: str, errors: List[str]) -> Optional[int]:
    """The rule as an int; an unusable value is reported in `errors` and skipped."""
    raw = _rule(validation, snake, camel)
    if raw is None:
        return None
    if isinstance(raw, bool):
        errors.append(f'Field "{field_name}" has an invalid {snake} rule: {raw!r}')
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        errors.append(f'Field "{field_name}" has an invalid {snake} rule: {raw!r}')
        return None


def _is_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return True
    try:
        float(str(value).strip())
    except ValueError:
        return False
    return True


def _resolve_next(step: CompiledWorkflowStep, inputs: Dict[str, Any]):
    match = find_matching_condition(step.next.conditions, inputs)
    if match is None:
        return step.next.default, "default"
    index, condition = match
    return condition.then, f"condition:{index}:{condition.when}"


def next_step_id(step: CompiledWorkflowStep, inputs: Dict[str, Any]) -> str:
    """Target of the first condition that holds, else the step's default."""
    return _resolve_next(step, inputs)[0]


def is_valid_transition(machine: RuntimeMachine, target_id: str) -> bool:
    return target_id == END or target_id in machine.step_index_by_id


def can_transition_from(step: CompiledWorkflowStep, inputs: Dict[str, Any]) -> TransitionCheck:
    missing = missing_required_fields(step, inputs)
    if missing:
        return TransitionCheck(allowed=False, missing_fields=missing, reason=REASON_MISSING)
    return TransitionCheck(allowed=True, missing_fields=[], reason=REASON_READY)


def execute_transition(machine: RuntimeMachine, step: CompiledWorkflowStep,
                       inputs: Dict[str, Any]) -> TransitionResult:
    """
    Validate required fields and compute where `step` leads.

    Raises MissingRequiredFieldsError when any required field is blank.
    """
    missing = missing_required_fields(step, inputs)
    if missing:
        raise MissingRequiredFieldsError(step.id, missing)

    target, reason = _resolve_next(step, inputs)
    next_step = None if target == END else machine.step_index_by_id.get(target)
    logger.info(
        "Transition %s -> %s (%s)", step.id, target, reason,
        extra={"workflow_id": machine.workflow_id, "step_id": step.id},
    )
    return TransitionResult(next_step_id=target, next_step=next_step, is_end=target == END, reason=reason)


def possible_next_steps(step: CompiledWorkflowStep) -> List[str]:
    """Every target `step` can lead to, condition targets first, without duplicates."""
    seen: List[str] = []
    for target in step.next.targets():
        if target not in seen:
            seen.append(target)
    return seen


def get_step(machine: RuntimeMachine, step_id: str) -> Optional[CompiledWorkflowStep]:
    return machine.step_index_by_id.get(step_id)


def get_initial_step(machine: RuntimeMachine) -> Optional[CompiledWorkflowStep]:
    return get_step(machine, machine.initial_step_id)


def is_final_step(step: CompiledWorkflowStep) -> bool:
    return step.next.default == END


def next_uncompleted_step(machine: RuntimeMachine, completed_steps: List[str]) -> Optional[CompiledWorkflowStep]:
    done = set(completed_steps)
    for step in machine.steps:
        if step.id not in done:
            return step
    return None
