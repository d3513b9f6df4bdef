""" Error hierarchy for workflow loading, compilation, execution and persistence. """

from typing import Any, Dict, List, Optional


class WorkflowError(Exception):
    """Base error. Carries a machine-readable code and a details dict."""

    error_code: str = "WORKFLOW_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": {
                "code": self.error_code,
                "message": self.message,
                "details": self.details,
            }
        }


class NotFoundError(WorkflowError):
    """Definition source file or entity record does not exist."""
    error_code = "NOT_FOUND"


class SchemaInvalidError(WorkflowError):
    """Loaded definition is malformed or lacks mandatory fields."""
    error_code = "SCHEMA_INVALID"


class StateValidationError(SchemaInvalidError):
    """Persisted record is missing fields required to save it."""
    error_code = "STATE_INVALID"


class CircularInheritanceError(WorkflowError):
    error_code = "CIRCULAR_INHERITANCE"

    def __init__(self, chain: List[str]):
        self.chain = list(chain)
        super().__init__(
            f"Circular inheritance detected: {' -> '.join(self.chain)}",
            {"chain": self.chain},
        )


class TaskFieldMismatchError(WorkflowError):
    """A task declares required fields that its field schema does not define."""
    error_code = "TASK_FIELD_MISMATCH"

    def __init__(self, step_id: str, task_ref: str, missing_fields: List[str]):
        self.step_id = step_id
        self.task_ref = task_ref
        self.missing_fields = list(missing_fields)
        super().__init__(
            f"Task validation failed for step '{step_id}' ({task_ref}): "
            f"required fields not found in schema: {', '.join(self.missing_fields)}",
            {"step_id": step_id, "task_ref": task_ref, "missing_fields": self.missing_fields},
        )


class InvalidTransitionTargetError(WorkflowError):
    error_code = "INVALID_TRANSITION_TARGET"

    def __init__(self, step_id: str, target: str, kind: str = "default"):
        self.step_id = step_id
        self.target = target
        super().__init__(
            f"Invalid transition in step '{step_id}': {kind} target '{target}' does not exist",
            {"step_id": step_id, "target": target, "kind": kind},
        )


class MissingRequiredFieldsError(WorkflowError):
    error_code = "MISSING_REQUIRED_FIELDS"

    def __init__(self, step_id: str, missing_fields: List[str]):
        self.step_id = step_id
        self.missing_fields = list(missing_fields)
        super().__init__(
            f"Cannot transition from '{step_id}': missing required fields: "
            f"{', '.join(self.missing_fields)}",
            {"step_id": step_id, "missing_fields": self.missing_fields},
        )


class ConflictError(WorkflowError):
    """Operation conflicts with existing state (e.g. re-initializing a record)."""
    error_code = "CONFLICT"


class IOFailureError(WorkflowError):
    """Unexpected read, write or rename failure."""
    error_code = "IO_FAILURE"
