""" Source-format models for task and workflow definitions (one YAML document per file). """

from typing import List, Optional, Dict, Any, Literal
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .errors import SchemaInvalidError

END = "END"


class FieldOption(BaseModel):
    model_config = ConfigDict(frozen=True, extra="allow")

    value: Any
    label: str = ""


class FieldSchema(BaseModel):
    """One form field. Attributes not listed here (file `accept`, `max_size`, ...) are kept."""
    model_config = ConfigDict(frozen=True, extra="allow", populate_by_name=True)

    name: str = Field(min_length=1)
    label: Optional[str] = None
    type: str = "text"
    required: bool = False
    placeholder: Optional[str] = None
    help_text: Optional[str] = Field(default=None, alias="helpText")
    validation: Optional[Dict[str, Any]] = None
    options: Optional[List[FieldOption]] = None
    default_value: Any = Field(default=None, alias="defaultValue")
    visible: Optional[str] = None
    inherits: Optional[str] = None

    def declared(self) -> Dict[str, Any]:
        """Attributes explicitly present in the source, keyed by field name."""
        return self.model_dump(exclude_unset=True)


class TaskSchema(BaseModel):
    model_config = ConfigDict(frozen=True, extra="allow")

    fields: List[FieldSchema] = Field(default_factory=list)

    def field_names(self) -> List[str]:
        return [f.name for f in self.fields]

    def get_field(self, name: str) -> Optional[FieldSchema]:
        for f in self.fields:
            if f.name == name:
                return f
        return None


class TaskDefinition(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    description: str = ""
    version: int = 1
    extends: Optional[str] = None
    component_id: str = Field(min_length=1)  # opaque, mapped to a UI component elsewhere
    required_fields: List[str] = Field(default_factory=list)
    field_schema: TaskSchema = Field(default_factory=TaskSchema, alias="schema")
    expected_output_fields: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)


class WorkflowStepNextCondition(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    when: str
    then: str


class WorkflowStepNext(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    conditions: List[WorkflowStepNextCondition] = Field(default_factory=list)
    default: str

    def targets(self) -> List[str]:
        """Every target in evaluation order: condition targets, then the default."""
        return [c.then for c in self.conditions] + [self.default]


class WorkflowStepReference(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(min_length=1)
    stage: Optional[str] = None
    task_ref: str = Field(min_length=1)
    next: WorkflowStepNext


class StageDefinition(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str
    name: str
    description: Optional[str] = None


class AppliesTo(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    client_type: str
    jurisdictions: List[str] = Field(default_factory=list)


class WorkflowDefinition(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")  # unknown top-level keys are authoring mistakes

    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    version: int = 1
    description: Optional[str] = None
    applies_to: Optional[AppliesTo] = None
    stages: List[StageDefinition] = Field(default_factory=list)
    steps: List[WorkflowStepReference]


class EntityProfile(BaseModel):
    """Profile used to pick the workflow that applies to an entity."""
    client_type: str
    jurisdiction: Optional[str] = None


class DocumentMetadata(BaseModel):
    """Metadata recorded for an uploaded document. Transport of the file itself happens elsewhere."""
    model_config = ConfigDict(extra="allow")

    type: str
    filename: str
    filepath: str
    uploaded_at: str
    file_size: int = Field(ge=0)
    mime_type: str
    approval_status: Literal["pending", "approved", "rejected"] = "pending"
    approver_id: Optional[str] = None
    approval_timestamp: Optional[str] = None
    rejection_reason: Optional[str] = None

    @model_validator(mode="after")
    def _rejection_needs_reason(self) -> "DocumentMetadata":
        if self.approval_status == "rejected" and not self.rejection_reason:
            raise ValueError("rejection_reason is required when a document is rejected")
        return self


def _summarize(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        loc = ".".join(str(p) for p in item.get("loc", ())) or "<root>"
        parts.append(f"{loc}: {item.get('msg')}")
    return "; ".join(parts)


def validate_task(raw: Any, source: str) -> TaskDefinition:
    """Validate a raw YAML document against TaskDefinition."""
    if not isinstance(raw, dict):
        raise SchemaInvalidError(f"Empty or invalid task definition in {source}", {"source": source})
    try:
        return TaskDefinition.model_validate(raw)
    except ValidationError as e:
        raise SchemaInvalidError(
            f"Invalid task definition in {source}: {_summarize(e)}",
            {"source": source},
        ) from e


def validate_workflow(raw: Any, source: str) -> WorkflowDefinition:
    """Validate a raw YAML document against WorkflowDefinition."""
    if not isinstance(raw, dict):
        raise SchemaInvalidError(f"Empty or invalid workflow definition in {source}", {"source": source})
    try:
        return WorkflowDefinition.model_validate(raw)
    except ValidationError as e:
        raise SchemaInvalidError(
            f"Invalid workflow definition in {source}: {_summarize(e)}",
            {"source": source},
        ) from e
