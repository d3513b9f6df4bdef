"""
Service layer tying the compiled workflow, the transition engine and the state store together.

This is the only code that writes transition results back to an entity's
record, and it always does so through `execute_transition`.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from pydantic import ValidationError

from onboarding.state.store import PersistedState, StateStore, utcnow
from onboarding.workflow.compiler import load_machine_for
from onboarding.workflow.errors import ConflictError, NotFoundError, SchemaInvalidError, WorkflowError
from onboarding.workflow.executor import execute_transition, get_step
from onboarding.workflow.loader import DefinitionLoader
from onboarding.workflow.models import RuntimeMachine, TransitionResult
from onboarding.workflow.progress import completed_stages, stage_progress, workflow_progress
from onboarding.workflow.schema import END, DocumentMetadata, EntityProfile

logger = logging.getLogger(__name__)


@dataclass
class SeedReport:
    seeded: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)


class OnboardingService:

    def __init__(self, store: StateStore, loader: DefinitionLoader):
        self.store = store
        self.loader = loader

    def machine_for(self, profile: EntityProfile) -> RuntimeMachine:
        return load_machine_for(profile, self.loader)

    def _require(self, client_id: str) -> PersistedState:
        state = self.store.load(client_id)
        if state is None:
            raise NotFoundError(f"Client state not found: {client_id}", {"client_id": client_id})
        return state

    @staticmethod
    def _check_workflow(state: PersistedState, machine: RuntimeMachine) -> None:
        if state.workflow_id != machine.workflow_id:
            raise ConflictError(
                f"Client {state.client_id} is on workflow {state.workflow_id}, not {machine.workflow_id}",
                {"client_id": state.client_id, "workflow_id": state.workflow_id},
            )

    def start(self, client_id: str, machine: RuntimeMachine,
              data: Optional[Dict[str, Any]] = None) -> PersistedState:
        """Return the existing record, or create one at the machine's initial step."""
        existing = self.store.load(client_id)
        if existing is not None:
            return existing

        state = self.store.initialize(client_id, machine.workflow_id, machine.initial_step_id, data=data)
        initial = get_step(machine, machine.initial_step_id)
        if initial is not None and initial.stage:
            state = self.store.update(client_id, {"current_stage": initial.stage})
        return state

    def record_inputs(self, client_id: str, inputs: Dict[str, Any]) -> PersistedState:
        state = self._require(client_id)
        return self.store.update(client_id, {"collected_inputs": {**state.collected_inputs, **inputs}})

    def advance(self, client_id: str, machine: RuntimeMachine,
                inputs: Optional[Dict[str, Any]] = None) -> TransitionResult:
        """
        Merge `inputs` into the record and move it past its current step.

        MissingRequiredFieldsError propagates and leaves the record untouched.
        """
        state = self._require(client_id)
        self._check_workflow(state, machine)
        if state.current_step_id == END:
            raise ConflictError(f"Workflow already complete for {client_id}", {"client_id": client_id})

        step = get_step(machine, state.current_step_id)
        if step is None:
            raise NotFoundError(
                f"Step {state.current_step_id} not found in workflow {machine.workflow_id}",
                {"client_id": client_id, "step_id": state.current_step_id},
            )

        collected = {**state.collected_inputs, **(inputs or {})}
        result = execute_transition(machine, step, collected)

        completed = list(state.completed_steps) + [step.id]
        self.store.update(client_id, {
            "collected_inputs": collected,
            "current_step_id": result.next_step_id,
            "current_stage": result.next_step.stage if result.next_step else None,
            "completed_steps": completed,
            "completed_stages": completed_stages(machine, completed),
        })
        return result

    def go_back(self, client_id: str, machine: RuntimeMachine) -> PersistedState:
        """Make the most recently completed step current again."""
        state = self._require(client_id)
        self._check_workflow(state, machine)
        if not state.completed_steps:
            raise ConflictError(f"Cannot go back: {client_id} is at the first step", {"client_id": client_id})

        previous_id = state.completed_steps[-1]
        previous = get_step(machine, previous_id)
        if previous is None:
            raise NotFoundError(f"Previous step not found: {previous_id}", {"client_id": client_id})

        completed = list(state.completed_steps[:-1])
        return self.store.update(client_id, {
            "current_step_id": previous_id,
            "current_stage": previous.stage,
            "completed_steps": completed,
            "completed_stages": completed_stages(machine, completed),
        })

    def reset(self, client_id: str, machine: RuntimeMachine) -> PersistedState:
        """Back to the initial step with no collected inputs. The profile snapshot is kept."""
        self._require(client_id)
        initial = get_step(machine, machine.initial_step_id)
        return self.store.update(client_id, {
            "workflow_id": machine.workflow_id,
            "current_step_id": machine.initial_step_id,
            "current_stage": initial.stage if initial else None,
            "collected_inputs": {},
            "completed_steps": [],
            "completed_stages": [],
        })

    def status(self, client_id: str, machine: RuntimeMachine) -> Dict[str, Any]:
        state = self._require(client_id)
        progress = workflow_progress(machine, state.completed_steps)
        current = get_step(machine, state.current_step_id) if state.current_step_id != END else None
        return {
            "client_id": client_id,
            "workflow_id": state.workflow_id,
            "current_step_id": state.current_step_id,
            "current_stage": state.current_stage,
            "component_id": current.component_id if current else None,
            "is_complete": state.current_step_id == END,
            "progress": vars(progress),
            "stages": [vars(s) for s in stage_progress(machine, state.completed_steps)],
            "last_updated": state.last_updated.isoformat(),
        }

    def review_document(self, client_id: str, document_type: str, approval_status: str,
                        approver_id: Optional[str] = None,
                        rejection_reason: Optional[str] = None) -> DocumentMetadata:
        """
        Record an approval decision on an uploaded document.

        The approver id is stored as given; no permission check happens here.
        """
        state = self._require(client_id)
        documents = list(state.collected_inputs.get("documents") or [])
        position = next((i for i, doc in enumerate(documents) if doc.get("type") == document_type), None)
        if position is None:
            raise NotFoundError(f"Document not found: {document_type}", {"client_id": client_id})

        try:
            updated = DocumentMetadata.model_validate({
                **documents[position],
                "approval_status": approval_status,
                "approver_id": approver_id,
                "approval_timestamp": utcnow().isoformat(),
                "rejection_reason": rejection_reason if approval_status == "rejected" else None,
            })
        except ValidationError as e:
            raise SchemaInvalidError(f"Invalid document review: {e}", {"client_id": client_id}) from e

        documents[position] = updated.model_dump(exclude_none=True)
        self.store.update(client_id, {"collected_inputs": {**state.collected_inputs, "documents": documents}})
        logger.info("Document %s for %s marked %s", document_type, client_id, approval_status,
                    extra={"client_id": client_id})
        return updated

    def seed(self, profiles: Iterable[Dict[str, Any]]) -> SeedReport:
        """
        Create a record for every profile that has none yet.

        Each profile needs an `id` and a `client_type`; `jurisdiction` is optional.
        The workflow is selected per profile and the whole profile is stored as
        the record's `data`. Existing records are skipped, so seeding twice is a
        no-op. A profile that fails is reported and the rest still run.
        """
        report = SeedReport()
        machines: Dict[Tuple[str, Optional[str]], RuntimeMachine] = {}

        for position, raw in enumerate(profiles):
            client_id = str(raw.get("id") or "") if isinstance(raw, dict) else ""
            if not client_id:
                report.failed[f"#{position}"] = "profile has no id"
                continue
            try:
                if self.store.exists(client_id):
                    report.skipped.append(client_id)
                    continue
                profile = EntityProfile.model_validate(raw)
                key = (profile.client_type, profile.jurisdiction)
                if key not in machines:
                    machines[key] = self.machine_for(profile)
                machine = machines[key]
                self.start(client_id, machine, data=dict(raw))
            except ValidationError as e:
                report.failed[client_id] = f"invalid profile: {e.errors()[0]['msg']}"
                continue
            except WorkflowError as e:
                report.failed[client_id] = e.message
                continue
            report.seeded.append(client_id)
            logger.info("Seeded %s on %s", client_id, machine.workflow_id,
                        extra={"client_id": client_id, "workflow_id": machine.workflow_id})

        if report.failed:
            logger.warning("Seeding failed for %d profile(s)", len(report.failed))
        return report
