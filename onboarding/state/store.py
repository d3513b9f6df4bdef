"""File-backed persistence of per-entity workflow state."""

import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from onboarding.workflow.errors import ConflictError, IOFailureError, NotFoundError, StateValidationError

logger = logging.getLogger(__name__)

STATE_SUFFIX = ".json"
TEMP_SUFFIX = ".tmp"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PersistedState(BaseModel):
    """Progress of one entity through one workflow.

    Stored as camelCase JSON (`clientId`, `currentStepId`, ...), one file per entity.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    client_id: str
    workflow_id: Optional[str] = None
    current_step_id: Optional[str] = None
    current_stage: Optional[str] = None
    collected_inputs: Dict[str, Any] = Field(default_factory=dict)
    completed_steps: List[str] = Field(default_factory=list)
    completed_stages: List[str] = Field(default_factory=list)
    last_updated: datetime = Field(default_factory=utcnow)
    data: Optional[Dict[str, Any]] = None  # profile snapshot

    def to_json(self) -> str:
        return json.dumps(self.model_dump(mode="json", by_alias=True), indent=2, ensure_ascii=False)


def _field_name(key: str) -> Optional[str]:
    """Map a snake_case or camelCase key to a PersistedState field name."""
    for name, info in PersistedState.model_fields.items():
        if key == name or key == info.alias:
            return name
    return None


class StateStore:
    """
    One JSON file per entity under `state_dir`.

    Each write goes to its own `<id>.json.<random>.tmp` and is renamed over
    `<id>.json`, so a reader never sees a partially written record. Nothing
    serializes concurrent read-modify-write cycles on the same entity: two
    overlapping `update` calls race and the last writer wins. Multi-writer
    deployments need a per-entity lock or a compare-and-set on `last_updated`
    around `update`.
    """

    def __init__(self, state_dir: Path):
        self.state_dir = Path(state_dir)

    def _path(self, client_id: str) -> Path:
        if not client_id or client_id.startswith(".") or "/" in client_id or "\\" in client_id:
            raise StateValidationError(f"Invalid client id: {client_id!r}", {"client_id": client_id})
        return self.state_dir / f"{client_id}{STATE_SUFFIX}"

    def exists(self, client_id: str) -> bool:
        return self._path(client_id).is_file()

    def initialize(self, client_id: str, workflow_id: str, initial_step_id: str,
                   data: Optional[Dict[str, Any]] = None) -> PersistedState:
        """Create a fresh record. Raises ConflictError if one already exists."""
        if self.exists(client_id):
            raise ConflictError(f"Client state already exists for {client_id}", {"client_id": client_id})

        state = PersistedState(
            client_id=client_id,
            workflow_id=workflow_id,
            current_step_id=initial_step_id,
            data=data,
        )
        saved = self.save(client_id, state)
        logger.info("Initialized state for %s at step %s", client_id, initial_step_id,
                    extra={"client_id": client_id, "workflow_id": workflow_id})
        return saved

    def load(self, client_id: str) -> Optional[PersistedState]:
        """
        Return the record, or None if there is none.

        Unparsable or incomplete records are logged and reported as None; other
        read failures raise IOFailureError.
        """
        path = self._path(client_id)
        try:
            content = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise IOFailureError(f"Could not read state for {client_id}: {e}", {"client_id": client_id}) from e

        try:
            state = PersistedState.model_validate(json.loads(content))
        except (json.JSONDecodeError, ValidationError) as e:
            logger.error("Corrupted state file for %s, treating as missing: %s", client_id, e,
                         extra={"client_id": client_id})
            return None

        if not state.workflow_id or not state.current_step_id:
            logger.warning("Invalid state file for %s, treating as missing", client_id,
                           extra={"client_id": client_id})
            return None
        return state

    def save(self, client_id: str, state: PersistedState) -> PersistedState:
        """
        Atomically replace the record. `last_updated` is always set to now.

        Returns the record as written; the argument is not modified.
        """
        if state.client_id != client_id:
            raise StateValidationError(
                f"State belongs to {state.client_id!r}, not {client_id!r}", {"client_id": client_id}
            )
        if not state.workflow_id or not state.current_step_id:
            raise StateValidationError(
                "Invalid client state: missing required fields (workflowId, currentStepId)",
                {"client_id": client_id},
            )

        path = self._path(client_id)
        saved = state.model_copy(update={"last_updated": utcnow()}, deep=True)

        # one temp file per write; overlapping saves never share it
        temp_path: Optional[Path] = None
        try:
            self.state_dir.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w", encoding="utf-8", dir=self.state_dir,
                prefix=f"{path.name}.", suffix=TEMP_SUFFIX, delete=False,
            ) as fh:
                temp_path = Path(fh.name)
                fh.write(saved.to_json())
            os.replace(temp_path, path)
        except OSError as e:
            if temp_path is not None:
                try:
                    temp_path.unlink()
                except FileNotFoundError:
                    pass
                except OSError as cleanup_error:
                    logger.warning("Could not remove %s: %s", temp_path, cleanup_error)
            raise IOFailureError(f"Failed to save state for {client_id}: {e}", {"client_id": client_id}) from e

        logger.debug("Saved state for %s", client_id, extra={"client_id": client_id})
        return saved

    def update(self, client_id: str, updates: Dict[str, Any]) -> PersistedState:
        """
        Shallow-merge `updates` over the stored record and save it.

        Each key replaces the stored value wholesale. Keys may be snake_case or
        camelCase. The client id cannot be changed.
        """
        current = self.load(client_id)
        if current is None:
            raise NotFoundError(f"Cannot update state: client {client_id} not found", {"client_id": client_id})

        merged = current.model_dump()
        for key, value in updates.items():
            name = _field_name(key)
            if name is None:
                raise StateValidationError(f"Unknown state field: {key}", {"client_id": client_id})
            if name == "client_id":
                if value != client_id:
                    raise StateValidationError("The client id of a record cannot be changed",
                                               {"client_id": client_id})
                continue
            if name == "last_updated":
                continue
            merged[name] = value

        try:
            new_state = PersistedState.model_validate(merged)
        except ValidationError as e:
            raise StateValidationError(f"Invalid state update for {client_id}: {e}", {"client_id": client_id}) from e
        return self.save(client_id, new_state)

    def delete(self, client_id: str) -> None:
        """Remove the record. Deleting a missing record is a no-op."""
        try:
            self._path(client_id).unlink()
        except FileNotFoundError:
            return
        except OSError as e:
            raise IOFailureError(f"Failed to delete state for {client_id}: {e}", {"client_id": client_id}) from e
        logger.info("Deleted state for %s", client_id, extra={"client_id": client_id})

    def list_all(self) -> List[str]:
        """Ids of every stored record, sorted. Missing directory -> []."""
        if not self.state_dir.is_dir():
            return []
        return sorted(
            p.name[: -len(STATE_SUFFIX)]
            for p in self.state_dir.iterdir()
            if p.is_file() and p.name.endswith(STATE_SUFFIX)
        )
