"""
Loader for task and workflow definitions.

Loading happens in two stages:
  1. workflow definitions (orchestration: steps, stages, transitions)
  2. task definitions referenced by steps, resolved against their `extends` chain

Parsed definitions can be kept in an explicitly constructed DefinitionCache with a
time-based expiry and optional source-mtime invalidation.
"""
import logging
import time
from collections import OrderedDict
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import yaml

from .errors import CircularInheritanceError, IOFailureError, NotFoundError, SchemaInvalidError
from .schema import (
    EntityProfile,
    TaskDefinition,
    TaskSchema,
    WorkflowDefinition,
    validate_task,
    validate_workflow,
)

logger = logging.getLogger(__name__)

_YAML_SUFFIXES = (".yaml", ".yml")


class DefinitionCache:
    """
    Cache of parsed definitions keyed by source path.

    Entries expire `ttl_seconds` after being stored (None disables expiry). With
    `invalidate_on_mtime`, an entry is also dropped once its source file is
    modified or removed. A disabled cache never returns a hit. There is no
    stampede protection: concurrent misses each read the file.
    """

    def __init__(self, ttl_seconds: Optional[float] = 300.0, invalidate_on_mtime: bool = True,
                 enabled: bool = True, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self.invalidate_on_mtime = invalidate_on_mtime
        self.enabled = enabled
        self._clock = clock
        self._entries: Dict[Path, Tuple[Any, float, Optional[float]]] = {}

    def get(self, path: Path) -> Optional[Any]:
        if not self.enabled:
            return None
        entry = self._entries.get(path)
        if entry is None:
            return None
        value, stored_at, mtime = entry
        if self.ttl_seconds is not None and self._clock() - stored_at >= self.ttl_seconds:
            del self._entries[path]
            return None
        if self.invalidate_on_mtime and self._source_changed(path, mtime):
            del self._entries[path]
            return None
        return value

    def put(self, path: Path, value: Any) -> None:
        if not self.enabled:
            return
        try:
            mtime: Optional[float] = path.stat().st_mtime
        except OSError:
            mtime = None
        self._entries[path] = (value, self._clock(), mtime)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    @staticmethod
    def _source_changed(path: Path, cached_mtime: Optional[float]) -> bool:
        try:
            return path.stat().st_mtime > (cached_mtime or 0)
        except OSError:
            return True


def _read_yaml(path: Path) -> Any:
    try:
        with open(path, "r", encoding="utf-8") as fh:
            return yaml.safe_load(fh)
    except FileNotFoundError as e:
        raise NotFoundError(f"File not found: {path}", {"path": str(path)}) from e
    except yaml.YAMLError as e:
        mark = getattr(e, "problem_mark", None)
        line = mark.line + 1 if mark is not None else "unknown"
        raise SchemaInvalidError(
            f"YAML parsing failed in {path.name}:{line}: {e}", {"path": str(path), "line": line}
        ) from e
    except OSError as e:
        raise IOFailureError(f"Could not read {path}: {e}", {"path": str(path)}) from e


def merge_fields(parent_fields: Sequence[Dict[str, Any]], child_fields: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Merge field attribute dicts by name.

    Parent fields come first. A child field with the same name replaces the
    parent's in place. A child field with `inherits: <name>` starts from a copy
    of that parent field and layers its own attributes on top; when the named
    parent field does not exist the child field is used as declared.
    """
    merged: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
    for attrs in parent_fields:
        merged[attrs["name"]] = {k: v for k, v in attrs.items() if k != "inherits"}

    for attrs in child_fields:
        own = {k: v for k, v in attrs.items() if k != "inherits"}
        base_name = attrs.get("inherits")
        if base_name and base_name in merged:
            merged[own["name"]] = {**merged[base_name], **own}
        else:
            merged[own["name"]] = own
    return list(merged.values())


def merge_schemas(parent: TaskSchema, child: TaskSchema) -> TaskSchema:
    """Child schema keys override the parent's; `fields` are merged by name."""
    fields = merge_fields(
        [f.declared() for f in parent.fields],
        [f.declared() for f in child.fields],
    )
    extras = {**(parent.model_extra or {}), **(child.model_extra or {})}
    return TaskSchema.model_validate({**extras, "fields": fields})


class DefinitionLoader:
    """Reads task and workflow definitions from their directories."""

    def __init__(self, tasks_dir: Path, workflows_dir: Path, cache: Optional[DefinitionCache] = None):
        self.tasks_dir = Path(tasks_dir)
        self.workflows_dir = Path(workflows_dir)
        self.cache = cache if cache is not None else DefinitionCache(enabled=False)

    def task_path(self, task_ref: str) -> Path:
        name = task_ref if task_ref.endswith(_YAML_SUFFIXES) else f"{task_ref}.yaml"
        return self.tasks_dir / name

    def load_task(self, task_ref: str) -> TaskDefinition:
        """
        Load a task definition.

        `task_ref` is relative to the tasks directory, e.g. "contact_info/corporate".
        """
        path = self.task_path(task_ref)
        cached = self.cache.get(path)
        if cached is not None:
            return cached

        task = validate_task(_read_yaml(path), task_ref)
        self.cache.put(path, task)
        logger.debug("Loaded task %s from %s", task.id, path)
        return task

    def resolve_inheritance(self, task: TaskDefinition, visited: Sequence[str] = ()) -> TaskDefinition:
        """
        Merge a task with its ancestor chain.

        Returns `task` itself when it has no parent. Raises CircularInheritanceError
        with the full chain (e.g. [A, B, A]) when a task is reached twice.
        """
        if not task.extends:
            return task

        chain = list(visited)
        if task.id in chain:
            raise CircularInheritanceError(chain + [task.id])
        chain.append(task.id)

        parent = self.resolve_inheritance(self.load_task(task.extends), chain)

        return task.model_copy(update={
            "field_schema": merge_schemas(parent.field_schema, task.field_schema),
            "expected_output_fields": list(parent.expected_output_fields) + list(task.expected_output_fields),
        })

    def load_resolved_task(self, task_ref: str) -> TaskDefinition:
        return self.resolve_inheritance(self.load_task(task_ref))

    def load_workflow(self, workflow_path: str) -> WorkflowDefinition:
        """Load a workflow definition relative to the workflows directory."""
        path = self.workflows_dir / workflow_path
        cached = self.cache.get(path)
        if cached is not None:
            return cached

        workflow = validate_workflow(_read_yaml(path), workflow_path)
        self.cache.put(path, workflow)
        logger.debug("Loaded workflow %s v%s from %s", workflow.id, workflow.version, path)
        return workflow

    def load_all(self) -> List[WorkflowDefinition]:
        """Every workflow definition in the directory, by filename. Missing directory -> []."""
        if not self.workflows_dir.is_dir():
            logger.info("Workflow directory %s does not exist", self.workflows_dir)
            return []
        names = sorted(p.name for p in self.workflows_dir.iterdir()
                       if p.is_file() and p.suffix in _YAML_SUFFIXES)
        return [self.load_workflow(name) for name in names]


def select_applicable(workflows: Sequence[WorkflowDefinition],
                      profile: EntityProfile) -> Optional[WorkflowDefinition]:
    """
    Pick the workflow for an entity profile.

    Tiers, in order: client type and jurisdiction match; client type match;
    first workflow in the list. None only when the list is empty.
    """
    for wf in workflows:
        applies = wf.applies_to
        if applies and applies.client_type == profile.client_type and profile.jurisdiction in applies.jurisdictions:
            logger.debug("Selected workflow %s (exact match)", wf.id)
            return wf

    for wf in workflows:
        if wf.applies_to and wf.applies_to.client_type == profile.client_type:
            logger.debug("Selected workflow %s (client type match)", wf.id)
            return wf

    if workflows:
        logger.warning(
            "No workflow applies to client_type=%s jurisdiction=%s; falling back to %s",
            profile.client_type, profile.jurisdiction, workflows[0].id,
        )
        return workflows[0]
    return None
