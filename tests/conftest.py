"""Shared fixtures: definition directories written into tmp_path."""

import textwrap
from pathlib import Path

import pytest

from onboarding.state.store import StateStore
from onboarding.workflow.loader import DefinitionLoader

REPO_DATA = Path(__file__).resolve().parent.parent / "data"


class DefinitionDirs:
    def __init__(self, root: Path):
        self.root = root
        self.tasks_dir = root / "tasks"
        self.workflows_dir = root / "workflows"
        self.tasks_dir.mkdir(parents=True)
        self.workflows_dir.mkdir(parents=True)

    def task(self, ref: str, text: str) -> Path:
        path = self.tasks_dir / f"{ref}.yaml"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(textwrap.dedent(text))
        return path

    def workflow(self, filename: str, text: str) -> Path:
        path = self.workflows_dir / filename
        path.write_text(textwrap.dedent(text))
        return path

    def loader(self, cache=None) -> DefinitionLoader:
        return DefinitionLoader(self.tasks_dir, self.workflows_dir, cache=cache)


@pytest.fixture
def defs(tmp_path: Path) -> DefinitionDirs:
    return DefinitionDirs(tmp_path / "defs")


@pytest.fixture
def store(tmp_path: Path) -> StateStore:
    return StateStore(tmp_path / "client_state")


@pytest.fixture
def repo_loader() -> DefinitionLoader:
    """Loader over the sample definitions shipped in data/."""
    return DefinitionLoader(REPO_DATA / "tasks", REPO_DATA / "workflows")


@pytest.fixture
def onboarding_defs(defs: DefinitionDirs) -> DefinitionDirs:
    """A small corporate workflow with a risk branch and a stage without steps."""
    defs.task("contact", """
        id: contact
        name: Contact
        component_id: form
        required_fields: [legal_name, email]
        schema:
          fields:
            - { name: legal_name, label: Legal name, type: text, required: true }
            - { name: email, label: Email, type: email, required: true }
        """)
    defs.task("risk", """
        id: risk
        name: Risk
        component_id: form
        required_fields: [risk]
        schema:
          fields:
            - { name: risk, label: Risk, type: number, required: true }
        """)
    defs.task("edd", """
        id: edd
        name: Enhanced due diligence
        component_id: form
        required_fields: []
        schema:
          fields: []
        """)
    defs.task("review", """
        id: review
        name: Review
        component_id: review-summary
        """)
    defs.workflow("corporate.yaml", """
        id: corporate_v1
        name: Corporate onboarding
        version: 2
        applies_to:
          client_type: corporate
          jurisdictions: [US]
        stages:
          - { id: info, name: Information }
          - { id: compliance, name: Compliance }
          - { id: archive, name: Archive }
        steps:
          - id: A
            stage: info
            task_ref: contact
            next:
              default: R
          - id: R
            stage: compliance
            task_ref: risk
            next:
              conditions:
                - { when: "input.risk > 70", then: B }
              default: C
          - id: B
            stage: compliance
            task_ref: edd
            next:
              default: C
          - id: C
            stage: info
            task_ref: review
            next:
              default: END
        """)
    return defs
