"""Tests for the onboarding-engine command line."""

import json
import logging
import shutil
from pathlib import Path

import pytest
from onboarding.cli import main
from onboarding.state.store import StateStore

REPO_DATA = Path(__file__).resolve().parent.parent / "data"


@pytest.fixture(autouse=True)
def isolated(monkeypatch, tmp_path):
    for name in ("ONBOARDING_DATA_DIR", "ONBOARDING_STATE_DIR", "ONBOARDING_TASKS_DIR",
                 "ONBOARDING_WORKFLOWS_DIR", "ONBOARDING_CACHE_ENABLED", "ONBOARDING_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def data_dir(tmp_path):
    target = tmp_path / "data"
    shutil.copytree(REPO_DATA / "tasks", target / "tasks")
    shutil.copytree(REPO_DATA / "workflows", target / "workflows")
    return target


def test_validate_bundled_definitions(data_dir, capsys):
    assert main(["--data-dir", str(data_dir), "validate"]) == 0

    out = capsys.readouterr().out
    assert "OK   corporate_onboarding_v1" in out
    assert "OK   individual_onboarding_v1" in out


def test_validate_reports_broken_workflow(data_dir, capsys):
    (data_dir / "workflows" / "zz_broken.yaml").write_text(
        "id: broken\nname: Broken\nsteps:\n  - { id: A, task_ref: review/summary, next: { default: nowhere } }\n"
    )

    assert main(["--data-dir", str(data_dir), "validate"]) == 1
    assert "FAIL broken" in capsys.readouterr().out


def test_validate_without_definitions(tmp_path, capsys):
    assert main(["--data-dir", str(tmp_path / "empty"), "validate"]) == 1
    assert "No workflow definitions" in capsys.readouterr().out


def test_select_prints_machine(data_dir, capsys):
    code = main(["--data-dir", str(data_dir), "select", "--client-type", "individual", "--jurisdiction", "US"])

    assert code == 0
    machine = json.loads(capsys.readouterr().out)
    assert machine["workflowId"] == "individual_onboarding_v1"
    assert machine["initialStepId"] == "collectContactInfo"


def test_select_with_malformed_definition_reports_error(data_dir, capsys):
    (data_dir / "workflows" / "aa_bad.yaml").write_text("id: bad\nsteps: [\n")

    assert main(["--data-dir", str(data_dir), "select", "--client-type", "corporate"]) == 1
    payload = json.loads(capsys.readouterr().out)
    assert payload["error"]["code"] == "SCHEMA_INVALID"


def test_state_commands(tmp_path, capsys):
    store = StateStore(tmp_path / "data" / "client_state")
    store.initialize("acme", "corporate_onboarding_v1", "collectContactInfo")
    store.initialize("bolt", "individual_onboarding_v1", "collectContactInfo")
    args = ["--data-dir", str(tmp_path / "data"), "state"]

    assert main(args + ["list"]) == 0
    assert capsys.readouterr().out.split() == ["acme", "bolt"]

    assert main(args + ["show", "acme"]) == 0
    assert json.loads(capsys.readouterr().out)["workflowId"] == "corporate_onboarding_v1"

    assert main(args + ["delete", "acme"]) == 0
    assert store.list_all() == ["bolt"]

    assert main(args + ["show", "acme"]) == 1
    assert "No state for acme" in capsys.readouterr().out


def test_state_rejects_path_like_ids(tmp_path, capsys):
    assert main(["--data-dir", str(tmp_path), "state", "show", "../etc"]) == 1
    assert json.loads(capsys.readouterr().out)["error"]["code"] == "STATE_INVALID"


def test_state_seed(data_dir, capsys):
    profiles = data_dir / "clients.yaml"
    profiles.write_text(
        "clients:\n"
        "  - { id: acme, client_type: corporate, jurisdiction: US }\n"
        "  - { id: jane, client_type: individual, jurisdiction: US }\n"
    )
    args = ["--data-dir", str(data_dir), "state", "seed", str(profiles)]

    assert main(args) == 0
    assert "SEEDED  acme" in capsys.readouterr().out
    assert main(args) == 0
    assert "SKIPPED jane (already exists)" in capsys.readouterr().out

    store = StateStore(data_dir / "client_state")
    assert store.list_all() == ["acme", "jane"]
    assert store.load("jane").workflow_id == "individual_onboarding_v1"


def test_state_seed_bundled_profiles(data_dir, capsys):
    assert main(["--data-dir", str(data_dir), "state", "seed", str(REPO_DATA / "seed" / "clients.yaml")]) == 0
    assert StateStore(data_dir / "client_state").list_all() == ["acme-holdings", "jane-roe", "maple-leaf-trading"]


def test_state_seed_reports_failures(data_dir, capsys):
    profiles = data_dir / "clients.json"
    profiles.write_text(json.dumps([{"id": "ok", "client_type": "corporate"}, {"id": "no-type"}]))

    assert main(["--data-dir", str(data_dir), "state", "seed", str(profiles)]) == 1
    assert "FAILED  no-type" in capsys.readouterr().out


def test_state_seed_unreadable_file(tmp_path, capsys):
    assert main(["--data-dir", str(tmp_path), "state", "seed", str(tmp_path / "missing.yaml")]) == 1
    assert "Could not read" in capsys.readouterr().out
