"""Command line tools for checking definitions and inspecting or seeding stored state."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any, Sequence

import yaml

from onboarding.config import EngineSettings
from onboarding.logging import configure_logging
from onboarding.service import OnboardingService
from onboarding.workflow.compiler import compile_workflow
from onboarding.workflow.errors import WorkflowError
from onboarding.workflow.loader import select_applicable
from onboarding.workflow.schema import EntityProfile

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="onboarding-engine",
        description="Compile onboarding workflow definitions and inspect entity state",
    )
    parser.add_argument("--data-dir", default=None, help="Definition root (overrides ONBOARDING_DATA_DIR)")
    parser.add_argument("--log-level", default=None, help="Log level (overrides ONBOARDING_LOG_LEVEL)")

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("validate", help="Compile every workflow definition and report errors")

    select = subparsers.add_parser("select", help="Print the compiled workflow chosen for a profile")
    select.add_argument("--client-type", required=True)
    select.add_argument("--jurisdiction", default=None)

    state = subparsers.add_parser("state", help="Inspect stored entity state")
    state_sub = state.add_subparsers(dest="state_command", required=True)
    state_sub.add_parser("list", help="List entity ids with stored state")
    show = state_sub.add_parser("show", help="Print one entity's record")
    show.add_argument("client_id")
    delete = state_sub.add_parser("delete", help="Delete one entity's record")
    delete.add_argument("client_id")
    seed = state_sub.add_parser("seed", help="Create records for profiles that have none")
    seed.add_argument("profiles_file")

    return parser


def _print(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=str))


def _validate(settings: EngineSettings) -> int:
    loader = settings.build_loader()
    workflows = loader.load_all()
    if not workflows:
        print(f"No workflow definitions in {loader.workflows_dir}")
        return 1

    failures = 0
    for workflow in workflows:
        try:
            machine = compile_workflow(workflow, loader)
        except WorkflowError as e:
            failures += 1
            print(f"FAIL {workflow.id}: {e.message}")
            continue
        print(f"OK   {machine.workflow_id} v{machine.version} ({len(machine.steps)} steps)")
    return 1 if failures else 0


def _select(settings: EngineSettings, args: argparse.Namespace) -> int:
    loader = settings.build_loader()
    workflow = select_applicable(
        loader.load_all(), EntityProfile(client_type=args.client_type, jurisdiction=args.jurisdiction)
    )
    if workflow is None:
        print(f"No workflow definitions in {loader.workflows_dir}")
        return 1
    _print(compile_workflow(workflow, loader).to_dict())
    return 0


def _state(settings: EngineSettings, args: argparse.Namespace) -> int:
    store = settings.build_store()
    if args.state_command == "list":
        for client_id in store.list_all():
            print(client_id)
        return 0
    if args.state_command == "show":
        state = store.load(args.client_id)
        if state is None:
            print(f"No state for {args.client_id}")
            return 1
        print(state.to_json())
        return 0
    if args.state_command == "seed":
        return _seed(settings, args.profiles_file)
    store.delete(args.client_id)
    return 0


def _seed(settings: EngineSettings, profiles_file: str) -> int:
    try:
        with open(profiles_file, "r", encoding="utf-8") as fh:
            raw = yaml.safe_load(fh)
    except (OSError, yaml.YAMLError) as e:
        print(f"Could not read {profiles_file}: {e}")
        return 1
    profiles = raw.get("clients") if isinstance(raw, dict) else raw
    if not isinstance(profiles, list):
        print(f"{profiles_file} must hold a list of profiles or a `clients:` list")
        return 1

    report = OnboardingService(settings.build_store(), settings.build_loader()).seed(profiles)
    for client_id in report.seeded:
        print(f"SEEDED  {client_id}")
    for client_id in report.skipped:
        print(f"SKIPPED {client_id} (already exists)")
    for client_id, reason in report.failed.items():
        print(f"FAILED  {client_id}: {reason}")
    return 1 if report.failed else 0


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    overrides: dict[str, Any] = {}
    if args.data_dir:
        overrides["data_dir"] = args.data_dir
    if args.log_level:
        overrides["log_level"] = args.log_level
    settings = EngineSettings(**overrides)
    configure_logging(settings.log_level)

    try:
        if args.command == "validate":
            return _validate(settings)
        if args.command == "select":
            return _select(settings, args)
        return _state(settings, args)
    except WorkflowError as e:
        logger.error("Command failed: %s", e.message)
        _print(e.to_dict())
        return 1


if __name__ == "__main__":
    sys.exit(main())
