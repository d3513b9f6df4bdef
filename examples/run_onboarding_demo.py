"""Example: drive one corporate client through the bundled onboarding workflow.

Takes the high-risk branch (risk_score > 70), so enhanced due diligence is
included, then approves the uploaded document and prints the final status.
State is written to a temporary directory and removed afterwards.
"""
import json
import tempfile
from pathlib import Path

from onboarding.config import EngineSettings
from onboarding.logging import configure_logging
from onboarding.service import OnboardingService
from onboarding.workflow.executor import get_step, validate_inputs
from onboarding.workflow.schema import EntityProfile

DATA_DIR = Path(__file__).resolve().parent.parent / "data"

STEP_INPUTS = {
    "collectContactInfo": {
        "legal_name": "Acme Holdings Inc.",
        "email": "ops@acme.example",
        "entity_type": "corporation",
        "compliance_email": "compliance@acme.example",
    },
    "assessRisk": {"risk_score": 82, "risk_notes": "Cross-border payments"},
    "enhancedDueDiligence": {
        "source_of_funds": "Retained earnings from software licensing",
        "beneficial_owners": ["J. Doe", "R. Roe"],
    },
    "uploadDocuments": {
        "documents": [{
            "type": "articles_of_incorporation",
            "filename": "articles.pdf",
            "filepath": "uploads/acme/articles.pdf",
            "uploaded_at": "2026-01-05T10:00:00+00:00",
            "file_size": 48213,
            "mime_type": "application/pdf",
        }],
    },
    "review": {},
}


def main():
    with tempfile.TemporaryDirectory() as state_dir:
        settings = EngineSettings(data_dir=DATA_DIR, state_dir=Path(state_dir), log_level="WARNING")
        configure_logging(settings.log_level)
        service = OnboardingService(settings.build_store(), settings.build_loader())

        profile = EntityProfile(client_type="corporate", jurisdiction="US")
        machine = service.machine_for(profile)
        print(f"Selected workflow: {machine.workflow_id} v{machine.version}")

        state = service.start("acme", machine, data=profile.model_dump())
        while state.current_step_id != "END":
            step = get_step(machine, state.current_step_id)
            inputs = STEP_INPUTS[step.id]

            check = validate_inputs(step, inputs)
            if not check.valid:
                print(f"  {step.id}: validation errors {check.errors}")
                return

            result = service.advance("acme", machine, inputs)
            print(f"  {step.id} [{step.stage}] -> {result.next_step_id} ({result.reason})")
            state = service.start("acme", machine)

        service.review_document("acme", "articles_of_incorporation", "approved", approver_id="reviewer-1")

        print("\n--- STATUS ---")
        print(json.dumps(service.status("acme", machine), indent=2))


if __name__ == "__main__":
    main()
