"""Run the autopilot on a sample project and print what happened."""
from __future__ import annotations

import logging
import os
import sys
from pprint import pprint

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from orchestration import build_workflow
from utils.logging_setup import configure_logging

configure_logging()
logger = logging.getLogger(__name__)

SAMPLE_SUPPLIERS = [
    {"name": "Ningbo Hometech", "country": "China", "email": "sales@ningbo-hometech.example"},
    {"name": "Saigon Steelware", "country": "Vietnam", "email": "rfq@saigon-steelware.example"},
    {"name": "Monterrey Metalworks", "country": "Mexico", "email": "export@mty-metal.example"},
]


def _print_section(title: str) -> None:
    print(f"\n=== {title} ===")


def run_demo() -> None:
    workflow = build_workflow()
    project = workflow.create_project(
        "Double-wall insulated steel bottle with a leak-proof lid",
        constraints={"budget_range": "$6-$9", "moq_tolerance": "500 units"},
    )
    logger.info("Created demo project %s", project.id)
    workflow.add_suppliers(project.id, SAMPLE_SUPPLIERS)

    result = workflow.run_autopilot(project.id)
    _print_section("Autopilot Summary")
    pprint(result.summary)

    award = workflow.run_award_gate(project.id)
    _print_section("Award Ranking")
    for entry in award.decision.ranking:
        print(f"{entry.supplier_name:<24} {entry.total_score:6.2f}")

    project = workflow.generate_outcome_plan(project.id)
    _print_section("Structured RFQ")
    print(project.outcome_engine.structured_rfq.rfq_id)

    _print_section("KPI Snapshot")
    pprint(workflow.refresh_metrics(project.id))


if __name__ == "__main__":
    run_demo()
