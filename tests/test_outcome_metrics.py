import os
import sys
from datetime import datetime, timedelta, timezone

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from models.conversation import Conversation
from models.project import Project
from models.supplier import Supplier
from services.outcome_metrics import (
    compute_project_outcome_metrics,
    compute_sourcing_metrics,
    median,
)
from services.should_cost import fallback_should_cost

CREATED = datetime(2024, 1, 1, tzinfo=timezone.utc)


def test_sparse_project_reports_nulls():
    project = Project(name="Empty", created_at=CREATED)
    metrics = compute_project_outcome_metrics(project, now=CREATED + timedelta(hours=6))

    assert metrics["lead_time"]["project_age_hours"] == 6
    assert metrics["lead_time"]["time_to_first_supplier_hours"] is None
    assert metrics["lead_time"]["time_to_award_hours"] is None
    assert metrics["funnel"]["suppliers_identified"] == 0
    assert metrics["funnel"]["award_recommended"] is False
    assert metrics["economics"]["quoted_unit_cost_median"] is None
    assert metrics["economics"]["savings_vs_should_cost_usd"] is None
    assert metrics["status"]["has_should_cost"] is False


def test_median_handles_even_counts_and_gaps():
    assert median([3, None, 1, 2]) == 2
    assert median([1, 2, 3, 4]) == 2.5
    assert median([float("inf")]) is None


def test_funnel_and_savings():
    project = Project(name="Mug", created_at=CREATED)
    project.constraints.budget_range = "$8-$10"
    project.suppliers = [
        Supplier(id="a", status="responded", pricing={"unit_price": 8.0}, moq=500, lead_time_days=20,
                 selected=True, created_at=CREATED + timedelta(hours=1)),
        Supplier(id="b", status="contacted", pricing={"unit_price": 12.0}),
    ]
    project.conversations = [
        Conversation(supplier_id="a", direction="inbound", message="quote",
                     created_at=CREATED + timedelta(hours=10)),
        Conversation(supplier_id="a", direction="outbound", message="rfq",
                     metadata={"source": "outreach"}, created_at=CREATED + timedelta(hours=2)),
        Conversation(supplier_id="b", direction="outbound", message="nudge",
                     metadata={"source": "followup"}, created_at=CREATED + timedelta(hours=30)),
    ]
    project.outcome_engine.should_cost = fallback_should_cost(project)
    landed = project.outcome_engine.should_cost.cost_breakdown.landed_unit_cost_usd

    metrics = compute_project_outcome_metrics(project, now=CREATED + timedelta(hours=48))

    assert metrics["lead_time"]["time_to_first_supplier_hours"] == 1
    assert metrics["lead_time"]["time_to_first_outreach_hours"] == 2
    assert metrics["lead_time"]["time_to_first_quote_hours"] == 10
    assert metrics["funnel"]["suppliers_contacted"] == 2
    assert metrics["funnel"]["suppliers_responded"] == 1
    assert metrics["funnel"]["quotes_comparable"] == 1
    assert metrics["funnel"]["follow_ups_sent"] == 1
    assert metrics["economics"]["quoted_unit_cost_median"] == 10
    assert metrics["economics"]["expected_landed_unit_cost_usd"] == 8.0
    assert metrics["economics"]["target_unit_cost_usd"] == 8
    assert metrics["economics"]["savings_vs_should_cost_usd"] == round(landed - 8.0, 2)


def test_sourcing_metrics_on_empty_and_populated_state():
    project = Project(name="Spice")
    empty = compute_sourcing_metrics(project)
    assert empty["funnel"]["suppliers_identified"] == 0
    assert empty["economics"]["min_unit_price_inr_per_kg"] is None

    project.sourcing.suppliers = [
        Supplier(id="a", status="negotiating", price_inr_per_kg=120, moq_kg=200, lead_time_days=7),
        Supplier(id="b", status="contacted", price_inr_per_kg=100),
    ]
    project.sourcing.conversations = [
        Conversation(supplier_id="a", direction="outbound", channel="whatsapp", message="x",
                     metadata={"source": "sourcing_negotiation"}),
        Conversation(supplier_id="a", direction="inbound", message="y"),
    ]
    metrics = compute_sourcing_metrics(project)

    assert metrics["funnel"]["suppliers_contacted"] == 2
    assert metrics["funnel"]["suppliers_responded"] == 1
    assert metrics["funnel"]["negotiations_sent"] == 1
    assert metrics["economics"]["min_unit_price_inr_per_kg"] == 100
    assert metrics["economics"]["median_unit_price_inr_per_kg"] == 110
    assert metrics["communications"]["whatsapp_outbound"] == 1
    assert metrics["communications"]["inbound_count"] == 1
