"""KPI snapshots for the manufacturing and ingredient-sourcing lifecycles.

Every metric without enough signal is reported as ``None``; sparse projects
never raise.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

import numpy as np

from models.checklist import utc_now
from models.conversation import Conversation
from models.project import Project
from utils.number_extraction import first_number

CONTACTED_STATUSES = frozenset({"contacted", "responded", "finalized"})
SOURCING_RESPONDED_STATUSES = frozenset({"responded", "negotiating", "shortlisted"})
SOURCING_CONTACTED_STATUSES = SOURCING_RESPONDED_STATUSES | {"contacted"}


def _clean(values: Iterable[Any]) -> List[float]:
    cleaned = []
    for value in values:
        if value is None or isinstance(value, bool):
            continue
        numeric = float(value)
        if np.isfinite(numeric):
            cleaned.append(numeric)
    return cleaned


def minimum(values: Iterable[Any]) -> Optional[float]:
    cleaned = _clean(values)
    return min(cleaned) if cleaned else None


def maximum(values: Iterable[Any]) -> Optional[float]:
    cleaned = _clean(values)
    return max(cleaned) if cleaned else None


def median(values: Iterable[Any]) -> Optional[float]:
    """Middle value; for even counts the mean of the two middles to 2dp."""

    cleaned = sorted(_clean(values))
    if not cleaned:
        return None
    if len(cleaned) % 2 == 1:
        return cleaned[len(cleaned) // 2]
    return round(float(np.median(cleaned)), 2)


def hours_between(start: Optional[datetime], end: Optional[datetime]) -> Optional[float]:
    if start is None or end is None:
        return None
    return round((end - start).total_seconds() / 3600, 2)


def _first_conversation_at(
    conversations: Iterable[Conversation], predicate: Callable[[Conversation], bool]
) -> Optional[datetime]:
    matches = [entry.created_at for entry in conversations if predicate(entry)]
    return min(matches) if matches else None


def _should_cost_landed(project: Project) -> Optional[float]:
    should_cost = project.outcome_engine.should_cost
    if should_cost is None:
        return None
    return should_cost.cost_breakdown.landed_unit_cost_usd


def _expected_landed(project: Project) -> Optional[float]:
    award = project.outcome_engine.award_decision
    if award is not None and award.recommended.landed_unit_cost_usd is not None:
        return award.recommended.landed_unit_cost_usd

    if award is not None:
        recommended = project.find_supplier(award.recommended_supplier_id)
        if recommended is not None and recommended.unit_price is not None:
            return recommended.unit_price

    selected = next((entry for entry in project.suppliers if entry.selected), None)
    if selected is not None and selected.unit_price is not None:
        return selected.unit_price

    return _should_cost_landed(project)


def compute_project_outcome_metrics(project: Project, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or utc_now()
    created_at = project.created_at
    suppliers = project.suppliers
    conversations = project.conversations
    quotes = [supplier.unit_price for supplier in suppliers]
    award = project.outcome_engine.award_decision

    first_supplier_at = min((supplier.created_at for supplier in suppliers), default=None)
    first_outreach_at = _first_conversation_at(
        conversations, lambda entry: entry.direction == "outbound" and entry.channel == "email"
    )
    first_reply_at = _first_conversation_at(
        conversations, lambda entry: entry.direction == "inbound" and entry.channel == "email"
    )
    follow_ups_sent = sum(
        1 for entry in conversations if entry.direction == "outbound" and entry.source == "followup"
    )

    expected_landed = _expected_landed(project)
    should_cost_landed = _should_cost_landed(project)
    savings = None
    if expected_landed is not None and should_cost_landed is not None:
        savings = round(should_cost_landed - expected_landed, 2)

    return {
        "generated_at": now.isoformat(),
        "lead_time": {
            "project_age_hours": hours_between(created_at, now),
            "time_to_first_supplier_hours": hours_between(created_at, first_supplier_at),
            "time_to_first_outreach_hours": hours_between(created_at, first_outreach_at),
            "time_to_first_quote_hours": hours_between(created_at, first_reply_at),
            "time_to_award_hours": hours_between(created_at, award.generated_at if award else None),
        },
        "funnel": {
            "suppliers_identified": len(suppliers),
            "suppliers_contacted": sum(1 for s in suppliers if s.status in CONTACTED_STATUSES),
            "suppliers_responded": sum(1 for s in suppliers if s.status == "responded"),
            "quotes_comparable": sum(
                1
                for s in suppliers
                if s.unit_price is not None and s.moq is not None and s.lead_time_days is not None
            ),
            "follow_ups_sent": follow_ups_sent,
            "award_recommended": bool(award and award.recommended_supplier_id),
        },
        "economics": {
            "quoted_unit_cost_min": minimum(quotes),
            "quoted_unit_cost_median": median(quotes),
            "quoted_unit_cost_max": maximum(quotes),
            "expected_landed_unit_cost_usd": expected_landed,
            "should_cost_landed_unit_usd": should_cost_landed,
            "target_unit_cost_usd": first_number(project.constraints.budget_range),
            "target_moq": first_number(project.constraints.moq_tolerance),
            "savings_vs_should_cost_usd": savings,
        },
        "status": {
            "has_should_cost": project.outcome_engine.should_cost is not None,
            "has_variants": bool(project.outcome_engine.variants),
            "has_structured_rfq": project.outcome_engine.structured_rfq is not None,
            "has_award_decision": award is not None,
        },
    }


def compute_sourcing_metrics(project: Project, now: Optional[datetime] = None) -> Dict[str, Any]:
    sourcing = project.sourcing
    suppliers = sourcing.suppliers
    outbound = [entry for entry in sourcing.conversations if entry.direction == "outbound"]
    inbound = [entry for entry in sourcing.conversations if entry.direction == "inbound"]

    return {
        "generated_at": (now or utc_now()).isoformat(),
        "module_status": dict(sourcing.module_status),
        "funnel": {
            "suppliers_identified": len(suppliers),
            "suppliers_contacted": sum(1 for s in suppliers if s.status in SOURCING_CONTACTED_STATUSES),
            "suppliers_responded": sum(1 for s in suppliers if s.status in SOURCING_RESPONDED_STATUSES),
            "negotiations_sent": sum(1 for entry in outbound if entry.source == "sourcing_negotiation"),
        },
        "economics": {
            "min_unit_price_inr_per_kg": minimum(s.price_inr_per_kg for s in suppliers),
            "median_unit_price_inr_per_kg": median(s.price_inr_per_kg for s in suppliers),
            "best_moq_kg": minimum(s.moq_kg for s in suppliers),
            "best_lead_time_days": minimum(s.lead_time_days for s in suppliers),
        },
        "communications": {
            "outbound_count": len(outbound),
            "inbound_count": len(inbound),
            "whatsapp_outbound": sum(1 for entry in outbound if entry.channel == "whatsapp"),
            "email_outbound": sum(1 for entry in outbound if entry.channel == "email"),
        },
    }
