"""Weighted multi-criteria award decision over a project's suppliers.

Scores are computed column-wise on a DataFrame. Cost is min-max normalised
within the batch, so totals are only comparable inside one run. Ranking uses
a stable sort: suppliers with equal totals keep their input order. Callers
should treat that tie order as incidental rather than a business rule.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, List, Mapping, Optional

import numpy as np
import pandas as pd

from config.settings import DEFAULT_AWARD_WEIGHTS
from models.outcome import AwardDecision, AwardRankingEntry, SamplePurchaseOrder, ScoreBreakdown
from models.project import Project
from models.supplier import Supplier
from services.errors import NoSuppliersAvailableError
from utils.number_extraction import first_number, round_half_up, strict_number

logger = logging.getLogger(__name__)

DEFAULT_TARGET_MOQ = 500.0
DEFAULT_SHOULD_COST_LANDED = 12.0
DEFAULT_LEAD_TIME_DAYS = 45.0

OBJECTIVE = "Minimize landed cost + delay while keeping supplier execution risk bounded."
RATIONALE = [
    "Award gate ranks suppliers with weighted landed cost, lead-time, MOQ, confidence, and risk.",
    "Ranking is deterministic and reproducible for audit.",
    "Sample PO packet is generated to reduce idea-to-order delay.",
]
SAMPLE_PO_DOCS = [
    "Proforma invoice",
    "BOM revision list",
    "QC test report format",
    "Packaging spec confirmation",
]
SAMPLE_PO_ACCEPTANCE = [
    "Functional pass rate >= 98% on agreed test plan",
    "Critical dimensions within tolerance",
    "No unresolved cosmetic defects on A-surface",
]
SAMPLE_PO_NEXT_ACTIONS = [
    "Confirm quote validity and lead time in writing",
    "Approve sample build start date",
    "Lock communication channel and owner on supplier side",
]


def parse_target_moq(project: Project) -> float:
    value = first_number(project.constraints.moq_tolerance)
    return value if value is not None else DEFAULT_TARGET_MOQ


def should_cost_landed(project: Project) -> float:
    should_cost = project.outcome_engine.should_cost
    if should_cost is not None:
        landed = strict_number(should_cost.cost_breakdown.landed_unit_cost_usd)
        if landed is not None:
            return landed
    return DEFAULT_SHOULD_COST_LANDED


def import_multiplier(supplier: Supplier, project_country: str) -> float:
    supplier_country = (supplier.country or "").strip().lower()
    target = (project_country or "").strip().lower()
    if supplier_country and target and supplier_country == target:
        return 1.08
    distance = (supplier.distance_complexity or "").strip().lower()
    if distance == "low":
        return 1.10
    if distance == "medium":
        return 1.16
    return 1.24


def risk_score_from_flags(flags: Optional[List[str]]) -> float:
    count = len(flags or [])
    return float(np.clip(1 - count * 0.12, 0.15, 1.0))


def resolve_weights(overrides: Optional[Mapping[str, Any]] = None, base: Optional[Mapping[str, float]] = None) -> Dict[str, float]:
    """Merge caller weights onto ``base``; non-numeric overrides are ignored."""

    weights = dict(DEFAULT_AWARD_WEIGHTS)
    weights.update(base or {})
    for name, raw in (overrides or {}).items():
        numeric = strict_number(raw)
        if name in weights and numeric is not None:
            weights[name] = numeric
    return weights


def _supplier_frame(project: Project) -> pd.DataFrame:
    fallback_cost = should_cost_landed(project)
    target_moq = parse_target_moq(project)
    country = project.constraints.country or "United States"

    rows = []
    for supplier in project.suppliers:
        quoted = supplier.unit_price
        multiplier = import_multiplier(supplier, country)
        base_unit = quoted if quoted is not None else fallback_cost
        rows.append(
            {
                "supplier_id": supplier.id,
                "supplier_name": supplier.name,
                "landed_unit_cost_usd": round(base_unit * multiplier, 4),
                "lead_time_days": supplier.lead_time_days
                if supplier.lead_time_days is not None
                else DEFAULT_LEAD_TIME_DAYS,
                "moq": supplier.moq if supplier.moq is not None else target_moq * 2,
                "confidence": supplier.confidence_score,
                "risk_score": risk_score_from_flags(supplier.risk_flags),
                "quoted_unit_cost_usd": quoted,
                "tooling_cost_usd": supplier.tooling_cost,
                "reasons": [
                    "Supplier provided explicit unit quote."
                    if quoted is not None
                    else "Used should-cost fallback for missing quote.",
                    f"Import factor applied: {multiplier:.2f}x",
                ],
            }
        )
    return pd.DataFrame(rows)


def score_suppliers(project: Project, weights: Mapping[str, float]) -> pd.DataFrame:
    df = _supplier_frame(project)
    target_moq = parse_target_moq(project)

    landed = df["landed_unit_cost_usd"].astype(float)
    min_cost, max_cost = landed.min(), landed.max()
    if max_cost == min_cost:
        df["cost_score"] = 1.0
    else:
        df["cost_score"] = 1 - (landed - min_cost) / (max_cost - min_cost)
    df["lead_score"] = ((60 - df["lead_time_days"].astype(float)) / 45).clip(0, 1)
    excess_moq = (df["moq"].astype(float) - target_moq).clip(lower=0)
    df["moq_score"] = (1 - excess_moq / max(target_moq, 1)).clip(0, 1)

    df["weighted"] = (
        df["cost_score"] * weights["cost"]
        + df["lead_score"] * weights["lead"]
        + df["moq_score"] * weights["moq"]
        + df["confidence"].astype(float) * weights["confidence"]
        + df["risk_score"] * weights["risk"]
    )
    df["total_score"] = df["weighted"].apply(lambda value: round(float(value) * 100, 2))
    return df.sort_values(by="total_score", ascending=False, kind="mergesort").reset_index(drop=True)


def _optional(value: Any) -> Optional[float]:
    if value is None or pd.isna(value):
        return None
    return float(value)


def _ranking_entry(row: pd.Series) -> AwardRankingEntry:
    return AwardRankingEntry(
        supplier_id=row["supplier_id"],
        supplier_name=row["supplier_name"],
        landed_unit_cost_usd=float(row["landed_unit_cost_usd"]),
        lead_time_days=float(row["lead_time_days"]),
        moq=float(row["moq"]),
        confidence=float(row["confidence"]),
        risk_score=float(row["risk_score"]),
        quoted_unit_cost_usd=_optional(row["quoted_unit_cost_usd"]),
        tooling_cost_usd=_optional(row["tooling_cost_usd"]),
        reasons=list(row["reasons"]),
        score_breakdown=ScoreBreakdown(
            cost_score=round(float(row["cost_score"]), 4),
            lead_score=round(float(row["lead_score"]), 4),
            moq_score=round(float(row["moq_score"]), 4),
            confidence_score=round(float(row["confidence"]), 4),
            risk_score=round(float(row["risk_score"]), 4),
        ),
        total_score=float(row["total_score"]),
    )


def build_sample_po(project: Project, supplier: Supplier, entry: AwardRankingEntry) -> SamplePurchaseOrder:
    target_moq = parse_target_moq(project)
    quantity = max(20, min(200, round_half_up(target_moq * 0.1)))
    unit_price = supplier.unit_price if supplier.unit_price is not None else entry.landed_unit_cost_usd
    tooling = supplier.tooling_cost if supplier.tooling_cost is not None else 0.0
    return SamplePurchaseOrder(
        po_id=f"SAMPLE-{uuid.uuid4().hex[:8].upper()}",
        supplier_id=supplier.id,
        supplier_name=supplier.name,
        currency=supplier.pricing.currency or "USD",
        sample_quantity_units=quantity,
        unit_price_usd=round(unit_price, 2),
        tooling_cost_usd=round(tooling, 2),
        estimated_total_usd=round(quantity * unit_price + tooling, 2),
        required_docs=list(SAMPLE_PO_DOCS),
        acceptance_criteria=list(SAMPLE_PO_ACCEPTANCE),
        next_actions=list(SAMPLE_PO_NEXT_ACTIONS),
    )


def run_award_gate(
    project: Project,
    weights: Optional[Mapping[str, Any]] = None,
    base_weights: Optional[Mapping[str, float]] = None,
) -> AwardDecision:
    if not project.suppliers:
        raise NoSuppliersAvailableError()

    resolved = resolve_weights(weights, base_weights)
    scored = score_suppliers(project, resolved)
    ranking = [_ranking_entry(row) for _, row in scored.iterrows()]
    recommended = ranking[0]
    supplier = project.find_supplier(recommended.supplier_id) or project.suppliers[0]

    logger.info(
        "Award gate for project %s recommends supplier %s (score %.2f of %d ranked)",
        project.id,
        recommended.supplier_id,
        recommended.total_score,
        len(ranking),
    )
    return AwardDecision(
        objective=OBJECTIVE,
        weights=resolved,
        recommended_supplier_id=recommended.supplier_id,
        recommended=recommended,
        ranking=ranking,
        sample_po=build_sample_po(project, supplier, recommended),
        rationale=list(RATIONALE),
    )
