"""Typed artefacts produced by the outcome engine (should-cost to award)."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from models.checklist import utc_now


class BomAlternate(BaseModel):
    option: str = ""
    supplier_type: str = ""
    unit_cost_usd: Optional[float] = None
    note: str = ""


class BomLine(BaseModel):
    component: str
    spec_intent: str = ""
    qty_per_unit: float = 1
    unit_cost_usd: float = 0
    ext_cost_usd: Optional[float] = None
    alternates: List[BomAlternate] = Field(default_factory=list)
    cost_driver: str = ""


class CostBreakdown(BaseModel):
    materials_usd: float
    assembly_usd: float
    tooling_usd: float
    quality_usd: float
    packaging_usd: float
    logistics_usd: float
    duty_usd: float
    landed_unit_cost_usd: float
    first_article_cost_usd: float


class ShouldCostModel(BaseModel):
    currency: str = "USD"
    target_volume_units: int = 500
    profile: str = "general_consumer"
    bom: List[BomLine] = Field(default_factory=list)
    cost_breakdown: CostBreakdown
    assumptions: List[str] = Field(default_factory=list)
    cost_levers: List[str] = Field(default_factory=list)


class VariantTooling(BaseModel):
    type: str
    cost_usd: float
    lead_time_days: float


class VariantEconomics(BaseModel):
    ex_works_unit_cost_usd: float
    landed_unit_cost_usd: float


class VariantTimeline(BaseModel):
    sample_days: float
    production_days: float


class ManufacturingVariant(BaseModel):
    key: str
    name: str
    description: str
    target_volume_range: str
    process_strategy: str
    tooling: VariantTooling
    unit_economics: VariantEconomics
    timeline: VariantTimeline
    pros: List[str] = Field(default_factory=list)
    cons: List[str] = Field(default_factory=list)
    when_to_use: str = ""


class RfqProduct(BaseModel):
    name: str
    summary: str
    category: str
    key_materials: List[str] = Field(default_factory=list)


class RfqCommercialTerms(BaseModel):
    currency: str = "USD"
    target_unit_price_usd: float
    target_moq: float
    target_lead_time_days: float
    sample_lead_time_days: float
    incoterm: str = "EXW"
    payment_terms: str = ""


class RfqQualityPlan(BaseModel):
    aql_level: str
    critical_checks: List[str] = Field(default_factory=list)


class StructuredRfq(BaseModel):
    rfq_id: str
    issue_date: str
    response_deadline: str
    product: RfqProduct
    variant_key: str = "pilot"
    commercial_terms: RfqCommercialTerms
    deliverables: List[str] = Field(default_factory=list)
    quality_plan: RfqQualityPlan
    compliance_requirements: List[str] = Field(default_factory=list)
    quote_template_fields: List[str] = Field(default_factory=list)
    attachments_required: List[str] = Field(default_factory=list)
    supplier_questions: List[str] = Field(default_factory=list)
    negotiation_guardrails: List[str] = Field(default_factory=list)


class ScoreBreakdown(BaseModel):
    cost_score: float
    lead_score: float
    moq_score: float
    confidence_score: float
    risk_score: float


class AwardRankingEntry(BaseModel):
    supplier_id: str
    supplier_name: str = ""
    landed_unit_cost_usd: float
    lead_time_days: float
    moq: float
    confidence: float
    risk_score: float
    quoted_unit_cost_usd: Optional[float] = None
    tooling_cost_usd: Optional[float] = None
    reasons: List[str] = Field(default_factory=list)
    score_breakdown: ScoreBreakdown
    total_score: float


class SamplePurchaseOrder(BaseModel):
    po_id: str
    supplier_id: str
    supplier_name: str = ""
    issue_date: datetime = Field(default_factory=utc_now)
    currency: str = "USD"
    sample_quantity_units: int
    unit_price_usd: float
    tooling_cost_usd: float
    estimated_total_usd: float
    incoterm: str = "EXW"
    payment_terms: str = "30% deposit / 70% before shipment"
    required_docs: List[str] = Field(default_factory=list)
    acceptance_criteria: List[str] = Field(default_factory=list)
    next_actions: List[str] = Field(default_factory=list)


class AwardDecision(BaseModel):
    generated_at: datetime = Field(default_factory=utc_now)
    objective: str = ""
    weights: Dict[str, float] = Field(default_factory=dict)
    recommended_supplier_id: str
    recommended: AwardRankingEntry
    ranking: List[AwardRankingEntry]
    sample_po: SamplePurchaseOrder
    rationale: List[str] = Field(default_factory=list)


class FollowUpPolicy(BaseModel):
    response_sla_hours: float = 24
    cadence_hours: float = 24
    max_follow_ups: int = 2


class OutcomeEngineState(BaseModel):
    should_cost: Optional[ShouldCostModel] = None
    variants: List[ManufacturingVariant] = Field(default_factory=list)
    structured_rfq: Optional[StructuredRfq] = None
    award_decision: Optional[AwardDecision] = None
    kpi_snapshot: Optional[Dict[str, Any]] = None
    # None until a follow-up run stores one; runs fall back to settings.
    follow_up_policy: Optional[FollowUpPolicy] = None
    last_outcome_plan_at: Optional[datetime] = None
