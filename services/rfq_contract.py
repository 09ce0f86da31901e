"""Structured RFQ packet sent to manufacturers, plus its plain-text rendering."""

from __future__ import annotations

import json
import logging
import uuid
from datetime import timedelta
from typing import Any, Dict, List, Optional

from models.checklist import utc_now
from models.outcome import (
    ManufacturingVariant,
    RfqCommercialTerms,
    RfqProduct,
    RfqQualityPlan,
    ShouldCostModel,
    StructuredRfq,
)
from models.project import Project
from utils.number_extraction import first_number, round_half_up, strict_number

logger = logging.getLogger(__name__)

RESPONSE_WINDOW = timedelta(days=3)
DEFAULT_TARGET_MOQ = 500.0
DEFAULT_LEAD_TIME_DAYS = 30.0

DELIVERABLES = [
    "Pilot/sample units with functional test report",
    "Final BOM with manufacturer part numbers",
    "Process flow summary and QC checkpoints",
    "Packing configuration and carton dimensions",
]
CRITICAL_CHECKS = [
    "Dimensional fit and assembly integrity",
    "Functional operation over 30-minute continuous run",
    "Visual/cosmetic defect screening",
]
QUOTE_TEMPLATE_FIELDS = [
    "Unit price by MOQ tiers (EXW)",
    "Tooling/NRE cost and amortization options",
    "Sample lead time and mass production lead time",
    "Packaging cost and carton specs",
    "Payment terms and validity period",
]
ATTACHMENTS_REQUIRED = [
    "Capability statement and relevant past projects",
    "Factory location and export ports",
    "Proposed production timeline (Gantt or milestone list)",
]
SUPPLIER_QUESTIONS = [
    "What is your minimum engineering change turnaround time?",
    "Can you support alternate part sourcing if one component is constrained?",
    "What in-line QC checks are standard at your line?",
]
NEGOTIATION_GUARDRAILS = [
    "No non-cancelable blanket POs before sample validation",
    "All changes to MOQ/lead-time must be written and versioned",
    "Explicit definition of defect handling and rework responsibility",
]


def select_variant(
    variants: List[ManufacturingVariant], variant_key: str = "pilot"
) -> Optional[ManufacturingVariant]:
    match = next((entry for entry in variants if entry.key == variant_key), None)
    if match is not None:
        return match
    return variants[0] if variants else None


def fallback_structured_rfq(
    project: Project,
    should_cost: Optional[ShouldCostModel],
    variant: Optional[ManufacturingVariant],
) -> StructuredRfq:
    issue_date = utc_now()
    landed = should_cost.cost_breakdown.landed_unit_cost_usd if should_cost else None
    target_price = first_number(project.constraints.budget_range) or round(landed or 10, 2)
    target_moq = first_number(project.constraints.moq_tolerance)
    if target_moq is None:
        target_moq = DEFAULT_TARGET_MOQ
    lead_time = (variant.timeline.production_days if variant else None) or DEFAULT_LEAD_TIME_DAYS

    definition = project.product_definition
    compliance = [
        entry.strip()
        for entry in (project.constraints.compliance_requirements or "").split(",")
        if entry.strip()
    ]
    compliance.append("Material declarations for restricted substances where applicable")

    return StructuredRfq(
        rfq_id=str(uuid.uuid4()),
        issue_date=issue_date.isoformat(),
        response_deadline=(issue_date + RESPONSE_WINDOW).isoformat(),
        product=RfqProduct(
            name=definition.product_name or project.name,
            summary=definition.summary or project.idea,
            category=definition.manufacturing_category or "General Consumer Product",
            key_materials=list(definition.key_materials),
        ),
        variant_key=variant.key if variant else "pilot",
        commercial_terms=RfqCommercialTerms(
            currency="USD",
            target_unit_price_usd=target_price,
            target_moq=target_moq,
            target_lead_time_days=lead_time,
            sample_lead_time_days=max(7, round_half_up(lead_time * 0.4)),
            incoterm="EXW",
            payment_terms="30% deposit, 70% before shipment",
        ),
        deliverables=list(DELIVERABLES),
        quality_plan=RfqQualityPlan(
            aql_level="Critical 0 / Major 2.5 / Minor 4.0",
            critical_checks=list(CRITICAL_CHECKS),
        ),
        compliance_requirements=compliance,
        quote_template_fields=list(QUOTE_TEMPLATE_FIELDS),
        attachments_required=list(ATTACHMENTS_REQUIRED),
        supplier_questions=list(SUPPLIER_QUESTIONS),
        negotiation_guardrails=list(NEGOTIATION_GUARDRAILS),
    )


def _list_or(value: Any, default: List[str]) -> List[str]:
    if isinstance(value, list) and value:
        return [str(item) for item in value]
    return list(default)


def _dict_or_empty(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _number_or(section: Dict[str, Any], key: str, default: float) -> float:
    value = strict_number(section.get(key))
    return value if value is not None else default


def normalize_structured_rfq(raw: Any, fallback: StructuredRfq) -> StructuredRfq:
    """Overlay a model-drafted packet on ``fallback`` field by field."""

    if not isinstance(raw, dict):
        return fallback

    product = _dict_or_empty(raw.get("product"))
    terms = _dict_or_empty(raw.get("commercial_terms"))
    quality = _dict_or_empty(raw.get("quality_plan"))
    base_terms = fallback.commercial_terms

    return StructuredRfq(
        rfq_id=str(raw.get("rfq_id") or fallback.rfq_id),
        issue_date=str(raw.get("issue_date") or fallback.issue_date),
        response_deadline=str(raw.get("response_deadline") or fallback.response_deadline),
        product=RfqProduct(
            name=str(product.get("name") or fallback.product.name),
            summary=str(product.get("summary") or fallback.product.summary),
            category=str(product.get("category") or fallback.product.category),
            key_materials=_list_or(product.get("key_materials"), fallback.product.key_materials),
        ),
        variant_key=str(raw.get("variant_key") or fallback.variant_key),
        commercial_terms=RfqCommercialTerms(
            currency=str(terms.get("currency") or base_terms.currency),
            target_unit_price_usd=_number_or(terms, "target_unit_price_usd", base_terms.target_unit_price_usd),
            target_moq=_number_or(terms, "target_moq", base_terms.target_moq),
            target_lead_time_days=_number_or(terms, "target_lead_time_days", base_terms.target_lead_time_days),
            sample_lead_time_days=_number_or(terms, "sample_lead_time_days", base_terms.sample_lead_time_days),
            incoterm=str(terms.get("incoterm") or base_terms.incoterm),
            payment_terms=str(terms.get("payment_terms") or base_terms.payment_terms),
        ),
        deliverables=_list_or(raw.get("deliverables"), fallback.deliverables),
        quality_plan=RfqQualityPlan(
            aql_level=str(quality.get("aql_level") or fallback.quality_plan.aql_level),
            critical_checks=_list_or(quality.get("critical_checks"), fallback.quality_plan.critical_checks),
        ),
        compliance_requirements=_list_or(raw.get("compliance_requirements"), fallback.compliance_requirements),
        quote_template_fields=_list_or(raw.get("quote_template_fields"), fallback.quote_template_fields),
        attachments_required=_list_or(raw.get("attachments_required"), fallback.attachments_required),
        supplier_questions=_list_or(raw.get("supplier_questions"), fallback.supplier_questions),
        negotiation_guardrails=_list_or(raw.get("negotiation_guardrails"), fallback.negotiation_guardrails),
    )


def build_structured_rfq(
    project: Project,
    should_cost: Optional[ShouldCostModel],
    variants: List[ManufacturingVariant],
    variant_key: str = "pilot",
    llm=None,
) -> StructuredRfq:
    variant = select_variant(variants, variant_key)
    fallback = fallback_structured_rfq(project, should_cost, variant)
    if llm is None:
        return fallback

    prompt = "\n\n".join(
        [
            "Create a structured RFQ contract packet for a manufacturer.",
            "Return strict JSON with keys: rfq_id, issue_date, response_deadline, product, variant_key, "
            "commercial_terms, deliverables, quality_plan, compliance_requirements, quote_template_fields, "
            "attachments_required, supplier_questions, negotiation_guardrails.",
            "product keys: name, summary, category, key_materials (array).",
            "commercial_terms keys: currency, target_unit_price_usd, target_moq, target_lead_time_days, "
            "sample_lead_time_days, incoterm, payment_terms.",
            "quality_plan keys: aql_level, critical_checks.",
            "Be explicit and execution-oriented, no prose outside JSON.",
            f"Project: {json.dumps(project.product_definition.model_dump(), default=str)}",
            f"Constraints: {json.dumps(project.constraints.model_dump(), default=str)}",
            f"Should-cost: {json.dumps(should_cost.model_dump() if should_cost else None, default=str)}",
            f"Variant selected: {json.dumps(variant.model_dump() if variant else None, default=str)}",
        ]
    )
    generated = llm.generate_json_with_fallback(prompt, lambda: None, max_tokens=1300)
    return normalize_structured_rfq(generated, fallback)


def _format_amount(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)


def render_rfq_text(contract: StructuredRfq) -> str:
    terms = contract.commercial_terms
    lines = [
        f"RFQ ID: {contract.rfq_id}",
        f"Issue Date: {contract.issue_date}",
        f"Response Deadline: {contract.response_deadline}",
        "",
        f"Product: {contract.product.name}",
        contract.product.summary,
        "",
        "Commercial Terms:",
        f"- Target Unit Price ({terms.currency}): {_format_amount(terms.target_unit_price_usd)}",
        f"- Target MOQ: {_format_amount(terms.target_moq)}",
        f"- Target Lead Time (days): {_format_amount(terms.target_lead_time_days)}",
        f"- Sample Lead Time (days): {_format_amount(terms.sample_lead_time_days)}",
        f"- Incoterm: {terms.incoterm}",
        f"- Payment Terms: {terms.payment_terms}",
        "",
        "Required Deliverables:",
        *[f"- {item}" for item in contract.deliverables],
        "",
        "Quote Template Fields:",
        *[f"- {item}" for item in contract.quote_template_fields],
    ]
    return "\n".join(lines)
