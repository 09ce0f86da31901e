"""Plain-text bodies for supplier emails."""

from __future__ import annotations

from typing import Any


def _product_name(project: Any) -> str:
    return project.product_definition.product_name or project.name


def build_rfq_body(project: Any, supplier: Any, signature: str = "Sourcewise") -> str:
    constraints = project.constraints
    definition = project.product_definition
    lines = [
        f"Hi {supplier.contact_person or 'team'},",
        "",
        "We are evaluating manufacturing partners for a new product and would like an RFQ.",
        "",
        f"Product: {_product_name(project)}",
        f"Category: {definition.manufacturing_category or 'General'}",
        f"Requirements: {'; '.join(definition.functional_requirements) or 'TBD'}",
        f"Materials preference: {constraints.materials_preferences or 'Open'}",
        f"MOQ target: {constraints.moq_tolerance or 'Flexible'}",
        f"Target market: {constraints.country or 'United States'}",
        f"Compliance notes: {constraints.compliance_requirements or 'Share standard compliance package'}",
        "",
        "Please share:",
        "1) Unit pricing across quantity tiers",
        "2) MOQ",
        "3) Lead time for samples and production",
        "4) Tooling/setup cost",
        "5) Export terms and Incoterms",
        "",
        "Best regards,",
        signature,
    ]
    return "\n".join(lines)


def build_rfq_subject(project: Any) -> str:
    return f"RFQ Request: {_product_name(project)}"


def build_follow_up_body(project: Any, supplier: Any, follow_up_index: int) -> str:
    lines = [
        f"Hi {supplier.contact_person or 'team'},",
        "",
        f"Quick follow-up on our RFQ for {_product_name(project) or 'product'}.",
        "",
        "Could you please share:",
        "- Unit pricing (with MOQ tiers)",
        "- MOQ and sample feasibility",
        "- Sample + production lead times",
        "- Tooling / NRE (if any)",
        "",
        f"Our target MOQ range is {project.constraints.moq_tolerance or 'as discussed'}.",
        f"This is follow-up #{follow_up_index}.",
        "",
        "If helpful, we can confirm requirements in a short call this week.",
        "",
        "Best regards,",
        project.name,
    ]
    return "\n".join(lines)


def build_follow_up_subject(project: Any, follow_up_index: int) -> str:
    return f"Follow-up #{follow_up_index}: RFQ {_product_name(project)}"
