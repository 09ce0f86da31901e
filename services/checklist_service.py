"""Canonical pre-manufacturing checklist."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

from models.checklist import ChecklistItem, ChecklistStatus
from models.project import MANUFACTURING_MODULES

logger = logging.getLogger(__name__)

DEFINE_PRODUCT = "define-product"
PROCESS_AND_MATERIALS = "process-and-materials"
COMPLIANCE_PRECHECK = "compliance-precheck"
SUPPLIER_DISCOVERY = "supplier-discovery"
OUTREACH_RFQ = "outreach-rfq"
RESPONSE_ANALYSIS = "response-analysis"
NEGOTIATION = "negotiation"
MANUFACTURER_SELECTION = "manufacturer-selection"

ALLOWED_MODULES = frozenset(MANUFACTURING_MODULES)

_FALLBACK_STEPS = (
    (
        DEFINE_PRODUCT,
        "Lock Product Definition",
        "Confirm intended function, user requirements, and quality expectations.",
        "ideation",
    ),
    (
        PROCESS_AND_MATERIALS,
        "Select Process & Materials",
        "Map feasible manufacturing methods and candidate materials.",
        "checklist",
    ),
    (
        COMPLIANCE_PRECHECK,
        "Run Compliance Pre-check",
        "Identify import and category compliance checks before RFQ.",
        "checklist",
    ),
    (
        SUPPLIER_DISCOVERY,
        "Discover Supplier Shortlist",
        "Find and score relevant manufacturers with export fit.",
        "discovery",
    ),
    (
        OUTREACH_RFQ,
        "Send RFQs",
        "Generate and dispatch personalized RFQ outreach to shortlisted suppliers.",
        "outreach",
    ),
    (
        RESPONSE_ANALYSIS,
        "Parse Supplier Responses",
        "Extract pricing, MOQ, lead times, and missing data from replies.",
        "responses",
    ),
    (
        NEGOTIATION,
        "Negotiate Commercial Terms",
        "Negotiate MOQ, pricing, and lead times with selected suppliers.",
        "negotiation",
    ),
    (
        MANUFACTURER_SELECTION,
        "Finalize Factory-ready Brief",
        "Select supplier and package all validated requirements for production handoff.",
        "success",
    ),
)

_LIST_KEYS = (
    "checklist",
    "items",
    "steps",
    "pre-manufacturing-checklist",
    "preManufacturingChecklist",
    "manufacturingChecklist",
    "data",
)


def fallback_checklist() -> List[Dict[str, Any]]:
    steps: List[Dict[str, Any]] = []
    previous: Optional[str] = None
    for key, title, description, module in _FALLBACK_STEPS:
        steps.append(
            {
                "key": key,
                "title": title,
                "description": description,
                "module": module,
                "depends_on": [previous] if previous else [],
            }
        )
        previous = key
    return steps


def _as_item_list(raw: Any) -> List[Any]:
    if isinstance(raw, list):
        return raw
    if not isinstance(raw, dict):
        return []
    for key in _LIST_KEYS:
        if isinstance(raw.get(key), list):
            return raw[key]
    for value in raw.values():
        if isinstance(value, list):
            return value
    return []


def normalize_checklist(raw: Any) -> List[Dict[str, Any]]:
    """Merge model-drafted wording onto the canonical steps.

    Keys and dependencies always come from the canonical list; only the
    title, description and (allowed) module may be overridden.
    """

    items = _as_item_list(raw)
    merged: List[Dict[str, Any]] = []
    for index, base in enumerate(fallback_checklist()):
        candidate = items[index] if index < len(items) and isinstance(items[index], dict) else {}
        title = str(candidate.get("title") or "").strip() or base["title"]
        description = str(candidate.get("description") or "").strip() or base["description"]
        module = str(candidate.get("module") or "").strip()
        merged.append(
            {
                "key": base["key"],
                "title": title,
                "description": description,
                "module": module if module in ALLOWED_MODULES else base["module"],
                "depends_on": list(base["depends_on"]),
            }
        )
    return merged


def build_checklist(
    product_definition: Dict[str, Any],
    constraints: Dict[str, Any],
    llm=None,
) -> List[ChecklistItem]:
    prompt = "\n\n".join(
        [
            "Create an ordered pre-manufacturing checklist for this product idea.",
            "Return JSON array with exactly 8 items.",
            "Each item must include: key, title, description, module, depends_on (array).",
            "Allowed module values: " + ", ".join(MANUFACTURING_MODULES) + ".",
            "Use short kebab-case keys.",
            f"Product definition: {json.dumps(product_definition, default=str)}",
            f"Constraints: {json.dumps(constraints, default=str)}",
        ]
    )
    raw = fallback_checklist()
    if llm is not None:
        raw = llm.generate_json_with_fallback(prompt, fallback_checklist, max_tokens=1400)

    checklist: List[ChecklistItem] = []
    for index, step in enumerate(normalize_checklist(raw)):
        checklist.append(
            ChecklistItem(
                key=step["key"],
                title=step["title"],
                description=step["description"],
                module=step["module"],
                depends_on=step["depends_on"],
                status=ChecklistStatus.VALIDATED if index == 0 else ChecklistStatus.PENDING,
                evidence="Product intent captured." if index == 0 else "",
                next_action="Validate material/process assumptions" if index == 1 else "",
            )
        )
    return checklist
