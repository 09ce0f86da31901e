"""Product definition drafted from a free-text idea."""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from models.project import ProductDefinition, ProjectConstraints

logger = logging.getLogger(__name__)

_CATEGORIES = (
    (re.compile(r"charger|battery|sensor|wearable|device|electronic"), "Consumer Electronics"),
    (re.compile(r"bottle|cup|kitchen|food|drink"), "Food Contact Consumer Goods"),
    (re.compile(r"bag|wallet|shoe|fashion|apparel"), "Soft Goods"),
    (re.compile(r"furniture|chair|table|lamp"), "Home Goods"),
)
_HIGH_COMPLEXITY = re.compile(r"electronic|battery|sensor|compliance", re.IGNORECASE)
_MEDIUM_COMPLEXITY = re.compile(r"custom|precision|tooling", re.IGNORECASE)
_SENTENCE_END = re.compile(r"[.!?]")
_WHITESPACE = re.compile(r"\s+")


def pick_category(idea: str) -> str:
    text = (idea or "").lower()
    for pattern, category in _CATEGORIES:
        if pattern.search(text):
            return category
    return "General Consumer Product"


def complexity_level(idea: str, constraints: ProjectConstraints) -> str:
    if _HIGH_COMPLEXITY.search(f"{idea} {constraints.compliance_requirements or ''}"):
        return "high"
    if _MEDIUM_COMPLEXITY.search(idea or ""):
        return "medium"
    return "low"


def fallback_definition(idea: str, constraints: ProjectConstraints) -> ProductDefinition:
    concise = (idea or "").strip()[:220]
    first_sentence = _SENTENCE_END.split(concise)[0]
    product_name = _WHITESPACE.sub(" ", first_sentence).strip()[:60] or "Manufacture Concept"
    materials = [part.strip() for part in (constraints.materials_preferences or "").split(",") if part.strip()]

    return ProductDefinition(
        product_name=product_name,
        summary=concise,
        manufacturing_category=pick_category(idea),
        functional_requirements=[
            "Meet intended user function and durability expectations",
            "Be feasible within early-stage pilot manufacturing",
            "Allow iterative sample testing before first production batch",
        ],
        key_materials=materials or ["Material to be validated during supplier discovery"],
        complexity_level=complexity_level(idea, constraints),
        risks=[
            "Supplier capability mismatch",
            "Compliance documentation gaps",
            "Unexpected tooling and sampling costs",
        ],
        assumptions=[
            "Prototype-first approach before volume production",
            "Initial suppliers are open to sampling and negotiation",
        ],
    )


def _coerce_definition(raw: Any, fallback: ProductDefinition) -> ProductDefinition:
    if not isinstance(raw, dict):
        return fallback
    merged = fallback.model_dump()
    for key, value in raw.items():
        if key not in merged or value in (None, "", []):
            continue
        if isinstance(merged[key], list):
            if isinstance(value, list):
                merged[key] = [str(item) for item in value if item not in (None, "")] or merged[key]
        else:
            merged[key] = str(value)
    if merged["complexity_level"] not in ("low", "medium", "high"):
        merged["complexity_level"] = fallback.complexity_level
    return ProductDefinition(**merged)


def analyze_product_idea(idea: str, constraints: ProjectConstraints, llm=None) -> ProductDefinition:
    fallback = fallback_definition(idea, constraints)
    if llm is None:
        return fallback

    prompt = "\n\n".join(
        [
            "Analyze this physical product idea for pre-manufacturing execution.",
            "Return strict JSON with keys:",
            "product_name, summary, manufacturing_category, functional_requirements (array), "
            "key_materials (array), complexity_level (low|medium|high), risks (array), assumptions (array)",
            f"Idea: {idea}",
            f"Constraints: {json.dumps(constraints.model_dump())}",
        ]
    )
    return _coerce_definition(llm.generate_json_with_fallback(prompt, lambda: None), fallback)
