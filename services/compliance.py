"""Keyword-driven import compliance pre-check for a product category."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, List

ELECTRONICS_KEYWORDS = ("electronic", "battery", "charger", "device")
FOOD_CONTACT_KEYWORDS = ("food", "bottle", "drink", "kitchen", "utensil")
CHEMICAL_KEYWORDS = ("cosmetic", "skin", "chemical", "fragrance")


@dataclass
class ComplianceAssessment:
    import_feasibility: str = "High"
    required_checks: List[str] = field(default_factory=list)
    red_flags: List[str] = field(default_factory=list)


def _mentions(text: str, keywords: Iterable[str]) -> bool:
    return any(keyword in text for keyword in keywords)


def assess_compliance(
    country: str = "United States", category: str = "", materials: Iterable[str] = ()
) -> ComplianceAssessment:
    text = f"{category} {' '.join(materials or [])}".lower()
    result = ComplianceAssessment()

    if _mentions(text, ELECTRONICS_KEYWORDS):
        result.required_checks += ["FCC/EMC", "Battery transport", "UL or equivalent safety listing"]
        result.red_flags.append("High testing dependency before launch")
        result.import_feasibility = "Medium"

    if _mentions(text, FOOD_CONTACT_KEYWORDS):
        result.required_checks += ["Food-contact material declaration", "FDA/EFSA suitability checks"]
        result.red_flags.append("Material migration compliance must be documented")
        if result.import_feasibility == "High":
            result.import_feasibility = "Medium"

    if _mentions(text, CHEMICAL_KEYWORDS):
        result.required_checks += ["Ingredient disclosure", "Labeling compliance", "MSDS availability"]
        result.red_flags.append("Regulatory labeling can delay import clearance")
        result.import_feasibility = "Low"

    if "united states" in (country or "United States").lower():
        result.required_checks += ["HTS code validation", "CBP import documentation readiness"]
    else:
        result.required_checks.append("Destination-country import code validation")

    return result
