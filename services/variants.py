"""Prototype / pilot / scale manufacturing paths derived from the should-cost."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

from models.outcome import (
    ManufacturingVariant,
    ShouldCostModel,
    VariantEconomics,
    VariantTimeline,
    VariantTooling,
)
from models.project import Project
from utils.number_extraction import strict_number

logger = logging.getLogger(__name__)

REQUIRED_KEYS = ("prototype", "pilot", "scale")

DEFAULT_LANDED_USD = 10.0
DEFAULT_TOOLING_USD = 4000.0

_FALLBACK_PROFILES = (
    {
        "key": "prototype",
        "name": "Prototype Sprint",
        "description": "Fastest path to first physical sample with minimal upfront tooling.",
        "target_volume_range": "10-100 units",
        "process_strategy": "Off-the-shelf components + rapid fabrication (3D print/CNC/manual assembly).",
        "tooling_type": "No hard tooling",
        "tooling_factor": 0.08,
        "tooling_days": 5,
        "ex_works_factor": 1.55,
        "landed_factor": 1.75,
        "sample_days": 7,
        "production_days": 14,
        "pros": ["Fast validation cycle", "Low commitment risk"],
        "cons": ["Highest per-unit cost", "Not suitable for scale launch"],
        "when_to_use": "Use when speed-to-first-demo is the priority.",
    },
    {
        "key": "pilot",
        "name": "Pilot Economics",
        "description": "Balanced path between speed and unit economics for early market tests.",
        "target_volume_range": "100-2,000 units",
        "process_strategy": "Semi-custom parts + light tooling + standardized QA.",
        "tooling_type": "Soft tooling / fixture set",
        "tooling_factor": 0.45,
        "tooling_days": 14,
        "ex_works_factor": 1.1,
        "landed_factor": 1.22,
        "sample_days": 14,
        "production_days": 21,
        "pros": ["Good cost-to-speed balance", "Production-like quality signal"],
        "cons": ["Still higher than full-scale costs"],
        "when_to_use": "Use for first sellable batch and channel validation.",
    },
    {
        "key": "scale",
        "name": "Scale Optimization",
        "description": "Lowest long-run unit cost with high upfront tooling commitment.",
        "target_volume_range": "2,000+ units",
        "process_strategy": "Custom components + hard tooling + automated assembly where possible.",
        "tooling_type": "Hard production tooling",
        "tooling_factor": 1.35,
        "tooling_days": 35,
        "ex_works_factor": 0.82,
        "landed_factor": 0.92,
        "sample_days": 28,
        "production_days": 35,
        "pros": ["Best landed unit cost", "Most defensible gross margin at volume"],
        "cons": ["Highest capex and setup delay"],
        "when_to_use": "Use after demand confidence and stable specs.",
    },
)


def fallback_variants(should_cost: Optional[ShouldCostModel]) -> List[ManufacturingVariant]:
    breakdown = should_cost.cost_breakdown if should_cost is not None else None
    landed = (breakdown.landed_unit_cost_usd if breakdown else None) or DEFAULT_LANDED_USD
    tooling = (breakdown.tooling_usd if breakdown else None) or DEFAULT_TOOLING_USD

    variants = []
    for profile in _FALLBACK_PROFILES:
        variants.append(
            ManufacturingVariant(
                key=profile["key"],
                name=profile["name"],
                description=profile["description"],
                target_volume_range=profile["target_volume_range"],
                process_strategy=profile["process_strategy"],
                tooling=VariantTooling(
                    type=profile["tooling_type"],
                    cost_usd=round(tooling * profile["tooling_factor"], 2),
                    lead_time_days=profile["tooling_days"],
                ),
                unit_economics=VariantEconomics(
                    ex_works_unit_cost_usd=round(landed * profile["ex_works_factor"], 2),
                    landed_unit_cost_usd=round(landed * profile["landed_factor"], 2),
                ),
                timeline=VariantTimeline(
                    sample_days=profile["sample_days"],
                    production_days=profile["production_days"],
                ),
                pros=list(profile["pros"]),
                cons=list(profile["cons"]),
                when_to_use=profile["when_to_use"],
            )
        )
    return variants


def _number(section: Dict[str, Any], key: str, default: float) -> float:
    value = strict_number(section.get(key))
    return value if value is not None else default


def _section(candidate: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = candidate.get(key)
    return value if isinstance(value, dict) else {}


def _text_list(value: Any, default: List[str]) -> List[str]:
    if isinstance(value, list) and value:
        return [str(item) for item in value]
    return list(default)


def normalize_variant(candidate: Any, fallback: ManufacturingVariant) -> ManufacturingVariant:
    if not isinstance(candidate, dict):
        candidate = {}
    tooling = _section(candidate, "tooling")
    economics = _section(candidate, "unit_economics")
    timeline = _section(candidate, "timeline")

    return ManufacturingVariant(
        key=fallback.key,
        name=str(candidate.get("name") or fallback.name),
        description=str(candidate.get("description") or fallback.description),
        target_volume_range=str(candidate.get("target_volume_range") or fallback.target_volume_range),
        process_strategy=str(candidate.get("process_strategy") or fallback.process_strategy),
        tooling=VariantTooling(
            type=str(tooling.get("type") or fallback.tooling.type),
            cost_usd=_number(tooling, "cost_usd", fallback.tooling.cost_usd),
            lead_time_days=_number(tooling, "lead_time_days", fallback.tooling.lead_time_days),
        ),
        unit_economics=VariantEconomics(
            ex_works_unit_cost_usd=_number(
                economics, "ex_works_unit_cost_usd", fallback.unit_economics.ex_works_unit_cost_usd
            ),
            landed_unit_cost_usd=_number(
                economics, "landed_unit_cost_usd", fallback.unit_economics.landed_unit_cost_usd
            ),
        ),
        timeline=VariantTimeline(
            sample_days=_number(timeline, "sample_days", fallback.timeline.sample_days),
            production_days=_number(timeline, "production_days", fallback.timeline.production_days),
        ),
        pros=_text_list(candidate.get("pros"), fallback.pros),
        cons=_text_list(candidate.get("cons"), fallback.cons),
        when_to_use=str(candidate.get("when_to_use") or fallback.when_to_use),
    )


def normalize_variants(raw: Any, fallback: List[ManufacturingVariant]) -> List[ManufacturingVariant]:
    """Merge model-drafted variants onto the fallback by key.

    ``raw`` may be a list or ``{"variants": [...]}``. When the draft does not
    cover every required key the whole fallback is returned.
    """

    if isinstance(raw, dict):
        raw = raw.get("variants")
    if not isinstance(raw, list):
        return fallback

    keyed = {
        str(entry.get("key") or "").lower(): entry for entry in raw if isinstance(entry, dict)
    }
    if not all(key in keyed for key in REQUIRED_KEYS):
        logger.warning("Variant draft missing required keys; using fallback variants")
        return fallback
    return [normalize_variant(keyed[entry.key], entry) for entry in fallback]


def build_manufacturing_variants(
    project: Project, should_cost: Optional[ShouldCostModel], llm=None
) -> List[ManufacturingVariant]:
    fallback = fallback_variants(should_cost)
    if llm is None:
        return fallback

    prompt = "\n\n".join(
        [
            "Generate exactly three manufacturing path variants for this product: prototype, pilot, scale.",
            "Return strict JSON as array with keys: key, name, description, target_volume_range, "
            "process_strategy, tooling, unit_economics, timeline, pros, cons, when_to_use.",
            "tooling keys: type, cost_usd, lead_time_days.",
            "unit_economics keys: ex_works_unit_cost_usd, landed_unit_cost_usd.",
            "timeline keys: sample_days, production_days.",
            "Each variant key must be one of: prototype, pilot, scale.",
            f"Project idea: {project.idea}",
            f"Product definition: {json.dumps(project.product_definition.model_dump(), default=str)}",
            f"Should-cost model: {json.dumps(should_cost.model_dump() if should_cost else None, default=str)}",
        ]
    )
    generated = llm.generate_json_with_fallback(prompt, lambda: None, max_tokens=1300)
    return normalize_variants(generated, fallback)
