"""Bottom-up should-cost estimate used as the price anchor for sourcing."""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, List, Optional

from models.outcome import BomAlternate, BomLine, CostBreakdown, ShouldCostModel
from models.project import Project
from utils.number_extraction import strict_number

logger = logging.getLogger(__name__)

_ELECTRONICS = re.compile(r"arduino|pcb|electronic|sensor|battery|speaker|mic|firmware|robot|bot")
_FOOD_CONTACT = re.compile(r"bottle|kitchen|food|cup|container")
_SOFT_GOODS = re.compile(r"bag|apparel|textile|fabric|shoe")

TARGET_VOLUME_UNITS = 500
ASSUMPTIONS = [
    "Landed cost includes freight + import duties as modeled assumptions.",
    "No custom certification test lab costs included in unit economics.",
    "Supplier payment terms assumed net 30 after initial deposit.",
]
COST_LEVERS = [
    "Reduce part count and simplify assembly sequence.",
    "Bundle PCB assembly + final assembly with a single EMS vendor.",
    "Use prototype process first; move to tooling only after demand signal.",
]


def _alt(option, supplier_type, unit_cost, note):
    return {"option": option, "supplier_type": supplier_type, "unit_cost_usd": unit_cost, "note": note}


# (component, spec intent, unit cost, alternates, cost driver); qty is always 1
_ELECTRONICS_BOM = (
    ("Control board (Arduino-compatible MCU)", "Main logic, IO, and firmware runtime", 5.5,
     [_alt("A", "Distributor", 5.5, "Branded board, faster validation"),
      _alt("B", "EMS custom PCB", 3.2, "Cheaper at pilot volumes")],
     "MCU selection and board form factor"),
    ("Audio output subsystem", "Voice playback amp + speaker", 2.2,
     [_alt("A", "Module vendor", 2.2, "Integrated amplifier module"),
      _alt("B", "Discrete BOM", 1.6, "Lower cost but more assembly effort")],
     "Acoustic output quality target"),
    ("Mic input subsystem", "Voice capture front-end", 1.4,
     [_alt("A", "MEMS vendor", 1.4, "Higher SNR MEMS"),
      _alt("B", "Electret solution", 0.8, "Cheaper, lower consistency")],
     "Noise floor requirements"),
    ("Power system", "Battery/adapter, charging, protection", 3.1,
     [_alt("A", "Battery pack OEM", 3.1, "Integrated protection board"),
      _alt("B", "Adapter-only", 1.5, "No onboard battery")],
     "Runtime and safety certification scope"),
    ("Enclosure (cover + cosmetic parts)", "Mechanical protection and aesthetics", 2.9,
     [_alt("A", "3D print/CNC", 8.2, "Fast prototype, high unit cost"),
      _alt("B", "Injection molded", 2.9, "Needs tooling for scale")],
     "Tooling strategy and finish quality"),
    ("Final assembly + functional test", "Build, flash firmware, QA smoke test", 2.3,
     [_alt("A", "Turnkey EMS", 2.3, "Lower coordination overhead"),
      _alt("B", "Split vendors", 1.7, "Cheaper but slower orchestration")],
     "Process maturity and automation"),
    ("Packaging + inserts", "Retail-safe pack with quickstart guide", 0.9,
     [_alt("A", "Custom printed pack", 0.9, "Brand-ready"),
      _alt("B", "Plain carton", 0.45, "Cheapest path for pilot")],
     "Branding and unboxing requirements"),
)

_GENERAL_BOM = (
    ("Primary material set", "Core product body material", 3.2,
     [_alt("A", "Domestic material supplier", 3.2, "Lower logistics risk"),
      _alt("B", "Offshore supplier", 2.5, "Lower cost, higher lead uncertainty")],
     "Material grade and finish"),
    ("Secondary components", "Fasteners, inserts, utility parts", 1.1,
     [_alt("A", "Catalog parts", 1.1, "Fast procurement"),
      _alt("B", "Custom parts", 0.8, "Cheaper at volume")],
     "Part count and tolerance stack"),
    ("Conversion process", "Primary manufacturing operation", 2.4,
     [_alt("A", "Prototype process", 4.6, "Fast setup, expensive unit economics"),
      _alt("B", "Production process", 2.4, "Tooling-dependent, cheaper per unit")],
     "Tooling and cycle time"),
    ("Assembly + QC", "Final build and inspection", 1.6,
     [_alt("A", "Manual line", 1.6, "Flexible but variable throughput"),
      _alt("B", "Semi-automated line", 1.2, "Lower unit labor at scale")],
     "Labor minutes per unit"),
    ("Packaging + logistics prep", "Ship-ready packaging and labels", 0.8,
     [_alt("A", "Custom packaging", 0.8, "Market-ready look"),
      _alt("B", "Generic packaging", 0.45, "Lower cost for early runs")],
     "Packaging complexity"),
)


def infer_profile(project: Project) -> str:
    definition = project.product_definition
    text = " ".join(
        [project.idea or "", definition.manufacturing_category or "", *definition.key_materials]
    ).lower()
    if _ELECTRONICS.search(text):
        return "electronics"
    if _FOOD_CONTACT.search(text):
        return "food_contact"
    if _SOFT_GOODS.search(text):
        return "soft_goods"
    return "general_consumer"


def _bom_line(raw: Dict[str, Any]) -> BomLine:
    qty = strict_number(raw.get("qty_per_unit"))
    unit = strict_number(raw.get("unit_cost_usd"))
    ext = round(qty * unit, 4) if qty is not None and unit is not None else None
    alternates = []
    for entry in raw.get("alternates") or []:
        if isinstance(entry, dict):
            alternates.append(
                BomAlternate(
                    option=str(entry.get("option") or ""),
                    supplier_type=str(entry.get("supplier_type") or ""),
                    unit_cost_usd=strict_number(entry.get("unit_cost_usd")),
                    note=str(entry.get("note") or ""),
                )
            )
    return BomLine(
        component=str(raw.get("component") or "Component"),
        spec_intent=str(raw.get("spec_intent") or ""),
        qty_per_unit=qty if qty is not None else 1,
        unit_cost_usd=unit if unit is not None else 0,
        ext_cost_usd=ext,
        alternates=alternates,
        cost_driver=str(raw.get("cost_driver") or ""),
    )


def fallback_should_cost(project: Project) -> ShouldCostModel:
    profile = infer_profile(project)
    table = _ELECTRONICS_BOM if profile == "electronics" else _GENERAL_BOM
    bom = [
        _bom_line(
            {
                "component": component,
                "spec_intent": spec,
                "qty_per_unit": 1,
                "unit_cost_usd": unit,
                "alternates": alternates,
                "cost_driver": driver,
            }
        )
        for component, spec, unit, alternates, driver in table
    ]

    materials = round(sum(line.ext_cost_usd or 0 for line in bom[: max(1, len(bom) - 2)]), 4)
    assembly = round(bom[-2].ext_cost_usd or 0, 4)
    packaging = round(bom[-1].ext_cost_usd or 0, 4)
    tooling = 4500.0 if profile == "electronics" else 3200.0
    quality = round(materials * 0.04, 4)
    logistics = round(materials * 0.10, 4)
    duty = round(materials * 0.05, 4)
    landed = round(materials + assembly + packaging + quality + logistics + duty, 4)

    return ShouldCostModel(
        currency="USD",
        target_volume_units=TARGET_VOLUME_UNITS,
        profile=profile,
        bom=bom,
        cost_breakdown=CostBreakdown(
            materials_usd=materials,
            assembly_usd=assembly,
            tooling_usd=tooling,
            quality_usd=quality,
            packaging_usd=packaging,
            logistics_usd=logistics,
            duty_usd=duty,
            landed_unit_cost_usd=landed,
            first_article_cost_usd=round(tooling + landed * 50, 2),
        ),
        assumptions=list(ASSUMPTIONS),
        cost_levers=list(COST_LEVERS),
    )


def _provided(provided: Dict[str, Any], key: str, default: float) -> float:
    value = strict_number(provided.get(key))
    return value if value is not None else default


def normalize_should_cost(candidate: Any, fallback: ShouldCostModel) -> ShouldCostModel:
    """Rebuild a model-drafted estimate on top of ``fallback``.

    Derived figures missing from the draft are recomputed from the summed BOM.
    A draft without a usable BOM is discarded.
    """

    if not isinstance(candidate, dict):
        return fallback
    bom = [_bom_line(line) for line in candidate.get("bom") or [] if isinstance(line, dict)]
    if not bom:
        return fallback

    materials = round(sum(line.ext_cost_usd or 0 for line in bom), 4)
    provided = candidate.get("cost_breakdown") if isinstance(candidate.get("cost_breakdown"), dict) else {}
    assembly = _provided(provided, "assembly_usd", round(materials * 0.18, 4))
    packaging = _provided(provided, "packaging_usd", round(materials * 0.07, 4))
    quality = _provided(provided, "quality_usd", round(materials * 0.04, 4))
    logistics = _provided(provided, "logistics_usd", round(materials * 0.10, 4))
    duty = _provided(provided, "duty_usd", round(materials * 0.05, 4))
    tooling = _provided(provided, "tooling_usd", fallback.cost_breakdown.tooling_usd)
    landed = round(
        _provided(
            provided,
            "landed_unit_cost_usd",
            materials + assembly + packaging + quality + logistics + duty,
        ),
        4,
    )
    volume = strict_number(candidate.get("target_volume_units"))
    assumptions = candidate.get("assumptions")
    levers = candidate.get("cost_levers")

    return ShouldCostModel(
        currency=str(candidate.get("currency") or "USD"),
        target_volume_units=int(volume) if volume is not None else fallback.target_volume_units,
        profile=str(candidate.get("profile") or fallback.profile),
        bom=bom,
        cost_breakdown=CostBreakdown(
            materials_usd=materials,
            assembly_usd=assembly,
            tooling_usd=tooling,
            quality_usd=quality,
            packaging_usd=packaging,
            logistics_usd=logistics,
            duty_usd=duty,
            landed_unit_cost_usd=landed,
            first_article_cost_usd=_provided(
                provided, "first_article_cost_usd", round(tooling + landed * 50, 2)
            ),
        ),
        assumptions=[str(item) for item in assumptions] if isinstance(assumptions, list) and assumptions else list(fallback.assumptions),
        cost_levers=[str(item) for item in levers] if isinstance(levers, list) and levers else list(fallback.cost_levers),
    )


def build_should_cost_model(project: Project, llm=None) -> ShouldCostModel:
    fallback = fallback_should_cost(project)
    if llm is None:
        return fallback

    prompt = "\n\n".join(
        [
            "Build a should-cost model for a physical product pre-manufacturing stage.",
            "Return strict JSON with keys: currency, target_volume_units, profile, bom, cost_breakdown, "
            "assumptions, cost_levers.",
            "bom must be an array of line items with keys: component, spec_intent, qty_per_unit, "
            "unit_cost_usd, alternates (array), cost_driver.",
            "alternates items must include: option, supplier_type, unit_cost_usd, note.",
            "cost_breakdown keys: materials_usd, assembly_usd, tooling_usd, quality_usd, packaging_usd, "
            "logistics_usd, duty_usd, landed_unit_cost_usd, first_article_cost_usd.",
            "Keep numbers realistic and conservative. Currency must be USD.",
            f"Project idea: {project.idea}",
            f"Product definition: {json.dumps(project.product_definition.model_dump(), default=str)}",
            f"Constraints: {json.dumps(project.constraints.model_dump(), default=str)}",
        ]
    )
    generated: Optional[Any] = llm.generate_json_with_fallback(prompt, lambda: None, max_tokens=1400)
    return normalize_should_cost(generated, fallback)
