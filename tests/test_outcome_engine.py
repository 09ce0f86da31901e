import os
import sys

import pytest

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from models.project import Project
from services.compliance import assess_compliance
from services.rfq_contract import build_structured_rfq, render_rfq_text, select_variant
from services.should_cost import build_should_cost_model, fallback_should_cost, normalize_should_cost
from services.variants import build_manufacturing_variants, fallback_variants, normalize_variants


class StubLLM:
    def __init__(self, payload):
        self.payload = payload

    def generate_json_with_fallback(self, prompt, fallback, **kwargs):
        return self.payload


def _project(idea="A stackable storage crate", category="Home Goods"):
    project = Project(name="Crate", idea=idea)
    project.product_definition.manufacturing_category = category
    project.product_definition.product_name = "Crate"
    return project


def test_general_fallback_cost_breakdown():
    model = fallback_should_cost(_project())
    breakdown = model.cost_breakdown

    assert model.profile == "general_consumer"
    assert breakdown.materials_usd == pytest.approx(6.7)
    assert breakdown.assembly_usd == pytest.approx(1.6)
    assert breakdown.packaging_usd == pytest.approx(0.8)
    assert breakdown.tooling_usd == 3200
    assert breakdown.landed_unit_cost_usd == pytest.approx(10.373)
    assert breakdown.first_article_cost_usd == pytest.approx(3718.65)


def test_electronics_profile_uses_electronics_bom():
    model = fallback_should_cost(_project(idea="Bluetooth speaker with battery", category="Consumer Electronics"))
    assert model.profile == "electronics"
    assert model.cost_breakdown.tooling_usd == 4500


def test_should_cost_normalisation():
    fallback = fallback_should_cost(_project())
    assert normalize_should_cost("nope", fallback) is fallback
    assert normalize_should_cost({"bom": []}, fallback) is fallback

    model = normalize_should_cost(
        {"bom": [{"component": "Shell", "qty_per_unit": 2, "unit_cost_usd": 1.5}], "cost_breakdown": {"duty_usd": 0}},
        fallback,
    )
    assert model.cost_breakdown.materials_usd == 3
    assert model.cost_breakdown.duty_usd == 0
    assert model.cost_breakdown.assembly_usd == pytest.approx(0.54)
    assert model.assumptions == fallback.assumptions

    assert build_should_cost_model(_project(), llm=StubLLM(None)).cost_breakdown == fallback.cost_breakdown


def test_variants_fall_back_when_a_key_is_missing():
    should_cost = fallback_should_cost(_project())
    fallback = fallback_variants(should_cost)

    assert [variant.key for variant in fallback] == ["prototype", "pilot", "scale"]
    pilot = fallback[1]
    assert pilot.tooling.cost_usd == 1440
    assert pilot.unit_economics.landed_unit_cost_usd == pytest.approx(12.66)

    partial = [{"key": "pilot", "name": "Custom pilot"}, {"key": "scale"}]
    assert normalize_variants(partial, fallback) is fallback

    merged = normalize_variants(
        {"variants": [{"key": "Prototype"}, {"key": "pilot", "name": "Custom pilot", "timeline": {"production_days": 25}}, {"key": "scale"}]},
        fallback,
    )
    assert merged[1].name == "Custom pilot"
    assert merged[1].timeline.production_days == 25
    assert merged[1].timeline.sample_days == 14
    assert merged[0].name == fallback[0].name

    assert build_manufacturing_variants(_project(), None) == fallback_variants(None)
    assert fallback_variants(None)[1].unit_economics.landed_unit_cost_usd == pytest.approx(12.2)


def test_structured_rfq_fallback_terms():
    project = _project()
    project.constraints.budget_range = "$8-$12"
    project.constraints.compliance_requirements = "Prop 65, FDA"
    should_cost = fallback_should_cost(project)
    variants = fallback_variants(should_cost)

    rfq = build_structured_rfq(project, should_cost, variants, "pilot")
    terms = rfq.commercial_terms

    assert rfq.variant_key == "pilot"
    assert terms.target_unit_price_usd == 8
    assert terms.target_moq == 500
    assert terms.target_lead_time_days == 21
    assert terms.sample_lead_time_days == 8
    assert rfq.compliance_requirements[:2] == ["Prop 65", "FDA"]
    assert rfq.compliance_requirements[-1] == "Material declarations for restricted substances where applicable"

    text = render_rfq_text(rfq)
    assert f"RFQ ID: {rfq.rfq_id}" in text
    assert "- Target Unit Price (USD): 8" in text


def test_structured_rfq_llm_overlay_and_variant_selection():
    project = _project()
    should_cost = fallback_should_cost(project)
    variants = fallback_variants(should_cost)

    rfq = build_structured_rfq(
        project, should_cost, variants, "unknown",
        llm=StubLLM({"commercial_terms": {"incoterm": "FOB", "target_moq": "lots"}}),
    )

    assert rfq.variant_key == "prototype"
    assert rfq.commercial_terms.incoterm == "FOB"
    assert rfq.commercial_terms.target_moq == 500
    assert rfq.commercial_terms.target_unit_price_usd == pytest.approx(10.37)
    assert select_variant([], "pilot") is None


def test_compliance_assessment():
    result = assess_compliance("United States", "Consumer Electronics", ["Lithium battery"])
    assert result.import_feasibility == "Medium"
    assert "FCC/EMC" in result.required_checks
    assert "HTS code validation" in result.required_checks

    result = assess_compliance("Germany", "Beauty", ["cosmetic cream"])
    assert result.import_feasibility == "Low"
    assert result.required_checks[-1] == "Destination-country import code validation"

    assert assess_compliance("United States", "Home Goods", []).import_feasibility == "High"
