import os
import sys

import pytest

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from models.project import Project
from models.supplier import Supplier
from services.award_gate import resolve_weights, risk_score_from_flags, run_award_gate
from services.errors import NoSuppliersAvailableError


def _suppliers():
    return [
        Supplier(
            id="cheap",
            name="Cheap Co",
            country="China",
            distance_complexity="High",
            pricing={"unit_price": 6.0},
            moq=1500,
            lead_time_days=40,
            confidence_score=0.6,
            tooling_cost=1200,
            risk_flags=["No export history"],
        ),
        Supplier(
            id="local",
            name="Local Works",
            country="United States",
            pricing={"unit_price": 9.5},
            moq=300,
            lead_time_days=20,
            confidence_score=0.8,
        ),
        Supplier(
            id="quiet",
            name="Quiet Ltd",
            country="Vietnam",
            distance_complexity="Medium",
            confidence_score=0.3,
        ),
    ]


def _project(suppliers):
    project = Project(name="Lamp")
    project.constraints.moq_tolerance = "500-1000 units"
    project.suppliers = suppliers
    return project


def _scores(decision):
    return {entry.supplier_id: entry.total_score for entry in decision.ranking}


def test_award_is_deterministic():
    first = run_award_gate(_project(_suppliers()))
    second = run_award_gate(_project(_suppliers()))

    assert [entry.supplier_id for entry in first.ranking] == [entry.supplier_id for entry in second.ranking]
    assert _scores(first) == _scores(second)
    assert first.recommended_supplier_id == first.ranking[0].supplier_id


def test_award_ignores_input_order():
    forward = run_award_gate(_project(_suppliers()))
    backward = run_award_gate(_project(list(reversed(_suppliers()))))

    assert _scores(forward) == _scores(backward)
    assert [e.supplier_id for e in forward.ranking] == [e.supplier_id for e in backward.ranking]


def test_ranking_is_sorted_and_uses_fallback_cost():
    decision = run_award_gate(_project(_suppliers()))
    totals = [entry.total_score for entry in decision.ranking]
    assert totals == sorted(totals, reverse=True)

    quiet = next(entry for entry in decision.ranking if entry.supplier_id == "quiet")
    assert quiet.quoted_unit_cost_usd is None
    assert quiet.landed_unit_cost_usd == pytest.approx(12.0 * 1.16)
    assert quiet.lead_time_days == 45
    assert quiet.moq == 1000
    assert quiet.reasons[0] == "Used should-cost fallback for missing quote."


def test_five_flags_give_risk_point_four():
    assert risk_score_from_flags(["a", "b", "c", "d", "e"]) == pytest.approx(0.4)
    assert risk_score_from_flags(["x"] * 10) == pytest.approx(0.15)
    assert risk_score_from_flags(None) == 1.0


def test_empty_suppliers_raise():
    with pytest.raises(NoSuppliersAvailableError):
        run_award_gate(_project([]))


def test_sample_po_for_recommended_supplier():
    project = _project([_suppliers()[0]])
    decision = run_award_gate(project)
    po = decision.sample_po

    assert po.supplier_id == "cheap"
    assert po.sample_quantity_units == 50
    assert po.unit_price_usd == 6.0
    assert po.tooling_cost_usd == 1200
    assert po.estimated_total_usd == 1500
    assert po.po_id.startswith("SAMPLE-")
    assert decision.ranking[0].score_breakdown.cost_score == 1.0


def test_weight_overrides_ignore_non_numeric_values():
    weights = resolve_weights({"cost": 0.9, "lead": "fast", "unknown": 1})
    assert weights["cost"] == 0.9
    assert weights["lead"] == 0.20
    assert "unknown" not in weights


def _import_vs_domestic():
    return _project(
        [
            Supplier(id="cn", name="Shenzhen Mold", country="China", pricing={"unit_price": 8.90}, lead_time_days=28),
            Supplier(id="us", name="Ohio Plastics", country="United States", pricing={"unit_price": 10.60}, lead_time_days=16),
        ]
    )


def test_cheaper_import_beats_faster_domestic_supplier_on_default_weights():
    first = run_award_gate(_import_vs_domestic())
    second = run_award_gate(_import_vs_domestic())

    assert first.recommended_supplier_id == "cn"
    assert _scores(first) == {"cn": pytest.approx(74.22), "us": pytest.approx(34.56)}
    assert [entry.model_dump() for entry in first.ranking] == [entry.model_dump() for entry in second.ranking]

    cn, us = first.ranking
    assert cn.landed_unit_cost_usd == pytest.approx(11.036)
    assert us.landed_unit_cost_usd == pytest.approx(11.448)
    assert cn.score_breakdown.cost_score == 1.0
    assert us.score_breakdown.lead_score == pytest.approx(0.9778)


def test_missing_confidence_scores_as_neutral():
    project = _project([Supplier(id="blank", name="Blank Co", confidence_score=None, pricing={"unit_price": 7})])

    entry = run_award_gate(project).recommended
    assert entry.confidence == 0.5
    assert entry.score_breakdown.confidence_score == 0.5
