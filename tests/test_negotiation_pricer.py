import os
import sys
from types import SimpleNamespace

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from agents.negotiation_pricer import (
    CONTINUE,
    STOP_HUMAN_REVIEW,
    STOP_MAX_ROUNDS,
    STOP_SHORTLISTED,
    STOP_TARGET_REACHED,
    NegotiationTarget,
    build_negotiation_target,
    evaluate_negotiation_stop,
    resolve_counter_target,
)


def _supplier(**overrides):
    defaults = {
        "status": "responded",
        "price_inr_per_kg": 100.0,
        "pricing": {"unit_price": 100.0},
        "moq_kg": 500.0,
        "moq": 500.0,
        "lead_time_days": 10.0,
    }
    defaults.update(overrides)
    return SimpleNamespace(**defaults)


TARGET = NegotiationTarget(unit_price_inr_per_kg=45, moq_kg=200, lead_time_days=10)


def test_max_rounds_takes_precedence():
    latest = {"unit_price_inr_per_kg": 40, "moq_kg": 100, "lead_time_days": 7}
    decision = evaluate_negotiation_stop(_supplier(), TARGET, rounds=2, latest_parsed=latest)
    assert decision.stop
    assert decision.reason == STOP_MAX_ROUNDS


def test_target_reached_when_every_dimension_meets_target():
    latest = {"unit_price_inr_per_kg": 40, "moq_kg": 100, "lead_time_days": 10}
    decision = evaluate_negotiation_stop(_supplier(), TARGET, rounds=0, latest_parsed=latest)
    assert decision.reason == STOP_TARGET_REACHED


def test_missing_values_never_satisfy_target():
    latest = {"unit_price_inr_per_kg": 40, "moq_kg": None, "lead_time_days": 7}
    assert evaluate_negotiation_stop(_supplier(), TARGET, 0, latest).reason == CONTINUE

    open_target = NegotiationTarget(unit_price_inr_per_kg=45)
    latest = {"unit_price_inr_per_kg": 40, "moq_kg": 100, "lead_time_days": 7}
    assert evaluate_negotiation_stop(_supplier(), open_target, 0, latest).reason == CONTINUE


def test_legal_uncertainty_escalates():
    latest = {"unit_price_inr_per_kg": 90, "uncertainties": ["Exclusive supply clause"]}
    assert evaluate_negotiation_stop(_supplier(), TARGET, 1, latest).reason == STOP_HUMAN_REVIEW


def test_shortlisted_supplier_stops():
    decision = evaluate_negotiation_stop(_supplier(status="shortlisted"), TARGET, 0, None)
    assert decision.reason == STOP_SHORTLISTED
    assert not evaluate_negotiation_stop(_supplier(), TARGET, 0, None).stop


def test_counter_price_is_bounded_by_floor_and_current_quote():
    supplier = _supplier()
    assert resolve_counter_target(supplier, NegotiationTarget(unit_price_inr_per_kg=50)).unit_price_inr_per_kg == 82
    assert resolve_counter_target(supplier, NegotiationTarget(unit_price_inr_per_kg=90)).unit_price_inr_per_kg == 90
    assert resolve_counter_target(supplier, NegotiationTarget(unit_price_inr_per_kg=120)).unit_price_inr_per_kg == 100
    counter = resolve_counter_target(supplier, NegotiationTarget())
    assert counter.unit_price_inr_per_kg == 100
    assert counter.floor_guardrail == 82


def test_counter_reduces_moq_and_lead_without_targets():
    counter = resolve_counter_target(_supplier(), NegotiationTarget())
    assert counter.moq_kg == 375
    assert counter.lead_time_days == 9

    counter = resolve_counter_target(_supplier(moq_kg=20, lead_time_days=3), NegotiationTarget(moq_kg=150))
    assert counter.moq_kg == 150
    assert counter.lead_time_days == 3


def test_counter_without_any_quote_uses_requested_price():
    supplier = _supplier(price_inr_per_kg=None, pricing={}, moq_kg=None, moq=None, lead_time_days=None)
    counter = resolve_counter_target(supplier, NegotiationTarget(unit_price_inr_per_kg=55))
    assert counter.unit_price_inr_per_kg == 55
    assert counter.moq_kg is None
    assert counter.lead_time_days is None


def test_target_from_mapping_and_opening_targets():
    target = NegotiationTarget.from_mapping({"unit_price_inr_per_kg": "48", "moq_kg": None})
    assert target.unit_price_inr_per_kg == 48
    assert target.moq_kg is None

    opening = build_negotiation_target(
        SimpleNamespace(pricing=SimpleNamespace(unit_price=10.0), moq=1000, lead_time_days=30)
    )
    assert opening == {"unit_price": 9.0, "moq": 800, "lead_time_days": 26}
