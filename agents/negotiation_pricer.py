"""Deterministic stop rules and counter-offer maths for negotiation rounds."""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass
from typing import Any, Dict, Mapping, Optional

from utils.number_extraction import round_half_up, to_number

MAX_AUTOMATED_ROUNDS = 2

STOP_MAX_ROUNDS = "Max automated negotiation rounds reached"
STOP_TARGET_REACHED = "Target terms reached"
STOP_HUMAN_REVIEW = "Ambiguous legal/commercial term detected, requires human review"
STOP_SHORTLISTED = "Supplier already shortlisted"
CONTINUE = "continue"

PRICE_FLOOR_RATIO = 0.82

_ESCALATION_TERMS = re.compile(
    r"legal|exclusive|advance payment|non-cancelable", re.IGNORECASE
)


@dataclass
class NegotiationTarget:
    unit_price_inr_per_kg: Optional[float] = None
    moq_kg: Optional[float] = None
    lead_time_days: Optional[float] = None

    @classmethod
    def from_mapping(cls, raw: Optional[Mapping[str, Any]]) -> "NegotiationTarget":
        if isinstance(raw, NegotiationTarget):
            return raw
        data = raw or {}
        return cls(
            unit_price_inr_per_kg=to_number(data.get("unit_price_inr_per_kg")),
            moq_kg=to_number(data.get("moq_kg")),
            lead_time_days=to_number(data.get("lead_time_days")),
        )


@dataclass
class StopDecision:
    stop: bool
    reason: str


@dataclass
class CounterOffer:
    unit_price_inr_per_kg: Optional[float]
    moq_kg: Optional[float]
    lead_time_days: Optional[float]
    floor_guardrail: Optional[float]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _field(source: Any, name: str) -> Any:
    if source is None:
        return None
    if isinstance(source, Mapping):
        return source.get(name)
    return getattr(source, name, None)


def _at_or_below(value: Any, limit: Optional[float]) -> bool:
    if limit is None:
        return False
    numeric = to_number(value)
    return numeric is not None and numeric <= limit


def evaluate_negotiation_stop(
    supplier: Any,
    target: NegotiationTarget,
    rounds: int,
    latest_parsed: Optional[Any] = None,
    max_rounds: int = MAX_AUTOMATED_ROUNDS,
) -> StopDecision:
    """Decide whether another automated round may be sent.

    Rules are checked in order and the first match wins. A missing target
    dimension never counts as satisfied, and neither does a missing value in
    the latest reply.
    """

    if rounds >= max_rounds:
        return StopDecision(True, STOP_MAX_ROUNDS)

    if latest_parsed:
        price_ok = _at_or_below(
            _field(latest_parsed, "unit_price_inr_per_kg"), target.unit_price_inr_per_kg
        )
        moq_ok = _at_or_below(_field(latest_parsed, "moq_kg"), target.moq_kg)
        lead_ok = _at_or_below(_field(latest_parsed, "lead_time_days"), target.lead_time_days)
        if price_ok and moq_ok and lead_ok:
            return StopDecision(True, STOP_TARGET_REACHED)

        uncertainties = _field(latest_parsed, "uncertainties") or []
        if isinstance(uncertainties, list) and any(
            _ESCALATION_TERMS.search(str(item)) for item in uncertainties
        ):
            return StopDecision(True, STOP_HUMAN_REVIEW)

    if _field(supplier, "status") == "shortlisted":
        return StopDecision(True, STOP_SHORTLISTED)

    return StopDecision(False, CONTINUE)


def resolve_counter_target(supplier: Any, target: NegotiationTarget) -> CounterOffer:
    """Compute the terms to request in the next round.

    The requested price never drops below 82% of the supplier's current
    quote and never rises above it. Explicit MOQ and lead-time targets are
    used as given; otherwise modest reductions of the current terms are
    proposed.
    """

    pricing = _field(supplier, "pricing")
    current = to_number(_field(supplier, "price_inr_per_kg")) or to_number(
        _field(pricing, "unit_price")
    )
    requested = target.unit_price_inr_per_kg

    floor = round(current * PRICE_FLOOR_RATIO, 2) if current is not None else requested
    known = [value for value in (current, requested) if value is not None]
    baseline = min(known) if known else floor
    unit_price = round(max(floor, baseline), 2) if baseline is not None else None

    current_moq = to_number(_field(supplier, "moq_kg")) or to_number(_field(supplier, "moq"))
    if target.moq_kg is not None:
        moq = target.moq_kg
    elif current_moq is not None:
        moq = max(25, round_half_up(current_moq * 0.75))
    else:
        moq = None

    current_lead = to_number(_field(supplier, "lead_time_days"))
    if target.lead_time_days is not None:
        lead = target.lead_time_days
    elif current_lead is not None:
        lead = max(3, round_half_up(current_lead * 0.85))
    else:
        lead = None

    return CounterOffer(
        unit_price_inr_per_kg=unit_price,
        moq_kg=moq,
        lead_time_days=lead,
        floor_guardrail=floor,
    )


def build_negotiation_target(supplier: Any) -> Dict[str, Optional[float]]:
    """Opening targets for a manufacturing supplier based on its quote."""

    unit_price = to_number(_field(_field(supplier, "pricing"), "unit_price"))
    moq = to_number(_field(supplier, "moq"))
    lead = to_number(_field(supplier, "lead_time_days"))
    return {
        "unit_price": round(unit_price * 0.9, 2) if unit_price is not None else None,
        "moq": max(100, round_half_up(moq * 0.8)) if moq is not None else None,
        "lead_time_days": max(10, round_half_up(lead * 0.85)) if lead is not None else None,
    }
