"""Structured extraction of supplier quotes from reply text."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from utils.number_extraction import (
    extract_lead_time_days,
    extract_moq,
    extract_price,
    extract_tooling_cost,
    strict_number,
)

logger = logging.getLogger(__name__)

HUMAN_REVIEW_CONFIDENCE = 0.6

_LEGAL_UNCERTAINTY = re.compile(r"legal|compliance", re.IGNORECASE)
_NON_STANDARD_TERMS = re.compile(r"exclusive|non-cancelable|advance payment", re.IGNORECASE)


@dataclass
class ParsedReply:
    unit_price: Optional[float] = None
    currency: str = "USD"
    moq: Optional[float] = None
    lead_time_days: Optional[float] = None
    tooling_cost: Optional[float] = None
    uncertainties: List[str] = field(default_factory=list)
    follow_up_questions: List[str] = field(default_factory=list)
    confidence: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class InterventionDecision:
    requires_human: bool
    reason: str


def fallback_parse(reply_text: str) -> ParsedReply:
    unit_price = extract_price(reply_text)
    moq = extract_moq(reply_text)
    lead_time_days = extract_lead_time_days(reply_text)
    tooling_cost = extract_tooling_cost(reply_text)

    extracted = sum(
        1 for value in (unit_price, moq, lead_time_days, tooling_cost) if value is not None
    )

    uncertainties: List[str] = []
    if unit_price is None:
        uncertainties.append("Unit price missing")
    if moq is None:
        uncertainties.append("MOQ missing")
    if lead_time_days is None:
        uncertainties.append("Lead time missing")

    return ParsedReply(
        unit_price=unit_price,
        currency="USD",
        moq=moq,
        lead_time_days=lead_time_days,
        tooling_cost=tooling_cost,
        uncertainties=uncertainties,
        follow_up_questions=[f"Can you clarify: {item.lower()}?" for item in uncertainties],
        confidence=round(extracted / 4, 2),
    )


def _string_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(item) for item in value if item not in (None, "")]


def coerce_parsed_reply(raw: Any) -> ParsedReply:
    """Clamp an untrusted (LLM-produced) mapping into a :class:`ParsedReply`."""

    if isinstance(raw, ParsedReply):
        return raw
    data = raw if isinstance(raw, dict) else {}
    confidence = strict_number(data.get("confidence"))
    return ParsedReply(
        unit_price=strict_number(data.get("unit_price")),
        currency=str(data.get("currency") or "USD"),
        moq=strict_number(data.get("moq")),
        lead_time_days=strict_number(data.get("lead_time_days")),
        tooling_cost=strict_number(data.get("tooling_cost")),
        uncertainties=_string_list(data.get("uncertainties")),
        follow_up_questions=_string_list(data.get("follow_up_questions")),
        confidence=0.4 if confidence is None else min(1.0, max(0.0, confidence)),
    )


def parse_supplier_reply(
    reply_text: str,
    *,
    product_definition: Optional[Dict[str, Any]] = None,
    supplier: Optional[Dict[str, Any]] = None,
    llm=None,
) -> ParsedReply:
    """Parse ``reply_text`` with the LLM when available, else with regexes."""

    if llm is None:
        return fallback_parse(reply_text)

    prompt = "\n\n".join(
        [
            "Extract supplier response details from this message.",
            "Return strict JSON object with keys:",
            "unit_price (number|null), currency, moq (number|null), lead_time_days (number|null), "
            "tooling_cost (number|null), uncertainties (array), follow_up_questions (array), "
            "confidence (0-1)",
            f"Project: {json.dumps(product_definition or {}, default=str)}",
            f"Supplier: {json.dumps(supplier or {}, default=str)}",
            f"Reply: {reply_text}",
        ]
    )
    raw = llm.generate_json_with_fallback(prompt, lambda: fallback_parse(reply_text))
    return coerce_parsed_reply(raw)


def has_legal_risk(uncertainties: Iterable[str]) -> bool:
    return any(_LEGAL_UNCERTAINTY.search(str(item)) for item in uncertainties or [])


def has_non_standard_terms(reply_text: str) -> bool:
    return bool(_NON_STANDARD_TERMS.search(reply_text or ""))


def classify_human_intervention(
    confidence: float,
    uncertainties: Iterable[str],
    legal_risk: bool = False,
    non_standard_terms: bool = False,
) -> InterventionDecision:
    if legal_risk or non_standard_terms:
        return InterventionDecision(True, "Legal or non-standard terms detected")
    if confidence < HUMAN_REVIEW_CONFIDENCE or list(uncertainties or []):
        return InterventionDecision(True, "Low confidence or missing supplier details")
    return InterventionDecision(False, "Confidence threshold met")
