"""Parsing of ingredient-sourcing replies quoted in INR per kilogram."""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from utils.number_extraction import normalize_text, round_half_up, to_number

_UNITS = r"(kg|kgs|kilogram|kilograms|ton|tons|tonne|tonnes|quintal|quintals)"
_CURRENCY = r"(?:inr|rs\.?|₹)"

_STRICT_PRICE_PATTERNS = (
    re.compile(_CURRENCY + r"\s*(\d+(?:\.\d+)?)\s*\/?\s*" + _UNITS, re.IGNORECASE),
    re.compile(r"(\d+(?:\.\d+)?)\s*" + _CURRENCY + r"\s*\/?\s*" + _UNITS, re.IGNORECASE),
    re.compile(r"(\d+(?:\.\d+)?)\s*\/?\s*" + _UNITS + r"\s*" + _CURRENCY, re.IGNORECASE),
)
_LOOSE_PRICE = re.compile(_CURRENCY + r"\s*(\d+(?:\.\d+)?)", re.IGNORECASE)
_EXPLICIT_MOQ = re.compile(
    r"(?:moq|minimum order(?: quantity)?|min\.?(?:imum)?\s*order)\s*[:\-]?\s*(\d+(?:\.\d+)?)\s*"
    + _UNITS
    + "?",
    re.IGNORECASE,
)
_VALUE_AND_UNIT = re.compile(r"(\d+(?:\.\d+)?)\s*" + _UNITS + "?", re.IGNORECASE)
_MOQ_HINT = re.compile(r"moq|min(?:imum)?\s*order|order quantity|first order", re.IGNORECASE)
_LEAD_DAYS = re.compile(r"(\d+(?:\.\d+)?)\s*(day|days)", re.IGNORECASE)
_LEAD_WEEKS = re.compile(r"(\d+(?:\.\d+)?)\s*(week|weeks)", re.IGNORECASE)
_PAYMENT_TERMS = re.compile(
    r"((?:\d{1,3}%\s*(?:advance|deposit).{0,40}\d{1,3}%\s*"
    r"(?:before shipment|against dispatch|after delivery))|(?:net\s*\d+))",
    re.IGNORECASE,
)
_COMPLIANCE_KEYWORDS = re.compile(r"food\s*grade|fssai|iso|haccp", re.IGNORECASE)

_KG_PER_UNIT = {
    "kg": 1,
    "kgs": 1,
    "kilogram": 1,
    "kilograms": 1,
    "ton": 1000,
    "tons": 1000,
    "tonne": 1000,
    "tonnes": 1000,
    "quintal": 100,
    "quintals": 100,
}


@dataclass
class IngredientParsedReply:
    unit_price_inr_per_kg: Optional[float] = None
    moq_kg: Optional[float] = None
    lead_time_days: Optional[float] = None
    payment_terms: Optional[str] = None
    uncertainties: List[str] = field(default_factory=list)
    confidence: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _kg_factor(unit: Optional[str]) -> int:
    return _KG_PER_UNIT.get((unit or "kg").lower(), 1)


def extract_price_inr_per_kg(text: str = "") -> Optional[float]:
    normalized = normalize_text(text)
    if not normalized:
        return None

    for pattern in _STRICT_PRICE_PATTERNS:
        match = pattern.search(normalized)
        if match:
            price = to_number(match.group(1))
            if price is not None:
                return round(price / _kg_factor(match.group(2)), 2)
            break

    loose = _LOOSE_PRICE.search(normalized)
    if loose:
        price = to_number(loose.group(1))
        if price is not None:
            return round(price, 2)
    return None


def extract_moq_kg(text: str = "") -> Optional[int]:
    normalized = normalize_text(text).lower()
    if not normalized:
        return None

    explicit = _EXPLICIT_MOQ.search(normalized)
    if explicit:
        value = to_number(explicit.group(1))
        if value is not None:
            return round_half_up(value * _kg_factor(explicit.group(2)))

    if _MOQ_HINT.search(normalized):
        generic = _VALUE_AND_UNIT.search(normalized)
        if generic:
            value = to_number(generic.group(1))
            if value is not None:
                return round_half_up(value * _kg_factor(generic.group(2)))
    return None


def extract_lead_time_days(text: str = "") -> Optional[int]:
    normalized = normalize_text(text).lower()
    if not normalized:
        return None

    days = _LEAD_DAYS.search(normalized)
    if days:
        return round_half_up(float(days.group(1)))
    weeks = _LEAD_WEEKS.search(normalized)
    if weeks:
        return round_half_up(float(weeks.group(1)) * 7)
    return None


def extract_payment_terms(text: str = "") -> Optional[str]:
    normalized = normalize_text(text)
    if not normalized:
        return None
    match = _PAYMENT_TERMS.search(normalized)
    return match.group(1) if match else None


def parse_ingredient_reply(reply_text: str = "") -> IngredientParsedReply:
    price = extract_price_inr_per_kg(reply_text)
    moq_kg = extract_moq_kg(reply_text)
    lead_time_days = extract_lead_time_days(reply_text)
    payment_terms = extract_payment_terms(reply_text)

    uncertainties: List[str] = []
    if price is None:
        uncertainties.append("Unit price missing")
    if moq_kg is None:
        uncertainties.append("MOQ missing")
    if lead_time_days is None:
        uncertainties.append("Lead time missing")
    if not _COMPLIANCE_KEYWORDS.search(reply_text or ""):
        uncertainties.append("Food-grade/compliance proof not mentioned")

    extracted = sum(
        1 for value in (price, moq_kg, lead_time_days, payment_terms) if value is not None
    )
    return IngredientParsedReply(
        unit_price_inr_per_kg=price,
        moq_kg=moq_kg,
        lead_time_days=lead_time_days,
        payment_terms=payment_terms or None,
        uncertainties=uncertainties,
        confidence=round(min(1.0, extracted / 4), 2),
    )
