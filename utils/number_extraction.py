"""Regex helpers pulling commercial figures out of free-form supplier text.

Each extractor tries a keyword-scoped pattern first and only falls back to a
looser pattern where one is defined. All of them return ``None`` instead of
raising when nothing usable is found.
"""

from __future__ import annotations

import math
import re
from typing import Any, Optional

_SCOPED_PRICE = re.compile(r"(?:price|unit cost|cost)\D{0,20}(\$?\d+(?:\.\d+)?)", re.IGNORECASE)
_DOLLAR_PRICE = re.compile(r"\$(\d+(?:\.\d+)?)")
_SCOPED_MOQ = re.compile(r"(?:moq|minimum order|minimum quantity)\D{0,20}(\d+)", re.IGNORECASE)
_SCOPED_TOOLING = re.compile(r"(?:tooling|mold|setup)\D{0,20}(\$?\d+(?:\.\d+)?)", re.IGNORECASE)
_LEAD_TIME = re.compile(r"(\d+)\s*(day|days|week|weeks)", re.IGNORECASE)
_FIRST_NUMBER = re.compile(r"\d+(?:\.\d+)?")
_WHITESPACE = re.compile(r"\s+")


def to_number(value: Any) -> Optional[float]:
    """Coerce ``value`` to a finite float, returning ``None`` otherwise."""

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip().replace("$", "").replace(",", "")
        if not value:
            return None
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(numeric) or math.isinf(numeric):
        return None
    return numeric


def strict_number(value: Any) -> Optional[float]:
    """Accept only real numeric values (no strings) that are finite."""

    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if math.isnan(value) or math.isinf(value):
        return None
    return float(value)


def round_half_up(value: float) -> int:
    """Round to the nearest integer with halves going up."""

    return int(math.floor(value + 0.5))


def normalize_text(value: Any) -> str:
    return _WHITESPACE.sub(" ", str(value or "")).strip()


def first_number(text: Any) -> Optional[float]:
    """First number appearing anywhere in ``text`` (e.g. ``"500-1000 units"``)."""

    match = _FIRST_NUMBER.search(str(text or ""))
    return to_number(match.group(0)) if match else None


def extract_price(text: str = "") -> Optional[float]:
    normalized = str(text or "")
    scoped = _SCOPED_PRICE.search(normalized)
    if scoped:
        return to_number(scoped.group(1))
    dollar = _DOLLAR_PRICE.search(normalized)
    return to_number(dollar.group(1)) if dollar else None


def extract_moq(text: str = "") -> Optional[float]:
    scoped = _SCOPED_MOQ.search(str(text or ""))
    return to_number(scoped.group(1)) if scoped else None


def extract_tooling_cost(text: str = "") -> Optional[float]:
    scoped = _SCOPED_TOOLING.search(str(text or ""))
    return to_number(scoped.group(1)) if scoped else None


def extract_lead_time_days(text: str = "") -> Optional[float]:
    match = _LEAD_TIME.search(str(text or ""))
    if not match:
        return None
    value = to_number(match.group(1))
    if value is None:
        return None
    return value * 7 if match.group(2).lower().startswith("week") else value


def format_number(value: Any) -> str:
    """Render a figure for message text, dropping a trailing ``.0``."""

    numeric = to_number(value)
    if numeric is None:
        return "N/A"
    if numeric.is_integer():
        return str(int(numeric))
    return f"{numeric:g}" if abs(numeric) < 1e15 else str(numeric)
