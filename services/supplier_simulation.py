"""Deterministic synthetic supplier quotes for demos and autopilot runs.

Quotes are a pure function of the project id, supplier id and idea, so the
same project always simulates the same replies.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, List, Optional

from models.project import Project
from models.supplier import Supplier
from utils.number_extraction import round_half_up


@dataclass
class SyntheticQuote:
    unit_price: float
    currency: str
    moq: int
    lead_time_days: int
    tooling_cost: int


@dataclass
class SimulatedReply:
    supplier_id: str
    subject: str
    reply_text: str
    quote: SyntheticQuote


def hash_seed(text: str = "") -> int:
    """31-multiplier string hash folded to a signed 32-bit integer, then abs."""

    value = 0
    for char in text:
        value = (value * 31 + ord(char)) & 0xFFFFFFFF
    if value >= 0x80000000:
        value -= 0x100000000
    return abs(value)


def seeded_value(seed: float, low: float, high: float) -> float:
    return low + (math.sin(seed) + 1) / 2 * (high - low)


def _category_base_price(category: str) -> float:
    text = (category or "").lower()
    if "electronics" in text:
        return 18.0
    if "food" in text:
        return 6.5
    if "soft" in text:
        return 11.0
    if "home" in text:
        return 14.0
    return 9.5


def _country_multiplier(country: str) -> float:
    text = (country or "").lower()
    for name, factor in (
        ("united states", 1.35),
        ("china", 0.84),
        ("vietnam", 0.8),
        ("malaysia", 0.9),
        ("mexico", 0.95),
    ):
        if name in text:
            return factor
    return 1.0


def generate_synthetic_quote(project: Project, supplier: Supplier) -> SyntheticQuote:
    seed = hash_seed(f"{project.id}:{supplier.id}:{project.idea}")
    base = _category_base_price(project.product_definition.manufacturing_category)
    multiplier = _country_multiplier(supplier.country)

    unit_price = round_half_up(base * multiplier * seeded_value(seed * 1.07, 0.85, 1.22) * 100) / 100
    return SyntheticQuote(
        unit_price=unit_price,
        currency="USD",
        moq=round_half_up(seeded_value(seed * 1.23, 320, 2800) / 10) * 10,
        lead_time_days=round_half_up(seeded_value(seed * 1.47, 16, 56)),
        tooling_cost=round_half_up(seeded_value(seed * 1.91, 700, 6800) / 50) * 50,
    )


def _format_price(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else f"{value:g}"


def build_synthetic_reply_text(supplier: Supplier, quote: SyntheticQuote) -> str:
    return "\n".join(
        [
            f"Hi team, this is {supplier.contact_person or 'our sales team'} from {supplier.name}.",
            "",
            "Thanks for your RFQ. Here is our initial offer:",
            f"- Unit price: ${_format_price(quote.unit_price)} {quote.currency}",
            f"- MOQ: {quote.moq} units",
            f"- Lead time: {quote.lead_time_days} days after artwork confirmation",
            f"- Tooling/setup cost: ${quote.tooling_cost}",
            "",
            "We can discuss adjustments based on target volume and forecast commitment.",
            "Best regards,",
            supplier.contact_person or "Sales Team",
        ]
    )


def simulate_supplier_replies(
    project: Project, supplier_ids: Optional[Iterable[str]] = None
) -> List[SimulatedReply]:
    wanted = set(supplier_ids or [])
    product_name = project.product_definition.product_name or project.name
    replies = []
    for supplier in project.suppliers:
        if wanted and supplier.id not in wanted:
            continue
        quote = generate_synthetic_quote(project, supplier)
        replies.append(
            SimulatedReply(
                supplier_id=supplier.id,
                subject=f"RE: RFQ {product_name}",
                reply_text=build_synthetic_reply_text(supplier, quote),
                quote=quote,
            )
        )
    return replies


def pick_best_supplier(suppliers: List[Supplier]) -> Optional[Supplier]:
    """Cheap heuristic front-runner: favours low price, MOQ and lead time.

    The first supplier wins ties.
    """

    best = None
    best_score = -math.inf
    for supplier in suppliers or []:
        unit_price = supplier.unit_price if supplier.unit_price else 999
        moq = supplier.moq if supplier.moq is not None else 99999
        lead = supplier.lead_time_days if supplier.lead_time_days is not None else 999
        confidence = supplier.confidence_score or 0

        score = (
            (1 / unit_price) * 38
            + (1 / max(1, moq)) * 2600
            + (1 / max(1, lead)) * 42
            + confidence * 12
        )
        if score > best_score:
            best_score = score
            best = supplier
    return best
