from __future__ import annotations

from typing import Any

IMPORT_FEASIBILITY_SCORE = {"high": 1.0, "medium": 0.65, "low": 0.35}
DISTANCE_COMPLEXITY_SCORE = {"low": 1.0, "medium": 0.7, "high": 0.45}


def compute_supplier_confidence(supplier: Any) -> float:
    """Prior confidence from feasibility tags and how complete the quote is."""

    import_score = IMPORT_FEASIBILITY_SCORE.get((supplier.import_feasibility or "").lower(), 0.5)
    distance_score = DISTANCE_COMPLEXITY_SCORE.get((supplier.distance_complexity or "").lower(), 0.5)

    quoted = [supplier.unit_price, supplier.moq, supplier.lead_time_days, supplier.tooling_cost]
    data_score = 0.25 * sum(1 for value in quoted if value is not None)

    score = import_score * 0.35 + distance_score * 0.25 + data_score * 0.4
    return round(max(0.0, min(1.0, score)), 2)
