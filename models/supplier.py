from __future__ import annotations

import math
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from models.checklist import utc_now


class SupplierStatus(str, Enum):
    IDENTIFIED = "identified"
    CONTACTED = "contacted"
    RESPONDED = "responded"
    NEGOTIATING = "negotiating"
    SHORTLISTED = "shortlisted"
    OUTREACH_FAILED = "outreach_failed"
    SELECTED = "selected"
    FINALIZED = "finalized"


def finite_or_none(value: Any) -> Optional[float]:
    """Return ``value`` as a float when it is a finite number, else ``None``."""

    if value is None or isinstance(value, bool):
        return None
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(numeric) or math.isinf(numeric):
        return None
    return numeric


class Pricing(BaseModel):
    unit_price: Optional[float] = None
    currency: str = "USD"

    @field_validator("unit_price", mode="before")
    @classmethod
    def _finite_price(cls, value):
        return finite_or_none(value)


class Supplier(BaseModel):
    model_config = ConfigDict(use_enum_values=True, validate_assignment=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str = "Unknown supplier"
    email: str = ""
    contact_person: str = ""
    phone: str = ""
    whatsapp_number: str = ""
    location: str = ""
    city: str = ""
    state: str = ""
    country: str = ""
    website: str = ""
    source_url: str = ""
    export_capability: str = "Unknown"
    distance_complexity: str = "Unknown"
    import_feasibility: str = "Unknown"
    reasons: List[str] = Field(default_factory=list)

    pricing: Pricing = Field(default_factory=Pricing)
    moq: Optional[float] = None
    moq_kg: Optional[float] = None
    price_inr_per_kg: Optional[float] = None
    lead_time_days: Optional[float] = None
    tooling_cost: Optional[float] = None
    confidence_score: float = 0.5
    risk_flags: List[str] = Field(default_factory=list)
    follow_ups_sent: int = 0

    selected: bool = False
    finalized: bool = False
    status: SupplierStatus = SupplierStatus.IDENTIFIED
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator(
        "moq", "moq_kg", "price_inr_per_kg", "lead_time_days", "tooling_cost",
        mode="before",
    )
    @classmethod
    def _finite_numbers(cls, value):
        return finite_or_none(value)

    @field_validator("confidence_score", mode="before")
    @classmethod
    def _clamp_confidence(cls, value):
        numeric = finite_or_none(value)
        if numeric is None:
            return 0.5
        return min(1.0, max(0.0, numeric))

    @property
    def unit_price(self) -> Optional[float]:
        return self.pricing.unit_price

    def contact_for(self, channel: str) -> str:
        """Return the delivery address for ``channel`` (email or whatsapp)."""

        if channel == "email":
            return (self.email or "").strip().lower()
        return (self.whatsapp_number or self.phone or "").strip()
