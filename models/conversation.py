from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from models.checklist import utc_now


class Direction(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class Channel(str, Enum):
    EMAIL = "email"
    WHATSAPP = "whatsapp"


class ConversationSource(str, Enum):
    """Values stored under ``metadata["source"]``."""

    OUTREACH = "outreach"
    FOLLOWUP = "followup"
    NEGOTIATION_DRAFT = "negotiation_draft"
    SOURCING_NEGOTIATION = "sourcing_negotiation"
    MANUAL_INGEST = "manual_ingest"
    SIMULATION = "simulation"
    SOURCING_MANUAL_INGEST = "sourcing_manual_ingest"
    SOURCING_IMAP_SYNC = "sourcing_imap_sync"
    SOURCING_TWILIO_SYNC = "sourcing_twilio_sync"


class Conversation(BaseModel):
    """A single message exchanged with a supplier.

    Conversations form an append-only log: instances are frozen and callers
    prepend new entries to the project's list instead of editing old ones.
    """

    model_config = ConfigDict(frozen=True, use_enum_values=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    supplier_id: Optional[str] = None
    direction: Direction
    channel: Channel = Channel.EMAIL
    subject: str = ""
    message: str = ""
    parsed: Optional[Dict[str, Any]] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utc_now)

    @property
    def source(self) -> Optional[str]:
        return self.metadata.get("source")
