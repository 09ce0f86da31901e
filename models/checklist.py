from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import List

from pydantic import BaseModel, ConfigDict, Field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ChecklistStatus(str, Enum):
    """Lifecycle of a single checklist item."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    VALIDATED = "validated"
    BLOCKED = "blocked"


class ModuleStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    VALIDATED = "validated"
    BLOCKED = "blocked"


class ChecklistItem(BaseModel):
    model_config = ConfigDict(use_enum_values=True, validate_assignment=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    key: str
    title: str = ""
    description: str = ""
    module: str = "checklist"
    depends_on: List[str] = Field(default_factory=list)
    status: ChecklistStatus = ChecklistStatus.PENDING
    evidence: str = ""
    next_action: str = ""
    updated_at: datetime = Field(default_factory=utc_now)
