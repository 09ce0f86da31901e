from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from models.checklist import ChecklistItem, ModuleStatus, utc_now
from models.conversation import Conversation
from models.outcome import OutcomeEngineState
from models.supplier import Supplier

MANUFACTURING_MODULES = (
    "ideation",
    "checklist",
    "discovery",
    "outreach",
    "responses",
    "negotiation",
    "success",
)
SOURCING_MODULES = ("discovery", "outreach", "responses", "negotiation")


def _module_map(names) -> Dict[str, str]:
    return {name: ModuleStatus.PENDING.value for name in names}


class ProjectConstraints(BaseModel):
    country: str = "United States"
    budget_range: str = ""
    moq_tolerance: str = ""
    materials_preferences: str = ""
    compliance_requirements: str = ""


class ProductDefinition(BaseModel):
    product_name: str = ""
    summary: str = ""
    manufacturing_category: str = "General Consumer Product"
    functional_requirements: List[str] = Field(default_factory=list)
    key_materials: List[str] = Field(default_factory=list)
    complexity_level: str = "low"
    risks: List[str] = Field(default_factory=list)
    assumptions: List[str] = Field(default_factory=list)


class OutreachDraft(BaseModel):
    supplier_id: str
    supplier_name: str = ""
    subject: str
    body: str
    status: str = "draft"
    created_at: datetime = Field(default_factory=utc_now)
    sent_at: Optional[datetime] = None


class SourcingBrief(BaseModel):
    country: str = "India"
    currency: str = "INR"
    target_city: str = ""
    target_state: str = ""
    search_term: str = ""
    ingredient_spec: str = ""
    quantity_target_kg: Optional[float] = None
    max_budget_inr_per_kg: Optional[float] = None


class InboxQueueEntry(BaseModel):
    """Inbound WhatsApp message received by webhook, awaiting sync."""

    message_sid: str
    from_number: str = ""
    to_number: str = ""
    message: str = ""
    supplier_id: Optional[str] = None
    received_at: datetime = Field(default_factory=utc_now)


class SourcingState(BaseModel):
    """Local-ingredient sourcing lifecycle, tracked apart from manufacturing."""

    enabled: bool = False
    brief: SourcingBrief = Field(default_factory=SourcingBrief)
    module_status: Dict[str, str] = Field(default_factory=lambda: _module_map(SOURCING_MODULES))
    suppliers: List[Supplier] = Field(default_factory=list)
    outreach_drafts: List[OutreachDraft] = Field(default_factory=list)
    conversations: List[Conversation] = Field(default_factory=list)
    inbox_queue: List[InboxQueueEntry] = Field(default_factory=list)
    last_reply_sync_at: Optional[datetime] = None
    metrics: Optional[Dict[str, Any]] = None


class Project(BaseModel):
    """Root aggregate persisted as a single document."""

    model_config = ConfigDict(validate_assignment=False)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str = "Untitled product"
    idea: str = ""
    constraints: ProjectConstraints = Field(default_factory=ProjectConstraints)
    product_definition: ProductDefinition = Field(default_factory=ProductDefinition)
    checklist: List[ChecklistItem] = Field(default_factory=list)
    module_status: Dict[str, str] = Field(default_factory=lambda: _module_map(MANUFACTURING_MODULES))
    suppliers: List[Supplier] = Field(default_factory=list)
    conversations: List[Conversation] = Field(default_factory=list)
    outreach_drafts: List[OutreachDraft] = Field(default_factory=list)
    outcome_engine: OutcomeEngineState = Field(default_factory=OutcomeEngineState)
    sourcing: SourcingState = Field(default_factory=SourcingState)
    version: int = 0
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def find_supplier(self, supplier_id: Optional[str]) -> Optional[Supplier]:
        if not supplier_id:
            return None
        return next((entry for entry in self.suppliers if entry.id == supplier_id), None)

    def find_sourcing_supplier(self, supplier_id: Optional[str]) -> Optional[Supplier]:
        if not supplier_id:
            return None
        return next(
            (entry for entry in self.sourcing.suppliers if entry.id == supplier_id), None
        )

    def find_checklist_item(self, key: str) -> Optional[ChecklistItem]:
        return next((entry for entry in self.checklist if entry.key == key), None)

    def prepend_conversation(self, conversation: Conversation) -> None:
        self.conversations.insert(0, conversation)

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> "Project":
        return cls.model_validate(document)
