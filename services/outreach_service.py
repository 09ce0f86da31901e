"""RFQ outreach: per-supplier drafts and their delivery over SMTP."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from models.checklist import utc_now
from models.conversation import Channel, Conversation, ConversationSource, Direction
from models.project import OutreachDraft, Project
from models.supplier import Supplier
from services.errors import ConfigurationError, TransportError
from utils.rfq_template import build_rfq_body, build_rfq_subject

logger = logging.getLogger(__name__)

OUTREACH_SYSTEM_PROMPT = (
    "You write concise supplier outreach emails with clear RFQ asks. Keep tone professional and direct."
)


@dataclass
class OutreachSendResult:
    sent_conversations: List[Conversation] = field(default_factory=list)
    failures: List[Dict[str, str]] = field(default_factory=list)


def build_outreach_draft(project: Project, supplier: Supplier, llm=None, signature: str = "Sourcewise") -> OutreachDraft:
    def fallback() -> str:
        return build_rfq_body(project, supplier, signature=signature)

    body = fallback()
    if llm is not None:
        prompt = "\n\n".join(
            [
                "Write an outreach email for this supplier.",
                "Include product summary, material hints, MOQ preference, and ask for "
                "price/MOQ/lead time/tooling/terms.",
                "Output only email body.",
                f"Supplier: {json.dumps(supplier.model_dump(mode='json'))}",
                f"Project: {json.dumps(project.product_definition.model_dump(), default=str)}",
                f"Constraints: {json.dumps(project.constraints.model_dump(), default=str)}",
            ]
        )
        body = (llm.generate_text_with_fallback(prompt, fallback, system=OUTREACH_SYSTEM_PROMPT) or "").strip() or fallback()

    return OutreachDraft(
        supplier_id=supplier.id,
        supplier_name=supplier.name,
        subject=build_rfq_subject(project),
        body=body,
    )


def create_outreach_drafts(
    project: Project,
    supplier_ids: Optional[Iterable[str]] = None,
    llm=None,
    signature: str = "Sourcewise",
) -> List[OutreachDraft]:
    wanted = set(supplier_ids or [])
    return [
        build_outreach_draft(project, supplier, llm=llm, signature=signature)
        for supplier in project.suppliers
        if not wanted or supplier.id in wanted
    ]


def send_outreach_drafts(project: Project, drafts: List[OutreachDraft], email_service) -> OutreachSendResult:
    """Email each draft once, collecting per-supplier failures."""

    result = OutreachSendResult()
    for draft in drafts:
        supplier = project.find_supplier(draft.supplier_id)
        to = supplier.contact_for("email") if supplier is not None else ""
        if not to:
            result.failures.append({"supplier_id": draft.supplier_id, "reason": "Supplier email missing"})
            continue
        try:
            sent = email_service.send_email(to, draft.subject, draft.body)
        except (TransportError, ConfigurationError) as exc:
            logger.warning("Outreach to supplier %s failed: %s", draft.supplier_id, exc)
            result.failures.append({"supplier_id": draft.supplier_id, "reason": str(exc) or "Send failed"})
            continue

        result.sent_conversations.append(
            Conversation(
                supplier_id=draft.supplier_id,
                direction=Direction.OUTBOUND,
                channel=Channel.EMAIL,
                subject=draft.subject,
                message=draft.body,
                metadata={
                    "source": ConversationSource.OUTREACH.value,
                    "to": to,
                    "provider": "smtp",
                    "provider_message_id": sent.message_id,
                    "status": "sent",
                },
                created_at=utc_now(),
            )
        )
    return result
