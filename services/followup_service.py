"""Follow-up emails for suppliers that have not answered an RFQ."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional

from models.checklist import utc_now
from models.conversation import Channel, Conversation, ConversationSource, Direction
from models.outcome import FollowUpPolicy
from models.project import Project
from models.supplier import Supplier
from services.errors import ConfigurationError, TransportError
from utils.rfq_template import build_follow_up_body, build_follow_up_subject

logger = logging.getLogger(__name__)

FOLLOW_UP_STATUSES = frozenset({"contacted", "identified", "outreach_failed"})


@dataclass
class FollowUpBatchResult:
    eligible_count: int = 0
    sent_conversations: List[Conversation] = field(default_factory=list)
    failures: List[Dict[str, str]] = field(default_factory=list)


def _supplier_conversations(project: Project, supplier_id: str) -> List[Conversation]:
    return [entry for entry in project.conversations if entry.supplier_id == supplier_id]


def has_inbound_reply(project: Project, supplier_id: str) -> bool:
    return any(
        entry.direction == Direction.INBOUND.value
        for entry in _supplier_conversations(project, supplier_id)
    )


def last_outbound(project: Project, supplier_id: str) -> Optional[Conversation]:
    outbound = [
        entry
        for entry in _supplier_conversations(project, supplier_id)
        if entry.direction == Direction.OUTBOUND.value
    ]
    if not outbound:
        return None
    return max(outbound, key=lambda entry: entry.created_at)


def follow_up_count(project: Project, supplier_id: str) -> int:
    return sum(
        1
        for entry in _supplier_conversations(project, supplier_id)
        if entry.direction == Direction.OUTBOUND.value
        and entry.source == ConversationSource.FOLLOWUP.value
    )


def _hours_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 3600


def is_follow_up_due(
    project: Project,
    supplier: Supplier,
    policy: FollowUpPolicy,
    now: Optional[datetime] = None,
) -> bool:
    """Return True when ``supplier`` should receive its next follow-up."""

    if not (supplier.email or "").strip():
        return False
    if has_inbound_reply(project, supplier.id):
        return False
    if supplier.status not in FOLLOW_UP_STATUSES:
        return False

    previous = last_outbound(project, supplier.id)
    if previous is None:
        return False

    sent = follow_up_count(project, supplier.id)
    if sent >= policy.max_follow_ups:
        return False

    threshold = policy.response_sla_hours + sent * policy.cadence_hours
    return _hours_between(previous.created_at, now or utc_now()) >= threshold


def send_supplier_follow_ups(
    project: Project,
    email_service,
    policy: Optional[FollowUpPolicy] = None,
    clock: Callable[[], datetime] = utc_now,
) -> FollowUpBatchResult:
    """Send at most one follow-up per eligible supplier.

    Delivery failures are collected per supplier and never abort the batch.
    """

    if not email_service.configured:
        raise ConfigurationError("SMTP is not configured. Set SMTP credentials before running follow-ups.")

    policy = policy or project.outcome_engine.follow_up_policy or FollowUpPolicy()
    now = clock()
    result = FollowUpBatchResult()

    for supplier in project.suppliers:
        if not is_follow_up_due(project, supplier, policy, now):
            continue

        result.eligible_count += 1
        index = follow_up_count(project, supplier.id) + 1
        subject = build_follow_up_subject(project, index)
        body = build_follow_up_body(project, supplier, index)
        try:
            sent = email_service.send_email(supplier.email, subject, body)
        except (TransportError, ConfigurationError) as exc:
            logger.warning("Follow-up to supplier %s failed: %s", supplier.id, exc)
            result.failures.append({"supplier_id": supplier.id, "reason": str(exc) or "Follow-up send failed"})
            continue

        result.sent_conversations.append(
            Conversation(
                supplier_id=supplier.id,
                direction=Direction.OUTBOUND,
                channel=Channel.EMAIL,
                subject=subject,
                message=body,
                metadata={
                    "source": ConversationSource.FOLLOWUP.value,
                    "follow_up_index": index,
                    "to": supplier.email,
                    "provider": "smtp",
                    "provider_message_id": sent.message_id,
                    "status": "sent",
                },
                created_at=now,
            )
        )

    logger.info(
        "Follow-ups for project %s: %s eligible, %s sent, %s failed",
        project.id,
        result.eligible_count,
        len(result.sent_conversations),
        len(result.failures),
    )
    return result
