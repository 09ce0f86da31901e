"""Collect ingredient-sourcing replies from the mailbox and the WhatsApp queue.

Every inbound record carries a ``signature`` in its metadata. A signature
already present in the project's conversation log, or seen earlier in the
same batch, is skipped, so repeated syncs never ingest a message twice.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from models.checklist import utc_now
from models.conversation import Channel, Conversation, ConversationSource, Direction
from models.project import InboxQueueEntry, Project
from models.supplier import Supplier
from services.ingredient_parsing import IngredientParsedReply, parse_ingredient_reply
from utils.number_extraction import normalize_text

logger = logging.getLogger(__name__)

INBOX_FETCH_LIMIT = 200
INBOX_QUEUE_LIMIT = 200

_INDIAN_MOBILE = re.compile(r"^[6-9]\d{9}$")
_NON_DIGIT = re.compile(r"[^\d]")
_NON_DIAL = re.compile(r"[^\d+]")


def normalize_email(value: Any) -> str:
    return normalize_text(value).lower()


def email_domain(value: Any) -> str:
    normalized = normalize_email(value)
    _, at, domain = normalized.rpartition("@")
    return domain if at else ""


def normalize_phone(value: Any) -> str:
    """Canonical ``+<digits>`` form, defaulting bare Indian mobiles to +91.

    Returns an empty string for anything that does not look like a phone.
    """

    raw = normalize_text(value)
    if not raw:
        return ""
    no_plus = _NON_DIAL.sub("", raw).replace("+", "")

    if no_plus.startswith("91") and len(no_plus) >= 12:
        return f"+{no_plus[:12]}"
    if _INDIAN_MOBILE.match(no_plus):
        return f"+91{no_plus}"
    digits = _NON_DIGIT.sub("", raw)
    if raw.startswith("+") and len(digits) >= 10:
        return f"+{digits}"
    return ""


def supplier_phone_matches(supplier: Supplier, number: Any) -> bool:
    wanted = normalize_phone(number)
    return bool(wanted) and normalize_phone(supplier.whatsapp_number or supplier.phone) == wanted


def find_supplier_by_email(suppliers: Iterable[Supplier], sender: Any) -> Optional[Supplier]:
    """Match on the exact address first, then on the sender's domain."""

    suppliers = list(suppliers)
    normalized = normalize_email(sender)
    if not normalized:
        return None
    direct = next((entry for entry in suppliers if normalize_email(entry.email) == normalized), None)
    if direct is not None:
        return direct
    domain = email_domain(normalized)
    if not domain:
        return None
    return next((entry for entry in suppliers if email_domain(entry.email) == domain), None)


def find_supplier_for_queue_entry(suppliers: Iterable[Supplier], entry: InboxQueueEntry) -> Optional[Supplier]:
    suppliers = list(suppliers)
    if entry.supplier_id:
        match = next((supplier for supplier in suppliers if supplier.id == entry.supplier_id), None)
        if match is not None:
            return match
    return next((supplier for supplier in suppliers if supplier_phone_matches(supplier, entry.from_number)), None)


@dataclass
class ReplyRecord:
    supplier_id: str
    parsed: IngredientParsedReply
    conversation: Conversation

    @property
    def signature(self) -> Optional[str]:
        return self.conversation.metadata.get("signature")


def known_signatures(project: Project) -> set:
    return {
        str(entry.metadata["signature"])
        for entry in project.sourcing.conversations
        if entry.metadata.get("signature")
    }


def _inbound(supplier: Supplier, channel: str, text: str, parsed: IngredientParsedReply, metadata: Dict[str, Any], subject: str = "") -> Conversation:
    return Conversation(
        supplier_id=supplier.id,
        direction=Direction.INBOUND,
        channel=channel,
        subject=subject,
        message=text,
        parsed=parsed.to_dict(),
        metadata=metadata,
    )


def collect_reply_records(project: Project, inbox=None) -> List[ReplyRecord]:
    """Build reply records from IMAP (when configured) and the WhatsApp queue.

    IMAP failures propagate so the caller can report the sync as failed.
    """

    sourcing = project.sourcing
    seen = known_signatures(project)
    records: List[ReplyRecord] = []

    if inbox is not None and inbox.configured:
        since = sourcing.last_reply_sync_at or project.created_at
        for message in inbox.fetch_messages(since=since, limit=INBOX_FETCH_LIMIT):
            supplier = find_supplier_by_email(sourcing.suppliers, message.from_addr)
            if supplier is None:
                continue
            signature = f"imap:{message.message_id or ''}:{message.uid or ''}"
            if signature in seen:
                continue
            seen.add(signature)
            parsed = parse_ingredient_reply(message.text)
            records.append(
                ReplyRecord(
                    supplier_id=supplier.id,
                    parsed=parsed,
                    conversation=_inbound(
                        supplier,
                        Channel.EMAIL.value,
                        message.text,
                        parsed,
                        {
                            "source": ConversationSource.SOURCING_IMAP_SYNC.value,
                            "from": message.from_addr,
                            "inbound_message_id": message.message_id,
                            "imap_uid": message.uid,
                            "signature": signature,
                        },
                        subject=message.subject or "Supplier Reply",
                    ),
                )
            )

    for queued in sourcing.inbox_queue:
        supplier = find_supplier_for_queue_entry(sourcing.suppliers, queued)
        if supplier is None:
            continue
        signature = f"twilio:{queued.message_sid}"
        if signature in seen:
            continue
        seen.add(signature)
        parsed = parse_ingredient_reply(queued.message or "")
        records.append(
            ReplyRecord(
                supplier_id=supplier.id,
                parsed=parsed,
                conversation=_inbound(
                    supplier,
                    Channel.WHATSAPP.value,
                    queued.message,
                    parsed,
                    {
                        "source": ConversationSource.SOURCING_TWILIO_SYNC.value,
                        "from": queued.from_number,
                        "to": queued.to_number,
                        "message_sid": queued.message_sid,
                        "signature": signature,
                    },
                ),
            )
        )

    logger.info("Collected %s new sourcing replies for project %s", len(records), project.id)
    return records


def apply_parsed_to_supplier(supplier: Supplier, parsed: IngredientParsedReply, now: Optional[datetime] = None) -> None:
    supplier.price_inr_per_kg = parsed.unit_price_inr_per_kg
    supplier.moq_kg = parsed.moq_kg
    supplier.lead_time_days = parsed.lead_time_days
    supplier.pricing = {"unit_price": parsed.unit_price_inr_per_kg, "currency": "INR"}
    supplier.moq = parsed.moq_kg
    supplier.status = "responded"
    supplier.risk_flags = list(parsed.uncertainties)
    supplier.updated_at = now or utc_now()


def apply_reply_records(
    project: Project,
    records: List[ReplyRecord],
    now: Optional[datetime] = None,
    processed_sids: Optional[Iterable[str]] = None,
) -> None:
    """Persist collected replies on the project's sourcing state.

    When one supplier has several records the last one wins. Queue entries
    consumed by a record are removed, as are entries listed in
    ``processed_sids`` (the queue snapshot the records were collected from).
    Entries queued after that snapshot are kept for the next sync.
    """

    sourcing = project.sourcing
    now = now or utc_now()

    latest_by_supplier: Dict[str, IngredientParsedReply] = {}
    for record in records:
        sourcing.conversations.insert(0, record.conversation)
        latest_by_supplier[record.supplier_id] = record.parsed

    for supplier in sourcing.suppliers:
        parsed = latest_by_supplier.get(supplier.id)
        if parsed is not None:
            apply_parsed_to_supplier(supplier, parsed, now)

    consumed = set(processed_sids or ())
    consumed.update(
        record.conversation.metadata.get("message_sid")
        for record in records
        if record.conversation.metadata.get("message_sid")
    )
    sourcing.inbox_queue = [entry for entry in sourcing.inbox_queue if entry.message_sid not in consumed]
    sourcing.last_reply_sync_at = now


def build_manual_reply(project: Project, supplier: Supplier, reply_text: str, channel: str = "email") -> ReplyRecord:
    parsed = parse_ingredient_reply(reply_text)
    stamp = int(utc_now().timestamp() * 1000)
    channel = Channel.WHATSAPP.value if str(channel).lower() == "whatsapp" else Channel.EMAIL.value
    conversation = _inbound(
        supplier,
        channel,
        reply_text,
        parsed,
        {
            "source": ConversationSource.SOURCING_MANUAL_INGEST.value,
            "signature": f"manual:{supplier.id}:{stamp}",
        },
    )
    return ReplyRecord(supplier_id=supplier.id, parsed=parsed, conversation=conversation)


def enqueue_inbound(project: Project, supplier: Supplier, inbound: Dict[str, Any]) -> bool:
    """Queue a webhook message for the next sync; False if already queued."""

    sourcing = project.sourcing
    sid = str(inbound.get("message_sid") or "")
    if any(str(entry.message_sid) == sid for entry in sourcing.inbox_queue):
        return False
    sourcing.inbox_queue.insert(
        0,
        InboxQueueEntry(
            message_sid=sid,
            from_number=inbound.get("from") or "",
            to_number=inbound.get("to") or "",
            message=inbound.get("message") or "",
            supplier_id=supplier.id,
        ),
    )
    del sourcing.inbox_queue[INBOX_QUEUE_LIMIT:]
    return True
