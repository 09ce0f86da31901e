"""Negotiation rounds with suppliers.

Ingredient sourcing runs bounded automated rounds: each call counts the
rounds already sent, evaluates the stop rules against the supplier's latest
parsed reply, computes a guarded counter-offer and records exactly one
outbound conversation. Manufacturing negotiation only produces a draft for a
human to send.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from agents.negotiation_pricer import (
    STOP_TARGET_REACHED,
    CounterOffer,
    NegotiationTarget,
    StopDecision,
    evaluate_negotiation_stop,
    resolve_counter_target,
)
from config.settings import settings as default_settings
from models.conversation import Channel, Conversation, ConversationSource, Direction
from models.project import Project
from models.supplier import Supplier
from services.errors import ConfigurationError, TransportError
from utils.number_extraction import format_number

logger = logging.getLogger(__name__)

NEGOTIATION_SYSTEM_PROMPT = (
    "You negotiate professionally with suppliers. Be precise, respectful, and anchor terms clearly."
)


@dataclass
class DeliveryResult:
    status: str = "draft_only"
    error: Optional[str] = None
    provider_message_id: Optional[str] = None


@dataclass
class NegotiationRoundResult:
    subject: str
    body: str
    counter: CounterOffer
    stop_decision: StopDecision
    delivery: DeliveryResult
    conversation: Conversation
    round: int = 1
    supplier_status: str = "negotiating"


@dataclass
class NegotiationDraft:
    subject: str
    body: str
    target: Dict[str, Any] = field(default_factory=dict)


def count_negotiation_rounds(project: Project, supplier_id: str) -> int:
    return sum(
        1
        for entry in project.sourcing.conversations
        if entry.supplier_id == supplier_id
        and entry.direction == Direction.OUTBOUND.value
        and entry.source == ConversationSource.SOURCING_NEGOTIATION.value
    )


def latest_inbound(project: Project, supplier_id: str) -> Optional[Conversation]:
    inbound = [
        entry
        for entry in project.sourcing.conversations
        if entry.supplier_id == supplier_id and entry.direction == Direction.INBOUND.value
    ]
    if not inbound:
        return None
    return max(inbound, key=lambda entry: entry.created_at)


def build_negotiation_message(project: Project, supplier: Supplier, counter: CounterOffer) -> str:
    brief = project.sourcing.brief
    lines = [
        f"Hi {supplier.contact_person or supplier.name or 'team'},",
        "",
        "Thank you for sharing your quotation. We are finalizing an initial prototype batch "
        "and would like to align on final pilot terms:",
        "",
        f"- Unit price target: INR {format_number(counter.unit_price_inr_per_kg)}/kg"
        if counter.unit_price_inr_per_kg
        else "- Unit price: please share your best final INR/kg for this first batch",
        f"- MOQ target: {format_number(counter.moq_kg)} kg"
        if counter.moq_kg
        else "- MOQ: request lowest possible initial quantity",
        f"- Lead time target: {format_number(counter.lead_time_days)} days"
        if counter.lead_time_days
        else "- Lead time: request fastest achievable dispatch timeline",
        "",
        f"Ingredient brief: {brief.search_term or project.idea}",
        f"Specification: {brief.ingredient_spec or 'Food grade requirement'}",
        "",
        "Please confirm if these terms are workable. If close, share your best possible "
        "revised offer and payment terms.",
        "",
        "Regards,",
        project.name,
    ]
    return "\n".join(lines)


def negotiation_subject(project: Project) -> str:
    return f"Negotiation Update: {project.sourcing.brief.search_term or project.name}"


def _deliver(
    supplier: Supplier,
    channel: str,
    subject: str,
    body: str,
    round_number: int,
    *,
    email_service=None,
    whatsapp_service=None,
    mock_send: bool = False,
) -> DeliveryResult:
    """Attempt delivery once; failures are reported, never raised."""

    if mock_send:
        return DeliveryResult(
            status="sent", provider_message_id=f"mock-negotiation-{supplier.id}-{round_number}"
        )

    try:
        if channel == Channel.EMAIL.value:
            to = supplier.contact_for("email")
            if not to:
                raise TransportError("Supplier email missing")
            if email_service is None:
                raise ConfigurationError("Email transport is not available")
            sent = email_service.send_email(to, subject, body)
            return DeliveryResult(status="sent", provider_message_id=sent.message_id)

        if whatsapp_service is None:
            raise ConfigurationError("WhatsApp transport is not available")
        sent = whatsapp_service.send_message(supplier.contact_for("whatsapp"), body)
        return DeliveryResult(status=sent.get("status") or "queued", provider_message_id=sent.get("sid"))
    except (TransportError, ConfigurationError) as exc:
        logger.warning(
            "Negotiation delivery to supplier %s over %s failed: %s", supplier.id, channel, exc
        )
        return DeliveryResult(status="failed", error=str(exc) or "send failed")


def run_negotiation_round(
    project: Project,
    supplier: Supplier,
    target: Optional[Mapping[str, Any]] = None,
    *,
    send_message: bool = True,
    channel: str = "whatsapp",
    email_service=None,
    whatsapp_service=None,
    mock_send: Optional[bool] = None,
    max_rounds: Optional[int] = None,
) -> NegotiationRoundResult:
    """Prepare one negotiation round for ``supplier`` and optionally send it.

    The caller is responsible for serialising rounds per supplier and for
    persisting the returned conversation and supplier status.
    """

    channel = Channel.EMAIL.value if str(channel or "").lower() == "email" else Channel.WHATSAPP.value
    goal = NegotiationTarget.from_mapping(target)
    rounds = count_negotiation_rounds(project, supplier.id)
    inbound = latest_inbound(project, supplier.id)

    decision = evaluate_negotiation_stop(
        supplier,
        goal,
        rounds,
        inbound.parsed if inbound is not None else None,
        max_rounds=default_settings.max_automated_rounds if max_rounds is None else max_rounds,
    )
    counter = resolve_counter_target(supplier, goal)
    body = build_negotiation_message(project, supplier, counter)
    subject = negotiation_subject(project)

    delivery = DeliveryResult()
    if send_message and not decision.stop:
        delivery = _deliver(
            supplier,
            channel,
            subject,
            body,
            rounds + 1,
            email_service=email_service,
            whatsapp_service=whatsapp_service,
            mock_send=default_settings.negotiation_mock_send if mock_send is None else mock_send,
        )

    conversation = Conversation(
        supplier_id=supplier.id,
        direction=Direction.OUTBOUND,
        channel=channel,
        subject=subject if channel == Channel.EMAIL.value else "",
        message=body,
        metadata={
            "source": ConversationSource.SOURCING_NEGOTIATION.value,
            "round": rounds + 1,
            "stop_reason": decision.reason,
            "status": delivery.status,
            "error": delivery.error,
            "provider_message_id": delivery.provider_message_id,
            "counter": counter.to_dict(),
        },
    )

    supplier_status = "shortlisted" if decision.stop and decision.reason == STOP_TARGET_REACHED else "negotiating"
    logger.info(
        "Negotiation round %s for supplier %s: stop=%s (%s), delivery=%s",
        rounds + 1,
        supplier.id,
        decision.stop,
        decision.reason,
        delivery.status,
    )
    return NegotiationRoundResult(
        subject=subject,
        body=body,
        counter=counter,
        stop_decision=decision,
        delivery=delivery,
        conversation=conversation,
        round=rounds + 1,
        supplier_status=supplier_status,
    )


def _target_value(target: Mapping[str, Any], key: str) -> Any:
    value = target.get(key)
    return value if value not in (None, "", 0) else None


def fallback_negotiation_body(project: Project, supplier: Supplier, target: Mapping[str, Any]) -> str:
    currency = supplier.pricing.currency or "USD"
    current_unit = supplier.unit_price
    current_moq = supplier.moq
    current_lead = supplier.lead_time_days
    unit_target = _target_value(target, "unit_price")
    moq_target = _target_value(target, "moq")
    lead_target = _target_value(target, "lead_time_days")

    if unit_target is not None:
        price_line = (
            f"- Unit price target: {format_number(unit_target)} {currency} "
            f"(currently {format_number(current_unit)})"
        )
    elif current_unit:
        price_line = f"- Unit price: can we improve from {format_number(current_unit)} {currency} for initial run?"
    else:
        price_line = "- Unit price: please confirm your best pilot quote"

    if moq_target is not None:
        moq_line = f"- MOQ target: {format_number(moq_target)} units (currently {format_number(current_moq)})"
    elif current_moq:
        moq_line = f"- MOQ: can we reduce from {format_number(current_moq)} units for first batch?"
    else:
        moq_line = "- MOQ: please share lowest viable initial quantity"

    if lead_target is not None:
        lead_line = (
            f"- Lead time target: {format_number(lead_target)} days "
            f"(currently {format_number(current_lead)})"
        )
    else:
        lead_line = "- Lead time: please share fastest sample + production schedule"

    lines: List[str] = [
        f"Hi {supplier.contact_person or 'team'},",
        "",
        "Thanks for sharing your quotation.",
        "",
        "We are interested in moving forward and would like to align on pilot terms:",
        price_line,
        moq_line,
        lead_line,
        "",
        "If aligned, we can proceed quickly with sample confirmation.",
        "",
        "Best regards,",
        project.name,
    ]
    return "\n".join(lines)


def generate_negotiation_draft(
    project: Project,
    supplier: Supplier,
    target: Optional[Mapping[str, Any]] = None,
    llm=None,
) -> NegotiationDraft:
    target = dict(target or {})
    subject = f"Negotiation Follow-up: {project.product_definition.product_name or project.name}"

    def fallback() -> str:
        return fallback_negotiation_body(project, supplier, target)

    if llm is None:
        return NegotiationDraft(subject=subject, body=fallback(), target=target)

    quote = {
        "unit_price": supplier.unit_price,
        "moq": supplier.moq,
        "lead_time_days": supplier.lead_time_days,
        "tooling_cost": supplier.tooling_cost,
    }
    prompt = "\n\n".join(
        [
            "Draft a negotiation follow-up email.",
            "Must focus on MOQ, price, and lead time.",
            "Keep under 220 words.",
            f"Supplier quote context: {json.dumps(quote)}",
            f"Target terms: {json.dumps(target, default=str)}",
            f"Project context: {json.dumps(project.product_definition.model_dump(), default=str)}",
        ]
    )
    body = llm.generate_text_with_fallback(prompt, fallback, system=NEGOTIATION_SYSTEM_PROMPT)
    return NegotiationDraft(subject=subject, body=(body or "").strip() or fallback(), target=target)
