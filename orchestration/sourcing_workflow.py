"""Workflow operations over the project aggregate.

Every operation follows the same shape: load a snapshot, do any slow work
(LLM calls, network delivery, IMAP polling) against that snapshot, then apply
the result inside a single ``patch_project`` call. Updaters only touch the
draft they are handed, so a repository may re-run them after a concurrent
write.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Union

from agents.negotiation_pricer import build_negotiation_target
from config.settings import settings as default_settings
from models.checklist import ChecklistStatus, ModuleStatus, utc_now
from models.conversation import Channel, Conversation, ConversationSource, Direction
from models.outcome import AwardDecision, FollowUpPolicy
from models.project import Project, ProjectConstraints
from models.supplier import Supplier
from repositories.project_repo import ProjectRepository, build_project_repository
from services import checklist_service as keys
from services.award_gate import run_award_gate as evaluate_award_gate
from services.checklist_service import build_checklist
from services.compliance import assess_compliance
from services.errors import (
    PreconditionFailedError,
    ProjectNotFoundError,
    SupplierNotFoundError,
    WebhookVerificationError,
)
from services.email_service import EmailService
from services.followup_service import send_supplier_follow_ups
from services.ideation import analyze_product_idea
from services.imap_inbox import ImapInbox
from services.inbox_sync import (
    ReplyRecord,
    apply_parsed_to_supplier,
    apply_reply_records,
    build_manual_reply,
    collect_reply_records,
    enqueue_inbound,
    known_signatures,
    supplier_phone_matches,
)
from services.llm_service import LLMService
from services.locks import KeyedLock, negotiation_lock_key, project_lock_key
from services.negotiation_service import (
    NegotiationDraft,
    NegotiationRoundResult,
    generate_negotiation_draft,
    run_negotiation_round,
)
from services.outcome_metrics import compute_project_outcome_metrics, compute_sourcing_metrics
from services.outreach_service import create_outreach_drafts, send_outreach_drafts
from services.project_state import set_checklist_item, set_module_status, set_sourcing_module_status
from services.response_intelligence import (
    InterventionDecision,
    ParsedReply,
    classify_human_intervention,
    has_legal_risk,
    has_non_standard_terms,
    parse_supplier_reply,
)
from services.rfq_contract import build_structured_rfq
from services.should_cost import build_should_cost_model
from services.supplier_simulation import pick_best_supplier, simulate_supplier_replies
from services.variants import build_manufacturing_variants
from services.whatsapp_service import WhatsAppService, parse_twilio_inbound
from utils.supplier_score import compute_supplier_confidence

logger = logging.getLogger(__name__)

SupplierInput = Union[Supplier, Mapping[str, Any]]


@dataclass
class ManufacturingReply:
    supplier_id: str
    parsed: ParsedReply
    intervention: InterventionDecision
    conversation: Conversation


@dataclass
class ReplyMessages:
    """Checklist wording used when replies are applied."""

    review: str
    parsed: str
    review_action: str
    negotiation_ready: str


MANUAL_REPLY_MESSAGES = ReplyMessages(
    review="Some supplier replies require human review.",
    parsed="Parsed {count} supplier replies from inbox/manual ingest.",
    review_action="Review flagged replies for constraints and legal terms.",
    negotiation_ready="Supplier responses are ready for negotiation.",
)
SIMULATED_REPLY_MESSAGES = ReplyMessages(
    review="Some replies require human review.",
    parsed="Parsed {count} replies.",
    review_action="Review flagged constraints before negotiation.",
    negotiation_ready="Negotiation can begin with top supplier candidates.",
)


@dataclass
class OutreachResult:
    project: Project
    sent_count: int = 0
    failures: List[Dict[str, str]] = field(default_factory=list)


@dataclass
class ReplyIngestResult:
    project: Project
    records: List[ManufacturingReply] = field(default_factory=list)

    @property
    def requires_human(self) -> bool:
        return any(record.intervention.requires_human for record in self.records)


@dataclass
class FollowUpResult:
    project: Project
    eligible_count: int = 0
    sent_count: int = 0
    failures: List[Dict[str, str]] = field(default_factory=list)


@dataclass
class AwardResult:
    project: Project
    decision: AwardDecision


@dataclass
class NegotiationDraftResult:
    project: Project
    supplier_id: str
    draft: NegotiationDraft


@dataclass
class NegotiationResult:
    project: Project
    supplier_id: str
    round: NegotiationRoundResult


@dataclass
class SourcingSyncResult:
    project: Project
    synced_count: int = 0


@dataclass
class AutopilotResult:
    project: Project
    summary: List[str] = field(default_factory=list)


def _coerce_supplier(raw: SupplierInput) -> Supplier:
    if isinstance(raw, Supplier):
        return raw.model_copy(deep=True)
    return Supplier.model_validate(dict(raw))


class SourcingWorkflow:
    """Entry point for every project-level operation.

    Collaborators are injected so tests can pass fakes; missing ones are
    treated as unavailable rather than built implicitly, except for the
    repository which falls back to :func:`build_project_repository`.
    """

    def __init__(
        self,
        repository: Optional[ProjectRepository] = None,
        *,
        llm=None,
        email_service=None,
        whatsapp_service=None,
        inbox=None,
        lock: Optional[KeyedLock] = None,
        settings=None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.repository = repository or build_project_repository()
        self.llm = llm
        self.email_service = email_service
        self.whatsapp_service = whatsapp_service
        self.inbox = inbox
        self.settings = settings or default_settings
        self.lock = lock or KeyedLock(timeout_seconds=self.settings.negotiation_lock_timeout_seconds)
        self.clock = clock

    # ------------------------------------------------------------------
    # Project lifecycle
    # ------------------------------------------------------------------
    def get_project(self, project_id: str) -> Project:
        project = self.repository.get_project_by_id(project_id)
        if project is None:
            raise ProjectNotFoundError(project_id)
        return project

    def list_projects(self) -> List[Project]:
        return self.repository.list_projects()

    def delete_project(self, project_id: str) -> bool:
        deleted = self.repository.delete_project(project_id)
        if not deleted:
            raise ProjectNotFoundError(project_id)
        logger.info("Deleted project %s", project_id)
        return deleted

    def create_project(
        self,
        idea: str,
        name: Optional[str] = None,
        constraints: Optional[Mapping[str, Any]] = None,
    ) -> Project:
        if not (idea or "").strip():
            raise PreconditionFailedError("idea is required")

        parsed_constraints = ProjectConstraints.model_validate(dict(constraints or {}))
        definition = analyze_product_idea(idea, parsed_constraints, llm=self.llm)
        checklist = build_checklist(
            definition.model_dump(), parsed_constraints.model_dump(), llm=self.llm
        )

        now = self.clock()
        project = Project(
            name=(name or "").strip() or definition.product_name or "Untitled product",
            idea=idea.strip(),
            constraints=parsed_constraints,
            product_definition=definition,
            checklist=checklist,
            created_at=now,
            updated_at=now,
        )
        set_module_status(project, "ideation", ModuleStatus.VALIDATED)
        set_module_status(project, "checklist", ModuleStatus.VALIDATED)
        set_checklist_item(
            project,
            keys.DEFINE_PRODUCT,
            ChecklistStatus.VALIDATED,
            "Idea converted to structured manufacturing definition.",
        )
        self.repository.save_project(project)
        logger.info("Created project %s (%s)", project.id, definition.manufacturing_category)
        return project

    # ------------------------------------------------------------------
    # Suppliers
    # ------------------------------------------------------------------
    def add_suppliers(self, project_id: str, suppliers: Iterable[SupplierInput]) -> Project:
        project = self.get_project(project_id)
        definition = project.product_definition
        compliance = assess_compliance(
            country=project.constraints.country,
            category=definition.manufacturing_category,
            materials=definition.key_materials,
        )

        incoming = []
        for raw in suppliers:
            supplier = _coerce_supplier(raw)
            if supplier.import_feasibility in ("", "Unknown"):
                supplier.import_feasibility = compliance.import_feasibility
            supplier.risk_flags = list(dict.fromkeys([*supplier.risk_flags, *compliance.red_flags]))
            supplier.status = "identified"
            supplier.confidence_score = compute_supplier_confidence(supplier)
            incoming.append(supplier)
        if not incoming:
            raise PreconditionFailedError("At least one supplier is required")

        def updater(draft: Project) -> Project:
            draft.suppliers.extend(supplier.model_copy(deep=True) for supplier in incoming)
            set_module_status(draft, "discovery", ModuleStatus.VALIDATED)
            set_checklist_item(
                draft,
                keys.SUPPLIER_DISCOVERY,
                ChecklistStatus.VALIDATED,
                f"Shortlisted {len(draft.suppliers)} suppliers with feasibility tags.",
            )
            return draft

        return self.repository.patch_project(project_id, updater)

    def select_supplier(self, project_id: str, supplier_id: str) -> Project:
        project = self.get_project(project_id)
        supplier = project.find_supplier(supplier_id)
        if supplier is None:
            raise SupplierNotFoundError(supplier_id)

        def updater(draft: Project) -> Project:
            now = self.clock()
            for entry in draft.suppliers:
                entry.selected = entry.id == supplier_id
                entry.updated_at = now
            set_checklist_item(
                draft,
                keys.MANUFACTURER_SELECTION,
                ChecklistStatus.IN_PROGRESS,
                f"User selected {supplier.name} as current front-runner.",
            )
            return draft

        return self.repository.patch_project(project_id, updater)

    def finalize_supplier(self, project_id: str, supplier_id: str) -> Project:
        project = self.get_project(project_id)
        supplier = project.find_supplier(supplier_id)
        if supplier is None:
            raise SupplierNotFoundError(supplier_id)

        def updater(draft: Project) -> Project:
            now = self.clock()
            for entry in draft.suppliers:
                entry.selected = entry.id == supplier_id
                if entry.id == supplier_id:
                    entry.status = "finalized"
                    entry.finalized = True
                entry.updated_at = now
            set_checklist_item(
                draft,
                keys.MANUFACTURER_SELECTION,
                ChecklistStatus.VALIDATED,
                f"{supplier.name} finalized as selected manufacturer.",
            )
            set_module_status(draft, "success", ModuleStatus.VALIDATED)
            return draft

        updated = self.repository.patch_project(project_id, updater)
        logger.info("Project %s finalized supplier %s", project_id, supplier_id)
        return updated

    # ------------------------------------------------------------------
    # Outreach
    # ------------------------------------------------------------------
    def create_outreach_drafts(
        self, project_id: str, supplier_ids: Optional[Iterable[str]] = None
    ) -> Project:
        project = self.get_project(project_id)
        if not project.suppliers:
            raise PreconditionFailedError("Run supplier discovery first")
        drafts = create_outreach_drafts(
            project, supplier_ids, llm=self.llm, signature=self.settings.sender_signature
        )

        def updater(draft: Project) -> Project:
            draft.outreach_drafts = [entry.model_copy(deep=True) for entry in drafts]
            set_module_status(draft, "outreach", ModuleStatus.IN_PROGRESS)
            set_checklist_item(
                draft,
                keys.OUTREACH_RFQ,
                ChecklistStatus.IN_PROGRESS,
                f"Prepared {len(drafts)} outreach drafts.",
            )
            return draft

        return self.repository.patch_project(project_id, updater)

    def send_outreach(self, project_id: str) -> OutreachResult:
        with self.lock.hold(project_lock_key(project_id, "outreach")):
            return self._send_outreach_locked(project_id)

    def _send_outreach_locked(self, project_id: str) -> OutreachResult:
        project = self.get_project(project_id)
        if not project.outreach_drafts:
            raise PreconditionFailedError("No drafts prepared")
        if self.email_service is None:
            raise PreconditionFailedError("Email transport is not available")

        result = send_outreach_drafts(project, project.outreach_drafts, self.email_service)
        failed_ids = {failure["supplier_id"]: failure["reason"] for failure in result.failures}

        def updater(draft: Project) -> Project:
            now = self.clock()
            draft.conversations[:0] = result.sent_conversations
            drafted_ids = set()
            for entry in draft.outreach_drafts:
                drafted_ids.add(entry.supplier_id)
                if entry.supplier_id in failed_ids:
                    entry.status = "failed"
                else:
                    entry.status = "sent"
                    entry.sent_at = now
            for supplier in draft.suppliers:
                if supplier.id in drafted_ids:
                    supplier.status = "outreach_failed" if supplier.id in failed_ids else "contacted"
                    supplier.updated_at = now

            if result.sent_conversations:
                set_module_status(draft, "outreach", ModuleStatus.VALIDATED)
                set_checklist_item(
                    draft,
                    keys.OUTREACH_RFQ,
                    ChecklistStatus.VALIDATED,
                    f"Sent {len(result.sent_conversations)} RFQ messages.",
                )
                set_module_status(draft, "responses", ModuleStatus.IN_PROGRESS)
            else:
                set_module_status(draft, "outreach", ModuleStatus.BLOCKED)
                set_checklist_item(
                    draft,
                    keys.OUTREACH_RFQ,
                    ChecklistStatus.BLOCKED,
                    "No outreach emails were sent due to delivery failures.",
                    "Fix SMTP or supplier emails and retry outreach.",
                )
            return draft

        updated = self.repository.patch_project(project_id, updater)
        logger.info(
            "Outreach for project %s: %s sent, %s failed",
            project_id,
            len(result.sent_conversations),
            len(result.failures),
        )
        return OutreachResult(updated, len(result.sent_conversations), result.failures)

    # ------------------------------------------------------------------
    # Replies
    # ------------------------------------------------------------------
    def _parse_manufacturing_reply(
        self,
        project: Project,
        supplier: Supplier,
        reply_text: str,
        subject: str,
        metadata: Optional[Dict[str, Any]] = None,
        channel: str = "email",
    ) -> ManufacturingReply:
        parsed = parse_supplier_reply(
            reply_text,
            product_definition=project.product_definition.model_dump(),
            supplier=supplier.model_dump(mode="json"),
            llm=self.llm,
        )
        intervention = classify_human_intervention(
            parsed.confidence,
            parsed.uncertainties,
            legal_risk=has_legal_risk(parsed.uncertainties),
            non_standard_terms=has_non_standard_terms(reply_text),
        )
        conversation = Conversation(
            supplier_id=supplier.id,
            direction=Direction.INBOUND,
            channel=Channel.WHATSAPP if str(channel).lower() == "whatsapp" else Channel.EMAIL,
            subject=subject,
            message=reply_text,
            parsed=parsed.to_dict(),
            metadata=metadata or {},
            created_at=self.clock(),
        )
        return ManufacturingReply(supplier.id, parsed, intervention, conversation)

    def _apply_replies(
        self, project_id: str, records: List[ManufacturingReply], messages: ReplyMessages
    ) -> Project:
        if not records:
            return self.get_project(project_id)
        requires_human = any(record.intervention.requires_human for record in records)
        latest = {record.supplier_id: record.parsed for record in records}

        def updater(draft: Project) -> Project:
            now = self.clock()
            for record in records:
                draft.prepend_conversation(record.conversation)
            for supplier in draft.suppliers:
                parsed = latest.get(supplier.id)
                if parsed is None:
                    continue
                supplier.pricing = {"unit_price": parsed.unit_price, "currency": parsed.currency or "USD"}
                supplier.moq = parsed.moq
                supplier.lead_time_days = parsed.lead_time_days
                supplier.tooling_cost = parsed.tooling_cost
                supplier.confidence_score = parsed.confidence
                supplier.risk_flags = list(parsed.uncertainties)
                supplier.status = "responded"
                supplier.updated_at = now

            if requires_human:
                set_checklist_item(
                    draft,
                    keys.RESPONSE_ANALYSIS,
                    ChecklistStatus.IN_PROGRESS,
                    messages.review,
                    messages.review_action,
                )
                set_module_status(draft, "responses", ModuleStatus.IN_PROGRESS)
            else:
                set_checklist_item(
                    draft,
                    keys.RESPONSE_ANALYSIS,
                    ChecklistStatus.VALIDATED,
                    messages.parsed.format(count=len(records)),
                )
                set_module_status(draft, "responses", ModuleStatus.VALIDATED)
                set_module_status(draft, "negotiation", ModuleStatus.IN_PROGRESS)
                set_checklist_item(
                    draft, keys.NEGOTIATION, ChecklistStatus.IN_PROGRESS, messages.negotiation_ready
                )
            return draft

        return self.repository.patch_project(project_id, updater)

    def ingest_reply(
        self,
        project_id: str,
        supplier_id: str,
        reply_text: str,
        channel: str = "email",
        subject: str = "Supplier Response",
    ) -> ReplyIngestResult:
        if not supplier_id or not (reply_text or "").strip():
            raise PreconditionFailedError("supplier_id and reply_text are required")
        project = self.get_project(project_id)
        supplier = project.find_supplier(supplier_id)
        if supplier is None:
            raise SupplierNotFoundError(supplier_id)

        record = self._parse_manufacturing_reply(
            project,
            supplier,
            reply_text,
            subject,
            {"source": ConversationSource.MANUAL_INGEST.value},
            channel=channel,
        )
        updated = self._apply_replies(project_id, [record], MANUAL_REPLY_MESSAGES)
        return ReplyIngestResult(updated, [record])

    def simulate_replies(
        self, project_id: str, supplier_ids: Optional[Iterable[str]] = None
    ) -> ReplyIngestResult:
        project = self.get_project(project_id)
        records = []
        for reply in simulate_supplier_replies(project, supplier_ids):
            supplier = project.find_supplier(reply.supplier_id)
            if supplier is None:
                continue
            records.append(
                self._parse_manufacturing_reply(
                    project,
                    supplier,
                    reply.reply_text,
                    reply.subject,
                    {"source": ConversationSource.SIMULATION.value},
                )
            )
        updated = self._apply_replies(project_id, records, SIMULATED_REPLY_MESSAGES)
        logger.info("Simulated %s supplier replies for project %s", len(records), project_id)
        return ReplyIngestResult(updated, records)

    # ------------------------------------------------------------------
    # Follow-ups
    # ------------------------------------------------------------------
    def run_follow_ups(
        self,
        project_id: str,
        response_sla_hours: Optional[float] = None,
        cadence_hours: Optional[float] = None,
        max_follow_ups: Optional[int] = None,
    ) -> FollowUpResult:
        """Send due follow-ups for one project.

        Batches for the same project are serialised and eligibility is read
        inside the lock, so overlapping calls never exceed the reminder cap.
        """

        with self.lock.hold(project_lock_key(project_id, "followup")):
            return self._run_follow_ups_locked(project_id, response_sla_hours, cadence_hours, max_follow_ups)

    def default_follow_up_policy(self) -> FollowUpPolicy:
        return FollowUpPolicy(
            response_sla_hours=self.settings.followup_response_sla_hours,
            cadence_hours=self.settings.followup_cadence_hours,
            max_follow_ups=self.settings.followup_max_followups,
        )

    def _run_follow_ups_locked(
        self,
        project_id: str,
        response_sla_hours: Optional[float],
        cadence_hours: Optional[float],
        max_follow_ups: Optional[int],
    ) -> FollowUpResult:
        project = self.get_project(project_id)
        if self.email_service is None:
            raise PreconditionFailedError("Email transport is not available")

        current = project.outcome_engine.follow_up_policy or self.default_follow_up_policy()
        policy = FollowUpPolicy(
            response_sla_hours=current.response_sla_hours if response_sla_hours is None else response_sla_hours,
            cadence_hours=current.cadence_hours if cadence_hours is None else cadence_hours,
            max_follow_ups=current.max_follow_ups if max_follow_ups is None else max_follow_ups,
        )
        batch = send_supplier_follow_ups(project, self.email_service, policy, clock=self.clock)

        def updater(draft: Project) -> Project:
            now = self.clock()
            draft.conversations[:0] = batch.sent_conversations
            for supplier in draft.suppliers:
                sent = sum(1 for entry in batch.sent_conversations if entry.supplier_id == supplier.id)
                if not sent:
                    continue
                supplier.follow_ups_sent += sent
                if supplier.status != "responded":
                    supplier.status = "contacted"
                supplier.updated_at = now
            draft.outcome_engine.follow_up_policy = policy
            draft.outcome_engine.kpi_snapshot = compute_project_outcome_metrics(draft, now)
            return draft

        updated = self.repository.patch_project(project_id, updater)
        return FollowUpResult(updated, batch.eligible_count, len(batch.sent_conversations), batch.failures)

    # ------------------------------------------------------------------
    # Negotiation
    # ------------------------------------------------------------------
    def draft_negotiation(
        self,
        project_id: str,
        supplier_id: Optional[str] = None,
        target: Optional[Mapping[str, Any]] = None,
    ) -> NegotiationDraftResult:
        project = self.get_project(project_id)
        if supplier_id and project.find_supplier(supplier_id) is None:
            raise SupplierNotFoundError(supplier_id)
        supplier = (
            project.find_supplier(supplier_id)
            or next((entry for entry in project.suppliers if entry.selected), None)
            or (project.suppliers[0] if project.suppliers else None)
        )
        if supplier is None:
            raise PreconditionFailedError("No supplier available for negotiation")

        draft_message = generate_negotiation_draft(project, supplier, target, llm=self.llm)
        updated = self._record_negotiation_draft(project_id, supplier, draft_message)
        return NegotiationDraftResult(updated, supplier.id, draft_message)

    def _record_negotiation_draft(
        self, project_id: str, supplier: Supplier, draft_message: NegotiationDraft
    ) -> Project:
        conversation = Conversation(
            supplier_id=supplier.id,
            direction=Direction.OUTBOUND,
            channel=Channel.EMAIL,
            subject=draft_message.subject,
            message=draft_message.body,
            metadata={"source": ConversationSource.NEGOTIATION_DRAFT.value, "target": draft_message.target},
            created_at=self.clock(),
        )

        def updater(draft: Project) -> Project:
            draft.prepend_conversation(conversation)
            set_module_status(draft, "negotiation", ModuleStatus.VALIDATED)
            set_checklist_item(
                draft,
                keys.NEGOTIATION,
                ChecklistStatus.VALIDATED,
                f"Negotiation draft generated for {supplier.name}.",
            )
            selection = draft.find_checklist_item(keys.MANUFACTURER_SELECTION)
            if selection is not None and selection.status == ChecklistStatus.PENDING.value:
                selection.status = ChecklistStatus.IN_PROGRESS.value
                selection.evidence = "Negotiation round started. Review final terms before locking supplier."
                selection.updated_at = self.clock()
            set_module_status(draft, "success", ModuleStatus.IN_PROGRESS)
            return draft

        return self.repository.patch_project(project_id, updater)

    def negotiate(
        self,
        project_id: str,
        supplier_id: Optional[str] = None,
        target: Optional[Mapping[str, Any]] = None,
        send_message: bool = True,
        channel: str = "whatsapp",
    ) -> NegotiationResult:
        """Run one ingredient-sourcing negotiation round.

        Rounds for the same supplier are serialised so the round count and
        the appended conversation always agree.
        """

        project = self.get_project(project_id)
        sourcing_suppliers = project.sourcing.suppliers
        if supplier_id:
            supplier = project.find_sourcing_supplier(supplier_id)
            if supplier is None:
                raise SupplierNotFoundError(supplier_id)
        else:
            supplier = next(
                (entry for entry in sourcing_suppliers if entry.status == "responded"),
                sourcing_suppliers[0] if sourcing_suppliers else None,
            )
        if supplier is None:
            raise PreconditionFailedError("No sourcing supplier available for negotiation")

        with self.lock.hold(negotiation_lock_key(project_id, supplier.id)):
            resolved_id = supplier.id
            project = self.get_project(project_id)
            supplier = project.find_sourcing_supplier(resolved_id)
            if supplier is None:
                raise SupplierNotFoundError(resolved_id)
            outcome = run_negotiation_round(
                project,
                supplier,
                target,
                send_message=send_message,
                channel=channel,
                email_service=self.email_service,
                whatsapp_service=self.whatsapp_service,
                mock_send=self.settings.negotiation_mock_send,
                max_rounds=self.settings.max_automated_rounds,
            )

            def updater(draft: Project) -> Project:
                draft.sourcing.conversations.insert(0, outcome.conversation)
                entry = draft.find_sourcing_supplier(supplier.id)
                if entry is not None:
                    entry.status = outcome.supplier_status
                    entry.updated_at = self.clock()
                set_sourcing_module_status(
                    draft,
                    "negotiation",
                    ModuleStatus.VALIDATED if outcome.stop_decision.stop else ModuleStatus.IN_PROGRESS,
                )
                return draft

            updated = self.repository.patch_project(project_id, updater)
        return NegotiationResult(updated, supplier.id, outcome)

    # ------------------------------------------------------------------
    # Outcome engine
    # ------------------------------------------------------------------
    def run_award_gate(
        self,
        project_id: str,
        weights: Optional[Mapping[str, Any]] = None,
        auto_select: bool = False,
    ) -> AwardResult:
        project = self.get_project(project_id)
        decision = evaluate_award_gate(project, weights, base_weights=self.settings.award_weights)

        def updater(draft: Project) -> Project:
            now = self.clock()
            draft.outcome_engine.award_decision = decision
            if auto_select and decision.recommended_supplier_id:
                for supplier in draft.suppliers:
                    supplier.selected = supplier.id == decision.recommended_supplier_id
                    if supplier.selected and supplier.status != "finalized":
                        supplier.status = "selected"
                    supplier.updated_at = now
            draft.outcome_engine.kpi_snapshot = compute_project_outcome_metrics(draft, now)
            return draft

        updated = self.repository.patch_project(project_id, updater)
        return AwardResult(updated, decision)

    def generate_outcome_plan(self, project_id: str, variant_key: str = "pilot") -> Project:
        project = self.get_project(project_id)
        should_cost = build_should_cost_model(project, llm=self.llm)
        variants = build_manufacturing_variants(project, should_cost, llm=self.llm)
        structured_rfq = build_structured_rfq(project, should_cost, variants, variant_key, llm=self.llm)

        def updater(draft: Project) -> Project:
            now = self.clock()
            engine = draft.outcome_engine
            engine.should_cost = should_cost
            engine.variants = list(variants)
            engine.structured_rfq = structured_rfq
            engine.last_outcome_plan_at = now
            engine.kpi_snapshot = compute_project_outcome_metrics(draft, now)
            return draft

        return self.repository.patch_project(project_id, updater)

    def generate_structured_rfq(self, project_id: str, variant_key: str = "pilot") -> Project:
        """Rebuild only the RFQ packet, reusing any stored should-cost and variants."""

        project = self.get_project(project_id)
        engine = project.outcome_engine
        should_cost = engine.should_cost or build_should_cost_model(project, llm=self.llm)
        variants = engine.variants or build_manufacturing_variants(project, should_cost, llm=self.llm)
        structured_rfq = build_structured_rfq(project, should_cost, variants, variant_key, llm=self.llm)

        def updater(draft: Project) -> Project:
            draft.outcome_engine.should_cost = should_cost
            draft.outcome_engine.variants = list(variants)
            draft.outcome_engine.structured_rfq = structured_rfq
            draft.outcome_engine.kpi_snapshot = compute_project_outcome_metrics(draft, self.clock())
            return draft

        return self.repository.patch_project(project_id, updater)

    def refresh_metrics(self, project_id: str) -> Dict[str, Any]:
        self.get_project(project_id)
        snapshot: Dict[str, Any] = {}

        def updater(draft: Project) -> Project:
            snapshot.clear()
            snapshot.update(compute_project_outcome_metrics(draft, self.clock()))
            draft.outcome_engine.kpi_snapshot = dict(snapshot)
            return draft

        self.repository.patch_project(project_id, updater)
        return snapshot

    # ------------------------------------------------------------------
    # Ingredient sourcing
    # ------------------------------------------------------------------
    def update_sourcing_brief(self, project_id: str, brief: Mapping[str, Any]) -> Project:
        search_term = str(brief.get("search_term") or "").strip()
        if not search_term:
            raise PreconditionFailedError("search_term is required")
        self.get_project(project_id)

        def updater(draft: Project) -> Project:
            sourcing = draft.sourcing
            sourcing.enabled = True
            merged = sourcing.brief.model_dump()
            merged.update(
                {
                    "search_term": search_term,
                    "ingredient_spec": str(brief.get("ingredient_spec") or "").strip(),
                    "quantity_target_kg": brief.get("quantity_target_kg"),
                    "target_city": str(brief.get("target_city") or "").strip(),
                    "target_state": str(brief.get("target_state") or "").strip(),
                    "max_budget_inr_per_kg": brief.get("max_budget_inr_per_kg"),
                    "country": "India",
                    "currency": "INR",
                }
            )
            sourcing.brief = type(sourcing.brief).model_validate(merged)
            for module_name in ("discovery", "outreach", "responses", "negotiation"):
                set_sourcing_module_status(draft, module_name, ModuleStatus.PENDING)
            return draft

        return self.repository.patch_project(project_id, updater)

    def add_sourcing_suppliers(self, project_id: str, suppliers: Iterable[SupplierInput]) -> Project:
        incoming = [_coerce_supplier(raw) for raw in suppliers]
        for supplier in incoming:
            supplier.pricing = {"unit_price": supplier.price_inr_per_kg, "currency": "INR"}
        self.get_project(project_id)

        def updater(draft: Project) -> Project:
            draft.sourcing.suppliers.extend(supplier.model_copy(deep=True) for supplier in incoming)
            has_suppliers = bool(draft.sourcing.suppliers)
            set_sourcing_module_status(
                draft, "discovery", ModuleStatus.VALIDATED if has_suppliers else ModuleStatus.BLOCKED
            )
            if has_suppliers:
                set_sourcing_module_status(draft, "outreach", ModuleStatus.IN_PROGRESS)
            return draft

        return self.repository.patch_project(project_id, updater)

    def ingest_sourcing_reply(
        self, project_id: str, supplier_id: str, reply_text: str, channel: str = "email"
    ) -> Project:
        if not supplier_id or not (reply_text or "").strip():
            raise PreconditionFailedError("supplier_id and reply_text are required")
        project = self.get_project(project_id)
        supplier = project.find_sourcing_supplier(supplier_id)
        if supplier is None:
            raise SupplierNotFoundError(supplier_id)
        record = build_manual_reply(project, supplier, reply_text, channel)

        def updater(draft: Project) -> Project:
            draft.sourcing.conversations.insert(0, record.conversation)
            entry = draft.find_sourcing_supplier(supplier_id)
            if entry is not None:
                apply_parsed_to_supplier(entry, record.parsed, self.clock())
            set_sourcing_module_status(draft, "responses", ModuleStatus.VALIDATED)
            set_sourcing_module_status(draft, "negotiation", ModuleStatus.IN_PROGRESS)
            return draft

        return self.repository.patch_project(project_id, updater)

    def sync_sourcing_replies(self, project_id: str) -> SourcingSyncResult:
        project = self.get_project(project_id)
        snapshot_sids = {entry.message_sid for entry in project.sourcing.inbox_queue}
        records = collect_reply_records(project, inbox=self.inbox)
        applied: List[ReplyRecord] = []

        def updater(draft: Project) -> Project:
            seen = known_signatures(draft)
            applied[:] = [record for record in records if record.signature not in seen]
            apply_reply_records(draft, applied, self.clock(), processed_sids=snapshot_sids)
            if applied:
                set_sourcing_module_status(draft, "responses", ModuleStatus.VALIDATED)
                set_sourcing_module_status(draft, "negotiation", ModuleStatus.IN_PROGRESS)
            return draft

        updated = self.repository.patch_project(project_id, updater)
        return SourcingSyncResult(updated, len(applied))

    def queue_whatsapp_inbound(
        self, headers: Optional[Mapping[str, Any]], body: Mapping[str, Any]
    ) -> Optional[str]:
        """Queue a Twilio webhook message on the project owning the sender.

        Returns the matched project id, or ``None`` when the message is
        ignored.
        """

        if self.whatsapp_service is None:
            return None
        if not self.whatsapp_service.verify_webhook_token(headers, body):
            raise WebhookVerificationError("Webhook verification token mismatch")
        if not self.whatsapp_service.configured:
            return None

        inbound = parse_twilio_inbound(body or {})
        if not inbound.get("from") or not inbound.get("message"):
            return None

        for project in self.repository.list_projects():
            supplier = next(
                (entry for entry in project.sourcing.suppliers if supplier_phone_matches(entry, inbound["from"])),
                None,
            )
            if supplier is None:
                continue

            def updater(draft: Project, supplier=supplier) -> Project:
                enqueue_inbound(draft, supplier, inbound)
                return draft

            self.repository.patch_project(project.id, updater)
            return project.id
        logger.info("No sourcing supplier matches WhatsApp sender %s", inbound.get("from"))
        return None

    def refresh_sourcing_metrics(self, project_id: str) -> Dict[str, Any]:
        self.get_project(project_id)
        snapshot: Dict[str, Any] = {}

        def updater(draft: Project) -> Project:
            snapshot.clear()
            snapshot.update(compute_sourcing_metrics(draft, self.clock()))
            draft.sourcing.metrics = dict(snapshot)
            return draft

        self.repository.patch_project(project_id, updater)
        return snapshot

    # ------------------------------------------------------------------
    # Autopilot
    # ------------------------------------------------------------------
    def run_autopilot(
        self, project_id: str, force_outreach: bool = False, force_reply_simulation: bool = False
    ) -> AutopilotResult:
        """Drive a project from shortlisted suppliers to a front-runner.

        Outreach is recorded without delivery and replies are simulated, so
        the run is deterministic for a given project.
        """

        project = self.get_project(project_id)
        if not project.suppliers:
            raise PreconditionFailedError("Add suppliers before running autopilot")
        summary: List[str] = []

        if force_outreach or not project.outreach_drafts:
            drafts = create_outreach_drafts(
                project,
                [supplier.id for supplier in project.suppliers],
                llm=self.llm,
                signature=self.settings.sender_signature,
            )

            def store_drafts(draft: Project) -> Project:
                draft.outreach_drafts = [entry.model_copy(deep=True) for entry in drafts]
                set_module_status(draft, "outreach", ModuleStatus.IN_PROGRESS)
                set_checklist_item(
                    draft,
                    keys.OUTREACH_RFQ,
                    ChecklistStatus.IN_PROGRESS,
                    f"Autopilot prepared {len(drafts)} outreach drafts.",
                )
                return draft

            project = self.repository.patch_project(project_id, store_drafts)
            summary.append(f"prepared_{len(drafts)}_drafts")

        unsent = [entry for entry in project.outreach_drafts if entry.status != "sent"]
        if unsent:
            messages = [
                Conversation(
                    supplier_id=entry.supplier_id,
                    direction=Direction.OUTBOUND,
                    channel=Channel.EMAIL,
                    subject=entry.subject,
                    message=entry.body,
                    metadata={"source": ConversationSource.OUTREACH.value, "status": "simulated"},
                    created_at=self.clock(),
                )
                for entry in unsent
            ]

            def mark_sent(draft: Project) -> Project:
                now = self.clock()
                draft.conversations[:0] = messages
                for entry in draft.outreach_drafts:
                    entry.status = "sent"
                    entry.sent_at = now
                drafted = {entry.supplier_id for entry in draft.outreach_drafts}
                for supplier in draft.suppliers:
                    if supplier.id in drafted:
                        supplier.status = "contacted"
                        supplier.updated_at = now
                set_module_status(draft, "outreach", ModuleStatus.VALIDATED)
                set_checklist_item(
                    draft,
                    keys.OUTREACH_RFQ,
                    ChecklistStatus.VALIDATED,
                    f"Autopilot sent {len(messages)} RFQs.",
                )
                set_module_status(draft, "responses", ModuleStatus.IN_PROGRESS)
                return draft

            project = self.repository.patch_project(project_id, mark_sent)
            summary.append(f"sent_{len(messages)}_rfqs")

        if force_reply_simulation or any(supplier.status == "contacted" for supplier in project.suppliers):
            simulated = self.simulate_replies(project_id, [supplier.id for supplier in project.suppliers])
            project = simulated.project
            summary.append(f"simulated_{len(simulated.records)}_replies")

        best = pick_best_supplier(project.suppliers)
        if best is not None:
            target = build_negotiation_target(best)
            draft_message = generate_negotiation_draft(project, best, target, llm=self.llm)
            conversation = Conversation(
                supplier_id=best.id,
                direction=Direction.OUTBOUND,
                channel=Channel.EMAIL,
                subject=draft_message.subject,
                message=draft_message.body,
                metadata={"source": ConversationSource.NEGOTIATION_DRAFT.value, "target": target},
                created_at=self.clock(),
            )

            def front_runner(draft: Project) -> Project:
                now = self.clock()
                draft.prepend_conversation(conversation)
                for supplier in draft.suppliers:
                    supplier.selected = supplier.id == best.id
                    supplier.updated_at = now
                set_module_status(draft, "negotiation", ModuleStatus.VALIDATED)
                set_checklist_item(
                    draft,
                    keys.NEGOTIATION,
                    ChecklistStatus.VALIDATED,
                    f"Autopilot generated negotiation for {best.name}.",
                )
                set_module_status(draft, "success", ModuleStatus.IN_PROGRESS)
                set_checklist_item(
                    draft,
                    keys.MANUFACTURER_SELECTION,
                    ChecklistStatus.IN_PROGRESS,
                    f"{best.name} is current front-runner. Finalize to complete workflow.",
                )
                return draft

            project = self.repository.patch_project(project_id, front_runner)
            summary.append(f"negotiated_with_{best.id}")

        logger.info("Autopilot for project %s: %s", project_id, ", ".join(summary) or "no-op")
        return AutopilotResult(project, summary)


def build_workflow(settings=None, repository: Optional[ProjectRepository] = None) -> SourcingWorkflow:
    """Wire a workflow from settings.

    The LLM client is only attached when an endpoint is configured; the
    transports are always attached and raise ``ConfigurationError`` on use
    when their credentials are missing.
    """

    settings = settings or default_settings
    llm = None
    if settings.llm_configured():
        llm = LLMService(
            base_url=settings.llm_base_url,
            api_key=settings.llm_api_key,
            model=settings.llm_model,
            timeout=settings.llm_timeout,
        )
    return SourcingWorkflow(
        repository,
        llm=llm,
        email_service=EmailService(settings),
        whatsapp_service=WhatsAppService(settings),
        inbox=ImapInbox(settings),
        settings=settings,
    )
