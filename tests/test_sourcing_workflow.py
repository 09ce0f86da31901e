import os
import sys
import threading
import time
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from config.settings import Settings
from orchestration import SourcingWorkflow
from orchestration import sourcing_workflow as workflow_module
from repositories.project_repo import InMemoryProjectRepository
from services import checklist_service as keys
from services.errors import (
    PreconditionFailedError,
    ProjectNotFoundError,
    SupplierNotFoundError,
    WebhookVerificationError,
)
from services.locks import KeyedLock

START = datetime(2024, 5, 10, 9, 0, tzinfo=timezone.utc)

SUPPLIERS = [
    {"id": "alpha", "name": "Alpha Molding", "country": "China", "email": "sales@alpha.example"},
    {"id": "beta", "name": "Beta Works", "country": "Vietnam", "email": "quotes@beta.example"},
    {"id": "gamma", "name": "Gamma Plastics", "country": "Mexico"},
]

SOURCING_SUPPLIERS = [
    {"id": "erode", "name": "Erode Spices", "whatsapp_number": "98765 43210", "status": "contacted"},
    {"id": "salem", "name": "Salem Agro", "email": "info@salemagro.com", "status": "contacted"},
]


class FakeEmail:
    def __init__(self):
        self.sent = []

    def send_email(self, to, subject, body):
        self.sent.append((to, subject, body))
        return SimpleNamespace(message_id=f"<m{len(self.sent)}@example.com>")


class FakeWhatsApp:
    configured = True

    def __init__(self, token="secret"):
        self.token = token
        self.sent = []

    def verify_webhook_token(self, headers=None, body=None):
        return (headers or {}).get("x-webhook-token") == self.token

    def send_message(self, to, body):
        self.sent.append((to, body))
        return {"sid": f"SM{len(self.sent)}", "status": "queued"}


class Clock:
    def __init__(self):
        self.now = START

    def __call__(self):
        self.now += timedelta(minutes=1)
        return self.now


@pytest.fixture
def workflow():
    return SourcingWorkflow(
        InMemoryProjectRepository(),
        email_service=FakeEmail(),
        whatsapp_service=FakeWhatsApp(),
        lock=KeyedLock(redis_factory=lambda: None),
        settings=Settings(negotiation_mock_send=True),
        clock=Clock(),
    )


def _status(project, key):
    return project.find_checklist_item(key).status


def test_create_project_validates_idea_and_definition(workflow):
    with pytest.raises(PreconditionFailedError):
        workflow.create_project("   ")

    project = workflow.create_project(
        "Insulated kitchen bottle. Keeps drinks cold.", constraints={"budget_range": "$8-$12"}
    )

    assert project.name == "Insulated kitchen bottle"
    assert project.product_definition.manufacturing_category == "Food Contact Consumer Goods"
    assert project.constraints.budget_range == "$8-$12"
    assert len(project.checklist) == 8
    assert project.module_status["ideation"] == "validated"
    assert _status(project, keys.DEFINE_PRODUCT) == "validated"
    assert workflow.get_project(project.id).id == project.id

    with pytest.raises(ProjectNotFoundError):
        workflow.get_project("missing")


def test_manufacturing_flow_from_outreach_to_finalized_supplier(workflow):
    project = workflow.create_project("Stackable storage crate", name="Crate")

    project = workflow.add_suppliers(project.id, SUPPLIERS)
    assert [supplier.status for supplier in project.suppliers] == ["identified"] * 3
    assert project.module_status["discovery"] == "validated"

    project = workflow.create_outreach_drafts(project.id)
    assert len(project.outreach_drafts) == 3

    outreach = workflow.send_outreach(project.id)
    assert outreach.sent_count == 2
    assert outreach.failures == [{"supplier_id": "gamma", "reason": "Supplier email missing"}]
    assert [entry[0] for entry in workflow.email_service.sent] == ["sales@alpha.example", "quotes@beta.example"]
    statuses = {supplier.id: supplier.status for supplier in outreach.project.suppliers}
    assert statuses == {"alpha": "contacted", "beta": "contacted", "gamma": "outreach_failed"}
    assert _status(outreach.project, keys.OUTREACH_RFQ) == "validated"

    ingest = workflow.ingest_reply(
        project.id,
        "alpha",
        "Unit price: $9.40. MOQ: 800 units. Lead time: 30 days. Tooling cost: $2500.",
    )
    assert not ingest.requires_human
    alpha = ingest.project.find_supplier("alpha")
    assert alpha.status == "responded"
    assert alpha.unit_price == 9.4
    assert alpha.moq == 800
    assert ingest.project.conversations[0].source == "manual_ingest"
    assert ingest.project.module_status["negotiation"] == "in_progress"

    with pytest.raises(SupplierNotFoundError):
        workflow.ingest_reply(project.id, "nobody", "hello")

    award = workflow.run_award_gate(project.id, auto_select=True)
    recommended = award.decision.recommended_supplier_id
    assert recommended in {"alpha", "beta", "gamma"}
    selected = [supplier.id for supplier in award.project.suppliers if supplier.selected]
    assert selected == [recommended]
    assert award.project.outcome_engine.award_decision.recommended_supplier_id == recommended

    project = workflow.finalize_supplier(project.id, "alpha")
    alpha = project.find_supplier("alpha")
    assert alpha.finalized and alpha.selected and alpha.status == "finalized"
    assert _status(project, keys.MANUFACTURER_SELECTION) == "validated"
    assert project.module_status["success"] == "validated"


def test_send_outreach_requires_drafts_and_transport(workflow):
    project = workflow.create_project("Desk lamp", name="Lamp")
    project = workflow.add_suppliers(project.id, SUPPLIERS[:1])

    with pytest.raises(PreconditionFailedError):
        workflow.send_outreach(project.id)

    workflow.create_outreach_drafts(project.id)
    workflow.email_service = None
    with pytest.raises(PreconditionFailedError):
        workflow.send_outreach(project.id)


def test_negotiation_draft_and_outcome_plan(workflow):
    project = workflow.create_project("Stackable storage crate", name="Crate")
    project = workflow.add_suppliers(project.id, SUPPLIERS)
    workflow.select_supplier(project.id, "beta")

    with pytest.raises(SupplierNotFoundError):
        workflow.draft_negotiation(project.id, "nobody")

    drafted = workflow.draft_negotiation(project.id)
    assert drafted.supplier_id == "beta"
    assert drafted.project.conversations[0].source == "negotiation_draft"
    assert _status(drafted.project, keys.NEGOTIATION) == "validated"
    assert _status(drafted.project, keys.MANUFACTURER_SELECTION) == "in_progress"

    project = workflow.generate_outcome_plan(project.id, "scale")
    engine = project.outcome_engine
    assert engine.should_cost.cost_breakdown.tooling_usd == 3200
    assert [variant.key for variant in engine.variants] == ["prototype", "pilot", "scale"]
    assert engine.structured_rfq.variant_key == "scale"
    assert engine.kpi_snapshot

    project = workflow.generate_structured_rfq(project.id, "pilot")
    assert project.outcome_engine.structured_rfq.variant_key == "pilot"

    metrics = workflow.refresh_metrics(project.id)
    assert workflow.get_project(project.id).outcome_engine.kpi_snapshot == metrics


def test_ingredient_sourcing_negotiation_rounds(workflow):
    project = workflow.create_project("Turmeric powder for a spice blend", name="Spice")

    with pytest.raises(PreconditionFailedError):
        workflow.update_sourcing_brief(project.id, {"search_term": " "})

    project = workflow.update_sourcing_brief(
        project.id, {"search_term": "turmeric powder", "quantity_target_kg": 500, "country": "Nepal"}
    )
    assert project.sourcing.enabled
    assert project.sourcing.brief.country == "India"
    assert project.sourcing.brief.currency == "INR"

    project = workflow.add_sourcing_suppliers(project.id, SOURCING_SUPPLIERS)
    assert project.sourcing.module_status["discovery"] == "validated"

    project = workflow.ingest_sourcing_reply(project.id, "erode", "Rs 42/kg, MOQ 500 kg, 7 days, FSSAI certified")
    erode = project.find_sourcing_supplier("erode")
    assert erode.status == "responded"
    assert erode.price_inr_per_kg == 42

    first = workflow.negotiate(project.id)
    assert first.supplier_id == "erode"
    assert first.round.round == 1
    assert first.round.delivery.status == "sent"
    assert first.project.sourcing.conversations[0].metadata["round"] == 1

    second = workflow.negotiate(project.id, "erode")
    assert second.round.round == 2

    third = workflow.negotiate(project.id, "erode")
    assert third.round.stop_decision.stop
    assert third.round.delivery.status == "draft_only"
    assert third.project.sourcing.module_status["negotiation"] == "validated"

    with pytest.raises(SupplierNotFoundError):
        workflow.negotiate(project.id, "nobody")


def test_negotiation_reaching_target_shortlists_supplier(workflow):
    project = workflow.create_project("Dried chilli flakes", name="Chilli")
    workflow.update_sourcing_brief(project.id, {"search_term": "chilli flakes"})
    workflow.add_sourcing_suppliers(project.id, SOURCING_SUPPLIERS)
    workflow.ingest_sourcing_reply(project.id, "salem", "INR 40/kg, MOQ 300 kg, 5 days")

    result = workflow.negotiate(
        project.id, "salem", target={"unit_price_inr_per_kg": 45, "moq_kg": 500, "lead_time_days": 10}
    )

    assert result.round.stop_decision.stop
    assert result.project.find_sourcing_supplier("salem").status == "shortlisted"


def test_whatsapp_webhook_is_queued_then_synced(workflow):
    project = workflow.create_project("Turmeric powder", name="Spice")
    workflow.update_sourcing_brief(project.id, {"search_term": "turmeric"})
    workflow.add_sourcing_suppliers(project.id, SOURCING_SUPPLIERS)

    body = {"From": "whatsapp:+919876543210", "To": "whatsapp:+14155238886", "Body": "Rs 39/kg, 6 days", "MessageSid": "SM77"}

    with pytest.raises(WebhookVerificationError):
        workflow.queue_whatsapp_inbound({"x-webhook-token": "wrong"}, body)
    assert workflow.queue_whatsapp_inbound({"x-webhook-token": "secret"}, dict(body, Body="")) is None

    assert workflow.queue_whatsapp_inbound({"x-webhook-token": "secret"}, body) == project.id
    assert workflow.queue_whatsapp_inbound({"x-webhook-token": "secret"}, body) == project.id
    queued = workflow.get_project(project.id).sourcing.inbox_queue
    assert [entry.message_sid for entry in queued] == ["SM77"]

    synced = workflow.sync_sourcing_replies(project.id)
    assert synced.synced_count == 1
    erode = synced.project.find_sourcing_supplier("erode")
    assert erode.price_inr_per_kg == 39
    assert erode.lead_time_days == 6
    assert synced.project.sourcing.inbox_queue == []

    metrics = workflow.refresh_sourcing_metrics(project.id)
    assert metrics["funnel"]["suppliers_responded"] == 1
    assert metrics["economics"]["min_unit_price_inr_per_kg"] == 39

    assert workflow.sync_sourcing_replies(project.id).synced_count == 0


def test_webhook_ignored_without_transport():
    workflow = SourcingWorkflow(
        InMemoryProjectRepository(),
        lock=KeyedLock(redis_factory=lambda: None),
        settings=Settings(),
    )
    assert workflow.queue_whatsapp_inbound({}, {"From": "+919876543210", "Body": "hi"}) is None


def test_autopilot_runs_to_front_runner_and_is_repeatable(workflow):
    project = workflow.create_project("Insulated steel bottle", name="Bottle")

    with pytest.raises(PreconditionFailedError):
        workflow.run_autopilot(project.id)

    workflow.add_suppliers(project.id, SUPPLIERS[:2])
    result = workflow.run_autopilot(project.id)

    assert result.summary[:3] == ["prepared_2_drafts", "sent_2_rfqs", "simulated_2_replies"]
    assert result.summary[3].startswith("negotiated_with_")
    best_id = result.summary[3][len("negotiated_with_"):]
    assert [supplier.id for supplier in result.project.suppliers if supplier.selected] == [best_id]
    assert all(supplier.status == "responded" for supplier in result.project.suppliers)
    assert all(draft.status == "sent" for draft in result.project.outreach_drafts)
    assert workflow.email_service.sent == []
    assert _status(result.project, keys.MANUFACTURER_SELECTION) == "in_progress"

    again = workflow.run_autopilot(project.id)
    assert again.summary == [f"negotiated_with_{best_id}"]


def test_delete_project(workflow):
    project = workflow.create_project("Desk lamp", name="Lamp")
    assert [entry.id for entry in workflow.list_projects()] == [project.id]

    assert workflow.delete_project(project.id)
    with pytest.raises(ProjectNotFoundError):
        workflow.delete_project(project.id)


class SlowEmail(FakeEmail):
    configured = True

    def __init__(self):
        super().__init__()
        self.in_flight = 0
        self.max_in_flight = 0
        self._guard = threading.Lock()

    def send_email(self, to, subject, body):
        with self._guard:
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        time.sleep(0.05)
        with self._guard:
            self.in_flight -= 1
        return super().send_email(to, subject, body)


def _contacted_project(workflow):
    project = workflow.create_project("Stackable storage crate", name="Crate")
    workflow.add_suppliers(project.id, SUPPLIERS[:1])
    workflow.create_outreach_drafts(project.id)
    workflow.send_outreach(project.id)
    workflow.email_service.sent.clear()
    workflow.clock.now = datetime.now(timezone.utc) + timedelta(hours=30)
    return project


def _run_together(*calls):
    errors = []

    def run(call):
        try:
            call()
        except Exception as exc:
            errors.append(exc)

    threads = [threading.Thread(target=run, args=(call,)) for call in calls]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(5)
    assert errors == []


def test_overlapping_follow_up_runs_respect_the_reminder_cap(workflow):
    workflow.email_service = SlowEmail()
    project = _contacted_project(workflow)

    _run_together(
        lambda: workflow.run_follow_ups(project.id, max_follow_ups=1),
        lambda: workflow.run_follow_ups(project.id, max_follow_ups=1),
    )

    stored = workflow.get_project(project.id)
    follow_ups = [entry for entry in stored.conversations if entry.source == "followup"]
    assert len(workflow.email_service.sent) == 1
    assert len(follow_ups) == 1
    assert stored.find_supplier("alpha").follow_ups_sent == 1


def test_overlapping_outreach_batches_do_not_interleave(workflow):
    workflow.email_service = SlowEmail()
    project = workflow.create_project("Desk lamp", name="Lamp")
    workflow.add_suppliers(project.id, SUPPLIERS[:2])
    workflow.create_outreach_drafts(project.id)

    _run_together(lambda: workflow.send_outreach(project.id), lambda: workflow.send_outreach(project.id))

    stored = workflow.get_project(project.id)
    assert workflow.email_service.max_in_flight == 1
    assert len(workflow.email_service.sent) == 4
    assert len([entry for entry in stored.conversations if entry.direction == "outbound"]) == 4


def test_follow_up_policy_defaults_come_from_settings():
    workflow = SourcingWorkflow(
        InMemoryProjectRepository(),
        email_service=SlowEmail(),
        lock=KeyedLock(redis_factory=lambda: None),
        settings=Settings(followup_max_followups=0, followup_response_sla_hours=12),
        clock=Clock(),
    )
    project = _contacted_project(workflow)
    assert workflow.get_project(project.id).outcome_engine.follow_up_policy is None

    result = workflow.run_follow_ups(project.id)

    assert result.sent_count == 0
    assert workflow.email_service.sent == []
    policy = result.project.outcome_engine.follow_up_policy
    assert policy.max_follow_ups == 0
    assert policy.response_sla_hours == 12
    assert policy.cadence_hours == 24

    assert workflow.run_follow_ups(project.id, max_follow_ups=1).sent_count == 1


def test_message_queued_during_sync_survives_for_the_next_sync(workflow, monkeypatch):
    project = workflow.create_project("Turmeric powder", name="Spice")
    workflow.update_sourcing_brief(project.id, {"search_term": "turmeric"})
    workflow.add_sourcing_suppliers(project.id, SOURCING_SUPPLIERS)

    token = {"x-webhook-token": "secret"}
    body = {"From": "whatsapp:+919876543210", "To": "whatsapp:+14155238886", "Body": "Rs 39/kg, 6 days", "MessageSid": "SM1"}
    late = dict(body, Body="Rs 37/kg, 6 days", MessageSid="SM2")
    workflow.queue_whatsapp_inbound(token, body)

    collect = workflow_module.collect_reply_records

    def collect_then_receive(snapshot, inbox=None):
        records = collect(snapshot, inbox=inbox)
        workflow.queue_whatsapp_inbound(token, late)
        return records

    monkeypatch.setattr(workflow_module, "collect_reply_records", collect_then_receive)
    synced = workflow.sync_sourcing_replies(project.id)
    assert synced.synced_count == 1
    assert [entry.message_sid for entry in synced.project.sourcing.inbox_queue] == ["SM2"]

    monkeypatch.setattr(workflow_module, "collect_reply_records", collect)
    synced = workflow.sync_sourcing_replies(project.id)
    assert synced.synced_count == 1
    assert synced.project.sourcing.inbox_queue == []
    assert synced.project.find_sourcing_supplier("erode").price_inr_per_kg == 37
