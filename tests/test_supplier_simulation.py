import os
import sys

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from models.project import Project
from models.supplier import Supplier
from services.response_intelligence import parse_supplier_reply
from services.supplier_simulation import (
    generate_synthetic_quote,
    hash_seed,
    pick_best_supplier,
    simulate_supplier_replies,
)
from utils.supplier_score import compute_supplier_confidence


def _project():
    project = Project(id="proj-1", name="Bottle", idea="Insulated steel bottle")
    project.product_definition.manufacturing_category = "Food Contact Consumer Goods"
    project.suppliers = [
        Supplier(id="s1", name="Ningbo Steel", country="China", contact_person="Lily"),
        Supplier(id="s2", name="Hanoi Metal", country="Vietnam"),
    ]
    return project


def test_hash_seed_matches_known_values():
    assert hash_seed("") == 0
    assert hash_seed("a") == 97
    assert hash_seed("ab") == 97 * 31 + 98


def test_synthetic_quotes_are_deterministic():
    project = _project()
    first = generate_synthetic_quote(project, project.suppliers[0])
    second = generate_synthetic_quote(project, project.suppliers[0])

    assert first == second
    assert 320 <= first.moq <= 2800
    assert first.moq % 10 == 0
    assert 16 <= first.lead_time_days <= 56
    assert first.tooling_cost % 50 == 0


def test_simulated_replies_parse_back_into_quotes():
    project = _project()
    replies = simulate_supplier_replies(project, ["s1"])

    assert [reply.supplier_id for reply in replies] == ["s1"]
    reply = replies[0]
    assert reply.subject == "RE: RFQ Bottle"
    assert reply.reply_text.startswith("Hi team, this is Lily from Ningbo Steel.")

    parsed = parse_supplier_reply(reply.reply_text)
    assert parsed.unit_price == reply.quote.unit_price
    assert parsed.moq == reply.quote.moq
    assert parsed.lead_time_days == reply.quote.lead_time_days
    assert parsed.tooling_cost == reply.quote.tooling_cost


def test_pick_best_supplier_prefers_cheaper_and_tolerates_zero_price():
    cheap = Supplier(id="cheap", pricing={"unit_price": 5.0}, moq=500, lead_time_days=20)
    pricey = Supplier(id="pricey", pricing={"unit_price": 9.0}, moq=500, lead_time_days=20)
    free = Supplier(id="free", pricing={"unit_price": 0}, moq=500, lead_time_days=20)

    assert pick_best_supplier([pricey, cheap]).id == "cheap"
    assert pick_best_supplier([free, cheap]).id == "cheap"
    assert pick_best_supplier([]) is None


def test_supplier_confidence_heuristic():
    supplier = Supplier(import_feasibility="High", distance_complexity="Low", pricing={"unit_price": 4}, moq=100)
    assert compute_supplier_confidence(supplier) == 0.8

    assert compute_supplier_confidence(Supplier()) == 0.3
