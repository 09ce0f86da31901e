import os
import sys

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from utils.number_extraction import (
    extract_lead_time_days,
    extract_moq,
    extract_price,
    extract_tooling_cost,
    first_number,
    format_number,
    round_half_up,
    to_number,
)


def test_price_prefers_keyword_scoped_match():
    assert extract_price("Unit price: $12.40 per piece, shipping $300") == 12.4


def test_price_falls_back_to_dollar_amount():
    assert extract_price("We can do $7.25 each") == 7.25


def test_extractors_return_none_without_signal():
    text = "Thanks for reaching out, we will revert soon."
    assert extract_price(text) is None
    assert extract_moq(text) is None
    assert extract_tooling_cost(text) is None
    assert extract_lead_time_days(text) is None


def test_lead_time_weeks_are_converted_to_days():
    assert extract_lead_time_days("Production takes 5 weeks") == 35
    assert extract_lead_time_days("dispatch within 12 days") == 12


def test_moq_and_tooling():
    assert extract_moq("Minimum order 1500 pcs") == 1500
    assert extract_tooling_cost("Mold: $2000") == 2000


def test_to_number_handles_currency_strings_and_non_finite():
    assert to_number("$1,250.50") == 1250.5
    assert to_number(float("nan")) is None
    assert to_number(True) is None
    assert to_number("") is None


def test_round_half_up_and_first_number():
    assert round_half_up(2.5) == 3
    assert round_half_up(8.4) == 8
    assert first_number("500-1000 units") == 500
    assert first_number("") is None


def test_format_number_drops_trailing_zero():
    assert format_number(42.0) == "42"
    assert format_number(12.4) == "12.4"
    assert format_number(None) == "N/A"
