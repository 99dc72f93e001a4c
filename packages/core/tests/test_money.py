from __future__ import annotations

from estimator_core.utils.coerce import (
    coerce_to_bool,
    coerce_to_number,
    is_truthy,
    normalize_label,
    title_key,
)
from estimator_core.utils.money import (
    format_currency,
    format_number,
    money_mul,
    money_sum,
    percent_of,
    round2,
)
from estimator_core.utils.text import contains_any, extract_json_object


def test_round2_is_half_up() -> None:
    assert round2(1.005) == 1.01
    assert round2(2.675) == 2.68
    assert round2(-0.125) == -0.13
    assert round2(10) == 10.0


def test_money_helpers_sum_exactly() -> None:
    assert money_sum([33.33, 66.67]) == 100.0
    assert money_sum([0.1, 0.2]) == 0.3
    assert money_mul(3, 33.335) == 100.01
    assert percent_of(100.0, 20) == 20.0
    assert percent_of(33.33, 17.5) == 5.83


def test_currency_formatting() -> None:
    assert format_currency(75, "GBP") == "£75.00"
    assert format_currency(1234.5, "usd") == "$1234.50"
    assert format_currency(5, "XYZ") == "XYZ 5.00"
    assert format_number(4.0) == "4"
    assert format_number(2.5) == "2.5"
    assert format_number(3) == "3"


def test_coercion_of_form_input() -> None:
    assert coerce_to_number("2,400") == 2400.0
    assert coerce_to_number(" 30 ") == 30.0
    assert coerce_to_number("abc") is None
    assert coerce_to_number(True) is None
    assert coerce_to_number("inf") is None
    assert coerce_to_number(float("nan")) is None
    assert coerce_to_number("1e30") is None
    assert coerce_to_number(1e9) == 1e9
    assert coerce_to_bool("Yes") is True
    assert coerce_to_bool("n") is False
    assert coerce_to_bool(2) is None
    assert is_truthy("no") is False
    assert is_truthy("something") is True
    assert is_truthy([]) is False


def test_label_normalisation() -> None:
    assert normalize_label("Two_Storey  (House)") == "two storey house"
    assert normalize_label("<Loft>") == "loft"
    assert title_key("property_type") == "Property Type"


def test_extract_json_object_from_free_text() -> None:
    assert extract_json_object('Here you go: {"a": 1, "b": [2]} thanks') == {"a": 1, "b": [2]}
    assert extract_json_object("no json here") is None
    assert extract_json_object("{not json}") is None
    assert extract_json_object("") is None


def test_contains_any_is_case_insensitive() -> None:
    assert contains_any("Please, NO RUSH at all", ("no rush", "asap")) == ["no rush"]
    assert contains_any("", ("x",)) == []
