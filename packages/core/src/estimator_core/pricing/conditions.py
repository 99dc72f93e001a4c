from __future__ import annotations

from typing import Any

from estimator_core.schemas.rules import TriggerOperator
from estimator_core.utils.coerce import coerce_to_bool, coerce_to_number, normalize_label


def _matches_equals(actual: Any, expected: Any) -> bool:
    if isinstance(actual, list):
        if not isinstance(expected, str):
            return False
        wanted = expected.strip().lower()
        return any(isinstance(item, str) and item.strip().lower() == wanted for item in actual)
    if isinstance(actual, bool) or isinstance(expected, bool):
        actual_bool = coerce_to_bool(actual)
        return actual_bool is not None and actual_bool == coerce_to_bool(expected)
    if isinstance(actual, (int, float)) or isinstance(expected, (int, float)):
        actual_num = coerce_to_number(actual)
        expected_num = coerce_to_number(expected)
        if actual_num is not None and expected_num is not None:
            return actual_num == expected_num
    if isinstance(actual, str) and isinstance(expected, str):
        if actual.strip().lower() == expected.strip().lower():
            return True
        return normalize_label(actual) == normalize_label(expected)
    return actual == expected


def _compare_numbers(actual: Any, expected: Any) -> tuple[float, float] | None:
    actual_num = coerce_to_number(actual)
    expected_num = coerce_to_number(expected)
    if actual_num is None or expected_num is None:
        return None
    return actual_num, expected_num


def evaluate_condition(operator: TriggerOperator, actual: Any, expected: Any = None) -> bool:
    """Evaluate ``actual <operator> expected`` with form-friendly coercion.

    Form inputs arrive as strings ("30", "2,400", "Yes"), so numeric and boolean
    operands are coerced before comparing. A missing value only satisfies
    ``not_exists``.
    """
    operator = TriggerOperator(operator)
    if operator is TriggerOperator.EXISTS:
        return actual is not None
    if operator is TriggerOperator.NOT_EXISTS:
        return actual is None
    if actual is None:
        return False
    if operator is TriggerOperator.EQUALS:
        return _matches_equals(actual, expected)
    pair = _compare_numbers(actual, expected)
    if operator is TriggerOperator.GT:
        return pair is not None and pair[0] > pair[1]
    if operator is TriggerOperator.GTE:
        return pair is not None and pair[0] >= pair[1]
    if operator is TriggerOperator.LT:
        return pair is not None and pair[0] < pair[1]
    if operator is TriggerOperator.LTE:
        return pair is not None and pair[0] <= pair[1]
    raise ValueError(f"Unsupported trigger operator: {operator!r}")
