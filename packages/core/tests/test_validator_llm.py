from __future__ import annotations

import orjson
import pytest

from estimator_core.llm.base import LLMError
from estimator_core.schemas.validation import EnabledChecks, ValidationSettings
from estimator_core.validation import default_validation_result, review_quote, validate_quote
from estimator_core.validation.prompts import build_validation_prompt


class ReviewClient:
    def __init__(self, reply: str | None = None, error: Exception | None = None) -> None:
        self.reply = reply
        self.error = error
        self.prompts: list[str] = []

    async def complete_json(self, prompt: str, schema: dict) -> dict:
        raise AssertionError("validation uses free-text completion")

    async def complete_text(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.reply


def _reply(issues: list[dict], **fields) -> str:
    payload = {
        "confidenceScore": 0.8,
        "calculatedExpectedTotal": 384,
        "pricingGapPercent": 0,
        "issues": issues,
        **fields,
    }
    return "Review complete:\n" + orjson.dumps(payload).decode("utf-8")


AI_ISSUE = {
    "id": "ai-1",
    "category": "Scope",
    "severity": "MEDIUM",
    "check": "CHECK_2b",
    "description": "Scope wording is vague",
    "found": "Full clean",
    "expected": "Itemised scope",
    "autoFixable": False,
}


def test_default_result_passes() -> None:
    result = default_validation_result(210.0)
    assert result.overall_status == "PASS"
    assert result.confidence_score == 0.5
    assert result.issues == []
    assert result.calculated_expected_total == 210.0
    assert result.pricing_gap_percent == 0.0


@pytest.mark.asyncio
async def test_ai_reply_is_normalised(quote_for, house_service, house_answers) -> None:
    quote, request = quote_for(house_answers)
    client = ReviewClient(
        _reply([AI_ISSUE, {"id": "ai-2", "severity": "urgent", "description": "bad"}])
    )

    result = await validate_quote(client, quote, request, house_service)

    assert len(client.prompts) == 1
    assert [issue.check for issue in result.issues] == ["CHECK_2b"]
    assert result.issues[0].severity == "medium"
    assert result.issues[0].category == "scope"
    assert result.confidence_score == 0.8
    assert result.actual_total == 384.0
    assert result.overall_status == "REVIEW_NEEDED"


@pytest.mark.asyncio
async def test_confidence_is_clamped(quote_for, house_service, house_answers) -> None:
    quote, request = quote_for(house_answers)
    client = ReviewClient(_reply([], confidenceScore=1.7))
    result = await validate_quote(client, quote, request, house_service)
    assert result.confidence_score == 1.0


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "client",
    [
        ReviewClient(error=LLMError("provider down")),
        ReviewClient(error=RuntimeError("socket closed")),
        ReviewClient("I could not review this quote."),
        ReviewClient('{"issues": "not a list", "confidenceScore": "high"}'),
    ],
)
async def test_failures_fall_back_to_default(
    client, quote_for, house_service, house_answers
) -> None:
    quote, request = quote_for(house_answers)
    result = await validate_quote(client, quote, request, house_service)

    assert result.issues == []
    assert result.confidence_score == 0.5
    assert result.overall_status == "PASS"
    assert result.calculated_expected_total == 384.0


@pytest.mark.asyncio
async def test_review_merges_rule_and_ai_issues(quote_for, house_service, house_answers) -> None:
    quote, request = quote_for(house_answers, description="No extras please, the oven is grim")
    duplicate = {
        "id": "ai-dup",
        "category": "addons",
        "severity": "high",
        "check": "CHECK_5a",
        "description": 'ADDON "OVEN CLEAN" ADDED ALTHOUGH THE CUSTOMER ASKED FOR NO EXTRAS',
    }
    logic = {
        "id": "ai-logic",
        "category": "logic",
        "severity": "low",
        "check": "CHECK_8a",
        "description": "Timing looks inconsistent",
    }
    client = ReviewClient(_reply([duplicate, AI_ISSUE, logic], calculatedExpectedTotal=432))
    settings = ValidationSettings(enabled_checks=EnabledChecks(logic_validation=False))

    result = await review_quote(quote, request, house_service, client=client, settings=settings)

    assert [issue.check for issue in result.issues] == ["CHECK_5a", "CHECK_2b"]
    assert result.confidence_score == 0.8
    assert result.calculated_expected_total == 432.0


@pytest.mark.asyncio
async def test_review_demotes_fixes_for_unknown_work_steps(
    quote_for, house_service, house_answers
) -> None:
    quote, request = quote_for(house_answers)

    def _missing_step(issue_id: str, step_id: str) -> dict:
        return {
            "id": issue_id,
            "category": "pricing",
            "severity": "high",
            "check": "CHECK_1a",
            "description": f"Missing {step_id}",
            "autoFixable": True,
            "autoFix": {"action": "add_work_step", "details": {"workStepId": step_id}},
        }

    client = ReviewClient(_reply([_missing_step("ai-1", "kitchen"), _missing_step("ai-2", "loft")]))
    result = await review_quote(quote, request, house_service, client=client)

    by_id = {issue.id: issue for issue in result.issues}
    assert by_id["ai-1"].auto_fix.action.value == "add_work_step"
    assert by_id["ai-1"].auto_fixable is True
    assert by_id["ai-2"].auto_fix.action.value == "flag_only"
    assert by_id["ai-2"].auto_fixable is False


@pytest.mark.asyncio
async def test_review_without_client_uses_rules_only(
    quote_for, house_service, house_answers
) -> None:
    quote, request = quote_for(house_answers)
    result = await review_quote(quote, request, house_service)
    assert result.issues == []
    assert result.confidence_score == 1.0


def test_prompt_lists_configuration_and_quote(quote_for, house_service, house_answers) -> None:
    quote, request = quote_for(house_answers, description="Oven is grim")
    prompt = build_validation_prompt(quote, request, house_service)

    assert "[ID: kitchen] Kitchen: £65/fixed" in prompt
    assert "[ID: oven_clean] Oven clean: £40" in prompt
    assert "Oven is grim" in prompt
    assert "CHECK_5 addons" in prompt
