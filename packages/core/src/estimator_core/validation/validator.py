from __future__ import annotations

import logging

from pydantic import ValidationError

from estimator_core.llm.base import LLMClient
from estimator_core.schemas.quote import CustomerRequest, GeneratedQuote, ServiceConfig
from estimator_core.schemas.rules import PricingRules
from estimator_core.schemas.validation import (
    AutoFixAction,
    ValidationIssue,
    ValidationResult,
    ValidationSettings,
    default_validation_settings,
)
from estimator_core.utils.coerce import coerce_to_number
from estimator_core.utils.text import extract_json_object
from estimator_core.validation.checks import check_quote
from estimator_core.validation.prompts import build_validation_prompt

logger = logging.getLogger(__name__)


def default_validation_result(actual_total: float) -> ValidationResult:
    """Neutral result used whenever the AI review cannot be trusted."""
    return ValidationResult(
        confidence_score=0.5,
        issues=[],
        calculated_expected_total=actual_total,
        actual_total=actual_total,
        pricing_gap_percent=0.0,
    )


def normalize_validation_payload(payload: dict, actual_total: float) -> ValidationResult:
    issues: list[ValidationIssue] = []
    raw_issues = payload.get("issues")
    for index, raw in enumerate(raw_issues if isinstance(raw_issues, list) else []):
        if not isinstance(raw, dict):
            continue
        candidate = dict(raw)
        candidate.setdefault("id", f"ai-{index + 1}")
        try:
            issues.append(ValidationIssue.model_validate(candidate))
        except ValidationError as exc:
            logger.warning("dropping malformed validation issue %s: %s", index, exc.errors()[:1])

    confidence = coerce_to_number(payload.get("confidenceScore", payload.get("confidence_score")))
    if confidence is None:
        confidence = 0.5
    expected = coerce_to_number(
        payload.get("calculatedExpectedTotal", payload.get("calculated_expected_total"))
    )
    gap = coerce_to_number(payload.get("pricingGapPercent", payload.get("pricing_gap_percent")))
    return ValidationResult(
        confidence_score=min(max(confidence, 0.0), 1.0),
        issues=issues,
        calculated_expected_total=expected or actual_total,
        actual_total=actual_total,
        pricing_gap_percent=gap or 0.0,
    )


async def validate_quote(
    client: LLMClient,
    quote: GeneratedQuote,
    request: CustomerRequest,
    service_config: ServiceConfig,
) -> ValidationResult:
    """One AI review pass. Any failure yields the neutral default instead of raising."""
    actual_total = quote.pricing.total
    prompt = build_validation_prompt(quote, request, service_config)
    try:
        reply = await client.complete_text(prompt)
    except Exception as exc:
        logger.warning("quote validation call failed", exc_info=exc)
        return default_validation_result(actual_total)

    payload = extract_json_object(reply)
    if payload is None:
        logger.warning("no JSON object in validation reply: %.200s", reply)
        return default_validation_result(actual_total)
    try:
        return normalize_validation_payload(payload, actual_total)
    except (ValidationError, ValueError) as exc:
        logger.warning("validation reply could not be normalised", exc_info=exc)
        return default_validation_result(actual_total)


def merge_validation_results(
    rule_result: ValidationResult,
    ai_result: ValidationResult,
    settings: ValidationSettings,
) -> ValidationResult:
    seen = {(issue.check, issue.description.strip().lower()) for issue in rule_result.issues}
    merged = list(rule_result.issues)
    for issue in ai_result.issues:
        key = (issue.check, issue.description.strip().lower())
        if key in seen or not settings.enabled_checks.allows(issue.category):
            continue
        seen.add(key)
        merged.append(issue)
    return ValidationResult(
        confidence_score=min(rule_result.confidence_score, ai_result.confidence_score),
        issues=merged,
        calculated_expected_total=rule_result.calculated_expected_total,
        actual_total=rule_result.actual_total,
        pricing_gap_percent=rule_result.pricing_gap_percent,
    )


def drop_unknown_fixes(result: ValidationResult, rules: PricingRules) -> ValidationResult:
    """Demote fixes that name a work step the service does not configure to flag-only."""
    issues: list[ValidationIssue] = []
    for issue in result.issues:
        fix = issue.auto_fix
        if fix is not None and fix.action is AutoFixAction.ADD_WORK_STEP:
            missing = rules.missing_references(work_step_ids=[fix.details.work_step_id or ""])
            if missing:
                logger.warning("issue %s references unknown %s", issue.id, missing[0])
                issue = issue.model_copy(
                    update={
                        "auto_fixable": False,
                        "auto_fix": fix.model_copy(update={"action": AutoFixAction.FLAG_ONLY}),
                    }
                )
        issues.append(issue)
    return result.model_copy(update={"issues": issues})


async def review_quote(
    quote: GeneratedQuote,
    request: CustomerRequest,
    service_config: ServiceConfig,
    client: LLMClient | None = None,
    settings: ValidationSettings | None = None,
) -> ValidationResult:
    resolved = settings or default_validation_settings()
    rule_result = check_quote(quote, request, service_config, resolved)
    if client is None or not resolved.enabled:
        return rule_result
    ai_result = drop_unknown_fixes(
        await validate_quote(client, quote, request, service_config),
        service_config.pricing_rules,
    )
    return merge_validation_results(rule_result, ai_result, resolved)
