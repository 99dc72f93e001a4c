from __future__ import annotations

from estimator_core.schemas.validation import (
    IssuePolicy,
    OutcomeKind,
    ValidationOutcome,
    ValidationResult,
    ValidationSettings,
)

_PASSED = ValidationOutcome(outcome="passed")
_AUTO_CORRECTED = ValidationOutcome(outcome="auto_corrected")
_REVIEW = ValidationOutcome(
    outcome="sent_for_review", needs_review=True, status_override="pending_review"
)
_BLOCKED = ValidationOutcome(outcome="blocked", needs_review=True, status_override="pending_review")

_OUTCOMES: dict[OutcomeKind, ValidationOutcome] = {
    "passed": _PASSED,
    "auto_corrected": _AUTO_CORRECTED,
    "sent_for_review": _REVIEW,
    "blocked": _BLOCKED,
}

# Policies each severity honours; anything else falls back to the severity default.
_SEVERITY_POLICIES: dict[str, tuple[dict[IssuePolicy, OutcomeKind], OutcomeKind]] = {
    "critical": (
        {
            "block": "blocked",
            "flag_for_review": "sent_for_review",
            "auto_correct": "auto_corrected",
        },
        "sent_for_review",
    ),
    "high": (
        {
            "block": "blocked",
            "flag_for_review": "sent_for_review",
            "auto_correct": "auto_corrected",
            "pass_with_warning": "passed",
        },
        "auto_corrected",
    ),
    "medium": (
        {
            "flag_for_review": "sent_for_review",
            "auto_correct": "auto_corrected",
            "pass_with_warning": "passed",
            "ignore": "passed",
        },
        "auto_corrected",
    ),
    "low": (
        {
            "flag_for_review": "sent_for_review",
            "pass_with_warning": "passed",
            "ignore": "passed",
        },
        "passed",
    ),
}


def _resolve(severity: str, policy: IssuePolicy) -> ValidationOutcome:
    allowed, fallback = _SEVERITY_POLICIES[severity]
    return _OUTCOMES[allowed.get(policy, fallback)]


def determine_validation_outcome(
    result: ValidationResult,
    settings: ValidationSettings,
    quote_total: float,
) -> ValidationOutcome:
    """Map issues to an outcome, most severe first.

    A positive manual-review threshold overrides every issue-based outcome.
    """
    if not settings.enabled:
        return _PASSED
    threshold = settings.require_manual_review_above
    if threshold > 0 and quote_total > threshold:
        return _REVIEW

    summary = result.summary
    if summary.critical_count > 0:
        return _resolve("critical", settings.on_critical_issue)
    if summary.high_count > 0:
        return _resolve("high", settings.on_high_issue)
    if summary.medium_count > 0:
        return _resolve("medium", settings.on_medium_issue)
    if summary.low_count > 0:
        return _resolve("low", settings.on_low_issue)
    return _PASSED
