from __future__ import annotations

import logging
import re

from estimator_core.pricing.addons import find_matching_keyword
from estimator_core.pricing.calculator import (
    COMPLEXITY_STEP_ID,
    calculate_pricing_with_trace,
    should_trigger_work_step,
)
from estimator_core.pricing.conditions import evaluate_condition
from estimator_core.pricing.quantity import SignalLookup, resolve_quantity
from estimator_core.schemas.pricing import AddonContext
from estimator_core.schemas.quote import CustomerRequest, GeneratedQuote, ServiceConfig
from estimator_core.schemas.rules import CostType, TaxConfig
from estimator_core.schemas.signals import (
    ComplexityAssessment,
    LegacySignals,
    default_legacy_signals,
)
from estimator_core.schemas.validation import (
    AutoFix,
    AutoFixAction,
    AutoFixDetails,
    IssueCategory,
    IssueSeverity,
    ValidationIssue,
    ValidationResult,
    ValidationSettings,
    default_validation_settings,
)
from estimator_core.utils.coerce import coerce_to_number, is_truthy, normalize_label
from estimator_core.utils.money import money_mul, money_sum, round2, to_decimal
from estimator_core.utils.text import contains_any

logger = logging.getLogger(__name__)

ADDON_SUPPRESSORS = (
    "no extras",
    "nothing extra",
    "no add-ons",
    "no addons",
    "keep it simple",
    "budget only",
    "just the basics",
    "basics only",
)
NEGATION_PREFIXES = ("no", "not", "without", "don't want", "do not want", "don't need", "skip")
DEFERRAL_PHRASES = (
    "not for this quote",
    "maybe later",
    "just mentioning",
    "not right now",
    "in future",
)
REPAIR_INTENT = ("repair", "fix", "replace")
INSPECTION_WORDS = ("inspect", "assess", "survey")
URGENCY_WORDS = ("urgent", "asap", "emergency", "immediately")
RELAXED_WORDS = ("no rush", "weeks", "next month", "whenever", "not urgent")
PRICE_PATTERN = re.compile(r"[£$€]\s?\d")
ERROR_CODE_PATTERN = re.compile(
    r"\b(?:error|fault)\s*(?:code)?\s*[:#]?\s*([A-Z]{0,3}-?\d{1,4})\b", re.IGNORECASE
)
MAX_POTENTIAL_WORK_ITEMS = 3
MAX_POTENTIAL_WORK_WORDS = 20


class _IssueLog:
    def __init__(self, settings: ValidationSettings) -> None:
        self._settings = settings
        self.issues: list[ValidationIssue] = []

    def add(
        self,
        category: IssueCategory,
        severity: IssueSeverity,
        check: str,
        description: str,
        found: str = "",
        expected: str = "",
        action: AutoFixAction | None = None,
        suggested_config_fix: str | None = None,
        **details,
    ) -> None:
        if not self._settings.enabled_checks.allows(category):
            return
        auto_fix = None
        if action is not None:
            auto_fix = AutoFix(action=action, details=AutoFixDetails(**details))
        self.issues.append(
            ValidationIssue(
                id=f"{check}-{len(self.issues) + 1}",
                category=category,
                severity=severity,
                check=check,
                description=description,
                found=found,
                expected=expected,
                auto_fixable=auto_fix is not None,
                auto_fix=auto_fix,
                suggested_config_fix=suggested_config_fix,
            )
        )


def _negated(text: str, phrase: str) -> bool:
    lowered = text.lower()
    needle = phrase.strip().lower()
    if not needle:
        return False
    return any(
        re.search(rf"\b{re.escape(prefix)}\s+(?:\w+\s+){{0,2}}{re.escape(needle)}", lowered)
        for prefix in NEGATION_PREFIXES
    )


def _line_present(quote: GeneratedQuote, item_id: str, label: str) -> bool:
    return any(
        item.id == item_id or normalize_label(item.label) == normalize_label(label)
        for item in quote.pricing.breakdown
    )


def _check_pricing(
    log: _IssueLog,
    quote: GeneratedQuote,
    request: CustomerRequest,
    service: ServiceConfig,
    lookup: SignalLookup,
) -> None:
    rules = service.pricing_rules
    pricing = quote.pricing

    in_use = rules.form_fields_in_use()
    for answer in request.form_answers:
        if answer.is_internal or answer.field_id in in_use:
            continue
        number = coerce_to_number(answer.value)
        if number is None or number <= 0:
            continue
        log.add(
            "pricing",
            "medium",
            "CHECK_1a",
            f'Numeric answer "{answer.field_id}" is not used by any pricing line',
            found=f"{answer.field_id}={answer.value}",
            expected="A work step or multiplier that uses this answer",
            suggested_config_fix=(
                f'Add a per-unit work step with a form_field quantity source "{answer.field_id}"'
            ),
        )

    for step in rules.work_steps:
        if _line_present(quote, step.id, step.name):
            continue
        triggered, _ = should_trigger_work_step(step, lookup)
        if not triggered:
            continue
        resolution = resolve_quantity(step, lookup)
        if step.cost_type is CostType.FIXED:
            amount = round2(step.default_cost)
        else:
            amount = money_mul(resolution.quantity, step.default_cost)
        if amount <= 0:
            continue
        log.add(
            "pricing",
            "high",
            "CHECK_1b",
            f'Work step "{step.name}" should apply but is missing from the breakdown',
            found="No matching line item",
            expected=f"{step.name}: {amount}",
            action=AutoFixAction.ADD_WORK_STEP if resolution.trusted else AutoFixAction.FLAG_ONLY,
            work_step_id=step.id,
            quantity=resolution.quantity,
        )

    for multiplier in rules.multipliers:
        actual = lookup.form_value(multiplier.when.field_id)
        if actual is None:
            continue
        if not evaluate_condition(multiplier.when.operator, actual, multiplier.when.compare_value):
            continue
        applied = any(
            item.type == "multiplier" and item.id == multiplier.when.field_id
            for item in pricing.breakdown
        ) or any(multiplier.label and item.label == multiplier.label for item in pricing.breakdown)
        if multiplier.multiplier != 1 and not applied:
            log.add(
                "pricing",
                "medium",
                "CHECK_1d",
                f'Multiplier on "{multiplier.when.field_id}" matches but is not applied',
                found=f"{multiplier.when.field_id}={actual}",
                expected=f"x{multiplier.multiplier} adjustment",
                action=AutoFixAction.FLAG_ONLY,
            )

    breakdown_total = money_sum(item.amount for item in pricing.breakdown)
    if breakdown_total != round2(pricing.subtotal):
        log.add(
            "pricing",
            "critical",
            "CHECK_1e",
            "Breakdown does not add up to the subtotal",
            found=f"breakdown {breakdown_total}, subtotal {pricing.subtotal}",
            expected="Equal amounts",
            action=AutoFixAction.FLAG_ONLY,
        )
    expected_total = round2(to_decimal(pricing.subtotal) + to_decimal(pricing.tax_amount))
    if expected_total != round2(pricing.total):
        log.add(
            "pricing",
            "critical",
            "CHECK_1e",
            "Subtotal plus tax does not equal the total",
            found=f"{pricing.subtotal} + {pricing.tax_amount} != {pricing.total}",
            expected="total = subtotal + tax",
            action=AutoFixAction.FLAG_ONLY,
        )

    for step in rules.work_steps:
        if step.is_metered and step.quantity_source is None:
            log.add(
                "pricing",
                "low",
                "CHECK_1f",
                f'"{step.name}" has no quantity source for a {step.cost_type.value} cost',
                found="Legacy quantity estimation",
                expected="An explicit form_field, constant or ai_signal quantity source",
                suggested_config_fix=f'Configure a quantity source for "{step.name}"',
            )
        elif (
            step.quantity_source is not None
            and step.quantity_source.type == "form_field"
            and not step.quantity_source.field_id
        ):
            log.add(
                "pricing",
                "low",
                "CHECK_1f",
                f'"{step.name}" reads its quantity from a form field without a field id',
                suggested_config_fix=f'Set the form field id for "{step.name}"',
            )


def _quoted_legacy_signals(quote: GeneratedQuote) -> LegacySignals:
    """Default legacy signals, carrying the complexity level the quote was priced at."""
    legacy = default_legacy_signals()
    for item in quote.pricing.breakdown:
        if item.type == "multiplier" and item.id == COMPLEXITY_STEP_ID:
            level = "low" if item.amount < 0 else "high"
            return legacy.model_copy(update={"complexity": ComplexityAssessment(level=level)})
    return legacy


def _expected_total(
    quote: GeneratedQuote, request: CustomerRequest, service: ServiceConfig
) -> float:
    pricing = quote.pricing
    outcome = calculate_pricing_with_trace(
        service.pricing_rules,
        _quoted_legacy_signals(quote),
        None,
        request.form_answers,
        TaxConfig(
            enabled=pricing.tax_rate is not None,
            rate=pricing.tax_rate,
            label=pricing.tax_label,
        ),
        pricing.currency,
        addon_context=AddonContext(
            project_description=request.customer_description,
            form_answers=request.form_answers,
        ),
    )
    return outcome.result.total


def _check_scope(
    log: _IssueLog, quote: GeneratedQuote, request: CustomerRequest, service: ServiceConfig
) -> None:
    scope = quote.content.scope_summary
    if not scope:
        return
    scope_lower = scope.lower()
    includes = " ".join(service.scope_includes).lower()

    for step in service.pricing_rules.work_steps:
        name = step.name.lower()
        if name not in scope_lower or name in includes:
            continue
        if not _line_present(quote, step.id, step.name):
            log.add(
                "scope",
                "medium",
                "CHECK_2a",
                f'Scope promises "{step.name}" but it is not priced',
                found=scope,
                expected="Scope limited to priced work",
                action=AutoFixAction.REMOVE_SCOPE_TEXT,
                pattern=re.escape(step.name),
            )

    description = request.customer_description.lower()
    if contains_any(description, REPAIR_INTENT) and contains_any(scope_lower, INSPECTION_WORDS):
        if not contains_any(scope_lower, REPAIR_INTENT):
            log.add(
                "scope",
                "medium",
                "CHECK_2b",
                "Customer asked for a repair but the scope only offers an inspection",
                found=scope,
                expected="Scope that addresses the requested repair",
                action=AutoFixAction.FLAG_ONLY,
            )

    for excluded in service.scope_excludes:
        if excluded.strip() and excluded.lower() in scope_lower:
            log.add(
                "scope",
                "high",
                "CHECK_2c",
                f'Scope mentions excluded work "{excluded}"',
                found=scope,
                expected=f'No mention of "{excluded}"',
                action=AutoFixAction.REMOVE_SCOPE_TEXT,
                pattern=re.escape(excluded),
            )


def _check_potential_work(log: _IssueLog, quote: GeneratedQuote, request: CustomerRequest) -> None:
    answered = {
        answer.field_id: answer.value for answer in request.form_answers if not answer.is_internal
    }
    for index, item in enumerate(quote.signal_recommendations):
        if item.signal_key in answered and is_truthy(answered[item.signal_key]):
            log.add(
                "potential_work",
                "medium",
                "CHECK_3a",
                f'Potential work "{item.work_description}" is already covered by the form',
                found=f"{item.signal_key}={answered[item.signal_key]}",
                expected="No suggestion for answered items",
                action=AutoFixAction.REMOVE_POTENTIAL_WORK,
                item_index=index,
            )
            continue
        if PRICE_PATTERN.search(item.work_description) or PRICE_PATTERN.search(item.cost_breakdown):
            log.add(
                "potential_work",
                "high",
                "CHECK_3b",
                f'Potential work "{item.work_description}" quotes a price',
                found=item.cost_breakdown or item.work_description,
                expected="Suggestions without prices",
                action=AutoFixAction.REMOVE_POTENTIAL_WORK,
                item_index=index,
            )

    items = quote.signal_recommendations
    verbose = [
        item for item in items if len(item.work_description.split()) > MAX_POTENTIAL_WORK_WORDS
    ]
    if len(items) > MAX_POTENTIAL_WORK_ITEMS or verbose:
        log.add(
            "potential_work",
            "low",
            "CHECK_3d",
            "Potential work list is too long or too verbose",
            found=f"{len(items)} items",
            expected=f"At most {MAX_POTENTIAL_WORK_ITEMS} short items",
            action=AutoFixAction.FLAG_ONLY,
        )


def _service_mentioned(service_name: str, description: str) -> bool:
    tokens = [token for token in re.findall(r"[a-z]+", service_name.lower()) if len(token) > 3]
    if not tokens:
        return True
    return any(token in description for token in tokens)


def _check_cross_service(log: _IssueLog, quote: GeneratedQuote, request: CustomerRequest) -> None:
    description = request.customer_description.lower()
    deferred = contains_any(description, DEFERRAL_PHRASES)
    for item in quote.cross_service_pricing:
        if item.estimated_total <= 0:
            log.add(
                "cross_service",
                "high",
                "CHECK_4d",
                f'Suggested service "{item.service_name}" has no valid price',
                found=str(item.estimated_total),
                expected="A positive estimate",
                action=AutoFixAction.REMOVE_CROSS_SERVICE,
                service_id=item.service_id,
            )
        elif deferred and _service_mentioned(item.service_name, description):
            log.add(
                "cross_service",
                "high",
                "CHECK_4c",
                f'Customer deferred "{item.service_name}" but it is still suggested',
                found=", ".join(deferred),
                expected="No suggestion for deferred services",
                action=AutoFixAction.REMOVE_CROSS_SERVICE,
                service_id=item.service_id,
            )
        elif description and not _service_mentioned(item.service_name, description):
            log.add(
                "cross_service",
                "medium",
                "CHECK_4a",
                f'Suggested service "{item.service_name}" was not mentioned by the customer',
                found=item.reason,
                expected="Services the customer asked about",
                action=AutoFixAction.REMOVE_CROSS_SERVICE,
                service_id=item.service_id,
            )


def _check_addons(
    log: _IssueLog, quote: GeneratedQuote, request: CustomerRequest, service: ServiceConfig
) -> None:
    description = request.customer_description
    suppressors = contains_any(description, ADDON_SUPPRESSORS)
    for recommended in quote.pricing.recommended_addons:
        if recommended.source != "keyword":
            continue
        if suppressors:
            log.add(
                "addons",
                "high",
                "CHECK_5a",
                f'Addon "{recommended.label}" added although the customer asked for no extras',
                found=", ".join(suppressors),
                expected="No keyword-triggered addons",
                action=AutoFixAction.REMOVE_ADDON,
                addon_id=recommended.label,
            )
            continue
        addon = service.pricing_rules.addon(recommended.id)
        keywords = addon.trigger_keywords if addon is not None else []
        keyword = find_matching_keyword(description, keywords)
        if keyword is not None and _negated(description, keyword):
            log.add(
                "addons",
                "high",
                "CHECK_5a",
                f'Addon "{recommended.label}" triggered by a negated mention of "{keyword}"',
                found=description,
                expected=f'No addon for "{keyword}"',
                action=AutoFixAction.REMOVE_ADDON,
                addon_id=recommended.label,
            )

    for item in quote.pricing.breakdown:
        if item.type != "addon":
            continue
        label = normalize_label(item.label)
        for excluded in service.scope_excludes:
            excluded_label = normalize_label(excluded)
            if excluded_label and (excluded_label in label or label in excluded_label):
                log.add(
                    "addons",
                    "high",
                    "CHECK_5b",
                    f'Addon "{item.label}" conflicts with the exclusion "{excluded}"',
                    found=item.label,
                    expected="No addon for excluded work",
                    action=AutoFixAction.REMOVE_ADDON,
                    addon_id=item.label,
                )
                break


def _check_notes(log: _IssueLog, quote: GeneratedQuote, request: CustomerRequest) -> None:
    notes = quote.pricing.notes
    if request.photo_count == 0:
        for index, note in enumerate(notes):
            if contains_any(note, ("photo", "image")):
                log.add(
                    "notes",
                    "low",
                    "CHECK_6a",
                    "Note refers to photos but none were supplied",
                    found=note,
                    expected="Notes relevant to this request",
                    action=AutoFixAction.REMOVE_NOTE,
                    note_index=index,
                )

    mentioned = " ".join([*notes, quote.content.notes, quote.content.scope_summary]).lower()
    for match in ERROR_CODE_PATTERN.finditer(request.customer_description):
        code = match.group(1)
        if code.lower() in mentioned:
            continue
        log.add(
            "notes",
            "low",
            "CHECK_6b",
            f"Customer reported error code {code} but the quote does not mention it",
            found=match.group(0),
            expected=f"A note about {code}",
            action=AutoFixAction.ADD_NOTE,
            note_text=f"Customer reported error code {code}",
            position="end",
        )


def _check_discounts(log: _IssueLog, quote: GeneratedQuote, service: ServiceConfig) -> None:
    rules = service.pricing_rules
    multiplier_fields = {multiplier.when.field_id for multiplier in rules.multipliers}
    multiplier_labels = {multiplier.label for multiplier in rules.multipliers if multiplier.label}
    known_labels = {normalize_label(step.name) for step in rules.work_steps}
    known_labels.update(normalize_label(addon.label) for addon in rules.addons)
    known_ids = {step.id for step in rules.work_steps} | {addon.id for addon in rules.addons}

    for item in quote.pricing.breakdown:
        if item.type in ("base_fee", "minimum", "inventory"):
            continue
        if item.type == "multiplier" or item.amount < 0:
            if item.id == COMPLEXITY_STEP_ID:
                continue
            if item.id in multiplier_fields or item.label in multiplier_labels:
                continue
            log.add(
                "discounts",
                "high",
                "CHECK_7a",
                f'Adjustment "{item.label}" is not a configured multiplier',
                found=f"{item.label}: {item.amount}",
                expected="Only configured multipliers",
                action=AutoFixAction.FLAG_ONLY,
            )
            continue
        if item.id in known_ids or normalize_label(item.label) in known_labels:
            continue
        log.add(
            "discounts",
            "high",
            "CHECK_7b",
            f'Line item "{item.label}" does not trace back to the configuration',
            found=f"{item.label}: {item.amount}",
            expected="Configured work steps and addons only",
            action=AutoFixAction.FLAG_ONLY,
        )


def _check_logic(log: _IssueLog, request: CustomerRequest) -> None:
    urgent_answers = [
        answer
        for answer in request.form_answers
        if ("urgen" in answer.field_id.lower() and is_truthy(answer.value))
        or (isinstance(answer.value, str) and contains_any(answer.value, URGENCY_WORDS))
    ]
    relaxed = contains_any(request.customer_description, RELAXED_WORDS)
    if urgent_answers and relaxed:
        log.add(
            "logic",
            "low",
            "CHECK_8a",
            "Form marks the job as urgent but the description suggests no rush",
            found=", ".join(relaxed),
            expected="Consistent timing",
            action=AutoFixAction.FLAG_ONLY,
        )


def check_quote(
    quote: GeneratedQuote,
    request: CustomerRequest,
    service_config: ServiceConfig,
    settings: ValidationSettings | None = None,
) -> ValidationResult:
    """Deterministic checks over the eight issue categories."""
    resolved = settings or default_validation_settings()
    actual_total = quote.pricing.total
    if not resolved.enabled:
        return ValidationResult(
            confidence_score=1.0,
            calculated_expected_total=actual_total,
            actual_total=actual_total,
        )

    log = _IssueLog(resolved)
    lookup = SignalLookup(request.form_answers, [], default_legacy_signals())
    _check_pricing(log, quote, request, service_config, lookup)
    _check_scope(log, quote, request, service_config)
    _check_potential_work(log, quote, request)
    _check_cross_service(log, quote, request)
    _check_addons(log, quote, request, service_config)
    _check_notes(log, quote, request)
    _check_discounts(log, quote, service_config)
    _check_logic(log, request)

    expected = _expected_total(quote, request, service_config)
    gap = 0.0
    if expected > 0:
        gap = round2((to_decimal(expected) - to_decimal(actual_total)) / to_decimal(expected) * 100)
    if gap > resolved.pricing_gap_threshold_percent:
        log.add(
            "pricing",
            "high",
            "CHECK_1c",
            f"Quote is {gap}% below the configured price",
            found=str(actual_total),
            expected=str(expected),
            action=AutoFixAction.FLAG_ONLY,
        )
    logger.debug("rule checks found %d issue(s)", len(log.issues))
    return ValidationResult(
        confidence_score=1.0,
        issues=log.issues,
        calculated_expected_total=expected,
        actual_total=actual_total,
        pricing_gap_percent=max(gap, 0.0),
    )
