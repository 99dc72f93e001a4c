from __future__ import annotations

import logging
from decimal import Decimal
from typing import Collection, Sequence

from estimator_core.errors import MissingPricingRulesError
from estimator_core.pricing.addons import detect_addons
from estimator_core.pricing.conditions import evaluate_condition
from estimator_core.pricing.quantity import (
    SignalLookup,
    describe_calculation,
    resolve_quantity,
)
from estimator_core.schemas.pricing import (
    AddonContext,
    BreakdownItem,
    CrossServiceEstimate,
    JobData,
    PriceRange,
    PricingOutcome,
    PricingResult,
    PricingTrace,
    RecommendedAddon,
    ServiceContext,
    SignalUse,
    TraceStep,
    TraceSummary,
)
from estimator_core.schemas.quote import CrossServicePricing
from estimator_core.schemas.rules import CostType, Multiplier, PricingRules, TaxConfig, WorkStep
from estimator_core.schemas.signals import (
    FormAnswer,
    LegacySignals,
    Signal,
    SignalExtraction,
)
from estimator_core.utils.coerce import coerce_to_number, is_truthy, title_key
from estimator_core.utils.money import (
    format_currency,
    format_number,
    money_mul,
    percent_of,
    round2,
    to_decimal,
)

logger = logging.getLogger(__name__)

RANGE_CONFIDENCE_CEILING = 0.7
WIDE_RANGE_CONFIDENCE = 0.4
NARROW_RANGE_SPREAD = Decimal("0.15")
WIDE_RANGE_SPREAD = Decimal("0.30")
CROSS_SERVICE_ESTIMATE_CONFIDENCE = 0.8
SITE_VISIT_NOTE = "Site visit recommended for accurate quote"
RANGE_NOTE = "Price shown as range due to limited information"
COMPLEXITY_STEP_ID = "complexity"
COMPLEXITY_FACTORS = {"low": Decimal("0.9"), "medium": Decimal("1"), "high": Decimal("1.25")}


class _TraceBuilder:
    def __init__(self) -> None:
        self.steps: list[TraceStep] = []
        self.running = Decimal("0")

    def add(self, amount: float, **fields) -> TraceStep:
        self.running += to_decimal(amount)
        step = TraceStep(amount=amount, running_total=round2(self.running), **fields)
        self.steps.append(step)
        return step

    @property
    def subtotal(self) -> float:
        return round2(self.running)


def _structured_signals(structured: SignalExtraction | Sequence[Signal] | None) -> list[Signal]:
    if structured is None:
        return []
    if isinstance(structured, SignalExtraction):
        return list(structured.signals)
    return list(structured)


def should_trigger_work_step(step: WorkStep, lookup: SignalLookup) -> tuple[bool, list[SignalUse]]:
    if not step.optional:
        return True, []
    if step.trigger_signal:
        reading = lookup.read(step.trigger_signal)
        if step.trigger_condition is None:
            if reading is None or not is_truthy(reading.value):
                return False, []
            return True, [reading.as_use()]
        actual = reading.value if reading is not None else None
        matched = evaluate_condition(
            step.trigger_condition.operator, actual, step.trigger_condition.value
        )
        if not matched:
            return False, []
        return True, [reading.as_use()] if reading is not None else []
    if step.quantity_source is not None:
        resolution = resolve_quantity(step, lookup)
        # An unanswered source falls back to quantity 1, which must not trigger.
        resolved = resolution.trusted or bool(resolution.signals_used)
        if resolved and resolution.quantity > 0:
            return True, []
    logger.debug("optional work step %s has no satisfied trigger", step.id)
    return False, []


def _merge_uses(first: list[SignalUse], second: list[SignalUse]) -> list[SignalUse]:
    merged = list(first)
    keys = {use.key for use in merged}
    for use in second:
        if use.key not in keys:
            merged.append(use)
            keys.add(use.key)
    return merged


def multiplier_label(multiplier: Multiplier) -> str:
    if multiplier.label:
        return multiplier.label
    field_label = title_key(multiplier.when.field_id).lower()
    matched = multiplier.when.compare_value
    if isinstance(matched, str):
        value_label = (matched[:1].upper() + matched[1:]).replace("_", " ")
    elif matched is not None:
        value_label = str(matched)
    else:
        value_label = title_key(multiplier.when.operator.value)
    if multiplier.multiplier > 1:
        return f"{value_label} {field_label}"
    return f"{value_label} {field_label} discount"


def _signal_confidence(trace: list[TraceStep]) -> float:
    confidences: dict[str, float] = {}
    for step in trace:
        for use in step.signals_used:
            confidences.setdefault(use.key, use.confidence)
    if not confidences:
        return 1.0
    mean = sum(to_decimal(value) for value in confidences.values()) / len(confidences)
    return float(round(mean, 4))


def price_range_for(total: float, confidence: float) -> PriceRange | None:
    if confidence >= RANGE_CONFIDENCE_CEILING:
        return None
    spread = WIDE_RANGE_SPREAD if confidence < WIDE_RANGE_CONFIDENCE else NARROW_RANGE_SPREAD
    amount = to_decimal(total)
    return PriceRange(
        low=round2(amount * (Decimal("1") - spread)),
        high=round2(amount * (Decimal("1") + spread)),
    )


def _site_visit_recommended(
    rules: PricingRules, legacy: LegacySignals, confidence: float, total: float
) -> bool:
    if legacy.site_visit_recommended:
        return True
    site_rules = rules.site_visit_rules
    if site_rules is None:
        return False
    if site_rules.always_recommend:
        return True
    threshold = site_rules.recommend_when_confidence_below
    if threshold is not None and confidence < threshold:
        return True
    ceiling = site_rules.recommend_when_estimate_above
    return ceiling is not None and total > ceiling


def _log_unused_numeric_fields(rules: PricingRules, answers: Sequence[FormAnswer]) -> None:
    if not rules.work_steps:
        return
    in_use = rules.form_fields_in_use()
    unused = []
    for answer in answers:
        if answer.is_internal or answer.field_id in in_use:
            continue
        number = coerce_to_number(answer.value)
        if number is not None and number > 0:
            unused.append(f"{answer.field_id}={answer.value}")
    if unused:
        logger.warning("numeric form fields provided but unused in pricing: %s", ", ".join(unused))


def calculate_pricing_with_trace(
    rules: PricingRules | None,
    legacy_signals: LegacySignals,
    structured_signals: SignalExtraction | Sequence[Signal] | None,
    form_answers: Sequence[FormAnswer],
    tax_config: TaxConfig,
    currency: str,
    job_data: JobData | None = None,
    addon_context: AddonContext | None = None,
    ai_detected_addon_ids: Collection[str] | None = None,
    service_context: ServiceContext | None = None,
    config_version: str = "v1",
) -> PricingOutcome:
    """Price a job from its rules and signals, recording every step.

    Steps run in a fixed order: base fee, work steps, inventory, addons,
    multipliers, minimum charge, tax. Each money amount is rounded half-up to
    cents before it is added, so the summary components sum to the total
    exactly.
    """
    if rules is None:
        raise MissingPricingRulesError("Service has no pricing rules configured")

    signals = _structured_signals(structured_signals)
    lookup = SignalLookup(form_answers, signals, legacy_signals)
    builder = _TraceBuilder()
    notes: list[str] = []
    summary: dict = {
        "work_steps_total": Decimal("0"),
        "inventory_total": Decimal("0"),
        "addons_total": Decimal("0"),
        "multiplier_adjustment": Decimal("0"),
    }

    base_fee = round2(rules.base_fee)
    if base_fee > 0:
        builder.add(
            base_fee,
            type="base_fee",
            description="Base service fee",
            calculation=f"Base fee: {format_number(base_fee)}",
        )

    for step in rules.work_steps:
        triggered, trigger_uses = should_trigger_work_step(step, lookup)
        if not triggered:
            continue
        resolution = resolve_quantity(step, lookup)
        if step.cost_type is CostType.FIXED:
            amount = round2(step.default_cost)
        else:
            amount = money_mul(resolution.quantity, step.default_cost)
        if amount == 0:
            logger.debug("skipping zero-cost work step %s", step.id)
            continue
        builder.add(
            amount,
            type="work_step",
            id=step.id,
            description=step.name,
            calculation=describe_calculation(step, resolution.quantity, amount),
            signals_used=_merge_uses(trigger_uses, resolution.signals_used),
            quantity_source=resolution.source,
            quantity_trusted=resolution.trusted,
        )
        summary["work_steps_total"] += to_decimal(amount)
        if resolution.note:
            notes.append(resolution.note)

    if job_data is not None and job_data.matched_items:
        for item in job_data.matched_items:
            amount = money_mul(item.quantity, item.price_per_unit)
            if amount == 0:
                continue
            builder.add(
                amount,
                type="inventory",
                id=item.catalog_id,
                description=f"{format_number(item.quantity)} × {item.catalog_name}",
                calculation=(
                    f"{format_number(item.quantity)} × {format_number(item.price_per_unit)}"
                    f" = {format_number(amount)}"
                ),
                signals_used=[
                    SignalUse(
                        key=f"item:{item.catalog_id}",
                        value=item.quantity,
                        source="vision",
                        confidence=item.confidence,
                    )
                ],
            )
            summary["inventory_total"] += to_decimal(amount)
        if any(item.confidence < 0.8 for item in job_data.matched_items):
            notes.append("Some item quantities are estimated from photos")

    recommended: list[RecommendedAddon] = []
    for match in detect_addons(
        rules.addons,
        addon_context,
        signals,
        form_answers,
        ai_detected_addon_ids,
        service_context,
        legacy_signals,
    ):
        amount = round2(match.addon.price)
        if amount == 0:
            continue
        builder.add(
            amount,
            type="addon",
            id=match.addon.id,
            description=match.addon.label,
            calculation=f"Addon: {format_number(amount)}",
            signals_used=match.signals_used,
            auto_recommended=match.auto_recommended,
        )
        summary["addons_total"] += to_decimal(amount)
        if match.auto_recommended:
            recommended.append(
                RecommendedAddon(
                    id=match.addon.id,
                    label=match.addon.label,
                    price=amount,
                    reason=match.reason or "Recommended based on project details",
                    source="image_signal" if match.source == "image_signal" else "keyword",
                )
            )

    pre_multiplier = builder.running
    for multiplier in rules.multipliers:
        reading = lookup.read(multiplier.when.field_id)
        actual = reading.value if reading is not None else None
        if not evaluate_condition(
            multiplier.when.operator, actual, multiplier.when.compare_value
        ):
            continue
        base = builder.running if multiplier.chained else pre_multiplier
        adjustment = round2(base * (to_decimal(multiplier.multiplier) - Decimal("1")))
        if adjustment == 0:
            continue
        builder.add(
            adjustment,
            type="multiplier",
            id=multiplier.when.field_id,
            description=multiplier_label(multiplier),
            calculation=(
                f"{format_number(round2(base))} × ({format_number(multiplier.multiplier)} - 1)"
                f" = {format_number(adjustment)}"
            ),
            signals_used=[reading.as_use()] if reading is not None else [],
        )
        summary["multiplier_adjustment"] += to_decimal(adjustment)

    # Complexity scales the pre-multiplier subtotal like an unchained multiplier.
    reading = lookup.read("complexity_level")
    level = str(reading.value).strip().lower() if reading is not None else ""
    factor = COMPLEXITY_FACTORS.get(level, Decimal("1"))
    adjustment = round2(pre_multiplier * (factor - Decimal("1")))
    if adjustment != 0:
        label = "Simple job discount" if level == "low" else f"{level.capitalize()} complexity"
        builder.add(
            adjustment,
            type="multiplier",
            id=COMPLEXITY_STEP_ID,
            description=label,
            calculation=(
                f"{format_number(round2(pre_multiplier))} × ({format_number(float(factor))} - 1)"
                f" = {format_number(adjustment)}"
            ),
            signals_used=[reading.as_use()],
        )
        summary["multiplier_adjustment"] += to_decimal(adjustment)

    minimum_applied = False
    minimum_adjustment = 0.0
    minimum_charge = round2(rules.minimum_charge)
    if minimum_charge > 0 and builder.subtotal < minimum_charge:
        minimum_adjustment = round2(to_decimal(minimum_charge) - builder.running)
        builder.add(
            minimum_adjustment,
            type="minimum",
            description="Minimum charge applied",
            calculation=(
                f"Subtotal {format_number(builder.subtotal)} < "
                f"minimum {format_number(minimum_charge)}"
            ),
        )
        minimum_applied = True
        notes.append(f"Minimum charge of {format_currency(minimum_charge, currency)} applied")

    subtotal = builder.subtotal
    tax_amount = 0.0
    tax_rate = tax_config.rate if tax_config.enabled else None
    if tax_config.enabled and tax_config.rate:
        tax_amount = percent_of(subtotal, tax_config.rate)
        if tax_amount != 0:
            builder.add(
                tax_amount,
                type="tax",
                description=tax_config.label or "Tax",
                calculation=(
                    f"{format_number(subtotal)} × {format_number(tax_config.rate)}%"
                    f" = {format_number(tax_amount)}"
                ),
            )
    total = round2(to_decimal(subtotal) + to_decimal(tax_amount))

    confidence = _signal_confidence(builder.steps)
    price_range = price_range_for(total, confidence)
    if price_range is not None:
        notes.append(RANGE_NOTE)

    if _site_visit_recommended(rules, legacy_signals, confidence, total):
        notes.append(legacy_signals.site_visit_reason or SITE_VISIT_NOTE)
    notes.extend(legacy_signals.warnings)

    _log_unused_numeric_fields(rules, form_answers)

    recommended_by_id = {addon.id: addon for addon in recommended}
    breakdown = []
    for step in builder.steps:
        if step.type == "tax":
            continue
        addon = recommended_by_id.get(step.id) if step.type == "addon" else None
        breakdown.append(
            BreakdownItem(
                label=step.description,
                amount=step.amount,
                id=step.id,
                type=step.type,
                auto_recommended=addon is not None,
                recommendation_reason=addon.reason if addon is not None else None,
            )
        )

    result = PricingResult(
        currency=currency,
        subtotal=subtotal,
        tax_label=(tax_config.label or "Tax") if tax_config.enabled else None,
        tax_rate=tax_rate,
        tax_amount=tax_amount,
        total=total,
        breakdown=breakdown,
        confidence=confidence,
        range=price_range,
        notes=notes,
        recommended_addons=recommended,
    )
    trace = PricingTrace(
        config_version=config_version or "v1",
        steps=builder.steps,
        summary=TraceSummary(
            base_fee=base_fee if base_fee > 0 else 0.0,
            work_steps_total=round2(summary["work_steps_total"]),
            inventory_total=round2(summary["inventory_total"]),
            addons_total=round2(summary["addons_total"]),
            multiplier_adjustment=round2(summary["multiplier_adjustment"]),
            minimum_adjustment=minimum_adjustment,
            minimum_applied=minimum_applied,
            tax_amount=tax_amount,
            total=total,
        ),
    )
    logger.debug(
        "priced %s %s over %d trace steps", format_number(total), currency, len(builder.steps)
    )
    return PricingOutcome(result=result, trace=trace)


def calculate_cross_service_pricing(
    rules: PricingRules,
    estimate: CrossServiceEstimate,
    tax_config: TaxConfig,
    currency: str,
) -> CrossServicePricing:
    """Rough price for another service the customer mentioned in passing."""
    base_fee = round2(rules.base_fee)
    subtotal = to_decimal(base_fee)
    breakdown: list[str] = []
    if base_fee > 0:
        breakdown.append(f"Base fee: {format_currency(base_fee, currency)}")

    unit_step = next(
        (step for step in rules.work_steps if step.cost_type is CostType.PER_UNIT), None
    )
    quantity = estimate.estimated_quantity
    if unit_step is not None and quantity and quantity > 0 and unit_step.default_cost > 0:
        subtotal += to_decimal(money_mul(quantity, unit_step.default_cost))
        unit_label = unit_step.unit_label or "units"
        breakdown.append(
            f"{format_number(quantity)} {unit_label} × "
            f"{format_currency(unit_step.default_cost, currency)}"
        )

    minimum_charge = round2(rules.minimum_charge)
    if minimum_charge > 0 and subtotal < to_decimal(minimum_charge):
        subtotal = to_decimal(minimum_charge)
        breakdown = [f"Minimum charge: {format_currency(minimum_charge, currency)}"]

    subtotal_value = round2(subtotal)
    tax_amount = 0.0
    if tax_config.enabled and tax_config.rate:
        tax_amount = percent_of(subtotal_value, tax_config.rate)
        if tax_amount > 0:
            breakdown.append(
                f"{tax_config.label or 'Tax'} ({format_number(tax_config.rate)}%): "
                f"{format_currency(tax_amount, currency)}"
            )
    total = round2(to_decimal(subtotal_value) + to_decimal(tax_amount))
    is_estimate = estimate.confidence < CROSS_SERVICE_ESTIMATE_CONFIDENCE
    return CrossServicePricing(
        service_id=estimate.service_id,
        service_name=estimate.service_name,
        reason=estimate.reason,
        base_fee=base_fee,
        estimated_total=total,
        breakdown=breakdown,
        extracted_details=estimate.extracted_details,
        is_estimate=is_estimate,
        note=(
            "Estimate based on your description. Final price confirmed after assessment."
            if is_estimate
            else "Based on details provided."
        ),
    )
