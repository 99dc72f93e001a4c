from __future__ import annotations

import logging
import re
from typing import Sequence

from estimator_core.pricing.calculator import price_range_for
from estimator_core.pricing.quantity import describe_calculation
from estimator_core.schemas.pricing import BreakdownItem, RecommendedAddon
from estimator_core.schemas.quote import GeneratedQuote, ServiceConfig
from estimator_core.schemas.rules import CostType
from estimator_core.schemas.validation import (
    AutoCorrectionResult,
    AutoFixAction,
    ValidationIssue,
)
from estimator_core.utils.money import money_mul, percent_of, round2, to_decimal

logger = logging.getLogger(__name__)

_PRICING_ACTIONS = {AutoFixAction.ADD_WORK_STEP, AutoFixAction.REMOVE_ADDON}


class _Draft:
    """Mutable working copy of a quote; indices refer to the original lists."""

    def __init__(self, quote: GeneratedQuote) -> None:
        self.quote = quote
        self.subtotal = to_decimal(quote.pricing.subtotal)
        self.breakdown: list[BreakdownItem] = list(quote.pricing.breakdown)
        self.recommended: list[RecommendedAddon] = list(quote.pricing.recommended_addons)
        self.notes: list[tuple[int, str]] = list(enumerate(quote.pricing.notes))
        self.appended_notes: list[str] = []
        self.prepended_notes: list[str] = []
        self.scope = quote.content.scope_summary
        self.exclusions: list[str] = list(quote.content.exclusions)
        self.recommendations = list(enumerate(quote.signal_recommendations))
        self.cross_service = list(quote.cross_service_pricing)
        self.repriced = False

    def build(self) -> GeneratedQuote:
        pricing = self.quote.pricing
        update: dict = {
            "breakdown": self.breakdown,
            "recommended_addons": self.recommended,
            "notes": [
                *self.prepended_notes,
                *(text for _, text in self.notes),
                *self.appended_notes,
            ],
        }
        if self.repriced:
            subtotal = round2(self.subtotal)
            tax_amount = percent_of(subtotal, pricing.tax_rate) if pricing.tax_rate else 0.0
            total = round2(to_decimal(subtotal) + to_decimal(tax_amount))
            update.update(
                subtotal=subtotal,
                tax_amount=tax_amount,
                total=total,
                range=price_range_for(total, pricing.confidence),
            )
        content = self.quote.content.model_copy(
            update={"scope_summary": self.scope, "exclusions": self.exclusions}
        )
        return self.quote.model_copy(
            update={
                "pricing": pricing.model_copy(update=update),
                "content": content,
                "signal_recommendations": [item for _, item in self.recommendations],
                "cross_service_pricing": self.cross_service,
            }
        )


def _add_work_step(draft: _Draft, issue: ValidationIssue, service: ServiceConfig) -> str | None:
    details = issue.auto_fix.details
    step = service.pricing_rules.work_step(details.work_step_id or "")
    if step is None:
        return None
    if any(item.id == step.id for item in draft.breakdown):
        return None
    if step.cost_type is CostType.FIXED:
        quantity = 1.0
        amount = round2(step.default_cost)
    else:
        quantity = details.quantity if details.quantity is not None else 1.0
        amount = money_mul(quantity, step.default_cost)
    if amount <= 0:
        return None
    draft.breakdown.append(
        BreakdownItem(label=step.name, amount=amount, id=step.id, type="work_step")
    )
    draft.subtotal += to_decimal(amount)
    draft.repriced = True
    return f'Added "{step.name}" ({describe_calculation(step, quantity, amount)})'


def _remove_addon(draft: _Draft, issue: ValidationIssue) -> str | None:
    target = (issue.auto_fix.details.addon_id or "").strip().lower()
    if not target:
        return None

    def matches(item_id: str | None, label: str) -> bool:
        return (item_id or "").lower() == target or target in label.lower()

    removed = [
        item for item in draft.breakdown if item.type == "addon" and matches(item.id, item.label)
    ]
    draft.recommended = [
        addon for addon in draft.recommended if not matches(addon.id, addon.label)
    ]
    if not removed:
        return None
    draft.breakdown = [item for item in draft.breakdown if item not in removed]
    for item in removed:
        draft.subtotal -= to_decimal(item.amount)
    draft.repriced = True
    return "Removed addon " + ", ".join(f'"{item.label}"' for item in removed)


def _remove_scope_text(draft: _Draft, issue: ValidationIssue) -> str | None:
    details = issue.auto_fix.details
    if not details.pattern:
        return None
    try:
        pattern = re.compile(details.pattern, re.IGNORECASE)
    except re.error:
        pattern = re.compile(re.escape(details.pattern), re.IGNORECASE)
    updated, count = pattern.subn(details.replacement or "", draft.scope)
    if count == 0:
        return None
    draft.scope = re.sub(r"\s{2,}", " ", updated).strip()
    return f'Removed "{details.pattern}" from the scope'


def _add_scope_exclusion(draft: _Draft, issue: ValidationIssue) -> str | None:
    text = (issue.auto_fix.details.text or "").strip()
    if not text or text.lower() in (item.lower() for item in draft.exclusions):
        return None
    draft.exclusions.append(text)
    return f'Added exclusion "{text}"'


def _remove_potential_work(draft: _Draft, issue: ValidationIssue) -> str | None:
    index = issue.auto_fix.details.item_index
    kept = [(i, item) for i, item in draft.recommendations if i != index]
    if index is None or len(kept) == len(draft.recommendations):
        return None
    draft.recommendations = kept
    return f"Removed potential work item {index}"


def _remove_cross_service(draft: _Draft, issue: ValidationIssue) -> str | None:
    service_id = issue.auto_fix.details.service_id
    kept = [item for item in draft.cross_service if item.service_id != service_id]
    if service_id is None or len(kept) == len(draft.cross_service):
        return None
    draft.cross_service = kept
    return f'Removed cross-service suggestion "{service_id}"'


def _add_note(draft: _Draft, issue: ValidationIssue) -> str | None:
    details = issue.auto_fix.details
    note = (details.note or "").strip()
    if not note:
        return None
    existing = [text for _, text in draft.notes] + draft.appended_notes + draft.prepended_notes
    if note in existing:
        return None
    if details.position == "start":
        draft.prepended_notes.insert(0, note)
    else:
        draft.appended_notes.append(note)
    return f'Added note "{note}"'


def _remove_note(draft: _Draft, issue: ValidationIssue) -> str | None:
    details = issue.auto_fix.details
    if details.note_index is not None:
        kept = [(i, text) for i, text in draft.notes if i != details.note_index]
    elif details.note:
        kept = [(i, text) for i, text in draft.notes if text != details.note]
    else:
        return None
    if len(kept) == len(draft.notes):
        return None
    draft.notes = kept
    return "Removed note"


def apply_auto_corrections(
    quote: GeneratedQuote,
    issues: Sequence[ValidationIssue],
    service_config: ServiceConfig,
) -> AutoCorrectionResult:
    """Replay the fixable issues against a copy of ``quote``.

    Pricing fixes re-derive subtotal, tax, total and range. Fixes that do not
    apply are reported in ``skipped_fixes``.
    """
    draft = _Draft(quote.model_copy(deep=True))
    applied: list[str] = []
    skipped: list[str] = []
    for issue in issues:
        if not issue.auto_fixable or issue.auto_fix is None:
            continue
        action = issue.auto_fix.action
        if action is AutoFixAction.FLAG_ONLY:
            continue
        if action is AutoFixAction.ADD_WORK_STEP:
            message = _add_work_step(draft, issue, service_config)
        elif action is AutoFixAction.REMOVE_ADDON:
            message = _remove_addon(draft, issue)
        elif action is AutoFixAction.REMOVE_SCOPE_TEXT:
            message = _remove_scope_text(draft, issue)
        elif action is AutoFixAction.ADD_SCOPE_EXCLUSION:
            message = _add_scope_exclusion(draft, issue)
        elif action is AutoFixAction.REMOVE_POTENTIAL_WORK:
            message = _remove_potential_work(draft, issue)
        elif action is AutoFixAction.REMOVE_CROSS_SERVICE:
            message = _remove_cross_service(draft, issue)
        elif action is AutoFixAction.ADD_NOTE:
            message = _add_note(draft, issue)
        elif action is AutoFixAction.REMOVE_NOTE:
            message = _remove_note(draft, issue)
        else:
            raise ValueError(f"unsupported auto-fix action: {action}")

        if message is None:
            skipped.append(f"{issue.id}: {action.value}")
            continue
        applied.append(f"{issue.id}: {message}")
        if action in _PRICING_ACTIONS:
            logger.info("auto-correction changed pricing: %s", message)

    return AutoCorrectionResult(quote=draft.build(), applied_fixes=applied, skipped_fixes=skipped)
