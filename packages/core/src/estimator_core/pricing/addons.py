from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Collection, Literal, Sequence

from estimator_core.pricing.quantity import SignalLookup
from estimator_core.schemas.pricing import AddonContext, ServiceContext, SignalUse
from estimator_core.schemas.rules import Addon
from estimator_core.schemas.signals import FormAnswer, LegacySignals, Signal
from estimator_core.utils.coerce import coerce_to_bool, is_truthy, title_key

logger = logging.getLogger(__name__)

DESCRIPTION_FIELD_MARKERS = ("description", "notes", "details")
PROJECT_DESCRIPTION_FIELD = "_project_description"
SERVICE_SCOPE_KEYWORDS = (
    "paint",
    "scratch",
    "dent",
    "rust",
    "polish",
    "wax",
    "seal",
    "buff",
    "clear",
    "coat",
)


@dataclass(frozen=True)
class AddonMatch:
    addon: Addon
    auto_recommended: bool
    source: Literal["form", "keyword", "image_signal"]
    reason: str | None = None
    signals_used: list[SignalUse] = field(default_factory=list)


def is_description_field(field_id: str) -> bool:
    if field_id == PROJECT_DESCRIPTION_FIELD:
        return True
    return any(marker in field_id for marker in DESCRIPTION_FIELD_MARKERS)


def build_searchable_text(context: AddonContext | None) -> str:
    if context is None:
        return ""
    parts: list[str] = []
    if context.project_description:
        parts.append(context.project_description)
    for answer in context.form_answers:
        if is_description_field(answer.field_id) and isinstance(answer.value, str):
            parts.append(answer.value)
    return " ".join(parts).lower()


def find_matching_keyword(text: str, keywords: Sequence[str]) -> str | None:
    # Plain substring matching: "no extras" still matches an "extras" keyword.
    lowered = text.lower()
    for keyword in keywords:
        needle = keyword.strip().lower()
        if needle and needle in lowered:
            return keyword
    return None


def _scope_keyword(addon_id: str) -> str:
    lowered = addon_id.lower()
    for keyword in SERVICE_SCOPE_KEYWORDS:
        if keyword in lowered:
            return keyword
    return ""


def is_addon_covered_by_service(addon_id: str, service: ServiceContext | None) -> bool:
    if service is None:
        return False
    keyword = _scope_keyword(addon_id)
    if not keyword:
        return False
    scope_text = " ".join(service.scope_includes).lower()
    return keyword in service.name.lower() or keyword in scope_text


def _explicitly_selected(addon: Addon, answers: Sequence[FormAnswer]) -> bool:
    for answer in answers:
        if answer.field_id != addon.id:
            continue
        value = answer.value
        if isinstance(value, list):
            return addon.id in value
        if value == addon.id:
            return True
        return coerce_to_bool(value) is True
    return False


def _condition_match(
    addon: Addon,
    lookup: SignalLookup,
    legacy: LegacySignals,
    service: ServiceContext | None,
) -> AddonMatch | None:
    for condition in addon.trigger_conditions:
        for key in (condition, f"has_{condition}"):
            reading = lookup.read(key)
            if reading is None or reading.source == "legacy" or not is_truthy(reading.value):
                continue
            if is_addon_covered_by_service(addon.id, service):
                break
            origin = "Based on your answers" if reading.source == "form" else "Detected in photos"
            return AddonMatch(
                addon=addon,
                auto_recommended=True,
                source="image_signal",
                reason=f"{origin}: {title_key(condition)}",
                signals_used=[reading.as_use()],
            )
        if condition in legacy.detected_conditions:
            if is_addon_covered_by_service(addon.id, service):
                continue
            return AddonMatch(
                addon=addon,
                auto_recommended=True,
                source="image_signal",
                reason=f"Detected in photos: {title_key(condition)}",
                signals_used=[
                    SignalUse(key=f"has_{condition}", value=True, source="legacy", confidence=0.8)
                ],
            )
    for condition in addon.trigger_conditions:
        phrase = condition.lower().replace("_", " ")
        if not any(phrase in observation.lower() for observation in legacy.observations):
            continue
        if is_addon_covered_by_service(addon.id, service):
            continue
        return AddonMatch(
            addon=addon,
            auto_recommended=True,
            source="image_signal",
            reason=f"Observed in photos: {title_key(condition)}",
        )
    return None


def detect_addons(
    addons: Sequence[Addon],
    context: AddonContext | None,
    signals: Sequence[Signal],
    form_answers: Sequence[FormAnswer],
    ai_detected_addon_ids: Collection[str] | None = None,
    service_context: ServiceContext | None = None,
    legacy_signals: LegacySignals | None = None,
) -> list[AddonMatch]:
    """Return the addons that apply, in configured order, each at most once."""
    legacy = legacy_signals or LegacySignals()
    lookup = SignalLookup(form_answers, signals, legacy)
    detected_ids = set(ai_detected_addon_ids or ())
    text = build_searchable_text(context)
    matches: list[AddonMatch] = []

    for addon in addons:
        if _explicitly_selected(addon, form_answers):
            if addon.id in detected_ids:
                matches.append(
                    AddonMatch(
                        addon=addon,
                        auto_recommended=True,
                        source="keyword",
                        reason="Detected from your description",
                    )
                )
            else:
                matches.append(AddonMatch(addon=addon, auto_recommended=False, source="form"))
            continue

        if text and addon.trigger_keywords:
            keyword = find_matching_keyword(text, addon.trigger_keywords)
            if keyword is not None:
                if is_addon_covered_by_service(addon.id, service_context):
                    logger.debug("addon %s already covered by service scope", addon.id)
                    continue
                matches.append(
                    AddonMatch(
                        addon=addon,
                        auto_recommended=True,
                        source="keyword",
                        reason=f'Recommended based on "{keyword}" in your description',
                    )
                )
                continue

        condition_match = _condition_match(addon, lookup, legacy, service_context)
        if condition_match is not None:
            matches.append(condition_match)

    return matches
