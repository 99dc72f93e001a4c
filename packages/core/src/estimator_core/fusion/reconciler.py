from __future__ import annotations

import logging
from typing import Mapping, Sequence

from estimator_core.schemas.signals import (
    FormAnswer,
    FormValue,
    ReconciledSignals,
    Signal,
    SignalConflict,
    SignalExtraction,
    SignalValue,
)
from estimator_core.utils.coerce import coerce_to_bool, coerce_to_number, normalize_label

logger = logging.getLogger(__name__)


def _form_signal_value(value: FormValue) -> SignalValue | None:
    if value is None:
        return None
    if isinstance(value, list):
        joined = ", ".join(str(item) for item in value if str(item).strip())
        return joined or None
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return value


def _same_value(left: object, right: object) -> bool:
    if isinstance(left, bool) or isinstance(right, bool):
        return coerce_to_bool(left) is not None and coerce_to_bool(left) == coerce_to_bool(right)
    if isinstance(left, (int, float)) or isinstance(right, (int, float)):
        left_num, right_num = coerce_to_number(left), coerce_to_number(right)
        return left_num is not None and left_num == right_num
    if isinstance(left, str) and isinstance(right, str):
        return normalize_label(left) == normalize_label(right)
    return left == right


def _best_ai_signals(
    ai_signals: Sequence[Signal],
) -> tuple[dict[str, Signal], list[SignalConflict]]:
    best: dict[str, Signal] = {}
    conflicts: list[SignalConflict] = []
    for signal in ai_signals:
        current = best.get(signal.key)
        if current is None:
            best[signal.key] = signal
            continue
        if signal.confidence > current.confidence:
            winner, loser = signal, current
        else:
            winner, loser = current, signal
        best[signal.key] = winner
        if not _same_value(winner.value, loser.value):
            conflicts.append(
                SignalConflict(
                    key=signal.key,
                    ai_value=loser.value,
                    resolved_source="vision",
                    resolution=(
                        f"Kept {winner.value!r} ({winner.confidence:.2f}) over "
                        f"{loser.value!r} ({loser.confidence:.2f})"
                    ),
                )
            )
    return best, conflicts


def reconcile_signals(
    ai_signals: Sequence[Signal],
    form_answers: Sequence[FormAnswer],
    field_signal_map: Mapping[str, str] | None = None,
) -> ReconciledSignals:
    """Merge AI-extracted signals with form answers; the form always wins.

    Every disagreement is kept in ``conflicts`` even though only one value
    survives into pricing.
    """
    mapping = field_signal_map or {}
    best_ai, conflicts = _best_ai_signals(
        [signal for signal in ai_signals if not signal.is_form]
    )

    form_signals: dict[str, Signal] = {}
    form_raw: dict[str, FormValue] = {}
    for answer in form_answers:
        if answer.is_internal:
            continue
        value = _form_signal_value(answer.value)
        if value is None:
            continue
        key = mapping.get(answer.field_id, answer.field_id)
        form_signals[key] = Signal(
            key=key,
            value=value,
            confidence=1.0,
            source="form",
            evidence=f"Form answer: {answer.field_id}",
        )
        form_raw[key] = answer.value

    # Form-sourced entries in the AI payload are treated like answers we already hold.
    for signal in ai_signals:
        if signal.is_form and signal.key not in form_signals:
            form_signals[signal.key] = signal
            form_raw[signal.key] = signal.value

    merged: list[Signal] = []
    for key, ai_signal in best_ai.items():
        form_signal = form_signals.get(key)
        if form_signal is None:
            merged.append(ai_signal)
            continue
        merged.append(form_signal)
        if not _same_value(form_signal.value, ai_signal.value):
            logger.debug("form value overrides %s signal for %s", ai_signal.source, key)
            conflicts.append(
                SignalConflict(
                    key=key,
                    form_value=form_raw[key],
                    ai_value=ai_signal.value,
                    resolved_source="form",
                    resolution=(
                        f"Form answer {form_signal.value!r} overrides "
                        f"{ai_signal.source} estimate {ai_signal.value!r}"
                    ),
                )
            )

    for key, form_signal in form_signals.items():
        if key not in best_ai:
            merged.append(form_signal)

    return ReconciledSignals(signals=merged, conflicts=conflicts)


def merge_into_extraction(
    extraction: SignalExtraction,
    reconciled: ReconciledSignals,
    low_confidence_threshold: float = 0.5,
) -> SignalExtraction:
    low_confidence = [
        signal.key
        for signal in reconciled.signals
        if not signal.is_form and signal.confidence < low_confidence_threshold
    ]
    update: dict = {
        "signals": reconciled.signals,
        "low_confidence_signals": low_confidence,
    }
    if reconciled.signals:
        mean = sum(signal.confidence for signal in reconciled.signals) / len(reconciled.signals)
        update["overall_confidence"] = round(mean, 4)
    return extraction.model_copy(update=update)
