from __future__ import annotations

from dataclasses import dataclass, field
from typing import Sequence

from estimator_core.schemas.pricing import QuantitySourceKind, SignalOrigin, SignalUse
from estimator_core.schemas.rules import CostType, WorkStep
from estimator_core.schemas.signals import FormAnswer, FormValue, LegacySignals, Signal
from estimator_core.utils.coerce import coerce_to_number
from estimator_core.utils.money import format_number

_DIMENSION_KEYS = {"item_count", "surface_area", "linear_distance"}
_QUANTITY_HINTS = ("sqft", "area", "count", "quantity", "size", "footage")
_HOURS_BY_COMPLEXITY = {"low": 0.5, "medium": 1.0, "high": 2.0}


@dataclass(frozen=True)
class SignalReading:
    key: str
    value: FormValue
    confidence: float
    source: SignalOrigin

    def as_use(self, value: FormValue | None = None) -> SignalUse:
        recorded = self.value if value is None else value
        if isinstance(recorded, list):
            recorded = ", ".join(str(item) for item in recorded)
        return SignalUse(
            key=self.key,
            value=recorded,
            source=self.source,
            confidence=self.confidence,
        )


class SignalLookup:
    """Resolve a key against form answers, then structured signals, then legacy fields."""

    def __init__(
        self,
        form_answers: Sequence[FormAnswer],
        structured: Sequence[Signal],
        legacy: LegacySignals,
    ) -> None:
        self._answers = {
            answer.field_id: answer.value
            for answer in form_answers
            if not answer.is_internal and not _is_blank(answer.value)
        }
        self._signals: dict[str, Signal] = {}
        for signal in structured:
            self._signals.setdefault(signal.key, signal)
        self._legacy = legacy

    @property
    def structured(self) -> list[Signal]:
        return list(self._signals.values())

    @property
    def legacy(self) -> LegacySignals:
        return self._legacy

    def form_value(self, field_id: str) -> FormValue:
        return self._answers.get(field_id)

    def read(self, key: str) -> SignalReading | None:
        if key in self._answers:
            return SignalReading(key, self._answers[key], 1.0, "form")
        signal = self._signals.get(key)
        if signal is not None:
            return SignalReading(key, signal.value, signal.confidence, signal.source)
        return self._read_legacy(key)

    def _read_legacy(self, key: str) -> SignalReading | None:
        legacy = self._legacy
        if key in _DIMENSION_KEYS and legacy.dimensions is not None:
            confidence = 0.6 if legacy.dimensions.is_estimate else 0.8
            return SignalReading(key, legacy.dimensions.value, confidence, "legacy")
        if key == "condition_rating" and legacy.condition is not None:
            rating = legacy.condition.rating
            return SignalReading(key, rating, 0.3 if rating == "unknown" else 0.75, "legacy")
        if key == "complexity_level":
            level = legacy.complexity.level
            return SignalReading(key, level, 0.3 if level == "unknown" else 0.7, "legacy")
        if key == "access_difficulty" and legacy.access is not None:
            difficulty = legacy.access.difficulty
            return SignalReading(
                key, difficulty, 0.3 if difficulty == "unknown" else 0.7, "legacy"
            )
        if key.startswith("has_"):
            present = key[len("has_") :] in legacy.detected_conditions
            return SignalReading(key, present, 0.8, "legacy")
        return None


@dataclass(frozen=True)
class QuantityResolution:
    quantity: float
    source: QuantitySourceKind
    trusted: bool
    signals_used: list[SignalUse] = field(default_factory=list)
    note: str | None = None


def _is_blank(value: FormValue) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, list):
        return not value
    return False


def _positive_number(value: FormValue) -> float | None:
    number = coerce_to_number(value)
    if number is None or number <= 0:
        return None
    return number


def resolve_quantity(step: WorkStep, lookup: SignalLookup) -> QuantityResolution:
    if step.cost_type is CostType.FIXED:
        return QuantityResolution(quantity=1, source="constant", trusted=True)

    source = step.quantity_source
    if source is None:
        return _legacy_quantity(step, lookup)

    if source.type == "constant":
        return QuantityResolution(quantity=source.value or 1, source="constant", trusted=True)

    if source.type == "form_field":
        field_id = source.field_id or ""
        raw = lookup.form_value(field_id)
        number = coerce_to_number(raw)
        if number is not None and number >= 0:
            return QuantityResolution(
                quantity=number,
                source="form_field",
                trusted=True,
                signals_used=[SignalUse(key=field_id, value=number, source="form", confidence=1.0)],
            )
        if raw is None:
            detail = f'form field "{field_id}" not answered'
        else:
            detail = f'form field "{field_id}" has non-numeric value {raw!r}'
        return QuantityResolution(
            quantity=1,
            source="form_field",
            trusted=False,
            note=f'"{step.name}": {detail}, using quantity 1',
        )

    signal_key = source.signal_key or ""
    reading = lookup.read(signal_key)
    number = _positive_number(reading.value) if reading is not None else None
    if reading is not None and number is not None:
        return QuantityResolution(
            quantity=number,
            source="ai_signal",
            trusted=False,
            signals_used=[reading.as_use(number)],
            note=f'"{step.name}" quantity from AI signal (lower confidence)',
        )
    return QuantityResolution(
        quantity=1,
        source="ai_signal",
        trusted=False,
        note=f'"{step.name}": signal "{signal_key}" not found or invalid, using quantity 1',
    )


def _legacy_quantity(step: WorkStep, lookup: SignalLookup) -> QuantityResolution:
    note = (
        f'"{step.name}" uses legacy quantity estimation - '
        "consider configuring explicit quantity source"
    )
    if step.cost_type is CostType.PER_HOUR:
        reading = lookup.read("complexity_level")
        hours = 1.0
        used: list[SignalUse] = []
        level = reading.value if reading is not None else None
        if isinstance(level, str) and level in _HOURS_BY_COMPLEXITY:
            hours = _HOURS_BY_COMPLEXITY[level]
            used.append(reading.as_use())
        return QuantityResolution(
            quantity=hours, source="legacy_fallback", trusted=False, signals_used=used, note=note
        )

    candidates: list[SignalReading] = []
    if step.trigger_signal:
        reading = lookup.read(step.trigger_signal)
        if reading is not None:
            candidates.append(reading)
    for signal in lookup.structured:
        if any(hint in signal.key.lower() for hint in _QUANTITY_HINTS):
            candidates.append(
                SignalReading(signal.key, signal.value, signal.confidence, signal.source)
            )
    item_count = lookup.read("item_count")
    if item_count is not None:
        candidates.append(item_count)

    for reading in candidates:
        number = _positive_number(reading.value)
        if number is not None:
            return QuantityResolution(
                quantity=number,
                source="legacy_fallback",
                trusted=False,
                signals_used=[reading.as_use(number)],
                note=note,
            )
    return QuantityResolution(quantity=1, source="legacy_fallback", trusted=False, note=note)


def describe_calculation(step: WorkStep, quantity: float, amount: float) -> str:
    cost = format_number(step.default_cost)
    if step.cost_type is CostType.FIXED:
        return f"Fixed: {cost}"
    qty = format_number(quantity)
    if step.cost_type is CostType.PER_HOUR:
        return f"{qty} hours × {cost}/hour = {format_number(amount)}"
    unit_label = step.unit_label or "units"
    singular = unit_label[:-1] if unit_label.endswith("s") else unit_label
    return f"{qty} {unit_label} × {cost}/{singular} = {format_number(amount)}"
