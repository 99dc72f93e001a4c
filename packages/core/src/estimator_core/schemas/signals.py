from __future__ import annotations

from typing import Literal, Union

import orjson
from pydantic import Field, ValidationError, field_validator, model_validator

from estimator_core.schemas.base import WireModel

SignalValue = Union[bool, int, float, str]
FormValue = Union[bool, int, float, str, list[str], None]
SignalSource = Literal["form", "vision", "inferred"]
ComplexityLevel = Literal["low", "medium", "high", "unknown"]


class Signal(WireModel):
    key: str = Field(min_length=1)
    value: SignalValue
    confidence: float = Field(ge=0.0, le=1.0)
    source: SignalSource = "vision"
    evidence: str | None = None

    @field_validator("source", mode="before")
    @classmethod
    def _fold_text_source(cls, value: object) -> object:
        # Text extraction is reported as "nlp" upstream.
        if value == "nlp":
            return "inferred"
        return value

    @model_validator(mode="after")
    def _form_is_certain(self) -> Signal:
        if self.source == "form" and self.confidence != 1.0:
            raise ValueError("form signals must carry confidence 1.0")
        return self

    @property
    def is_form(self) -> bool:
        return self.source == "form"


class FormAnswer(WireModel):
    field_id: str
    value: FormValue = None

    @property
    def is_internal(self) -> bool:
        return self.field_id.startswith("_")


class SignalConflict(WireModel):
    key: str
    form_value: FormValue = None
    ai_value: SignalValue | None = None
    resolved_source: Literal["form", "vision"]
    resolution: str


class ReconciledSignals(WireModel):
    signals: list[Signal] = Field(default_factory=list)
    conflicts: list[SignalConflict] = Field(default_factory=list)

    @model_validator(mode="after")
    def _unique_keys(self) -> ReconciledSignals:
        keys = [signal.key for signal in self.signals]
        if len(keys) != len(set(keys)):
            raise ValueError("reconciled signal keys must be unique")
        return self

    def get(self, key: str) -> Signal | None:
        for signal in self.signals:
            if signal.key == key:
                return signal
        return None

    def keys(self) -> list[str]:
        return [signal.key for signal in self.signals]


class ComplexityAssessment(WireModel):
    level: ComplexityLevel = "unknown"
    factors: list[str] = Field(default_factory=list)


class DimensionEstimate(WireModel):
    type: Literal["area", "linear", "count"]
    value: float
    unit: str
    is_estimate: bool = True


class ConditionAssessment(WireModel):
    rating: Literal["good", "fair", "poor", "unknown"] = "unknown"
    notes: str | None = None


class AccessAssessment(WireModel):
    difficulty: Literal["easy", "moderate", "difficult", "unknown"] = "unknown"
    notes: str | None = None


class SignalExtraction(WireModel):
    signals: list[Signal] = Field(default_factory=list)
    overall_confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    complexity: ComplexityAssessment = Field(default_factory=ComplexityAssessment)
    site_visit_recommended: bool = False
    site_visit_reason: str | None = None
    low_confidence_signals: list[str] = Field(default_factory=list)
    dimensions: DimensionEstimate | None = None
    condition: ConditionAssessment | None = None

    @field_validator("complexity", mode="before")
    @classmethod
    def _complexity_from_level(cls, value: object) -> object:
        if isinstance(value, str):
            return {"level": value}
        return value

    def get(self, key: str) -> Signal | None:
        for signal in self.signals:
            if signal.key == key:
                return signal
        return None


class LegacySignals(WireModel):
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    site_visit_recommended: bool = False
    site_visit_reason: str | None = None
    category: str = ""
    materials: list[str] = Field(default_factory=list)
    dimensions: DimensionEstimate | None = None
    condition: ConditionAssessment | None = None
    complexity: ComplexityAssessment = Field(default_factory=ComplexityAssessment)
    access: AccessAssessment | None = None
    observations: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    detected_conditions: list[str] = Field(default_factory=list)
    customer_stated_quantity: float | None = None


class ParseError(WireModel):
    message: str
    errors: list[str] = Field(default_factory=list)


def default_legacy_signals() -> LegacySignals:
    return LegacySignals(
        complexity=ComplexityAssessment(level="medium"),
        warnings=[],
    )


def default_signal_extraction() -> SignalExtraction:
    return SignalExtraction(
        overall_confidence=0.5,
        complexity=ComplexityAssessment(level="unknown"),
    )


def legacy_from_extraction(extraction: SignalExtraction) -> LegacySignals:
    detected = [
        signal.key[len("has_") :]
        for signal in extraction.signals
        if signal.key.startswith("has_") and signal.value is True
    ]
    return LegacySignals(
        confidence=extraction.overall_confidence,
        site_visit_recommended=extraction.site_visit_recommended,
        site_visit_reason=extraction.site_visit_reason,
        dimensions=extraction.dimensions,
        condition=extraction.condition,
        complexity=extraction.complexity,
        detected_conditions=detected,
    )


def parse_signal_extraction(payload: object) -> SignalExtraction | ParseError:
    """Validate an extraction response; never raises on malformed input."""
    if isinstance(payload, (bytes, str)):
        try:
            payload = orjson.loads(payload)
        except orjson.JSONDecodeError as exc:
            return ParseError(message=f"invalid JSON: {exc}")
    if not isinstance(payload, dict):
        return ParseError(message="extraction response must be a JSON object")
    try:
        return SignalExtraction.model_validate(payload)
    except ValidationError as exc:
        return ParseError(
            message="extraction response failed schema validation",
            errors=[
                f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
                for error in exc.errors()
            ],
        )
