from __future__ import annotations

from typing import Literal

from pydantic import Field

from estimator_core.schemas.base import WireModel
from estimator_core.schemas.pricing import PricingResult
from estimator_core.schemas.rules import PricingRules
from estimator_core.schemas.signals import SignalConflict, SignalExtraction, SignalValue

GateAction = Literal["send", "ask_clarification", "require_review"]


class ClarificationTarget(WireModel):
    key: str
    reason: str
    confidence: float = Field(ge=0.0, le=1.0)
    value: SignalValue | None = None


class ClarificationQuestion(WireModel):
    id: str
    target_signal_key: str
    question: str
    options: list[str] = Field(default_factory=list)


class QualityGateInput(WireModel):
    extraction: SignalExtraction
    conflicts: list[SignalConflict] = Field(default_factory=list)
    pricing: PricingResult
    clarification_count: int = Field(default=0, ge=0)
    service_name: str
    has_photos: bool = False
    pricing_rules: PricingRules | None = None


class QualityGateResult(WireModel):
    action: GateAction
    reason: str | None = None
    questions: list[ClarificationQuestion] = Field(default_factory=list)
    targets: list[ClarificationTarget] = Field(default_factory=list)
