from __future__ import annotations

from typing import Literal

import orjson
from pydantic import Field

from estimator_core.schemas.base import WireModel
from estimator_core.schemas.signals import FormAnswer, SignalValue
from estimator_core.utils.hashing import sha256_canonical_json
from estimator_core.utils.money import money_sum

TraceStepType = Literal[
    "base_fee",
    "work_step",
    "inventory",
    "addon",
    "multiplier",
    "minimum",
    "tax",
]
QuantitySourceKind = Literal["form_field", "constant", "ai_signal", "legacy_fallback"]
SignalOrigin = Literal["form", "vision", "inferred", "legacy"]


class SignalUse(WireModel):
    key: str
    value: SignalValue
    source: SignalOrigin
    confidence: float = Field(ge=0.0, le=1.0)


class TraceStep(WireModel):
    type: TraceStepType
    id: str | None = None
    description: str
    calculation: str = ""
    amount: float
    running_total: float
    signals_used: list[SignalUse] = Field(default_factory=list)
    quantity_source: QuantitySourceKind | None = None
    quantity_trusted: bool | None = None
    auto_recommended: bool | None = None


class TraceSummary(WireModel):
    base_fee: float = 0.0
    work_steps_total: float = 0.0
    inventory_total: float = 0.0
    addons_total: float = 0.0
    multiplier_adjustment: float = 0.0
    minimum_adjustment: float = 0.0
    minimum_applied: bool = False
    tax_amount: float = 0.0
    total: float = 0.0

    def component_sum(self) -> float:
        return money_sum(
            [
                self.base_fee,
                self.work_steps_total,
                self.inventory_total,
                self.addons_total,
                self.multiplier_adjustment,
                self.minimum_adjustment,
                self.tax_amount,
            ]
        )


class PricingTrace(WireModel):
    config_version: str = "v1"
    steps: list[TraceStep] = Field(default_factory=list)
    summary: TraceSummary = Field(default_factory=TraceSummary)

    def signal_keys(self) -> list[str]:
        seen: list[str] = []
        for step in self.steps:
            for used in step.signals_used:
                if used.key not in seen:
                    seen.append(used.key)
        return seen


class BreakdownItem(WireModel):
    label: str
    amount: float
    id: str | None = None
    type: TraceStepType | None = None
    auto_recommended: bool = False
    recommendation_reason: str | None = None


class PriceRange(WireModel):
    low: float
    high: float


class RecommendedAddon(WireModel):
    id: str
    label: str
    price: float
    reason: str
    source: Literal["keyword", "image_signal"]


class PricingResult(WireModel):
    currency: str
    subtotal: float
    tax_label: str | None = None
    tax_rate: float | None = None
    tax_amount: float = 0.0
    total: float
    breakdown: list[BreakdownItem] = Field(default_factory=list)
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    range: PriceRange | None = None
    notes: list[str] = Field(default_factory=list)
    recommended_addons: list[RecommendedAddon] = Field(default_factory=list)


class PricingOutcome(WireModel):
    result: PricingResult
    trace: PricingTrace

    def canonical_json(self) -> bytes:
        return orjson.dumps(self.model_dump(mode="json"), option=orjson.OPT_SORT_KEYS)

    def fingerprint(self) -> str:
        return sha256_canonical_json(self.model_dump(mode="json"))


class AddonContext(WireModel):
    project_description: str | None = None
    form_answers: list[FormAnswer] = Field(default_factory=list)


class ServiceContext(WireModel):
    name: str
    scope_includes: list[str] = Field(default_factory=list)


class MatchedItem(WireModel):
    item_type: str
    quantity: float = Field(ge=0.0, allow_inf_nan=False)
    confidence: float = Field(ge=0.0, le=1.0)
    catalog_id: str
    catalog_name: str
    price_per_unit: float = Field(ge=0.0, allow_inf_nan=False)
    match_confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    description: str | None = None


class JobData(WireModel):
    matched_items: list[MatchedItem] = Field(default_factory=list)


class CrossServiceEstimate(WireModel):
    service_id: str
    service_name: str
    reason: str
    estimated_quantity: float | None = None
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    extracted_details: list[str] = Field(default_factory=list)
