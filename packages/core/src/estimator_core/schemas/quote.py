from __future__ import annotations

from pydantic import Field

from estimator_core.schemas.base import WireModel
from estimator_core.schemas.pricing import PricingResult
from estimator_core.schemas.rules import PricingRules
from estimator_core.schemas.signals import FormAnswer, SignalValue


class QuoteContent(WireModel):
    scope_summary: str = ""
    assumptions: list[str] = Field(default_factory=list)
    exclusions: list[str] = Field(default_factory=list)
    notes: str = ""
    validity_days: int = Field(default=30, ge=0)


class SignalRecommendation(WireModel):
    signal_key: str
    signal_value: SignalValue
    work_description: str
    cost_breakdown: str = ""
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    evidence: str = ""
    is_estimate: bool = True


class CrossServicePricing(WireModel):
    service_id: str
    service_name: str
    reason: str
    base_fee: float = 0.0
    estimated_total: float
    breakdown: list[str] = Field(default_factory=list)
    extracted_details: list[str] = Field(default_factory=list)
    is_estimate: bool = True
    note: str = ""


class GeneratedQuote(WireModel):
    pricing: PricingResult
    content: QuoteContent = Field(default_factory=QuoteContent)
    signal_recommendations: list[SignalRecommendation] = Field(default_factory=list)
    cross_service_pricing: list[CrossServicePricing] = Field(default_factory=list)


class CustomerRequest(WireModel):
    form_answers: list[FormAnswer] = Field(default_factory=list)
    customer_description: str = ""
    photo_count: int = Field(default=0, ge=0)


class ServiceConfig(WireModel):
    service_name: str
    service_description: str = ""
    scope_includes: list[str] = Field(default_factory=list)
    scope_excludes: list[str] = Field(default_factory=list)
    default_assumptions: list[str] = Field(default_factory=list)
    pricing_rules: PricingRules = Field(default_factory=PricingRules)
