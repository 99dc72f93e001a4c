from __future__ import annotations

from enum import Enum
from typing import Iterable, Literal

from pydantic import Field

from estimator_core.schemas.base import WireModel
from estimator_core.schemas.signals import SignalValue


class CostType(str, Enum):
    FIXED = "fixed"
    PER_UNIT = "per_unit"
    PER_HOUR = "per_hour"


class TriggerOperator(str, Enum):
    EQUALS = "equals"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    EXISTS = "exists"
    NOT_EXISTS = "not_exists"


class QuantitySource(WireModel):
    type: Literal["form_field", "constant", "ai_signal"]
    field_id: str | None = None
    value: float | None = None
    signal_key: str | None = None


class TriggerCondition(WireModel):
    operator: TriggerOperator
    value: SignalValue | None = None


class WorkStep(WireModel):
    id: str
    name: str
    description: str = ""
    cost_type: CostType
    default_cost: float = Field(ge=0.0)
    optional: bool = False
    trigger_signal: str | None = None
    trigger_condition: TriggerCondition | None = None
    quantity_source: QuantitySource | None = None
    unit_label: str | None = None

    @property
    def is_metered(self) -> bool:
        return self.cost_type in (CostType.PER_UNIT, CostType.PER_HOUR)


class Addon(WireModel):
    id: str
    label: str
    price: float = Field(ge=0.0)
    trigger_keywords: list[str] = Field(default_factory=list)
    trigger_conditions: list[str] = Field(default_factory=list)


class MultiplierCondition(WireModel):
    field_id: str
    operator: TriggerOperator = TriggerOperator.EQUALS
    equals: SignalValue | None = None
    value: SignalValue | None = None

    @property
    def compare_value(self) -> SignalValue | None:
        if self.equals is not None:
            return self.equals
        return self.value


class Multiplier(WireModel):
    when: MultiplierCondition
    multiplier: float = Field(gt=0.0)
    label: str | None = None
    chained: bool = False


class TaxConfig(WireModel):
    enabled: bool = False
    label: str | None = None
    rate: float | None = Field(default=None, ge=0.0)


class SiteVisitRules(WireModel):
    always_recommend: bool = False
    recommend_when_confidence_below: float | None = Field(default=None, ge=0.0, le=1.0)
    recommend_when_estimate_above: float | None = None


class PricingRules(WireModel):
    base_fee: float = Field(default=0.0, ge=0.0)
    minimum_charge: float = Field(default=0.0, ge=0.0)
    work_steps: list[WorkStep] = Field(default_factory=list)
    addons: list[Addon] = Field(default_factory=list)
    multipliers: list[Multiplier] = Field(default_factory=list)
    site_visit_rules: SiteVisitRules | None = None

    def work_step(self, step_id: str) -> WorkStep | None:
        for step in self.work_steps:
            if step.id == step_id:
                return step
        return None

    def addon(self, addon_id: str) -> Addon | None:
        for addon in self.addons:
            if addon.id == addon_id:
                return addon
        return None

    def missing_references(
        self,
        work_step_ids: Iterable[str] = (),
        addon_ids: Iterable[str] = (),
    ) -> list[str]:
        known_steps = {step.id for step in self.work_steps}
        known_addons = {addon.id for addon in self.addons}
        missing = [f"work_step:{ref}" for ref in work_step_ids if ref not in known_steps]
        missing.extend(f"addon:{ref}" for ref in addon_ids if ref not in known_addons)
        return missing

    def referenced_ids_exist(
        self,
        work_step_ids: Iterable[str] = (),
        addon_ids: Iterable[str] = (),
    ) -> bool:
        return not self.missing_references(work_step_ids, addon_ids)

    def has_billable_work_steps(self) -> bool:
        return any(step.default_cost > 0 for step in self.work_steps)

    def form_fields_in_use(self) -> set[str]:
        fields = {
            step.quantity_source.field_id
            for step in self.work_steps
            if step.quantity_source is not None
            and step.quantity_source.type == "form_field"
            and step.quantity_source.field_id
        }
        fields.update(multiplier.when.field_id for multiplier in self.multipliers)
        return fields


def default_pricing_rules() -> PricingRules:
    return PricingRules(base_fee=0.0, minimum_charge=0.0)
