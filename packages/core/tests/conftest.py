from __future__ import annotations

from typing import Callable

import pytest

from estimator_core.config import get_settings
from estimator_core.pricing import calculate_pricing_with_trace
from estimator_core.schemas.pricing import AddonContext
from estimator_core.schemas.quote import (
    CustomerRequest,
    GeneratedQuote,
    QuoteContent,
    ServiceConfig,
)
from estimator_core.schemas.rules import (
    Addon,
    CostType,
    PricingRules,
    QuantitySource,
    TaxConfig,
    WorkStep,
)
from estimator_core.schemas.signals import FormAnswer, default_legacy_signals

_SETTINGS_ENV = (
    "ESTIMATOR_LLM_MODE",
    "ESTIMATOR_LLM_PROVIDER",
    "ESTIMATOR_LOW_CONFIDENCE_THRESHOLD",
    "ESTIMATOR_CRITICAL_CONFIDENCE_THRESHOLD",
    "ESTIMATOR_SITE_VISIT_CONFIDENCE_THRESHOLD",
    "ESTIMATOR_MAX_CLARIFICATION_QUESTIONS",
    "ESTIMATOR_OPENAI_MODEL",
    "ESTIMATOR_ANTHROPIC_MODEL",
    "ESTIMATOR_ANTHROPIC_MODEL_FALLBACKS",
)

VAT = TaxConfig(enabled=True, label="VAT", rate=20)
DEFAULT_SCOPE = "Full clean of 4 rooms and 2 bathrooms"


@pytest.fixture(autouse=True)
def _settings_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _SETTINGS_ENV:
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def _per_unit(step_id: str, name: str, cost: float) -> WorkStep:
    return WorkStep(
        id=step_id,
        name=name,
        cost_type=CostType.PER_UNIT,
        default_cost=cost,
        quantity_source=QuantitySource(type="form_field", field_id=step_id),
        unit_label=step_id,
    )


@pytest.fixture
def house_rules() -> PricingRules:
    return PricingRules(
        base_fee=25,
        work_steps=[
            _per_unit("rooms", "Rooms", 35),
            _per_unit("bathrooms", "Bathrooms", 45),
            WorkStep(id="kitchen", name="Kitchen", cost_type=CostType.FIXED, default_cost=65),
        ],
        addons=[
            Addon(id="oven_clean", label="Oven clean", price=40, trigger_keywords=["oven"]),
            Addon(
                id="carpet_shampoo", label="Carpet shampoo", price=30, trigger_keywords=["carpet"]
            ),
        ],
    )


@pytest.fixture
def house_service(house_rules: PricingRules) -> ServiceConfig:
    return ServiceConfig(
        service_name="End of tenancy clean",
        scope_includes=["Kitchen deep clean"],
        scope_excludes=["Carpet shampoo"],
        default_assumptions=["Property is empty on the day"],
        pricing_rules=house_rules,
    )


@pytest.fixture
def house_answers() -> list[FormAnswer]:
    return [FormAnswer(field_id="rooms", value="4"), FormAnswer(field_id="bathrooms", value=2)]


@pytest.fixture
def quote_for(
    house_service: ServiceConfig,
) -> Callable[..., tuple[GeneratedQuote, CustomerRequest]]:
    """Price a request against the house rules (or ``rules``) and wrap it as a quote."""

    def _build(
        answers: list[FormAnswer],
        description: str = "",
        scope: str = DEFAULT_SCOPE,
        rules: PricingRules | None = None,
        photo_count: int = 0,
        **quote_fields,
    ) -> tuple[GeneratedQuote, CustomerRequest]:
        outcome = calculate_pricing_with_trace(
            rules or house_service.pricing_rules,
            default_legacy_signals(),
            None,
            answers,
            VAT,
            "GBP",
            addon_context=AddonContext(project_description=description, form_answers=answers),
        )
        quote = GeneratedQuote(
            pricing=outcome.result,
            content=QuoteContent(scope_summary=scope),
            **quote_fields,
        )
        request = CustomerRequest(
            form_answers=answers, customer_description=description, photo_count=photo_count
        )
        return quote, request

    return _build
