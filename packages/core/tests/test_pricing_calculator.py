from __future__ import annotations

import pytest

from estimator_core.errors import MissingPricingRulesError
from estimator_core.pricing import calculate_cross_service_pricing, calculate_pricing_with_trace
from estimator_core.pricing.calculator import RANGE_NOTE, price_range_for
from estimator_core.schemas.pricing import (
    AddonContext,
    CrossServiceEstimate,
    JobData,
    MatchedItem,
)
from estimator_core.schemas.rules import (
    Addon,
    CostType,
    Multiplier,
    MultiplierCondition,
    PricingRules,
    QuantitySource,
    TaxConfig,
    TriggerOperator,
    WorkStep,
    default_pricing_rules,
)
from estimator_core.schemas.signals import (
    ComplexityAssessment,
    FormAnswer,
    LegacySignals,
    Signal,
    default_legacy_signals,
)

VAT = TaxConfig(enabled=True, label="VAT", rate=20)
NO_TAX = TaxConfig()


def _per_unit(step_id: str, cost: float, field_id: str, unit_label: str) -> WorkStep:
    return WorkStep(
        id=step_id,
        name=step_id.replace("_", " ").title(),
        cost_type=CostType.PER_UNIT,
        default_cost=cost,
        quantity_source=QuantitySource(type="form_field", field_id=field_id),
        unit_label=unit_label,
    )


def _fixed(step_id: str, cost: float, **fields) -> WorkStep:
    return WorkStep(
        id=step_id,
        name=step_id.replace("_", " ").title(),
        cost_type=CostType.FIXED,
        default_cost=cost,
        **fields,
    )


def _house_clean_rules() -> PricingRules:
    return PricingRules(
        base_fee=25,
        work_steps=[
            _per_unit("rooms", 35, "rooms", "rooms"),
            _per_unit("bathrooms", 45, "bathrooms", "bathrooms"),
            _fixed("kitchen", 65),
        ],
    )


def _price(rules, answers=(), tax=NO_TAX, signals=None, **kwargs):
    return calculate_pricing_with_trace(
        rules, default_legacy_signals(), signals, list(answers), tax, "GBP", **kwargs
    )


def test_house_clean_with_vat() -> None:
    outcome = _price(
        _house_clean_rules(),
        [FormAnswer(field_id="rooms", value="4"), FormAnswer(field_id="bathrooms", value=2)],
        tax=VAT,
    )
    result = outcome.result

    assert result.subtotal == 320.0
    assert result.tax_amount == 64.0
    assert result.total == 384.0
    assert result.tax_label == "VAT"
    assert [item.amount for item in result.breakdown] == [25.0, 140.0, 90.0, 65.0]
    assert [step.type for step in outcome.trace.steps][-1] == "tax"
    assert outcome.trace.steps[1].calculation == "4 rooms × 35/room = 140"
    assert outcome.trace.steps[1].quantity_source == "form_field"
    assert outcome.trace.steps[1].quantity_trusted is True
    assert outcome.trace.summary.component_sum() == result.total
    assert outcome.trace.steps[-1].running_total == result.total
    assert result.confidence == 1.0
    assert result.range is None


def test_minimum_charge_lifts_subtotal() -> None:
    rules = PricingRules(base_fee=20, minimum_charge=75, work_steps=[_fixed("visit", 30)])
    outcome = _price(rules)

    assert outcome.result.subtotal == 75.0
    assert outcome.result.total == 75.0
    assert outcome.result.breakdown[-1].type == "minimum"
    assert outcome.result.breakdown[-1].amount == 25.0
    assert "Minimum charge of £75.00 applied" in outcome.result.notes
    assert outcome.trace.summary.minimum_applied is True
    assert outcome.trace.summary.minimum_adjustment == 25.0
    assert outcome.trace.summary.component_sum() == 75.0


def test_minimum_charge_covers_small_job() -> None:
    outcome = _price(PricingRules(base_fee=15, minimum_charge=75))

    assert outcome.result.subtotal == 75.0
    assert outcome.result.total == 75.0
    assert [item.amount for item in outcome.result.breakdown] == [15.0, 60.0]
    assert outcome.trace.summary.minimum_adjustment == 60.0
    assert "Minimum charge of £75.00 applied" in outcome.result.notes


def test_default_rules_price_to_zero() -> None:
    outcome = _price(default_pricing_rules())
    assert outcome.result.subtotal == 0.0
    assert outcome.result.total == 0.0
    assert outcome.result.breakdown == []


def test_rules_report_missing_references() -> None:
    rules = _house_clean_rules()
    assert rules.referenced_ids_exist(work_step_ids=["rooms", "kitchen"])
    assert not rules.referenced_ids_exist(addon_ids=["oven_clean"])
    assert rules.missing_references(["rooms", "loft"], ["oven_clean"]) == [
        "work_step:loft",
        "addon:oven_clean",
    ]


def test_minimum_not_applied_above_threshold() -> None:
    rules = PricingRules(base_fee=80, minimum_charge=75)
    outcome = _price(rules)
    assert outcome.trace.summary.minimum_applied is False
    assert all(item.type != "minimum" for item in outcome.result.breakdown)


def test_keyword_addon_fires_once_and_is_recommended() -> None:
    rules = PricingRules(
        base_fee=50,
        addons=[
            Addon(
                id="fridge_clean",
                label="Fridge/Freezer clean",
                price=30,
                trigger_keywords=["fridge", "freezer"],
            )
        ],
    )
    outcome = _price(
        rules,
        addon_context=AddonContext(project_description="Please do the FRIDGE and the freezer"),
    )
    result = outcome.result

    addon_lines = [item for item in result.breakdown if item.type == "addon"]
    assert len(addon_lines) == 1
    assert addon_lines[0].auto_recommended is True
    assert [addon.id for addon in result.recommended_addons] == ["fridge_clean"]
    assert result.recommended_addons[0].source == "keyword"
    assert result.total == 80.0


def test_cent_amounts_sum_exactly() -> None:
    rules = PricingRules(work_steps=[_fixed("a", 33.33), _fixed("b", 66.67)])
    outcome = _price(rules, tax=VAT)

    assert outcome.result.subtotal == 100.0
    assert outcome.result.tax_amount == 20.0
    assert outcome.result.total == 120.0


def test_same_input_gives_identical_trace() -> None:
    answers = [FormAnswer(field_id="rooms", value="4"), FormAnswer(field_id="bathrooms", value=2)]
    first = _price(_house_clean_rules(), answers, tax=VAT)
    second = _price(_house_clean_rules(), answers, tax=VAT)

    assert first.canonical_json() == second.canonical_json()
    assert first.fingerprint() == second.fingerprint()


def test_zero_amounts_are_not_listed() -> None:
    rules = PricingRules(
        base_fee=40,
        work_steps=[_per_unit("rooms", 35, "rooms", "rooms"), _fixed("free_check", 0)],
        addons=[Addon(id="freebie", label="Freebie", price=0, trigger_keywords=["oven"])],
    )
    outcome = _price(
        rules,
        [FormAnswer(field_id="rooms", value=0)],
        addon_context=AddonContext(project_description="oven too"),
    )
    assert [item.amount for item in outcome.result.breakdown] == [40.0]
    assert outcome.result.notes == []


def test_unanswered_form_quantity_is_untrusted() -> None:
    outcome = _price(_house_clean_rules(), [FormAnswer(field_id="rooms", value=2)])
    bathrooms = next(step for step in outcome.trace.steps if step.id == "bathrooms")

    assert bathrooms.amount == 45.0
    assert bathrooms.quantity_trusted is False
    assert any("bathrooms" in note and "quantity 1" in note for note in outcome.result.notes)


def test_low_confidence_signal_gives_price_range() -> None:
    rules = PricingRules(
        work_steps=[_fixed("mould_treatment", 100, optional=True, trigger_signal="has_mould")]
    )
    outcome = _price(rules, signals=[Signal(key="has_mould", value=True, confidence=0.6)])
    result = outcome.result

    assert result.total == 100.0
    assert result.confidence == 0.6
    assert result.range is not None
    assert (result.range.low, result.range.high) == (85.0, 115.0)
    assert RANGE_NOTE in result.notes
    assert outcome.trace.signal_keys() == ["has_mould"]


def test_optional_step_without_trigger_is_skipped() -> None:
    rules = PricingRules(
        base_fee=10,
        work_steps=[_fixed("mould_treatment", 100, optional=True, trigger_signal="has_mould")],
    )
    outcome = _price(rules, signals=[Signal(key="has_mould", value=False, confidence=0.9)])
    assert outcome.result.total == 10.0


def test_price_range_law() -> None:
    assert price_range_for(100, 0.7) is None
    narrow = price_range_for(100, 0.5)
    wide = price_range_for(100, 0.39)
    assert (narrow.low, narrow.high) == (85.0, 115.0)
    assert (wide.low, wide.high) == (70.0, 130.0)


def test_multiplier_matches_normalised_form_value() -> None:
    rules = PricingRules(
        base_fee=100,
        multipliers=[
            Multiplier(
                when=MultiplierCondition(field_id="property_type", equals="two_storey"),
                multiplier=1.2,
            )
        ],
    )
    outcome = _price(rules, [FormAnswer(field_id="property_type", value="Two Storey")])
    line = outcome.result.breakdown[-1]

    assert line.type == "multiplier"
    assert line.amount == 20.0
    assert line.label == "Two storey property type"
    assert outcome.result.total == 120.0


def test_multipliers_are_independent_unless_chained() -> None:
    def rules(chained: bool) -> PricingRules:
        return PricingRules(
            base_fee=100,
            multipliers=[
                Multiplier(
                    when=MultiplierCondition(field_id="a", operator=TriggerOperator.EXISTS),
                    multiplier=1.1,
                ),
                Multiplier(
                    when=MultiplierCondition(field_id="b", operator=TriggerOperator.EXISTS),
                    multiplier=1.1,
                    chained=chained,
                ),
            ],
        )

    answers = [FormAnswer(field_id="a", value="x"), FormAnswer(field_id="b", value="y")]
    assert _price(rules(False), answers).result.total == 120.0
    assert _price(rules(True), answers).result.total == 121.0


def test_inventory_items_are_priced() -> None:
    job = JobData(
        matched_items=[
            MatchedItem(
                item_type="sofa",
                quantity=2,
                confidence=0.6,
                catalog_id="sofa_3",
                catalog_name="3-seat sofa",
                price_per_unit=45.5,
            )
        ]
    )
    outcome = _price(PricingRules(base_fee=20), job_data=job)

    assert outcome.trace.summary.inventory_total == 91.0
    assert outcome.result.total == 111.0
    assert "Some item quantities are estimated from photos" in outcome.result.notes


def test_missing_rules_raise() -> None:
    with pytest.raises(MissingPricingRulesError):
        _price(None)


def test_cross_service_pricing() -> None:
    rules = PricingRules(
        base_fee=40,
        work_steps=[
            _fixed("setup", 15),
            _per_unit("windows", 10, "windows", "windows"),
        ],
    )
    pricing = calculate_cross_service_pricing(
        rules,
        CrossServiceEstimate(
            service_id="window_cleaning",
            service_name="Window cleaning",
            reason="Customer mentioned dirty windows",
            estimated_quantity=12,
        ),
        VAT,
        "GBP",
    )

    assert pricing.estimated_total == 192.0
    assert pricing.breakdown[0] == "Base fee: £40.00"
    assert pricing.breakdown[1] == "12 windows × £10.00"
    assert pricing.is_estimate is True


@pytest.mark.parametrize("raw", ["inf", "Infinity", "-inf", "nan", "1e30"])
def test_unpriceable_form_numbers_fall_back_to_one(raw: str) -> None:
    outcome = _price(
        _house_clean_rules(),
        [FormAnswer(field_id="rooms", value=raw), FormAnswer(field_id="bathrooms", value=2)],
    )
    rooms = next(step for step in outcome.trace.steps if step.id == "rooms")

    assert rooms.amount == 35.0
    assert rooms.quantity_trusted is False
    assert outcome.result.total == 215.0
    assert any("non-numeric value" in note for note in outcome.result.notes)


def _price_with_complexity(level: str):
    return calculate_pricing_with_trace(
        _house_clean_rules(),
        LegacySignals(complexity=ComplexityAssessment(level=level)),
        None,
        [FormAnswer(field_id="rooms", value="4"), FormAnswer(field_id="bathrooms", value=2)],
        NO_TAX,
        "GBP",
    )


@pytest.mark.parametrize(
    "level, adjustment, description",
    [("low", -32.0, "Simple job discount"), ("high", 80.0, "High complexity")],
)
def test_complexity_adjusts_pre_multiplier_subtotal(
    level: str, adjustment: float, description: str
) -> None:
    outcome = _price_with_complexity(level)
    step = next(step for step in outcome.trace.steps if step.id == "complexity")

    assert step.type == "multiplier"
    assert step.amount == adjustment
    assert step.description == description
    assert step.signals_used[0].key == "complexity_level"
    assert step.signals_used[0].value == level
    assert outcome.trace.summary.multiplier_adjustment == adjustment
    assert outcome.result.subtotal == 320.0 + adjustment
    assert outcome.trace.summary.component_sum() == outcome.result.total


def test_medium_complexity_is_not_priced() -> None:
    outcome = _price_with_complexity("medium")
    assert all(step.id != "complexity" for step in outcome.trace.steps)
    assert outcome.result.subtotal == 320.0


def test_complexity_follows_configured_multipliers() -> None:
    rules = _house_clean_rules().model_copy(
        update={
            "multipliers": [
                Multiplier(
                    when=MultiplierCondition(
                        field_id="urgent", operator=TriggerOperator.EQUALS, equals="yes"
                    ),
                    multiplier=1.5,
                )
            ]
        }
    )
    outcome = calculate_pricing_with_trace(
        rules,
        LegacySignals(complexity=ComplexityAssessment(level="high")),
        None,
        [
            FormAnswer(field_id="rooms", value="4"),
            FormAnswer(field_id="bathrooms", value=2),
            FormAnswer(field_id="urgent", value="yes"),
        ],
        NO_TAX,
        "GBP",
    )
    multipliers = [step for step in outcome.trace.steps if step.type == "multiplier"]

    assert [step.id for step in multipliers] == ["urgent", "complexity"]
    assert [step.amount for step in multipliers] == [160.0, 80.0]
    assert outcome.result.subtotal == 560.0


def test_addon_trace_steps_carry_recommendation_flag() -> None:
    rules = PricingRules(
        base_fee=50,
        addons=[
            Addon(id="fridge_clean", label="Fridge clean", price=30, trigger_keywords=["fridge"])
        ],
    )
    outcome = _price(rules, addon_context=AddonContext(project_description="fridge is grim"))
    addon_step = next(step for step in outcome.trace.steps if step.type == "addon")

    assert addon_step.auto_recommended is True
    assert outcome.trace.steps[0].auto_recommended is None
