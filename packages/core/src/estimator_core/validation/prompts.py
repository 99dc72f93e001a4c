from __future__ import annotations

import orjson

from estimator_core.schemas.quote import CustomerRequest, GeneratedQuote, ServiceConfig
from estimator_core.schemas.rules import CostType
from estimator_core.utils.money import currency_symbol, format_number


def _listing(lines: list[str], empty: str) -> str:
    return "\n".join(lines) if lines else f"  {empty}"


def _json(value: object) -> str:
    return orjson.dumps(value).decode("utf-8")


def build_validation_prompt(
    quote: GeneratedQuote,
    request: CustomerRequest,
    service: ServiceConfig,
) -> str:
    symbol = currency_symbol(quote.pricing.currency)
    rules = service.pricing_rules

    answers = [f"  - {answer.field_id}: {_json(answer.value)}" for answer in request.form_answers]
    work_steps = []
    for step in rules.work_steps:
        unit = "fixed" if step.cost_type is CostType.FIXED else step.unit_label or "unit"
        trigger = f"optional, trigger: {step.trigger_signal}" if step.optional else "mandatory"
        work_steps.append(
            f"  - [ID: {step.id}] {step.name}: {symbol}{format_number(step.default_cost)}/{unit} "
            f"({trigger})"
        )
    addons = [
        f"  - [ID: {addon.id}] {addon.label}: {symbol}{format_number(addon.price)} "
        f"(keywords: {', '.join(addon.trigger_keywords)})"
        for addon in rules.addons
    ]
    multipliers = [
        f"  - When {item.when.field_id} {item.when.operator.value} {item.when.compare_value}"
        f" -> {item.multiplier}x"
        for item in rules.multipliers
    ]
    breakdown = [
        f"  - {item.label}: {symbol}{format_number(item.amount)}"
        for item in quote.pricing.breakdown
    ]
    potential = [
        f"  {index}. {item.work_description}: {item.cost_breakdown}"
        for index, item in enumerate(quote.signal_recommendations)
    ]
    cross = [
        f"  - [ID: {item.service_id}] {item.service_name}: "
        f"{symbol}{format_number(item.estimated_total)} (reason: {item.reason})"
        for item in quote.cross_service_pricing
    ]
    notes = [f"  {index}. {note}" for index, note in enumerate(quote.pricing.notes)]

    return f"""You are a senior quote reviewer. Find every problem in this quote before the customer sees it.

## CUSTOMER REQUEST
- Form answers:
{_listing(answers, "(none)")}
- Description: {_json(request.customer_description)}
- Photos analysed: {request.photo_count}

## SERVICE CONFIGURATION
- Service: {service.service_name}
- Description: {service.service_description or "N/A"}
- Scope includes: {", ".join(service.scope_includes) or "N/A"}
- Scope excludes: {", ".join(service.scope_excludes) or "N/A"}
- Default assumptions: {", ".join(service.default_assumptions) or "N/A"}
- Work steps:
{_listing(work_steps, "(none configured)")}
- Addons:
{_listing(addons, "(none configured)")}
- Multipliers:
{_listing(multipliers, "(none configured)")}

## GENERATED QUOTE
- Breakdown:
{_listing(breakdown, "(none)")}
- Total: {symbol}{format_number(quote.pricing.total)}
- Pricing notes (0-indexed):
{_listing(notes, "(none)")}
- Scope text: {_json(quote.content.scope_summary)}
- Assumptions: {_json(quote.content.assumptions)}
- Exclusions: {_json(quote.content.exclusions)}
- Potential additional work (0-indexed):
{_listing(potential, "(none)")}
- Additional services suggested:
{_listing(cross, "(none)")}

## CHECKS
CHECK_1 pricing: every numeric form answer is used by a line item (1a); optional work steps whose
trigger is satisfied are present (1b); the total is not more than the configured gap below what the
work steps imply (1c); matching multipliers are applied (1d).
CHECK_2 scope: the scope only promises priced or included work (2a), matches the customer's intent,
e.g. a repair request is not answered with an inspection (2b), and stays inside scope includes (2c).
CHECK_3 potential_work: no item repeats something the form already answered (3a), no item states a
price (3b), items are relevant (3c), at most 3 items of at most 20 words (3d).
CHECK_4 cross_service: suggested services match what the customer mentioned (4a), fit the customer
context (4b), were not deferred ("maybe later", "not for this quote") (4c) and have a price (4d).
CHECK_5 addons: "no extras", "keep it simple" or "budget only" means no keyword addons (5a); no addon
conflicts with scope excludes (5b); addons follow explicit requests, not symptoms (5c).
CHECK_6 notes: notes are relevant (6a); error codes the customer mentioned appear in the notes (6b).
CHECK_7 discounts: only configured multipliers adjust the price (7a); every line item traces back to
a configured work step, addon or multiplier (7b).
CHECK_8 logic: flag form answers that contradict the description (8a), as low severity.

## OUTPUT
Return only a JSON object:
{{
  "confidenceScore": 0.0-1.0,
  "issues": [
    {{
      "id": "unique-id",
      "category": "pricing|scope|potential_work|cross_service|addons|notes|discounts|logic",
      "severity": "critical|high|medium|low",
      "check": "CHECK_1a",
      "description": "what is wrong",
      "found": "evidence from the quote",
      "expected": "what the configuration or request implies",
      "autoFixable": true,
      "autoFix": {{
        "action": "add_work_step|remove_scope_text|add_scope_exclusion|remove_potential_work|remove_cross_service|remove_addon|add_note|remove_note|flag_only",
        "details": {{
          "workStepId": "exact work step ID", "quantity": 1,
          "pattern": "scope text to remove", "replacement": "",
          "text": "exclusion text",
          "itemIndex": 0, "serviceId": "service ID", "addonId": "addon label",
          "noteIndex": 0, "noteText": "note text", "position": "start|end"
        }}
      }},
      "suggestedConfigFix": "only for configuration problems"
    }}
  ],
  "calculatedExpectedTotal": 0,
  "pricingGapPercent": 0
}}

Base every check on the service configuration, never on market rates. Form answers are the truth.
Quote the evidence for each issue. Separate configuration problems (suggestedConfigFix) from quote
problems. Only flag real problems."""
