from __future__ import annotations

import logging
from typing import Literal

from pydantic import Field

from estimator_core.config import EngineSettings, build_validation_client, get_settings
from estimator_core.fusion import merge_into_extraction, reconcile_signals
from estimator_core.gates import resolve_quality_gate
from estimator_core.llm.base import LLMClient
from estimator_core.pricing import calculate_cross_service_pricing, calculate_pricing_with_trace
from estimator_core.schemas.base import WireModel
from estimator_core.schemas.gate import QualityGateInput, QualityGateResult
from estimator_core.schemas.pricing import (
    AddonContext,
    CrossServiceEstimate,
    JobData,
    PricingOutcome,
    ServiceContext,
)
from estimator_core.schemas.quote import (
    CrossServicePricing,
    CustomerRequest,
    GeneratedQuote,
    QuoteContent,
    ServiceConfig,
    SignalRecommendation,
)
from estimator_core.schemas.rules import PricingRules, TaxConfig
from estimator_core.schemas.signals import (
    SignalConflict,
    SignalExtraction,
    default_signal_extraction,
    legacy_from_extraction,
)
from estimator_core.schemas.validation import (
    AutoCorrectionResult,
    ValidationOutcome,
    ValidationResult,
    ValidationSettings,
    default_validation_settings,
)
from estimator_core.validation import (
    apply_auto_corrections,
    determine_validation_outcome,
    review_quote,
)

logger = logging.getLogger(__name__)

QuoteStatus = Literal["sent", "awaiting_clarification", "pending_review"]


class QuoteJob(WireModel):
    request: CustomerRequest
    service: ServiceConfig
    extraction: SignalExtraction = Field(default_factory=default_signal_extraction)
    tax: TaxConfig = Field(default_factory=TaxConfig)
    currency: str = "GBP"
    clarification_count: int = Field(default=0, ge=0)
    field_signal_map: dict[str, str] = Field(default_factory=dict)
    ai_detected_addon_ids: list[str] = Field(default_factory=list)
    job_data: JobData | None = None
    content: QuoteContent | None = None
    signal_recommendations: list[SignalRecommendation] = Field(default_factory=list)
    cross_service_estimates: list[CrossServiceEstimate] = Field(default_factory=list)
    cross_service_rules: dict[str, PricingRules] = Field(default_factory=dict)
    config_version: str = "v1"


class QuoteDecision(WireModel):
    status: QuoteStatus
    pricing: PricingOutcome
    conflicts: list[SignalConflict] = Field(default_factory=list)
    gate: QualityGateResult
    quote: GeneratedQuote | None = None
    validation: ValidationResult | None = None
    outcome: ValidationOutcome | None = None
    corrections: AutoCorrectionResult | None = None
    fingerprint: str


def _content_for(job: QuoteJob) -> QuoteContent:
    if job.content is not None:
        return job.content
    return QuoteContent(
        assumptions=list(job.service.default_assumptions),
        exclusions=list(job.service.scope_excludes),
    )


def _cross_service(job: QuoteJob) -> list[CrossServicePricing]:
    priced: list[CrossServicePricing] = []
    for estimate in job.cross_service_estimates:
        rules = job.cross_service_rules.get(estimate.service_id)
        if rules is None:
            logger.debug("no pricing rules for cross-service %s", estimate.service_id)
            continue
        priced.append(calculate_cross_service_pricing(rules, estimate, job.tax, job.currency))
    return priced


async def process_quote(
    job: QuoteJob,
    client: LLMClient | None = None,
    settings: EngineSettings | None = None,
    validation_settings: ValidationSettings | None = None,
    validation_client: LLMClient | None = None,
) -> QuoteDecision:
    """Run one quote through reconciliation, pricing, the gate and validation.

    ``client`` phrases clarification questions. Validation gets its own
    single-attempt client, built from ``settings`` unless ``validation_client``
    is given.
    """
    resolved = settings or get_settings()
    checks = validation_settings or default_validation_settings()
    request = job.request
    service = job.service

    reconciled = reconcile_signals(
        job.extraction.signals, request.form_answers, job.field_signal_map
    )
    extraction = merge_into_extraction(
        job.extraction, reconciled, resolved.low_confidence_threshold
    )
    pricing = calculate_pricing_with_trace(
        service.pricing_rules,
        legacy_from_extraction(extraction),
        extraction,
        request.form_answers,
        job.tax,
        job.currency,
        job_data=job.job_data,
        addon_context=AddonContext(
            project_description=request.customer_description,
            form_answers=request.form_answers,
        ),
        ai_detected_addon_ids=job.ai_detected_addon_ids,
        service_context=ServiceContext(
            name=service.service_name, scope_includes=service.scope_includes
        ),
        config_version=job.config_version,
    )
    fingerprint = pricing.fingerprint()

    gate = await resolve_quality_gate(
        QualityGateInput(
            extraction=extraction,
            conflicts=reconciled.conflicts,
            pricing=pricing.result,
            clarification_count=job.clarification_count,
            service_name=service.service_name,
            has_photos=request.photo_count > 0,
            pricing_rules=service.pricing_rules,
        ),
        client=client,
        settings=resolved,
    )
    if gate.action != "send":
        status: QuoteStatus = (
            "awaiting_clarification" if gate.action == "ask_clarification" else "pending_review"
        )
        logger.info("quote held at the gate: %s (%s)", status, gate.reason)
        return QuoteDecision(
            status=status,
            pricing=pricing,
            conflicts=reconciled.conflicts,
            gate=gate,
            fingerprint=fingerprint,
        )

    quote = GeneratedQuote(
        pricing=pricing.result,
        content=_content_for(job),
        signal_recommendations=job.signal_recommendations,
        cross_service_pricing=_cross_service(job),
    )
    reviewer = validation_client
    if reviewer is None:
        reviewer = build_validation_client(resolved)
    validation = await review_quote(quote, request, service, client=reviewer, settings=checks)
    outcome = determine_validation_outcome(validation, checks, quote.pricing.total)

    corrections = None
    if outcome.outcome == "auto_corrected":
        corrections = apply_auto_corrections(quote, validation.issues, service)
        quote = corrections.quote
        if corrections.applied_fixes:
            logger.info("applied %d auto-correction(s)", len(corrections.applied_fixes))

    return QuoteDecision(
        status="pending_review" if outcome.needs_review else "sent",
        pricing=pricing,
        conflicts=reconciled.conflicts,
        gate=gate,
        quote=quote,
        validation=validation,
        outcome=outcome,
        corrections=corrections,
        fingerprint=fingerprint,
    )
