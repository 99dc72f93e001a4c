from __future__ import annotations

import logging

from pydantic import Field, ValidationError

from estimator_core.config import EngineSettings, MAX_CLARIFICATION_QUESTIONS, get_settings
from estimator_core.gates.prompts import CLARIFICATION_QUESTIONS_SCHEMA, build_clarification_prompt
from estimator_core.llm.base import LLMClient, LLMError
from estimator_core.schemas.base import WireModel
from estimator_core.schemas.gate import (
    ClarificationQuestion,
    ClarificationTarget,
    QualityGateInput,
    QualityGateResult,
)
from estimator_core.schemas.signals import Signal
from estimator_core.utils.coerce import humanize_key

logger = logging.getLogger(__name__)


class _GeneratedQuestion(WireModel):
    target_signal_key: str
    question: str = Field(min_length=1)
    options: list[str] = Field(default_factory=list)


class _GeneratedQuestions(WireModel):
    questions: list[_GeneratedQuestion] = Field(default_factory=list)


def _question_limit(settings: EngineSettings) -> int:
    return max(0, min(settings.max_clarification_questions, MAX_CLARIFICATION_QUESTIONS))


def _critical_reason(gate_input: QualityGateInput, settings: EngineSettings) -> str | None:
    extraction = gate_input.extraction
    confidence = extraction.overall_confidence
    if gate_input.has_photos and confidence < settings.critical_confidence_threshold:
        return (
            f"Very low overall confidence ({confidence * 100:.0f}%) - "
            "signals could not be extracted reliably from photos"
        )

    pricing = gate_input.pricing
    rules = gate_input.pricing_rules
    configured = rules is not None and rules.has_billable_work_steps()
    if pricing.total <= 0 and (pricing.breakdown or configured):
        return "Pricing calculated to zero or below despite configured work steps"

    if (
        gate_input.has_photos
        and extraction.site_visit_recommended
        and confidence < settings.site_visit_confidence_threshold
    ):
        return f"Site visit recommended with low confidence ({confidence * 100:.0f}%)"
    return None


def select_clarification_targets(
    gate_input: QualityGateInput,
    threshold: float,
) -> list[ClarificationTarget]:
    """Low-confidence AI signals plus conflicts the form did not settle, most uncertain first."""
    by_key: dict[str, Signal] = {signal.key: signal for signal in gate_input.extraction.signals}
    targets: dict[str, ClarificationTarget] = {}
    for signal in gate_input.extraction.signals:
        if signal.is_form or signal.confidence >= threshold:
            continue
        targets[signal.key] = ClarificationTarget(
            key=signal.key,
            reason=(
                f'Low confidence ({signal.confidence * 100:.0f}%) for "{signal.key}" '
                f"- value: {signal.value}"
            ),
            confidence=signal.confidence,
            value=signal.value,
        )
    for conflict in gate_input.conflicts:
        if conflict.resolved_source == "form" or conflict.key in targets:
            continue
        signal = by_key.get(conflict.key)
        if signal is not None and signal.is_form:
            continue
        targets[conflict.key] = ClarificationTarget(
            key=conflict.key,
            reason=f'Conflicting estimates: "{conflict.ai_value}" - {conflict.resolution}',
            confidence=signal.confidence if signal is not None else 0.0,
            value=signal.value if signal is not None else conflict.ai_value,
        )
    return sorted(targets.values(), key=lambda target: (target.confidence, target.key))


def template_question(
    index: int, target: ClarificationTarget, service_name: str
) -> ClarificationQuestion:
    label = humanize_key(target.key)
    question_id = f"cq_{index}_{target.key}"
    if isinstance(target.value, bool):
        return ClarificationQuestion(
            id=question_id,
            target_signal_key=target.key,
            question=f"Does your {service_name} job involve {label}?",
            options=["Yes", "No"],
        )
    if isinstance(target.value, (int, float)):
        return ClarificationQuestion(
            id=question_id,
            target_signal_key=target.key,
            question=f'Could you confirm the number for "{label}" on your {service_name} quote?',
        )
    return ClarificationQuestion(
        id=question_id,
        target_signal_key=target.key,
        question=f'Could you provide more details about "{label}" for your {service_name} quote?',
    )


def evaluate_quality_gate(
    gate_input: QualityGateInput,
    settings: EngineSettings | None = None,
) -> QualityGateResult:
    """Decide send, ask_clarification or require_review for one processing round."""
    resolved = settings or get_settings()
    if gate_input.clarification_count >= 1:
        return QualityGateResult(action="send", reason="Clarification round already used")

    reason = _critical_reason(gate_input, resolved)
    if reason is not None:
        logger.info("quote flagged for review: %s", reason)
        return QualityGateResult(action="require_review", reason=reason)

    targets = select_clarification_targets(gate_input, resolved.low_confidence_threshold)
    targets = targets[: _question_limit(resolved)]
    if not targets:
        return QualityGateResult(action="send")

    questions = [
        template_question(index, target, gate_input.service_name)
        for index, target in enumerate(targets)
    ]
    return QualityGateResult(
        action="ask_clarification",
        reason=f"{len(targets)} signal(s) need customer confirmation",
        questions=questions,
        targets=targets,
    )


def _generated_questions(
    payload: dict,
    targets: list[ClarificationTarget],
    service_name: str,
) -> list[ClarificationQuestion]:
    parsed = _GeneratedQuestions.model_validate(payload)
    wanted = [target.key for target in targets]
    questions: list[ClarificationQuestion] = []
    for generated in parsed.questions:
        key = generated.target_signal_key
        if key not in wanted or any(q.target_signal_key == key for q in questions):
            continue
        questions.append(
            ClarificationQuestion(
                id=f"cq_{len(questions)}_{key}",
                target_signal_key=key,
                question=generated.question.strip(),
                options=generated.options,
            )
        )
        if len(questions) == len(targets):
            break
    if not questions:
        return questions
    answered = {question.target_signal_key for question in questions}
    for target in targets:
        if target.key not in answered:
            questions.append(template_question(len(questions), target, service_name))
    return questions


async def resolve_quality_gate(
    gate_input: QualityGateInput,
    client: LLMClient | None = None,
    settings: EngineSettings | None = None,
) -> QualityGateResult:
    """Like ``evaluate_quality_gate`` but asks the model to phrase the questions."""
    result = evaluate_quality_gate(gate_input, settings)
    if result.action != "ask_clarification" or client is None:
        return result

    prompt = build_clarification_prompt(result.targets, gate_input.service_name)
    try:
        payload = await client.complete_json(prompt, CLARIFICATION_QUESTIONS_SCHEMA)
        questions = _generated_questions(payload, result.targets, gate_input.service_name)
    except (LLMError, ValidationError) as exc:
        logger.warning("clarification question generation failed, using templates", exc_info=exc)
        return result
    if not questions:
        logger.warning("no usable generated questions, using templates")
        return result
    return result.model_copy(update={"questions": questions})
