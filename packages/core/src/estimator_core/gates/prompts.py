from __future__ import annotations

from typing import Sequence

from estimator_core.schemas.gate import ClarificationTarget

CLARIFICATION_QUESTIONS_SCHEMA: dict = {
    "type": "object",
    "properties": {
        "questions": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "targetSignalKey": {"type": "string"},
                    "question": {"type": "string"},
                    "options": {"type": "array", "items": {"type": "string"}},
                },
                "required": ["targetSignalKey", "question"],
            },
        }
    },
    "required": ["questions"],
}


def build_clarification_prompt(targets: Sequence[ClarificationTarget], service_name: str) -> str:
    described = "\n".join(f'- "{target.key}": {target.reason}' for target in targets)
    return (
        f"Generate {len(targets)} clear, friendly question(s) to ask a customer about their "
        f"{service_name} quote request.\n\n"
        f"These signals need clarification:\n{described}\n\n"
        "Rules:\n"
        "1. Questions should be simple and easy for a non-technical customer to answer\n"
        "2. If possible, provide 2-4 answer options to choose from\n"
        "3. Each question should target exactly one signal, named in targetSignalKey\n"
        "4. Keep questions concise (1-2 sentences max)\n\n"
        'Return a JSON object with a "questions" array.'
    )
