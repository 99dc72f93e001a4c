from __future__ import annotations

from estimator_core.schemas.signals import (
    ParseError,
    SignalExtraction,
    legacy_from_extraction,
    parse_signal_extraction,
)


def test_parses_camel_case_payload() -> None:
    parsed = parse_signal_extraction(
        b'{"signals": [{"key": "rooms", "value": 3, "confidence": 0.8, "source": "nlp"}],'
        b' "overallConfidence": 0.7, "complexity": "high", "siteVisitRecommended": true}'
    )

    assert isinstance(parsed, SignalExtraction)
    assert parsed.get("rooms").source == "inferred"
    assert parsed.overall_confidence == 0.7
    assert parsed.complexity.level == "high"
    assert parsed.site_visit_recommended is True


def test_malformed_payloads_become_parse_errors() -> None:
    not_json = parse_signal_extraction("{oops")
    not_object = parse_signal_extraction([1, 2])
    bad_confidence = parse_signal_extraction(
        {"signals": [{"key": "rooms", "value": 3, "confidence": 2}]}
    )
    uncertain_form = parse_signal_extraction(
        {"signals": [{"key": "rooms", "value": 3, "confidence": 0.9, "source": "form"}]}
    )

    assert isinstance(not_json, ParseError)
    assert not_json.message.startswith("invalid JSON")
    assert isinstance(not_object, ParseError)
    assert isinstance(bad_confidence, ParseError)
    assert any(error.startswith("signals.0.confidence") for error in bad_confidence.errors)
    assert isinstance(uncertain_form, ParseError)


def test_legacy_view_of_extraction() -> None:
    parsed = parse_signal_extraction(
        {
            "signals": [
                {"key": "has_damp", "value": True, "confidence": 0.7},
                {"key": "has_pets", "value": False, "confidence": 0.9},
            ],
            "overallConfidence": 0.6,
            "siteVisitReason": "Structural cracks",
        }
    )
    legacy = legacy_from_extraction(parsed)

    assert legacy.detected_conditions == ["damp"]
    assert legacy.confidence == 0.6
    assert legacy.site_visit_reason == "Structural cracks"
