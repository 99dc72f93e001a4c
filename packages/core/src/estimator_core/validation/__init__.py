from estimator_core.validation.checks import check_quote
from estimator_core.validation.corrections import apply_auto_corrections
from estimator_core.validation.outcome import determine_validation_outcome
from estimator_core.validation.validator import (
    default_validation_result,
    review_quote,
    validate_quote,
)

__all__ = [
    "apply_auto_corrections",
    "check_quote",
    "default_validation_result",
    "determine_validation_outcome",
    "review_quote",
    "validate_quote",
]
