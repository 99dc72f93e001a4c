from estimator_core.pricing.addons import AddonMatch, detect_addons
from estimator_core.pricing.calculator import (
    calculate_cross_service_pricing,
    calculate_pricing_with_trace,
)
from estimator_core.pricing.conditions import evaluate_condition

__all__ = [
    "AddonMatch",
    "calculate_cross_service_pricing",
    "calculate_pricing_with_trace",
    "detect_addons",
    "evaluate_condition",
]
