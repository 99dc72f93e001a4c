from __future__ import annotations


class EstimatorError(Exception):
    """Base error for the quote engine."""


class MissingPricingRulesError(EstimatorError):
    """Raised when a service has no pricing rules; pricing cannot proceed without them."""
