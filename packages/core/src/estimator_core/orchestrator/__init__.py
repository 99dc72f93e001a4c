from estimator_core.orchestrator.pipeline import QuoteDecision, QuoteJob, process_quote

__all__ = ["QuoteDecision", "QuoteJob", "process_quote"]
