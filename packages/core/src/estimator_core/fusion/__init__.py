from estimator_core.fusion.reconciler import merge_into_extraction, reconcile_signals

__all__ = ["merge_into_extraction", "reconcile_signals"]
