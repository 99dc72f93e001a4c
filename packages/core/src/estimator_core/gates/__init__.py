from estimator_core.gates.quality_gate import evaluate_quality_gate, resolve_quality_gate

__all__ = ["evaluate_quality_gate", "resolve_quality_gate"]
