"""Formula evaluation and the two checks built on it."""

from .evaluator import EvaluationResult, ProofEvaluator, Witness
from .invariants import InvariantChecker, Violation
from .validator import Accept, Reject, RejectionKind, StateValidator, UnmetCondition

__all__ = [
    "Accept",
    "EvaluationResult",
    "InvariantChecker",
    "ProofEvaluator",
    "Reject",
    "RejectionKind",
    "StateValidator",
    "UnmetCondition",
    "Violation",
    "Witness",
]
