"""Workflow definitions and the fixed predicate, domain and effect tables."""

from .effects import EFFECTS
from .predicates import DOMAINS, PREDICATES, ArgKind, PredicateSpec
from .registry import (
    CORE_INVARIANTS,
    Invariant,
    RuleRegistry,
    Transition,
    WorkflowSpec,
    build_workflow,
)

__all__ = [
    "CORE_INVARIANTS",
    "DOMAINS",
    "EFFECTS",
    "PREDICATES",
    "ArgKind",
    "Invariant",
    "PredicateSpec",
    "RuleRegistry",
    "Transition",
    "WorkflowSpec",
    "build_workflow",
]
