"""Check every declared invariant, proof and axiom against a snapshot.

Invariants describe committed, steady-state snapshots. The gate runs this
on the snapshot a mutation would produce, never as a transition guard.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from workflow_gate.model.snapshot import Snapshot
from workflow_gate.rules.registry import RuleRegistry, WorkflowSpec
from workflow_gate.spec.declarations import FormulaKind
from workflow_gate.spec.formula import Formula

from .evaluator import ProofEvaluator, Witness

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Violation:
    invariant_name: str
    formula: Formula
    witness: Witness | None = None
    kind: FormulaKind = FormulaKind.INVARIANT

    def describe(self) -> str:
        text = f"{self.kind.value} {self.invariant_name!r} violated"
        if self.witness is not None:
            text += f" (counterexample {self.witness.describe()})"
        return text


class InvariantChecker:
    def __init__(self, registry: RuleRegistry) -> None:
        self._registry = registry

    def check_all(self, workflow: str | WorkflowSpec, snapshot: Snapshot) -> list[Violation]:
        """Return every violated invariant; an empty list means the snapshot is valid."""

        spec = self._registry.get(workflow)
        evaluator = ProofEvaluator(spec, self._registry.predicates)
        violations: list[Violation] = []
        for invariant in spec.invariants:
            result = evaluator.evaluate(invariant.formula, snapshot)
            if not result.holds:
                violations.append(
                    Violation(
                        invariant_name=invariant.name,
                        formula=invariant.formula,
                        witness=result.witness,
                        kind=invariant.kind,
                    )
                )

        if violations:
            logger.info(
                "Invariants violated",
                extra={
                    "workflow": spec.name,
                    "version": snapshot.version,
                    "violations": [v.invariant_name for v in violations],
                },
            )
        return violations
