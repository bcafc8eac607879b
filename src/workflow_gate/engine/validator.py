"""Check one proposed workflow transition against its contract."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum

from workflow_gate.model.snapshot import Snapshot
from workflow_gate.rules.registry import RuleRegistry, WorkflowSpec
from workflow_gate.spec.formula import Formula, conjuncts

from .evaluator import ProofEvaluator, Witness

logger = logging.getLogger(__name__)


class RejectionKind(str, Enum):
    UNDECLARED = "no_such_transition"
    WRONG_STATE = "wrong_source_state"
    PRECONDITION = "precondition_unmet"
    # The transition's own contract cannot hold: a defect in the workflow, not the proposal.
    POSTCONDITION = "postcondition_unsatisfiable"


@dataclass(frozen=True, slots=True)
class UnmetCondition:
    formula: Formula
    witness: Witness | None = None

    def __str__(self) -> str:
        return str(self.formula)

    def describe(self) -> str:
        if self.witness is None or (
            self.witness.formula == self.formula and not self.witness.bindings
        ):
            return f"`{self.formula}`"
        return f"`{self.formula}` (counterexample {self.witness.describe()})"


@dataclass(frozen=True, slots=True)
class Accept:
    """The transition may proceed; ``snapshot`` is the state it would produce."""

    snapshot: Snapshot
    accepted: bool = field(default=True, init=False)


@dataclass(frozen=True, slots=True)
class Reject:
    kind: RejectionKind
    reason: str
    unmet: tuple[UnmetCondition, ...] = ()
    accepted: bool = field(default=False, init=False)

    @property
    def is_defect(self) -> bool:
        return self.kind is RejectionKind.POSTCONDITION

    def reasons(self) -> list[str]:
        if not self.unmet:
            return [self.reason]
        return [f"{self.reason}: {u.describe()}" for u in self.unmet]


TransitionOutcome = Accept | Reject


class StateValidator:
    def __init__(self, registry: RuleRegistry) -> None:
        self._registry = registry

    def check_transition(
        self,
        workflow: str | WorkflowSpec,
        source: str,
        target: str,
        snapshot: Snapshot,
    ) -> TransitionOutcome:
        """Decide whether ``source -> target`` may be taken from ``snapshot``.

        Every failing top-level conjunct of the precondition is reported, not
        only the first. A failing postcondition is reported as a workflow
        defect rather than an ordinary rejection.

        Raises:
            EvaluationError: a formula references something undefined.
        """

        spec = self._registry.get(workflow)
        transition = self._registry.lookup_transition(spec, source, target)
        if transition is None:
            return Reject(RejectionKind.UNDECLARED, "no such transition declared")

        if snapshot.project.state != source:
            return Reject(
                RejectionKind.WRONG_STATE,
                f"project is in state {snapshot.project.state!r}, not {source!r}",
            )

        evaluator = ProofEvaluator(spec, self._registry.predicates)

        unmet: list[UnmetCondition] = []
        for conjunct in conjuncts(transition.precondition):
            result = evaluator.evaluate(conjunct, snapshot)
            if not result.holds:
                unmet.append(UnmetCondition(conjunct, result.witness))
        if unmet:
            logger.info(
                "Transition precondition unmet",
                extra={
                    "workflow": spec.name,
                    "transition": str(transition),
                    "unmet": [str(u) for u in unmet],
                },
            )
            return Reject(RejectionKind.PRECONDITION, "precondition unmet", tuple(unmet))

        after = transition.apply(snapshot)
        post = evaluator.evaluate(transition.postcondition, after)
        if not post.holds:
            logger.warning(
                "Transition postcondition cannot hold",
                extra={"workflow": spec.name, "transition": str(transition)},
            )
            return Reject(
                RejectionKind.POSTCONDITION,
                f"postcondition of {transition} fails after applying it",
                (UnmetCondition(transition.postcondition, post.witness),),
            )

        return Accept(after)
