"""Evaluate formulas against a snapshot.

Quantifiers only ever range over the finite domains derived from the
snapshot (and the workflow's declared states), so evaluation always
terminates. The evaluator holds no state between calls: the same formula and
snapshot give the same result and the same witness every time.

A *witness* explains a result. For a false result it is the counterexample:
the quantifier bindings in force and the innermost sub-formula that failed.
For a true existential it is the instance that satisfied it.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass

from workflow_gate.errors import EvaluationError
from workflow_gate.model.snapshot import Commit, Snapshot, Task
from workflow_gate.rules.predicates import DOMAINS, PREDICATES, PredicateSpec, Value
from workflow_gate.rules.registry import WorkflowSpec
from workflow_gate.spec.formula import (
    And,
    DomainRef,
    Exists,
    Forall,
    Formula,
    Implies,
    Literal,
    Membership,
    Not,
    Or,
    Predicate,
    StateRef,
    Term,
    Truth,
    Var,
)

Bindings = tuple[tuple[str, object], ...]


@dataclass(frozen=True, slots=True)
class Witness:
    bindings: Bindings
    formula: Formula

    def binding(self, name: str) -> object | None:
        for var, value in reversed(self.bindings):
            if var == name:
                return value
        return None

    def describe(self) -> str:
        if not self.bindings:
            return f"`{self.formula}`"
        bound = ", ".join(f"{var}={value}" for var, value in self.bindings)
        return f"{bound}: `{self.formula}`"


@dataclass(frozen=True, slots=True)
class EvaluationResult:
    holds: bool
    witness: Witness | None = None

    def __bool__(self) -> bool:
        return self.holds


def _is_member(value: object, members: tuple[object, ...]) -> bool:
    if isinstance(value, str):
        return any(
            (m.id == value) if isinstance(m, (Task, Commit)) else (m == value) for m in members
        )
    return value in members


class ProofEvaluator:
    """Evaluates formulas for one workflow.

    The workflow supplies the ``states`` domain; everything else comes from
    the snapshot passed to :meth:`evaluate`.
    """

    def __init__(
        self,
        workflow: WorkflowSpec | None = None,
        predicates: Mapping[str, PredicateSpec] = PREDICATES,
    ) -> None:
        self._states = workflow.states if workflow is not None else ()
        self._predicates = predicates

    def evaluate(
        self,
        formula: Formula,
        snapshot: Snapshot,
        env: Mapping[str, object] | None = None,
    ) -> EvaluationResult:
        """Evaluate ``formula`` with optional pre-bound variables.

        Raises:
            EvaluationError: an undefined predicate or domain, or an argument
                of the wrong kind. Never reported as a false result.
        """

        bindings: Bindings = tuple(env.items()) if env else ()
        return self._eval(formula, snapshot, bindings)

    def holds(self, formula: Formula, snapshot: Snapshot) -> bool:
        return self.evaluate(formula, snapshot).holds

    def domain(self, name: str, snapshot: Snapshot) -> tuple[object, ...]:
        resolver = DOMAINS.get(name)
        if resolver is None:
            raise EvaluationError(f"{name!r} is not a known finite domain")
        return resolver(snapshot, self._states)

    def _eval(self, formula: Formula, snapshot: Snapshot, env: Bindings) -> EvaluationResult:
        if isinstance(formula, Truth):
            return EvaluationResult(formula.value, None if formula.value else Witness(env, formula))

        if isinstance(formula, Predicate):
            return self._predicate(formula, snapshot, env)

        if isinstance(formula, Membership):
            members = self.domain(formula.domain, snapshot)
            element = self._value(formula.element, snapshot, env, formula)
            holds = _is_member(element, members) != formula.negated
            return EvaluationResult(holds, None if holds else Witness(env, formula))

        if isinstance(formula, Not):
            inner = self._eval(formula.operand, snapshot, env)
            if inner.holds:
                return EvaluationResult(False, inner.witness or Witness(env, formula))
            return EvaluationResult(True, Witness(env, formula))

        if isinstance(formula, And):
            for operand in formula.operands:
                result = self._eval(operand, snapshot, env)
                if not result.holds:
                    return EvaluationResult(False, result.witness or Witness(env, operand))
            return EvaluationResult(True)

        if isinstance(formula, Or):
            for operand in formula.operands:
                result = self._eval(operand, snapshot, env)
                if result.holds:
                    return result
            return EvaluationResult(False, Witness(env, formula))

        if isinstance(formula, Implies):
            antecedent = self._eval(formula.antecedent, snapshot, env)
            if not antecedent.holds:
                return EvaluationResult(True)
            consequent = self._eval(formula.consequent, snapshot, env)
            if consequent.holds:
                return consequent
            return EvaluationResult(False, consequent.witness or Witness(env, formula.consequent))

        if isinstance(formula, Forall):
            for member in self.domain(formula.domain, snapshot):
                inner_env = (*env, (formula.var, member))
                result = self._eval(formula.body, snapshot, inner_env)
                if not result.holds:
                    return EvaluationResult(False, result.witness or Witness(inner_env, formula.body))
            return EvaluationResult(True)

        if isinstance(formula, Exists):
            for member in self.domain(formula.domain, snapshot):
                inner_env = (*env, (formula.var, member))
                result = self._eval(formula.body, snapshot, inner_env)
                if result.holds:
                    return EvaluationResult(True, result.witness or Witness(inner_env, formula.body))
            return EvaluationResult(False)

        raise EvaluationError(f"Cannot evaluate {formula!r}")

    def _predicate(self, formula: Predicate, snapshot: Snapshot, env: Bindings) -> EvaluationResult:
        spec = self._predicates.get(formula.name)
        if spec is None:
            raise EvaluationError(
                f"Undefined predicate {formula.name!r}",
                predicate=formula.name,
                formula=str(formula),
            )
        args = tuple(self._value(arg, snapshot, env, formula) for arg in formula.args)
        try:
            holds = spec(snapshot, args)
        except EvaluationError as e:
            raise EvaluationError(e.message, predicate=formula.name, formula=str(formula)) from e
        return EvaluationResult(holds, None if holds else Witness(env, formula))

    def _value(self, term: Term, snapshot: Snapshot, env: Bindings, formula: Formula) -> Value:
        if isinstance(term, Var):
            for var, value in reversed(env):
                if var == term.name:
                    return value  # type: ignore[return-value]
            raise EvaluationError(f"Variable {term.name!r} is not bound", formula=str(formula))
        if isinstance(term, DomainRef):
            return self.domain(term.name, snapshot)
        if isinstance(term, (StateRef, Literal)):
            return term.name if isinstance(term, StateRef) else term.value
        raise EvaluationError(f"Cannot evaluate term {term!r}", formula=str(formula))
