"""Validated store of loaded workflow definitions.

``load`` parses rule text, checks every cross reference (states,
predicates, effects, domains), attaches the core layer and commit rules,
and only then publishes the resulting :class:`WorkflowSpec`. Publishing
swaps in a new mapping, so a reader either sees the old definition or the
new one, never a mix. A caller that already holds a ``WorkflowSpec`` keeps
using it across reloads.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType

from workflow_gate.errors import LoadError, UnknownWorkflowError
from workflow_gate.model.snapshot import Snapshot
from workflow_gate.spec.declarations import FormulaKind, SpecDocument, WorkflowDecl
from workflow_gate.spec.formula import (
    TRUE,
    DomainRef,
    Exists,
    Forall,
    Formula,
    Literal,
    Membership,
    Predicate,
    StateRef,
    Term,
    Var,
    children,
)
from workflow_gate.spec.parser import parse

from .effects import EFFECTS
from .predicates import DOMAIN_SORTS, DOMAINS, PREDICATES, ArgKind, PredicateSpec

logger = logging.getLogger(__name__)

# Layer and commit rules every project must satisfy. They are attached to
# every loaded workflow; a source may restate one under the same name only
# with the same formula.
CORE_INVARIANTS = """\
invariant that backlog_open: task in backlog -> not completed[task]
invariant that changelog_completed: task in changelog -> completed[task]
invariant that journal_entries_committed: task in journal -> committed[task]
invariant that validated_commit_revertible: validated[commit] -> revertible[commit]
"""

_CORE_FORMULAS = parse(CORE_INVARIANTS).formulas


@dataclass(frozen=True, slots=True)
class Transition:
    source: str
    target: str
    precondition: Formula = TRUE
    postcondition: Formula = TRUE
    effects: tuple[str, ...] = ()
    critical: bool = False

    def __str__(self) -> str:
        return f"{self.source} -> {self.target}"

    def apply(self, snapshot: Snapshot) -> Snapshot:
        """Build the hypothetical snapshot this transition would produce."""

        project = snapshot.project.with_state(self.target)
        for name in self.effects:
            project = EFFECTS[name](project)
        return snapshot.evolve(project)


@dataclass(frozen=True, slots=True)
class Invariant:
    name: str
    formula: Formula
    kind: FormulaKind = FormulaKind.INVARIANT


@dataclass(frozen=True, slots=True)
class WorkflowSpec:
    name: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...] = ()
    invariants: tuple[Invariant, ...] = ()
    parameters: tuple[str, ...] = ()

    def transition(self, source: str, target: str) -> Transition | None:
        for t in self.transitions:
            if t.source == source and t.target == target:
                return t
        return None


class _Checker:
    """Collects every reference problem in one workflow instead of stopping at the first."""

    def __init__(self, decl: WorkflowDecl, predicates: Mapping[str, PredicateSpec]) -> None:
        self.decl = decl
        self.states = set(decl.states)
        self.predicates = predicates
        self.problems: list[str] = []

    def domain(self, name: str, where: str) -> bool:
        if name not in DOMAINS:
            self.problems.append(f"{where}: {name!r} is not a known finite domain")
            return False
        # A parameter admits every domain of its sort: [tasks] covers the layers too.
        allowed = {DOMAIN_SORTS[p] for p in self.decl.parameters if p in DOMAIN_SORTS}
        if self.decl.parameters and DOMAIN_SORTS[name] not in allowed:
            self.problems.append(
                f"{where}: domain {name!r} is not among the workflow parameters "
                f"{list(self.decl.parameters)}"
            )
            return False
        return True

    def term_kind(self, term: Term, env: dict[str, ArgKind], where: str) -> ArgKind | None:
        if isinstance(term, Var):
            return env.get(term.name)
        if isinstance(term, DomainRef):
            self.domain(term.name, where)
            return ArgKind.DOMAIN
        if isinstance(term, StateRef):
            if term.name not in self.states:
                self.problems.append(f"{where}: state {term.name!r} is not declared")
            return ArgKind.STATE
        return None  # a literal fits any entity parameter

    def formula(self, formula: Formula, where: str, env: dict[str, ArgKind] | None = None) -> None:
        env = env or {}
        if isinstance(formula, (Forall, Exists)):
            known = self.domain(formula.domain, where)
            inner = dict(env)
            if known:
                inner[formula.var] = DOMAIN_SORTS[formula.domain]
            else:
                inner.pop(formula.var, None)
            self.formula(formula.body, where, inner)
            return
        if isinstance(formula, Predicate):
            self.predicate(formula, env, where)
            return
        if isinstance(formula, Membership):
            self.membership(formula, env, where)
            return
        for child in children(formula):
            self.formula(child, where, env)

    def predicate(self, formula: Predicate, env: dict[str, ArgKind], where: str) -> None:
        spec = self.predicates.get(formula.name)
        if spec is None:
            self.problems.append(f"{where}: predicate {formula.name!r} is not defined")
            for arg in formula.args:
                self.term_kind(arg, env, where)
            return
        if len(formula.args) != len(spec.params):
            self.problems.append(
                f"{where}: {formula.name} takes {len(spec.params)} argument(s), "
                f"got {len(formula.args)}"
            )
        for arg, expected in zip(formula.args, spec.params, strict=False):
            kind = self.term_kind(arg, env, where)
            if isinstance(arg, Literal):
                if expected is ArgKind.DOMAIN:
                    self.problems.append(
                        f"{where}: argument {str(arg)!r} of {formula.name} is a literal, "
                        "expected a domain name"
                    )
                continue
            if kind is not None and kind is not expected:
                self.problems.append(
                    f"{where}: argument {str(arg)!r} of {formula.name} is a {kind.value}, "
                    f"expected a {expected.value}"
                )

    def membership(self, formula: Membership, env: dict[str, ArgKind], where: str) -> None:
        if not self.domain(formula.domain, where):
            return
        expected = DOMAIN_SORTS[formula.domain]
        kind = self.term_kind(formula.element, env, where)
        if kind is not None and kind is not expected:
            self.problems.append(
                f"{where}: {str(formula.element)!r} is a {kind.value} and can never be in "
                f"{formula.domain}"
            )


def build_workflow(
    document: SpecDocument, predicates: Mapping[str, PredicateSpec] = PREDICATES
) -> WorkflowSpec:
    """Turn a parsed document into a checked :class:`WorkflowSpec`.

    Raises:
        LoadError: listing every problem found.
    """

    if len(document.workflows) != 1:
        raise LoadError(
            f"Rule source must declare exactly one workflow, found {len(document.workflows)}"
        )
    decl = document.workflows[0]
    checker = _Checker(decl, predicates)
    problems = checker.problems

    if not decl.states:
        problems.append(f"workflow {decl.name!r} declares no states")
    seen_states: set[str] = set()
    for state in decl.states:
        if state in seen_states:
            problems.append(f"state {state!r} is declared more than once")
        seen_states.add(state)

    for param in decl.parameters:
        if param not in DOMAINS:
            problems.append(f"workflow parameter {param!r} is not a known finite domain")

    seen_pairs: set[tuple[str, str]] = set()
    transitions: list[Transition] = []
    for t in decl.transitions:
        where = f"transition {t.source} -> {t.target}"
        for end in (t.source, t.target):
            if end not in checker.states:
                problems.append(f"{where}: state {end!r} is not declared")
        if (t.source, t.target) in seen_pairs:
            problems.append(f"{where}: declared more than once (ambiguous transition)")
        seen_pairs.add((t.source, t.target))
        for effect in t.effects:
            if effect not in EFFECTS:
                problems.append(f"{where}: effect {effect!r} is not defined")
        checker.formula(t.precondition, f"{where} (requires)")
        checker.formula(t.postcondition, f"{where} (ensures)")
        transitions.append(
            Transition(
                source=t.source,
                target=t.target,
                precondition=t.precondition,
                postcondition=t.postcondition,
                effects=t.effects,
                critical=t.critical,
            )
        )

    core = {f.name: f for f in _CORE_FORMULAS}
    seen_names: set[str] = set()
    invariants: list[Invariant] = []
    for f in document.formulas:
        where = f"{f.kind.value} {f.name!r}"
        if f.name in seen_names:
            problems.append(f"{where}: name is declared more than once")
        seen_names.add(f.name)
        if f.name in core and f.formula != core[f.name].formula:
            problems.append(
                f"{where}: name is reserved for the core rule `{core[f.name].formula}`"
            )
        checker.formula(f.formula, where)
        invariants.append(Invariant(name=f.name, formula=f.formula, kind=f.kind))

    # Core rules are built in, so they are not subject to the workflow parameters.
    for f in _CORE_FORMULAS:
        if f.name not in seen_names:
            invariants.append(Invariant(name=f.name, formula=f.formula, kind=f.kind))

    if problems:
        raise LoadError(f"Workflow {decl.name!r} failed to load", problems)

    return WorkflowSpec(
        name=decl.name,
        states=decl.states,
        transitions=tuple(transitions),
        invariants=tuple(invariants),
        parameters=decl.parameters,
    )


class RuleRegistry:
    """Loaded workflows by name. Immutable entries, atomically replaced on reload."""

    def __init__(self, predicates: Mapping[str, PredicateSpec] = PREDICATES) -> None:
        self._predicates = predicates
        self._lock = threading.Lock()
        self._entries: Mapping[str, WorkflowSpec] = MappingProxyType({})

    @property
    def predicates(self) -> Mapping[str, PredicateSpec]:
        return self._predicates

    def load(self, spec_text: str) -> WorkflowSpec:
        """Parse, check and publish one workflow.

        Raises:
            ParseError: the text does not match the grammar.
            LoadError: the workflow is inconsistent.

        Nothing is published when either is raised.
        """

        workflow = build_workflow(parse(spec_text), self._predicates)
        with self._lock:
            replaced = workflow.name in self._entries
            entries = dict(self._entries)
            entries[workflow.name] = workflow
            self._entries = MappingProxyType(entries)

        logger.info(
            "Workflow loaded",
            extra={
                "workflow": workflow.name,
                "states": len(workflow.states),
                "transitions": len(workflow.transitions),
                "invariants": len(workflow.invariants),
                "replaced": replaced,
            },
        )
        return workflow

    def load_file(self, path: Path) -> WorkflowSpec:
        return self.load(path.read_text(encoding="utf-8"))

    def get(self, workflow: str | WorkflowSpec) -> WorkflowSpec:
        if isinstance(workflow, WorkflowSpec):
            return workflow
        try:
            return self._entries[workflow]
        except KeyError:
            raise UnknownWorkflowError(workflow) from None

    def names(self) -> list[str]:
        return sorted(self._entries)

    def snapshot(self) -> Mapping[str, WorkflowSpec]:
        """The current read-only mapping; later reloads do not change it."""

        return self._entries

    def lookup_transition(
        self, workflow: str | WorkflowSpec, source: str, target: str
    ) -> Transition | None:
        return self.get(workflow).transition(source, target)
