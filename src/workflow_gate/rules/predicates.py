"""The closed tables of domains and predicates formulas may refer to.

Every name a formula can use is registered here. The registry checks each
reference against these tables when a workflow is loaded; the evaluator
looks names up again at evaluation time and treats a miss as a defect.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import Enum

from workflow_gate.errors import EvaluationError
from workflow_gate.model.snapshot import Commit, Layer, Snapshot, Task

Value = Task | Commit | str | tuple[object, ...]


class ArgKind(str, Enum):
    TASK = "task"
    COMMIT = "commit"
    STATE = "state"
    DOMAIN = "domain"


# -- domains ---------------------------------------------------------------


def _by_id(items: tuple[Task, ...] | tuple[Commit, ...]) -> tuple[object, ...]:
    return tuple(sorted(items, key=lambda item: item.id))


def _layer(layer: Layer) -> Callable[[Snapshot, tuple[str, ...]], tuple[object, ...]]:
    def resolve(snapshot: Snapshot, _states: tuple[str, ...]) -> tuple[object, ...]:
        return _by_id(snapshot.project.tasks_in(layer))

    return resolve


DomainResolver = Callable[[Snapshot, tuple[str, ...]], tuple[object, ...]]

# Each resolver returns the members in a fixed order so that evaluation (and
# the witness it reports) is deterministic.
DOMAINS: dict[str, DomainResolver] = {
    "tasks": lambda snapshot, _states: _by_id(snapshot.project.tasks),
    "backlog": _layer(Layer.BACKLOG),
    "changelog": _layer(Layer.CHANGELOG),
    "journal": _layer(Layer.JOURNAL),
    "commits": lambda snapshot, _states: _by_id(snapshot.project.commits),
    "states": lambda _snapshot, states: tuple(states),
}

DOMAIN_SORTS: dict[str, ArgKind] = {
    "tasks": ArgKind.TASK,
    "backlog": ArgKind.TASK,
    "changelog": ArgKind.TASK,
    "journal": ArgKind.TASK,
    "commits": ArgKind.COMMIT,
    "states": ArgKind.STATE,
}


# -- argument coercion -----------------------------------------------------


def _task(snapshot: Snapshot, value: Value, predicate: str) -> Task:
    if isinstance(value, Task):
        return value
    if isinstance(value, str):
        task = snapshot.project.task(value)
        if task is not None:
            return task
        raise EvaluationError(f"{predicate}: no task with id {value!r}", predicate=predicate)
    raise EvaluationError(f"{predicate}: expected a task, got {value!r}", predicate=predicate)


def _commit(snapshot: Snapshot, value: Value, predicate: str) -> Commit:
    if isinstance(value, Commit):
        return value
    if isinstance(value, str):
        commit = snapshot.project.commit(value)
        if commit is not None:
            return commit
        raise EvaluationError(f"{predicate}: no commit with id {value!r}", predicate=predicate)
    raise EvaluationError(f"{predicate}: expected a commit, got {value!r}", predicate=predicate)


def _state(value: Value, predicate: str) -> str:
    if isinstance(value, str):
        return value
    raise EvaluationError(f"{predicate}: expected a state, got {value!r}", predicate=predicate)


def _domain(value: Value, predicate: str) -> tuple[object, ...]:
    if isinstance(value, tuple):
        return value
    raise EvaluationError(f"{predicate}: expected a domain, got {value!r}", predicate=predicate)


# -- predicates ------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class PredicateSpec:
    name: str
    params: tuple[ArgKind, ...]
    fn: Callable[[Snapshot, tuple[Value, ...]], bool]
    doc: str = ""

    def __call__(self, snapshot: Snapshot, args: tuple[Value, ...]) -> bool:
        if len(args) != len(self.params):
            raise EvaluationError(
                f"{self.name} takes {len(self.params)} argument(s), got {len(args)}",
                predicate=self.name,
            )
        return self.fn(snapshot, args)


def _latest_mentions(snapshot: Snapshot, args: tuple[Value, ...]) -> bool:
    # With no commit there is nothing to mention the task: false, not an error.
    if not snapshot.project.commits:
        return False
    task = _task(snapshot, args[0], "mentioned")
    return task.id in snapshot.project.commits[-1].message


_PREDICATE_LIST: tuple[PredicateSpec, ...] = (
    PredicateSpec(
        "completed",
        (ArgKind.TASK,),
        lambda s, a: _task(s, a[0], "completed").completed,
        "The task's work is finished.",
    ),
    PredicateSpec(
        "committed",
        (ArgKind.TASK,),
        lambda s, a: _task(s, a[0], "committed").committed,
        "The task's changes are committed.",
    ),
    PredicateSpec(
        "validated",
        (ArgKind.COMMIT,),
        lambda s, a: _commit(s, a[0], "validated").validated,
        "The commit passed the gate.",
    ),
    PredicateSpec(
        "revertible",
        (ArgKind.COMMIT,),
        lambda s, a: _commit(s, a[0], "revertible").revert_target is not None,
        "The commit records the snapshot digest it can be reverted to.",
    ),
    PredicateSpec(
        "reverts",
        (ArgKind.COMMIT, ArgKind.COMMIT),
        lambda s, a: _commit(s, a[0], "reverts").reverts == _commit(s, a[1], "reverts").id,
        "The first commit reverts the second.",
    ),
    PredicateSpec(
        "empty",
        (ArgKind.DOMAIN,),
        lambda _s, a: len(_domain(a[0], "empty")) == 0,
        "The domain has no members.",
    ),
    PredicateSpec(
        "nonempty",
        (ArgKind.DOMAIN,),
        lambda _s, a: len(_domain(a[0], "nonempty")) > 0,
        "The domain has at least one member.",
    ),
    PredicateSpec(
        "in_state",
        (ArgKind.STATE,),
        lambda s, a: s.project.state == _state(a[0], "in_state"),
        "The project's current workflow state.",
    ),
    PredicateSpec(
        "mentions",
        (ArgKind.COMMIT, ArgKind.TASK),
        lambda s, a: _task(s, a[1], "mentions").id in _commit(s, a[0], "mentions").message,
        "The commit message names the task id.",
    ),
    PredicateSpec(
        "mentioned",
        (ArgKind.TASK,),
        _latest_mentions,
        "The most recent commit message names the task id; false when there are no commits.",
    ),
)

PREDICATES: Mapping[str, PredicateSpec] = {p.name: p for p in _PREDICATE_LIST}
