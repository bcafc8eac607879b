"""Decision lifecycle and the proposals a decision can carry.

The lifecycle is an explicit state machine. ``advance`` is the only way a
:class:`Decision` changes, and it refuses every move not listed in
``ALLOWED_TRANSITIONS``. It also refuses to apply a critical decision whose
approval is not recorded, so no caller can skip the human step.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from workflow_gate.errors import IllegalDecisionTransition
from workflow_gate.model.snapshot import Commit, Layer, Snapshot, Task
from workflow_gate.rules.registry import WorkflowSpec


class GateState(str, Enum):
    PROPOSED = "proposed"
    VALIDATING = "validating"
    PENDING_APPROVAL = "pending_approval"
    APPLIED = "applied"
    REJECTED = "rejected"


ALLOWED_TRANSITIONS: dict[GateState, frozenset[GateState]] = {
    GateState.PROPOSED: frozenset({GateState.VALIDATING}),
    GateState.VALIDATING: frozenset(
        {GateState.REJECTED, GateState.PENDING_APPROVAL, GateState.APPLIED}
    ),
    GateState.PENDING_APPROVAL: frozenset({GateState.APPLIED, GateState.REJECTED}),
    GateState.APPLIED: frozenset(),
    GateState.REJECTED: frozenset(),
}

TERMINAL_STATES: frozenset[GateState] = frozenset({GateState.APPLIED, GateState.REJECTED})


class DecisionKind(str, Enum):
    CRITICAL = "critical"
    ROUTINE = "routine"


class ApprovalState(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"


# -- proposals -------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class TransitionProposal:
    """Move the workflow from ``source`` to ``target``."""

    source: str
    target: str

    def describe(self) -> str:
        return f"transition {self.source} -> {self.target}"


@dataclass(frozen=True, slots=True)
class TaskMoveProposal:
    """Put a task into ``layer``, adding it if the project does not have it yet.

    ``completed`` / ``committed`` left as None keep the task's current flags.
    """

    task_id: str
    layer: Layer
    completed: bool | None = None
    committed: bool | None = None

    def describe(self) -> str:
        return f"move task {self.task_id} to {self.layer.value}"

    def apply(self, snapshot: Snapshot) -> Snapshot:
        current = snapshot.project.task(self.task_id) or Task(id=self.task_id)
        moved = replace(
            current,
            layer=self.layer,
            completed=current.completed if self.completed is None else self.completed,
            committed=current.committed if self.committed is None else self.committed,
        )
        return snapshot.evolve(snapshot.project.with_task(moved))


@dataclass(frozen=True, slots=True)
class CommitProposal:
    """Record a validated commit.

    Changelog tasks whose id appears in the message become committed and
    move to the Journal. The commit's revert target is the digest of the
    snapshot it is applied on.
    """

    commit_id: str
    message: str
    reverts: str | None = None

    def describe(self) -> str:
        return f"commit {self.commit_id}"

    def apply(self, snapshot: Snapshot) -> Snapshot:
        project = snapshot.project
        for task in project.tasks_in(Layer.CHANGELOG):
            if task.id in self.message:
                project = project.with_task(replace(task, layer=Layer.JOURNAL, committed=True))
        commit = Commit(
            id=self.commit_id,
            message=self.message,
            validated=True,
            reverts=self.reverts,
            revert_target=snapshot.digest,
        )
        return snapshot.evolve(project.with_commit(commit))


Proposal = TransitionProposal | TaskMoveProposal | CommitProposal


# -- decisions -------------------------------------------------------------


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


@dataclass(frozen=True, slots=True)
class Decision:
    id: str
    workflow: WorkflowSpec = field(repr=False)
    proposal: Proposal
    kind: DecisionKind = DecisionKind.ROUTINE
    state: GateState = GateState.PROPOSED
    approval: ApprovalState | None = None
    approver: str | None = None
    reasons: tuple[str, ...] = ()
    base_version: int | None = None
    base_digest: str | None = None
    result: Snapshot | None = field(default=None, repr=False)
    created_at: datetime = field(default_factory=_utc_now)
    updated_at: datetime = field(default_factory=_utc_now)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES


def advance(decision: Decision, to: GateState, **changes: Any) -> Decision:
    """Return ``decision`` moved to ``to`` with ``changes`` applied.

    Raises:
        IllegalDecisionTransition: the move is not in the lifecycle, or it
            would apply a critical decision without a recorded approval.
    """

    allowed = ALLOWED_TRANSITIONS.get(decision.state, frozenset())
    if to not in allowed:
        raise IllegalDecisionTransition(
            f"Illegal decision transition: {decision.state.value} -> {to.value} ({decision.id})"
        )
    moved = replace(decision, state=to, updated_at=_utc_now(), **changes)
    if (
        to is GateState.APPLIED
        and moved.kind is DecisionKind.CRITICAL
        and moved.approval is not ApprovalState.APPROVED
    ):
        raise IllegalDecisionTransition(
            f"Critical decision {decision.id} cannot be applied without an approval"
        )
    return moved


# -- verdicts --------------------------------------------------------------


class VerdictStatus(str, Enum):
    APPLIED = "applied"
    REJECTED = "rejected"
    PENDING_APPROVAL = "pending_approval"


# Exit codes for hooks and CI: success, failure with reasons, blocked.
EXIT_STATUS: dict[VerdictStatus, int] = {
    VerdictStatus.APPLIED: 0,
    VerdictStatus.REJECTED: 4,
    VerdictStatus.PENDING_APPROVAL: 5,
}


@dataclass(frozen=True, slots=True)
class Verdict:
    status: VerdictStatus
    decision_id: str
    reasons: tuple[str, ...] = ()
    snapshot: Snapshot | None = field(default=None, repr=False)

    @property
    def exit_status(self) -> int:
        return EXIT_STATUS[self.status]

    @staticmethod
    def for_decision(decision: Decision) -> Verdict:
        if decision.state is GateState.APPLIED:
            return Verdict(VerdictStatus.APPLIED, decision.id, decision.reasons, decision.result)
        if decision.state is GateState.REJECTED:
            return Verdict(VerdictStatus.REJECTED, decision.id, decision.reasons)
        return Verdict(VerdictStatus.PENDING_APPROVAL, decision.id, decision.reasons)
