"""Unit tests for the decision gate."""

from __future__ import annotations

import logging
import threading
from pathlib import Path

import pytest

from workflow_gate.config import GateSettings
from workflow_gate.engine import InvariantChecker
from workflow_gate.errors import EvaluationError, IllegalDecisionTransition, UnknownDecisionError
from workflow_gate.gate import (
    ApprovalState,
    AuditLog,
    CommitProposal,
    DecisionGate,
    DecisionKind,
    GateState,
    TaskMoveProposal,
    TransitionProposal,
    VerdictStatus,
)
from workflow_gate.logging import JsonFormatter
from workflow_gate.model import Layer, Project, SnapshotStore
from workflow_gate.rules import RuleRegistry


def _gate_at(registry: RuleRegistry, project: Project, settings: GateSettings) -> DecisionGate:
    return DecisionGate(registry, SnapshotStore(project), AuditLog(), settings)


def _released_ready(registry: RuleRegistry, settings: GateSettings) -> DecisionGate:
    return _gate_at(registry, Project(state="Review"), settings)


def test_routine_transition_is_applied(gate: DecisionGate) -> None:
    verdict = gate.propose("Delivery", TransitionProposal("Plan", "Development"))

    assert verdict.status is VerdictStatus.APPLIED
    assert verdict.exit_status == 0
    assert gate.store.current().project.state == "Development"
    assert gate.store.current().version == 1
    assert verdict.snapshot == gate.store.current()


def test_rejected_transition_leaves_snapshot_untouched(gate: DecisionGate) -> None:
    gate.propose("Delivery", TaskMoveProposal("T1", Layer.BACKLOG))
    before = gate.store.current()

    verdict = gate.propose("Delivery", TransitionProposal("Plan", "Development"))

    assert verdict.status is VerdictStatus.REJECTED
    assert verdict.exit_status == 4
    assert verdict.reasons == ("precondition unmet: `empty[backlog]`",)
    assert gate.store.current() is before


def test_undeclared_transition_is_rejected(gate: DecisionGate) -> None:
    verdict = gate.propose("Delivery", TransitionProposal("Plan", "Released"))
    assert verdict.status is VerdictStatus.REJECTED
    assert verdict.reasons == ("no such transition declared",)


def test_move_violating_invariant_is_rejected(gate: DecisionGate) -> None:
    verdict = gate.propose("Delivery", TaskMoveProposal("T1", Layer.BACKLOG, completed=True))

    assert verdict.status is VerdictStatus.REJECTED
    assert len(verdict.reasons) == 1
    assert "invariant 'backlog_open' violated" in verdict.reasons[0]
    assert gate.store.current().project.tasks == ()


def test_task_lifecycle_through_commit(gate: DecisionGate) -> None:
    assert gate.propose("Delivery", TaskMoveProposal("T1", Layer.BACKLOG)).status is VerdictStatus.APPLIED
    assert (
        gate.propose("Delivery", TaskMoveProposal("T1", Layer.CHANGELOG, completed=True)).status
        is VerdictStatus.APPLIED
    )

    verdict = gate.propose("Delivery", CommitProposal("c1", "finish T1"))

    assert verdict.status is VerdictStatus.APPLIED
    project = gate.store.current().project
    assert project.task("T1").layer is Layer.JOURNAL
    assert project.task("T1").committed is True
    assert project.commit("c1").revert_target is not None


def test_duplicate_commit_is_rejected(gate: DecisionGate) -> None:
    gate.propose("Delivery", CommitProposal("c1", "first"))
    verdict = gate.propose("Delivery", CommitProposal("c1", "again"))
    assert verdict.status is VerdictStatus.REJECTED
    assert verdict.reasons == ("commit 'c1' already exists",)


def test_revert_of_unknown_commit_is_rejected(gate: DecisionGate) -> None:
    verdict = gate.propose("Delivery", CommitProposal("c2", "undo", reverts="c1"))
    assert verdict.status is VerdictStatus.REJECTED


def test_critical_decision_waits_for_approval(gate: DecisionGate) -> None:
    verdict = gate.propose(
        "Delivery", TransitionProposal("Plan", "Development"), kind=DecisionKind.CRITICAL
    )

    assert verdict.status is VerdictStatus.PENDING_APPROVAL
    assert verdict.exit_status == 5
    assert gate.store.current().project.state == "Plan"
    assert [d.id for d in gate.pending()] == [verdict.decision_id]
    assert gate.decision(verdict.decision_id).approval is ApprovalState.PENDING

    approved = gate.approve(verdict.decision_id, approver="ana")

    assert approved.status is VerdictStatus.APPLIED
    assert gate.store.current().project.state == "Development"
    decision = gate.decision(verdict.decision_id)
    assert decision.approver == "ana"
    assert decision.approval is ApprovalState.APPROVED
    assert gate.pending() == []


def test_declared_critical_transition_needs_approval(
    registry: RuleRegistry, settings: GateSettings
) -> None:
    gate = _released_ready(registry, settings)

    verdict = gate.propose("Delivery", TransitionProposal("Review", "Released"))

    assert verdict.status is VerdictStatus.PENDING_APPROVAL
    assert gate.decision(verdict.decision_id).kind is DecisionKind.CRITICAL


def test_deny_rejects_and_records_approver(gate: DecisionGate) -> None:
    pending = gate.propose(
        "Delivery", TransitionProposal("Plan", "Development"), kind=DecisionKind.CRITICAL
    )

    verdict = gate.deny(pending.decision_id, approver="bo", reason="not today")

    assert verdict.status is VerdictStatus.REJECTED
    assert verdict.reasons == ("denied by bo: not today",)
    decision = gate.decision(pending.decision_id)
    assert decision.approval is ApprovalState.DENIED
    assert gate.store.current().project.state == "Plan"


def test_cancel_rejects_pending_decision(gate: DecisionGate) -> None:
    pending = gate.propose(
        "Delivery", TransitionProposal("Plan", "Development"), kind=DecisionKind.CRITICAL
    )
    verdict = gate.cancel(pending.decision_id)
    assert verdict.status is VerdictStatus.REJECTED
    assert verdict.reasons == ("cancelled",)


def test_terminal_decisions_cannot_be_approved(gate: DecisionGate) -> None:
    applied = gate.propose("Delivery", TransitionProposal("Plan", "Development"))
    with pytest.raises(IllegalDecisionTransition):
        gate.approve(applied.decision_id, approver="ana")


def test_unknown_decision(gate: DecisionGate) -> None:
    with pytest.raises(UnknownDecisionError):
        gate.verdict("missing")


def test_approval_revalidates_when_project_moved(gate: DecisionGate) -> None:
    pending = gate.propose(
        "Delivery", TransitionProposal("Plan", "Development"), kind=DecisionKind.CRITICAL
    )
    gate.propose("Delivery", TaskMoveProposal("T1", Layer.BACKLOG))

    verdict = gate.approve(pending.decision_id, approver="ana")

    assert verdict.status is VerdictStatus.REJECTED
    assert verdict.reasons == ("precondition unmet: `empty[backlog]`",)
    assert gate.store.current().project.state == "Plan"


def test_approval_applies_on_top_of_newer_snapshot(gate: DecisionGate) -> None:
    pending = gate.propose(
        "Delivery", CommitProposal("c1", "release notes"), kind=DecisionKind.CRITICAL
    )
    gate.propose("Delivery", CommitProposal("c0", "hotfix"))

    verdict = gate.approve(pending.decision_id, approver="ana")

    assert verdict.status is VerdictStatus.APPLIED
    assert [c.id for c in gate.store.current().project.commits] == ["c0", "c1"]


def test_wait_times_out_to_rejected(gate: DecisionGate) -> None:
    pending = gate.propose(
        "Delivery", TransitionProposal("Plan", "Development"), kind=DecisionKind.CRITICAL
    )

    verdict = gate.wait(pending.decision_id, timeout=0.01)

    assert verdict.status is VerdictStatus.REJECTED
    assert "approval timed out" in verdict.reasons[0]


def test_wait_uses_configured_timeout(gate: DecisionGate) -> None:
    pending = gate.propose(
        "Delivery", TransitionProposal("Plan", "Development"), kind=DecisionKind.CRITICAL
    )
    assert gate.wait(pending.decision_id).status is VerdictStatus.REJECTED


def test_wait_returns_when_approved_from_another_thread(gate: DecisionGate) -> None:
    pending = gate.propose(
        "Delivery", TransitionProposal("Plan", "Development"), kind=DecisionKind.CRITICAL
    )
    approver = threading.Timer(0.01, gate.approve, args=(pending.decision_id, "ana"))
    approver.start()
    try:
        verdict = gate.wait(pending.decision_id, timeout=5)
    finally:
        approver.join()

    assert verdict.status is VerdictStatus.APPLIED


def test_wait_on_terminal_decision_returns_immediately(gate: DecisionGate) -> None:
    applied = gate.propose("Delivery", TransitionProposal("Plan", "Development"))
    assert gate.wait(applied.decision_id, timeout=0).status is VerdictStatus.APPLIED


def test_evaluation_error_is_recorded_then_raised(settings: GateSettings) -> None:
    registry = RuleRegistry()
    registry.load(
        'workflow W { states: [A, B]; transitions: [A -> B requires completed["ghost"]]; }'
    )
    gate = _gate_at(registry, Project(state="A"), settings)

    with pytest.raises(EvaluationError):
        gate.propose("W", TransitionProposal("A", "B"))

    records = gate.audit.list()
    assert len(records) == 1
    assert records[0].verdict == GateState.REJECTED.value
    assert records[0].reasons[0].startswith("evaluation error:")
    assert gate.store.current().project.state == "A"


def test_every_terminal_outcome_is_audited(gate: DecisionGate) -> None:
    applied = gate.propose("Delivery", TransitionProposal("Plan", "Development"))
    rejected = gate.propose("Delivery", TransitionProposal("Plan", "Development"))
    pending = gate.propose(
        "Delivery", TaskMoveProposal("T1", Layer.BACKLOG), kind=DecisionKind.CRITICAL
    )

    assert [r.verdict for r in gate.audit.list()] == ["applied", "rejected"]
    gate.approve(pending.decision_id, approver="ana")

    record = gate.audit.for_decision(pending.decision_id)[0]
    assert record.approver == "ana"
    assert record.kind == "critical"
    assert record.result_digest == gate.store.current().digest
    assert gate.audit.for_decision(applied.decision_id)[0].base_digest is not None
    assert gate.audit.for_decision(rejected.decision_id)[0].result_digest is None


def test_applied_snapshots_never_violate_core_invariants(
    registry: RuleRegistry, gate: DecisionGate
) -> None:
    checker = InvariantChecker(registry)
    proposals = [
        TaskMoveProposal("T1", Layer.BACKLOG),
        TaskMoveProposal("T2", Layer.CHANGELOG),
        TaskMoveProposal("T1", Layer.BACKLOG, completed=True),
        TaskMoveProposal("T1", Layer.CHANGELOG, completed=True),
        TaskMoveProposal("T3", Layer.JOURNAL, completed=True),
        CommitProposal("c1", "ship T1"),
        TransitionProposal("Plan", "Development"),
        TransitionProposal("Development", "Review"),
    ]

    for proposal in proposals:
        verdict = gate.propose("Delivery", proposal)
        if verdict.status is VerdictStatus.APPLIED:
            assert checker.check_all("Delivery", gate.store.current()) == []

    project = gate.store.current().project
    assert project.state == "Review"
    assert [(t.id, t.layer) for t in project.tasks] == [("T1", Layer.JOURNAL)]


def test_critical_decisions_are_only_applied_with_approval(gate: DecisionGate) -> None:
    pending = gate.propose(
        "Delivery", TaskMoveProposal("T1", Layer.BACKLOG), kind=DecisionKind.CRITICAL
    )
    gate.deny(pending.decision_id, approver="bo")
    second = gate.propose(
        "Delivery", TaskMoveProposal("T1", Layer.BACKLOG), kind=DecisionKind.CRITICAL
    )
    gate.approve(second.decision_id, approver="ana")

    for record in gate.audit.list():
        if record.kind == "critical" and record.verdict == "applied":
            assert record.approver is not None
    assert gate.decision(pending.decision_id).state is GateState.REJECTED


@pytest.mark.usefixtures("restore_logging")
def test_from_settings_persists_state_and_audit(
    registry: RuleRegistry, settings: GateSettings, tmp_path: Path
) -> None:
    gate = DecisionGate.from_settings(registry, Project(state="Plan"), settings)
    gate.propose("Delivery", TransitionProposal("Plan", "Development"))

    restarted = DecisionGate.from_settings(registry, None, settings)

    assert restarted.store.current().project.state == "Development"
    assert [r.verdict for r in restarted.audit.list()] == ["applied"]
    assert (tmp_path / "audit.json").exists()


def test_concurrent_proposals_serialise(gate: DecisionGate) -> None:
    results = []

    def move(task_id: str) -> None:
        results.append(gate.propose("Delivery", TaskMoveProposal(task_id, Layer.BACKLOG)))

    threads = [threading.Thread(target=move, args=(f"T{i}",)) for i in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert all(v.status is VerdictStatus.APPLIED for v in results)
    assert gate.store.current().version == 8
    assert len(gate.store.current().project.tasks) == 8


def test_layer_rules_hold_without_being_declared(settings: GateSettings) -> None:
    registry = RuleRegistry()
    registry.load("workflow W { states: [A, B]; transitions: [A -> B]; }")
    gate = _gate_at(registry, Project(state="A"), settings)

    uncompleted = gate.propose("W", TaskMoveProposal("T1", Layer.CHANGELOG, completed=False))
    uncommitted = gate.propose("W", TaskMoveProposal("T2", Layer.JOURNAL, committed=False))

    assert uncompleted.status is VerdictStatus.REJECTED
    assert uncompleted.reasons[0].startswith("invariant 'changelog_completed' violated")
    assert uncommitted.status is VerdictStatus.REJECTED
    assert uncommitted.reasons[0].startswith("invariant 'journal_entries_committed' violated")
    assert gate.store.current().project.tasks == ()


def test_unsupported_proposal_is_refused_before_validation(gate: DecisionGate) -> None:
    with pytest.raises(TypeError):
        gate.propose("Delivery", object())  # type: ignore[arg-type]

    assert gate.pending() == []
    assert gate.audit.list() == []
    assert gate.store.current().version == 0


@pytest.mark.usefixtures("restore_logging")
def test_from_settings_applies_log_level(registry: RuleRegistry, settings: GateSettings) -> None:
    DecisionGate.from_settings(
        registry, Project(state="Plan"), settings.model_copy(update={"log_level": "DEBUG"})
    )

    root = logging.getLogger()
    assert root.level == logging.DEBUG
    assert any(isinstance(h.formatter, JsonFormatter) for h in root.handlers)
