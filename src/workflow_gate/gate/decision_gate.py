"""Decision gate: the only path by which a project's snapshot changes.

A proposal is validated while holding the project's writer lock, against the
snapshot that is current at that moment and the workflow definition read when
the proposal arrived. Routine decisions that pass are applied immediately.
Critical ones wait in PendingApproval, without holding the lock, until
``approve``, ``deny``, ``cancel`` or a timeout resolves them.
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, replace
from typing import Any

from workflow_gate.config import GateSettings
from workflow_gate.engine.invariants import InvariantChecker
from workflow_gate.engine.validator import Reject, StateValidator
from workflow_gate.errors import EvaluationError, IllegalDecisionTransition, UnknownDecisionError
from workflow_gate.logging import configure_logging
from workflow_gate.model.snapshot import Project, Snapshot
from workflow_gate.model.store import SnapshotStore, StaleSnapshotError
from workflow_gate.rules.registry import RuleRegistry, WorkflowSpec

from .audit import AuditLog
from .decision import (
    ApprovalState,
    CommitProposal,
    Decision,
    DecisionKind,
    GateState,
    Proposal,
    TaskMoveProposal,
    TransitionProposal,
    Verdict,
    advance,
)

logger = logging.getLogger(__name__)

_PROPOSAL_TYPES = (TransitionProposal, TaskMoveProposal, CommitProposal)


@dataclass(frozen=True, slots=True)
class _Validation:
    result: Snapshot | None
    reasons: tuple[str, ...] = ()
    critical: bool = False

    @property
    def ok(self) -> bool:
        return self.result is not None and not self.reasons


class DecisionGate:
    def __init__(
        self,
        registry: RuleRegistry,
        store: SnapshotStore,
        audit: AuditLog | None = None,
        settings: GateSettings | None = None,
    ) -> None:
        self._registry = registry
        self._store = store
        self._audit = audit if audit is not None else AuditLog()
        self._settings = settings if settings is not None else GateSettings()
        self._validator = StateValidator(registry)
        self._checker = InvariantChecker(registry)
        self._decisions: dict[str, Decision] = {}
        # Guards _decisions; waiters block on it until their decision is terminal.
        self._cond = threading.Condition(threading.RLock())

    @classmethod
    def from_settings(
        cls,
        registry: RuleRegistry,
        initial: Snapshot | Project | None,
        settings: GateSettings,
    ) -> DecisionGate:
        """Build a gate whose store, audit log and logging follow ``settings``."""

        configure_logging(settings.log_level)
        store = SnapshotStore(initial, path=settings.snapshot_path)
        return cls(registry, store, AuditLog(settings.audit_log_path), settings)

    @property
    def audit(self) -> AuditLog:
        return self._audit

    @property
    def store(self) -> SnapshotStore:
        return self._store

    # -- queries -----------------------------------------------------------

    def decision(self, decision_id: str) -> Decision:
        with self._cond:
            try:
                return self._decisions[decision_id]
            except KeyError:
                raise UnknownDecisionError(decision_id) from None

    def verdict(self, decision_id: str) -> Verdict:
        return Verdict.for_decision(self.decision(decision_id))

    def pending(self) -> list[Decision]:
        with self._cond:
            return [d for d in self._decisions.values() if d.state is GateState.PENDING_APPROVAL]

    # -- proposals ---------------------------------------------------------

    def propose(
        self,
        workflow: str | WorkflowSpec,
        proposal: Proposal,
        kind: DecisionKind = DecisionKind.ROUTINE,
    ) -> Verdict:
        """Validate ``proposal`` and apply it, park it for approval, or reject it.

        Raises:
            TypeError: ``proposal`` is not one of the known proposal kinds.
            UnknownWorkflowError: ``workflow`` is not loaded.
            EvaluationError: a formula references something undefined. The
                decision is recorded as rejected before the error propagates.
        """

        if not isinstance(proposal, _PROPOSAL_TYPES):
            raise TypeError(f"Unsupported proposal: {proposal!r}")
        spec = self._registry.get(workflow)
        decision = Decision(id=uuid.uuid4().hex, workflow=spec, proposal=proposal, kind=kind)
        self._put(decision)

        with self._store.writer_lock:
            snapshot = self._store.current()
            decision = self._move(
                decision,
                GateState.VALIDATING,
                base_version=snapshot.version,
                base_digest=snapshot.digest,
            )
            logger.info(
                "Decision validating",
                extra={
                    "decision_id": decision.id,
                    "workflow": spec.name,
                    "action": proposal.describe(),
                    "version": snapshot.version,
                },
            )

            validation = self._validate_or_reject(decision, snapshot)
            if not validation.ok:
                return self._reject(decision, validation.reasons)

            if decision.kind is DecisionKind.CRITICAL or validation.critical:
                decision = self._move(
                    decision,
                    GateState.PENDING_APPROVAL,
                    kind=DecisionKind.CRITICAL,
                    approval=ApprovalState.PENDING,
                    result=validation.result,
                )
                logger.info(
                    "Decision awaiting approval",
                    extra={"decision_id": decision.id, "action": proposal.describe()},
                )
                return Verdict.for_decision(decision)

            return self._apply(decision, validation.result, snapshot.version)

    # -- approval channel --------------------------------------------------

    def approve(self, decision_id: str, approver: str) -> Verdict:
        """Record an approval and apply the decision.

        When the project has changed since the decision was validated, the
        proposal is validated again against the current snapshot first.
        """

        with self._store.writer_lock, self._cond:
            decision = self._pending(decision_id, "approve")
            decision = self._put(
                _with(decision, approval=ApprovalState.APPROVED, approver=approver)
            )
            logger.info(
                "Decision approved",
                extra={"decision_id": decision.id, "approver": approver},
            )

            current = self._store.current()
            result = decision.result
            if current.version != decision.base_version:
                validation = self._validate_or_reject(decision, current)
                if not validation.ok:
                    return self._reject(decision, validation.reasons)
                result = validation.result

            assert result is not None
            return self._apply(decision, result, current.version)

    def deny(self, decision_id: str, approver: str, reason: str = "denied") -> Verdict:
        with self._cond:
            decision = self._pending(decision_id, "deny")
            logger.info(
                "Decision denied",
                extra={"decision_id": decision.id, "approver": approver},
            )
            return self._reject(
                decision,
                (f"denied by {approver}: {reason}",),
                approval=ApprovalState.DENIED,
                approver=approver,
            )

    def cancel(self, decision_id: str, reason: str = "cancelled") -> Verdict:
        with self._cond:
            decision = self._pending(decision_id, "cancel")
            return self._reject(decision, (reason,))

    def wait(self, decision_id: str, timeout: float | None = None) -> Verdict:
        """Block until the decision is applied or rejected.

        ``timeout`` defaults to ``GateSettings.approval_timeout_seconds``. A
        decision still pending when it expires is rejected.
        """

        if timeout is None:
            timeout = self._settings.approval_timeout_seconds
        with self._cond:
            self.decision(decision_id)
            done = self._cond.wait_for(
                lambda: self._decisions[decision_id].is_terminal, timeout=timeout
            )
            decision = self._decisions[decision_id]
            if not done and decision.state is GateState.PENDING_APPROVAL:
                logger.warning(
                    "Approval timed out",
                    extra={"decision_id": decision_id, "timeout_seconds": timeout},
                )
                return self._reject(decision, (f"approval timed out after {timeout}s",))
            return Verdict.for_decision(decision)

    # -- internals ---------------------------------------------------------

    def _validate_or_reject(self, decision: Decision, snapshot: Snapshot) -> _Validation:
        try:
            return self._validate(decision.workflow, decision.proposal, snapshot)
        except EvaluationError as e:
            self._reject(decision, (f"evaluation error: {e}",))
            raise

    def _validate(self, spec: WorkflowSpec, proposal: Proposal, snapshot: Snapshot) -> _Validation:
        critical = False
        if isinstance(proposal, TransitionProposal):
            outcome = self._validator.check_transition(
                spec, proposal.source, proposal.target, snapshot
            )
            if isinstance(outcome, Reject):
                return _Validation(None, tuple(outcome.reasons()))
            result = outcome.snapshot
            transition = spec.transition(proposal.source, proposal.target)
            critical = transition is not None and transition.critical
        elif isinstance(proposal, TaskMoveProposal):
            result = proposal.apply(snapshot)
        else:
            project = snapshot.project
            if project.commit(proposal.commit_id) is not None:
                return _Validation(None, (f"commit {proposal.commit_id!r} already exists",))
            if proposal.reverts is not None and project.commit(proposal.reverts) is None:
                return _Validation(
                    None, (f"commit {proposal.reverts!r} to revert does not exist",)
                )
            result = proposal.apply(snapshot)

        violations = self._checker.check_all(spec, result)
        if violations:
            return _Validation(None, tuple(v.describe() for v in violations))
        return _Validation(result, critical=critical)

    def _apply(self, decision: Decision, result: Snapshot, expected_version: int) -> Verdict:
        try:
            self._store.swap(result, expected_version=expected_version)
        except StaleSnapshotError as e:
            return self._reject(decision, (f"project changed while applying: {e}",))

        decision = self._finish(decision, GateState.APPLIED, result=result)
        logger.info(
            "Decision applied",
            extra={
                "decision_id": decision.id,
                "action": decision.proposal.describe(),
                "version": result.version,
                "approver": decision.approver,
            },
        )
        return Verdict.for_decision(decision)

    def _reject(self, decision: Decision, reasons: tuple[str, ...], **changes: Any) -> Verdict:
        decision = self._finish(decision, GateState.REJECTED, reasons=reasons, **changes)
        logger.info(
            "Decision rejected",
            extra={
                "decision_id": decision.id,
                "action": decision.proposal.describe(),
                "reasons": list(reasons),
            },
        )
        return Verdict.for_decision(decision)

    def _finish(self, decision: Decision, to: GateState, **changes: Any) -> Decision:
        with self._cond:
            decision = self._move(decision, to, **changes)
            self._audit.record(
                decision_id=decision.id,
                workflow=decision.workflow.name,
                action=decision.proposal.describe(),
                kind=decision.kind.value,
                verdict=decision.state.value,
                approver=decision.approver,
                reasons=list(decision.reasons),
                base_digest=decision.base_digest,
                result_digest=decision.result.digest
                if to is GateState.APPLIED and decision.result is not None
                else None,
            )
            return decision

    def _move(self, decision: Decision, to: GateState, **changes: Any) -> Decision:
        return self._put(advance(decision, to, **changes))

    def _put(self, decision: Decision) -> Decision:
        with self._cond:
            self._decisions[decision.id] = decision
            self._cond.notify_all()
            return decision

    def _pending(self, decision_id: str, action: str) -> Decision:
        decision = self.decision(decision_id)
        if decision.state is not GateState.PENDING_APPROVAL:
            raise IllegalDecisionTransition(
                f"Cannot {action} decision {decision_id} in state {decision.state.value}"
            )
        return decision


def _with(decision: Decision, **changes: Any) -> Decision:
    """Update fields without changing lifecycle state."""

    return replace(decision, **changes)
