"""The decision gate and the decision lifecycle it drives."""

from .audit import AuditLog, AuditRecord
from .decision import (
    ALLOWED_TRANSITIONS,
    EXIT_STATUS,
    ApprovalState,
    CommitProposal,
    Decision,
    DecisionKind,
    GateState,
    Proposal,
    TaskMoveProposal,
    TransitionProposal,
    Verdict,
    VerdictStatus,
    advance,
)
from .decision_gate import DecisionGate

__all__ = [
    "ALLOWED_TRANSITIONS",
    "EXIT_STATUS",
    "ApprovalState",
    "AuditLog",
    "AuditRecord",
    "CommitProposal",
    "Decision",
    "DecisionGate",
    "DecisionKind",
    "GateState",
    "Proposal",
    "TaskMoveProposal",
    "TransitionProposal",
    "Verdict",
    "VerdictStatus",
    "advance",
]
