"""Workflow Gate.

A rule engine that keeps a project's task workflow honest:
- workflow definitions written in a small logic language
- invariants and proofs checked against immutable project snapshots
- a decision gate that applies, parks for approval, or rejects each change
"""

__version__ = "0.1.0"

from workflow_gate.config import GateSettings
from workflow_gate.gate import DecisionGate, Verdict
from workflow_gate.rules import RuleRegistry

__all__ = ["__version__", "DecisionGate", "GateSettings", "RuleRegistry", "Verdict"]
