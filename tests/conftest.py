"""Test configuration and fixtures."""

import logging
from collections.abc import Iterator
from pathlib import Path

import pytest

from workflow_gate.config import GateSettings
from workflow_gate.gate import AuditLog, DecisionGate
from workflow_gate.logging import JsonFormatter
from workflow_gate.model import Commit, Layer, Project, Snapshot, SnapshotStore, Task
from workflow_gate.rules import CORE_INVARIANTS, RuleRegistry, WorkflowSpec

DELIVERY_SOURCE = """
workflow Delivery {
    states: [Plan, Development, Review, Released];
    transitions: [
        Plan -> Development requires empty[backlog],
        Development -> Review
            requires forall t in tasks: completed[t]
            effect archive_completed
            ensures empty[backlog],
        critical Review -> Released
            requires forall c in commits: validated[c],
        Review -> Development
    ];
}
""" + CORE_INVARIANTS


@pytest.fixture
def delivery_source() -> str:
    """Provide the rule source of a small delivery workflow."""
    return DELIVERY_SOURCE


@pytest.fixture
def registry() -> RuleRegistry:
    """Provide a registry with the delivery workflow loaded."""
    reg = RuleRegistry()
    reg.load(DELIVERY_SOURCE)
    return reg


@pytest.fixture
def delivery(registry: RuleRegistry) -> WorkflowSpec:
    return registry.get("Delivery")


@pytest.fixture
def empty_project() -> Project:
    return Project(state="Plan")


@pytest.fixture
def busy_project() -> Project:
    """Provide a project with one task in every layer and one commit."""
    return Project(
        state="Development",
        tasks=(
            Task(id="T1", layer=Layer.BACKLOG),
            Task(id="T2", layer=Layer.CHANGELOG, completed=True),
            Task(id="T3", layer=Layer.JOURNAL, completed=True, committed=True),
        ),
        commits=(Commit(id="c1", message="T3 done", validated=True, revert_target="0" * 64),),
    )


@pytest.fixture
def settings(tmp_path: Path) -> GateSettings:
    """Provide settings that persist to a temporary directory."""
    return GateSettings(
        _env_file=None,
        audit_log_path=tmp_path / "audit.json",
        snapshot_path=tmp_path / "snapshot.json",
        approval_timeout_seconds=0.2,
    )


@pytest.fixture
def gate(registry: RuleRegistry, empty_project: Project, settings: GateSettings) -> DecisionGate:
    """Provide a gate over an empty project in the Plan state."""
    store = SnapshotStore(Snapshot(project=empty_project))
    return DecisionGate(registry, store, AuditLog(), settings)


@pytest.fixture
def restore_logging() -> Iterator[None]:
    """Drop JSON handlers installed by the test and restore the root level."""
    root = logging.getLogger()
    level = root.level
    yield
    for handler in list(root.handlers):
        if isinstance(handler.formatter, JsonFormatter):
            root.removeHandler(handler)
    root.setLevel(level)
