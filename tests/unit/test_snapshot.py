"""Unit tests for the snapshot model and the snapshot store."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from workflow_gate.model import (
    Commit,
    Layer,
    Project,
    Snapshot,
    SnapshotStore,
    StaleSnapshotError,
    Task,
)


def test_project_rejects_duplicate_ids() -> None:
    with pytest.raises(ValueError):
        Project(state="A", tasks=(Task("T1"), Task("T1", Layer.JOURNAL)))
    with pytest.raises(ValueError):
        Project(state="A", commits=(Commit("c1"), Commit("c1")))


def test_with_task_replaces_so_a_task_stays_in_one_layer(busy_project: Project) -> None:
    moved = busy_project.with_task(Task("T1", Layer.CHANGELOG, completed=True))

    assert [t.id for t in moved.tasks] == ["T1", "T2", "T3"]
    assert moved.task("T1").layer is Layer.CHANGELOG
    assert [t.id for t in moved.tasks_in(Layer.BACKLOG)] == []
    assert busy_project.task("T1").layer is Layer.BACKLOG


def test_with_task_appends_new_task(busy_project: Project) -> None:
    grown = busy_project.with_task(Task("T4"))
    assert [t.id for t in grown.tasks] == ["T1", "T2", "T3", "T4"]


def test_evolve_bumps_version() -> None:
    first = Snapshot(project=Project(state="A"))
    second = first.evolve(first.project.with_state("B"))

    assert second.version == first.version + 1
    assert second.project.state == "B"
    assert first.project.state == "A"


def test_digest_depends_on_project_only(busy_project: Project) -> None:
    a = Snapshot(project=busy_project, version=1)
    b = Snapshot(project=busy_project, version=7)
    c = Snapshot(project=busy_project.with_state("Review"), version=1)

    assert a.digest == b.digest
    assert a.digest != c.digest
    assert len(a.digest) == 64


def test_snapshot_json_roundtrip(busy_project: Project) -> None:
    original = Snapshot(project=busy_project, version=3)
    restored = Snapshot.from_json(json.loads(json.dumps(original.to_json())))
    assert restored == original


def test_store_requires_a_starting_point() -> None:
    with pytest.raises(ValueError):
        SnapshotStore()


def test_store_accepts_a_bare_project(empty_project: Project) -> None:
    store = SnapshotStore(empty_project)
    assert store.current().project == empty_project
    assert store.current().version == 0


def test_swap_rejects_stale_version(empty_project: Project) -> None:
    store = SnapshotStore(empty_project)
    base = store.current()
    store.swap(base.evolve(base.project.with_state("B")), expected_version=0)

    with pytest.raises(StaleSnapshotError):
        store.swap(base.evolve(base.project.with_state("C")), expected_version=0)
    assert store.current().project.state == "B"


def test_store_persists_and_reloads(tmp_path: Path, empty_project: Project) -> None:
    path = tmp_path / "state" / "snapshot.json"
    store = SnapshotStore(empty_project, path=path)
    base = store.current()
    store.swap(base.evolve(base.project.with_task(Task("T1"))), expected_version=0)

    reloaded = SnapshotStore(Project(state="ignored"), path=path)

    assert reloaded.current().version == 1
    assert reloaded.current().project.task("T1") == Task("T1")
    assert not path.with_suffix(".json.tmp").exists()
