"""Project state model: tasks, commits, and immutable snapshots."""

from .snapshot import Commit, Layer, Project, Snapshot, Task
from .store import SnapshotStore, StaleSnapshotError

__all__ = [
    "Commit",
    "Layer",
    "Project",
    "Snapshot",
    "SnapshotStore",
    "StaleSnapshotError",
    "Task",
]
