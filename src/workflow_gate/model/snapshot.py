"""Immutable view of project state.

Nothing here is ever mutated in place. Every change produces a new
:class:`Project` and a new :class:`Snapshot` with a bumped version, so a
snapshot handed to the evaluator stays valid for the whole request.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum


class Layer(str, Enum):
    BACKLOG = "backlog"
    CHANGELOG = "changelog"
    JOURNAL = "journal"


@dataclass(frozen=True, slots=True)
class Task:
    """A unit of work. The single ``layer`` field means a task is always in exactly one layer."""

    id: str
    layer: Layer = Layer.BACKLOG
    completed: bool = False
    committed: bool = False

    def __str__(self) -> str:
        return self.id

    def to_json(self) -> dict[str, object]:
        return {
            "id": self.id,
            "layer": self.layer.value,
            "completed": self.completed,
            "committed": self.committed,
        }

    @staticmethod
    def from_json(obj: dict[str, object]) -> Task:
        return Task(
            id=str(obj["id"]),
            layer=Layer(str(obj.get("layer", Layer.BACKLOG.value))),
            completed=bool(obj.get("completed", False)),
            committed=bool(obj.get("committed", False)),
        )


@dataclass(frozen=True, slots=True)
class Commit:
    """A repository commit known to the project.

    ``revert_target`` is the digest of the snapshot the commit was applied on;
    ``reverts`` names the commit this one undoes, if any.
    """

    id: str
    message: str = ""
    validated: bool = False
    reverts: str | None = None
    revert_target: str | None = None

    def __str__(self) -> str:
        return self.id

    def to_json(self) -> dict[str, object]:
        out: dict[str, object] = {
            "id": self.id,
            "message": self.message,
            "validated": self.validated,
        }
        if self.reverts is not None:
            out["reverts"] = self.reverts
        if self.revert_target is not None:
            out["revert_target"] = self.revert_target
        return out

    @staticmethod
    def from_json(obj: dict[str, object]) -> Commit:
        reverts = obj.get("reverts")
        target = obj.get("revert_target")
        return Commit(
            id=str(obj["id"]),
            message=str(obj.get("message", "")),
            validated=bool(obj.get("validated", False)),
            reverts=reverts if isinstance(reverts, str) else None,
            revert_target=target if isinstance(target, str) else None,
        )


@dataclass(frozen=True, slots=True)
class Project:
    state: str
    tasks: tuple[Task, ...] = ()
    commits: tuple[Commit, ...] = ()

    def __post_init__(self) -> None:
        _require_unique("task", [t.id for t in self.tasks])
        _require_unique("commit", [c.id for c in self.commits])

    def task(self, task_id: str) -> Task | None:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None

    def commit(self, commit_id: str) -> Commit | None:
        for commit in self.commits:
            if commit.id == commit_id:
                return commit
        return None

    def tasks_in(self, layer: Layer) -> tuple[Task, ...]:
        return tuple(t for t in self.tasks if t.layer is layer)

    def with_state(self, state: str) -> Project:
        return replace(self, state=state)

    def with_task(self, task: Task) -> Project:
        """Replace the task with the same id, or append it."""

        if self.task(task.id) is None:
            return replace(self, tasks=(*self.tasks, task))
        return replace(self, tasks=tuple(task if t.id == task.id else t for t in self.tasks))

    def with_commit(self, commit: Commit) -> Project:
        return replace(self, commits=(*self.commits, commit))

    def to_json(self) -> dict[str, object]:
        return {
            "state": self.state,
            "tasks": [t.to_json() for t in self.tasks],
            "commits": [c.to_json() for c in self.commits],
        }

    @staticmethod
    def from_json(obj: dict[str, object]) -> Project:
        tasks_raw = obj.get("tasks")
        commits_raw = obj.get("commits")
        return Project(
            state=str(obj["state"]),
            tasks=tuple(
                Task.from_json(t) for t in (tasks_raw if isinstance(tasks_raw, list) else [])
            ),
            commits=tuple(
                Commit.from_json(c) for c in (commits_raw if isinstance(commits_raw, list) else [])
            ),
        )


def _require_unique(kind: str, ids: list[str]) -> None:
    seen: set[str] = set()
    for item in ids:
        if item in seen:
            raise ValueError(f"Duplicate {kind} id: {item!r}")
        seen.add(item)


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


@dataclass(frozen=True, slots=True)
class Snapshot:
    """A versioned, read-only bundle of project state for one request."""

    project: Project
    version: int = 0
    clock: datetime = field(default_factory=_utc_now)

    @property
    def digest(self) -> str:
        """SHA-256 of the project's canonical JSON; version and clock are excluded."""

        canonical = json.dumps(self.project.to_json(), sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()

    def evolve(self, project: Project) -> Snapshot:
        """Return the successor snapshot holding ``project``."""

        return Snapshot(project=project, version=self.version + 1, clock=_utc_now())

    def to_json(self) -> dict[str, object]:
        return {
            "version": self.version,
            "clock": self.clock.isoformat(),
            "project": self.project.to_json(),
        }

    @staticmethod
    def from_json(obj: dict[str, object]) -> Snapshot:
        project_raw = obj.get("project")
        if not isinstance(project_raw, dict):
            raise ValueError("Snapshot JSON has no 'project' object")
        version_raw = obj.get("version", 0)
        clock_raw = obj.get("clock")
        clock = datetime.fromisoformat(clock_raw) if isinstance(clock_raw, str) else _utc_now()
        return Snapshot(
            project=Project.from_json(project_raw),
            version=version_raw if isinstance(version_raw, int) else 0,
            clock=clock,
        )
