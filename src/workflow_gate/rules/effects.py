"""Named transforms a transition may declare with ``effect``.

A transition always moves the project to its target state. Effects are
applied after that, in declaration order, to build the hypothetical
snapshot the postcondition and the invariants are checked against.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import replace

from workflow_gate.model.snapshot import Layer, Project

Effect = Callable[[Project], Project]


def archive_completed(project: Project) -> Project:
    """Move every completed Backlog task to the Changelog."""

    return replace(
        project,
        tasks=tuple(
            replace(t, layer=Layer.CHANGELOG)
            if t.layer is Layer.BACKLOG and t.completed
            else t
            for t in project.tasks
        ),
    )


def journal_committed(project: Project) -> Project:
    """Move every committed Changelog task to the Journal."""

    return replace(
        project,
        tasks=tuple(
            replace(t, layer=Layer.JOURNAL)
            if t.layer is Layer.CHANGELOG and t.committed
            else t
            for t in project.tasks
        ),
    )


EFFECTS: Mapping[str, Effect] = {
    "archive_completed": archive_completed,
    "journal_committed": journal_committed,
}
