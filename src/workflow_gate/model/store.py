"""Holder for a project's current snapshot.

The store is the only place a project's state changes, and it changes by
swapping one immutable snapshot for the next. Readers calling
:meth:`SnapshotStore.current` therefore never see a half-applied mutation.
Optionally the current snapshot is persisted as JSON so that state survives
restarts.
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path

from .snapshot import Project, Snapshot

logger = logging.getLogger(__name__)


class StaleSnapshotError(RuntimeError):
    """Raised when a swap is based on a snapshot that is no longer current."""


class SnapshotStore:
    """Current snapshot of one project plus its single-writer lock.

    ``writer_lock`` is held by whoever validates and applies a mutation.
    """

    def __init__(self, initial: Snapshot | Project | None = None, path: Path | None = None) -> None:
        self._path = path
        self._swap_lock = threading.Lock()
        self.writer_lock = threading.Lock()

        if path is not None and path.exists():
            self._current = self._load(path)
            logger.info(
                "Snapshot loaded",
                extra={"path": str(path), "version": self._current.version},
            )
        elif isinstance(initial, Project):
            self._current = Snapshot(project=initial)
        elif isinstance(initial, Snapshot):
            self._current = initial
        else:
            raise ValueError("SnapshotStore needs an initial snapshot or an existing snapshot file")

    @staticmethod
    def _load(path: Path) -> Snapshot:
        raw = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(raw, dict):
            raise ValueError(f"Snapshot file does not hold a JSON object: {path}")
        return Snapshot.from_json(raw)

    def _save(self, snapshot: Snapshot) -> None:
        if self._path is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_text(
            json.dumps(snapshot.to_json(), indent=2, ensure_ascii=False) + "\n",
            encoding="utf-8",
        )
        tmp.replace(self._path)

    def current(self) -> Snapshot:
        return self._current

    def swap(self, snapshot: Snapshot, *, expected_version: int) -> Snapshot:
        """Replace the current snapshot if it is still at ``expected_version``."""

        with self._swap_lock:
            if self._current.version != expected_version:
                raise StaleSnapshotError(
                    f"Snapshot moved from version {expected_version} to {self._current.version}"
                )
            self._save(snapshot)
            self._current = snapshot
            logger.debug(
                "Snapshot swapped",
                extra={"version": snapshot.version, "digest": snapshot.digest},
            )
            return snapshot
