"""Append-only audit log of decision outcomes.

Records are kept in memory and, when a path is configured, persisted as a
JSON list so the trail survives restarts.
"""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from pydantic import BaseModel, Field


class AuditRecord(BaseModel):
    decision_id: str
    workflow: str
    action: str
    kind: str
    verdict: str
    timestamp: str

    approver: str | None = None
    reasons: list[str] = Field(default_factory=list)
    base_digest: str | None = None
    result_digest: str | None = None


def _utc_iso_now() -> str:
    return datetime.now(tz=UTC).isoformat()


@dataclass
class AuditLog:
    path: Path | None = None

    def __post_init__(self) -> None:
        self._lock = threading.Lock()
        self._records: list[AuditRecord] = self._load_unlocked()

    def _load_unlocked(self) -> list[AuditRecord]:
        if self.path is None or not self.path.exists():
            return []
        raw = json.loads(self.path.read_text(encoding="utf-8"))
        if not isinstance(raw, list):
            raise ValueError(f"Audit log does not hold a JSON list: {self.path}")
        return [AuditRecord.model_validate(item) for item in raw]

    def _save_unlocked(self) -> None:
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = [r.model_dump(mode="json") for r in self._records]
        self.path.write_text(
            json.dumps(payload, indent=2, ensure_ascii=False) + "\n", encoding="utf-8"
        )

    def record(self, **fields: object) -> AuditRecord:
        with self._lock:
            entry = AuditRecord.model_validate({"timestamp": _utc_iso_now(), **fields})
            self._records.append(entry)
            self._save_unlocked()
            return entry

    def list(self) -> list[AuditRecord]:
        with self._lock:
            return list(self._records)

    def for_decision(self, decision_id: str) -> list[AuditRecord]:
        with self._lock:
            return [r for r in self._records if r.decision_id == decision_id]
