"""Settings for the decision gate.

Configuration is loaded from:
- environment variables prefixed with ``WORKFLOW_GATE_``
- and a local `.env` file (if present)

Pydantic-settings supports overriding the env file in tests via
``GateSettings(_env_file=path_to_env)``.
"""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class GateSettings(BaseSettings):
    """Settings for the gate.

    Environment variables:
    - WORKFLOW_GATE_LOG_LEVEL                 (optional)
    - WORKFLOW_GATE_AUDIT_LOG_PATH            (optional)
    - WORKFLOW_GATE_SNAPSHOT_PATH             (optional)
    - WORKFLOW_GATE_APPROVAL_TIMEOUT_SECONDS  (optional)
    """

    log_level: str = Field(
        default="INFO",
        description="Root logging level",
    )
    audit_log_path: Path | None = Field(
        default=None,
        description="JSON file the audit log is persisted to; in-memory only when unset",
    )
    snapshot_path: Path | None = Field(
        default=None,
        description="JSON file the current project snapshot is persisted to",
    )
    approval_timeout_seconds: float | None = Field(
        default=None,
        gt=0,
        description="How long a critical decision may wait for approval before it is rejected",
    )

    model_config = SettingsConfigDict(
        env_prefix="WORKFLOW_GATE_",
        env_file=".env",
        extra="ignore",
    )

    @model_validator(mode="after")
    def _normalise_log_level(self) -> GateSettings:
        level = self.log_level.strip().upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"Unknown log level: {self.log_level!r}")
        self.log_level = level
        return self
