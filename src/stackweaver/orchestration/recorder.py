"""Durable execution state, one JSON file per deployment.

Files live at ``<state_dir>/<deployment>.state.json``. Writes go to a
temporary file in the same directory and are renamed into place, so a crash
mid-write never leaves a truncated state file behind.
"""

from __future__ import annotations

import json
import os
import re
import tempfile
from pathlib import Path

import structlog

from stackweaver.core.errors import ConfigError
from stackweaver.orchestration.state import ExecutionState, ResourceStatus

logger = structlog.get_logger()

DEFAULT_STATE_DIR = Path(".stackweaver/state")

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_.\-]")


def state_path(deployment: str, state_dir: Path | None = None) -> Path:
    directory = state_dir or DEFAULT_STATE_DIR
    return directory / f"{_UNSAFE_CHARS.sub('_', deployment)}.state.json"


class StateRecorder:
    """Loads and saves ExecutionState for a single deployment (single writer)."""

    def __init__(self, deployment: str, state_dir: Path | None = None) -> None:
        self.deployment = deployment
        self.path = state_path(deployment, state_dir)

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> ExecutionState:
        if not self.path.exists():
            return ExecutionState(deployment=self.deployment)

        try:
            data = json.loads(self.path.read_text())
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError("Unreadable state file", details={"path": str(self.path), "error": str(e)}) from e

        state = ExecutionState.from_dict(data)
        if state.deployment != self.deployment:
            raise ConfigError(
                "State file belongs to another deployment",
                details={"path": str(self.path), "expected": self.deployment, "found": state.deployment},
            )

        # A "creating" record means the previous process died mid-call
        for record in state.resources.values():
            if record.status is ResourceStatus.CREATING:
                record.status = ResourceStatus.UNKNOWN
                logger.warning("state_interrupted_resource", resource=record.resource_id)
        return state

    def save(self, state: ExecutionState) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(state.to_dict(), indent=2, sort_keys=True) + "\n"
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=".tmp-", suffix=".json")
        try:
            with os.fdopen(fd, "w") as f:
                f.write(payload)
            os.replace(tmp_name, self.path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
