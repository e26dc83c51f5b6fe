"""Run log persistence.

Writes one run.json per workflow run with atomic replace after every step, so
an interrupted run still leaves a readable record of what executed.
"""

import json
import logging
import random
import string
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

from .exec.output_capture import OutputCapture

logger = logging.getLogger(__name__)


RunStatus = Literal["running", "completed", "returned", "failed"]


@dataclass
class StepRecord:
    """Log entry for one executed command (or auth) step."""
    name: str
    command: str = ""
    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0
    duration_ms: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "command": self.command,
            "exit_code": self.exit_code,
            "duration_ms": self.duration_ms,
            "stdout": self.stdout,
            "stderr": self.stderr,
        }


@dataclass
class RunState:
    """Persisted state of one run."""
    schema_version: str
    run_id: str
    workflow: str
    started_at: str
    updated_at: str
    status: RunStatus
    variables: Dict[str, str] = field(default_factory=dict)
    outcome: Optional[Dict[str, Any]] = None
    steps: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for JSON serialization."""
        result: Dict[str, Any] = {
            "schema_version": self.schema_version,
            "run_id": self.run_id,
            "workflow": self.workflow,
            "started_at": self.started_at,
            "updated_at": self.updated_at,
            "status": self.status,
            "variables": self.variables,
            "steps": self.steps,
        }
        if self.outcome is not None:
            result["outcome"] = self.outcome
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RunState":
        return cls(
            schema_version=data["schema_version"],
            run_id=data["run_id"],
            workflow=data["workflow"],
            started_at=data["started_at"],
            updated_at=data["updated_at"],
            status=data["status"],
            variables=data.get("variables", {}),
            outcome=data.get("outcome"),
            steps=data.get("steps", []),
        )


class RunStateManager:
    """Manages the run log with atomic writes."""

    SCHEMA_VERSION = "1"

    def __init__(self, state_dir: Path, run_id: Optional[str] = None):
        """Initialize the state manager.

        Args:
            state_dir: Directory holding one sub-directory per run
            run_id: Optional run ID to use (generates one if not provided)
        """
        self.state_dir = Path(state_dir)
        self.run_id = run_id or self._new_run_id()

        self.run_root = self.state_dir / self.run_id
        self.state_file = self.run_root / "run.json"
        self.logs_dir = self.run_root / "logs"
        self.output_capture = OutputCapture(self.logs_dir)

        self.state: Optional[RunState] = None

    def _new_run_id(self) -> str:
        """Timestamp plus a random suffix, e.g. 20240101T120000Z-a1b2c3."""
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        suffix = ''.join(random.choices(string.ascii_lowercase + string.digits, k=6))
        return f"{timestamp}-{suffix}"

    def initialize(self, workflow_name: str, variables: Optional[Dict[str, str]] = None) -> RunState:
        """Start a new run log.

        Args:
            workflow_name: Name of the workflow being run
            variables: Resolved variable map

        Returns:
            Initialized RunState
        """
        self.run_root.mkdir(parents=True, exist_ok=True)

        now = datetime.now(timezone.utc).isoformat()
        self.state = RunState(
            schema_version=self.SCHEMA_VERSION,
            run_id=self.run_id,
            workflow=workflow_name,
            started_at=now,
            updated_at=now,
            status="running",
            variables=dict(variables or {}),
        )
        self._persist()
        logger.debug(f"Run log initialized at {self.state_file}")
        return self.state

    def load(self) -> RunState:
        """Load an existing run log from disk.

        Raises:
            FileNotFoundError: If the run log doesn't exist
            json.JSONDecodeError: If the run log is corrupted
        """
        if not self.state_file.exists():
            raise FileNotFoundError(f"Run log not found: {self.state_file}")

        with open(self.state_file, 'r') as f:
            data = json.load(f)

        self.state = RunState.from_dict(data)
        return self.state

    def _persist(self):
        """Atomically replace run.json."""
        if not self.state:
            raise RuntimeError("Run log has not been initialized")

        self.state.updated_at = datetime.now(timezone.utc).isoformat()

        partial = self.state_file.with_name(self.state_file.name + '.partial')
        with open(partial, 'w', encoding='utf-8') as f:
            json.dump(self.state.to_dict(), f, indent=2)

        partial.replace(self.state_file)

    def record_step(self, record: StepRecord):
        """Append a step record, truncating large output.

        Args:
            record: Executed step record
        """
        if not self.state:
            raise RuntimeError("Run log has not been initialized")

        captured = self.output_capture.capture(record.stdout, record.stderr, record.name, record.exit_code)
        entry: Dict[str, Any] = {
            "name": record.name,
            "command": record.command,
            "duration_ms": record.duration_ms,
        }
        entry.update(captured.to_state_dict())

        self.state.steps.append(entry)
        self._persist()

    def finish(self, status: RunStatus, outcome: Dict[str, Any]):
        """Record the terminal outcome of the run.

        Args:
            status: Final run status
            outcome: Outcome details (status, exit code, failing step, error)
        """
        if not self.state:
            raise RuntimeError("Run log has not been initialized")

        self.state.status = status
        self.state.outcome = outcome
        self._persist()
