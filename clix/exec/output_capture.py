"""
Output capture for the run log.

Step stdout/stderr is kept whole in memory for the run result; the persisted
run log stores at most 8 KiB of each stream and spills the full text to
logs/<step>.stdout / logs/<step>.stderr.
"""

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional


@dataclass
class CaptureResult:
    """Run-log view of one command's output."""
    output: str = ""
    stderr: str = ""
    truncated: bool = False
    stderr_truncated: bool = False
    exit_code: int = 0

    def to_state_dict(self) -> Dict[str, Any]:
        """Convert to run.json format."""
        result: Dict[str, Any] = {
            "exit_code": self.exit_code,
            "truncated": self.truncated,
        }
        if self.output:
            result["output"] = self.output
        if self.stderr:
            result["stderr"] = self.stderr
        if self.stderr_truncated:
            result["stderr_truncated"] = True
        return result


class OutputCapture:
    """Applies the run-log size limit and writes overflow files."""

    TEXT_LIMIT_BYTES = 8 * 1024

    def __init__(self, logs_dir: Path):
        """
        Initialize output capture.

        Args:
            logs_dir: Directory for overflow logs (created on first spill)
        """
        self.logs_dir = Path(logs_dir)

    def capture(self, stdout: str, stderr: str, step_name: str, exit_code: int = 0) -> CaptureResult:
        """
        Truncate captured text for the run log.

        Args:
            stdout: Decoded stdout
            stderr: Decoded stderr
            step_name: Record name, used for overflow file names
            exit_code: Process exit code

        Returns:
            CaptureResult with possibly truncated text
        """
        output, truncated = self._limit(stdout, step_name, "stdout")
        err, stderr_truncated = self._limit(stderr, step_name, "stderr")
        return CaptureResult(
            output=output,
            stderr=err,
            truncated=truncated,
            stderr_truncated=stderr_truncated,
            exit_code=exit_code,
        )

    def _limit(self, text: str, step_name: str, stream: str):
        encoded = text.encode('utf-8', errors='replace')
        if len(encoded) <= self.TEXT_LIMIT_BYTES:
            return text, False

        # Cut on a character boundary
        output = encoded[:self.TEXT_LIMIT_BYTES].decode('utf-8', errors='ignore')

        self.logs_dir.mkdir(parents=True, exist_ok=True)
        spill = self.logs_dir / f"{safe_file_name(step_name)}.{stream}"
        spill.write_bytes(encoded)

        return output, True

    def spill_path(self, step_name: str, stream: str = "stdout") -> Optional[Path]:
        """Path of the overflow file for a record, if one was written."""
        path = self.logs_dir / f"{safe_file_name(step_name)}.{stream}"
        return path if path.exists() else None


def safe_file_name(name: str) -> str:
    """Map a step record name such as 'Each[2].Build' to a file name."""
    cleaned = re.sub(r'[^A-Za-z0-9._\[\]-]+', '_', name).strip('._')
    return cleaned or "step"
