"""
Shell session module for running step commands with shared shell state.

All commands of one run go through a single long-lived bash process, so
exported variables, the working directory and the last exit status carry over
from one step to the next.
"""

import logging
import os
import shlex
import shutil
import subprocess
import tempfile
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

from ..exceptions import ShellSessionError

logger = logging.getLogger(__name__)


@dataclass
class ExecutionResult:
    """Result of one command run through the session."""
    command: str
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    duration_ms: int = 0


class ShellSession:
    """
    Persistent shell state shared by the steps of one run.

    Protocol: each command is written to a file in the session directory and
    sourced by the shell with stdin from /dev/null and stdout/stderr redirected
    to files. The shell then dumps its exported environment and prints a
    sentinel line carrying the exit status and $PWD on its own stdout, which is
    the only thing ever written to that pipe.

    The shell runs with allexport, so plain assignments are visible in `env`
    just like exported variables.

    `exit N` (also from inside a function) really ends the shell. An EXIT trap
    records the status, $PWD and the environment first, and a fresh shell is
    started from that record. If the shell dies without running the trap (e.g.
    `exec`), the process status is used with the last known environment and
    working directory.
    """

    SENTINEL = "__CLIX_DONE__"
    INTERNAL_PREFIX = "__clix_"
    DEFAULT_SHELL = "bash"

    def __init__(self, shell: Optional[str] = None, cwd: Optional[Path] = None,
                 env: Optional[Dict[str, str]] = None):
        """
        Initialize the session (the shell is spawned by start()).

        Args:
            shell: Shell binary, must be bash-compatible (default: $CLIX_SHELL or bash)
            cwd: Initial working directory (default: process cwd)
            env: Initial environment (default: copy of os.environ)
        """
        self.shell = shell or os.environ.get("CLIX_SHELL") or self.DEFAULT_SHELL
        self.cwd = str(Path(cwd).resolve()) if cwd else os.getcwd()
        self.env: Dict[str, str] = dict(os.environ if env is None else env)
        self.last_exit_code = 0
        self.restarts = 0

        self._token = f"{self.SENTINEL}{uuid.uuid4().hex}"
        self._process: Optional[subprocess.Popen] = None
        self._session_dir: Optional[Path] = None
        self._shell_log = None

    def __enter__(self) -> "ShellSession":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def start(self):
        """Create the session directory and spawn the shell."""
        if self._process is not None:
            return
        self._session_dir = Path(tempfile.mkdtemp(prefix="clix-session-"))
        self._shell_log = open(self._session_dir / "shell.log", "ab")
        self._spawn()

    def _spawn(self):
        cwd = self.cwd if os.path.isdir(self.cwd) else os.getcwd()
        try:
            self._process = subprocess.Popen(
                [self.shell, "--noprofile", "--norc"],
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=self._shell_log,
                cwd=cwd,
                env=self.env,
                text=True,
                encoding="utf-8",
                errors="replace",
            )
        except OSError as e:
            raise ShellSessionError(f"Failed to start shell '{self.shell}': {e}", e) from e

        logger.debug(f"Started shell session pid={self._process.pid} cwd={cwd}")
        # allexport: plain assignments land in the env snapshot too
        self._write(
            "set -a\n"
            "__clix_status() { return \"$1\"; }\n"
            "__clix_on_exit() {\n"
            "  __clix_rc=$?\n"
            f"  env -0 >{self._path('env')}\n"
            f"  printf '%s %s' \"$__clix_rc\" \"$PWD\" >{self._path('exit')}\n"
            "}\n"
            "trap __clix_on_exit EXIT\n"
            f"__clix_rc={int(self.last_exit_code)}\n"
        )

    def _write(self, script: str):
        assert self._process is not None and self._process.stdin is not None
        try:
            self._process.stdin.write(script)
            self._process.stdin.flush()
        except (BrokenPipeError, OSError) as e:
            logger.debug(f"Shell input closed: {e}")

    def _path(self, name: str) -> str:
        assert self._session_dir is not None
        return shlex.quote(str(self._session_dir / name))

    def _readback(self) -> str:
        return (
            f"env -0 >{self._path('env')}\n"
            f"printf '%s %s %s\\n' '{self._token}' \"${{__clix_rc:-0}}\" \"$PWD\"\n"
        )

    def _roundtrip(self, script: str) -> Optional[int]:
        """
        Send a script and wait for its sentinel line.

        Returns:
            Exit status reported by the sentinel, or None if the shell died
        """
        if self._process is None:
            self.start()
        assert self._process is not None and self._process.stdout is not None

        self._write(script + self._readback())

        while True:
            line = self._process.stdout.readline()
            if not line:
                return None
            if not line.startswith(self._token):
                logger.debug(f"Ignoring unexpected shell output: {line.rstrip()}")
                continue
            parts = line.rstrip("\n").split(" ", 2)
            try:
                status = int(parts[1])
            except (IndexError, ValueError):
                raise ShellSessionError(f"Malformed status line from shell: {line!r}")
            if len(parts) > 2 and parts[2]:
                self.cwd = parts[2]
            self._load_env()
            return status

    def _load_env(self):
        assert self._session_dir is not None
        env_file = self._session_dir / "env"
        if not env_file.exists():
            return
        data = env_file.read_bytes().decode("utf-8", errors="replace")
        env: Dict[str, str] = {}
        for entry in data.split("\0"):
            if "=" not in entry:
                continue
            name, value = entry.split("=", 1)
            # allexport also exports the helper function as BASH_FUNC___clix_status%%
            if name.startswith(self.INTERNAL_PREFIX) or name.startswith("BASH_FUNC_" + self.INTERNAL_PREFIX):
                continue
            env[name] = value
        self.env = env

    def _recover(self) -> int:
        """Collect the status of a dead shell and start a new one from its last state."""
        assert self._process is not None and self._session_dir is not None
        exit_code = self._process.wait()

        record = self._session_dir / "exit"
        if record.exists():
            status, _, cwd = record.read_text(encoding="utf-8", errors="replace").partition(" ")
            record.unlink()
            if status.strip().isdigit():
                exit_code = int(status)
            if cwd:
                self.cwd = cwd
            self._load_env()

        logger.info(f"Shell session exited with status {exit_code}; restarting from last known state")
        self._close_pipes()
        self._process = None
        self.last_exit_code = exit_code
        self.restarts += 1
        self._spawn()
        return exit_code

    def _read_output(self, name: str) -> str:
        assert self._session_dir is not None
        path = self._session_dir / name
        if not path.exists():
            return ""
        return path.read_bytes().decode("utf-8", errors="replace")

    def run(self, command: str, track_status: bool = True) -> ExecutionResult:
        """
        Run command text in the session.

        Args:
            command: Shell command text (may span several lines)
            track_status: Whether the command's status becomes the session's $?

        Returns:
            ExecutionResult with captured stdout/stderr and exit code
        """
        if self._process is None:
            self.start()
        assert self._session_dir is not None

        start_time = time.time()

        (self._session_dir / "command.sh").write_text(command + "\n", encoding="utf-8")
        for name in ("stdout", "stderr"):
            (self._session_dir / name).write_bytes(b"")

        source = (
            f"__clix_status \"${{__clix_rc:-0}}\"\n"
            f". {self._path('command.sh')} </dev/null >{self._path('stdout')} 2>{self._path('stderr')}\n"
        )
        if track_status:
            script = source + "__clix_rc=$?\n"
        else:
            script = source + "__clix_last=$?\n"
            script += f"printf '%s' \"$__clix_last\" >{self._path('status')}\n"

        status = self._roundtrip(script)
        if status is None:
            exit_code = self._recover()
        elif track_status:
            exit_code = status
        else:
            exit_code = int(self._read_output("status") or 0)

        if track_status:
            self.last_exit_code = exit_code

        duration_ms = int((time.time() - start_time) * 1000)
        result = ExecutionResult(
            command=command,
            exit_code=exit_code,
            stdout=self._read_output("stdout"),
            stderr=self._read_output("stderr"),
            duration_ms=duration_ms,
        )
        logger.debug(f"Command exited {exit_code} in {duration_ms}ms: {command}")
        return result

    def export(self, name: str, value: str):
        """
        Export a variable into the session without touching $?.

        Raises:
            ValueError: If name is not a valid shell identifier
        """
        if not is_shell_identifier(name):
            raise ValueError(f"Invalid shell variable name: {name!r}")
        script = f"export {name}={shlex.quote(str(value))}\n"
        if self._roundtrip(script) is None:
            self._recover()
            self._roundtrip(script)

    def _close_pipes(self):
        if self._process is None:
            return
        for stream in (self._process.stdin, self._process.stdout):
            if stream is None:
                continue
            try:
                stream.close()
            except OSError:
                pass

    def close(self):
        """Terminate the shell and remove the session directory."""
        if self._process is not None:
            if self._process.poll() is None:
                try:
                    if self._process.stdin is not None:
                        self._process.stdin.close()
                    self._process.wait(timeout=5)
                except (OSError, subprocess.TimeoutExpired):
                    self._process.kill()
                    self._process.wait()
            self._close_pipes()
            logger.debug(f"Shell session pid={self._process.pid} closed")
            self._process = None

        if self._shell_log is not None:
            self._shell_log.close()
            self._shell_log = None

        if self._session_dir is not None:
            shutil.rmtree(self._session_dir, ignore_errors=True)
            self._session_dir = None


def is_shell_identifier(name: str) -> bool:
    """Check whether a name can be used as a shell variable."""
    if not name or not (name[0].isalpha() or name[0] == "_"):
        return False
    return all(c.isalnum() or c == "_" for c in name) and name.isascii()
