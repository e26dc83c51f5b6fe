"""
Interactive callbacks used by the workflow engine.

The engine never reads the terminal directly: approval gates, auth pauses and
missing-variable prompts go through a Prompter so any front end can answer them.
"""

import logging
import sys
from typing import Optional, TextIO

from .exceptions import MissingRequiredVariableError
from .models import Step, Variable

logger = logging.getLogger(__name__)


class Prompter:
    """Abstract interactive surface."""

    interactive = True

    def confirm(self, step: Step, command: str) -> bool:
        """Ask whether a step guarded by an approval gate may run."""
        raise NotImplementedError

    def ask_value(self, variable: Variable) -> str:
        """Ask for the value of a variable that is still unset."""
        raise NotImplementedError

    def wait_for_ack(self, step: Step) -> None:
        """Block until the user confirms an external auth flow finished."""
        raise NotImplementedError


class NonInteractivePrompter(Prompter):
    """
    Prompter for unattended runs.

    Approval gates are granted only when auto_approve is set; variables cannot be
    asked for, so the resolver reports them as missing instead.
    """

    interactive = False

    def __init__(self, auto_approve: bool = False):
        self.auto_approve = auto_approve

    def confirm(self, step: Step, command: str) -> bool:
        if self.auto_approve:
            logger.info(f"Auto-approving step '{step.name}'")
        return self.auto_approve

    def ask_value(self, variable: Variable) -> str:
        raise RuntimeError(f"Cannot prompt for '{variable.name}' in non-interactive mode")

    def wait_for_ack(self, step: Step) -> None:
        logger.info(f"Auth step '{step.name}' finished; not waiting in non-interactive mode")


class ConsolePrompter(Prompter):
    """Prompter reading answers from a text stream (stdin by default)."""

    def __init__(self, stdin: Optional[TextIO] = None, stdout: Optional[TextIO] = None,
                 auto_approve: bool = False):
        self.stdin = stdin or sys.stdin
        self.stdout = stdout or sys.stdout
        self.auto_approve = auto_approve

    def _write(self, text: str):
        self.stdout.write(text)
        self.stdout.flush()

    def _read_line(self) -> str:
        line = self.stdin.readline()
        if not line:
            raise EOFError("No more input available")
        return line.strip()

    def confirm(self, step: Step, command: str) -> bool:
        if self.auto_approve:
            return True

        self._write("This step requires approval before execution:\n")
        self._write(f"Name: {step.name}\n")
        if step.description:
            self._write(f"Description: {step.description}\n")
        if command:
            self._write(f"Command: {command}\n")
        self._write("Do you want to proceed? [y/N]: ")

        try:
            answer = self._read_line().lower()
        except EOFError:
            return False
        return answer in ("y", "yes")

    def ask_value(self, variable: Variable) -> str:
        self._write(f"Variable: {variable.name}\n")
        self._write(f"Description: {variable.description or 'Value for ' + variable.name}\n")
        if variable.default_value is not None:
            self._write(f"Enter value [{variable.default_value}]: ")
        else:
            self._write("Enter value: ")
        try:
            return self._read_line()
        except EOFError:
            logger.error(f"Input closed while asking for variable '{variable.name}'")
            raise MissingRequiredVariableError(variable.name)

    def wait_for_ack(self, step: Step) -> None:
        self._write("This step requires authentication. Please follow the instructions above.\n")
        self._write("Press Enter when you have completed the authentication process...")
        try:
            self._read_line()
        except EOFError:
            logger.warning(f"Input closed while waiting for auth step '{step.name}'")
