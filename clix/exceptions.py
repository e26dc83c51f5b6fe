"""Clix exceptions."""

from typing import List, Optional
from dataclasses import dataclass


@dataclass
class ValidationError:
    """Single validation error."""
    message: str
    path: str = ""
    exit_code: int = 2


class WorkflowValidationError(Exception):
    """Raised when workflow validation fails.

    This exception is raised by the loader when validation errors occur,
    allowing the CLI to catch it and map to appropriate exit codes.
    """

    def __init__(self, errors: List[ValidationError]):
        self.errors = errors
        self.exit_code = 2  # Default validation exit code

        # Construct error message
        messages = []
        for error in errors:
            if error.path:
                messages.append(f"Validation error at {error.path}: {error.message}")
            else:
                messages.append(f"Validation error: {error.message}")

        super().__init__("\n".join(messages))


class ClixError(Exception):
    """Base class for errors raised while converting or running workflows."""

    kind = "error"
    exit_code = 1


class ConditionSyntaxError(ClixError):
    """A condition expression could not be parsed."""

    kind = "condition_syntax"
    exit_code = 2

    def __init__(self, expression: str, message: str):
        self.expression = expression
        self.message = message
        super().__init__(f"Invalid condition '{expression}': {message}")


class UnboundVariableError(ClixError):
    """A {{ template }} token referenced a variable with no resolved value."""

    kind = "unbound_variable"
    exit_code = 2

    def __init__(self, names: List[str]):
        self.names = sorted(set(names))
        super().__init__(f"Unbound variables: {', '.join(self.names)}")


class MissingRequiredVariableError(ClixError):
    """A required variable has no value and cannot be prompted for."""

    kind = "missing_required_variable"
    exit_code = 2

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Variable '{name}' is required")


class CanceledByUserError(ClixError):
    """The user rejected an approval gate."""

    kind = "canceled_by_user"
    exit_code = 130

    def __init__(self, step_name: str):
        self.step_name = step_name
        super().__init__(f"Step '{step_name}' canceled by user")


class LoopDidNotTerminateError(ClixError):
    """A while loop kept its condition true past the iteration cap."""

    kind = "loop_did_not_terminate"

    def __init__(self, step_name: str, limit: int):
        self.step_name = step_name
        self.limit = limit
        super().__init__(f"Loop '{step_name}' did not terminate after {limit} iterations")


class StepFailedError(ClixError):
    """A command exited non-zero and the step does not continue on error."""

    kind = "step_failed"

    def __init__(self, step_name: str, exit_code: int):
        self.step_name = step_name
        self.exit_code = exit_code
        super().__init__(f"Step '{step_name}' failed with exit code {exit_code}")


class ConversionParseError(ClixError):
    """A shell function body could not be converted into steps."""

    kind = "conversion_parse_error"
    exit_code = 2

    def __init__(self, line_number: int, line: str, message: str):
        self.line_number = line_number
        self.line = line
        self.message = message
        super().__init__(f"Line {line_number}: {message}: {line.strip()}")


class FunctionNotFoundError(ClixError):
    """The requested function is not defined in the script."""

    kind = "function_not_found"
    exit_code = 2

    def __init__(self, function_name: str):
        self.function_name = function_name
        super().__init__(f"Function '{function_name}' not found in the script")


class ShellSessionError(ClixError):
    """The shell process backing an execution context could not be used."""

    kind = "shell_session"

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        self.cause = cause
        super().__init__(message)
