"""CLI command handlers."""

from .run import run_workflow
from .convert import convert_function_command
from .validate import validate_workflow

__all__ = ['run_workflow', 'convert_function_command', 'validate_workflow']
