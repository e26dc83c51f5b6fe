"""Command execution: the persistent shell session and run-log output capture."""

from .output_capture import CaptureResult, OutputCapture
from .shell_session import ExecutionResult, ShellSession

__all__ = ['CaptureResult', 'ExecutionResult', 'OutputCapture', 'ShellSession']
