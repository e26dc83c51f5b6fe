"""Security module for destructive-command detection."""

from .patterns import CommandCheck, check_command, is_dangerous

__all__ = ['CommandCheck', 'check_command', 'is_dangerous']
