"""
Destructive-command and production-target detection.

Used by the function converter to put approval gates on risky statements and
by the validator to flag risky steps that run without one.
"""

import re
from dataclasses import dataclass, field
from typing import List, Optional


# Programs that destroy data or stop the machine when invoked at all
DESTRUCTIVE_COMMANDS = {
    'rm', 'rmdir', 'dd', 'mkfs', 'shred', 'fdisk', 'wipefs',
    'shutdown', 'reboot', 'halt', 'poweroff', 'truncate',
}

# Subcommand and SQL forms, matched within one pipeline segment
DESTRUCTIVE_PATTERNS = [
    re.compile(r'\bkubectl\b[^;&|\n]*\bdelete\b'),
    re.compile(r'\bgcloud\b[^;&|\n]*\bdelete\b'),
    re.compile(r'\baws\b[^;&|\n]*\b(delete|terminate|rb)[\w-]*'),
    re.compile(r'\bterraform\b[^;&|\n]*\bdestroy\b'),
    re.compile(r'\bhelm\b[^;&|\n]*\b(uninstall|delete)\b'),
    re.compile(r'\bdocker\b[^;&|\n]*\b(rm|rmi|prune)\b'),
    re.compile(r'\bgit\b[^;&|\n]*\bpush\b[^;&|\n]*(--force\b|\s-f\b)'),
    re.compile(r'\bgit\b[^;&|\n]*\breset\b[^;&|\n]*--hard\b'),
    re.compile(r'\bdrop\b', re.IGNORECASE),
]

# Always gated, dangerous or not
APPROVAL_PATTERNS = [
    re.compile(r'\brm\s+-[a-zA-Z]*[rf]'),
    re.compile(r'\bsudo\s+'),
    re.compile(r'\bchmod\s+(-R\s+)?777\b'),
]

PRODUCTION_TOKEN = re.compile(r'(?<![A-Za-z0-9])(prod|production|prd)(?![A-Za-z0-9])', re.IGNORECASE)

WORD_SEPARATORS = re.compile(r'[\s;&|()`]+')


@dataclass
class CommandCheck:
    """Classification of one command text."""
    command: str
    destructive: bool = False
    production: bool = False
    reasons: List[str] = field(default_factory=list)

    @property
    def requires_approval(self) -> bool:
        return self.destructive or self.production


def _command_words(command: str) -> List[str]:
    words = []
    for word in WORD_SEPARATORS.split(command):
        word = word.strip('"\'')
        if word.startswith('$'):
            word = word.lstrip('$')
        if word:
            words.append(word)
    return words


def check_command(command: Optional[str]) -> CommandCheck:
    """
    Classify command text.

    Args:
        command: Shell command text (may be empty)

    Returns:
        CommandCheck listing why the command is considered risky
    """
    check = CommandCheck(command=command or "")
    if not command:
        return check

    for word in _command_words(command):
        base = word.rsplit('/', 1)[-1].lower()
        if base in DESTRUCTIVE_COMMANDS or base.startswith('mkfs.'):
            check.destructive = True
            check.reasons.append(f"destructive command '{base}'")
            break

    for pattern in DESTRUCTIVE_PATTERNS + APPROVAL_PATTERNS:
        match = pattern.search(command)
        if match:
            check.destructive = True
            check.reasons.append(f"matches '{match.group(0).strip()}'")
            break

    match = PRODUCTION_TOKEN.search(command)
    if match:
        check.production = True
        check.reasons.append(f"references production target '{match.group(0)}'")

    return check


def is_dangerous(command: Optional[str]) -> bool:
    """True when a command should sit behind an approval gate."""
    return check_command(command).requires_approval
