"""
Template substitution.
Handles {{ name }} placeholders in command strings, conditions and loop sources.
"""

import re
from typing import Dict, List, Mapping, Optional, Set

from ..exceptions import UnboundVariableError


class TemplateResolver:
    """
    Substitutes {{ name }} tokens using a resolved variable map.

    Whitespace inside the braces is optional. Values are inserted verbatim;
    a substituted value is never scanned again, so substitution with a map
    that fully resolves a string is idempotent.
    """

    # Pattern to match {{ name }} tokens
    TOKEN_PATTERN = re.compile(r'\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}\}')

    def __init__(self):
        """Initialize the resolver."""
        self.undefined_vars: Set[str] = set()

    def substitute(
        self,
        text: str,
        variables: Mapping[str, str],
        strict: bool = True
    ) -> str:
        """
        Substitute template tokens in a string.

        Args:
            text: String containing {{ name }} tokens
            variables: Resolved variable values
            strict: Whether unknown names are an error

        Returns:
            String with tokens replaced (unknown tokens left literal when not strict)

        Raises:
            UnboundVariableError: If a token has no value (when strict=True)
        """
        self.undefined_vars.clear()

        def replace_token(match):
            name = match.group(1)
            if name not in variables:
                self.undefined_vars.add(name)
                return match.group(0)
            return str(variables[name])

        result = self.TOKEN_PATTERN.sub(replace_token, text)

        if strict and self.undefined_vars:
            raise UnboundVariableError(sorted(self.undefined_vars))

        return result

    def try_substitute(self, text: str, variables: Mapping[str, str]) -> str:
        """Best-effort substitution for display; unknown tokens stay literal."""
        return self.substitute(text, variables, strict=False)

    @classmethod
    def extract_variables(cls, text: Optional[str]) -> List[str]:
        """
        Extract variable names referenced by a string, in first-use order.

        Args:
            text: String to scan (None is treated as empty)

        Returns:
            Unique variable names
        """
        names: List[str] = []
        if not text:
            return names
        for match in cls.TOKEN_PATTERN.finditer(text):
            name = match.group(1)
            if name not in names:
                names.append(name)
        return names


def substitute(text: str, variables: Dict[str, str]) -> str:
    """Module-level shortcut for a strict substitution."""
    return TemplateResolver().substitute(text, variables)
