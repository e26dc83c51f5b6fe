"""
Variable handling module.
Implements {{ name }} template substitution and run-time variable resolution.
"""

from .substitution import TemplateResolver
from .resolver import VariableResolver, referenced_variables, runtime_bound_variables

__all__ = ['TemplateResolver', 'VariableResolver', 'referenced_variables', 'runtime_bound_variables']
