"""
Variable resolution.
Builds the run-scoped variable map from declarations, a profile and overrides.
"""

import logging
from typing import Dict, List, Optional, Set

from ..exceptions import MissingRequiredVariableError
from ..models import ForEach, Profile, Step, Variable, While, Workflow, iter_steps
from ..prompts import Prompter
from .substitution import TemplateResolver

logger = logging.getLogger(__name__)


class VariableResolver:
    """
    Resolves variable values with precedence: override > profile > default.

    Required variables still unset after merging are asked for through the
    prompter, or reported as missing when the run is non-interactive.
    """

    def __init__(self, prompter: Optional[Prompter] = None):
        """
        Initialize the resolver.

        Args:
            prompter: Interactive callbacks (None means non-interactive)
        """
        self.prompter = prompter

    @property
    def interactive(self) -> bool:
        return self.prompter is not None and self.prompter.interactive

    def resolve(
        self,
        declared: List[Variable],
        profile: Optional[Profile] = None,
        overrides: Optional[Dict[str, str]] = None,
        referenced: Optional[List[str]] = None
    ) -> Dict[str, str]:
        """
        Resolve the variable map for a run.

        Args:
            declared: Variable declarations of the workflow
            profile: Selected profile, if any
            overrides: Explicit command-line values
            referenced: Template names used by the workflow but not declared;
                these are asked for interactively and otherwise left unset

        Returns:
            Mapping of variable name to value

        Raises:
            MissingRequiredVariableError: If a required variable stays unset
        """
        values: Dict[str, str] = {}

        for variable in declared:
            if variable.default_value is not None:
                values[variable.name] = variable.default_value

        if profile is not None:
            for name, value in profile.values.items():
                values[name] = str(value)

        if overrides:
            for name, value in overrides.items():
                values[name] = str(value)

        for variable in declared:
            if variable.required and variable.name not in values:
                values[variable.name] = self._ask(variable)

        declared_names = {v.name for v in declared}
        for name in referenced or []:
            if name in values or name in declared_names:
                continue
            if not self.interactive:
                logger.debug(f"Variable '{name}' is referenced but has no value")
                continue
            values[name] = self._ask(Variable(name=name, description=f"Value for {name}"))

        return values

    def _ask(self, variable: Variable) -> str:
        """Prompt for one variable, applying its default to an empty answer."""
        if not self.interactive:
            if variable.required:
                raise MissingRequiredVariableError(variable.name)
            return variable.default_value or ""

        assert self.prompter is not None
        answer = self.prompter.ask_value(variable)

        if answer == "" and variable.default_value is not None:
            return variable.default_value
        if answer == "" and variable.required:
            raise MissingRequiredVariableError(variable.name)
        return answer

    def resolve_workflow(
        self,
        workflow: Workflow,
        profile_name: Optional[str] = None,
        overrides: Optional[Dict[str, str]] = None
    ) -> Dict[str, str]:
        """
        Resolve the variable map for a workflow run.

        An unknown profile name is logged and ignored.
        """
        profile = None
        if profile_name:
            profile = workflow.get_profile(profile_name)
            if profile is None:
                logger.warning(f"Profile '{profile_name}' not found in workflow '{workflow.name}'")
            else:
                logger.info(f"Using profile: {profile.name}")

        return self.resolve(
            workflow.variables,
            profile=profile,
            overrides=overrides,
            referenced=referenced_variables(workflow.steps),
        )


def runtime_bound_variables(steps: List[Step]) -> Set[str]:
    """Names bound during a run: for-each variables and condition captures."""
    bound: Set[str] = set()
    for step in iter_steps(steps):
        if step.conditional is not None and step.conditional.condition.capture_variable:
            bound.add(step.conditional.condition.capture_variable)
        if isinstance(step.loop, ForEach):
            bound.add(step.loop.variable)
        elif isinstance(step.loop, While) and step.loop.condition.capture_variable:
            bound.add(step.loop.condition.capture_variable)
    return bound


def referenced_variables(steps: List[Step]) -> List[str]:
    """
    Template names used anywhere in a step tree, excluding run-time bindings.

    Args:
        steps: Root step list

    Returns:
        Names in first-use order
    """
    names: List[str] = []

    def add(text: Optional[str]):
        for name in TemplateResolver.extract_variables(text):
            if name not in names:
                names.append(name)

    for step in iter_steps(steps):
        add(step.command)
        if step.conditional is not None:
            add(step.conditional.condition.text)
        if step.branch is not None:
            for case in step.branch.cases:
                add(case.value)
        if isinstance(step.loop, ForEach):
            add(step.loop.values_source)
        elif isinstance(step.loop, While):
            add(step.loop.condition.text)

    bound = runtime_bound_variables(steps)
    return [name for name in names if name not in bound]
