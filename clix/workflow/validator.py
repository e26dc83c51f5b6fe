"""
Static workflow checks.
Reports problems a run would hit (or that look like mistakes) without
executing anything.
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Set

from ..exceptions import ConditionSyntaxError
from ..models import Expression, ForEach, Step, StepKind, While, Workflow, iter_steps
from ..security.patterns import check_command
from ..variables.resolver import runtime_bound_variables
from ..variables.substitution import TemplateResolver
from .conditions import parse_expression

logger = logging.getLogger(__name__)


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


@dataclass
class ValidationIssue:
    severity: Severity
    message: str
    step_name: Optional[str] = None
    suggestion: Optional[str] = None

    def __str__(self) -> str:
        text = f"[{self.severity.value}] {self.message}"
        if self.suggestion:
            text += f" ({self.suggestion})"
        return text


@dataclass
class ValidationReport:
    workflow_name: str
    issues: List[ValidationIssue] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not any(issue.severity == Severity.ERROR for issue in self.issues)

    def by_severity(self, severity: Severity) -> List[ValidationIssue]:
        return [issue for issue in self.issues if issue.severity == severity]


class WorkflowValidator:
    """Runs all static checks over a workflow."""

    MAX_NAME_LENGTH = 100
    ALWAYS_TRUE = {'true', '1', ':'}

    def validate(self, workflow: Workflow) -> ValidationReport:
        """
        Validate a workflow.

        Args:
            workflow: Workflow to check

        Returns:
            ValidationReport; is_valid is False if any error-level issue was found
        """
        report = ValidationReport(workflow_name=workflow.name)

        self._check_variables(workflow, report)
        self._check_block(workflow.steps, report)
        self._check_templates(workflow, report)

        logger.debug(f"Validated '{workflow.name}': {len(report.issues)} issues")
        return report

    def _check_variables(self, workflow: Workflow, report: ValidationReport):
        seen: Set[str] = set()
        for variable in workflow.variables:
            if not variable.name.strip():
                report.issues.append(ValidationIssue(
                    Severity.ERROR, "Variable has empty name",
                    suggestion="Give every variable a name"))
            elif variable.name in seen:
                report.issues.append(ValidationIssue(
                    Severity.ERROR, f"Variable '{variable.name}' is declared more than once",
                    suggestion="Use unique variable names"))
            seen.add(variable.name)

    def _check_block(self, steps: List[Step], report: ValidationReport):
        positions: Dict[str, int] = {}
        for index, step in enumerate(steps):
            if step.name in positions and step.name.strip():
                report.issues.append(ValidationIssue(
                    Severity.ERROR,
                    f"Duplicate step name '{step.name}' found at positions "
                    f"{positions[step.name] + 1} and {index + 1}",
                    step_name=step.name,
                    suggestion="Use unique names for steps in the same block"))
            else:
                positions[step.name] = index

            self._check_step(step, report)
            for block in step.child_blocks():
                self._check_block(block, report)

    def _check_step(self, step: Step, report: ValidationReport):
        if not step.name.strip():
            report.issues.append(ValidationIssue(
                Severity.ERROR, "Step has empty name",
                suggestion="Provide a meaningful name for the step"))
        elif len(step.name) > self.MAX_NAME_LENGTH:
            report.issues.append(ValidationIssue(
                Severity.WARNING, f"Step '{step.name}' has a very long name", step_name=step.name,
                suggestion="Consider using a shorter, more concise name"))

        if not step.description.strip():
            report.issues.append(ValidationIssue(
                Severity.WARNING, f"Step '{step.name}' has empty description", step_name=step.name,
                suggestion="Add a description to explain what this step does"))

        if step.kind in (StepKind.COMMAND, StepKind.AUTH):
            self._check_command(step, report)

        conditions: List[Expression] = []
        if step.conditional is not None:
            conditions.append(step.conditional.condition)
            conditional = step.conditional
            if not conditional.then_steps and not conditional.else_steps and conditional.action is None:
                report.issues.append(ValidationIssue(
                    Severity.WARNING, f"Conditional '{step.name}' has no steps and no action",
                    step_name=step.name,
                    suggestion="Add then/else steps or an action"))

        if isinstance(step.loop, While):
            conditions.append(step.loop.condition)
            if step.loop.condition.text.strip() in self.ALWAYS_TRUE:
                report.issues.append(ValidationIssue(
                    Severity.WARNING, f"Loop '{step.name}' has a condition that is always true",
                    step_name=step.name,
                    suggestion="Add a proper exit condition; the run stops at the iteration cap"))
        elif isinstance(step.loop, ForEach) and not step.loop.variable.strip():
            report.issues.append(ValidationIssue(
                Severity.ERROR, f"Loop '{step.name}' has no loop variable", step_name=step.name))

        if step.branch is not None and not step.branch.cases and step.branch.default_case is None:
            report.issues.append(ValidationIssue(
                Severity.WARNING, f"Branch '{step.name}' has no cases", step_name=step.name))

        for expression in conditions:
            try:
                parse_expression(expression.text)
            except ConditionSyntaxError as e:
                report.issues.append(ValidationIssue(
                    Severity.ERROR, f"Step '{step.name}': {e}", step_name=step.name))

    def _check_command(self, step: Step, report: ValidationReport):
        command = step.command
        if not command.strip():
            report.issues.append(ValidationIssue(
                Severity.WARNING, f"Step '{step.name}' has an empty command", step_name=step.name))
            return

        if has_unmatched_quotes(command):
            report.issues.append(ValidationIssue(
                Severity.ERROR, f"Step '{step.name}' has unmatched quotes", step_name=step.name,
                suggestion="Check that all quotes are properly matched"))

        check = check_command(command)
        if check.requires_approval and not step.require_approval:
            report.issues.append(ValidationIssue(
                Severity.WARNING,
                f"Step '{step.name}' runs a risky command without approval: {'; '.join(check.reasons)}",
                step_name=step.name,
                suggestion="Set require_approval on this step"))

    def _check_templates(self, workflow: Workflow, report: ValidationReport):
        declared = {v.name for v in workflow.variables}
        bound = runtime_bound_variables(workflow.steps)
        used: Set[str] = set()

        for step in iter_steps(workflow.steps):
            texts = [step.command]
            if step.conditional is not None:
                texts.append(step.conditional.condition.text)
            if step.branch is not None:
                used.add(step.branch.variable)
                texts.extend(case.value for case in step.branch.cases)
            if isinstance(step.loop, ForEach):
                texts.append(step.loop.values_source)
            elif isinstance(step.loop, While):
                texts.append(step.loop.condition.text)

            for text in texts:
                for name in TemplateResolver.extract_variables(text):
                    used.add(name)
                    if name not in declared and name not in bound:
                        report.issues.append(ValidationIssue(
                            Severity.WARNING,
                            f"Variable '{name}' is used in step '{step.name}' but not defined",
                            step_name=step.name,
                            suggestion=f"Add variable '{name}' to workflow variables"))
                # Shell references to declared variables count as uses
                used.update(SHELL_REFERENCE.findall(text or ""))

        for name in sorted(declared - used):
            report.issues.append(ValidationIssue(
                Severity.INFO, f"Variable '{name}' is defined but never used",
                suggestion="Consider removing unused variables"))


SHELL_REFERENCE = re.compile(r'\$\{?([A-Za-z_][A-Za-z0-9_]*)')


def has_unmatched_quotes(command: str) -> bool:
    """Check for an unterminated single or double quote."""
    quote = None
    escaped = False
    for ch in command:
        if escaped:
            escaped = False
            continue
        if ch == '\\' and quote != "'":
            escaped = True
        elif quote is None and ch in ('"', "'"):
            quote = ch
        elif ch == quote:
            quote = None
    return quote is not None
