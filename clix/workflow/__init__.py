"""Workflow execution: condition evaluation, the step interpreter and static validation."""

from .conditions import EvaluationResult, ExpressionEvaluator, parse_expression
from .executor import RunOutcome, RunResult, WorkflowExecutor, run_workflow
from .validator import Severity, ValidationIssue, ValidationReport, WorkflowValidator

__all__ = [
    'EvaluationResult',
    'ExpressionEvaluator',
    'parse_expression',
    'RunOutcome',
    'RunResult',
    'WorkflowExecutor',
    'run_workflow',
    'Severity',
    'ValidationIssue',
    'ValidationReport',
    'WorkflowValidator',
]
