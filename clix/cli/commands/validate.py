"""Validate command implementation."""

import logging
from argparse import Namespace
from pathlib import Path

from clix.exceptions import WorkflowValidationError
from clix.loader import WorkflowLoader
from clix.workflow.validator import Severity, WorkflowValidator

from .run import configure_logging


logger = logging.getLogger(__name__)


def validate_workflow(args: Namespace) -> int:
    """
    Load a workflow and run the static checks.

    Returns:
        0 when no error-level issue was found, 2 otherwise
    """
    configure_logging(args)

    workflow_path = Path(args.workflow)
    if not workflow_path.exists():
        logger.error(f"Workflow file not found: {workflow_path}")
        return 1

    try:
        workflow = WorkflowLoader().load(workflow_path)
    except WorkflowValidationError as e:
        for error in e.errors:
            location = f"{error.path}: " if error.path else ""
            print(f"[error] {location}{error.message}")
        return e.exit_code

    report = WorkflowValidator().validate(workflow)
    for severity in (Severity.ERROR, Severity.WARNING, Severity.INFO):
        for issue in report.by_severity(severity):
            where = f"{issue.step_name}: " if issue.step_name else ""
            print(f"[{severity.value}] {where}{issue.message}")

    errors = len(report.by_severity(Severity.ERROR))
    warnings = len(report.by_severity(Severity.WARNING))
    status = "valid" if report.is_valid else "invalid"
    print(f"Workflow '{workflow.name}' is {status} ({errors} errors, {warnings} warnings)")
    return 0 if report.is_valid else 2
