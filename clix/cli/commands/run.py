"""Run command implementation."""

import json
import logging
import os
import sys
from argparse import Namespace
from pathlib import Path
from typing import Dict

from clix.exceptions import WorkflowValidationError
from clix.loader import WorkflowLoader
from clix.prompts import ConsolePrompter, NonInteractivePrompter, Prompter
from clix.state import RunStateManager, StepRecord
from clix.workflow.executor import RunOutcome, WorkflowExecutor


logger = logging.getLogger(__name__)

DEFAULT_STATE_DIR = Path('.clix') / 'runs'


def configure_logging(args: Namespace):
    """Set up root logging from the --log-level/--debug/--verbose/--quiet flags."""
    log_level = getattr(logging, args.log_level.upper())
    if args.debug:
        log_level = logging.DEBUG
    elif args.quiet:
        log_level = logging.ERROR
    elif args.verbose:
        log_level = logging.INFO

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


def parse_assignments(items, label: str = "variable") -> Dict[str, str]:
    """Parse KEY=VALUE pairs."""
    values = {}
    for item in items or []:
        if '=' not in item:
            raise ValueError(f"Invalid {label} format: {item}. Expected KEY=VALUE")
        key, value = item.split('=', 1)
        values[key] = value
    return values


def parse_variables(args: Namespace) -> Dict[str, str]:
    """Collect variable overrides from --var-file and --var (the latter wins)."""
    variables = {}

    if args.var_file:
        var_file = Path(args.var_file)
        if not var_file.exists():
            raise FileNotFoundError(f"Variable file not found: {var_file}")

        with open(var_file, 'r') as f:
            file_vars = json.load(f)
            if not isinstance(file_vars, dict):
                raise ValueError(f"Variable file must contain a JSON object, got {type(file_vars).__name__}")

            for key, value in file_vars.items():
                variables[str(key)] = str(value)

    variables.update(parse_assignments(args.var))
    return variables


def create_prompter(args: Namespace) -> Prompter:
    if args.non_interactive or not sys.stdin.isatty():
        return NonInteractivePrompter(auto_approve=args.yes)
    return ConsolePrompter(auto_approve=args.yes)


def print_step_output(record: StepRecord):
    """Echo a finished step's output to the terminal."""
    if record.stdout:
        sys.stdout.write(record.stdout)
        if not record.stdout.endswith('\n'):
            sys.stdout.write('\n')
        sys.stdout.flush()
    if record.stderr:
        sys.stderr.write(record.stderr)
        if not record.stderr.endswith('\n'):
            sys.stderr.write('\n')
        sys.stderr.flush()


def exit_code_for(outcome: RunOutcome) -> int:
    """Map a run outcome to the process exit code."""
    if outcome.status == "completed":
        return 0
    code = outcome.exit_code
    if outcome.status == "failed" and code < 0:
        # Killed by a signal
        return 128 - code
    return code % 256


def run_workflow(args: Namespace) -> int:
    """Load, resolve and run a workflow."""
    configure_logging(args)

    try:
        workflow_path = Path(args.workflow).resolve()
        if not workflow_path.exists():
            logger.error(f"Workflow file not found: {workflow_path}")
            return 1

        logger.info(f"Loading workflow: {workflow_path}")
        try:
            workflow = WorkflowLoader().load(workflow_path)
        except WorkflowValidationError as e:
            for error in e.errors:
                location = f" at {error.path}" if error.path else ""
                logger.error(f"Validation error{location}: {error.message}")
            return e.exit_code

        overrides = parse_variables(args)

        state_manager = None
        if not args.no_record:
            state_dir = Path(args.state_dir) if args.state_dir else Path.cwd() / DEFAULT_STATE_DIR
            state_manager = RunStateManager(state_dir)

        executor = WorkflowExecutor(
            workflow=workflow,
            prompter=create_prompter(args),
            state_manager=state_manager,
            shell=args.shell or os.environ.get('CLIX_SHELL'),
            max_loop_iterations=args.max_loop_iterations,
            on_step=print_step_output
        )

        result = executor.run(profile_name=args.profile, overrides=overrides)
        outcome = result.outcome

        if result.run_id:
            logger.info(f"Run log: {state_manager.state_file}")

        if outcome.status == "failed":
            where = f" at step '{outcome.step_name}'" if outcome.step_name else ""
            print(f"Workflow '{workflow.name}' failed{where}: {outcome.error}", file=sys.stderr)
        elif outcome.status == "returned":
            logger.info(f"Workflow '{workflow.name}' returned {outcome.exit_code}")

        return exit_code_for(outcome)

    except FileNotFoundError as e:
        logger.error(f"File not found: {e}")
        return 1
    except ValueError as e:
        logger.error(f"Validation error: {e}")
        return 2
    except Exception as e:
        logger.error(f"Unexpected error: {e}", exc_info=True)
        return 1
