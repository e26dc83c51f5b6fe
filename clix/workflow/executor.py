"""
Workflow executor.
Walks a workflow's step tree against one shell session and a run-scoped
variable map, honoring approval gates, continue_on_error and early returns.
"""

import logging
import re
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Literal, Optional

from ..exceptions import (
    CanceledByUserError,
    ClixError,
    LoopDidNotTerminateError,
    StepFailedError,
)
from ..exec.shell_session import ShellSession, is_shell_identifier
from ..models import ActionKind, Expression, ForEach, Step, StepKind, While, Workflow
from ..prompts import NonInteractivePrompter, Prompter
from ..state import RunStateManager, StepRecord
from ..variables.resolver import VariableResolver
from ..variables.substitution import TemplateResolver
from .conditions import ExpressionEvaluator

logger = logging.getLogger(__name__)


OutcomeStatus = Literal["completed", "returned", "failed"]


@dataclass
class RunOutcome:
    """Terminal outcome of a run."""
    status: OutcomeStatus
    exit_code: int = 0
    step_name: Optional[str] = None
    error: Optional[ClixError] = None

    @classmethod
    def completed(cls) -> "RunOutcome":
        return cls("completed")

    @classmethod
    def early_return(cls, exit_code: int, step_name: Optional[str] = None) -> "RunOutcome":
        return cls("returned", exit_code=exit_code, step_name=step_name)

    @classmethod
    def failed(cls, step_name: Optional[str], error: ClixError) -> "RunOutcome":
        return cls("failed", exit_code=error.exit_code, step_name=step_name, error=error)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"status": self.status, "exit_code": self.exit_code}
        if self.step_name:
            result["step"] = self.step_name
        if self.error is not None:
            result["error"] = {"type": self.error.kind, "message": str(self.error)}
        return result


@dataclass
class RunResult:
    """Outcome plus the per-step log of a run."""
    outcome: RunOutcome
    steps: List[StepRecord] = field(default_factory=list)
    variables: Dict[str, str] = field(default_factory=dict)
    run_id: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.outcome.status == "completed"


class _EarlyReturn(Exception):
    """Unwinds the step tree for a Return or Break action."""

    def __init__(self, exit_code: int, step_name: str):
        self.exit_code = exit_code
        self.step_name = step_name
        super().__init__(f"Early return {exit_code} from '{step_name}'")


class _StepFailure(Exception):
    """Unwinds the step tree carrying the innermost failing step."""

    def __init__(self, step_name: str, error: ClixError):
        self.step_name = step_name
        self.error = error
        super().__init__(str(error))


class WorkflowExecutor:
    """
    Step interpreter.
    Each call to run() gets a fresh shell session and variable map.
    """

    DEFAULT_MAX_LOOP_ITERATIONS = 1000

    # $(...) or `...` spanning the whole for-each source
    COMMAND_SUBSTITUTION = re.compile(r'^\s*(?:\$\((?P<paren>.*)\)|`(?P<tick>.*)`)\s*$', re.DOTALL)
    NEEDS_EXPANSION = re.compile(r'[$*?\[]')

    def __init__(
        self,
        workflow: Workflow,
        prompter: Optional[Prompter] = None,
        state_manager: Optional[RunStateManager] = None,
        shell: Optional[str] = None,
        cwd: Optional[Path] = None,
        env: Optional[Dict[str, str]] = None,
        max_loop_iterations: int = DEFAULT_MAX_LOOP_ITERATIONS,
        on_step: Optional[Callable[[StepRecord], None]] = None
    ):
        """
        Initialize workflow executor.

        Args:
            workflow: Workflow to run
            prompter: Interactive callbacks (default: non-interactive, no auto-approval)
            state_manager: Optional run log writer
            shell: Shell binary for the session
            cwd: Initial working directory
            env: Initial environment
            max_loop_iterations: Iteration cap for while loops
            on_step: Called with each step record as soon as the command finished
        """
        self.workflow = workflow
        self.prompter = prompter or NonInteractivePrompter()
        self.state_manager = state_manager
        self.shell = shell
        self.cwd = cwd
        self.env = env
        self.max_loop_iterations = max_loop_iterations
        self.on_step = on_step

        self.templates = TemplateResolver()
        self.resolver = VariableResolver(self.prompter)

        # Run state, reset by run()
        self.variables: Dict[str, str] = {}
        self.records: List[StepRecord] = []
        self.session: Optional[ShellSession] = None
        self.evaluator: Optional[ExpressionEvaluator] = None

    def run(self, profile_name: Optional[str] = None,
            overrides: Optional[Dict[str, str]] = None) -> RunResult:
        """
        Execute the workflow.

        Args:
            profile_name: Profile supplying variable values
            overrides: Explicit variable values (highest precedence)

        Returns:
            RunResult with the outcome and the step log
        """
        self.records = []
        self.variables = {}
        logger.info(f"Running workflow: {self.workflow.name}")

        try:
            self.variables = self.resolver.resolve_workflow(self.workflow, profile_name, overrides)
        except ClixError as e:
            logger.error(f"Variable resolution failed: {e}")
            return self._finish(RunOutcome.failed(None, e), initialize=True)

        if self.state_manager is not None:
            self.state_manager.initialize(self.workflow.name, self.variables)

        try:
            with ShellSession(shell=self.shell, cwd=self.cwd, env=self.env) as session:
                self.session = session
                self.evaluator = ExpressionEvaluator(session)
                for name, value in self.variables.items():
                    self._export(name, value)
                self._execute_steps(self.workflow.steps, prefix=None)
            outcome = RunOutcome.completed()
        except _EarlyReturn as r:
            logger.info(f"Workflow returned early with exit code {r.exit_code} at step '{r.step_name}'")
            outcome = RunOutcome.early_return(r.exit_code, r.step_name)
        except _StepFailure as f:
            logger.error(f"Workflow failed at step '{f.step_name}': {f.error}")
            outcome = RunOutcome.failed(f.step_name, f.error)
        except ClixError as e:
            # Session could not be started
            logger.error(f"Workflow failed: {e}")
            outcome = RunOutcome.failed(None, e)
        finally:
            self.session = None
            self.evaluator = None

        if outcome.status == "completed":
            logger.info(f"Workflow '{self.workflow.name}' completed")
        return self._finish(outcome)

    def _finish(self, outcome: RunOutcome, initialize: bool = False) -> RunResult:
        run_id = None
        if self.state_manager is not None:
            if initialize:
                self.state_manager.initialize(self.workflow.name, self.variables)
            self.state_manager.finish(outcome.status, outcome.to_dict())
            run_id = self.state_manager.run_id
        return RunResult(outcome=outcome, steps=list(self.records),
                         variables=dict(self.variables), run_id=run_id)

    @staticmethod
    def _record_name(prefix: Optional[str], step: Step) -> str:
        """Record names nest as Parent.Child, loop bodies as Loop[i].Child."""
        return f"{prefix}.{step.name}" if prefix else step.name

    def _execute_steps(self, steps: List[Step], prefix: Optional[str]):
        for step in steps:
            self._execute_step(step, self._record_name(prefix, step))

    def _execute_step(self, step: Step, path: str):
        logger.info(f"Executing step: {path}")
        try:
            if step.require_approval:
                self._approve(step, path)

            if step.kind in (StepKind.COMMAND, StepKind.AUTH):
                self._execute_command(step, path)
            elif step.kind == StepKind.CONDITIONAL:
                self._execute_conditional(step, path)
            elif step.kind == StepKind.BRANCH:
                self._execute_branch(step, path)
            elif isinstance(step.loop, ForEach):
                self._execute_for_each(step, path)
            elif isinstance(step.loop, While):
                self._execute_while(step, path)
            else:
                raise ValueError(f"Step '{path}' has kind {step.kind} but no payload")
        except ClixError as e:
            raise _StepFailure(path, e) from e

    def _approve(self, step: Step, path: str):
        # Unresolved tokens are shown as written; strict substitution happens afterwards
        shown = self.templates.try_substitute(step.command, self.variables)
        if not self.prompter.confirm(step, shown):
            logger.warning(f"Step '{path}' was not approved")
            raise CanceledByUserError(path)
        logger.info(f"Step '{path}' approved")

    def _execute_command(self, step: Step, path: str):
        assert self.session is not None
        command = self.templates.substitute(step.command, self.variables)
        logger.debug(f"Command for '{path}': {command}")

        result = self.session.run(command)
        self._sync_from_shell()
        record = StepRecord(
            name=path,
            command=command,
            stdout=result.stdout,
            stderr=result.stderr,
            exit_code=result.exit_code,
            duration_ms=result.duration_ms,
        )
        self.records.append(record)
        if self.state_manager is not None:
            self.state_manager.record_step(record)
        if self.on_step is not None:
            self.on_step(record)

        if result.exit_code != 0:
            if step.continue_on_error:
                logger.warning(f"Step '{path}' failed with exit code {result.exit_code}. "
                               f"Continuing due to continue_on_error")
            else:
                logger.error(f"Step '{path}' failed with exit code {result.exit_code}")
                raise StepFailedError(path, result.exit_code)

        if step.kind == StepKind.AUTH:
            self.prompter.wait_for_ack(step)

    def _evaluate(self, expression: Expression, path: str) -> bool:
        assert self.evaluator is not None
        text = self.templates.substitute(expression.text, self.variables)
        result = self.evaluator.evaluate(Expression(text, expression.capture_variable), self.variables)
        self._sync_from_shell()
        logger.info(f"Condition for '{path}' ({text}) is {result.truth}")

        if expression.capture_variable:
            self._bind(expression.capture_variable, result.captured_value or "")
        return result.truth

    def _execute_conditional(self, step: Step, path: str):
        assert self.session is not None
        conditional = step.conditional
        assert conditional is not None

        if self._evaluate(conditional.condition, path):
            self._execute_steps(conditional.then_steps, path)
        elif conditional.else_steps is not None:
            self._execute_steps(conditional.else_steps, path)

        action = conditional.action
        if action is None or not action.terminates:
            return
        if action.kind == ActionKind.RETURN:
            raise _EarlyReturn(action.exit_code, path)
        raise _EarlyReturn(self.session.last_exit_code, path)

    def _execute_branch(self, step: Step, path: str):
        assert self.session is not None
        branch = step.branch
        assert branch is not None

        self._sync_from_shell()
        value = self.variables.get(branch.variable)
        if value is None:
            value = self.session.env.get(branch.variable, "")

        for case in branch.cases:
            if self.templates.substitute(case.value, self.variables) == value:
                logger.info(f"Branch '{path}' matched case '{case.value}'")
                self._execute_steps(case.steps, path)
                return

        if branch.default_case is not None:
            logger.info(f"Branch '{path}' using default case for value '{value}'")
            self._execute_steps(branch.default_case, path)
        else:
            logger.info(f"Branch '{path}' has no case for value '{value}'")

    def _execute_for_each(self, step: Step, path: str):
        loop = step.loop
        assert isinstance(loop, ForEach)

        source = self.templates.substitute(loop.values_source, self.variables)
        items = self._loop_items(source, path)
        logger.info(f"Loop '{path}' iterating over {len(items)} items")

        for index, item in enumerate(items):
            self._bind(loop.variable, item)
            try:
                self._execute_steps(loop.steps, f"{path}[{index}]")
            except _StepFailure as f:
                if step.continue_on_error and isinstance(f.error, StepFailedError):
                    logger.warning(f"Iteration {index} of '{path}' failed at '{f.step_name}'. "
                                   f"Continuing due to continue_on_error")
                    continue
                raise

    def _loop_items(self, source: str, path: str) -> List[str]:
        """
        Materialize the items of a for-each loop.

        $(cmd) and `cmd` run the command and split its stdout on whitespace;
        other sources with variables or globs are expanded by the shell;
        everything else is split like shell words.
        """
        assert self.session is not None
        if not source.strip():
            return []

        match = self.COMMAND_SUBSTITUTION.match(source)
        if match:
            command = match.group('paren') if match.group('paren') is not None else match.group('tick')
            result = self.session.run(command)
            if result.exit_code != 0:
                raise StepFailedError(path, result.exit_code)
            return result.stdout.split()

        if self.NEEDS_EXPANSION.search(source):
            result = self.session.run(f"printf '%s\\n' {source}", track_status=False)
            return [line for line in result.stdout.splitlines() if line]

        try:
            return shlex.split(source)
        except ValueError:
            return source.split()

    def _execute_while(self, step: Step, path: str):
        loop = step.loop
        assert isinstance(loop, While)

        iteration = 0
        while self._evaluate(loop.condition, path):
            if iteration >= self.max_loop_iterations:
                logger.error(f"Loop '{path}' exceeded {self.max_loop_iterations} iterations")
                raise LoopDidNotTerminateError(path, self.max_loop_iterations)
            self._execute_steps(loop.steps, f"{path}[{iteration}]")
            iteration += 1

        logger.info(f"Loop '{path}' finished after {iteration} iterations")

    def _bind(self, name: str, value: str):
        """Set a run-scoped variable and mirror it into the shell."""
        self.variables[name] = value
        self._export(name, value)

    def _sync_from_shell(self):
        """Pull shell-side changes to run-scoped variables back into the map."""
        assert self.session is not None
        env = self.session.env
        for name in list(self.variables):
            if is_shell_identifier(name) and name in env and env[name] != self.variables[name]:
                logger.debug(f"Variable '{name}' changed in the shell")
                self.variables[name] = env[name]

    def _export(self, name: str, value: str):
        assert self.session is not None
        if is_shell_identifier(name):
            self.session.export(name, value)
        else:
            logger.debug(f"Not exporting '{name}': not a shell identifier")


def run_workflow(workflow: Workflow, profile_name: Optional[str] = None,
                 overrides: Optional[Dict[str, str]] = None, **kwargs) -> RunResult:
    """Run a workflow with a one-off executor."""
    return WorkflowExecutor(workflow, **kwargs).run(profile_name, overrides)
