"""Workflow loader with strict validation of the definition file."""

import json
import re
import shlex
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Union

import yaml

from clix.exceptions import ValidationError, WorkflowValidationError
from clix.models import (
    Action,
    Branch,
    BranchCase,
    Conditional,
    Expression,
    ForEach,
    Profile,
    Step,
    StepKind,
    Variable,
    While,
    Workflow,
)


class PreservingLoader(yaml.SafeLoader):
    """YAML loader that keeps yes/no/on/off as strings so case labels stay intact."""
    pass


# Remove the implicit bool resolvers registered under y/Y/n/N/o/O; true/false keep working
PreservingLoader.yaml_implicit_resolvers = dict(PreservingLoader.yaml_implicit_resolvers)
for _first in ('y', 'Y', 'n', 'N', 'o', 'O'):
    if _first in PreservingLoader.yaml_implicit_resolvers:
        PreservingLoader.yaml_implicit_resolvers[_first] = [
            (tag, regexp) for tag, regexp in PreservingLoader.yaml_implicit_resolvers[_first]
            if tag != 'tag:yaml.org,2002:bool'
        ]


class WorkflowLoader:
    """Loads a workflow definition (YAML or JSON) and validates every field."""

    SUPPORTED_VERSIONS = {"1"}
    IDENTIFIER = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$')

    TOP_LEVEL_FIELDS = {'version', 'name', 'description', 'tags', 'variables', 'profiles', 'steps'}
    STEP_FIELDS = {
        'name', 'description', 'type', 'command', 'continue_on_error', 'require_approval',
        'condition', 'then', 'else', 'action', 'branch', 'for_each', 'while',
    }
    CONTROL_FIELDS = {
        'condition': StepKind.CONDITIONAL,
        'branch': StepKind.BRANCH,
        'for_each': StepKind.LOOP,
        'while': StepKind.LOOP,
    }

    def __init__(self):
        self.errors: List[ValidationError] = []

    def load(self, workflow_path: Path) -> Workflow:
        """Load and validate a workflow file.

        Raises:
            WorkflowValidationError: With every problem found in the file
        """
        self.errors = []
        try:
            with open(workflow_path, 'r') as f:
                data = yaml.load(f, Loader=PreservingLoader)
        except (OSError, yaml.YAMLError) as e:
            self._add_error(f"Failed to load workflow: {e}")
            self._raise_validation_errors()

        return self.load_data(data)

    def load_text(self, text: str) -> Workflow:
        """Load and validate a workflow from YAML/JSON text."""
        self.errors = []
        try:
            data = yaml.load(text, Loader=PreservingLoader)
        except yaml.YAMLError as e:
            self._add_error(f"Failed to parse workflow: {e}")
            self._raise_validation_errors()
        return self.load_data(data)

    def load_data(self, data: Any) -> Workflow:
        """Validate an already parsed document and build the Workflow."""
        self.errors = []
        if data is None or not isinstance(data, dict):
            self._add_error("Workflow must be a YAML object/dictionary")
            self._raise_validation_errors()

        version = data.get('version')
        if version is not None:
            if not isinstance(version, str):
                self._add_error(f"'version' field must be a string, got {type(version).__name__}", "version")
            elif version not in self.SUPPORTED_VERSIONS:
                self._add_error(f"Unsupported version '{version}'. Supported: {sorted(self.SUPPORTED_VERSIONS)}",
                                "version")

        for key in data.keys():
            if key not in self.TOP_LEVEL_FIELDS:
                self._add_error(f"Unknown field '{key}'", str(key))

        name = data.get('name')
        if not isinstance(name, str) or not name.strip():
            self._add_error("'name' field is required and must be a non-empty string", "name")
            name = ""

        description = self._string(data.get('description', ""), "description")
        tags = self._tags(data.get('tags', []))
        variables = self._variables(data.get('variables', []))
        profiles = self._profiles(data.get('profiles', []))

        steps_data = data.get('steps')
        if not steps_data:
            self._add_error("'steps' field is required and must not be empty", "steps")
            steps: List[Step] = []
        else:
            steps = self._steps(steps_data, "steps")

        if self.errors:
            self._raise_validation_errors()

        return Workflow(
            name=name,
            description=description,
            steps=steps,
            variables=variables,
            profiles=profiles,
            tags=tags,
        )

    def _string(self, value: Any, path: str) -> str:
        if value is None:
            return ""
        if not isinstance(value, str):
            self._add_error(f"must be a string, got {type(value).__name__}", path)
            return ""
        return value

    def _scalar(self, value: Any, path: str) -> Optional[str]:
        """Accept strings and numbers as string values."""
        if isinstance(value, str):
            return value
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        self._add_error(f"must be a string or number, got {type(value).__name__}", path)
        return None

    def _bool(self, value: Any, path: str) -> bool:
        if not isinstance(value, bool):
            self._add_error(f"must be true or false, got {value!r}", path)
            return False
        return value

    def _tags(self, tags: Any) -> List[str]:
        if not isinstance(tags, list):
            self._add_error("'tags' must be a list of strings", "tags")
            return []
        result = []
        for i, tag in enumerate(tags):
            if not isinstance(tag, str) or not tag:
                self._add_error("must be a non-empty string", f"tags[{i}]")
            else:
                result.append(tag)
        return result

    def _variables(self, variables: Any) -> List[Variable]:
        if not isinstance(variables, list):
            self._add_error("'variables' must be a list", "variables")
            return []

        result: List[Variable] = []
        seen: Set[str] = set()
        for i, entry in enumerate(variables):
            path = f"variables[{i}]"
            if not isinstance(entry, dict):
                self._add_error("variable must be a dictionary", path)
                continue
            for key in entry:
                if key not in ('name', 'description', 'default', 'required'):
                    self._add_error(f"Unknown field '{key}'", path)

            name = entry.get('name')
            if not isinstance(name, str) or not name.strip():
                self._add_error("variable 'name' is required", path)
                continue
            if name in seen:
                self._add_error(f"Duplicate variable name '{name}'", path)
                continue
            seen.add(name)

            default = None
            if entry.get('default') is not None:
                default = self._scalar(entry['default'], f"{path}.default")
            required = self._bool(entry.get('required', False), f"{path}.required")

            result.append(Variable(
                name=name,
                description=self._string(entry.get('description', ""), f"{path}.description"),
                default_value=default,
                required=required,
            ))
        return result

    def _profiles(self, profiles: Any) -> List[Profile]:
        if not isinstance(profiles, list):
            self._add_error("'profiles' must be a list", "profiles")
            return []

        result: List[Profile] = []
        seen: Set[str] = set()
        for i, entry in enumerate(profiles):
            path = f"profiles[{i}]"
            if not isinstance(entry, dict):
                self._add_error("profile must be a dictionary", path)
                continue
            for key in entry:
                if key not in ('name', 'description', 'values'):
                    self._add_error(f"Unknown field '{key}'", path)

            name = entry.get('name')
            if not isinstance(name, str) or not name.strip():
                self._add_error("profile 'name' is required", path)
                continue
            if name in seen:
                self._add_error(f"Duplicate profile name '{name}'", path)
            seen.add(name)

            values_data = entry.get('values', {})
            values: Dict[str, str] = {}
            if not isinstance(values_data, dict):
                self._add_error("'values' must be a dictionary", f"{path}.values")
            else:
                for key, value in values_data.items():
                    scalar = self._scalar(value, f"{path}.values.{key}")
                    if scalar is not None:
                        values[str(key)] = scalar

            result.append(Profile(
                name=name,
                description=self._string(entry.get('description', ""), f"{path}.description"),
                values=values,
            ))
        return result

    def _steps(self, steps: Any, path: str) -> List[Step]:
        """Validate and build a step list."""
        if not isinstance(steps, list):
            self._add_error("must be a list of steps", path)
            return []

        result: List[Step] = []
        step_names: Set[str] = set()
        for i, data in enumerate(steps):
            step_path = f"{path}[{i}]"
            step = self._step(data, step_path)
            if step is None:
                continue
            if step.name in step_names:
                self._add_error(f"Duplicate step name '{step.name}'", step_path)
            step_names.add(step.name)
            result.append(step)
        return result

    def _step(self, data: Any, path: str) -> Optional[Step]:
        if not isinstance(data, dict):
            self._add_error("step must be a dictionary", path)
            return None

        for key in data.keys():
            if key not in self.STEP_FIELDS:
                self._add_error(f"Unknown field '{key}'", path)

        name = data.get('name')
        if not isinstance(name, str) or not name.strip():
            self._add_error("step 'name' is required and must be a non-empty string", path)
            name = f"<step {path}>"

        controls = [field for field in self.CONTROL_FIELDS if field in data]
        if len(controls) > 1:
            self._add_error(f"Step '{name}': mutually exclusive fields {controls}", path)

        inferred = self.CONTROL_FIELDS[controls[0]] if controls else StepKind.COMMAND
        kind = inferred
        if 'type' in data:
            try:
                kind = StepKind(data['type'])
            except ValueError:
                self._add_error(f"Step '{name}': unknown type '{data['type']}'", f"{path}.type")
            else:
                # auth is a command step with an acknowledgement pause
                compatible = kind == inferred or (kind == StepKind.AUTH and inferred == StepKind.COMMAND)
                if not compatible:
                    self._add_error(f"Step '{name}': type '{kind.value}' does not match its fields", f"{path}.type")
                    kind = inferred

        if 'condition' not in data:
            for field in ('then', 'else', 'action'):
                if field in data:
                    self._add_error(f"Step '{name}': '{field}' requires 'condition'", path)

        step = Step(
            name=name,
            command=self._string(data.get('command', ""), f"{path}.command"),
            description=self._string(data.get('description', ""), f"{path}.description"),
            continue_on_error=self._bool(data.get('continue_on_error', False), f"{path}.continue_on_error"),
            require_approval=self._bool(data.get('require_approval', False), f"{path}.require_approval"),
            kind=kind,
        )

        if kind in (StepKind.COMMAND, StepKind.AUTH) and not step.command.strip():
            self._add_error(f"Step '{name}': 'command' is required", path)

        if 'condition' in data:
            self._conditional(step, data, path)
        elif 'branch' in data:
            self._branch(step, data['branch'], f"{path}.branch")
        elif 'for_each' in data:
            self._for_each(step, data['for_each'], f"{path}.for_each")
        elif 'while' in data:
            self._while(step, data['while'], f"{path}.while")

        return step

    def _expression(self, value: Any, path: str) -> Expression:
        if isinstance(value, str):
            if not value.strip():
                self._add_error("condition must not be empty", path)
            return Expression(value)

        if isinstance(value, dict):
            for key in value:
                if key not in ('expression', 'capture'):
                    self._add_error(f"Unknown field '{key}'", path)
            text = value.get('expression')
            if not isinstance(text, str) or not text.strip():
                self._add_error("'expression' is required", path)
                text = ""
            capture = value.get('capture')
            if capture is not None and (not isinstance(capture, str) or not self.IDENTIFIER.match(capture)):
                self._add_error(f"'capture' must be a variable name, got {capture!r}", f"{path}.capture")
                capture = None
            return Expression(text, capture)

        self._add_error("condition must be a string or {expression, capture}", path)
        return Expression("")

    def _conditional(self, step: Step, data: Dict[str, Any], path: str):
        condition = self._expression(data['condition'], f"{path}.condition")
        then_steps = self._steps(data.get('then', []) or [], f"{path}.then")
        else_steps = None
        if 'else' in data:
            else_steps = self._steps(data['else'] or [], f"{path}.else")

        action = None
        if 'action' in data:
            try:
                action = Action.parse(data['action'])
            except ValueError as e:
                self._add_error(str(e), f"{path}.action")

        step.conditional = Conditional(condition, then_steps, else_steps, action)

    def _branch(self, step: Step, data: Any, path: str):
        if not isinstance(data, dict):
            self._add_error("branch must be a dictionary", path)
            return
        for key in data:
            if key not in ('variable', 'cases', 'default'):
                self._add_error(f"Unknown field '{key}'", path)

        variable = data.get('variable')
        if not isinstance(variable, str) or not variable.strip():
            self._add_error("'variable' is required", path)
            variable = ""

        cases: List[BranchCase] = []
        cases_data = data.get('cases', [])
        if not isinstance(cases_data, list):
            self._add_error("'cases' must be a list", f"{path}.cases")
            cases_data = []
        for i, case in enumerate(cases_data):
            case_path = f"{path}.cases[{i}]"
            if not isinstance(case, dict) or 'value' not in case:
                self._add_error("case must be a dictionary with 'value' and 'steps'", case_path)
                continue
            for key in case:
                if key not in ('value', 'steps'):
                    self._add_error(f"Unknown field '{key}'", case_path)
            value = self._scalar(case['value'], f"{case_path}.value")
            steps = self._steps(case.get('steps', []) or [], f"{case_path}.steps")
            if value is not None:
                cases.append(BranchCase(value, steps))

        default_case = None
        if 'default' in data:
            default_case = self._steps(data['default'] or [], f"{path}.default")

        step.branch = Branch(variable, cases, default_case)

    def _for_each(self, step: Step, data: Any, path: str):
        if not isinstance(data, dict):
            self._add_error("for_each must be a dictionary", path)
            return
        for key in data:
            if key not in ('variable', 'values', 'steps'):
                self._add_error(f"Unknown field '{key}'", path)

        variable = data.get('variable')
        if not isinstance(variable, str) or not self.IDENTIFIER.match(variable):
            self._add_error(f"'variable' must be a variable name, got {variable!r}", f"{path}.variable")
            variable = ""

        values = data.get('values', "")
        if isinstance(values, list):
            # Literal lists become a shell-quoted word list
            items = [self._scalar(v, f"{path}.values[{i}]") for i, v in enumerate(values)]
            source = ' '.join(shlex.quote(item) for item in items if item is not None)
        else:
            source = self._scalar(values, f"{path}.values") or ""

        steps = self._steps(data.get('steps', []) or [], f"{path}.steps")
        step.loop = ForEach(variable, source, steps)

    def _while(self, step: Step, data: Any, path: str):
        if not isinstance(data, dict):
            self._add_error("while must be a dictionary", path)
            return
        for key in data:
            if key not in ('condition', 'steps'):
                self._add_error(f"Unknown field '{key}'", path)
        if 'condition' not in data:
            self._add_error("'condition' is required", path)

        condition = self._expression(data.get('condition', ""), f"{path}.condition")
        steps = self._steps(data.get('steps', []) or [], f"{path}.steps")
        step.loop = While(condition, steps)

    def _add_error(self, message: str, path: str = "", exit_code: int = 2):
        """Add validation error."""
        self.errors.append(ValidationError(message, path, exit_code))

    def _raise_validation_errors(self):
        """Raise WorkflowValidationError with accumulated errors."""
        raise WorkflowValidationError(self.errors)


def load_workflow(path: Union[str, Path]) -> Workflow:
    """Load a workflow file with a fresh loader."""
    return WorkflowLoader().load(Path(path))


def dump_workflow(workflow: Workflow, fmt: str = "yaml") -> str:
    """Serialize a workflow to YAML (default) or JSON text."""
    data = workflow.to_dict()
    data = {"version": "1", **data}
    if fmt == "json":
        return json.dumps(data, indent=2) + "\n"
    return yaml.safe_dump(data, sort_keys=False, default_flow_style=False, allow_unicode=True)
