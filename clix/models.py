"""Workflow data model.

Steps form a tree: Conditional, Branch and Loop steps own their child step
lists. Records here are read-only during a run; run-time values live in the
executor's variable map.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Union


class StepKind(str, Enum):
    """Step variants."""
    COMMAND = "command"
    AUTH = "auth"
    CONDITIONAL = "conditional"
    BRANCH = "branch"
    LOOP = "loop"


class ActionKind(str, Enum):
    """Directives applied after a conditional block ran."""
    RUN_THEN = "run_then"
    RUN_ELSE = "run_else"
    CONTINUE = "continue"
    BREAK = "break"
    RETURN = "return"


@dataclass
class Variable:
    """Declared workflow variable."""
    name: str
    description: str = ""
    default_value: Optional[str] = None
    required: bool = False

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"name": self.name, "description": self.description}
        if self.default_value is not None:
            result["default"] = self.default_value
        result["required"] = self.required
        return result


@dataclass
class Profile:
    """Named set of variable values for one environment."""
    name: str
    description: str = ""
    values: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "description": self.description, "values": dict(self.values)}


@dataclass
class Expression:
    """Condition text plus the optional variable its result is captured into."""
    text: str
    capture_variable: Optional[str] = None

    def to_value(self) -> Union[str, Dict[str, str]]:
        if self.capture_variable:
            return {"expression": self.text, "capture": self.capture_variable}
        return self.text


@dataclass
class Action:
    """Post-block directive of a conditional step."""
    kind: ActionKind
    exit_code: int = 0

    @property
    def terminates(self) -> bool:
        """True when the action ends the whole run."""
        return self.kind in (ActionKind.BREAK, ActionKind.RETURN)

    @classmethod
    def parse(cls, value: Any) -> "Action":
        """
        Parse an action from its file representation.

        Accepts 'break', 'continue', 'run_then', 'run_else', 'return',
        'return 3' and {'return': 3}.

        Raises:
            ValueError: If the value is not a recognized action
        """
        if isinstance(value, dict):
            if len(value) != 1 or "return" not in value:
                raise ValueError(f"Invalid action mapping: {value}")
            return cls(ActionKind.RETURN, cls._parse_code(value["return"]))

        if not isinstance(value, str):
            raise ValueError(f"Invalid action: {value!r}")

        parts = value.strip().split()
        if not parts:
            raise ValueError("Empty action")

        word = parts[0].lower()
        if word == "return":
            if len(parts) > 2:
                raise ValueError(f"Invalid action: {value!r}")
            code = cls._parse_code(parts[1]) if len(parts) == 2 else 0
            return cls(ActionKind.RETURN, code)

        if len(parts) != 1:
            raise ValueError(f"Invalid action: {value!r}")
        try:
            kind = ActionKind(word)
        except ValueError:
            raise ValueError(f"Unknown action '{value}'") from None
        return cls(kind)

    @staticmethod
    def _parse_code(value: Any) -> int:
        if isinstance(value, bool):
            raise ValueError(f"Invalid return code: {value!r}")
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ValueError(f"Invalid return code: {value!r}") from None

    def to_value(self) -> str:
        if self.kind == ActionKind.RETURN:
            return f"return {self.exit_code}"
        return self.kind.value


@dataclass
class Conditional:
    condition: Expression
    then_steps: List["Step"] = field(default_factory=list)
    else_steps: Optional[List["Step"]] = None
    action: Optional[Action] = None


@dataclass
class BranchCase:
    value: str
    steps: List["Step"] = field(default_factory=list)


@dataclass
class Branch:
    variable: str
    cases: List[BranchCase] = field(default_factory=list)
    default_case: Optional[List["Step"]] = None


@dataclass
class ForEach:
    variable: str
    values_source: str
    steps: List["Step"] = field(default_factory=list)


@dataclass
class While:
    condition: Expression
    steps: List["Step"] = field(default_factory=list)


@dataclass
class Step:
    """One node of a workflow's step tree."""
    name: str
    command: str = ""
    description: str = ""
    continue_on_error: bool = False
    require_approval: bool = False
    kind: StepKind = StepKind.COMMAND
    conditional: Optional[Conditional] = None
    branch: Optional[Branch] = None
    loop: Optional[Union[ForEach, While]] = None

    @classmethod
    def new_command(cls, name: str, command: str, description: str = "",
                    continue_on_error: bool = False, require_approval: bool = False) -> "Step":
        return cls(name=name, command=command, description=description,
                   continue_on_error=continue_on_error, require_approval=require_approval)

    @classmethod
    def new_auth(cls, name: str, command: str, description: str = "") -> "Step":
        # Auth steps never continue on error
        return cls(name=name, command=command, description=description, kind=StepKind.AUTH)

    @classmethod
    def new_conditional(cls, name: str, condition: Expression, then_steps: List["Step"],
                        else_steps: Optional[List["Step"]] = None,
                        action: Optional[Action] = None, description: str = "") -> "Step":
        return cls(
            name=name,
            description=description,
            kind=StepKind.CONDITIONAL,
            conditional=Conditional(condition, then_steps, else_steps, action),
        )

    @classmethod
    def new_branch(cls, name: str, variable: str, cases: List[BranchCase],
                   default_case: Optional[List["Step"]] = None, description: str = "") -> "Step":
        return cls(
            name=name,
            description=description,
            kind=StepKind.BRANCH,
            branch=Branch(variable, cases, default_case),
        )

    @classmethod
    def new_for_each(cls, name: str, variable: str, values_source: str, steps: List["Step"],
                     description: str = "", continue_on_error: bool = False) -> "Step":
        return cls(
            name=name,
            description=description,
            continue_on_error=continue_on_error,
            kind=StepKind.LOOP,
            loop=ForEach(variable, values_source, steps),
        )

    @classmethod
    def new_while(cls, name: str, condition: Expression, steps: List["Step"],
                  description: str = "") -> "Step":
        return cls(name=name, description=description, kind=StepKind.LOOP, loop=While(condition, steps))

    def child_blocks(self) -> Iterator[List["Step"]]:
        """Yield every nested step list owned by this step."""
        if self.conditional is not None:
            yield self.conditional.then_steps
            if self.conditional.else_steps is not None:
                yield self.conditional.else_steps
        if self.branch is not None:
            for case in self.branch.cases:
                yield case.steps
            if self.branch.default_case is not None:
                yield self.branch.default_case
        if self.loop is not None:
            yield self.loop.steps

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the workflow file representation."""
        result: Dict[str, Any] = {"name": self.name}
        if self.description:
            result["description"] = self.description
        if self.kind == StepKind.AUTH:
            result["type"] = StepKind.AUTH.value
        if self.command:
            result["command"] = self.command
        if self.continue_on_error:
            result["continue_on_error"] = True
        if self.require_approval:
            result["require_approval"] = True

        if self.conditional is not None:
            result["condition"] = self.conditional.condition.to_value()
            result["then"] = [s.to_dict() for s in self.conditional.then_steps]
            if self.conditional.else_steps is not None:
                result["else"] = [s.to_dict() for s in self.conditional.else_steps]
            if self.conditional.action is not None:
                result["action"] = self.conditional.action.to_value()
        elif self.branch is not None:
            branch: Dict[str, Any] = {
                "variable": self.branch.variable,
                "cases": [
                    {"value": case.value, "steps": [s.to_dict() for s in case.steps]}
                    for case in self.branch.cases
                ],
            }
            if self.branch.default_case is not None:
                branch["default"] = [s.to_dict() for s in self.branch.default_case]
            result["branch"] = branch
        elif isinstance(self.loop, ForEach):
            result["for_each"] = {
                "variable": self.loop.variable,
                "values": self.loop.values_source,
                "steps": [s.to_dict() for s in self.loop.steps],
            }
        elif isinstance(self.loop, While):
            result["while"] = {
                "condition": self.loop.condition.to_value(),
                "steps": [s.to_dict() for s in self.loop.steps],
            }
        return result


def iter_steps(steps: List[Step]) -> Iterator[Step]:
    """Walk a step tree depth-first in declaration order."""
    for step in steps:
        yield step
        for block in step.child_blocks():
            yield from iter_steps(block)


@dataclass
class Workflow:
    """Named step tree with declared variables and profiles."""
    name: str
    description: str = ""
    steps: List[Step] = field(default_factory=list)
    variables: List[Variable] = field(default_factory=list)
    profiles: List[Profile] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    created_at: int = field(default_factory=lambda: int(time.time()))
    last_used: Optional[int] = None
    use_count: int = 0

    def get_profile(self, name: str) -> Optional[Profile]:
        for profile in self.profiles:
            if profile.name == name:
                return profile
        return None

    def get_variable(self, name: str) -> Optional[Variable]:
        for variable in self.variables:
            if variable.name == name:
                return variable
        return None

    def mark_used(self):
        self.last_used = int(time.time())
        self.use_count += 1

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "name": self.name,
            "description": self.description,
        }
        if self.tags:
            result["tags"] = list(self.tags)
        if self.variables:
            result["variables"] = [v.to_dict() for v in self.variables]
        if self.profiles:
            result["profiles"] = [p.to_dict() for p in self.profiles]
        result["steps"] = [s.to_dict() for s in self.steps]
        return result
