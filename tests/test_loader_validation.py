"""Tests for workflow file loading and strict validation."""

import json
import tempfile
from pathlib import Path

import pytest
import yaml

from clix.exceptions import WorkflowValidationError
from clix.loader import WorkflowLoader, dump_workflow, load_workflow
from clix.models import ActionKind, ForEach, StepKind, While


class TestLoaderValidation:
    """Test loading and strict validation in the loader."""

    def setup_method(self):
        """Set up test fixtures."""
        self.temp_dir = tempfile.mkdtemp()
        self.workspace = Path(self.temp_dir)
        self.loader = WorkflowLoader()

    def write_workflow(self, content, name: str = "workflow.yml") -> Path:
        """Helper to write workflow YAML (or raw text)."""
        path = self.workspace / name
        with open(path, 'w') as f:
            if isinstance(content, str):
                f.write(content)
            else:
                yaml.dump(content, f)
        return path

    def assert_error(self, content, fragment: str):
        path = self.write_workflow(content)
        with pytest.raises(WorkflowValidationError) as exc_info:
            self.loader.load(path)
        assert exc_info.value.exit_code == 2
        messages = [f"{err.path}: {err.message}" for err in exc_info.value.errors]
        assert any(fragment in message for message in messages), messages
        return exc_info.value

    def test_full_workflow(self):
        path = self.write_workflow("""
version: "1"
name: deploy
description: Deploy the service
tags: [k8s, deploy]
variables:
  - name: env
    description: Target environment
    default: dev
  - name: replicas
    default: 3
  - name: ns
    required: true
profiles:
  - name: prod
    values:
      env: prod
      replicas: 6
steps:
  - name: Login
    type: auth
    command: gcloud auth login
  - name: Check
    condition:
      expression: kubectl get ns {{ ns }}
      capture: ns_status
    then:
      - name: Show
        command: echo found
    else:
      - name: Create
        command: kubectl create ns {{ ns }}
        continue_on_error: true
    action: return 3
  - name: Route
    branch:
      variable: env
      cases:
        - value: prod
          steps:
            - name: Careful
              command: echo careful
              require_approval: true
        - value: 1
          steps: []
      default:
        - name: Relaxed
          command: echo relaxed
  - name: Each pod
    for_each:
      variable: pod
      values: [web-1, "web 2"]
      steps:
        - name: Restart
          command: kubectl delete pod {{ pod }}
  - name: Wait
    while:
      condition: "[ $n -lt 3 ]"
      steps:
        - name: Tick
          command: n=$((n+1))
""")
        workflow = self.loader.load(path)

        assert workflow.name == "deploy"
        assert workflow.tags == ["k8s", "deploy"]
        assert [v.name for v in workflow.variables] == ["env", "replicas", "ns"]
        assert workflow.variables[1].default_value == "3"
        assert workflow.variables[2].required
        assert workflow.get_profile("prod").values == {"env": "prod", "replicas": "6"}

        login, check, route, each, wait = workflow.steps
        assert login.kind == StepKind.AUTH

        assert check.kind == StepKind.CONDITIONAL
        assert check.conditional.condition.capture_variable == "ns_status"
        assert check.conditional.else_steps[0].continue_on_error
        assert check.conditional.action.kind == ActionKind.RETURN
        assert check.conditional.action.exit_code == 3

        assert route.kind == StepKind.BRANCH
        assert [c.value for c in route.branch.cases] == ["prod", "1"]
        assert route.branch.cases[0].steps[0].require_approval
        assert route.branch.default_case[0].name == "Relaxed"

        assert isinstance(each.loop, ForEach)
        assert each.loop.values_source == "web-1 'web 2'"
        assert isinstance(wait.loop, While)
        assert wait.loop.condition.text == "[ $n -lt 3 ]"

    def test_json_workflow(self):
        path = self.write_workflow(json.dumps({
            "name": "json",
            "steps": [{"name": "A", "command": "echo a"}],
        }), name="workflow.json")
        workflow = load_workflow(path)
        assert workflow.steps[0].command == "echo a"

    def test_yes_no_case_values_stay_strings(self):
        path = self.write_workflow("""
name: answers
steps:
  - name: Answer
    branch:
      variable: reply
      cases:
        - value: yes
          steps: []
        - value: no
          steps: []
        - value: on
          steps: []
""")
        workflow = self.loader.load(path)
        assert [c.value for c in workflow.steps[0].branch.cases] == ["yes", "no", "on"]

    def test_missing_name_and_steps(self):
        error = self.assert_error({"description": "x"}, "'name' field is required")
        assert any(err.path == "steps" for err in error.errors)

    def test_unknown_fields(self):
        self.assert_error({
            "name": "x",
            "extra": 1,
            "steps": [{"name": "A", "command": "true"}],
        }, "Unknown field 'extra'")
        self.assert_error({
            "name": "x",
            "steps": [{"name": "A", "command": "true", "retries": 2}],
        }, "steps[0]: Unknown field 'retries'")

    def test_unsupported_version(self):
        self.assert_error({"version": "2", "name": "x", "steps": [{"name": "A", "command": "true"}]},
                          "Unsupported version")

    def test_duplicate_step_names_in_block(self):
        self.assert_error({
            "name": "x",
            "steps": [
                {"name": "A", "command": "true"},
                {"name": "A", "command": "false"},
            ],
        }, "Duplicate step name 'A'")

    def test_same_name_in_different_blocks_allowed(self):
        path = self.write_workflow({
            "name": "x",
            "steps": [
                {"name": "A", "command": "true"},
                {"name": "Check", "condition": "true", "then": [{"name": "A", "command": "true"}]},
            ],
        })
        workflow = self.loader.load(path)
        assert workflow.steps[1].conditional.then_steps[0].name == "A"

    def test_duplicate_variable_names(self):
        self.assert_error({
            "name": "x",
            "variables": [{"name": "a"}, {"name": "a"}],
            "steps": [{"name": "A", "command": "true"}],
        }, "Duplicate variable name 'a'")

    def test_mutually_exclusive_kinds(self):
        self.assert_error({
            "name": "x",
            "steps": [{
                "name": "Both",
                "condition": "true",
                "while": {"condition": "true", "steps": []},
            }],
        }, "mutually exclusive")

    def test_type_must_match_fields(self):
        self.assert_error({
            "name": "x",
            "steps": [{"name": "A", "type": "branch", "command": "true"}],
        }, "does not match its fields")

    def test_command_required(self):
        self.assert_error({"name": "x", "steps": [{"name": "A"}]}, "'command' is required")

    def test_then_without_condition(self):
        self.assert_error({
            "name": "x",
            "steps": [{"name": "A", "command": "true", "then": []}],
        }, "'then' requires 'condition'")

    def test_invalid_action(self):
        self.assert_error({
            "name": "x",
            "steps": [{"name": "A", "condition": "true", "action": "explode"}],
        }, "Unknown action")

    def test_nested_error_path(self):
        self.assert_error({
            "name": "x",
            "steps": [{
                "name": "Loop",
                "for_each": {"variable": "item", "values": "a b", "steps": [{"name": "Inner"}]},
            }],
        }, "steps[0].for_each.steps[0]")

    def test_invalid_loop_variable(self):
        self.assert_error({
            "name": "x",
            "steps": [{"name": "Loop", "for_each": {"variable": "bad-name", "values": "a", "steps": []}}],
        }, "'variable' must be a variable name")

    def test_errors_accumulate(self):
        error = self.assert_error({
            "name": "",
            "steps": [{"name": "A"}, {"command": "true"}],
        }, "'name' field is required")
        assert len(error.errors) >= 3

    def test_invalid_yaml(self):
        self.assert_error("name: [unclosed", "Failed to load workflow")

    def test_dump_round_trip(self):
        path = self.write_workflow({
            "name": "x",
            "variables": [{"name": "env", "default": "dev"}],
            "steps": [
                {"name": "A", "command": "echo {{ env }}", "continue_on_error": True},
                {"name": "Stop", "condition": "true", "action": "break"},
            ],
        })
        workflow = self.loader.load(path)

        reloaded = self.loader.load_text(dump_workflow(workflow))
        assert reloaded.to_dict() == workflow.to_dict()

        reloaded = self.loader.load_text(dump_workflow(workflow, "json"))
        assert reloaded.steps[1].conditional.action.kind == ActionKind.BREAK
