"""Tests for shell function to workflow conversion."""

import tempfile
from pathlib import Path

import pytest

from clix.convert import FunctionConverter, convert_function, extract_function, list_functions
from clix.exceptions import ConversionParseError, FunctionNotFoundError
from clix.models import ActionKind, ForEach, StepKind, While
from clix.workflow.executor import WorkflowExecutor


DEPLOY_SCRIPT = '''#!/bin/bash
# Deployment helpers

deploy() {
    local env="$1"
    local replicas=${2:-3}
    echo "Deploying to $env"
    if [ "$env" = "prod" ]; then
        kubectl delete pod old
    elif [ "$env" = "staging" ]; then
        echo staging
    else
        echo other
    fi
    case "$env" in
        dev) echo dev ;;
        prod|production)
            echo careful
            ;;
        *) echo unknown ;;
    esac
    for svc in api web; do
        echo "$svc"
    done
    while [ -f /tmp/lock ]; do
        sleep 1
    done
    return 0
}

function cleanup {
    rm -rf build
}
'''


class TestFunctionExtraction:
    """Test finding function bodies in a script."""

    def test_list_functions(self):
        assert list_functions(DEPLOY_SCRIPT) == ["deploy", "cleanup"]

    def test_header_forms(self):
        for header in ("f() {", "f () {", "function f {", "function f() {", "f()\n{"):
            body, _ = extract_function(f"{header}\n  echo hi\n}}\n", "f")
            assert body.strip() == "echo hi"

    def test_braces_in_quotes_and_comments(self):
        script = 'f() {\n  echo "}"  # }\n  echo \'{\'\n}\n'
        body, line = extract_function(script, "f")
        assert "echo '{'" in body
        assert line == 1

    def test_function_not_found(self):
        with pytest.raises(FunctionNotFoundError) as exc_info:
            extract_function(DEPLOY_SCRIPT, "missing")
        assert exc_info.value.exit_code == 2

    def test_unterminated_body(self):
        with pytest.raises(ConversionParseError) as exc_info:
            extract_function("\nf() {\n  echo hi\n", "f")
        assert exc_info.value.line_number == 2


class TestFunctionConverter:
    """Test conversion of function bodies into step trees."""

    def test_full_conversion(self):
        workflow = FunctionConverter().convert(DEPLOY_SCRIPT, "deploy", tags=["k8s"])

        assert workflow.name == "deploy"
        assert workflow.description == "Converted from shell function 'deploy'"
        assert workflow.tags == ["k8s"]

        env, replicas = workflow.variables
        assert (env.name, env.required, env.default_value) == ("env", True, None)
        assert (replicas.name, replicas.required, replicas.default_value) == ("replicas", False, "3")

        kinds = [step.kind for step in workflow.steps]
        assert kinds == [
            StepKind.COMMAND, StepKind.CONDITIONAL, StepKind.BRANCH,
            StepKind.LOOP, StepKind.LOOP, StepKind.CONDITIONAL,
        ]
        echo, check, branch, for_each, loop, ret = workflow.steps

        assert echo.name == 'Execute: echo "Deploying to $env"'
        assert echo.command == 'echo "Deploying to $env"'

        assert check.conditional.condition.text == '[ "$env" = "prod" ]'
        assert check.conditional.then_steps[0].command == "kubectl delete pod old"
        elif_step = check.conditional.else_steps[0]
        assert elif_step.conditional.condition.text == '[ "$env" = "staging" ]'
        assert elif_step.conditional.else_steps[0].command == "echo other"

        assert branch.name == "Branch on env"
        assert branch.branch.variable == "env"
        assert [case.value for case in branch.branch.cases] == ["dev", "prod", "production"]
        assert branch.branch.cases[2].steps[0].command == "echo careful"
        assert branch.branch.default_case[0].command == "echo unknown"

        assert isinstance(for_each.loop, ForEach)
        assert for_each.name == "For each svc"
        assert for_each.loop.values_source == "api web"

        assert isinstance(loop.loop, While)
        assert loop.loop.condition.text == "[ -f /tmp/lock ]"

        assert ret.conditional.condition.text == "true"
        assert ret.conditional.action.kind == ActionKind.RETURN
        assert ret.conditional.action.exit_code == 0
        assert ret.conditional.then_steps == []

    def test_case_on_parameter(self):
        script = '''f() {
  case "$1" in
    dev) echo "dev" ;;
    *) echo other ;;
  esac
}'''
        workflow = convert_function(script, "f")
        branch = workflow.steps[0].branch
        assert branch.variable == "param1"
        assert [case.value for case in branch.cases] == ["dev"]
        assert branch.default_case is not None
        assert [v.name for v in workflow.variables] == ["param1"]

    def test_approve_dangerous(self):
        workflow = convert_function(DEPLOY_SCRIPT, "deploy", approve_dangerous=True)
        check = workflow.steps[1]
        assert check.require_approval
        assert check.conditional.then_steps[0].require_approval
        assert not workflow.steps[0].require_approval

        workflow = convert_function(DEPLOY_SCRIPT, "deploy")
        assert not workflow.steps[1].conditional.then_steps[0].require_approval

    def test_positional_references(self):
        script = 'f() {\n  echo $1 ${2:-x}\n  echo $# "$@"\n}\n'
        workflow = convert_function(script, "f")
        assert workflow.steps[0].command == "echo {{ param1 }} {{ param2 }}"
        assert workflow.steps[1].command == 'echo 2 "{{ param1 }}" "{{ param2 }}"'
        param1, param2 = workflow.variables
        assert param1.required
        assert not param2.required and param2.default_value == "x"

    def test_var_defaults(self):
        script = 'f() {\n  local target="$1"\n  echo {{ target }} $target\n}\n'
        workflow = convert_function(script, "f", var_defaults={"target": "local", "extra": "1"})
        target, extra = workflow.variables
        assert (target.name, target.required, target.default_value) == ("target", False, "local")
        assert (extra.name, extra.required, extra.default_value) == ("extra", False, "1")

    def test_local_and_declare(self):
        script = 'f() {\n  local count=0\n  local -i n=1\n  local a b\n  readonly LIMIT=5\n}\n'
        commands = [step.command for step in convert_function(script, "f").steps]
        assert commands == ["count=0", "declare -i n=1", "declare a b", "declare LIMIT=5"]

    def test_until_loop(self):
        script = 'f() {\n  until curl -sf localhost; do\n    sleep 1\n  done\n}\n'
        step = convert_function(script, "f").steps[0]
        assert step.loop.condition.text == "! ( curl -sf localhost )"

    def test_for_without_in_iterates_parameters(self):
        script = 'f() {\n  echo $2\n  for arg; do\n    echo "$arg"\n  done\n}\n'
        step = convert_function(script, "f").steps[1]
        assert step.loop.values_source == '"{{ param1 }}" "{{ param2 }}"'

    def test_bare_and_computed_return(self):
        script = 'f() {\n  grep -q x file\n  rc=$?\n  return $rc\n  exit 4\n  return\n}\n'
        steps = convert_function(script, "f").steps
        computed, exit4, bare = steps[2], steps[3], steps[4]

        assert computed.conditional.action.kind == ActionKind.BREAK
        status = computed.conditional.then_steps[0]
        assert status.command == "exit $rc"
        assert status.continue_on_error

        assert exit4.conditional.action.exit_code == 4
        assert bare.conditional.action.kind == ActionKind.BREAK
        assert bare.name == "Return"

    def test_duplicate_step_names_made_unique(self):
        script = 'f() {\n  echo hi\n  echo hi\n}\n'
        names = [step.name for step in convert_function(script, "f").steps]
        assert names == ["Execute: echo hi", "Execute: echo hi (2)"]

    def test_statement_splitting(self):
        script = ('f() {\n'
                  '  echo one; echo two\n'
                  '  make build \\\n'
                  '    --fast\n'
                  '  test -f x &&\n'
                  '    echo yes\n'
                  '  # comment\n'
                  '  out=$(echo a;\n'
                  '    echo b)\n'
                  '  cat <<EOF\n'
                  'line $1\n'
                  'EOF\n'
                  '}\n')
        commands = [step.command for step in convert_function(script, "f").steps]
        assert commands[:2] == ["echo one", "echo two"]
        assert " ".join(commands[2].split()) == "make build --fast"
        assert " ".join(commands[3].split()) == "test -f x && echo yes"
        assert commands[4].startswith("out=$(echo a;")
        assert commands[5] == "cat <<EOF\nline {{ param1 }}\nEOF"

    def test_custom_name_and_description(self):
        workflow = convert_function(DEPLOY_SCRIPT, "cleanup", workflow_name="clean",
                                    description="Remove build output")
        assert workflow.name == "clean"
        assert workflow.description == "Remove build output"
        assert workflow.steps[0].command == "rm -rf build"

    def test_convert_file(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            path = Path(temp_dir) / "script.sh"
            path.write_text(DEPLOY_SCRIPT)
            workflow = FunctionConverter().convert_file(path, "cleanup")
        assert workflow.name == "cleanup"


class TestConversionErrors:
    """Test that parse errors name the offending line."""

    def convert_error(self, body: str) -> ConversionParseError:
        script = "f() {\n" + body + "}\n"
        with pytest.raises(ConversionParseError) as exc_info:
            convert_function(script, "f")
        assert exc_info.value.exit_code == 2
        return exc_info.value

    def test_unterminated_if_reports_opening_line(self):
        error = self.convert_error("  echo start\n  if true; then\n    echo x\n")
        assert error.line_number == 3
        assert "unterminated 'if'" in str(error)

    def test_unterminated_elif_chain_reports_if_line(self):
        error = self.convert_error("  if a; then\n    x\n  elif b; then\n    y\n")
        assert error.line_number == 2

    def test_stray_closer(self):
        error = self.convert_error("  echo a\n  fi\n")
        assert error.line_number == 3
        assert "unexpected 'fi'" in str(error)

    def test_missing_then(self):
        error = self.convert_error("  if true\n  echo x\n  fi\n")
        assert "expected 'then'" in str(error)

    @pytest.mark.parametrize("body,fragment", [
        ("  for ((i=0; i<3; i++)); do\n    echo $i\n  done\n", "C-style"),
        ("  select x in a b; do\n    echo $x\n  done\n", "'select'"),
        ("  shift\n", "shifting"),
        ("  inner() { echo nested; }\n", "nested function"),
        ("  case foo in\n    foo) echo x ;;\n  esac\n", "only variables"),
        ("  while true; do echo x; done > out.log\n", "redirection"),
        ("  cat <<EOF\n  never closed\n", "here-document"),
    ])
    def test_unsupported_constructs(self, body, fragment):
        error = self.convert_error(body)
        assert error.line_number == 2
        assert fragment in str(error)

    def test_unterminated_quote(self):
        script = 'f() {\n  echo ok\n  x=$(echo "a)\n}\n}\n'
        with pytest.raises(ConversionParseError):
            convert_function(script, "f")


class TestConvertedWorkflowRuns:
    """Run converted functions end to end."""

    SCRIPT = '''greet() {
  local name="${1:-world}"
  if [ "$name" = "admin" ]; then
    echo "hi boss"
    return 3
  fi
  echo "hello $name"
}
'''

    @pytest.fixture
    def workspace(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            yield Path(temp_dir)

    def test_default_path(self, workspace):
        workflow = convert_function(self.SCRIPT, "greet")
        result = WorkflowExecutor(workflow, cwd=workspace).run()
        assert result.succeeded
        assert result.steps[-1].stdout == "hello world\n"

    def test_counter_loop_on_parameter(self, workspace):
        script = 'retry() {\n  local n="${1:-0}"\n  while [ "$n" -lt 3 ]; do\n    n=$((n+1))\n  done\n  echo "done $n"\n}\n'
        workflow = convert_function(script, "retry")
        assert [v.name for v in workflow.variables] == ["n"]
        result = WorkflowExecutor(workflow, cwd=workspace, max_loop_iterations=20).run()
        assert result.succeeded
        assert result.steps[-1].stdout == "done 3\n"

    def test_early_return(self, workspace):
        workflow = convert_function(self.SCRIPT, "greet")
        result = WorkflowExecutor(workflow, cwd=workspace).run(overrides={"name": "admin"})
        assert result.outcome.status == "returned"
        assert result.outcome.exit_code == 3
        assert [r.stdout for r in result.steps] == ["hi boss\n"]
