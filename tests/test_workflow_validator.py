"""Tests for static workflow validation."""

from clix.models import BranchCase, Expression, Step, Variable, Workflow
from clix.workflow.validator import Severity, WorkflowValidator, has_unmatched_quotes


def described(step: Step) -> Step:
    step.description = "does something"
    return step


class TestWorkflowValidator:
    """Test the validator's errors, warnings and info notes."""

    def setup_method(self):
        self.validator = WorkflowValidator()

    def messages(self, report, severity):
        return [issue.message for issue in report.by_severity(severity)]

    def test_clean_workflow(self):
        workflow = Workflow(
            name="ok",
            variables=[Variable("env", default_value="dev"), Variable("region", default_value="eu")],
            steps=[
                described(Step.new_command("Show", "echo {{ env }}")),
                described(Step.new_command("Region", 'echo "$region"')),
            ],
        )
        report = self.validator.validate(workflow)
        assert report.is_valid
        assert report.issues == []

    def test_duplicate_step_names(self):
        workflow = Workflow(name="dup", steps=[
            described(Step.new_command("A", "true")),
            described(Step.new_command("A", "false")),
        ])
        report = self.validator.validate(workflow)
        assert not report.is_valid
        assert "Duplicate step name 'A' found at positions 1 and 2" in self.messages(report, Severity.ERROR)

    def test_duplicate_names_in_nested_block(self):
        workflow = Workflow(name="dup", steps=[
            described(Step.new_conditional("Check", Expression("true"), [
                described(Step.new_command("A", "true")),
                described(Step.new_command("A", "true")),
            ])),
        ])
        assert not self.validator.validate(workflow).is_valid

    def test_unmatched_quotes(self):
        workflow = Workflow(name="q", steps=[described(Step.new_command("Q", "echo 'oops"))])
        report = self.validator.validate(workflow)
        assert "Step 'Q' has unmatched quotes" in self.messages(report, Severity.ERROR)

    def test_bad_condition_is_error(self):
        workflow = Workflow(name="c", steps=[
            described(Step.new_conditional("Check", Expression("[ -f x"), [
                described(Step.new_command("A", "true")),
            ])),
        ])
        report = self.validator.validate(workflow)
        assert not report.is_valid
        assert any("missing ']'" in m for m in self.messages(report, Severity.ERROR))

    def test_warnings(self):
        workflow = Workflow(name="w", steps=[
            Step.new_command("No description", "true"),
            described(Step.new_command("X" * 101, "true")),
            described(Step.new_command("Risky", "kubectl delete ns web")),
            described(Step.new_conditional("Empty", Expression("true"), [])),
            described(Step.new_while("Spin", Expression("true"), [described(Step.new_command("T", "true"))])),
            described(Step.new_branch("Nothing", "env", [])),
            described(Step.new_command("Undefined", "echo {{ missing }}")),
        ])
        report = self.validator.validate(workflow)
        assert report.is_valid
        warnings = self.messages(report, Severity.WARNING)
        assert "Step 'No description' has empty description" in warnings
        assert any("very long name" in w for w in warnings)
        assert any(w.startswith("Step 'Risky' runs a risky command") for w in warnings)
        assert "Conditional 'Empty' has no steps and no action" in warnings
        assert "Loop 'Spin' has a condition that is always true" in warnings
        assert "Branch 'Nothing' has no cases" in warnings
        assert "Variable 'missing' is used in step 'Undefined' but not defined" in warnings

    def test_risky_command_with_approval_not_flagged(self):
        step = described(Step.new_command("Risky", "rm -rf build", require_approval=True))
        report = self.validator.validate(Workflow(name="r", steps=[step]))
        assert report.issues == []

    def test_runtime_bound_names_not_flagged(self):
        workflow = Workflow(name="b", steps=[
            described(Step.new_for_each("Each", "item", "a b", [
                described(Step.new_command("Use", "echo {{ item }}")),
            ])),
        ])
        assert self.validator.validate(workflow).issues == []

    def test_unused_variable_info(self):
        workflow = Workflow(
            name="u",
            variables=[Variable("unused"), Variable("branch_on")],
            steps=[described(Step.new_branch("B", "branch_on", [
                BranchCase("x", [described(Step.new_command("X", "true"))]),
            ]))],
        )
        report = self.validator.validate(workflow)
        assert self.messages(report, Severity.INFO) == ["Variable 'unused' is defined but never used"]

    def test_duplicate_and_empty_variables(self):
        workflow = Workflow(
            name="v",
            variables=[Variable("a"), Variable("a"), Variable(" ")],
            steps=[described(Step.new_command("S", "echo {{ a }}"))],
        )
        errors = self.messages(self.validator.validate(workflow), Severity.ERROR)
        assert "Variable 'a' is declared more than once" in errors
        assert "Variable has empty name" in errors

    def test_empty_loop_variable(self):
        workflow = Workflow(name="l", steps=[
            described(Step.new_for_each("Each", "", "a", [described(Step.new_command("S", "true"))])),
        ])
        assert "Loop 'Each' has no loop variable" in self.messages(
            self.validator.validate(workflow), Severity.ERROR)


class TestUnmatchedQuotes:
    """Test quote balancing."""

    def test_balanced(self):
        assert not has_unmatched_quotes("""echo "it's" 'a "b"' \\" """)

    def test_unbalanced(self):
        assert has_unmatched_quotes('echo "open')
        assert has_unmatched_quotes("echo 'open")
        assert not has_unmatched_quotes("echo 'a\\'")
