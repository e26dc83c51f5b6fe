"""Tests for the persistent shell session."""

import tempfile
from pathlib import Path

import pytest

from clix.exec.shell_session import ShellSession, is_shell_identifier


class TestShellSession:
    """Test that shell state carries across commands of one session."""

    @pytest.fixture
    def session(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            with ShellSession(cwd=Path(temp_dir)) as session:
                yield session

    def test_stdout_stderr_exit_code(self, session):
        result = session.run("echo out; echo err >&2; false")
        assert result.stdout == "out\n"
        assert result.stderr == "err\n"
        assert result.exit_code == 1
        assert session.last_exit_code == 1

    def test_exported_variable_persists(self, session):
        session.run("export GREETING=hello")
        result = session.run('echo "$GREETING"')
        assert result.stdout.strip() == "hello"
        assert session.env["GREETING"] == "hello"

    def test_plain_assignment_visible_in_env(self, session):
        """Assignments are exported so later lookups see them."""
        session.run("count=$(printf '%s' 42)")
        assert session.env["count"] == "42"

    def test_cwd_persists(self, session):
        session.run("mkdir -p sub && cd sub")
        assert Path(session.cwd).name == "sub"
        result = session.run("pwd")
        assert result.stdout.strip() == session.cwd

    def test_previous_status_visible(self, session):
        session.run("sh -c 'exit 7'")
        result = session.run("echo $?")
        assert result.stdout.strip() == "7"

    def test_exit_keeps_state(self, session):
        session.run("export KEEP=1; mkdir -p d && cd d")
        result = session.run("echo before; exit 3; echo after")
        assert result.exit_code == 3
        assert result.stdout == "before\n"
        assert session.restarts == 1
        assert session.last_exit_code == 3

        after = session.run('echo "$? $KEEP"; pwd')
        lines = after.stdout.splitlines()
        assert lines[0] == "3 1"
        assert Path(lines[1]).name == "d"

    def test_exit_inside_function(self, session):
        result = session.run("f() { echo in; exit 7; }; f; echo after")
        assert result.exit_code == 7
        assert result.stdout == "in\n"
        assert session.run("echo ok").stdout == "ok\n"

    def test_exit_in_subshell_keeps_shell(self, session):
        result = session.run("( exit 2 ); echo $?")
        assert result.exit_code == 0
        assert result.stdout == "2\n"
        assert session.restarts == 0

    def test_functions_survive_exit(self, session):
        session.run("greet() { echo hi; }")
        session.run("exit 0")
        assert session.run("greet").stdout == "hi\n"

    def test_exec_respawns_with_last_state(self, session):
        session.run("export SURVIVES=yes; mkdir -p d && cd d")
        result = session.run("exec sh -c 'exit 4'")
        assert result.exit_code == 4
        assert session.restarts == 1
        assert session.last_exit_code == 4

        after = session.run('echo "$SURVIVES"; pwd')
        lines = after.stdout.splitlines()
        assert lines[0] == "yes"
        assert Path(lines[1]).name == "d"

    def test_syntax_error_reported_as_failure(self, session):
        result = session.run("if then fi")
        assert result.exit_code != 0
        assert result.stderr
        assert session.run("echo ok").stdout == "ok\n"

    def test_export_does_not_touch_status(self, session):
        session.run("false")
        session.export("NAME", "it's quoted")
        assert session.last_exit_code == 1
        assert session.run('echo "$NAME"').stdout.strip() == "it's quoted"

    def test_export_rejects_bad_name(self, session):
        with pytest.raises(ValueError):
            session.export("not-valid", "x")

    def test_untracked_status(self, session):
        session.run("sh -c 'exit 5'")
        result = session.run("false", track_status=False)
        assert result.exit_code == 1
        assert session.last_exit_code == 5

    def test_internal_names_hidden(self, session):
        session.run("true")
        assert not any(name.startswith("__clix_") for name in session.env)

    def test_multiline_command(self, session):
        result = session.run("for i in 1 2 3; do\n  echo $i\ndone")
        assert result.stdout.split() == ["1", "2", "3"]


class TestShellIdentifier:
    """Test shell identifier checks."""

    def test_identifiers(self):
        assert is_shell_identifier("abc")
        assert is_shell_identifier("_a1")
        assert not is_shell_identifier("1a")
        assert not is_shell_identifier("a-b")
        assert not is_shell_identifier("")
