"""Tests for the run log and output capture."""

import json
import re
import shutil
import tempfile
from pathlib import Path

import pytest

from clix.exec.output_capture import OutputCapture, safe_file_name
from clix.state import RunState, RunStateManager, StepRecord


class TestRunStateManager:
    """Test run.json persistence."""

    @pytest.fixture
    def temp_workspace(self):
        """Create a temporary workspace."""
        workspace = tempfile.mkdtemp()
        yield Path(workspace)
        shutil.rmtree(workspace)

    def test_run_id_format(self, temp_workspace):
        manager = RunStateManager(temp_workspace)
        assert re.fullmatch(r'\d{8}T\d{6}Z-[a-z0-9]{6}', manager.run_id)
        assert manager.run_root == temp_workspace / manager.run_id

    def test_initialize_writes_run_json(self, temp_workspace):
        manager = RunStateManager(temp_workspace, run_id="fixed")
        state = manager.initialize("deploy", {"env": "dev"})

        assert state.status == "running"
        assert manager.state_file == temp_workspace / "fixed" / "run.json"

        data = json.loads(manager.state_file.read_text())
        assert data["schema_version"] == "1"
        assert data["run_id"] == "fixed"
        assert data["workflow"] == "deploy"
        assert data["variables"] == {"env": "dev"}
        assert data["steps"] == []
        assert "outcome" not in data

    def test_record_and_finish(self, temp_workspace):
        manager = RunStateManager(temp_workspace)
        manager.initialize("deploy")
        manager.record_step(StepRecord("Build", "make", stdout="ok\n", stderr="warn\n",
                                       exit_code=0, duration_ms=12))
        manager.finish("failed", {"status": "failed", "exit_code": 2, "step": "Build"})

        state = RunStateManager(temp_workspace, run_id=manager.run_id).load()
        assert isinstance(state, RunState)
        assert state.status == "failed"
        assert state.outcome["exit_code"] == 2
        step = state.steps[0]
        assert step["name"] == "Build"
        assert step["command"] == "make"
        assert step["output"] == "ok\n"
        assert step["stderr"] == "warn\n"
        assert step["truncated"] is False
        assert step["duration_ms"] == 12

    def test_large_output_truncated_and_spilled(self, temp_workspace):
        manager = RunStateManager(temp_workspace)
        manager.initialize("big")
        text = "x" * 10000
        manager.record_step(StepRecord("Each[0].Dump", "cat big", stdout=text))

        data = json.loads(manager.state_file.read_text())
        step = data["steps"][0]
        assert step["truncated"] is True
        assert len(step["output"]) == OutputCapture.TEXT_LIMIT_BYTES

        spill = manager.output_capture.spill_path("Each[0].Dump")
        assert spill is not None
        assert spill.parent == manager.logs_dir
        assert spill.read_text() == text

    def test_no_temp_file_left(self, temp_workspace):
        manager = RunStateManager(temp_workspace)
        manager.initialize("atomic")
        manager.record_step(StepRecord("A", "true"))
        assert sorted(p.name for p in manager.run_root.iterdir()) == ["run.json"]

    def test_record_before_initialize(self, temp_workspace):
        manager = RunStateManager(temp_workspace)
        with pytest.raises(RuntimeError):
            manager.record_step(StepRecord("A"))

    def test_load_missing(self, temp_workspace):
        with pytest.raises(FileNotFoundError):
            RunStateManager(temp_workspace, run_id="nope").load()


class TestOutputCapture:
    """Test the run-log size limit."""

    def test_small_output_kept(self, tmp_path):
        result = OutputCapture(tmp_path / "logs").capture("hi\n", "", "A", exit_code=1)
        assert result.output == "hi\n"
        assert not result.truncated
        assert result.to_state_dict() == {"exit_code": 1, "truncated": False, "output": "hi\n"}
        assert not (tmp_path / "logs").exists()

    def test_truncates_on_character_boundary(self, tmp_path):
        text = "é" * 5000  # two bytes each
        result = OutputCapture(tmp_path).capture("", text, "A")
        assert result.stderr_truncated
        assert result.stderr == "é" * 4096
        assert result.to_state_dict()["stderr_truncated"] is True

    def test_safe_file_name(self):
        assert safe_file_name("Each[2].Build it") == "Each[2].Build_it"
        assert safe_file_name("../..") == "step"
