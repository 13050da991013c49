"""Unit tests for shellbox/sandbox/direct.py.

Runs real ``bash`` subprocesses on the host; nothing is mounted.
"""

import pytest

from shellbox.exceptions import ConfigurationError
from shellbox.sandbox.direct import DirectRunner
from shellbox.sandbox.models import ExecutionRequest, PrivilegeMode


@pytest.fixture
def direct_enabled(monkeypatch):
    monkeypatch.setenv("SHELLBOX_DIRECT_EXECUTION_ENABLED", "true")


class TestBuildScript:
    def test_without_mount(self, tmp_path):
        script, cleanup = DirectRunner(str(tmp_path)).build_script(
            ExecutionRequest(script="#!/bin/bash\necho hi")
        )
        assert cleanup is None
        assert script.splitlines() == [f"cd {tmp_path} || exit 1", "echo hi"]

    def test_with_mount(self, tmp_path, nfs_mount):
        script, cleanup = DirectRunner(str(tmp_path)).build_script(
            ExecutionRequest(script="ls /mnt/network", mount=nfs_mount)
        )
        lines = script.splitlines()
        assert lines[0] == "mkdir -p /mnt/network"
        assert lines[1].startswith("mount -t nfs -o rw,sync fileserver:/exports/data /mnt/network || ")
        assert "[Error] Mount failed" in lines[1]
        assert "apt-get" not in script
        assert cleanup == "umount /mnt/network 2>/dev/null || true"


class TestGating:
    async def test_disabled_by_default(self, tmp_path):
        with pytest.raises(ConfigurationError, match="disabled"):
            await DirectRunner(str(tmp_path)).run(ExecutionRequest(script="echo hi"))

    async def test_never_in_production(self, tmp_path, monkeypatch, direct_enabled):
        monkeypatch.setenv("SHELLBOX_ENVIRONMENT", "production")
        with pytest.raises(ConfigurationError, match="production"):
            await DirectRunner(str(tmp_path)).run(ExecutionRequest(script="echo hi"))


@pytest.mark.usefixtures("direct_enabled")
class TestDirectRun:
    async def test_runs_in_working_directory(self, tmp_path):
        workdir = tmp_path / "work"
        result = await DirectRunner(str(workdir)).run(
            ExecutionRequest(script="echo hi\npwd", privilege_mode=PrivilegeMode.RUN_AS_ROOT)
        )
        assert result.succeeded is True
        assert result.exit_code == 0
        assert result.output.splitlines() == ["hi", str(workdir)]
        assert workdir.is_dir()

    async def test_exit_code_and_stderr(self, tmp_path):
        result = await DirectRunner(str(tmp_path)).run(ExecutionRequest(script="echo bad >&2\nexit 4"))
        assert result.succeeded is False
        assert result.exit_code == 4
        assert result.stderr == b"bad\n"
        assert result.timed_out is False

    async def test_timeout(self, tmp_path):
        result = await DirectRunner(str(tmp_path)).run(ExecutionRequest(script="sleep 10", timeout_seconds=1))
        assert result.timed_out is True
        assert result.exit_code is None
        assert result.succeeded is False
        assert result.stderr == b"Execution timed out"
        assert result.duration_seconds < 5

    async def test_timeout_keeps_partial_output(self, tmp_path):
        script = "echo partial\necho warming-up >&2\nsleep 10\necho never"
        result = await DirectRunner(str(tmp_path)).run(ExecutionRequest(script=script, timeout_seconds=1))
        assert result.timed_out is True
        assert result.stdout == b"partial\n"
        assert result.stderr == b"warming-up\nExecution timed out"
        assert result.duration_seconds < 5

    async def test_working_directory_override(self, tmp_path):
        default_dir = tmp_path / "default"
        override = tmp_path / "override"
        runner = DirectRunner(str(default_dir))
        result = await runner.run(ExecutionRequest(script="pwd"), working_directory=str(override))
        assert result.output == f"{override}\n"
        assert override.is_dir()
        assert runner.working_directory == default_dir
