"""
Unit Tests for the Process Runner

Test coverage for:
- Template script argument construction
- Platform dispatch and token environment injection
- Output streaming and exit code mapping
- Spawn failures
- Credential gating before spawn
- Child cleanup on cancellation and read failures
"""

import asyncio
import logging
import sys
from dataclasses import replace
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from agent.errors import AuthenticationError, ScriptExecutionError
from agent.process_runner import (
    STREAM_LIMIT,
    ProcessRunner,
    build_environment,
    build_script_arguments,
    resolve_script_path,
    script_invocation,
)
from agent.task_store import TaskPayload, TaskStore

from .conftest import StubCredentials


# -----------------------------------------------------------------------------
# Test Cases: Argument Construction
# -----------------------------------------------------------------------------
class TestArgumentConstruction:
    """Tests for build_script_arguments()."""

    def test_full_argument_order(self):
        payload = TaskPayload(template="t1", name="n1", visibility="private", no_vscode=True)

        assert build_script_arguments(payload) == [
            "-template", "t1", "-name", "n1", "-quiet", "-visibility", "private", "-noVSCode",
        ]

    def test_default_payload(self):
        payload = TaskPayload(template="react", name="demo")

        assert build_script_arguments(payload) == [
            "-template", "react", "-name", "demo", "-quiet", "-visibility", "public",
        ]

    def test_editor_disabled_globally_forces_flag(self):
        payload = TaskPayload(template="react", name="demo", no_vscode=False)
        args = build_script_arguments(payload, auto_open_vscode=False)

        assert "-noVSCode" in args

    def test_post_commands_last(self):
        payload = TaskPayload(template="react", name="demo", post_commands="npm install && npm test")
        args = build_script_arguments(payload)

        assert args[-2:] == ["-postCommands", "npm install && npm test"]


# -----------------------------------------------------------------------------
# Test Cases: Platform Dispatch
# -----------------------------------------------------------------------------
class TestPlatformDispatch:
    """Tests for script_invocation()."""

    def test_windows_uses_powershell(self):
        command, leading = script_invocation(Path("fork.ps1"), platform="win32")

        assert command == "powershell"
        assert leading == ["-ExecutionPolicy", "Bypass", "-File", "fork.ps1"]

    @pytest.mark.parametrize("platform", ["linux", "darwin"])
    def test_unix_uses_bash_variant(self, platform):
        command, leading = script_invocation(Path("fork.ps1"), platform=platform)

        assert command == "bash"
        assert leading == ["fork.sh"]

    def test_non_ps1_path_kept(self):
        assert resolve_script_path(Path("create.sh"), platform="linux") == Path("create.sh")


class TestEnvironment:
    """Tests for build_environment()."""

    def test_token_under_both_names(self, monkeypatch):
        monkeypatch.setenv("SOME_CALLER_VAR", "kept")
        env = build_environment("ghp_abc")

        assert env["GITHUB_TOKEN"] == "ghp_abc"
        assert env["GH_TOKEN"] == "ghp_abc"
        assert env["SOME_CALLER_VAR"] == "kept"

    def test_token_replaces_inherited_values(self, monkeypatch):
        monkeypatch.setenv("GH_TOKEN", "stale")
        monkeypatch.setenv("GITHUB_TOKEN", "stale")
        env = build_environment("ghp_new")

        assert env["GH_TOKEN"] == "ghp_new"
        assert env["GITHUB_TOKEN"] == "ghp_new"


# -----------------------------------------------------------------------------
# Test Cases: Execution
# -----------------------------------------------------------------------------
class TestRun:
    """Tests for run() against real short-lived processes."""

    @pytest.fixture
    def runner(self, agent_config):
        return ProcessRunner(agent_config, StubCredentials())

    @pytest.mark.asyncio
    async def test_success_captures_output(self, runner, caplog):
        code = "import sys; print('line one'); print('line two'); print('warn', file=sys.stderr)"

        with caplog.at_level(logging.INFO, logger="process_runner"):
            result = await runner.run(sys.executable, ["-c", code], label="task-1")

        assert result.exit_code == 0
        assert result.stdout == "line one\nline two\n"
        assert result.stderr == "warn\n"

        messages = [r.getMessage() for r in caplog.records]
        assert messages.index("[task-1] line one") < messages.index("[task-1] line two")
        warn_records = [r for r in caplog.records if r.getMessage() == "[task-1] warn"]
        assert warn_records[0].levelno == logging.WARNING

    @pytest.mark.asyncio
    async def test_nonzero_exit_raises_with_stderr(self, runner):
        code = "import sys; print('partial'); print('template not found', file=sys.stderr); sys.exit(1)"

        with pytest.raises(ScriptExecutionError) as exc_info:
            await runner.run(sys.executable, ["-c", code])

        error = exc_info.value
        assert error.exit_code == 1
        assert error.stdout == "partial\n"
        assert "template not found" in error.stderr
        assert "template not found" in str(error)
        assert "exited with code 1" in str(error)

    @pytest.mark.asyncio
    async def test_spawn_failure_has_no_exit_code(self, runner):
        with pytest.raises(ScriptExecutionError) as exc_info:
            await runner.run("definitely-not-a-real-command-xyz", [])

        assert exc_info.value.exit_code is None

    @pytest.mark.asyncio
    async def test_runs_in_working_directory(self, runner, tmp_path):
        code = "import os; print(os.getcwd())"
        result = await runner.run(sys.executable, ["-c", code], cwd=tmp_path)

        assert Path(result.stdout.strip()).resolve() == tmp_path.resolve()

    @pytest.mark.asyncio
    async def test_run_shell_failure(self, runner, tmp_path):
        with pytest.raises(ScriptExecutionError) as exc_info:
            await runner.run_shell("echo oops >&2; exit 3", cwd=tmp_path)

        assert exc_info.value.exit_code == 3
        assert exc_info.value.stderr == "oops\n"


# -----------------------------------------------------------------------------
# Test Cases: Output Draining and Child Cleanup
# -----------------------------------------------------------------------------
class TestChildCleanup:
    """The child is always drained and reaped, whatever happens to the reader."""

    @pytest.fixture
    def runner(self, agent_config):
        return ProcessRunner(agent_config, StubCredentials())

    @pytest.fixture
    def spawned(self):
        """Record every process spawned through create_subprocess_exec."""
        processes = []
        real_exec = asyncio.create_subprocess_exec

        async def spawn_and_record(*args, **kwargs):
            process = await real_exec(*args, **kwargs)
            processes.append(process)
            return process

        with patch("asyncio.create_subprocess_exec", spawn_and_record):
            yield processes

    @pytest.mark.asyncio
    async def test_long_line_without_newline(self, runner, tmp_path):
        marker = tmp_path / "finished.txt"
        size = 2 * STREAM_LIMIT
        code = (
            "import sys, time; "
            f"sys.stdout.write('x' * {size}); sys.stdout.flush(); "
            f"time.sleep(0.5); open({str(marker)!r}, 'w').write('done')"
        )

        result = await runner.run(sys.executable, ["-c", code])

        assert result.exit_code == 0
        assert len(result.stdout) == size
        assert marker.exists()

    @pytest.mark.asyncio
    async def test_read_failure_kills_and_reaps_child(self, runner, spawned):
        code = "import time; print('ready', flush=True); time.sleep(30)"

        async def failing_drain(stream, chunks, level, label):
            await stream.read(1)
            raise ValueError("Separator is not found, and chunk exceed the limit")

        with patch.object(ProcessRunner, "_drain", staticmethod(failing_drain)):
            with pytest.raises(ScriptExecutionError) as exc_info:
                await runner.run(sys.executable, ["-c", code], label="task-1")

        assert exc_info.value.exit_code is None
        assert "Separator is not found" in str(exc_info.value)
        assert len(spawned) == 1
        assert spawned[0].returncode is not None

    @pytest.mark.asyncio
    async def test_cancellation_kills_and_reaps_child(self, runner, spawned):
        run = asyncio.create_task(
            runner.run(sys.executable, ["-c", "import time; time.sleep(30)"])
        )
        for _ in range(100):
            if spawned:
                break
            await asyncio.sleep(0.05)

        run.cancel()
        with pytest.raises(asyncio.CancelledError):
            await run

        assert spawned[0].returncode is not None

    @pytest.mark.asyncio
    async def test_heavy_output_on_both_pipes(self, runner, caplog):
        code = (
            "import sys\n"
            "for i in range(5000):\n"
            "    sys.stdout.write('o' * 200 + '\\n')\n"
            "    sys.stderr.write('e' * 200 + '\\n')\n"
        )

        with caplog.at_level(logging.ERROR, logger="process_runner"):
            result = await runner.run(sys.executable, ["-c", code])

        assert result.stdout.count("\n") == 5000
        assert result.stderr.count("\n") == 5000

    @pytest.mark.asyncio
    async def test_close_stops_background_commands(self, runner, tmp_path):
        process = await runner.launch_shell("exec sleep 30", cwd=tmp_path, label="task-1")
        assert process.returncode is None

        await runner.close()

        assert process.returncode is not None
        assert not runner._background


# -----------------------------------------------------------------------------
# Test Cases: Template Script
# -----------------------------------------------------------------------------
class TestRunScript:
    """Tests for run_script()."""

    def _task(self, store: TaskStore, **kwargs):
        payload = TaskPayload(template=kwargs.pop("template", "react"), name="demo", **kwargs)
        return store.get(store.add(payload))

    @pytest.mark.asyncio
    async def test_passes_arguments_and_token(self, agent_config, record_dir):
        runner = ProcessRunner(agent_config, StubCredentials("ghp_resolved"), platform="linux")
        task = self._task(TaskStore(), visibility="private", no_vscode=True)

        result = await runner.run_script(task)

        assert result.exit_code == 0
        assert "Repository demo created from react" in result.stdout
        assert (record_dir / "args.txt").read_text().splitlines() == [
            "-template", "react", "-name", "demo", "-quiet", "-visibility", "private", "-noVSCode",
        ]
        env_lines = (record_dir / "env.txt").read_text().splitlines()
        assert env_lines == ["GITHUB_TOKEN=ghp_resolved", "GH_TOKEN=ghp_resolved"]
        assert (agent_config.work_dir / "demo").is_dir()

    @pytest.mark.asyncio
    async def test_missing_token_prevents_spawn(self, agent_config):
        runner = ProcessRunner(agent_config, StubCredentials(token=None), platform="linux")
        task = self._task(TaskStore())

        with patch.object(runner, "run", AsyncMock()) as mock_run:
            with pytest.raises(AuthenticationError):
                await runner.run_script(task)

        mock_run.assert_not_called()

    @pytest.mark.asyncio
    async def test_editor_disabled_in_config(self, agent_config, record_dir):
        config = replace(agent_config, auto_open_vscode=False)
        runner = ProcessRunner(config, StubCredentials(), platform="linux")

        await runner.run_script(self._task(TaskStore()))

        assert "-noVSCode" in (record_dir / "args.txt").read_text().splitlines()
