"""
External Process Runner

Spawns the repository template script (and post-processing commands),
streams their output to the log as it arrives, and maps the exit status to a
ProcessResult or a ScriptExecutionError.

Subprocess contract for the template script:
    -template <t> -name <n> -quiet [-visibility <v>] [-noVSCode] [-postCommands <c>]
Environment: caller environment plus GITHUB_TOKEN and GH_TOKEN set to the
same resolved token.
"""

import asyncio
import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Dict, List, Tuple, Set, TYPE_CHECKING

from .config import AgentConfig
from .credentials import CredentialResolver
from .errors import ScriptExecutionError

if TYPE_CHECKING:
    from .task_store import Task, TaskPayload

logger = logging.getLogger("process_runner")

# Buffer limit for the child's pipes
STREAM_LIMIT = 1024 * 1024
# Bytes per pipe read; output is split into lines here, not by readline()
READ_CHUNK_SIZE = 64 * 1024


@dataclass
class ProcessResult:
    """Captured outcome of a successful command."""
    exit_code: int
    stdout: str
    stderr: str

    def to_dict(self) -> Dict[str, object]:
        return {
            "exit_code": self.exit_code,
            "stdout": self.stdout,
            "stderr": self.stderr,
        }


# -----------------------------------------------------------------------------
# Invocation helpers
# -----------------------------------------------------------------------------
def build_script_arguments(payload: "TaskPayload", auto_open_vscode: bool = True) -> List[str]:
    """Build the template script's flat argument list in its fixed order."""
    args = [
        "-template", payload.template,
        "-name", payload.name,
        "-quiet",
    ]

    if payload.visibility:
        args.extend(["-visibility", payload.visibility])

    if not auto_open_vscode or payload.no_vscode:
        args.append("-noVSCode")

    if payload.post_commands:
        args.extend(["-postCommands", payload.post_commands])

    return args


def resolve_script_path(script_path: Path, platform: str = sys.platform) -> Path:
    """Windows runs the PowerShell script; other platforms the bash variant."""
    script_path = Path(script_path)
    if platform != "win32" and script_path.suffix == ".ps1":
        return script_path.with_suffix(".sh")
    return script_path


def script_invocation(script_path: Path, platform: str = sys.platform) -> Tuple[str, List[str]]:
    """Return (host shell, leading arguments) for the running platform."""
    script = str(resolve_script_path(script_path, platform))
    if platform == "win32":
        return "powershell", ["-ExecutionPolicy", "Bypass", "-File", script]
    return "bash", [script]


def build_environment(token: str) -> Dict[str, str]:
    """Caller environment plus the token under both variable names."""
    env = dict(os.environ)
    env["GITHUB_TOKEN"] = token
    env["GH_TOKEN"] = token
    return env


# -----------------------------------------------------------------------------
# Runner
# -----------------------------------------------------------------------------
class ProcessRunner:
    """Runs one external command at a time on behalf of the processor."""

    def __init__(
        self,
        config: AgentConfig,
        credentials: CredentialResolver,
        platform: str = sys.platform,
    ):
        self.config = config
        self.credentials = credentials
        self.platform = platform
        self._background: Set[asyncio.Task] = set()

    async def run_script(self, task: "Task") -> ProcessResult:
        """
        Run the template script for a task.

        The token is resolved and verified first; AuthenticationError is
        raised before anything is spawned.
        """
        token = await self.credentials.require_token()

        args = build_script_arguments(task.payload, self.config.auto_open_vscode)
        command, leading = script_invocation(self.config.script_path, self.platform)
        env = build_environment(token)

        logger.info(f"Running command: {command} {' '.join(leading + args)}")
        return await self.run(
            command,
            leading + args,
            cwd=self.config.work_dir,
            env=env,
            label=task.id,
        )

    async def run(
        self,
        command: str,
        args: List[str],
        cwd: Optional[Path] = None,
        env: Optional[Dict[str, str]] = None,
        label: Optional[str] = None,
    ) -> ProcessResult:
        """Spawn a command, stream its output and wait for it to exit."""
        label = label or command
        try:
            process = await asyncio.create_subprocess_exec(
                command,
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(cwd) if cwd else None,
                env=env,
                limit=STREAM_LIMIT,
            )
        except OSError as e:
            raise ScriptExecutionError(f"Failed to start {command}: {e}")

        return await self._collect(process, label)

    async def run_shell(
        self,
        command: str,
        cwd: Optional[Path] = None,
        label: Optional[str] = None,
    ) -> ProcessResult:
        """Run a shell command line with the same contract as run()."""
        label = label or command
        try:
            process = await asyncio.create_subprocess_shell(
                command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(cwd) if cwd else None,
                limit=STREAM_LIMIT,
            )
        except OSError as e:
            raise ScriptExecutionError(f"Failed to start '{command}': {e}")

        return await self._collect(process, label)

    async def launch_shell(
        self,
        command: str,
        cwd: Optional[Path] = None,
        label: Optional[str] = None,
    ) -> asyncio.subprocess.Process:
        """
        Start a long-running shell command without waiting for it to exit.

        Its output keeps flowing to the log from a background task.
        """
        label = label or command
        try:
            process = await asyncio.create_subprocess_shell(
                command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(cwd) if cwd else None,
                limit=STREAM_LIMIT,
            )
        except OSError as e:
            raise ScriptExecutionError(f"Failed to start '{command}': {e}")

        watcher = asyncio.create_task(self._watch(process, command, label))
        self._background.add(watcher)
        watcher.add_done_callback(self._background.discard)
        logger.info(f"[{label}] Started background command (pid {process.pid}): {command}")
        return process

    async def close(self) -> None:
        """Stop background commands; their children are killed and reaped."""
        watchers = list(self._background)
        if not watchers:
            return
        logger.info(f"Stopping {len(watchers)} background command(s)")
        for watcher in watchers:
            watcher.cancel()
        await asyncio.gather(*watchers, return_exceptions=True)

    async def _watch(self, process: asyncio.subprocess.Process, command: str, label: str) -> None:
        try:
            result = await self._collect(process, label)
            logger.info(f"[{label}] Background command exited with code {result.exit_code}: {command}")
        except ScriptExecutionError as e:
            logger.warning(f"[{label}] Background command failed: {command} ({e.exit_code})")
        except asyncio.CancelledError:
            logger.info(f"[{label}] Background command stopped: {command}")
            raise

    async def _collect(self, process: asyncio.subprocess.Process, label: str) -> ProcessResult:
        """
        Drain both pipes, then reap the child.

        The child is killed and reaped on every exit other than a normal one,
        including cancellation and a failure while reading its output.
        """
        stdout_chunks: List[str] = []
        stderr_chunks: List[str] = []
        readers = [
            asyncio.ensure_future(self._drain(process.stdout, stdout_chunks, logging.INFO, label)),
            asyncio.ensure_future(self._drain(process.stderr, stderr_chunks, logging.WARNING, label)),
        ]

        try:
            await asyncio.gather(*readers)
            exit_code = await process.wait()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise ScriptExecutionError(
                f"Failed to read output of {label}: {e}",
                stdout="".join(stdout_chunks),
                stderr="".join(stderr_chunks),
            ) from e
        finally:
            if process.returncode is None:
                try:
                    process.kill()
                except ProcessLookupError:
                    pass
                await process.wait()
            for reader in readers:
                reader.cancel()
            await asyncio.gather(*readers, return_exceptions=True)

        stdout = "".join(stdout_chunks)
        stderr = "".join(stderr_chunks)

        if exit_code != 0:
            raise ScriptExecutionError(
                f"Script exited with code {exit_code}\n{stderr}".rstrip(),
                exit_code=exit_code,
                stdout=stdout,
                stderr=stderr,
            )
        return ProcessResult(exit_code=exit_code, stdout=stdout, stderr=stderr)

    @staticmethod
    async def _drain(
        stream: Optional[asyncio.StreamReader],
        chunks: List[str],
        level: int,
        label: str,
    ) -> None:
        """Read fixed-size chunks and log complete lines; over-long lines are flushed as-is."""
        if stream is None:
            return
        pending = b""
        while True:
            data = await stream.read(READ_CHUNK_SIZE)
            if not data:
                break
            pending += data
            *lines, pending = pending.split(b"\n")
            for line in lines:
                _record(line + b"\n", chunks, level, label)
            if len(pending) > STREAM_LIMIT:
                _record(pending, chunks, level, label)
                pending = b""
        if pending:
            _record(pending, chunks, level, label)


def _record(raw: bytes, chunks: List[str], level: int, label: str) -> None:
    text = raw.decode(errors="replace")
    chunks.append(text)
    logger.log(level, f"[{label}] {text.rstrip()}")
