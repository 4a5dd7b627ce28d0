"""
Post-Processing Pipeline

Best-effort automation after the template script succeeds:
1. Dev server bootstrap for the first recognised project marker
2. Custom commands, strictly in the order supplied

Failures are logged and never change the task's status.
"""

import logging
from pathlib import Path
from typing import List, Optional, Tuple

from .config import AgentConfig
from .errors import PostProcessingError, ScriptExecutionError
from .process_runner import ProcessRunner
from .task_store import Task

logger = logging.getLogger("post_processing")

# Checked in order; the first marker present wins
DEV_SERVER_COMMANDS: List[Tuple[str, str]] = [
    ("package.json", "npm install && npm run dev"),
    ("requirements.txt", "pip install -r requirements.txt && python manage.py runserver"),
]


def detect_dev_server_command(project_path: Path) -> Optional[str]:
    for marker, command in DEV_SERVER_COMMANDS:
        if (project_path / marker).exists():
            return command
    return None


class PostProcessor:
    """Runs the optional post-processing directives of a task."""

    def __init__(self, config: AgentConfig, runner: ProcessRunner):
        self.config = config
        self.runner = runner

    def project_path(self, task: Task) -> Path:
        return Path(self.config.work_dir) / task.payload.name

    async def run(self, task: Task) -> List[PostProcessingError]:
        """Run both stages; returns the failures that were logged."""
        directives = task.payload.post_processing
        if not directives:
            return []

        failures: List[PostProcessingError] = []

        if directives.start_server:
            failure = await self.start_development_server(task)
            if failure:
                failures.append(failure)

        if directives.custom_commands:
            failures.extend(await self.run_custom_commands(directives.custom_commands, task))

        return failures

    async def start_development_server(self, task: Task) -> Optional[PostProcessingError]:
        project_path = self.project_path(task)
        command = detect_dev_server_command(project_path)
        if not command:
            logger.info(f"[{task.id}] No dev server marker found in {project_path}")
            return None

        try:
            await self.runner.launch_shell(command, cwd=project_path, label=task.id)
        except ScriptExecutionError as e:
            logger.warning(f"[{task.id}] Dev server failed to start: {e}")
            return PostProcessingError(str(e), command)
        return None

    async def run_custom_commands(self, commands: List[str], task: Task) -> List[PostProcessingError]:
        project_path = self.project_path(task)
        failures: List[PostProcessingError] = []

        for command in commands:
            try:
                await self.runner.run_shell(command, cwd=project_path, label=task.id)
                logger.info(f"[{task.id}] Custom command completed: {command}")
            except ScriptExecutionError as e:
                logger.warning(f"[{task.id}] Custom command failed: {command} ({e})")
                failures.append(PostProcessingError(str(e), command))

        return failures
