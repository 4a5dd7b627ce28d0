"""
Task Processor

Single-flight driver: each tick takes at most one pending task through
validation, dependency checks, the template script and post-processing, and
records the terminal status. A tick that arrives while a task is in flight
returns immediately.
"""

import logging
from pathlib import Path
from typing import Optional, Dict, Any

from .config import AgentConfig
from .dependencies import DependencyChecker
from .errors import ValidationError
from .post_processing import PostProcessor
from .process_runner import ProcessRunner, ProcessResult
from .task_store import Task, TaskStore, TaskStatus

logger = logging.getLogger("processor")


class TaskProcessor:
    """Drains the task store one task at a time."""

    def __init__(
        self,
        config: AgentConfig,
        store: TaskStore,
        runner: ProcessRunner,
        post_processor: PostProcessor,
        dependencies: DependencyChecker,
    ):
        self.config = config
        self.store = store
        self.runner = runner
        self.post_processor = post_processor
        self.dependencies = dependencies
        self._processing = False

    @property
    def processing(self) -> bool:
        """True while a task is being driven."""
        return self._processing

    async def tick(self) -> Optional[Task]:
        """
        Process the oldest pending task, if any.

        Returns the task that was driven to a terminal state, or None when
        nothing ran.
        """
        # Flag is checked and set with no await in between
        if self._processing or self.store.has_processing():
            return None

        task = self.store.next_pending()
        if not task:
            return None

        self._processing = True
        try:
            self.store.set_status(task.id, TaskStatus.PROCESSING)
            try:
                result = await self.execute(task)
            except Exception as e:
                message = str(e) or e.__class__.__name__
                self.store.set_status(task.id, TaskStatus.FAILED, error=message)
                logger.error(f"Task failed: {task.id}: {message}")
            else:
                self.store.set_status(task.id, TaskStatus.COMPLETED, result=result)
                logger.info(f"Task completed successfully: {task.id}")
        finally:
            self._processing = False

        return task

    async def execute(self, task: Task) -> Dict[str, Any]:
        """Run the orchestration sequence; raises on any task-level failure."""
        logger.info(f"Executing task: {task.id}")

        missing = task.payload.missing_fields()
        if missing:
            raise ValidationError(f"Missing required parameters: {' and '.join(missing)}")

        await self.dependencies.require()

        script_result = await self.runner.run_script(task)

        if task.payload.post_processing:
            await self._post_process(task)

        return self._summarize(task, script_result)

    async def _post_process(self, task: Task) -> None:
        try:
            failures = await self.post_processor.run(task)
        except Exception as e:
            logger.warning(f"[{task.id}] Post-processing error: {e}")
            return
        if failures:
            logger.warning(
                f"[{task.id}] Post-processing finished with {len(failures)} failed command(s)"
            )

    def _summarize(self, task: Task, script_result: ProcessResult) -> Dict[str, Any]:
        summary = {
            "success": True,
            "repository_name": task.payload.name,
            "working_directory": str(Path(self.config.work_dir) / task.payload.name),
        }
        summary.update(script_result.to_dict())
        return summary
