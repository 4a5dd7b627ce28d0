"""
Agent Scheduler

Three independent periodic loops on the event loop:
- Task drain: processor tick (default every 30s)
- Eviction sweep: stale terminal tasks (hourly)
- External queue poll: only when a queue URL is configured (every 10s)

A failing iteration is logged and the loop keeps running.
"""

import asyncio
import logging
from typing import Optional, Awaitable, Callable, List, Set

from .config import AgentConfig
from .processor import TaskProcessor
from .queue_client import ExternalQueueAdapter
from .task_store import TaskStore

logger = logging.getLogger("scheduler")


class AgentScheduler:
    """Runs the drain, eviction and poll loops as background tasks."""

    def __init__(
        self,
        config: AgentConfig,
        store: TaskStore,
        processor: TaskProcessor,
        queue: Optional[ExternalQueueAdapter] = None,
    ):
        self.config = config
        self.store = store
        self.processor = processor
        self.queue = queue
        self._running = False
        self._tasks: List[asyncio.Task] = []
        self._in_flight: Set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start all loops."""
        if self._running:
            logger.warning("Scheduler already running")
            return

        self._running = True
        self._tasks = [
            asyncio.create_task(
                self._loop("task-drain", self.config.drain_interval, self._drain)
            ),
            asyncio.create_task(
                self._loop("eviction", self.config.eviction_interval, self._evict, delay_first=True)
            ),
        ]

        if self.queue and self.queue.enabled:
            self._tasks.append(
                asyncio.create_task(
                    self._loop("queue-poll", self.config.queue_poll_interval, self.queue.poll)
                )
            )
            logger.info(f"External queue polling enabled: {self.config.queue_url}")

        logger.info(f"Scheduler started (drain interval: {self.config.drain_interval}s)")

    async def stop(self) -> None:
        """Cancel all loops. In-flight work is not drained."""
        self._running = False
        tasks = self._tasks + list(self._in_flight)
        for task in tasks:
            task.cancel()
        # Tick failures were already logged by _tick_done
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks = []
        self._in_flight.clear()
        logger.info("Scheduler stopped")

    async def _drain(self) -> None:
        # Fire on a fixed cadence; a tick landing mid-task is a no-op in the processor
        tick = asyncio.create_task(self.processor.tick())
        self._in_flight.add(tick)
        tick.add_done_callback(self._tick_done)

    def _tick_done(self, tick: asyncio.Task) -> None:
        self._in_flight.discard(tick)
        if not tick.cancelled() and tick.exception() is not None:
            logger.error(f"Scheduler task-drain error: {tick.exception()}")

    async def _evict(self) -> None:
        removed = self.store.evict_stale()
        logger.info(f"Task queue cleanup completed ({removed} removed)")

    async def _loop(
        self,
        name: str,
        interval: float,
        action: Callable[[], Awaitable[object]],
        delay_first: bool = False,
    ) -> None:
        if delay_first:
            await asyncio.sleep(interval)
        while self._running:
            try:
                await action()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Scheduler {name} error: {e}")
            await asyncio.sleep(interval)
