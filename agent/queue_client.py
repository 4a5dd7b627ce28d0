"""
External Queue Adapter

Polls a remote endpoint for queued repository requests and adds them to the
task store. Each task that carries an ID is acknowledged back to the
endpoint; acknowledgments are best-effort.
"""

import logging
from typing import Optional, Dict, Any, List

import httpx

from .config import AgentConfig
from .task_store import TaskStore, TaskPayload

logger = logging.getLogger("queue_client")

REQUEST_TIMEOUT_SECONDS = 30.0


class ExternalQueueAdapter:
    """Feeds the task store from an external queue endpoint."""

    def __init__(
        self,
        config: AgentConfig,
        store: TaskStore,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config
        self.store = store
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return self.config.polling_enabled

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.config.github_token or ''}",
            "X-API-Key": self.config.api_key,
        }

    async def poll(self) -> int:
        """
        Run one poll cycle and return the number of tasks added.

        A failed fetch aborts the cycle with a warning; tasks added before a
        failure stay in the store.
        """
        if not self.enabled:
            return 0

        queue_url = self.config.queue_url.rstrip("/")
        added = 0

        async with httpx.AsyncClient(
            timeout=REQUEST_TIMEOUT_SECONDS,
            transport=self._transport,
        ) as client:
            try:
                response = await client.get(queue_url, headers=self._headers())
                response.raise_for_status()
                data = response.json()
            except (httpx.HTTPError, ValueError) as e:
                logger.warning(f"Failed to poll external queue: {e}")
                return 0

            tasks: List[Dict[str, Any]] = []
            if isinstance(data, dict):
                tasks = data.get("tasks") or []

            for entry in tasks:
                if not isinstance(entry, dict):
                    logger.warning(f"Skipping malformed queue entry: {entry!r}")
                    continue

                self.store.add(TaskPayload.from_dict(entry))
                added += 1

                if entry.get("id"):
                    await self._acknowledge(client, queue_url, str(entry["id"]))

        if added:
            logger.info(f"Added {added} task(s) from external queue")
        return added

    async def _acknowledge(self, client: httpx.AsyncClient, queue_url: str, remote_id: str) -> None:
        try:
            response = await client.post(
                f"{queue_url}/ack/{remote_id}",
                json={},
                headers={"X-API-Key": self.config.api_key},
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(f"Failed to acknowledge queued task {remote_id}: {e}")
