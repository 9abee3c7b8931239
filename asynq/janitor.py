"""Periodically removes expired completed tasks."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import List

from asynq.config import DEFAULT_QUEUE_NAME
from asynq.lifecycle import Broker, ComponentLifecycle

__all__ = ["JanitorConfig", "Janitor"]

logger = logging.getLogger(__name__)


@dataclass
class JanitorConfig:
    """How often to clean up, in what batch size, and which queues."""

    interval: timedelta = timedelta(seconds=8)
    batch_size: int = 100
    queues: List[str] = field(default_factory=lambda: [DEFAULT_QUEUE_NAME])


class Janitor(ComponentLifecycle):
    """Cleans up completed tasks whose retention has expired."""

    def __init__(self, broker: Broker, config: JanitorConfig) -> None:
        self.broker = broker
        self.config = config
        self._done = False

    def start(self) -> "asyncio.Task[None]":
        period = self.config.interval.total_seconds()
        if period <= 0:
            raise ValueError("janitor interval must be positive")
        return asyncio.get_running_loop().create_task(self._run(period), name="asynq-janitor")

    async def _run(self, period: float) -> None:
        loop = asyncio.get_running_loop()
        next_tick = loop.time()
        while True:
            delay = next_tick - loop.time()
            if delay > 0:
                await asyncio.sleep(delay)
            next_tick += period
            if self._done:
                logger.debug("Janitor: shutting down")
                break
            try:
                await self.cleanup()
            except Exception as exc:
                logger.error("Janitor cleanup error: %s", exc)

    async def cleanup(self) -> None:
        """Delete expired completed tasks in every configured queue.

        A failure in one queue is logged and does not stop the others.
        """
        for queue in self.config.queues:
            try:
                await self.broker.delete_expired_completed_tasks(queue)
            except Exception as exc:
                logger.warning(
                    "Janitor: failed to cleanup expired completed tasks for queue %s: %s",
                    queue,
                    exc,
                )

    def shutdown(self) -> None:
        self._done = True

    def is_done(self) -> bool:
        return self._done