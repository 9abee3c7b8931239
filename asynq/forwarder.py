"""Moves due scheduled and retry tasks to the pending queue."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import List

from asynq.config import DEFAULT_QUEUE_NAME
from asynq.lifecycle import Broker, ComponentLifecycle

__all__ = ["ForwarderConfig", "Forwarder"]

logger = logging.getLogger(__name__)


@dataclass
class ForwarderConfig:
    """How often to check, and which queues."""

    interval: timedelta = timedelta(seconds=5)
    queues: List[str] = field(default_factory=lambda: [DEFAULT_QUEUE_NAME])


class Forwarder(ComponentLifecycle):
    """Periodically forwards tasks from the scheduled and retry sets once they are due."""

    def __init__(self, broker: Broker, config: ForwarderConfig) -> None:
        self.broker = broker
        self.config = config
        self._done = False

    def start(self) -> "asyncio.Task[None]":
        period = self.config.interval.total_seconds()
        if period <= 0:
            raise ValueError("forwarder interval must be positive")
        return asyncio.get_running_loop().create_task(self._run(period), name="asynq-forwarder")

    async def _run(self, period: float) -> None:
        loop = asyncio.get_running_loop()
        next_tick = loop.time()
        while True:
            delay = next_tick - loop.time()
            if delay > 0:
                await asyncio.sleep(delay)
            next_tick += period
            if self._done:
                logger.debug("Forwarder: shutting down")
                break
            try:
                await self.forward()
            except Exception as exc:
                logger.error("Forwarder error: %s", exc)

    async def forward(self) -> int:
        """Forward due tasks of every configured queue; return how many moved."""
        try:
            return await self.broker.forward_if_ready(list(self.config.queues))
        except Exception as exc:
            logger.warning("Forwarder: failed to forward ready tasks: %s", exc)
            raise

    def shutdown(self) -> None:
        self._done = True

    def is_done(self) -> bool:
        return self._done