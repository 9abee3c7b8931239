"""Recovers orphaned tasks whose processing lease has expired."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import List

from asynq.config import DEFAULT_QUEUE_NAME
from asynq.lifecycle import Broker, ComponentLifecycle
from asynq.proto import TaskMessage

__all__ = ["RecovererConfig", "Recoverer"]

logger = logging.getLogger(__name__)

_LEASE_GRACE = timedelta(seconds=30)
_LEASE_EXPIRED = "lease expired"


@dataclass
class RecovererConfig:
    """How often to recover, and which queues."""

    interval: timedelta = timedelta(seconds=8)
    queues: List[str] = field(default_factory=lambda: [DEFAULT_QUEUE_NAME])


class Recoverer(ComponentLifecycle):
    """Retries or archives active tasks whose worker crashed or timed out."""

    def __init__(self, broker: Broker, config: RecovererConfig) -> None:
        self.broker = broker
        self.config = config
        self._done = False

    def start(self) -> "asyncio.Task[None]":
        period = self.config.interval.total_seconds()
        if period <= 0:
            raise ValueError("recoverer interval must be positive")
        return asyncio.get_running_loop().create_task(self._run(period), name="asynq-recoverer")

    async def _run(self, period: float) -> None:
        loop = asyncio.get_running_loop()
        next_tick = loop.time()
        while True:
            delay = next_tick - loop.time()
            if delay > 0:
                await asyncio.sleep(delay)
            next_tick += period
            if self._done:
                logger.debug("Recoverer: shutting down")
                break
            try:
                await self.recover()
            except Exception as exc:
                logger.error("Recoverer error: %s", exc)

    async def recover(self) -> None:
        """Handle lease-expired tasks, then reclaim stale aggregation sets."""
        await self._recover_lease_expired_tasks()
        await self._recover_stale_aggregation_sets()

    async def _recover_lease_expired_tasks(self) -> None:
        cutoff = datetime.now(timezone.utc) - _LEASE_GRACE
        try:
            messages = await self.broker.list_lease_expired(cutoff, list(self.config.queues))
        except Exception as exc:
            logger.warning("Recoverer: could not list lease expired tasks: %s", exc)
            raise
        for msg in messages:
            if msg.retried >= msg.retry:
                try:
                    await self.broker.archive(msg, _LEASE_EXPIRED)
                except Exception as exc:
                    logger.warning("Recoverer: could not archive lease expired task: %s", exc)
            else:
                try:
                    await self._retry(msg, _LEASE_EXPIRED)
                except Exception as exc:
                    logger.warning("Recoverer: could not retry lease expired task: %s", exc)

    async def _recover_stale_aggregation_sets(self) -> None:
        for queue in self.config.queues:
            try:
                await self.broker.reclaim_stale_aggregation_sets(queue)
            except Exception as exc:
                logger.warning(
                    "Recoverer: could not reclaim stale aggregation sets in queue %s: %s",
                    queue,
                    exc,
                )

    async def _retry(self, msg: TaskMessage, error: str) -> None:
        retry_at = datetime.now(timezone.utc) + self._retry_delay(msg.retried)
        await self.broker.retry(msg, retry_at, error, True)

    @staticmethod
    def _retry_delay(retried: int) -> timedelta:
        return timedelta(seconds=10 * (retried + 1))

    def shutdown(self) -> None:
        self._done = True

    def is_done(self) -> bool:
        return self._done