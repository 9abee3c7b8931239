"""Periodically records server state so that the server's lease stays alive."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict

from asynq.lifecycle import Broker, ComponentLifecycle
from asynq.proto import ServerInfo

__all__ = ["HeartbeatMeta", "Heartbeat"]

logger = logging.getLogger(__name__)

_STATUS_ACTIVE = "active"


@dataclass
class HeartbeatMeta:
    """Server metadata that does not change between heartbeats."""

    host: str
    pid: int
    server_uuid: str
    concurrency: int
    queues: Dict[str, int] = field(default_factory=dict)
    strict_priority: bool = False
    started: datetime = field(default_factory=datetime.now)

    def server_info(self, active_worker_count: int) -> ServerInfo:
        """Build the server record reported in a heartbeat."""
        return ServerInfo(
            host=self.host,
            pid=self.pid,
            server_id=self.server_uuid,
            concurrency=self.concurrency,
            queues=dict(self.queues),
            strict_priority=self.strict_priority,
            status=_STATUS_ACTIVE,
            start_time=self.started,
            active_worker_count=active_worker_count,
        )


class Heartbeat(ComponentLifecycle):
    """Writes the server state every interval; clears it when the loop ends."""

    def __init__(
        self,
        broker: Broker,
        interval: timedelta,
        meta: HeartbeatMeta,
        active_workers: Callable[[], int],
    ) -> None:
        self.broker = broker
        self.interval = interval
        self.meta = meta
        self.active_workers = active_workers
        self._shutting_down = False

    def start(self) -> "asyncio.Task[None]":
        period = self.interval.total_seconds()
        if period <= 0:
            raise ValueError("heartbeat interval must be positive")
        return asyncio.get_running_loop().create_task(self._run(period), name="asynq-heartbeat")

    async def _run(self, period: float) -> None:
        loop = asyncio.get_running_loop()
        next_tick = loop.time()
        while True:
            delay = next_tick - loop.time()
            if delay > 0:
                await asyncio.sleep(delay)
            next_tick += period
            if self._shutting_down:
                break
            try:
                await self.beat()
            except Exception as exc:
                logger.warning("Heartbeat write failed: %s", exc)
        try:
            await self.broker.clear_server_state(
                self.meta.host, self.meta.pid, self.meta.server_uuid
            )
        except Exception as exc:
            logger.debug("Heartbeat: could not clear server state: %s", exc)

    async def beat(self) -> ServerInfo:
        """Write the current server state with a lease of twice the interval."""
        info = self.meta.server_info(int(self.active_workers()))
        await self.broker.write_server_state(info, self.interval * 2)
        return info

    def shutdown(self) -> None:
        self._shutting_down = True

    def is_done(self) -> bool:
        return self._shutting_down