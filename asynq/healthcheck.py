"""Periodic health checks of the broker connection and optional custom probes."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Optional

from asynq.lifecycle import Broker, ComponentLifecycle

__all__ = ["HealthcheckConfig", "Healthcheck", "HealthcheckFunc"]

logger = logging.getLogger(__name__)

HealthcheckFunc = Callable[[], bool]


@dataclass
class HealthcheckConfig:
    """How often the health check runs."""

    interval: timedelta = timedelta(seconds=15)


class Healthcheck(ComponentLifecycle):
    """Pings the broker and runs an optional custom check, recording the outcome."""

    def __init__(self, broker: Broker, config: HealthcheckConfig) -> None:
        self.broker = broker
        self.config = config
        self._done = False
        self._healthy = True
        self.custom_check: Optional[HealthcheckFunc] = None

    def with_custom_check(self, check: HealthcheckFunc) -> "Healthcheck":
        """Install a custom check that must return True for the server to be healthy."""
        self.custom_check = check
        return self

    def start(self) -> "asyncio.Task[None]":
        period = self.config.interval.total_seconds()
        if period <= 0:
            raise ValueError("healthcheck interval must be positive")
        return asyncio.get_running_loop().create_task(self._run(period), name="asynq-healthcheck")

    async def _run(self, period: float) -> None:
        loop = asyncio.get_running_loop()
        next_tick = loop.time()
        while True:
            delay = next_tick - loop.time()
            if delay > 0:
                await asyncio.sleep(delay)
            next_tick += period
            if self._done:
                logger.debug("Healthcheck: shutting down")
                break
            await self.check()

    async def check(self) -> bool:
        """Run one health check, store and return whether the server is healthy."""
        healthy = True
        try:
            await self.broker.ping()
        except Exception as exc:
            logger.warning("Healthcheck: Redis ping failed: %s", exc)
            healthy = False

        if self.custom_check is not None:
            try:
                passed = bool(self.custom_check())
            except Exception as exc:
                logger.warning("Healthcheck: custom check raised: %s", exc)
                passed = False
            if not passed:
                logger.warning("Healthcheck: custom check failed")
                healthy = False

        self._healthy = healthy
        return healthy

    def is_healthy(self) -> bool:
        return self._healthy

    def shutdown(self) -> None:
        self._done = True

    def is_done(self) -> bool:
        return self._done