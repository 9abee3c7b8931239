"""Server and client configuration."""

from __future__ import annotations

import dataclasses
import os
import random
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Callable, Dict, Optional

from asynq.errors import ConfigError, InvalidQueueNameError

__all__ = [
    "DEFAULT_QUEUE_NAME",
    "ServerConfig",
    "ClientConfig",
    "default_retry_delay",
    "RetryDelayFunc",
    "ErrorHandlerFunc",
    "HealthCheckFunc",
]

DEFAULT_QUEUE_NAME = "default"

RetryDelayFunc = Callable[[int, str, str], timedelta]
ErrorHandlerFunc = Callable[[str, str, str], None]
HealthCheckFunc = Callable[[Optional[str]], None]

_MIN_GRACE_PERIOD = timedelta(seconds=1)


def _default_queues() -> Dict[str, int]:
    return {DEFAULT_QUEUE_NAME: 1}


@dataclass
class ServerConfig:
    """Settings for a worker server. The ``with_*`` methods return updated copies."""

    concurrency: int = field(default_factory=lambda: os.cpu_count() or 1)
    queues: Dict[str, int] = field(default_factory=_default_queues)
    strict_priority: bool = False
    task_check_interval: timedelta = timedelta(seconds=1)
    delayed_task_check_interval: timedelta = timedelta(seconds=5)
    shutdown_timeout: timedelta = timedelta(seconds=8)
    health_check_interval: timedelta = timedelta(seconds=15)
    group_grace_period: timedelta = timedelta(seconds=60)
    group_max_delay: Optional[timedelta] = None
    group_max_size: Optional[int] = None
    janitor_interval: timedelta = timedelta(seconds=8)
    janitor_batch_size: int = 100
    heartbeat_interval: timedelta = timedelta(seconds=5)
    group_aggregator_enabled: bool = False

    def _replace(self, **changes) -> "ServerConfig":
        changes.setdefault("queues", dict(self.queues))
        return dataclasses.replace(self, **changes)

    def with_concurrency(self, concurrency: int) -> "ServerConfig":
        return self._replace(concurrency=max(concurrency, 1))

    def with_queues(self, queues: Dict[str, int]) -> "ServerConfig":
        return self._replace(queues=dict(queues) if queues else _default_queues())

    def add_queue(self, name: str, priority: int) -> "ServerConfig":
        if not name.strip():
            raise InvalidQueueNameError(name)
        if priority <= 0:
            raise ConfigError("Queue priority must be positive")
        queues = dict(self.queues)
        queues[name] = priority
        return self._replace(queues=queues)

    def with_strict_priority(self, strict: bool) -> "ServerConfig":
        return self._replace(strict_priority=strict)

    def with_task_check_interval(self, interval: timedelta) -> "ServerConfig":
        return self._replace(task_check_interval=interval)

    def with_delayed_task_check_interval(self, interval: timedelta) -> "ServerConfig":
        return self._replace(delayed_task_check_interval=interval)

    def with_shutdown_timeout(self, timeout: timedelta) -> "ServerConfig":
        return self._replace(shutdown_timeout=timeout)

    def with_health_check_interval(self, interval: timedelta) -> "ServerConfig":
        return self._replace(health_check_interval=interval)

    def with_group_grace_period(self, grace_period: timedelta) -> "ServerConfig":
        if grace_period < _MIN_GRACE_PERIOD:
            raise ConfigError("Group grace period cannot be less than 1 second")
        return self._replace(group_grace_period=grace_period)

    def with_group_max_delay(self, max_delay: timedelta) -> "ServerConfig":
        return self._replace(group_max_delay=max_delay)

    def with_group_max_size(self, max_size: int) -> "ServerConfig":
        return self._replace(group_max_size=max_size)

    def with_janitor_interval(self, interval: timedelta) -> "ServerConfig":
        return self._replace(janitor_interval=interval)

    def with_janitor_batch_size(self, batch_size: int) -> "ServerConfig":
        return self._replace(janitor_batch_size=max(batch_size, 1))

    def enable_group_aggregator(self, enabled: bool) -> "ServerConfig":
        return self._replace(group_aggregator_enabled=enabled)

    def validate(self) -> None:
        """Raise an error if the configuration cannot be used."""
        if self.concurrency <= 0:
            raise ConfigError("Concurrency must be greater than 0")
        if not self.queues:
            raise ConfigError("At least one queue must be configured")
        for name, priority in self.queues.items():
            if not name.strip():
                raise InvalidQueueNameError(name)
            if priority <= 0:
                raise ConfigError("Queue priority must be positive")
        if self.group_grace_period < _MIN_GRACE_PERIOD:
            raise ConfigError("Group grace period cannot be less than 1 second")


@dataclass(frozen=True)
class ClientConfig:
    """Settings for a client. The ``with_*`` methods return updated copies."""

    connection_timeout: timedelta = timedelta(seconds=30)
    request_timeout: timedelta = timedelta(seconds=60)
    max_retries: int = 3
    retry_interval: timedelta = timedelta(seconds=1)

    def with_connection_timeout(self, timeout: timedelta) -> "ClientConfig":
        return dataclasses.replace(self, connection_timeout=timeout)

    def with_request_timeout(self, timeout: timedelta) -> "ClientConfig":
        return dataclasses.replace(self, request_timeout=timeout)

    def with_max_retries(self, max_retries: int) -> "ClientConfig":
        return dataclasses.replace(self, max_retries=max_retries)

    def with_retry_interval(self, interval: timedelta) -> "ClientConfig":
        return dataclasses.replace(self, retry_interval=interval)


def default_retry_delay(retried: int, error: str, task_type: str) -> timedelta:
    """Exponential backoff with jitter; never shorter than one second."""
    base_delay = int(float(retried) ** 4) + 15
    modulus = abs(30 * (retried + 1))
    if modulus == 0:
        raise ValueError("retry count must not be -1")
    jitter = random.randint(-(modulus - 1), modulus - 1)
    return timedelta(seconds=max(base_delay + jitter, 1))