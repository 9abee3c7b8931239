"""Aggregation of grouped tasks into single batch tasks."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Callable, List, Optional

from asynq.config import DEFAULT_QUEUE_NAME
from asynq.errors import InvalidTaskTypeError
from asynq.lifecycle import Broker, ComponentLifecycle

__all__ = [
    "Task",
    "GroupAggregator",
    "GroupAggregatorFunc",
    "AggregatorConfig",
    "Aggregator",
]

logger = logging.getLogger(__name__)

_DEFAULT_MAX_DELAY = timedelta(seconds=30)
_DEFAULT_MAX_SIZE = 10


@dataclass(frozen=True)
class Task:
    """A unit of work: a type name, a payload and routing options."""

    type: str
    payload: bytes = b""
    queue: Optional[str] = None
    group: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.type.strip():
            raise InvalidTaskTypeError(self.type)
        object.__setattr__(self, "payload", bytes(self.payload))

    def with_queue(self, queue: str) -> "Task":
        return dataclasses.replace(self, queue=queue)

    def with_group(self, group: str) -> "Task":
        return dataclasses.replace(self, group=group)


class GroupAggregator(ABC):
    """Combines the tasks of a group into one task."""

    @abstractmethod
    def aggregate(self, group: str, tasks: List[Task]) -> Task:
        """Return the aggregated task; its queue is replaced by the group's queue."""


class GroupAggregatorFunc(GroupAggregator):
    """A GroupAggregator backed by a plain function."""

    def __init__(self, func: Callable[[str, List[Task]], Task]) -> None:
        self.func = func

    def aggregate(self, group: str, tasks: List[Task]) -> Task:
        return self.func(group, tasks)


@dataclass
class AggregatorConfig:
    """Check interval, queues and group limits."""

    interval: timedelta = timedelta(seconds=5)
    queues: List[str] = field(default_factory=lambda: [DEFAULT_QUEUE_NAME])
    grace_period: timedelta = timedelta(seconds=60)
    max_delay: Optional[timedelta] = None
    max_size: Optional[int] = None
    group_aggregator: Optional[GroupAggregator] = None


class Aggregator(ComponentLifecycle):
    """Watches task groups and turns ready aggregation sets into batch tasks."""

    def __init__(self, broker: Broker, config: AggregatorConfig) -> None:
        self.broker = broker
        self.config = config
        self._done = False

    def start(self) -> "asyncio.Task[None]":
        period = self.config.interval.total_seconds()
        if period <= 0:
            raise ValueError("aggregator interval must be positive")
        return asyncio.get_running_loop().create_task(self._run(period), name="asynq-aggregator")

    async def _run(self, period: float) -> None:
        loop = asyncio.get_running_loop()
        next_tick = loop.time()
        while True:
            delay = next_tick - loop.time()
            if delay > 0:
                await asyncio.sleep(delay)
            next_tick += period
            if self._done:
                logger.debug("Aggregator: shutting down")
                break
            try:
                await self.aggregate()
            except Exception as exc:
                logger.error("Aggregator error: %s", exc)

    async def aggregate(self) -> None:
        """Check every group of every queue once and process ready sets."""
        max_delay = self.config.max_delay or _DEFAULT_MAX_DELAY
        max_size = self.config.max_size if self.config.max_size is not None else _DEFAULT_MAX_SIZE
        for queue in self.config.queues:
            groups = await self.broker.list_groups(queue)
            for group in groups:
                logger.debug("Aggregator: found group in queue %s: %s", queue, group)
                try:
                    set_id = await self.broker.aggregation_check(
                        queue, group, self.config.grace_period, max_delay, max_size
                    )
                except Exception as exc:
                    logger.debug("Aggregator: aggregation check failed: %s", exc)
                    continue
                if set_id is None:
                    continue
                await self._process_set(queue, group, set_id)

    async def _process_set(self, queue: str, group: str, set_id: str) -> None:
        logger.debug(
            "Aggregator: found aggregation set ready for processing: queue=%s, set_id=%s",
            queue,
            set_id,
        )
        try:
            messages = await self.broker.read_aggregation_set(queue, group, set_id)
        except Exception as exc:
            logger.warning("Aggregator: failed to read aggregation set %s: %s", set_id, exc)
        else:
            await self._handle_messages(queue, group, set_id, messages)

        try:
            await self.broker.delete_aggregation_set(queue, group, set_id)
        except Exception as exc:
            logger.warning("Aggregator: failed to close aggregation set %s: %s", set_id, exc)

    async def _handle_messages(self, queue: str, group: str, set_id: str, messages) -> None:
        count = len(messages)
        logger.info(
            "Aggregator: processing %d tasks from aggregation set %s in queue %s",
            count,
            set_id,
            queue,
        )
        aggregator = self.config.group_aggregator
        if aggregator is None:
            logger.debug("Aggregator: no GroupAggregator configured, tasks read but not processed")
            return

        tasks = []
        for msg in messages:
            try:
                tasks.append(Task(msg.type, msg.payload))
            except Exception as exc:
                logger.warning("Aggregator: failed to create task from message: %s", exc)
        if not tasks:
            return

        try:
            aggregated = aggregator.aggregate(group, tasks)
        except Exception as exc:
            logger.error("Aggregator: failed to aggregate tasks for group '%s': %s", group, exc)
            return
        logger.info(
            "Aggregator: aggregated %d tasks into task type '%s' for group '%s'",
            count,
            aggregated.type,
            group,
        )
        to_enqueue = aggregated.with_queue(queue)
        if to_enqueue.group is None:
            to_enqueue = to_enqueue.with_group(group)
        try:
            await self.broker.enqueue(to_enqueue)
        except Exception as exc:
            logger.error("Aggregator: failed to enqueue aggregated task: %s", exc)
        else:
            logger.debug("Aggregator: successfully enqueued aggregated task to queue '%s'", queue)

    def shutdown(self) -> None:
        self._done = True

    def is_done(self) -> bool:
        return self._done