"""Subscription to task lifecycle events and cancellation notices."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Optional, Union

from asynq.errors import OtherError
from asynq.lifecycle import Broker, ComponentLifecycle

__all__ = [
    "TaskEnqueued",
    "TaskStarted",
    "TaskCompleted",
    "TaskFailed",
    "TaskRetried",
    "TaskCancelled",
    "ServerStateChanged",
    "SubscriptionEvent",
    "SubscriberConfig",
    "Subscriber",
]

logger = logging.getLogger(__name__)

_SHUTDOWN_POLL = 0.1
_IDLE_POLL = 1.0


@dataclass(frozen=True)
class TaskEnqueued:
    queue: str
    task_id: str
    task_type: str


@dataclass(frozen=True)
class TaskStarted:
    queue: str
    task_id: str
    task_type: str


@dataclass(frozen=True)
class TaskCompleted:
    queue: str
    task_id: str
    task_type: str


@dataclass(frozen=True)
class TaskFailed:
    queue: str
    task_id: str
    task_type: str
    error: str


@dataclass(frozen=True)
class TaskRetried:
    queue: str
    task_id: str
    task_type: str
    retry_count: int


@dataclass(frozen=True)
class TaskCancelled:
    task_id: str


@dataclass(frozen=True)
class ServerStateChanged:
    server_id: str
    status: str


SubscriptionEvent = Union[
    TaskEnqueued,
    TaskStarted,
    TaskCompleted,
    TaskFailed,
    TaskRetried,
    TaskCancelled,
    ServerStateChanged,
]


@dataclass
class SubscriberConfig:
    """Capacity of the event buffer."""

    buffer_size: int = 100


class Subscriber(ComponentLifecycle):
    """Collects task events, including cancellations announced through the broker."""

    def __init__(self, broker: Broker, config: SubscriberConfig) -> None:
        self.broker = broker
        self.config = config
        self._done = False
        self._events: "asyncio.Queue[SubscriptionEvent]" = asyncio.Queue(
            maxsize=max(config.buffer_size, 1)
        )
        self._receiver_taken = False

    def take_receiver(self) -> Optional["asyncio.Queue[SubscriptionEvent]"]:
        """Hand out the event queue; later calls return None."""
        if self._receiver_taken:
            return None
        self._receiver_taken = True
        return self._events

    def start(self) -> "asyncio.Task[None]":
        logger.info("starting subscriber")
        return asyncio.get_running_loop().create_task(self._run(), name="asynq-subscriber")

    async def _run(self) -> None:
        try:
            stream = self.broker.cancellation_pub_sub()
        except Exception as exc:
            logger.error("Subscriber: failed to subscribe to cancellation events: %s", exc)
            await self._wait_for_shutdown(_IDLE_POLL)
            return
        try:
            await self._consume(stream)
        finally:
            closer = getattr(stream, "aclose", None)
            if closer is not None:
                try:
                    await closer()
                except Exception as exc:
                    logger.debug("Subscriber: error closing stream: %s", exc)

    async def _consume(self, stream: AsyncIterator[str]) -> None:
        iterator = stream.__aiter__()
        pending: Optional[asyncio.Task] = None
        try:
            while True:
                if pending is None:
                    pending = asyncio.ensure_future(iterator.__anext__())
                finished, _ = await asyncio.wait({pending}, timeout=_SHUTDOWN_POLL)
                if not finished:
                    if self._done:
                        logger.debug("Subscriber: shutting down")
                        return
                    continue
                current, pending = pending, None
                try:
                    task_id = current.result()
                except StopAsyncIteration:
                    break
                except Exception as exc:
                    logger.warning("Subscriber: error receiving cancellation event: %s", exc)
                    break
                logger.debug("Subscriber: received cancellation for task %s", task_id)
                await self._events.put(TaskCancelled(task_id=str(task_id)))
        finally:
            if pending is not None and not pending.done():
                pending.cancel()
                try:
                    await pending
                except (asyncio.CancelledError, StopAsyncIteration, Exception):
                    pass
        await self._wait_for_shutdown(_SHUTDOWN_POLL)

    async def _wait_for_shutdown(self, poll: float) -> None:
        while not self._done:
            await asyncio.sleep(poll)
        logger.debug("Subscriber: shutting down")

    async def publish(self, event: SubscriptionEvent) -> None:
        """Queue an event for whoever holds the receiver."""
        try:
            await self._events.put(event)
        except Exception as exc:
            logger.warning("Subscriber: failed to publish event: %s", exc)
            raise OtherError(f"Failed to publish event: {exc}") from exc

    def shutdown(self) -> None:
        self._done = True

    def is_done(self) -> bool:
        return self._done