"""The broker interface and the lifecycle shared by background components."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any, AsyncIterator, List, Optional, Protocol, Sequence

from asynq.proto import ServerInfo, TaskMessage

__all__ = ["Broker", "ComponentLifecycle"]


class Broker(Protocol):
    """Storage and scheduling backend that the background components talk to."""

    async def ping(self) -> None:
        """Check that the backend is reachable."""

    async def close(self) -> None:
        """Release the backend connection."""

    async def enqueue(self, task: Any) -> Any:
        """Put a task on its pending queue and return its info."""

    async def enqueue_unique(self, task: Any, ttl: timedelta) -> Any:
        """Enqueue a task unless an identical one was enqueued within ``ttl``."""

    async def dequeue(self, queues: Sequence[str]) -> Optional[TaskMessage]:
        """Take the next task from the first non-empty queue."""

    async def done(self, msg: TaskMessage) -> None:
        """Mark a task as processed."""

    async def mark_as_complete(self, msg: TaskMessage, result: bytes) -> None:
        """Move a task to the completed set, storing its result."""

    async def requeue(self, msg: TaskMessage, process_at: datetime, error_msg: str) -> None:
        """Put a task back to be processed at ``process_at``."""

    async def schedule(self, task: Any, process_at: datetime) -> Any:
        """Schedule a task for a later time."""

    async def schedule_unique(self, task: Any, process_at: datetime, ttl: timedelta) -> Any:
        """Schedule a task unless an identical one exists within ``ttl``."""

    async def retry(
        self, msg: TaskMessage, process_at: datetime, error_msg: str, is_failure: bool
    ) -> None:
        """Move a failed task to the retry set."""

    async def archive(self, msg: TaskMessage, error_msg: str) -> None:
        """Move a task to the archive."""

    async def forward_if_ready(self, queues: Sequence[str]) -> int:
        """Move due scheduled and retry tasks to pending; return how many."""

    async def add_to_group(self, task: Any, group: str) -> Any:
        """Add a task to an aggregation group."""

    async def add_to_group_unique(self, task: Any, group: str, ttl: timedelta) -> Any:
        """Add a task to a group unless an identical one exists within ``ttl``."""

    async def list_groups(self, queue: str) -> List[str]:
        """Names of the aggregation groups in a queue."""

    async def aggregation_check(
        self,
        queue: str,
        group: str,
        aggregation_delay: timedelta,
        max_delay: timedelta,
        max_size: int,
    ) -> Optional[str]:
        """Return the id of an aggregation set ready for processing, if any."""

    async def read_aggregation_set(self, queue: str, group: str, set_id: str) -> List[TaskMessage]:
        """Tasks in an aggregation set."""

    async def delete_aggregation_set(self, queue: str, group: str, set_id: str) -> None:
        """Remove an aggregation set and its tasks."""

    async def reclaim_stale_aggregation_sets(self, queue: str) -> None:
        """Return tasks of expired aggregation sets to their groups."""

    async def delete_expired_completed_tasks(self, queue: str) -> int:
        """Delete completed tasks past retention; return how many."""

    async def list_lease_expired(
        self, cutoff: datetime, queues: Sequence[str]
    ) -> List[TaskMessage]:
        """Active tasks whose lease expired before ``cutoff``."""

    async def extend_lease(self, queue: str, task_id: str, lease_duration: timedelta) -> None:
        """Extend the processing lease of a task."""

    async def write_server_state(self, server_info: ServerInfo, ttl: timedelta) -> None:
        """Record a server's state for ``ttl``."""

    async def clear_server_state(self, host: str, pid: int, server_id: str) -> None:
        """Remove a server's recorded state."""

    def cancellation_pub_sub(self) -> AsyncIterator[str]:
        """Stream ids of tasks whose cancellation was requested."""

    async def publish_cancellation(self, task_id: str) -> None:
        """Request cancellation of a task."""

    async def write_result(self, queue: str, task_id: str, result: bytes) -> None:
        """Store the result of a task."""


class ComponentLifecycle(ABC):
    """A background component that can be started, stopped and polled."""

    @abstractmethod
    def start(self) -> "asyncio.Task[None]":
        """Start the component's loop on the running event loop."""

    @abstractmethod
    def shutdown(self) -> None:
        """Ask the component to stop after its current step."""

    @abstractmethod
    def is_done(self) -> bool:
        """Whether the component has been asked to stop."""