"""Inspection and management of queues and tasks."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Optional, Protocol

from asynq.errors import NotImplementedFeatureError, TaskNotFoundError
from asynq.proto import ServerInfo

__all__ = ["TaskState", "Pagination", "Inspector"]


class TaskState(str, Enum):
    """Lifecycle state of a task."""

    ACTIVE = "active"
    PENDING = "pending"
    AGGREGATING = "aggregating"
    SCHEDULED = "scheduled"
    RETRY = "retry"
    ARCHIVED = "archived"
    COMPLETED = "completed"


@dataclass(frozen=True)
class Pagination:
    """A page of a task listing; pages are numbered from 1."""

    page: int = 1
    size: int = 30


_RUNNABLE_STATES = frozenset({TaskState.ARCHIVED, TaskState.RETRY, TaskState.SCHEDULED})


class _InspectableBroker(Protocol):
    """The backend operations the inspector relies on."""

    async def get_queue_stats(self, queue: str) -> Any: ...
    async def get_queue_info(self, queue: str) -> Any: ...
    async def get_all_queue_stats(self) -> List[Any]: ...
    async def get_queues(self) -> List[str]: ...
    async def list_groups(self, queue: str) -> List[str]: ...
    async def list_tasks(self, queue: str, state: TaskState, pagination: Pagination) -> List[Any]: ...
    async def get_task_info(self, queue: str, task_id: str) -> Optional[Any]: ...
    async def delete_task(self, queue: str, task_id: str) -> None: ...
    async def delete_all_archived_tasks(self, queue: str) -> int: ...
    async def delete_all_retry_tasks(self, queue: str) -> int: ...
    async def delete_all_scheduled_tasks(self, queue: str) -> int: ...
    async def delete_all_pending_tasks(self, queue: str) -> int: ...
    async def requeue_all_archived_tasks(self, queue: str) -> int: ...
    async def requeue_all_retry_tasks(self, queue: str) -> int: ...
    async def requeue_all_scheduled_tasks(self, queue: str) -> int: ...
    async def run_task(self, queue: str, task_id: str) -> None: ...
    async def archive_task(self, queue: str, task_id: str) -> None: ...
    async def archive_all_pending_tasks(self, queue: str) -> int: ...
    async def archive_all_retry_tasks(self, queue: str) -> int: ...
    async def archive_all_scheduled_tasks(self, queue: str) -> int: ...
    async def archive_all_aggregating_tasks(self, queue: str) -> int: ...
    async def pause_queue(self, queue: str) -> None: ...
    async def unpause_queue(self, queue: str) -> None: ...
    async def is_queue_paused(self, queue: str) -> bool: ...
    async def get_paused_queues(self) -> List[str]: ...
    async def get_result(self, queue: str, task_id: str) -> Optional[bytes]: ...
    async def delete_expired_completed_tasks(self, queue: str) -> int: ...
    async def get_servers(self) -> List[ServerInfo]: ...
    async def get_server_info(self, server_id: str) -> Optional[ServerInfo]: ...
    async def get_history(self, queue: str, days: int) -> List[Any]: ...
    async def publish_cancellation(self, task_id: str) -> None: ...


class Inspector:
    """Inspects and manages queues and tasks through a broker."""

    def __init__(self, broker: _InspectableBroker) -> None:
        self.broker = broker

    # --- queues -------------------------------------------------------------

    async def get_queue_stats(self, queue: str) -> Any:
        return await self.broker.get_queue_stats(queue)

    async def get_queue_info(self, queue: str) -> Any:
        return await self.broker.get_queue_info(queue)

    async def get_all_queue_stats(self) -> List[Any]:
        return await self.broker.get_all_queue_stats()

    async def get_queues(self) -> List[str]:
        return await self.broker.get_queues()

    async def get_groups(self, queue: str) -> List[str]:
        return await self.broker.list_groups(queue)

    # --- listing ------------------------------------------------------------

    async def list_tasks(self, queue: str, state: TaskState, pagination: Pagination) -> List[Any]:
        return await self.broker.list_tasks(queue, state, pagination)

    async def _list_default(self, queue: str, state: TaskState) -> List[Any]:
        return await self.broker.list_tasks(queue, state, Pagination())

    async def list_active_tasks(self, queue: str) -> List[Any]:
        return await self._list_default(queue, TaskState.ACTIVE)

    async def list_pending_tasks(self, queue: str) -> List[Any]:
        return await self._list_default(queue, TaskState.PENDING)

    async def list_pending_tasks_with_pagination(
        self, queue: str, pagination: Pagination
    ) -> List[Any]:
        """List pending tasks; an invalid page yields an empty list."""
        if pagination.page < 1 or pagination.size <= 0:
            return []
        return await self.broker.list_tasks(queue, TaskState.PENDING, pagination)

    async def list_scheduled_tasks(self, queue: str) -> List[Any]:
        return await self._list_default(queue, TaskState.SCHEDULED)

    async def list_retry_tasks(self, queue: str) -> List[Any]:
        return await self._list_default(queue, TaskState.RETRY)

    async def list_archived_tasks(self, queue: str) -> List[Any]:
        return await self._list_default(queue, TaskState.ARCHIVED)

    async def list_completed_tasks(self, queue: str) -> List[Any]:
        return await self._list_default(queue, TaskState.COMPLETED)

    async def list_aggregating_tasks(self, queue: str) -> List[Any]:
        return await self._list_default(queue, TaskState.AGGREGATING)

    async def get_task_info(self, queue: str, task_id: str) -> Any:
        """Return a task's info, raising TaskNotFoundError if it does not exist."""
        info = await self.broker.get_task_info(queue, task_id)
        if info is None:
            raise TaskNotFoundError(task_id)
        return info

    # --- deleting -----------------------------------------------------------

    async def delete_task(self, queue: str, task_id: str) -> None:
        await self.broker.delete_task(queue, task_id)

    async def delete_all_archived_tasks(self, queue: str) -> int:
        return await self.broker.delete_all_archived_tasks(queue)

    async def delete_all_retry_tasks(self, queue: str) -> int:
        return await self.broker.delete_all_retry_tasks(queue)

    async def delete_all_scheduled_tasks(self, queue: str) -> int:
        return await self.broker.delete_all_scheduled_tasks(queue)

    async def delete_all_pending_tasks(self, queue: str) -> int:
        return await self.broker.delete_all_pending_tasks(queue)

    async def delete_all_active_tasks(self, queue: str) -> int:
        """Active tasks are being processed and cannot be deleted."""
        raise NotImplementedFeatureError(
            "delete_all_active_tasks not implemented - active tasks are being processed"
        )

    async def delete_expired_completed_tasks(self, queue: str) -> int:
        return await self.broker.delete_expired_completed_tasks(queue)

    async def delete_queue(self, queue: str) -> None:
        """Delete every task of a queue, state by state."""
        await self.delete_all_pending_tasks(queue)
        await self.delete_all_active_tasks(queue)
        await self.delete_all_scheduled_tasks(queue)
        await self.delete_all_retry_tasks(queue)
        await self.delete_all_archived_tasks(queue)
        await self.delete_expired_completed_tasks(queue)

    # --- requeueing and running ---------------------------------------------

    async def requeue_all_archived_tasks(self, queue: str) -> int:
        return await self.broker.requeue_all_archived_tasks(queue)

    async def requeue_all_retry_tasks(self, queue: str) -> int:
        return await self.broker.requeue_all_retry_tasks(queue)

    async def requeue_all_scheduled_tasks(self, queue: str) -> int:
        return await self.broker.requeue_all_scheduled_tasks(queue)

    async def run_all_archived_tasks(self, queue: str) -> int:
        return await self.requeue_all_archived_tasks(queue)

    async def run_all_retry_tasks(self, queue: str) -> int:
        return await self.requeue_all_retry_tasks(queue)

    async def run_all_scheduled_tasks(self, queue: str) -> int:
        return await self.requeue_all_scheduled_tasks(queue)

    async def run_task(self, queue: str, task_id: str) -> None:
        """Run an archived, retry or scheduled task now; other tasks are left alone."""
        try:
            info = await self.get_task_info(queue, task_id)
        except Exception:
            return
        if info.state in _RUNNABLE_STATES:
            await self.broker.run_task(queue, task_id)

    # --- archiving ----------------------------------------------------------

    async def archive_task(self, queue: str, task_id: str) -> None:
        await self.broker.archive_task(queue, task_id)

    async def archive_all_pending_tasks(self, queue: str) -> int:
        return await self.broker.archive_all_pending_tasks(queue)

    async def archive_all_retry_tasks(self, queue: str) -> int:
        return await self.broker.archive_all_retry_tasks(queue)

    async def archive_all_scheduled_tasks(self, queue: str) -> int:
        return await self.broker.archive_all_scheduled_tasks(queue)

    async def archive_all_aggregating_tasks(self, queue: str) -> int:
        return await self.broker.archive_all_aggregating_tasks(queue)

    # --- pausing ------------------------------------------------------------

    async def pause_queue(self, queue: str) -> None:
        await self.broker.pause_queue(queue)

    async def unpause_queue(self, queue: str) -> None:
        await self.broker.unpause_queue(queue)

    async def is_queue_paused(self, queue: str) -> bool:
        return await self.broker.is_queue_paused(queue)

    async def get_paused_queues(self) -> List[str]:
        return await self.broker.get_paused_queues()

    # --- results, servers, history ------------------------------------------

    async def get_task_result(self, queue: str, task_id: str) -> Optional[bytes]:
        return await self.broker.get_result(queue, task_id)

    async def get_servers(self) -> List[ServerInfo]:
        return await self.broker.get_servers()

    async def get_server_info(self, server_id: str) -> Optional[ServerInfo]:
        return await self.broker.get_server_info(server_id)

    async def get_history(self, queue: str, days: int) -> List[Any]:
        return await self.broker.get_history(queue, days)

    async def history(self, queue: str, days: int) -> List[Any]:
        return await self.get_history(queue, days)

    async def cancel_processing(self, task_id: str) -> None:
        """Ask the server processing a task to cancel it."""
        await self.broker.publish_cancellation(task_id)