"""Error types raised by the task queue."""

from __future__ import annotations

__all__ = [
    "AsynqError",
    "RedisError",
    "SerializationError",
    "ProtoEncodeError",
    "ProtoDecodeError",
    "TaskDuplicateError",
    "TaskIdConflictError",
    "TaskNotFoundError",
    "QueueError",
    "InvalidQueueNameError",
    "InvalidTaskTypeError",
    "ServerClosedError",
    "ServerRunningError",
    "OperationTimeoutError",
    "OperationCancelledError",
    "ConfigError",
    "AsynqIOError",
    "OtherError",
    "NotImplementedFeatureError",
    "SkipRetryError",
    "RevokeTaskError",
]


class AsynqError(Exception):
    """Base class of every error raised by the task queue."""

    retriable: bool = False

    def is_retriable(self) -> bool:
        """Whether the failed operation may succeed if tried again."""
        return self.retriable

    def is_fatal(self) -> bool:
        """Whether the error cannot be cured by retrying."""
        return not self.is_retriable()


class _WrappedError(AsynqError):
    """An error that carries an underlying cause."""

    prefix = ""

    def __init__(self, cause: object) -> None:
        self.cause = cause
        super().__init__(f"{self.prefix}: {cause}")


class _MessageError(AsynqError):
    """An error described by a free-form message."""

    prefix = ""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"{self.prefix}: {message}")


class _FixedError(AsynqError):
    """An error with a fixed description."""

    text = ""

    def __init__(self) -> None:
        super().__init__(self.text)


class RedisError(_WrappedError):
    prefix = "Redis connection error"
    retriable = True


class SerializationError(_WrappedError):
    prefix = "Serialization error"


class ProtoEncodeError(_WrappedError):
    prefix = "Protocol buffer encoding error"


class ProtoDecodeError(_WrappedError):
    prefix = "Protocol buffer decoding error"


class AsynqIOError(_WrappedError):
    prefix = "IO error"
    retriable = True


class TaskDuplicateError(_FixedError):
    text = "Task already exists"


class TaskIdConflictError(_FixedError):
    text = "Task ID conflicts with another task"


class ServerClosedError(_FixedError):
    text = "Server closed"


class ServerRunningError(_FixedError):
    text = "Server is already running"


class OperationTimeoutError(_FixedError):
    text = "Operation timeout"
    retriable = True


class OperationCancelledError(_FixedError):
    text = "Operation cancelled"


class TaskNotFoundError(AsynqError):
    def __init__(self, task_id: str) -> None:
        self.task_id = task_id
        super().__init__(f"Task not found: {task_id}")


class InvalidQueueNameError(AsynqError):
    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Invalid queue name: {name}")


class InvalidTaskTypeError(AsynqError):
    def __init__(self, task_type: str) -> None:
        self.task_type = task_type
        super().__init__(f"Invalid task type: {task_type}")


class QueueError(_MessageError):
    prefix = "Queue error"


class ConfigError(_MessageError):
    prefix = "Configuration error"


class OtherError(_MessageError):
    prefix = "Other error"


class NotImplementedFeatureError(_MessageError):
    prefix = "Not implemented"


class SkipRetryError(Exception):
    """Raised by a handler to fail a task without further retries."""

    def __init__(self, error: BaseException) -> None:
        self.error = error
        super().__init__(f"Skip retry: {error}")


class RevokeTaskError(Exception):
    """Raised by a handler to revoke a task entirely."""

    def __init__(self, error: BaseException) -> None:
        self.error = error
        super().__init__(f"Revoke task: {error}")