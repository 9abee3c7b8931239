# asynq

Building blocks for a distributed task queue, written for `asyncio`.
Everything that touches storage goes through a broker object that you
supply; the package has no third-party dependencies.

## What is in the package

- `asynq.config`: `ServerConfig` and `ClientConfig` dataclasses. Their
  `with_*` methods (and `ServerConfig.add_queue` and
  `ServerConfig.enable_group_aggregator`) return updated copies.
  `ServerConfig.validate()` raises when the settings cannot be used.
  `default_retry_delay(retried, error, task_type)` returns a `timedelta`
  of `retried ** 4 + 15` seconds plus random jitter, never less than one
  second.
- `asynq.errors`: exceptions rooted at `AsynqError`, whose
  `is_retriable()` is true for `RedisError`, `AsynqIOError` and
  `OperationTimeoutError` only, and `is_fatal()` is its negation.
  `SkipRetryError` and `RevokeTaskError` wrap another exception for a
  handler to signal those outcomes.
- `asynq.proto`: the wire messages `TaskMessage`, `ServerInfo`,
  `WorkerInfo`, `SchedulerEntry` and `SchedulerEnqueueEvent`. Each has
  `encode()` and the class method `decode(data)`, using the protocol
  buffer wire format; timestamps are `datetime` values and unknown fields
  are skipped on decoding.
- `asynq.lifecycle`: the `Broker` protocol the components call, and the
  `ComponentLifecycle` base class (`start`, `shutdown`, `is_done`).
  `start()` must be called with an event loop running and returns an
  `asyncio.Task`; `shutdown()` makes the loop stop at its next tick.
- Components, each with a config dataclass where it has one:
  - `asynq.forwarder.Forwarder` / `ForwarderConfig`: calls
    `broker.forward_if_ready(queues)` every interval; `forward()` runs
    one pass and returns the broker's count.
  - `asynq.janitor.Janitor` / `JanitorConfig`: `cleanup()` calls
    `broker.delete_expired_completed_tasks` for each queue, logging and
    skipping failures.
  - `asynq.healthcheck.Healthcheck` / `HealthcheckConfig`: `check()`
    pings the broker and runs an optional check installed with
    `with_custom_check`; the result is stored and read by `is_healthy()`.
  - `asynq.heartbeat.Heartbeat` with `HeartbeatMeta`: `beat()` writes
    `meta.server_info(active_worker_count)` with a lease of twice the
    interval; the server state is cleared when the loop ends.
  - `asynq.recoverer.Recoverer` / `RecovererConfig`: `recover()` archives
    lease-expired tasks that have used up their retries, retries the
    others after `10 * (retried + 1)` seconds, then reclaims stale
    aggregation sets.
  - `asynq.subscriber.Subscriber` / `SubscriberConfig`: `publish(event)`
    queues one of the event dataclasses (`TaskEnqueued`, `TaskStarted`,
    `TaskCompleted`, `TaskFailed`, `TaskRetried`, `TaskCancelled`,
    `ServerStateChanged`); `take_receiver()` hands out the
    `asyncio.Queue` once and returns `None` afterwards. While started, it
    turns task ids from `broker.cancellation_pub_sub()` into
    `TaskCancelled` events.
  - `asynq.aggregator.Aggregator` / `AggregatorConfig`: `aggregate()`
    asks the broker for ready aggregation sets in every group, passes
    their tasks to a `GroupAggregator` (or a function wrapped in
    `GroupAggregatorFunc`), enqueues the resulting `Task` on the group's
    queue, and deletes the set. Without `max_delay` or `max_size`, 30
    seconds and 10 tasks are used.
- `asynq.inspector`: `Inspector(broker)` forwards queue and task
  management calls to the broker, with `TaskState` and `Pagination`.
  `get_task_info` raises `TaskNotFoundError` for a missing task;
  `list_pending_tasks_with_pagination` returns `[]` for a page below 1 or
  a non-positive size; `run_task` acts only on archived, retry and
  scheduled tasks. `delete_all_active_tasks` always raises
  `NotImplementedFeatureError`, so `delete_queue` deletes the pending
  tasks and then raises that error.

## What the package does not do

It has no broker implementation: there is no Redis connection, no Lua
scripts and no storage of any kind. There is also no client for
enqueueing tasks, no worker server or task processor, no handler
multiplexer, no cron scheduler and no command-line tool. To use the
components or the `Inspector`, pass an object that implements the
methods they call.

## Configuring a server

```python
from datetime import timedelta
from asynq.config import ServerConfig

config = (
    ServerConfig()
    .with_concurrency(4)
    .add_queue("critical", 6)
    .with_strict_priority(True)
    .with_group_grace_period(timedelta(seconds=30))
)
config.validate()
```

`add_queue` raises `InvalidQueueNameError` for a blank name and
`ConfigError` for a priority that is not positive;
`with_group_grace_period` raises `ConfigError` below one second.

## Running a component

```python
import asyncio
from asynq.janitor import Janitor, JanitorConfig

async def main(broker):
    janitor = Janitor(broker, JanitorConfig())
    task = janitor.start()
    await asyncio.sleep(30)
    janitor.shutdown()
    await task
```

## Encoding messages

```python
from asynq.proto import TaskMessage

msg = TaskMessage(type="email:deliver", payload=b"{}", id="1", queue="default")
assert TaskMessage.decode(msg.encode()) == msg
```

## Installing and testing

```
pip install ".[test]"
pytest
```