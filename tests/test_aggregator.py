from datetime import timedelta

import pytest

from asynq.aggregator import (
    Aggregator,
    AggregatorConfig,
    GroupAggregatorFunc,
    Task,
)
from asynq.errors import InvalidTaskTypeError
from asynq.proto import TaskMessage


class FakeBroker:
    def __init__(self, groups=None, set_id="set1", messages=None, enqueue_error=None):
        self.groups = groups or {}
        self.set_id = set_id
        self.messages = messages or []
        self.enqueue_error = enqueue_error
        self.checks = []
        self.enqueued = []
        self.deleted = []

    async def list_groups(self, queue):
        return self.groups.get(queue, [])

    async def aggregation_check(self, queue, group, delay, max_delay, max_size):
        self.checks.append((queue, group, delay, max_delay, max_size))
        return self.set_id

    async def read_aggregation_set(self, queue, group, set_id):
        return list(self.messages)

    async def delete_aggregation_set(self, queue, group, set_id):
        self.deleted.append((queue, group, set_id))

    async def enqueue(self, task):
        if self.enqueue_error:
            raise self.enqueue_error
        self.enqueued.append(task)
        return task


def _messages():
    return [
        TaskMessage(type="task1", payload=b"payload1"),
        TaskMessage(type="task2", payload=b"payload2"),
        TaskMessage(type="task3", payload=b"payload3"),
    ]


def test_aggregator_config_default():
    config = AggregatorConfig()
    assert config.interval == timedelta(seconds=5)
    assert config.queues == ["default"]
    assert config.grace_period == timedelta(seconds=60)
    assert config.max_delay is None
    assert config.max_size is None
    assert config.group_aggregator is None


def test_aggregator_shutdown():
    aggregator = Aggregator(FakeBroker(), AggregatorConfig())
    assert not aggregator.is_done()
    aggregator.shutdown()
    assert aggregator.is_done()


def test_group_aggregator_func():
    def combine(group, tasks):
        assert group == "test-group"
        assert len(tasks) == 3
        return Task("batch:process", b"aggregated")

    aggregator = GroupAggregatorFunc(combine)
    tasks = [Task("task1", b"payload1"), Task("task2", b"payload2"), Task("task3", b"payload3")]
    result = aggregator.aggregate("test-group", tasks)
    assert result.type == "batch:process"
    assert result.payload == b"aggregated"


def test_group_aggregator_with_config():
    func = GroupAggregatorFunc(
        lambda group, tasks: Task("batch:process", f"Aggregated {len(tasks)} tasks".encode())
    )
    config = AggregatorConfig(group_aggregator=func)
    aggregator = Aggregator(FakeBroker(), config)
    assert config.group_aggregator is func
    assert not aggregator.is_done()


def test_task_requires_type():
    with pytest.raises(InvalidTaskTypeError):
        Task("", b"x")


def test_task_with_queue_and_group_return_copies():
    task = Task("t", b"p")
    routed = task.with_queue("high").with_group("g")
    assert (routed.queue, routed.group) == ("high", "g")
    assert task.queue is None and task.group is None


@pytest.mark.asyncio
async def test_aggregate_enqueues_batch_task():
    broker = FakeBroker(groups={"default": ["g1"]}, messages=_messages())
    func = GroupAggregatorFunc(
        lambda group, tasks: Task("batch", b"|".join(t.payload for t in tasks), queue="other")
    )
    aggregator = Aggregator(broker, AggregatorConfig(group_aggregator=func))
    await aggregator.aggregate()
    assert len(broker.enqueued) == 1
    batch = broker.enqueued[0]
    assert batch.payload == b"payload1|payload2|payload3"
    assert batch.queue == "default"
    assert batch.group == "g1"
    assert broker.deleted == [("default", "g1", "set1")]


@pytest.mark.asyncio
async def test_aggregate_uses_default_limits():
    broker = FakeBroker(groups={"default": ["g1"]}, set_id=None)
    await Aggregator(broker, AggregatorConfig()).aggregate()
    assert broker.checks == [
        ("default", "g1", timedelta(seconds=60), timedelta(seconds=30), 10)
    ]
    assert broker.deleted == []


@pytest.mark.asyncio
async def test_aggregate_without_aggregator_only_closes_set():
    broker = FakeBroker(groups={"default": ["g1"]}, messages=_messages())
    await Aggregator(broker, AggregatorConfig()).aggregate()
    assert broker.enqueued == []
    assert broker.deleted == [("default", "g1", "set1")]


@pytest.mark.asyncio
async def test_aggregator_failure_still_closes_set():
    def failing(group, tasks):
        raise RuntimeError("boom")

    broker = FakeBroker(groups={"default": ["g1"]}, messages=_messages())
    config = AggregatorConfig(group_aggregator=GroupAggregatorFunc(failing))
    await Aggregator(broker, config).aggregate()
    assert broker.enqueued == []
    assert broker.deleted == [("default", "g1", "set1")]


@pytest.mark.asyncio
async def test_keeps_group_set_by_aggregator():
    broker = FakeBroker(groups={"default": ["g1"]}, messages=_messages())
    func = GroupAggregatorFunc(lambda group, tasks: Task("batch", b"", group="custom"))
    await Aggregator(broker, AggregatorConfig(group_aggregator=func)).aggregate()
    assert broker.enqueued[0].group == "custom"