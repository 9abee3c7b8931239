import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from asynq.proto import TaskMessage
from asynq.recoverer import Recoverer, RecovererConfig


class FakeBroker:
    def __init__(self, expired=None, fail_list=False, fail_reclaim=False, fail_archive=False):
        self.expired = expired or []
        self.fail_list = fail_list
        self.fail_reclaim = fail_reclaim
        self.fail_archive = fail_archive
        self.list_calls = []
        self.archived = []
        self.retried = []
        self.reclaimed = []

    async def list_lease_expired(self, cutoff, queues):
        self.list_calls.append((cutoff, list(queues)))
        if self.fail_list:
            raise ConnectionError("down")
        return list(self.expired)

    async def archive(self, msg, error_msg):
        if self.fail_archive:
            raise ConnectionError("down")
        self.archived.append((msg, error_msg))

    async def retry(self, msg, process_at, error_msg, is_failure):
        self.retried.append((msg, process_at, error_msg, is_failure))

    async def reclaim_stale_aggregation_sets(self, queue):
        if self.fail_reclaim:
            raise ConnectionError("down")
        self.reclaimed.append(queue)


def test_recoverer_config_default():
    config = RecovererConfig()
    assert config.interval == timedelta(seconds=8)
    assert config.queues == ["default"]


def test_recoverer_shutdown():
    recoverer = Recoverer(FakeBroker(), RecovererConfig())
    assert not recoverer.is_done()
    recoverer.shutdown()
    assert recoverer.is_done()


@pytest.mark.asyncio
async def test_exhausted_task_is_archived():
    msg = TaskMessage(type="t", id="a", queue="default", retry=3, retried=3)
    broker = FakeBroker(expired=[msg])
    await Recoverer(broker, RecovererConfig()).recover()
    assert broker.archived == [(msg, "lease expired")]
    assert broker.retried == []


@pytest.mark.asyncio
async def test_task_with_retries_left_is_retried_later():
    msg = TaskMessage(type="t", id="b", queue="default", retry=5, retried=1)
    broker = FakeBroker(expired=[msg])
    before = datetime.now(timezone.utc)
    await Recoverer(broker, RecovererConfig()).recover()
    after = datetime.now(timezone.utc)
    assert broker.archived == []
    assert len(broker.retried) == 1
    got_msg, retry_at, error, is_failure = broker.retried[0]
    assert got_msg == msg
    assert error == "lease expired"
    assert is_failure is True
    assert before + timedelta(seconds=20) <= retry_at <= after + timedelta(seconds=20)


@pytest.mark.asyncio
async def test_cutoff_is_in_the_past_and_queues_passed():
    broker = FakeBroker()
    config = RecovererConfig(queues=["a", "b"])
    before = datetime.now(timezone.utc)
    await Recoverer(broker, config).recover()
    cutoff, queues = broker.list_calls[0]
    assert queues == ["a", "b"]
    assert cutoff <= before - timedelta(seconds=29)
    assert broker.reclaimed == ["a", "b"]


@pytest.mark.asyncio
async def test_list_failure_is_raised():
    broker = FakeBroker(fail_list=True)
    with pytest.raises(ConnectionError):
        await Recoverer(broker, RecovererConfig()).recover()
    assert broker.reclaimed == []


@pytest.mark.asyncio
async def test_reclaim_failure_is_swallowed():
    msg = TaskMessage(id="c", queue="default", retry=0, retried=0)
    broker = FakeBroker(expired=[msg], fail_reclaim=True)
    await Recoverer(broker, RecovererConfig()).recover()
    assert broker.archived == [(msg, "lease expired")]


@pytest.mark.asyncio
async def test_archive_failure_does_not_stop_other_tasks():
    exhausted = TaskMessage(id="x", queue="default", retry=1, retried=1)
    pending = TaskMessage(id="y", queue="default", retry=2, retried=0)
    broker = FakeBroker(expired=[exhausted, pending], fail_archive=True)
    await Recoverer(broker, RecovererConfig()).recover()
    assert [entry[0].id for entry in broker.retried] == ["y"]


@pytest.mark.asyncio
async def test_start_runs_until_shutdown():
    broker = FakeBroker()
    recoverer = Recoverer(broker, RecovererConfig(interval=timedelta(milliseconds=10)))
    task = recoverer.start()
    await asyncio.sleep(0.05)
    recoverer.shutdown()
    await asyncio.wait_for(task, 1)
    assert task.done()
    assert len(broker.list_calls) >= 1


@pytest.mark.asyncio
async def test_start_rejects_non_positive_interval():
    recoverer = Recoverer(FakeBroker(), RecovererConfig(interval=timedelta(0)))
    with pytest.raises(ValueError):
        recoverer.start()