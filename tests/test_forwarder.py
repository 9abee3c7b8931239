import asyncio
from datetime import timedelta

import pytest

from asynq.errors import RedisError
from asynq.forwarder import Forwarder, ForwarderConfig


class FakeBroker:
    def __init__(self, result=0, error=None):
        self.result = result
        self.error = error
        self.calls = []

    async def forward_if_ready(self, queues):
        self.calls.append(list(queues))
        if self.error is not None:
            raise self.error
        return self.result


def test_forwarder_config_default():
    config = ForwarderConfig()
    assert config.interval == timedelta(seconds=5)
    assert config.queues == ["default"]


def test_forwarder_shutdown():
    forwarder = Forwarder(FakeBroker(), ForwarderConfig())
    assert not forwarder.is_done()
    forwarder.shutdown()
    assert forwarder.is_done()


@pytest.mark.asyncio
async def test_forward_passes_queues_and_returns_count():
    broker = FakeBroker(result=4)
    forwarder = Forwarder(broker, ForwarderConfig(queues=["critical", "low"]))
    assert await forwarder.forward() == 4
    assert broker.calls == [["critical", "low"]]


@pytest.mark.asyncio
async def test_forward_reraises_broker_error():
    broker = FakeBroker(error=RedisError("connection refused"))
    forwarder = Forwarder(broker, ForwarderConfig())
    with pytest.raises(RedisError):
        await forwarder.forward()


@pytest.mark.asyncio
async def test_loop_runs_until_shutdown():
    broker = FakeBroker(result=1)
    config = ForwarderConfig(interval=timedelta(milliseconds=10), queues=["a", "b"])
    forwarder = Forwarder(broker, config)
    task = forwarder.start()
    await asyncio.sleep(0.05)
    forwarder.shutdown()
    await asyncio.wait_for(task, timeout=1)
    assert task.done()
    assert len(broker.calls) >= 1
    assert all(call == ["a", "b"] for call in broker.calls)


@pytest.mark.asyncio
async def test_loop_survives_errors():
    broker = FakeBroker(error=RedisError("down"))
    forwarder = Forwarder(broker, ForwarderConfig(interval=timedelta(milliseconds=10)))
    task = forwarder.start()
    await asyncio.sleep(0.1)
    forwarder.shutdown()
    await asyncio.wait_for(task, timeout=1)
    assert len(broker.calls) >= 2
    assert task.exception() is None


@pytest.mark.asyncio
async def test_shutdown_before_start_does_no_work():
    broker = FakeBroker()
    forwarder = Forwarder(broker, ForwarderConfig(interval=timedelta(milliseconds=10)))
    forwarder.shutdown()
    task = forwarder.start()
    await asyncio.wait_for(task, timeout=1)
    assert broker.calls == []


@pytest.mark.asyncio
async def test_zero_interval_is_rejected():
    forwarder = Forwarder(FakeBroker(), ForwarderConfig(interval=timedelta(0)))
    with pytest.raises(ValueError):
        forwarder.start()