from datetime import datetime, timezone

import pytest

from asynq.errors import ProtoDecodeError, ProtoEncodeError
from asynq.proto import (
    SchedulerEnqueueEvent,
    SchedulerEntry,
    ServerInfo,
    TaskMessage,
    WorkerInfo,
)

UTC = timezone.utc


def test_empty_message_encodes_to_nothing():
    assert TaskMessage().encode() == b""


def test_string_and_bytes_wire_format():
    msg = TaskMessage(type="email:deliver", payload=b"x")
    assert msg.encode() == b"\n\remail:deliver\x12\x01x"


def test_int_wire_format():
    assert TaskMessage(retry=25).encode() == b"\x28\x19"


def test_task_message_round_trip():
    msg = TaskMessage(
        type="email:deliver",
        payload=b"\x00\x01payload",
        id="task-1",
        queue="critical",
        retry=25,
        retried=3,
        error_msg="boom",
        last_failed_at=1_700_000_000,
        timeout=1800,
        deadline=1_700_003_600,
        unique_key="asynq:{critical}:unique:abc",
        group_key="batch",
        retention=86400,
        completed_at=1_700_000_100,
    )
    assert TaskMessage.decode(msg.encode()) == msg


@pytest.mark.parametrize("value", [-1, -(2**31), 2**31 - 1])
def test_int32_extremes_round_trip(value):
    msg = TaskMessage(retried=value)
    assert TaskMessage.decode(msg.encode()).retried == value


@pytest.mark.parametrize("value", [-1, -(2**63), 2**63 - 1])
def test_int64_extremes_round_trip(value):
    msg = TaskMessage(deadline=value)
    assert TaskMessage.decode(msg.encode()).deadline == value


def test_int32_out_of_range_raises():
    with pytest.raises(ProtoEncodeError):
        TaskMessage(retry=2**31).encode()


def test_fields_are_written_in_tag_order():
    msg = TaskMessage(timeout=5, last_failed_at=7)
    expected = TaskMessage(timeout=5).encode() + TaskMessage(last_failed_at=7).encode()
    assert msg.encode() == expected


def test_concatenated_messages_merge():
    data = TaskMessage(type="a").encode() + TaskMessage(id="b").encode()
    assert TaskMessage.decode(data) == TaskMessage(type="a", id="b")


def test_unknown_fields_are_skipped():
    unknown = b"\x98\x06\x01"  # field 99, varint 1
    data = unknown + TaskMessage(id="x").encode()
    assert TaskMessage.decode(data) == TaskMessage(id="x")


def test_truncated_input_raises():
    data = TaskMessage(type="abc").encode()[:-1]
    with pytest.raises(ProtoDecodeError):
        TaskMessage.decode(data)


def test_wrong_wire_type_raises():
    # field 1 (type, a string) written as a varint
    with pytest.raises(ProtoDecodeError):
        TaskMessage.decode(b"\x08\x01")


def test_invalid_utf8_raises():
    with pytest.raises(ProtoDecodeError):
        TaskMessage.decode(b"\x0a\x01\xff")


def test_server_info_round_trip():
    info = ServerInfo(
        host="worker-1.example.com",
        pid=4242,
        server_id="server-uuid",
        concurrency=8,
        queues={"critical": 6, "default": 3, "low": 1},
        strict_priority=True,
        status="active",
        start_time=datetime(2024, 1, 2, 3, 4, 5, 678000, tzinfo=UTC),
        active_worker_count=2,
    )
    assert ServerInfo.decode(info.encode()) == info


def test_server_info_bool_wire_format():
    assert ServerInfo(strict_priority=True).encode() == b"\x30\x01"


def test_map_entries_with_default_values_round_trip():
    info = ServerInfo(queues={"": 0, "zero": 0, "neg": -3})
    assert ServerInfo.decode(info.encode()).queues == {"": 0, "zero": 0, "neg": -3}


def test_epoch_timestamp_stays_present():
    event = SchedulerEnqueueEvent(task_id="t", enqueue_time=datetime(1970, 1, 1, tzinfo=UTC))
    decoded = SchedulerEnqueueEvent.decode(event.encode())
    assert decoded.enqueue_time == datetime(1970, 1, 1, tzinfo=UTC)


def test_missing_timestamp_stays_none():
    decoded = SchedulerEnqueueEvent.decode(SchedulerEnqueueEvent(task_id="t").encode())
    assert decoded.enqueue_time is None
    assert decoded.task_id == "t"


def test_timestamp_before_epoch_round_trip():
    moment = datetime(1960, 6, 1, 12, 30, 0, 250000, tzinfo=UTC)
    event = SchedulerEnqueueEvent(enqueue_time=moment)
    assert SchedulerEnqueueEvent.decode(event.encode()).enqueue_time == moment


def test_worker_info_round_trip():
    worker = WorkerInfo(
        host="localhost",
        pid=7,
        server_id="srv",
        task_id="task-9",
        task_type="image:resize",
        task_payload=b"{}",
        queue="default",
        start_time=datetime(2024, 5, 1, tzinfo=UTC),
        deadline=datetime(2024, 5, 1, 0, 30, tzinfo=UTC),
    )
    assert WorkerInfo.decode(worker.encode()) == worker


def test_scheduler_entry_round_trip_keeps_option_order():
    entry = SchedulerEntry(
        id="entry-1",
        spec="@every 30s",
        task_type="report:daily",
        task_payload=b"payload",
        enqueue_options=["Queue(\"reports\")", "", "MaxRetry(2)"],
        next_enqueue_time=datetime(2024, 1, 1, 0, 0, 30, tzinfo=UTC),
        prev_enqueue_time=datetime(2024, 1, 1, tzinfo=UTC),
    )
    decoded = SchedulerEntry.decode(entry.encode())
    assert decoded == entry
    assert decoded.enqueue_options == ["Queue(\"reports\")", "", "MaxRetry(2)"]


def test_decode_accepts_bytearray():
    msg = TaskMessage(id="abc", queue="q")
    assert TaskMessage.decode(bytearray(msg.encode())) == msg