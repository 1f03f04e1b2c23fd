from __future__ import annotations

import threading
import time

import pytest

from assured.errors import TransportError
from assured.transport.broker import DeliveryStatus, InMemoryBroker


def test_offsets_grow_per_partition() -> None:
    broker = InMemoryBroker(partitions=1)
    producer = broker.create_producer({})
    reports = [producer.produce("t", None, str(i).encode()) for i in range(3)]
    assert [r.offset for r in reports] == [0, 1, 2]
    assert all(r.status is DeliveryStatus.PERSISTED for r in reports)


def test_keyless_messages_round_robin() -> None:
    broker = InMemoryBroker(partitions=3)
    producer = broker.create_producer({})
    partitions = {producer.produce("t", None, b"v").partition for _ in range(3)}
    assert partitions == {0, 1, 2}


def test_consumer_groups_track_their_own_position() -> None:
    broker = InMemoryBroker(partitions=1)
    producer = broker.create_producer({})
    producer.produce("t", b"k", b"one")
    producer.produce("t", b"k", b"two")

    a = broker.create_consumer({"group.id": "a"})
    b = broker.create_consumer({"group.id": "b"})
    assert a.consume("t", 0.1).value == b"one"
    assert a.consume("t", 0.1).value == b"two"
    assert a.consume("t", 0.05) is None
    assert b.consume("t", 0.1).value == b"one"


def test_latest_reset_skips_existing_messages() -> None:
    broker = InMemoryBroker(partitions=1)
    producer = broker.create_producer({})
    producer.produce("t", None, b"old")

    consumer = broker.create_consumer({"group.id": "g", "auto.offset.reset": "latest"})
    assert consumer.consume("t", 0.05) is None
    producer.produce("t", None, b"new")
    assert consumer.consume("t", 0.1).value == b"new"


def test_consume_waits_for_a_late_message() -> None:
    broker = InMemoryBroker()
    producer = broker.create_producer({})
    consumer = broker.create_consumer({"group.id": "g"})

    timer = threading.Timer(0.1, lambda: producer.produce("t", None, b"late"))
    timer.start()
    started = time.monotonic()
    message = consumer.consume("t", 2.0)
    timer.join()

    assert message.value == b"late"
    assert time.monotonic() - started < 2.0


def test_closed_clients_refuse_work() -> None:
    broker = InMemoryBroker()
    producer = broker.create_producer({})
    consumer = broker.create_consumer({})
    producer.close()
    consumer.close()
    with pytest.raises(TransportError):
        producer.produce("t", None, b"v")
    with pytest.raises(TransportError):
        consumer.consume("t", 0.01)


def test_unpersisted_messages_are_not_stored() -> None:
    broker = InMemoryBroker(persistence=DeliveryStatus.POSSIBLY_PERSISTED)
    report = broker.create_producer({}).produce("t", None, b"v")
    assert report.status is DeliveryStatus.POSSIBLY_PERSISTED
    assert report.offset == -1
    assert broker.messages("t") == []


def test_create_topic_sets_its_partition_count() -> None:
    broker = InMemoryBroker(partitions=3)
    broker.create_topic("narrow", partitions=1)
    broker.create_topic("narrow", partitions=5)  # existing topics are left alone
    producer = broker.create_producer({})

    assert producer.produce("narrow", None, b"v", partition=0).offset == 0
    with pytest.raises(TransportError):
        producer.produce("narrow", None, b"v", partition=1)
    assert producer.produce("wide", None, b"v", partition=2).partition == 2
