from __future__ import annotations

import threading

import httpx
import pytest

from assured.auth.config import ClientCertificate
from assured.errors import ConfigurationError
from assured.transport.broker import InMemoryBroker
from assured.transport.pool import TransportPool, default_pool, set_default_pool


def _transport() -> httpx.MockTransport:
    return httpx.MockTransport(lambda r: httpx.Response(200))


def test_nothing_is_created_until_used() -> None:
    broker = InMemoryBroker()
    pool = TransportPool(broker_factory=broker, http_transport=_transport())
    assert not pool.producer_created
    assert broker.producer_configs == []
    pool.close()
    assert pool.closed


def test_shared_clients_are_created_once() -> None:
    broker = InMemoryBroker()
    with TransportPool(broker_factory=broker, http_transport=_transport()) as pool:
        assert pool.http_client() is pool.http_client()
        assert pool.executor() is pool.executor()

        producer = pool.shared_producer({"bootstrap.servers": "b:9092"})
        assert pool.shared_producer({"bootstrap.servers": "other:9092"}) is producer
        assert broker.producer_configs == [{"bootstrap.servers": "b:9092"}]


def test_one_http_client_per_certificate() -> None:
    with TransportPool(http_transport=_transport()) as pool:
        cert = ClientCertificate("/certs/a.pem", "/certs/a.key")
        assert pool.http_client(cert) is not pool.http_client()
        assert pool.http_client(cert) is pool.http_client(ClientCertificate("/certs/a.pem", "/certs/a.key"))


def test_consumers_and_owned_producers_are_never_pooled() -> None:
    broker = InMemoryBroker()
    with TransportPool(broker_factory=broker) as pool:
        assert pool.create_consumer({"group.id": "g"}) is not pool.create_consumer({"group.id": "g"})
        assert pool.create_producer({}) is not pool.create_producer({})
        assert not pool.producer_created


def test_close_flushes_and_closes_the_producer_once() -> None:
    pool = TransportPool(broker_factory=InMemoryBroker(), http_transport=_transport())
    producer = pool.shared_producer({})
    pool.http_client()
    pool.executor()

    pool.close()
    pool.close()

    assert producer.closed
    assert producer.flush_count == 1
    with pytest.raises(ConfigurationError):
        pool.http_client()
    with pytest.raises(ConfigurationError):
        pool.create_consumer({})


def test_missing_broker_factory() -> None:
    with TransportPool() as pool:
        with pytest.raises(ConfigurationError, match="broker client factory"):
            pool.shared_producer({})


def test_clear_http_clients() -> None:
    with TransportPool(http_transport=_transport()) as pool:
        first = pool.http_client()
        pool.clear_http_clients()
        assert pool.http_client() is not first


def test_default_pool_is_replaced_once_closed() -> None:
    set_default_pool(None)
    try:
        pool = default_pool()
        assert default_pool() is pool
        pool.close()
        assert default_pool() is not pool
    finally:
        default_pool().close()
        set_default_pool(None)


def test_poll_runs_off_the_shared_executor() -> None:
    with TransportPool(max_workers=1) as pool:
        future = pool.poll(lambda a, b: (a + b, threading.current_thread().name), 2, 3)
        assert future.result(timeout=2) == (5, "assured-consume")
        failed = pool.poll(lambda: 1 / 0)
        with pytest.raises(ZeroDivisionError):
            failed.result(timeout=2)


def test_poll_on_closed_pool_raises() -> None:
    pool = TransportPool()
    pool.close()
    with pytest.raises(ConfigurationError):
        pool.poll(lambda: None)
