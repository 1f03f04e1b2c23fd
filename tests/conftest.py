from __future__ import annotations

import json

import httpx
import pytest

from assured.config.settings import BrokerSettings, HttpSettings, Settings
from assured.scenario.engine import given
from assured.transport.broker import InMemoryBroker
from assured.transport.pool import TransportPool


def echo_handler(request: httpx.Request) -> httpx.Response:
    # Mirrors the request back so tests can assert on what was sent.
    raw = request.content.decode("utf-8")
    try:
        body = json.loads(raw) if raw else None
    except json.JSONDecodeError:
        body = raw
    return httpx.Response(
        200,
        json={
            "method": request.method,
            "path": request.url.path,
            "query": dict(request.url.params),
            "headers": dict(request.headers),
            "body": body,
        },
        headers={"X-Request-Id": "req-1"},
    )


@pytest.fixture
def settings() -> Settings:
    return Settings(
        http=HttpSettings(base_url="http://api.test", default_headers={"User-Agent": "assured-tests"}),
        broker=BrokerSettings(bootstrap_servers="broker.test:9092", group_id="tests"),
    )


@pytest.fixture
def broker() -> InMemoryBroker:
    return InMemoryBroker(partitions=3)


@pytest.fixture
def make_pool(broker):
    pools = []

    def _make(handler=echo_handler, broker_factory=broker) -> TransportPool:
        pool = TransportPool(broker_factory=broker_factory, http_transport=httpx.MockTransport(handler))
        pools.append(pool)
        return pool

    yield _make
    for pool in pools:
        pool.close()


@pytest.fixture
def make_engine(make_pool, settings):
    def _make(handler=echo_handler, **kwargs):
        return given(pool=make_pool(handler), settings=settings, **kwargs)

    return _make
