from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Dict, Optional

import httpx

from assured.auth.config import ClientCertificate
from assured.errors import ConfigurationError
from assured.transport.broker import BrokerClientFactory, BrokerConsumer, BrokerProducer
from assured.transport.http import HttpTransport, _AsyncLoopThread

logger = logging.getLogger(__name__)


class TransportPool:
    """
    Clients shared across scenarios of one test run.

    HTTP clients (one per client certificate), the producer and the I/O worker
    threads are all created lazily, exactly once, under a lock. Consumers are
    never pooled, and their polls run on threads of their own (see poll).
    close() releases whatever was created and can be called any number of
    times.
    """

    def __init__(
        self,
        broker_factory: Optional[BrokerClientFactory] = None,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
        verify_tls: bool = True,
        max_workers: int = 8,
    ) -> None:
        self.broker_factory = broker_factory
        self._http_transport = http_transport
        self._verify_tls = verify_tls
        self._max_workers = max_workers

        self._lock = threading.Lock()
        self._loop: Optional[_AsyncLoopThread] = None
        self._http: Dict[Optional[ClientCertificate], HttpTransport] = {}
        self._producer: Optional[BrokerProducer] = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def producer_created(self) -> bool:
        return self._producer is not None

    def _check_open(self) -> None:
        if self._closed:
            raise ConfigurationError("TransportPool is closed")

    def http_client(self, cert: Optional[ClientCertificate] = None) -> HttpTransport:
        client = self._http.get(cert)
        if client is not None:
            return client
        with self._lock:
            self._check_open()
            client = self._http.get(cert)
            if client is None:
                if self._loop is None:
                    self._loop = _AsyncLoopThread()
                logger.debug("Creating HTTP client (certificate=%s)", cert.cert_path if cert else None)
                client = HttpTransport(
                    self._loop,
                    verify=self._verify_tls,
                    client_cert=cert,
                    transport=self._http_transport,
                )
                self._http[cert] = client
            return client

    def clear_http_clients(self) -> None:
        with self._lock:
            clients = list(self._http.values())
            self._http.clear()
        for client in clients:
            client.close()

    def _factory(self) -> BrokerClientFactory:
        if self.broker_factory is None:
            raise ConfigurationError("No broker client factory configured on the TransportPool")
        return self.broker_factory

    def shared_producer(self, config: Dict[str, Any]) -> BrokerProducer:
        """`config` is only used by the call that creates the producer."""
        producer = self._producer
        if producer is not None:
            return producer
        with self._lock:
            self._check_open()
            if self._producer is None:
                logger.debug("Creating shared producer for %s", config.get("bootstrap.servers"))
                self._producer = self._factory().create_producer(dict(config))
            return self._producer

    def create_producer(self, config: Dict[str, Any]) -> BrokerProducer:
        self._check_open()
        return self._factory().create_producer(dict(config))

    def create_consumer(self, config: Dict[str, Any]) -> BrokerConsumer:
        self._check_open()
        return self._factory().create_consumer(dict(config))

    def executor(self) -> ThreadPoolExecutor:
        executor = self._executor
        if executor is not None:
            return executor
        with self._lock:
            self._check_open()
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self._max_workers, thread_name_prefix="assured-io"
                )
            return self._executor

    def poll(self, fn: Callable[..., Any], *args: Any) -> Future:
        """
        Run a consumer poll on its own daemon thread.

        Polls wait for up to their whole timeout, so they stay off the shared
        executor where they would hold workers that produce steps need.
        """
        self._check_open()
        future: Future = Future()

        def run() -> None:
            if not future.set_running_or_notify_cancel():
                return
            try:
                future.set_result(fn(*args))
            except BaseException as exc:
                future.set_exception(exc)

        threading.Thread(target=run, name="assured-consume", daemon=True).start()
        return future

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            producer, self._producer = self._producer, None
            clients = list(self._http.values())
            self._http.clear()
            executor, self._executor = self._executor, None
            loop, self._loop = self._loop, None

        if producer is not None:
            producer.flush(10.0)
            producer.close()
        for client in clients:
            client.close()
        if executor is not None:
            executor.shutdown(wait=False, cancel_futures=True)
        if loop is not None:
            loop.stop()
        logger.debug("TransportPool closed")

    def __enter__(self) -> "TransportPool":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


_default_pool: Optional[TransportPool] = None
_default_lock = threading.Lock()


def default_pool() -> TransportPool:
    global _default_pool
    pool = _default_pool
    if pool is not None and not pool.closed:
        return pool
    with _default_lock:
        if _default_pool is None or _default_pool.closed:
            _default_pool = TransportPool()
        return _default_pool


def set_default_pool(pool: Optional[TransportPool]) -> None:
    global _default_pool
    with _default_lock:
        _default_pool = pool
