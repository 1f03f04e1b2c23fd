from __future__ import annotations

import concurrent.futures
import dataclasses
import json
import logging
import threading
import time
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Tuple

import httpx

from assured.auth.resolver import resolve_broker_auth, resolve_http_auth
from assured.auth.token_cache import MemoryTokenCache
from assured.config.settings import Settings
from assured.errors import (
    ConfigurationError,
    DeliveryFailureError,
    IncompatibleStepError,
    StepTimeoutError,
    TransportError,
)
from assured.scenario.metrics import summarize_durations
from assured.steps.results import StepKind, StepMetadata, StepResult, StepStatus
from assured.steps.specs import (
    ALL_STEPS,
    BatchConsumeStep,
    BatchProduceStep,
    ConsumeStep,
    HttpStep,
    ProduceStep,
)
from assured.transport.broker import BrokerProducer, ConsumedMessage, DeliveryReport, DeliveryStatus
from assured.transport.http import HttpRequestOptions
from assured.transport.pool import TransportPool

logger = logging.getLogger(__name__)

# extra wait on top of a consume timeout, for the client to hand back control
CONSUME_GRACE_SECONDS = 1.0


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _meta(started: datetime, ok: bool, completed: Optional[datetime] = None) -> StepMetadata:
    return StepMetadata(
        started_at=started,
        completed_at=completed or _now(),
        status=StepStatus.SUCCEEDED if ok else StepStatus.FAILED,
        attempt_count=1,
    )


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, datetime):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def encode_value(value: Any, json_options: Optional[Mapping[str, Any]] = None) -> Optional[bytes]:
    """str and bytes go out as-is (str as UTF-8); everything else as JSON."""
    if value is None:
        return None
    if isinstance(value, bytes):
        return value
    if isinstance(value, str):
        return value.encode("utf-8")
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        value = dataclasses.asdict(value)
    options = dict(json_options or {})
    options.setdefault("default", _json_default)
    return json.dumps(value, **options).encode("utf-8")


def decode_value(raw: Optional[bytes], expected_type: Optional[type]) -> Any:
    if raw is None:
        return None
    if expected_type is bytes:
        return raw
    text = raw.decode("utf-8")
    if expected_type is None or expected_type is str:
        return text

    data = json.loads(text)
    if expected_type is object:
        return data
    if dataclasses.is_dataclass(expected_type):
        return expected_type(**data)
    if not isinstance(data, expected_type):
        raise TypeError(f"expected {expected_type.__name__}, got {type(data).__name__}")
    return data


def _epoch_ms(ts: Optional[datetime]) -> Optional[int]:
    if ts is None:
        return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return int(ts.timestamp() * 1000)


def _decode_key(key: Optional[bytes]) -> Optional[str]:
    return None if key is None else key.decode("utf-8", errors="replace")


def _dispose_producer(producer: BrokerProducer) -> None:
    producer.flush(5.0)
    producer.close()


class StepExecutor:
    """
    Runs one step against the transports of a TransportPool.

    Auth is resolved before any I/O, so configuration problems raise. Timeouts,
    transport faults and unpersisted deliveries are returned as failed results.
    """

    def __init__(
        self,
        pool: TransportPool,
        settings: Settings,
        token_cache: Optional[MemoryTokenCache] = None,
        token_client: Optional[httpx.Client] = None,
    ) -> None:
        self.pool = pool
        self.settings = settings
        self.token_cache = token_cache
        self.token_client = token_client

    def execute(self, step) -> StepResult:
        if isinstance(step, HttpStep):
            return self._http(step)
        if isinstance(step, ProduceStep):
            return self._produce(step)
        if isinstance(step, ConsumeStep):
            return self._consume(step)
        if isinstance(step, BatchProduceStep):
            return self._produce_batch(step)
        if isinstance(step, BatchConsumeStep):
            return self._consume_batch(step)
        raise IncompatibleStepError("execute", type(step).__name__, tuple(c.__name__ for c in ALL_STEPS))

    def _failure(self, kind: StepKind, started: datetime, error: BaseException, **fields: Any) -> StepResult:
        logger.warning("%s step failed: %s", kind.value, error)
        return StepResult(
            kind=kind,
            success=False,
            errors=(str(error),),
            error=error,
            metadata=_meta(started, False),
            **fields,
        )

    # HTTP

    def _http(self, step: HttpStep) -> StepResult:
        options = HttpRequestOptions(
            method=step.method,
            url=step.url,
            headers=dict(self.settings.http.default_headers),
            params=list(step.query_params.items()),
            timeout=step.timeout,
        )
        if isinstance(step.body, (str, bytes, bytearray)):
            options.body = step.body
        elif step.body is not None:
            try:
                options.body = encode_value(step.body)
            except (TypeError, ValueError) as exc:
                raise ConfigurationError(f"HTTP body for {step.method} {step.url} is not JSON serializable: {exc}") from exc
            options.set_header("Content-Type", "application/json")
        for name, value in step.headers.items():
            options.set_header(name, value)

        auth = step.auth if step.auth is not None else self.settings.http.auth
        strategy = resolve_http_auth(auth, self.token_cache, self.token_client)

        logger.info("HTTP %s %s", step.method, step.url)
        started = _now()
        props = {"method": step.method, "url": step.url}
        try:
            strategy.apply(options)
            client = self.pool.http_client(options.client_cert)
            response = client.send(options)
        except httpx.TimeoutException as exc:
            error = StepTimeoutError(f"HTTP {step.method} {step.url} timed out after {step.timeout:g}s")
            error.__cause__ = exc
            return self._failure(StepKind.HTTP, started, error, status_code=0, properties=props)
        except StepTimeoutError as exc:
            return self._failure(StepKind.HTTP, started, exc, status_code=0, properties=props)
        except httpx.HTTPError as exc:
            error = TransportError(f"HTTP {step.method} {step.url} failed: {exc}")
            error.__cause__ = exc
            return self._failure(StepKind.HTTP, started, error, status_code=0, properties=props)
        except TransportError as exc:
            return self._failure(StepKind.HTTP, started, exc, status_code=0, properties=props)

        return self._http_result(step, response, started)

    def _http_result(self, step: HttpStep, response: httpx.Response, started: datetime) -> StepResult:
        headers: Dict[str, List[str]] = {}
        for name, value in response.headers.multi_items():
            headers.setdefault(name.lower(), []).append(value)

        ok = response.is_success
        errors: Tuple[str, ...] = ()
        if not ok:
            errors = (f"HTTP {response.status_code} {response.reason_phrase} from {step.method} {step.url}",)
        logger.info("HTTP %s %s -> %s", step.method, step.url, response.status_code)

        return StepResult(
            kind=StepKind.HTTP,
            success=ok,
            status_code=response.status_code,
            payload=response.text,
            headers=headers,
            properties={
                "method": step.method,
                "url": str(response.request.url),
                "reason": response.reason_phrase,
                "content_type": response.headers.get("content-type"),
                "http_version": response.http_version,
            },
            errors=errors,
            metadata=_meta(started, ok),
        )

    # broker

    def _broker_config(self, step, role: str) -> Dict[str, Any]:
        broker = self.settings.broker
        config: Dict[str, Any] = {
            "bootstrap.servers": step.bootstrap_servers or broker.bootstrap_servers,
            "client.id": f"{broker.client_id_prefix}-{role}-{uuid.uuid4().hex[:8]}",
        }
        auth = step.auth if step.auth is not None else broker.auth
        resolve_broker_auth(auth).apply(config)
        return config

    def _producer(self, step) -> Tuple[BrokerProducer, bool]:
        """Returns (producer, owned); owned producers are disposed after use."""
        config = self._broker_config(step, "producer")
        config.update(step.tuning.to_config())
        if step.tuning.is_default and step.bootstrap_servers is None and step.auth is None:
            return self.pool.shared_producer(config), False
        return self.pool.create_producer(config), True

    def _send_one(
        self,
        producer: BrokerProducer,
        step,
        key: Any,
        value: Any,
        partition: Optional[int] = None,
        timestamp: Optional[datetime] = None,
    ) -> DeliveryReport:
        return producer.produce(
            step.topic,
            None if key is None else encode_value(key),
            encode_value(value, step.json_options),
            step.headers,
            partition,
            _epoch_ms(timestamp),
            step.timeout,
        )

    def _delivery_result(self, topic: str, key: Any, value: Any, headers, report: DeliveryReport, started: datetime) -> StepResult:
        props = {
            "topic": report.topic,
            "partition": report.partition,
            "offset": report.offset,
            "timestamp": report.timestamp,
            "key": key,
            "status": report.status.value,
        }
        fields = dict(
            kind=StepKind.PRODUCE,
            delivery_status=report.status,
            payload=value,
            headers=self._group_headers(headers),
            properties=props,
        )
        if report.status is DeliveryStatus.PERSISTED:
            logger.info("Produced to %s [%s] @ %s", report.topic, report.partition, report.offset)
            return StepResult(success=True, metadata=_meta(started, True), **fields)
        error = DeliveryFailureError(topic, report.status.value)
        logger.warning("%s", error)
        return StepResult(success=False, errors=(str(error),), error=error, metadata=_meta(started, False), **fields)

    @staticmethod
    def _group_headers(headers) -> Dict[str, List[Any]]:
        grouped: Dict[str, List[Any]] = {}
        for key, value in headers:
            grouped.setdefault(key, []).append(value)
        return grouped

    def _produce(self, step: ProduceStep) -> StepResult:
        producer, owned = self._producer(step)
        logger.info("Producing to topic %s", step.topic)
        started = _now()
        future = self.pool.executor().submit(
            self._send_one, producer, step, step.key, step.value, step.partition, step.timestamp
        )
        if owned:
            future.add_done_callback(lambda _: _dispose_producer(producer))

        props = {"topic": step.topic, "key": step.key}
        try:
            report = future.result(timeout=step.timeout)
        except concurrent.futures.TimeoutError:
            error = StepTimeoutError(
                f"Failed to produce message to topic '{step.topic}' within timeout of {step.timeout:g}s"
            )
            return self._failure(StepKind.PRODUCE, started, error, payload=step.value, properties=props)
        except Exception as exc:  # broker clients raise their own exception types
            error = TransportError(f"Failed to produce message to topic '{step.topic}': {exc}")
            error.__cause__ = exc
            return self._failure(StepKind.PRODUCE, started, error, payload=step.value, properties=props)

        return self._delivery_result(step.topic, step.key, step.value, step.headers, report, started)

    def _produce_item(self, producer: BrokerProducer, step: BatchProduceStep, key: Any, value: Any) -> StepResult:
        started = _now()
        try:
            report = self._send_one(producer, step, key, value)
        except Exception as exc:  # broker clients raise their own exception types
            error = TransportError(f"Failed to produce message to topic '{step.topic}': {exc}")
            error.__cause__ = exc
            return self._failure(StepKind.PRODUCE, started, error, payload=value, properties={"topic": step.topic, "key": key})
        return self._delivery_result(step.topic, key, value, step.headers, report, started)

    def _produce_batch(self, step: BatchProduceStep) -> StepResult:
        producer, owned = self._producer(step)
        logger.info("Producing batch of %d to topic %s", len(step.messages), step.topic)
        started = _now()
        futures = [
            self.pool.executor().submit(self._produce_item, producer, step, key, value)
            for key, value in step.messages
        ]
        done, pending = concurrent.futures.wait(futures, timeout=step.timeout)
        for f in pending:
            f.cancel()

        items: List[StepResult] = []
        for (key, value), fut in zip(step.messages, futures):
            if fut in done:
                items.append(fut.result())
            else:
                error = StepTimeoutError(
                    f"Failed to produce message to topic '{step.topic}' within timeout of {step.timeout:g}s"
                )
                items.append(StepResult(
                    kind=StepKind.PRODUCE,
                    success=False,
                    payload=value,
                    properties={"topic": step.topic, "key": key},
                    errors=(str(error),),
                    error=error,
                    metadata=_meta(started, False),
                ))

        if owned:
            still_running = [f for f in futures if not f.done()]
            if still_running:
                threading.Thread(
                    target=lambda: (concurrent.futures.wait(still_running), _dispose_producer(producer)),
                    name="assured-producer-dispose",
                    daemon=True,
                ).start()
            else:
                _dispose_producer(producer)

        return self._batch_result(StepKind.BATCH_PRODUCE, step.topic, items, started, len(step.messages))

    def _batch_result(
        self,
        kind: StepKind,
        topic: str,
        items: List[StepResult],
        started: datetime,
        expected: int,
        shortfall: Optional[BaseException] = None,
    ) -> StepResult:
        failed = [(i, r) for i, r in enumerate(items) if not r.success]
        errors = [f"message {i}: {e}" for i, r in failed for e in r.errors]
        error: Optional[BaseException] = shortfall
        if shortfall is not None:
            errors.insert(0, str(shortfall))
        elif failed:
            error = failed[0][1].error

        ok = not errors and len(items) == expected
        props = {
            "topic": topic,
            "batch_size": len(items),
            "expected_count": expected,
            "timing": summarize_durations(items),
        }
        if kind is StepKind.BATCH_PRODUCE:
            props["persisted"] = sum(1 for r in items if r.delivery_status is DeliveryStatus.PERSISTED)
        else:
            props["message_count"] = len(items)

        if ok:
            logger.info("%s on %s: %d/%d ok", kind.value, topic, len(items), expected)
        else:
            logger.warning("%s on %s failed: %s", kind.value, topic, "; ".join(errors))
        return StepResult(
            kind=kind,
            success=ok,
            payload=[r.payload for r in items],
            properties=props,
            errors=tuple(errors),
            error=error,
            metadata=_meta(started, ok),
            items=tuple(items),
        )

    def _consumer_config(self, step) -> Dict[str, Any]:
        config = self._broker_config(step, "consumer")
        config["group.id"] = step.group_id or self.settings.broker.group_id
        config["auto.offset.reset"] = step.auto_offset_reset
        config["enable.auto.commit"] = True
        return config

    def _message_result(
        self,
        message: ConsumedMessage,
        expected_type: Optional[type],
        started: datetime,
        kind: StepKind,
        received_at: Optional[datetime] = None,
    ) -> StepResult:
        props = {
            "topic": message.topic,
            "partition": message.partition,
            "offset": message.offset,
            "key": _decode_key(message.key),
            "timestamp": message.timestamp,
        }
        headers = self._group_headers(message.headers)
        try:
            payload = decode_value(message.value, expected_type)
        except (ValueError, TypeError) as exc:
            type_name = getattr(expected_type, "__name__", str(expected_type))
            error = TransportError(
                f"Cannot deserialize message from topic '{message.topic}' "
                f"(partition {message.partition}, offset {message.offset}) as {type_name}: {exc}"
            )
            error.__cause__ = exc
            return self._failure(kind, started, error, payload=message.value, headers=headers, properties=props)
        return StepResult(
            kind=kind,
            success=True,
            payload=payload,
            headers=headers,
            properties=props,
            metadata=_meta(started, True, received_at),
        )

    def _consume(self, step: ConsumeStep) -> StepResult:
        consumer = self.pool.create_consumer(self._consumer_config(step))
        logger.info("Consuming from topic %s", step.topic)
        started = _now()
        future = self.pool.poll(consumer.consume, step.topic, step.timeout)
        future.add_done_callback(lambda _: consumer.close())

        props = {"topic": step.topic}
        message: Optional[ConsumedMessage] = None
        try:
            message = future.result(timeout=step.timeout + CONSUME_GRACE_SECONDS)
        except concurrent.futures.TimeoutError:
            message = None
        except Exception as exc:  # broker clients raise their own exception types
            error = TransportError(f"Failed to consume from topic '{step.topic}': {exc}")
            error.__cause__ = exc
            return self._failure(StepKind.CONSUME, started, error, properties=props)

        if message is None:
            error = StepTimeoutError(
                f"No message consumed from topic '{step.topic}' within timeout of {step.timeout:g}s"
            )
            return self._failure(StepKind.CONSUME, started, error, properties=props)
        return self._message_result(message, step.expected_type, started, StepKind.CONSUME)

    def _consume_batch(self, step: BatchConsumeStep) -> StepResult:
        consumer = self.pool.create_consumer(self._consumer_config(step))
        logger.info("Consuming %d messages from topic %s", step.message_count, step.topic)
        started = _now()
        received: List[Tuple[ConsumedMessage, datetime]] = []
        lock = threading.Lock()

        def drain() -> None:
            end = time.monotonic() + step.timeout
            while len(received) < step.message_count:
                remaining = end - time.monotonic()
                if remaining <= 0:
                    return
                message = consumer.consume(step.topic, remaining)
                if message is None:
                    return
                with lock:
                    received.append((message, _now()))

        future = self.pool.poll(drain)
        future.add_done_callback(lambda _: consumer.close())

        fault: Optional[BaseException] = None
        try:
            future.result(timeout=step.timeout + CONSUME_GRACE_SECONDS)
        except concurrent.futures.TimeoutError:
            pass
        except Exception as exc:  # broker clients raise their own exception types
            fault = TransportError(f"Failed to consume from topic '{step.topic}': {exc}")
            fault.__cause__ = exc

        with lock:
            snapshot = list(received)
        items = [
            self._message_result(message, step.expected_type, started, StepKind.CONSUME, at)
            for message, at in snapshot
        ]

        shortfall = fault
        if shortfall is None and len(items) < step.message_count:
            shortfall = StepTimeoutError(
                f"Consumed {len(items)} of {step.message_count} messages from topic "
                f"'{step.topic}' within timeout of {step.timeout:g}s"
            )
        return self._batch_result(StepKind.BATCH_CONSUME, step.topic, items, started, step.message_count, shortfall)
