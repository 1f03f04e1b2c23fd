from __future__ import annotations

import itertools
import logging
import threading
import time
import zlib
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Tuple

from assured.errors import TransportError

logger = logging.getLogger(__name__)

Headers = Tuple[Tuple[str, bytes], ...]


class DeliveryStatus(str, Enum):
    PERSISTED = "persisted"
    POSSIBLY_PERSISTED = "possibly_persisted"
    NOT_PERSISTED = "not_persisted"


@dataclass(frozen=True)
class DeliveryReport:
    topic: str
    partition: int
    offset: int
    timestamp: int
    status: DeliveryStatus
    key: Optional[bytes] = None


@dataclass(frozen=True)
class ConsumedMessage:
    topic: str
    partition: int
    offset: int
    key: Optional[bytes]
    value: Optional[bytes]
    headers: Headers = ()
    timestamp: int = 0


class BrokerProducer(Protocol):
    def produce(
        self,
        topic: str,
        key: Optional[bytes],
        value: Optional[bytes],
        headers: Headers = (),
        partition: Optional[int] = None,
        timestamp: Optional[int] = None,
        timeout: float = 30.0,
    ) -> DeliveryReport: ...

    def flush(self, timeout: float = 10.0) -> None: ...

    def close(self) -> None: ...


class BrokerConsumer(Protocol):
    def consume(self, topic: str, timeout: float) -> Optional[ConsumedMessage]: ...

    def close(self) -> None: ...


class BrokerClientFactory(Protocol):
    def create_producer(self, config: Dict[str, Any]) -> BrokerProducer: ...

    def create_consumer(self, config: Dict[str, Any]) -> BrokerConsumer: ...


class InMemoryBroker:
    """
    Thread-safe broker held in process memory.

    Topics are created on first use with `partitions` partitions. Keyed messages
    are partitioned by crc32 of the key, keyless ones round-robin. Consumer groups
    track a committed offset per partition. `persistence` decides the delivery
    status reported to producers; anything other than PERSISTED is not stored.
    """

    def __init__(
        self,
        partitions: int = 3,
        persistence: DeliveryStatus = DeliveryStatus.PERSISTED,
        produce_delay: float = 0.0,
    ) -> None:
        self.partitions = partitions
        self.persistence = persistence
        self.produce_delay = produce_delay
        self.producer_configs: List[Dict[str, Any]] = []
        self.consumer_configs: List[Dict[str, Any]] = []

        self._cond = threading.Condition()
        self._topics: Dict[str, List[List[ConsumedMessage]]] = {}
        self._offsets: Dict[Tuple[str, str, int], int] = {}
        self._round_robin = itertools.count()

    def create_topic(self, name: str, partitions: Optional[int] = None) -> None:
        with self._cond:
            self._topics.setdefault(name, [[] for _ in range(partitions or self.partitions)])

    def create_producer(self, config: Dict[str, Any]) -> "InMemoryProducer":
        self.producer_configs.append(dict(config))
        return InMemoryProducer(self)

    def create_consumer(self, config: Dict[str, Any]) -> "InMemoryConsumer":
        self.consumer_configs.append(dict(config))
        return InMemoryConsumer(
            self,
            group_id=str(config.get("group.id") or "assured-consumer"),
            auto_offset_reset=str(config.get("auto.offset.reset") or "earliest"),
        )

    def messages(self, topic: str) -> List[ConsumedMessage]:
        with self._cond:
            parts = self._topics.get(topic) or []
            return sorted((m for p in parts for m in p), key=lambda m: (m.timestamp, m.partition, m.offset))

    def _partitions(self, topic: str) -> List[List[ConsumedMessage]]:
        return self._topics.setdefault(topic, [[] for _ in range(self.partitions)])

    def _append(
        self,
        topic: str,
        key: Optional[bytes],
        value: Optional[bytes],
        headers: Headers,
        partition: Optional[int],
        timestamp: Optional[int],
    ) -> DeliveryReport:
        with self._cond:
            parts = self._partitions(topic)
            if partition is None:
                if key is not None:
                    partition = zlib.crc32(key) % len(parts)
                else:
                    partition = next(self._round_robin) % len(parts)
            elif not 0 <= partition < len(parts):
                raise TransportError(f"Unknown partition {partition} for topic '{topic}' ({len(parts)} partitions)")

            ts = timestamp if timestamp is not None else int(time.time() * 1000)
            if self.persistence is not DeliveryStatus.PERSISTED:
                return DeliveryReport(topic, partition, -1, ts, self.persistence, key)

            offset = len(parts[partition])
            parts[partition].append(ConsumedMessage(topic, partition, offset, key, value, tuple(headers), ts))
            self._cond.notify_all()
            return DeliveryReport(topic, partition, offset, ts, DeliveryStatus.PERSISTED, key)

    def _poll(self, group: str, topic: str, reset: str, timeout: float) -> Optional[ConsumedMessage]:
        deadline = time.monotonic() + timeout
        with self._cond:
            parts = self._partitions(topic)
            for index, part in enumerate(parts):
                start = len(part) if reset == "latest" else 0
                self._offsets.setdefault((group, topic, index), start)

            while True:
                for index, part in enumerate(parts):
                    position = self._offsets[(group, topic, index)]
                    if position < len(part):
                        self._offsets[(group, topic, index)] = position + 1
                        return part[position]

                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return None
                self._cond.wait(remaining)


class InMemoryProducer:
    def __init__(self, broker: InMemoryBroker) -> None:
        self._broker = broker
        self.closed = False
        self.flush_count = 0

    def produce(self, topic, key, value, headers=(), partition=None, timestamp=None, timeout=30.0) -> DeliveryReport:
        if self.closed:
            raise TransportError("Producer is closed")
        if self._broker.produce_delay:
            time.sleep(self._broker.produce_delay)
        return self._broker._append(topic, key, value, headers, partition, timestamp)

    def flush(self, timeout: float = 10.0) -> None:
        self.flush_count += 1

    def close(self) -> None:
        self.closed = True


class InMemoryConsumer:
    def __init__(self, broker: InMemoryBroker, group_id: str, auto_offset_reset: str) -> None:
        self._broker = broker
        self.group_id = group_id
        self.auto_offset_reset = auto_offset_reset
        self.closed = False

    def consume(self, topic: str, timeout: float) -> Optional[ConsumedMessage]:
        if self.closed:
            raise TransportError("Consumer is closed")
        return self._broker._poll(self.group_id, topic, self.auto_offset_reset, timeout)

    def close(self) -> None:
        self.closed = True
