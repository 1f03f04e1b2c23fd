from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Optional, Tuple, Union

from assured.auth.config import BrokerAuthConfig, HttpAuthConfig
from assured.errors import ConfigurationError

MessageHeaders = Tuple[Tuple[str, bytes], ...]

COMPRESSION_TYPES = ("none", "gzip", "snappy", "lz4", "zstd")
ACK_MODES = ("0", "1", "-1", "all")
OFFSET_RESETS = ("earliest", "latest")


def _freeze(mapping: Optional[Mapping[str, Any]]) -> Mapping[str, Any]:
    return MappingProxyType(dict(mapping or {}))


def _message_headers(headers: Iterable[Tuple[str, Any]]) -> MessageHeaders:
    out = []
    for key, value in headers:
        if isinstance(value, str):
            value = value.encode("utf-8")
        elif value is not None and not isinstance(value, bytes):
            value = bytes(value)
        out.append((str(key), value))
    return tuple(out)


def _positive_timeout(value: float, owner: str) -> float:
    if value is None or value <= 0:
        raise ConfigurationError(f"{owner}.timeout must be positive, got {value!r}")
    return float(value)


def _topic(value: str, owner: str) -> str:
    if not value or not str(value).strip():
        raise ConfigurationError(f"{owner} requires a topic")
    return value


@dataclass(frozen=True)
class ProducerTuning:
    compression: Optional[str] = None
    acks: Optional[str] = None
    batch_size: Optional[int] = None
    linger_ms: Optional[int] = None
    retries: Optional[int] = None
    enable_idempotence: Optional[bool] = None

    def __post_init__(self) -> None:
        if self.compression is not None and self.compression not in COMPRESSION_TYPES:
            raise ConfigurationError(f"Unknown compression type {self.compression!r}; use one of {COMPRESSION_TYPES}")
        if self.acks is not None and str(self.acks) not in ACK_MODES:
            raise ConfigurationError(f"Unknown acks mode {self.acks!r}; use one of {ACK_MODES}")
        for name in ("batch_size", "linger_ms", "retries"):
            value = getattr(self, name)
            if value is not None and value < 0:
                raise ConfigurationError(f"Producer {name} must not be negative, got {value}")

    @property
    def is_default(self) -> bool:
        return self == ProducerTuning()

    def to_config(self) -> dict:
        pairs = (
            ("compression.type", self.compression),
            ("acks", None if self.acks is None else str(self.acks)),
            ("batch.size", self.batch_size),
            ("linger.ms", self.linger_ms),
            ("retries", self.retries),
            ("enable.idempotence", self.enable_idempotence),
        )
        return {k: v for k, v in pairs if v is not None}


@dataclass(frozen=True)
class StepSpecification:
    """
    Base of the step variants. Variants are frozen; use evolve() to derive a
    changed copy. evolve() goes through dataclasses.replace, so every field of a
    variant is carried over without listing it anywhere else.
    """

    def evolve(self, **changes: Any) -> "StepSpecification":
        names = {f.name for f in dataclasses.fields(self)}
        unknown = sorted(set(changes) - names)
        if unknown:
            raise TypeError(f"{type(self).__name__} has no field(s) {unknown}")
        return dataclasses.replace(self, **changes)

    @property
    def variant(self) -> str:
        return type(self).__name__


@dataclass(frozen=True)
class HttpStep(StepSpecification):
    url: str = ""
    method: str = "GET"
    body: Any = None
    headers: Mapping[str, str] = field(default_factory=dict)
    query_params: Mapping[str, str] = field(default_factory=dict)
    timeout: float = 30.0
    auth: Optional[HttpAuthConfig] = None

    def __post_init__(self) -> None:
        if not self.url:
            raise ConfigurationError("HttpStep requires a url")
        object.__setattr__(self, "method", self.method.upper())
        object.__setattr__(self, "headers", _freeze(self.headers))
        object.__setattr__(self, "query_params", _freeze(self.query_params))
        object.__setattr__(self, "timeout", _positive_timeout(self.timeout, "HttpStep"))


@dataclass(frozen=True)
class ProduceStep(StepSpecification):
    topic: str = ""
    value: Any = None
    key: Any = None
    headers: MessageHeaders = ()
    partition: Optional[int] = None
    timestamp: Optional[datetime] = None
    timeout: float = 30.0
    tuning: ProducerTuning = field(default_factory=ProducerTuning)
    bootstrap_servers: Optional[str] = None
    auth: Optional[BrokerAuthConfig] = None
    json_options: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        _topic(self.topic, "ProduceStep")
        if self.partition is not None and self.partition < 0:
            raise ConfigurationError(f"ProduceStep.partition must not be negative, got {self.partition}")
        object.__setattr__(self, "headers", _message_headers(self.headers))
        object.__setattr__(self, "json_options", _freeze(self.json_options))
        object.__setattr__(self, "timeout", _positive_timeout(self.timeout, "ProduceStep"))


@dataclass(frozen=True)
class ConsumeStep(StepSpecification):
    topic: str = ""
    group_id: Optional[str] = None
    timeout: float = 30.0
    expected_type: Optional[type] = None
    auto_offset_reset: str = "earliest"
    bootstrap_servers: Optional[str] = None
    auth: Optional[BrokerAuthConfig] = None

    def __post_init__(self) -> None:
        _topic(self.topic, "ConsumeStep")
        if self.auto_offset_reset not in OFFSET_RESETS:
            raise ConfigurationError(f"auto_offset_reset must be one of {OFFSET_RESETS}, got {self.auto_offset_reset!r}")
        object.__setattr__(self, "timeout", _positive_timeout(self.timeout, "ConsumeStep"))


@dataclass(frozen=True)
class BatchProduceStep(StepSpecification):
    topic: str = ""
    messages: Tuple[Tuple[Any, Any], ...] = ()
    headers: MessageHeaders = ()
    timeout: float = 60.0
    tuning: ProducerTuning = field(default_factory=ProducerTuning)
    bootstrap_servers: Optional[str] = None
    auth: Optional[BrokerAuthConfig] = None
    json_options: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        _topic(self.topic, "BatchProduceStep")
        messages = tuple((k, v) for k, v in self.messages)
        if not messages:
            raise ConfigurationError("BatchProduceStep requires at least one message")
        object.__setattr__(self, "messages", messages)
        object.__setattr__(self, "headers", _message_headers(self.headers))
        object.__setattr__(self, "json_options", _freeze(self.json_options))
        object.__setattr__(self, "timeout", _positive_timeout(self.timeout, "BatchProduceStep"))


@dataclass(frozen=True)
class BatchConsumeStep(StepSpecification):
    topic: str = ""
    message_count: int = 1
    group_id: Optional[str] = None
    timeout: float = 60.0
    expected_type: Optional[type] = None
    auto_offset_reset: str = "earliest"
    bootstrap_servers: Optional[str] = None
    auth: Optional[BrokerAuthConfig] = None

    def __post_init__(self) -> None:
        _topic(self.topic, "BatchConsumeStep")
        if self.message_count < 1:
            raise ConfigurationError(f"BatchConsumeStep.message_count must be at least 1, got {self.message_count}")
        if self.auto_offset_reset not in OFFSET_RESETS:
            raise ConfigurationError(f"auto_offset_reset must be one of {OFFSET_RESETS}, got {self.auto_offset_reset!r}")
        object.__setattr__(self, "timeout", _positive_timeout(self.timeout, "BatchConsumeStep"))


AnyStep = Union[HttpStep, ProduceStep, ConsumeStep, BatchProduceStep, BatchConsumeStep]

HTTP_STEPS = (HttpStep,)
PRODUCE_STEPS = (ProduceStep, BatchProduceStep)
CONSUME_STEPS = (ConsumeStep, BatchConsumeStep)
BROKER_STEPS = PRODUCE_STEPS + CONSUME_STEPS
ALL_STEPS = HTTP_STEPS + BROKER_STEPS
