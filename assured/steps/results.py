from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

from assured.transport.broker import DeliveryStatus


class StepKind(str, Enum):
    HTTP = "http"
    PRODUCE = "produce"
    CONSUME = "consume"
    BATCH_PRODUCE = "batch_produce"
    BATCH_CONSUME = "batch_consume"


class StepStatus(str, Enum):
    NOT_STARTED = "not_started"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class StepMetadata:
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    status: StepStatus = StepStatus.NOT_STARTED
    attempt_count: int = 0

    @property
    def duration(self) -> Optional[timedelta]:
        if self.started_at is None or self.completed_at is None:
            return None
        return self.completed_at - self.started_at

    @property
    def duration_ms(self) -> Optional[float]:
        d = self.duration
        return None if d is None else d.total_seconds() * 1000.0


@dataclass(frozen=True)
class StepResult:
    """Outcome of one executed step. Immutable once built."""

    kind: StepKind
    success: bool
    status_code: Optional[int] = None
    delivery_status: Optional[DeliveryStatus] = None
    payload: Any = None
    headers: Mapping[str, Tuple[Any, ...]] = field(default_factory=dict)
    properties: Mapping[str, Any] = field(default_factory=dict)
    errors: Tuple[str, ...] = ()
    error: Optional[BaseException] = None
    metadata: StepMetadata = field(default_factory=StepMetadata)
    items: Tuple["StepResult", ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "headers", MappingProxyType({k: tuple(v) for k, v in self.headers.items()}))
        object.__setattr__(self, "properties", MappingProxyType(dict(self.properties)))
        object.__setattr__(self, "errors", tuple(self.errors))
        object.__setattr__(self, "items", tuple(self.items))

    def header(self, name: str) -> Tuple[Any, ...]:
        """All values of a header, matched case-insensitively; () when absent."""
        wanted = name.lower()
        values: Tuple[Any, ...] = ()
        for key, v in self.headers.items():
            if key.lower() == wanted:
                values += v
        return values

    def get(self, key: str, default: Any = None) -> Any:
        return self.properties.get(key, default)

    @property
    def is_success_status(self) -> bool:
        return self.status_code is not None and 200 <= self.status_code < 300

    @property
    def is_redirect(self) -> bool:
        return self.status_code is not None and 300 <= self.status_code < 400

    @property
    def is_client_error(self) -> bool:
        return self.status_code is not None and 400 <= self.status_code < 500

    @property
    def is_server_error(self) -> bool:
        return self.status_code is not None and 500 <= self.status_code < 600

    def to_dict(self) -> Dict[str, Any]:
        def plain(v: Any) -> Any:
            if isinstance(v, bytes):
                return v.decode("utf-8", errors="replace")
            if isinstance(v, (list, tuple)):
                return [plain(x) for x in v]
            if isinstance(v, Mapping):
                return {str(k): plain(x) for k, x in v.items()}
            if isinstance(v, Enum):
                return v.value
            if isinstance(v, (str, int, float, bool)) or v is None:
                return v
            return str(v)

        return {
            "kind": self.kind.value,
            "success": self.success,
            "status_code": self.status_code,
            "delivery_status": self.delivery_status.value if self.delivery_status else None,
            "payload": plain(self.payload),
            "headers": plain(self.headers),
            "properties": plain(self.properties),
            "errors": list(self.errors),
            "started_at": self.metadata.started_at.isoformat() if self.metadata.started_at else None,
            "status": self.metadata.status.value,
            "duration_ms": self.metadata.duration_ms,
            "items": [i.to_dict() for i in self.items],
        }
