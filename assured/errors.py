from __future__ import annotations

from typing import Any, Optional


class AssuredError(Exception):
    """Base class for every error raised by assured."""


class ConfigurationError(AssuredError):
    pass


class ScenarioStateError(ConfigurationError):
    """A DSL call was made in a state that does not allow it."""


class IncompatibleStepError(AssuredError):
    def __init__(self, operation: str, actual: str, accepted: tuple) -> None:
        self.operation = operation
        self.actual = actual
        self.accepted = tuple(accepted)
        super().__init__(
            f"{operation}() cannot be applied to a {actual}; "
            f"it requires one of: {', '.join(self.accepted)}"
        )


class JsonPathError(AssuredError):
    def __init__(self, message: str, path: Optional[str] = None) -> None:
        self.path = path
        super().__init__(message)


class InvalidPathError(JsonPathError):
    pass


class EmptyDocumentError(JsonPathError):
    pass


class MalformedDocumentError(JsonPathError):
    pass


class PathNotFoundError(JsonPathError):
    def __init__(self, path: str, segment: str, reason: str) -> None:
        self.segment = segment
        super().__init__(f"Path '{path}' not found at segment '{segment}': {reason}", path)


class TypeMismatchError(JsonPathError):
    def __init__(self, path: str, expected_type: type, actual: Any) -> None:
        self.expected_type = expected_type
        self.actual = actual
        super().__init__(
            f"Value at '{path}' cannot be read as {expected_type.__name__}: "
            f"got {type(actual).__name__} {actual!r}",
            path,
        )


class DeliveryFailureError(AssuredError):
    def __init__(self, topic: str, status: Any) -> None:
        self.topic = topic
        self.status = status
        super().__init__(f"Message to topic '{topic}' was not persisted (status: {status})")


class StepTimeoutError(AssuredError, TimeoutError):
    pass


class TransportError(AssuredError):
    pass


class AssertionFailureError(AssuredError, AssertionError):
    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
        expected: Any = None,
        actual: Any = None,
    ) -> None:
        self.path = path
        self.expected = expected
        self.actual = actual
        super().__init__(message)
