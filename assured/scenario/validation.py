from __future__ import annotations

from decimal import Decimal
from typing import Any, Callable, Optional, Type, Union

from assured.errors import (
    AssertionFailureError,
    IncompatibleStepError,
    JsonPathError,
    ScenarioStateError,
)
from assured.jsonpath.evaluator import PathLike, evaluate_typed
from assured.jsonpath.expression import compile_path
from assured.steps.results import StepKind, StepResult
from assured.transport.broker import DeliveryStatus

_UNSET = object()

MESSAGE_KINDS = (StepKind.PRODUCE, StepKind.CONSUME, StepKind.BATCH_PRODUCE, StepKind.BATCH_CONSUME)
BATCH_KINDS = (StepKind.BATCH_PRODUCE, StepKind.BATCH_CONSUME)


def _same(actual: Any, expected: Any) -> bool:
    # JSON text parses fractions as Decimal; let float literals compare by value
    if isinstance(actual, Decimal) and isinstance(expected, float):
        return float(actual) == expected
    if isinstance(actual, float) and isinstance(expected, Decimal):
        return actual == float(expected)
    return actual == expected


def _as_bytes(value: Union[str, bytes]) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else value


class ValidationBuilder:
    """
    Fluent, eager assertions over one StepResult.

    Every assert_* either returns self or raises AssertionFailureError (an
    AssertionError) naming what was expected and what was found.
    """

    def __init__(self, result: StepResult, engine=None) -> None:
        self.result = result
        self._engine = engine

    def then(self) -> "ValidationBuilder":
        return self

    def and_(self):
        """Finish this step and return the engine to build the next one."""
        if self._engine is None:
            raise ScenarioStateError("This validation is not attached to a scenario")
        return self._engine.and_()

    def get_result(self) -> StepResult:
        return self.result

    def _fail(self, message: str, path: Optional[str] = None, expected: Any = None, actual: Any = None):
        raise AssertionFailureError(message, path=path, expected=expected, actual=actual)

    def _check(self, check: Callable[[Any], Any], value: Any, message: str, path: Optional[str], expected: Any = None):
        try:
            outcome = check(value)
        except AssertionFailureError:
            raise
        except AssertionError as exc:
            raise AssertionFailureError(f"{message}: {exc}", path=path, expected=expected, actual=value) from exc
        if outcome is False:
            self._fail(f"{message} (actual: {value!r})", path=path, expected=expected, actual=value)

    def assert_success(self) -> "ValidationBuilder":
        if not self.result.success:
            self._fail(
                "Expected step to succeed but it failed with errors: " + "; ".join(self.result.errors),
                expected=True,
                actual=False,
            )
        return self

    def assert_failure(self) -> "ValidationBuilder":
        if self.result.success:
            self._fail("Expected step to fail but it succeeded", expected=False, actual=True)
        return self

    def assert_error_contains(self, text: str) -> "ValidationBuilder":
        if not any(text in e for e in self.result.errors):
            self._fail(
                f"Expected an error containing {text!r}; errors were: {list(self.result.errors)}",
                expected=text,
                actual=list(self.result.errors),
            )
        return self

    def assert_error_type(self, error_type: Type[BaseException]) -> "ValidationBuilder":
        if not isinstance(self.result.error, error_type):
            self._fail(
                f"Expected error of type {error_type.__name__} but got {type(self.result.error).__name__}",
                expected=error_type.__name__,
                actual=type(self.result.error).__name__,
            )
        return self

    def assert_property(self, key: str, expected: Any) -> "ValidationBuilder":
        """`expected` is a value to compare with, or a predicate/action on the property."""
        if key not in self.result.properties:
            self._fail(
                f"Expected property '{key}' but result has {sorted(self.result.properties)}",
                path=key,
                expected=expected,
            )
        actual = self.result.properties[key]
        if callable(expected):
            self._check(expected, actual, f"Property assertion failed for '{key}'", key)
        elif not _same(actual, expected):
            self._fail(f"Expected property '{key}' to be {expected!r} but was {actual!r}", key, expected, actual)
        return self

    def json_path(self, path: PathLike, as_type: Type = object) -> Any:
        """Read a value from the payload; raises JsonPathError when it is absent."""
        return evaluate_typed(self.result.payload, path, as_type)

    def assert_json_path(
        self,
        path: PathLike,
        check: Optional[Callable[[Any], Any]] = None,
        *,
        as_type: Type = object,
        equals: Any = _UNSET,
        message: Optional[str] = None,
    ) -> "ValidationBuilder":
        expr = compile_path(path) if isinstance(path, str) else path
        text = expr.text
        failure = message or f"JSON path assertion failed for path: {text}"
        expected = None if equals is _UNSET else equals

        try:
            value = evaluate_typed(self.result.payload, expr, as_type)
        except JsonPathError as exc:
            raise AssertionFailureError(f"{failure}: {exc}", path=text, expected=expected) from exc

        if equals is not _UNSET and not _same(value, equals):
            self._fail(f"Expected {text} to equal {equals!r} but was {value!r}", text, equals, value)
        if check is not None:
            self._check(check, value, failure, text, expected)
        return self

    def validate(self, check: Callable[[StepResult], Any]) -> "ValidationBuilder":
        self._check(check, self.result, "Custom validation failed", None)
        return self


class HttpValidation(ValidationBuilder):
    def _require_http(self, operation: str) -> None:
        if self.result.kind is not StepKind.HTTP:
            raise IncompatibleStepError(operation, f"{self.result.kind.value} result", ("http result",))

    def assert_status(self, *codes: int) -> "HttpValidation":
        self._require_http("assert_status")
        actual = self.result.status_code
        if actual not in codes:
            wanted = codes[0] if len(codes) == 1 else list(codes)
            label = f"{codes[0]}" if len(codes) == 1 else f"one of {list(codes)}"
            self._fail(f"Expected HTTP status code {label} but got {actual}", expected=wanted, actual=actual)
        return self

    def assert_status_in_range(self, low: int, high: int) -> "HttpValidation":
        self._require_http("assert_status_in_range")
        actual = self.result.status_code
        if actual is None or not low <= actual <= high:
            self._fail(
                f"Expected HTTP status code in [{low}, {high}] but got {actual}",
                expected=(low, high),
                actual=actual,
            )
        return self

    def assert_header(self, name: str, expected: Any = None) -> "HttpValidation":
        self._require_http("assert_header")
        values = self.result.header(name)
        if not values:
            self._fail(f"Expected response header '{name}' but it was absent", path=name, expected=expected)
        if callable(expected):
            self._check(expected, values[0] if len(values) == 1 else values, f"Header assertion failed for '{name}'", name)
        elif expected is not None and expected not in values:
            self._fail(
                f"Expected header '{name}' to be {expected!r} but was {list(values)}",
                path=name,
                expected=expected,
                actual=list(values),
            )
        return self

    def assert_content_type(self, fragment: str) -> "HttpValidation":
        self._require_http("assert_content_type")
        actual = self.result.get("content_type") or ""
        if fragment.lower() not in actual.lower():
            self._fail(
                f"Expected content type containing {fragment!r} but got {actual!r}",
                path="content-type",
                expected=fragment,
                actual=actual,
            )
        return self


class MessageValidation(ValidationBuilder):
    def _require(self, operation: str, kinds=MESSAGE_KINDS) -> None:
        if self.result.kind not in kinds:
            raise IncompatibleStepError(
                operation, f"{self.result.kind.value} result", tuple(f"{k.value} result" for k in kinds)
            )

    def _assert_prop(self, operation: str, key: str, expected: Any) -> "MessageValidation":
        self._require(operation)
        actual = self.result.get(key)
        if callable(expected):
            self._check(expected, actual, f"{operation} failed", key)
        elif not _same(actual, expected):
            self._fail(f"Expected {key} {expected!r} but got {actual!r}", path=key, expected=expected, actual=actual)
        return self

    def assert_topic(self, topic: str) -> "MessageValidation":
        return self._assert_prop("assert_topic", "topic", topic)

    def assert_partition(self, partition: Any) -> "MessageValidation":
        return self._assert_prop("assert_partition", "partition", partition)

    def assert_offset(self, offset: Any) -> "MessageValidation":
        return self._assert_prop("assert_offset", "offset", offset)

    def assert_key(self, key: Any) -> "MessageValidation":
        return self._assert_prop("assert_key", "key", key)

    def assert_delivery_status(self, status: DeliveryStatus) -> "MessageValidation":
        self._require("assert_delivery_status", (StepKind.PRODUCE,))
        actual = self.result.delivery_status
        if actual is not DeliveryStatus(status):
            self._fail(
                f"Expected delivery status {DeliveryStatus(status).value} but got {actual.value if actual else None}",
                expected=status,
                actual=actual,
            )
        return self

    def assert_persisted(self) -> "MessageValidation":
        return self.assert_delivery_status(DeliveryStatus.PERSISTED)

    def assert_message(self, check: Callable[[Any], Any]) -> "MessageValidation":
        self._require("assert_message")
        self._check(check, self.result.payload, "Message assertion failed", None)
        return self

    def assert_message_header(self, key: str, expected: Any = None) -> "MessageValidation":
        self._require("assert_message_header")
        values = self.result.headers.get(key, ())
        if not values:
            self._fail(f"Expected message header '{key}' but it was absent", path=key, expected=expected)
        if callable(expected):
            self._check(expected, values[0], f"Header assertion failed for '{key}'", key)
        elif expected is not None and _as_bytes(expected) not in values:
            self._fail(
                f"Expected message header '{key}' to be {expected!r} but was {list(values)}",
                path=key,
                expected=expected,
                actual=list(values),
            )
        return self

    def assert_batch_count(self, count: int) -> "MessageValidation":
        self._require("assert_batch_count", BATCH_KINDS)
        actual = len(self.result.items)
        if actual != count:
            self._fail(f"Expected batch of {count} messages but got {actual}", expected=count, actual=actual)
        return self

    def item(self, index: int) -> "MessageValidation":
        self._require("item", BATCH_KINDS)
        if not 0 <= index < len(self.result.items):
            raise IndexError(f"Batch has {len(self.result.items)} items, no item {index}")
        return MessageValidation(self.result.items[index], self._engine)


def validation_for(result: StepResult, engine=None) -> ValidationBuilder:
    if result.kind is StepKind.HTTP:
        return HttpValidation(result, engine)
    return MessageValidation(result, engine)
