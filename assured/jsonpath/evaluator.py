from __future__ import annotations

import dataclasses
import json
import re
from collections.abc import Mapping, Sequence
from decimal import Decimal, InvalidOperation
from typing import Any, Type, TypeVar, Union

from assured.errors import (
    EmptyDocumentError,
    MalformedDocumentError,
    PathNotFoundError,
    TypeMismatchError,
)
from assured.jsonpath.expression import FieldSegment, JsonPathExpression, compile_path

T = TypeVar("T")

PathLike = Union[str, JsonPathExpression]

_NUMERIC_TEXT = re.compile(r"[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?")


def load_document(document: Any) -> Any:
    """
    Normalize a response payload into a JSON value tree.

    JSON text (str/bytes) is parsed with exact decimals; dataclass instances are
    converted with dataclasses.asdict; dicts, lists and scalars are used as-is.
    """
    if document is None:
        raise EmptyDocumentError("Document is empty (None)")

    if isinstance(document, (bytes, bytearray)):
        try:
            document = document.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedDocumentError(f"Document is not UTF-8 encoded: {exc}") from exc

    if isinstance(document, str):
        if not document.strip():
            raise EmptyDocumentError("Document is empty")
        try:
            tree = json.loads(document, parse_float=Decimal)
        except json.JSONDecodeError as exc:
            raise MalformedDocumentError(f"Document is not valid JSON: {exc}") from exc
        if tree is None:
            raise EmptyDocumentError("Document is JSON null")
        return tree

    if dataclasses.is_dataclass(document) and not isinstance(document, type):
        return dataclasses.asdict(document)
    return document


def _path(path: PathLike) -> JsonPathExpression:
    if isinstance(path, JsonPathExpression):
        return path
    return compile_path(path)


def _is_array(node: Any) -> bool:
    return isinstance(node, Sequence) and not isinstance(node, (str, bytes, bytearray))


def _node_kind(node: Any) -> str:
    if node is None:
        return "null"
    if isinstance(node, Mapping):
        return "object"
    if _is_array(node):
        return "array"
    return type(node).__name__


def evaluate(document: Any, path: PathLike) -> Any:
    expr = _path(path)
    node = load_document(document)

    for depth, segment in enumerate(expr.segments):
        if dataclasses.is_dataclass(node) and not isinstance(node, type):
            node = dataclasses.asdict(node)

        where = expr.prefix(depth + 1)
        if isinstance(segment, FieldSegment):
            if not isinstance(node, Mapping):
                raise PathNotFoundError(expr.text, where, f"expected an object, found {_node_kind(node)}")
            if segment.name not in node:
                raise PathNotFoundError(expr.text, where, f"field '{segment.name}' does not exist")
            node = node[segment.name]
        else:
            if not _is_array(node):
                raise PathNotFoundError(expr.text, where, f"expected an array, found {_node_kind(node)}")
            if segment.index >= len(node):
                raise PathNotFoundError(
                    expr.text, where, f"index {segment.index} out of range (length {len(node)})"
                )
            node = node[segment.index]

    return node


def _decimal_from_text(text: str) -> Decimal:
    s = text.strip()
    if not _NUMERIC_TEXT.fullmatch(s):
        raise ValueError(s)
    return Decimal(s)


def coerce(value: Any, target: Type[T], path: str = "$") -> T:
    if target is object:
        return value
    if value is None:
        raise TypeMismatchError(path, target, value)

    if target is bool:
        if isinstance(value, bool):
            return value
        raise TypeMismatchError(path, target, value)

    if target is str:
        if isinstance(value, str):
            return value
        raise TypeMismatchError(path, target, value)

    # bool is an int subclass; never treat it as a number
    if isinstance(value, bool) and target in (int, float, Decimal):
        raise TypeMismatchError(path, target, value)

    if target is int:
        if isinstance(value, int):
            return value
        try:
            if isinstance(value, str):
                number = _decimal_from_text(value)
            elif isinstance(value, (Decimal, float)):
                number = Decimal(repr(value)) if isinstance(value, float) else value
            else:
                raise TypeMismatchError(path, target, value)
        except (ValueError, InvalidOperation) as exc:
            raise TypeMismatchError(path, target, value) from exc
        if not number.is_finite() or number != number.to_integral_value():
            raise TypeMismatchError(path, target, value)
        return int(number)

    if target is float:
        if isinstance(value, (int, float, Decimal)):
            return float(value)
        if isinstance(value, str):
            try:
                return float(_decimal_from_text(value))
            except (ValueError, InvalidOperation) as exc:
                raise TypeMismatchError(path, target, value) from exc
        raise TypeMismatchError(path, target, value)

    if target is Decimal:
        if isinstance(value, Decimal):
            return value
        if isinstance(value, int):
            return Decimal(value)
        if isinstance(value, float):
            return Decimal(repr(value))
        if isinstance(value, str):
            try:
                return _decimal_from_text(value)
            except (ValueError, InvalidOperation) as exc:
                raise TypeMismatchError(path, target, value) from exc
        raise TypeMismatchError(path, target, value)

    if target is dict:
        if isinstance(value, Mapping):
            return dict(value)
        raise TypeMismatchError(path, target, value)

    if target is list:
        if _is_array(value):
            return list(value)
        raise TypeMismatchError(path, target, value)

    if isinstance(value, target):
        return value
    raise TypeMismatchError(path, target, value)


def evaluate_typed(document: Any, path: PathLike, target: Type[T]) -> T:
    expr = _path(path)
    return coerce(evaluate(document, expr), target, expr.text)
