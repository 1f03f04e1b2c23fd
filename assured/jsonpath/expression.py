from __future__ import annotations

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Tuple, Union

from assured.errors import InvalidPathError

_FIELD = re.compile(r"\.([A-Za-z_][A-Za-z0-9_-]*)")
_INDEX = re.compile(r"\[(0|[1-9][0-9]*)\]")


@dataclass(frozen=True)
class FieldSegment:
    name: str

    def __str__(self) -> str:
        return f".{self.name}"


@dataclass(frozen=True)
class IndexSegment:
    index: int

    def __str__(self) -> str:
        return f"[{self.index}]"


Segment = Union[FieldSegment, IndexSegment]


@dataclass(frozen=True)
class JsonPathExpression:
    """
    Compiled path: `$` followed by field (`.name`) and index (`[n]`) segments.
    Build with compile_path(); instances are hashable and safe to reuse.
    """

    segments: Tuple[Segment, ...]

    @property
    def text(self) -> str:
        return "$" + "".join(str(s) for s in self.segments)

    def prefix(self, depth: int) -> str:
        return "$" + "".join(str(s) for s in self.segments[:depth])

    def __str__(self) -> str:
        return self.text


@lru_cache(maxsize=512)
def compile_path(text: str) -> JsonPathExpression:
    if not isinstance(text, str):
        raise InvalidPathError(f"Path must be a string, got {type(text).__name__}", None)
    if not text.startswith("$"):
        raise InvalidPathError(f"Path '{text}' must start with '$'", text)

    segments = []
    pos = 1
    while pos < len(text):
        m = _FIELD.match(text, pos) or _INDEX.match(text, pos)
        if m is None:
            raise InvalidPathError(
                f"Invalid path '{text}': unexpected {text[pos:]!r} at position {pos}", text
            )
        if m.re is _FIELD:
            segments.append(FieldSegment(m.group(1)))
        else:
            segments.append(IndexSegment(int(m.group(1))))
        pos = m.end()

    if not segments:
        raise InvalidPathError(f"Path '{text}' needs at least one segment after '$'", text)
    return JsonPathExpression(tuple(segments))
