"""
Typed field lookups on raw JSON documents.

Lookups never raise: a missing key, an out of range index, a value of the
wrong type or a buffer that is not valid JSON all come back as ``(None, False)``.
Callers decide what absence means (zero for counters, a failed row for queries).
"""

import json
import re
from collections.abc import Iterator, Sequence
from typing import Any

PathStep = str | int

_MISSING = object()
_STEP_RE = re.compile(r"([^.\[\]]+)|\[(\d+)\]")


def _decode(buffer: Any) -> Any:
    # Only raw bytes are parsed; a str is already a decoded JSON string value
    if isinstance(buffer, (bytes, bytearray)):
        try:
            return json.loads(buffer)
        except ValueError:
            return _MISSING
    return buffer


def _walk(node: Any, path: Sequence[PathStep]) -> Any:
    for step in path:
        if isinstance(step, int):
            if not isinstance(node, list) or not -len(node) <= step < len(node):
                return _MISSING
            node = node[step]
        else:
            if not isinstance(node, dict) or step not in node:
                return _MISSING
            node = node[step]
    return node


def _coerce(value: Any, kind: type) -> tuple[Any, bool]:
    if kind is float:
        # bool is a subclass of int but is not a number in JSON
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return None, False
        return float(value), True
    if kind is str:
        return (value, True) if isinstance(value, str) else (None, False)
    if kind is bool:
        return (value, True) if isinstance(value, bool) else (None, False)
    raise TypeError(f"Unsupported extraction type: {kind!r}")


def extract(buffer: Any, *path: PathStep, kind: type = float) -> tuple[Any, bool]:
    """
    Look up the value at ``path`` and return it as ``kind``.

    Args:
        buffer: Raw JSON bytes or an already decoded JSON value
        path: Object keys (str) and array indices (int)
        kind: One of float, str or bool

    Returns:
        ``(value, True)`` when found with the right type, ``(None, False)`` otherwise
    """
    node = _decode(buffer)
    if node is _MISSING:
        return None, False
    node = _walk(node, path)
    if node is _MISSING:
        return None, False
    return _coerce(node, kind)


def get_float(buffer: Any, *path: PathStep) -> tuple[float | None, bool]:
    return extract(buffer, *path, kind=float)


def get_string(buffer: Any, *path: PathStep) -> tuple[str | None, bool]:
    return extract(buffer, *path, kind=str)


def get_bool(buffer: Any, *path: PathStep) -> tuple[bool | None, bool]:
    return extract(buffer, *path, kind=bool)


def iter_array(buffer: Any, *path: PathStep) -> Iterator[Any]:
    """Yield the elements of the array at ``path``; yields nothing if there is no array."""
    node = _decode(buffer)
    if node is _MISSING:
        return
    node = _walk(node, path)
    if isinstance(node, list):
        yield from node


def parse_path(text: str) -> list[PathStep]:
    """
    Split a textual path such as ``"Address.Lines[0].City"`` into lookup steps.

    Raises:
        ValueError: If the text is empty or contains an unparseable segment
    """
    steps: list[PathStep] = []
    position = 0
    text = text.strip()
    while position < len(text):
        if text[position] == "." and steps and position + 1 < len(text):
            position += 1
        match = _STEP_RE.match(text, position)
        if not match:
            raise ValueError(f"Invalid field path: {text!r}")
        key, index = match.groups()
        steps.append(int(index) if index is not None else key)
        position = match.end()
    if not steps:
        raise ValueError("Field path must not be empty")
    return steps
