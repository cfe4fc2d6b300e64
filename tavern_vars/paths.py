"""Generic get/set over nested value trees addressed by dotted paths.

A path is a sequence of segments. Each segment is an object key, or an array
index when it is a non-negative decimal integer:

    "ToDoList.chapterList.0"  →  ("ToDoList", "chapterList", "0")

Reads never raise for absent paths; they return MISSING. Writes auto-vivify
missing intermediate structure, choosing a list when the next segment is an
index and a dict otherwise, and pad lists with None up to the index.
Indexes above MAX_INDEX are rejected with MalformedPath.
write() returns a new tree; the containers along the written path are copied,
everything else is shared with the input.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from typing import Any

from .errors import MalformedPath, PathNotFound

Path = tuple[str, ...]

_INDEX_RE = re.compile(r"\d+", re.ASCII)

# Largest array index a write may create
MAX_INDEX = 9999


class _Missing:
    """Sentinel for an absent path. Distinct from a stored None."""

    _instance: _Missing | None = None

    def __new__(cls) -> _Missing:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "MISSING"


MISSING: Any = _Missing()


def is_index(segment: str) -> bool:
    """True when a segment addresses an array slot."""
    return _INDEX_RE.fullmatch(segment) is not None


def parse_path(path: str | Sequence[str]) -> Path:
    """Split a dotted path into segments, rejecting empty segments."""
    if isinstance(path, str):
        segments = tuple(s.strip() for s in path.split("."))
    else:
        segments = tuple(path)
    if not segments or any(not s for s in segments):
        raise MalformedPath(f"Invalid path: {path!r}")
    return segments


def format_path(segments: Sequence[str]) -> str:
    return ".".join(segments)


def read(tree: Any, path: str | Sequence[str]) -> Any:
    """Return the value at path, or MISSING if any segment does not resolve."""
    node = tree
    for segment in parse_path(path):
        if isinstance(node, dict):
            if segment not in node:
                return MISSING
            node = node[segment]
        elif isinstance(node, list) and is_index(segment):
            index = int(segment)
            if index >= len(node):
                return MISSING
            node = node[index]
        else:
            return MISSING
    return node


def read_or_raise(tree: Any, path: str | Sequence[str]) -> Any:
    """Like read(), but raise PathNotFound instead of returning MISSING."""
    value = read(tree, path)
    if value is MISSING:
        raise PathNotFound(path if isinstance(path, str) else format_path(path))
    return value


def write(tree: Any, path: str | Sequence[str], value: Any) -> Any:
    """Return a copy of tree with value stored at path."""
    return _write(tree, parse_path(path), value)


def _write(node: Any, segments: Path, value: Any) -> Any:
    if not segments:
        return value
    head, rest = segments[0], segments[1:]

    if not isinstance(node, (dict, list)):
        # Absent, null or scalar: replace with the container the segment needs
        node = [] if is_index(head) else {}

    if isinstance(node, list):
        if is_index(head):
            index = int(head)
            if index > MAX_INDEX:
                raise MalformedPath(f"Array index {index} exceeds {MAX_INDEX}")
            items = list(node)
            if index >= len(items):
                items.extend([None] * (index + 1 - len(items)))
            items[index] = _write(items[index], rest, value)
            return items
        # A key on an array turns it into an object keyed by position
        node = {str(i): item for i, item in enumerate(node)}

    mapping = dict(node)
    mapping[head] = _write(mapping.get(head), rest, value)
    return mapping

