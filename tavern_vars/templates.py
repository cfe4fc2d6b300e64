"""Structured-variable templates used for auto-registration.

When a command writes a sub-path of a top-level name that does not exist yet
and the name matches a template, the variable is created with the template's
default shape before the write is applied, rather than as a bare object
holding only the written field.

Templates are factories so every instantiation gets a fresh tree.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

StructureTemplate = Callable[[], dict[str, Any]]


def todo_list() -> dict[str, Any]:
    """Chapter / task tracking structure used by story scripts."""
    return {
        "chapterList": [],
        "currentChapter": "",
        "currentToDoList": [],
        "completed": [],
        "in_progress": [],
        "pending": [],
    }


DEFAULT_TEMPLATES: dict[str, StructureTemplate] = {
    "ToDoList": todo_list,
}


def instantiate(
    name: str,
    templates: dict[str, StructureTemplate],
    overrides: dict[str, Any] | None = None,
) -> dict[str, Any] | None:
    """Return a fresh default tree for name, or None if it has no template.

    overrides (e.g. a JSON initial value given at registration) are merged
    over the defaults key by key.
    """
    factory = templates.get(name)
    if factory is None:
        return None
    value = factory()
    if overrides:
        value.update(overrides)
    return value
