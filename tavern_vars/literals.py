"""Literal sniffing, type coercion and value rendering.

Command values arrive as raw text. sniff_literal() guesses the shape from the
text itself; coerce() converts text to a declared VariableType; render()
turns a stored value back into the text a macro substitutes.
"""

from __future__ import annotations

import json
import re
from typing import Any

from .errors import MalformedLiteral
from .models import VariableType
from .paths import MISSING

_NUMBER_RE = re.compile(r"-?\d+(\.\d+)?([eE][-+]?\d+)?")


def decode_structured(raw: str) -> Any:
    """Decode a JSON object/array literal, raising MalformedLiteral on failure."""
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        raise MalformedLiteral(f"Invalid structured value {raw!r}: {e.msg}") from e


def parse_number(raw: str) -> int | float:
    text = raw.strip()
    if not _NUMBER_RE.fullmatch(text):
        raise MalformedLiteral(f"Not a number: {raw!r}")
    number = float(text)
    if number.is_integer() and "." not in text and "e" not in text.lower():
        return int(text)
    return number


def infer_type(raw: str) -> VariableType:
    """Guess the advisory type of a raw literal."""
    text = raw.strip()
    if text.lower() in ("true", "false"):
        return "boolean"
    if _NUMBER_RE.fullmatch(text):
        return "number"
    if text.startswith("{"):
        return "object"
    if text.startswith("["):
        return "array"
    return "string"


def sniff_literal(raw: str) -> Any:
    """Parse raw text into bool, number, structure or string by its shape."""
    kind = infer_type(raw)
    if kind == "boolean":
        return raw.strip().lower() == "true"
    if kind == "number":
        return parse_number(raw)
    if kind in ("object", "array"):
        return decode_structured(raw)
    return raw


def coerce(raw: str, type_: VariableType) -> Any:
    """Convert raw text to a value of the declared type.

    Raises MalformedLiteral when the text cannot represent that type.
    """
    if type_ == "number":
        return parse_number(raw)
    if type_ == "boolean":
        text = raw.strip().lower()
        if text not in ("true", "false"):
            raise MalformedLiteral(f"Not a boolean: {raw!r}")
        return text == "true"
    if type_ in ("object", "array"):
        if not raw.strip():
            return {} if type_ == "object" else []
        value = decode_structured(raw)
        expected = dict if type_ == "object" else list
        if not isinstance(value, expected):
            raise MalformedLiteral(f"Expected {type_}, got {raw!r}")
        return value
    return raw


def render(value: Any) -> str:
    """Return the text a macro substitutes for a resolved value."""
    if value is None or value is MISSING:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False, separators=(",", ":"))
    return str(value)
