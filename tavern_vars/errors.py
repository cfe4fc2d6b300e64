"""Error taxonomy for the variable subsystem.

Parsing and resolution errors are contained at the smallest unit (one macro,
one command tag) and surface as messages in result objects. The exceptions
below are what the individual units raise internally; only UnknownScope and
LockedOperationFailure normally reach the owning layer.
"""

from __future__ import annotations


class VariableError(Exception):
    """Base class for every error raised by tavern_vars."""


class PathNotFound(VariableError, LookupError):
    """A read addressed a path that does not exist in the value tree."""

    def __init__(self, path: str) -> None:
        super().__init__(f"Path not found: {path}")
        self.path = path


class MalformedPath(VariableError, ValueError):
    """A path expression has empty segments or is otherwise unusable."""


class MalformedLiteral(VariableError, ValueError):
    """A command value cannot be parsed into the requested shape."""


class MalformedCommand(VariableError, ValueError):
    """A command tag is missing attributes or has unparseable attributes."""


class MalformedCondition(VariableError, ValueError):
    """A visibility / branch condition uses syntax outside the allowed subset."""


class UnknownScope(VariableError, KeyError):
    """An operation referenced a scope that was never initialised."""

    def __init__(self, scope_key: str) -> None:
        super().__init__(scope_key)
        self.scope_key = scope_key

    def __str__(self) -> str:
        return f"Unknown scope: {self.scope_key}"


class CycleLimitExceeded(VariableError):
    """Macro expansion ran out of passes before reaching a fixed point."""

    def __init__(self, passes: int) -> None:
        super().__init__(f"Macro expansion exceeded {passes} passes")
        self.passes = passes


class LockedOperationFailure(VariableError, RuntimeError):
    """The deferred operation run under a lock raised."""

    def __init__(self, key: str, cause: BaseException) -> None:
        super().__init__(f"Locked operation on {key!r} failed: {cause}")
        self.key = key
