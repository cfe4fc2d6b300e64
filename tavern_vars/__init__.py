"""Variable storage, command parsing and macro expansion for role-play chat.

Characters and the world keep named, typed variables. Script text and model
output mutate them with embedded tags (<setVar>, <registerVar>, ...) and read
them back with ${path} macros. VariableManager is the entry point; the
modules below it can be used on their own.
"""

from .commands import CommandParser, CommandResult
from .errors import (  # noqa: F401
    CycleLimitExceeded,
    LockedOperationFailure,
    MalformedCommand,
    MalformedCondition,
    MalformedLiteral,
    MalformedPath,
    PathNotFound,
    UnknownScope,
    VariableError,
)
from .locks import LockManager
from .macros import MacroEngine
from .manager import ProcessResult, VariableManager
from .models import (  # noqa: F401
    ConditionBranch,
    HiddenVariable,
    ScopeConfig,
    ScopeSnapshot,
    TagConfig,
    Variable,
)
from .persistence import JsonFilePersistence, MemoryPersistence, Persistence
from .store import GLOBAL, Scope, ScopeRegistry, VariableStore

__all__ = [
    "CommandParser",
    "CommandResult",
    "GLOBAL",
    "JsonFilePersistence",
    "LockManager",
    "MacroEngine",
    "MemoryPersistence",
    "Persistence",
    "ProcessResult",
    "Scope",
    "ScopeRegistry",
    "VariableManager",
    "VariableStore",
]
