"""VariableManager: the owning layer for scopes, commands, macros and saves.

Hosts (the HTTP app, the MCP server, a chat pipeline) talk to this class
only. It wires one ScopeRegistry to a CommandParser and a MacroEngine, and
makes every mutate-then-save sequence run under LockManager.acquire() for
the scope's key, so concurrent requests against the same character never
interleave their writes.

Typical use:

    manager = VariableManager(JsonFilePersistence(data_dir))
    await manager.init_scope("global", {"variables": {"day": {"type": "number", "value": 1}}})
    await manager.init_scope("alice")
    result = await manager.process_text(model_output, "alice")
    result.text       # commands removed, macros expanded
"""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from pydantic import BaseModel, Field, ValidationError

from .commands import (
    AddTableRowOp,
    CommandParser,
    CommandResult,
    Operation,
    RegisterTableOp,
    RemoveTableRowOp,
    SetOp,
    SetTableRowOp,
    UnregisterTableOp,
)
from .errors import LockedOperationFailure, UnknownScope, VariableError
from .locks import LockManager
from .macros import MacroEngine
from .models import ScopeConfig, ScopeSnapshot, TableColumn, TagConfig, Variable, VariableType
from .paths import MISSING
from .persistence import MemoryPersistence, Persistence
from .store import Scope, ScopeRegistry, VariableStore
from .templates import StructureTemplate

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ProcessResult(BaseModel):
    """Text after command application and macro expansion."""

    text: str
    logs: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    changed: bool = False


def encode_snapshot(snapshot: ScopeSnapshot) -> str:
    return json.dumps(snapshot.model_dump(mode="json"), indent=2, ensure_ascii=False)


def decode_snapshot(blob: str) -> ScopeSnapshot:
    return ScopeSnapshot.model_validate_json(blob)


class VariableManager:
    def __init__(
        self,
        persistence: Persistence | None = None,
        *,
        registry: ScopeRegistry | None = None,
        locks: LockManager | None = None,
        tags: TagConfig | None = None,
        templates: dict[str, StructureTemplate] | None = None,
        max_passes: int | None = None,
        register_overwrite: bool = True,
    ) -> None:
        self.persistence: Persistence = persistence or MemoryPersistence()
        self.registry = registry or ScopeRegistry()
        self.locks = locks or LockManager()
        self.commands = CommandParser(self.registry, tags, templates, register_overwrite)
        self.macros = MacroEngine(self.registry, max_passes)

    # ------------------------------------------------------------------
    # Locking and saving
    # ------------------------------------------------------------------

    async def _locked(self, scope: Scope, operation: Callable[[], Awaitable[T]]) -> T:
        try:
            return await self.locks.acquire(scope.key, operation)
        except VariableError:
            raise
        except Exception as e:
            logger.warning("locked operation on %s failed: %s", scope.key, e)
            raise LockedOperationFailure(scope.key, e) from e

    async def _save(self, store: VariableStore) -> None:
        await self.persistence.save(store.scope.key, encode_snapshot(store.snapshot()))

    # ------------------------------------------------------------------
    # Scope lifecycle
    # ------------------------------------------------------------------

    async def init_scope(
        self, scope_id: str | None = None, config: ScopeConfig | dict | None = None
    ) -> VariableStore:
        """Create a scope ("global" or a character id).

        With config the scope is seeded and saved; without, its saved state
        is restored when one exists, otherwise it starts empty.
        """
        scope = Scope.parse(scope_id)

        async def init() -> VariableStore:
            if config is not None:
                store = self.registry.init_scope(scope, config)
                await self._save(store)
                logger.info("scope %s initialised from config (%d vars)", scope.key, len(store))
                return store
            store = self.registry.init_scope(scope)
            blob = await self.persistence.load(scope.key)
            if blob:
                try:
                    store.load_snapshot(decode_snapshot(blob))
                except ValidationError as e:
                    logger.warning("saved state for %s is unreadable, starting empty: %s", scope.key, e)
                else:
                    logger.info("scope %s restored (%d vars)", scope.key, len(store))
            return store

        return await self._locked(scope, init)

    async def teardown_scope(self, scope_id: str | None = None, purge: bool = False) -> bool:
        """Drop a scope from memory; purge also deletes its saved state."""
        scope = Scope.parse(scope_id)

        async def teardown() -> bool:
            removed = self.registry.teardown(scope)
            if purge:
                removed = await self.persistence.delete(scope.key) or removed
            return removed

        return await self._locked(scope, teardown)

    def has_scope(self, scope_id: str | None = None) -> bool:
        return Scope.parse(scope_id) in self.registry

    # ------------------------------------------------------------------
    # Text processing
    # ------------------------------------------------------------------

    async def process_text(self, text: str, scope_id: str | None = None) -> ProcessResult:
        """Apply embedded commands, save if anything changed, expand macros.

        Never raises for bad input: an unknown scope or an unexpected failure
        returns the original text with the error listed.
        """
        if not text:
            return ProcessResult(text=text or "")
        scope = Scope.parse(scope_id)
        if scope not in self.registry:
            error = UnknownScope(scope.key)
            logger.warning("process_text: %s", error)
            return ProcessResult(text=text, errors=[str(error)])

        try:
            if self.commands.contains_commands(text):
                commands = await self._locked(scope, lambda: self._apply_and_save(text, scope))
            else:
                commands = CommandResult(clean_text=text)
            resolved = self.macros.resolve_with_report(commands.clean_text, scope)
        except Exception as e:
            logger.warning("process_text on %s failed: %s", scope.key, e)
            return ProcessResult(text=text, errors=[str(e)])

        return ProcessResult(
            text=resolved.text,
            logs=commands.logs,
            errors=commands.errors + resolved.errors,
            changed=commands.changed,
        )

    async def _apply_and_save(self, text: str, scope: Scope) -> CommandResult:
        result = self.commands.apply_commands(text, scope)
        if result.changed:
            await self._save(self.registry.get(scope))
        return result

    def replace_macros(self, text: str, scope_id: str | None = None) -> str:
        return self.macros.resolve(text, scope_id)

    def get_value(self, path: str, scope_id: str | None = None) -> Any:
        """Resolved value at path (visibility applied), or None if absent."""
        value = self.macros.resolve_path(path, scope_id)
        return None if value is MISSING else value

    # ------------------------------------------------------------------
    # Programmatic mutation
    # ------------------------------------------------------------------

    async def register_var(
        self,
        scope_id: str | None,
        name: str,
        value: Any = None,
        type: VariableType | None = None,
        visibility: str | None = None,
    ) -> Variable:
        scope = Scope.parse(scope_id)

        async def register() -> Variable:
            store = self.registry.get(scope)
            variable = store.set(name, value, type, visibility)
            await self._save(store)
            return variable

        return await self._locked(scope, register)

    async def unregister_var(self, scope_id: str | None, name: str) -> bool:
        scope = Scope.parse(scope_id)

        async def unregister() -> bool:
            store = self.registry.get(scope)
            removed = store.remove(name)
            if removed:
                await self._save(store)
            return removed

        return await self._locked(scope, unregister)

    async def _apply(self, scope_id: str | None, op: Operation) -> str:
        scope = Scope.parse(scope_id)

        async def apply() -> str:
            store = self.registry.get(scope)
            message = self.commands.apply_operation(store, op)
            await self._save(store)
            return message

        return await self._locked(scope, apply)

    async def set_value(self, scope_id: str | None, path: str, value: Any) -> str:
        """Write value at a (possibly dotted) path, auto-registering the root."""
        return await self._apply(scope_id, SetOp(path, value))

    # ------------------------------------------------------------------
    # Tables
    # ------------------------------------------------------------------

    async def register_table(
        self, scope_id: str | None, name: str, columns: list[TableColumn | dict | str]
    ) -> str:
        parsed = [
            TableColumn(name=c) if isinstance(c, str) else TableColumn.model_validate(c)
            for c in columns
        ]
        return await self._apply(scope_id, RegisterTableOp(name, parsed))

    async def unregister_table(self, scope_id: str | None, name: str) -> str:
        return await self._apply(scope_id, UnregisterTableOp(name))

    async def add_table_row(self, scope_id: str | None, table: str, row: dict[str, Any]) -> str:
        """Append a row; values are coerced to their column types."""
        return await self._apply(scope_id, AddTableRowOp(table, row))

    async def set_table_cell(
        self, scope_id: str | None, table: str, row: int, column: str, value: Any
    ) -> str:
        return await self._apply(scope_id, SetTableRowOp(table, row, {column: value}))

    async def set_table_row(
        self, scope_id: str | None, table: str, row: int, cells: dict[str, Any]
    ) -> str:
        """Overwrite several cells of one row; nothing changes if any cell is invalid."""
        return await self._apply(scope_id, SetTableRowOp(table, row, cells))

    async def remove_table_row(self, scope_id: str | None, table: str, row: int) -> str:
        return await self._apply(scope_id, RemoveTableRowOp(table, row))

    def table_rows(self, table: str, scope_id: str | None = None) -> list[dict[str, Any]]:
        """Copy of a table's rows; empty when the table does not exist."""
        found = self.registry.get(scope_id).get_table(table)
        return [dict(row) for row in found.rows] if found else []

    # ------------------------------------------------------------------
    # Save-games and inspection
    # ------------------------------------------------------------------

    def export_snapshots(self) -> dict[str, dict[str, Any]]:
        """All live scopes as {scope key: snapshot dict}."""
        return {
            scope.key: self.registry.get(scope).snapshot().model_dump(mode="json")
            for scope in self.registry.scopes()
        }

    async def load_snapshots(self, data: dict[str, Any]) -> list[str]:
        """Replace (or create) each scope in data and save it. Returns the keys loaded."""
        loaded: list[str] = []
        for key, raw in data.items():
            scope = Scope.from_key(key)
            snapshot = ScopeSnapshot.model_validate(raw)

            async def load(scope: Scope = scope, snapshot: ScopeSnapshot = snapshot) -> None:
                store = self.registry.find(scope) or self.registry.init_scope(scope)
                store.load_snapshot(snapshot)
                await self._save(store)

            await self._locked(scope, load)
            loaded.append(key)
        return loaded

    def variable_state(self, scope_id: str | None = None) -> dict[str, Any]:
        store = self.registry.get(scope_id)
        snapshot = store.snapshot()
        return {
            "scope": store.scope.key,
            "variables": [v.model_dump(mode="json") for v in snapshot.variables],
            "hidden_variables": [h.model_dump(mode="json") for h in snapshot.hidden_variables],
            "tables": [t.model_dump(mode="json") for t in snapshot.tables],
        }
