"""Variable stores and the scope registry.

Each scope (one per character, plus exactly one global scope) owns a
VariableStore holding its top-level Variables, hidden variables and
tables in insertion order. Stores are plain in-memory objects: every mutation is
synchronous, and persistence is an explicit step taken by the owning layer
(see manager.py) under the scope's lock.

The ScopeRegistry is an explicit object handed to the macro engine and the
command parser. Scopes are created with init_* and destroyed with teardown();
looking up a scope that was never initialised raises UnknownScope.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict

from .errors import UnknownScope
from .models import (
    HiddenVariable,
    ScopeConfig,
    ScopeSnapshot,
    Table,
    Variable,
    VariableType,
    type_of,
)

logger = logging.getLogger(__name__)

GLOBAL_SCOPE_ID = "global"

VisibilityFn = Callable[["VariableStore"], bool]


class Scope(BaseModel):
    """Handle naming one variable namespace."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["global", "character"]
    id: str = GLOBAL_SCOPE_ID

    @classmethod
    def character(cls, character_id: str) -> Scope:
        return cls(kind="character", id=character_id)

    @classmethod
    def parse(cls, scope: Scope | str | None) -> Scope:
        """Accept a Scope, a scope id ("global" or a character id) or None."""
        if isinstance(scope, Scope):
            return scope
        if scope is None or scope == GLOBAL_SCOPE_ID:
            return GLOBAL
        return cls.character(scope)

    @classmethod
    def from_key(cls, key: str) -> Scope:
        """Inverse of Scope.key: "global" or "character:<id>"."""
        if key == GLOBAL_SCOPE_ID:
            return GLOBAL
        kind, _, ident = key.partition(":")
        if kind != "character" or not ident:
            raise ValueError(f"Not a scope key: {key!r}")
        return cls.character(ident)

    @property
    def is_global(self) -> bool:
        return self.kind == "global"

    @property
    def key(self) -> str:
        """Resource identity used for locking and persistence."""
        return GLOBAL_SCOPE_ID if self.is_global else f"character:{self.id}"

    def __str__(self) -> str:
        return self.key


GLOBAL = Scope(kind="global")


class VariableStore:
    """Named, typed values for one scope."""

    def __init__(self, scope: Scope) -> None:
        self.scope = scope
        self._vars: dict[str, Variable] = {}
        self._hidden: dict[str, HiddenVariable] = {}
        self._tables: dict[str, Table] = {}
        self._visibility_fns: dict[str, VisibilityFn] = {}

    # ------------------------------------------------------------------
    # Variables
    # ------------------------------------------------------------------

    def get(self, name: str) -> Variable | None:
        return self._vars.get(name)

    def set(
        self,
        name: str,
        value: Any,
        type: VariableType | None = None,
        visibility: str | None = None,
    ) -> Variable:
        """Create or replace a variable.

        Omitted type and visibility are kept from the existing variable, or
        inferred from the value for a new one. Replacing keeps the variable's
        original position in list_all().
        """
        existing = self._vars.get(name)
        if type is None:
            type = existing.type if existing else type_of(value)
        if visibility is None and existing is not None:
            visibility = existing.visibility
        variable = Variable(
            name=name,
            type=type,
            value=value,
            visibility=visibility,
            branches=existing.branches if existing else None,
        )
        self._vars[name] = variable
        return variable

    def add(self, variable: Variable) -> Variable:
        """Store a fully-specified Variable, replacing any of the same name."""
        self._vars[variable.name] = variable
        return variable

    def remove(self, name: str) -> bool:
        self._visibility_fns.pop(name, None)
        return self._vars.pop(name, None) is not None

    def list_all(self) -> list[Variable]:
        return list(self._vars.values())

    def names(self) -> list[str]:
        return list(self._vars)

    def __contains__(self, name: object) -> bool:
        return name in self._vars

    def __len__(self) -> int:
        return len(self._vars)

    # ------------------------------------------------------------------
    # Visibility predicates supplied as Python callables
    # ------------------------------------------------------------------

    def set_visibility_fn(self, name: str, fn: VisibilityFn | None) -> None:
        """Attach a programmatic visibility predicate (not persisted)."""
        if fn is None:
            self._visibility_fns.pop(name, None)
        else:
            self._visibility_fns[name] = fn

    def visibility_fn(self, name: str) -> VisibilityFn | None:
        return self._visibility_fns.get(name)

    # ------------------------------------------------------------------
    # Hidden variables
    # ------------------------------------------------------------------

    def get_hidden(self, name: str) -> HiddenVariable | None:
        return self._hidden.get(name)

    def set_hidden(self, name: str, condition: str, value: Any) -> HiddenVariable:
        hidden = HiddenVariable(name=name, condition=condition, value=value)
        self._hidden[name] = hidden
        return hidden

    def remove_hidden(self, name: str) -> bool:
        return self._hidden.pop(name, None) is not None

    def list_hidden(self) -> list[HiddenVariable]:
        return list(self._hidden.values())

    # ------------------------------------------------------------------
    # Tables
    # ------------------------------------------------------------------

    def get_table(self, name: str) -> Table | None:
        return self._tables.get(name)

    def add_table(self, table: Table) -> Table:
        self._tables[table.name] = table
        return table

    def remove_table(self, name: str) -> bool:
        return self._tables.pop(name, None) is not None

    def list_tables(self) -> list[Table]:
        return list(self._tables.values())

    # ------------------------------------------------------------------
    # Seeding and snapshots
    # ------------------------------------------------------------------

    def seed(self, config: ScopeConfig) -> None:
        for variable in config.variables:
            self.add(variable.model_copy(deep=True))
        for hidden in config.hidden_variables:
            self._hidden[hidden.name] = hidden.model_copy(deep=True)
        for table in config.tables:
            self._tables[table.name] = table.model_copy(deep=True)

    def snapshot(self) -> ScopeSnapshot:
        return ScopeSnapshot(
            variables=[v.model_copy(deep=True) for v in self._vars.values()],
            hidden_variables=[h.model_copy(deep=True) for h in self._hidden.values()],
            tables=[t.model_copy(deep=True) for t in self._tables.values()],
        )

    def load_snapshot(self, snapshot: ScopeSnapshot) -> None:
        """Replace the store's contents with the snapshot."""
        self._vars.clear()
        self._hidden.clear()
        self._tables.clear()
        self.seed(ScopeConfig(
            variables=snapshot.variables,
            hidden_variables=snapshot.hidden_variables,
            tables=snapshot.tables,
        ))

    def __repr__(self) -> str:
        return f"VariableStore({self.scope.key!r}, {self.names()!r})"


class ScopeRegistry:
    """All live scopes of one process or session."""

    def __init__(self) -> None:
        self._stores: dict[str, VariableStore] = {}

    def init_scope(
        self, scope: Scope | str | None, config: ScopeConfig | dict | None = None
    ) -> VariableStore:
        """Create (or recreate) a scope, seeded from config."""
        scope = Scope.parse(scope)
        store = VariableStore(scope)
        if config is not None:
            if isinstance(config, dict):
                config = ScopeConfig.model_validate(config)
            store.seed(config)
        self._stores[scope.key] = store
        logger.debug("scope initialised %s vars=%d", scope.key, len(store))
        return store

    def init_global(self, config: ScopeConfig | dict | None = None) -> VariableStore:
        return self.init_scope(GLOBAL, config)

    def init_character(
        self, character_id: str, config: ScopeConfig | dict | None = None
    ) -> VariableStore:
        return self.init_scope(Scope.character(character_id), config)

    def get(self, scope: Scope | str | None) -> VariableStore:
        scope = Scope.parse(scope)
        store = self._stores.get(scope.key)
        if store is None:
            raise UnknownScope(scope.key)
        return store

    def find(self, scope: Scope | str | None) -> VariableStore | None:
        return self._stores.get(Scope.parse(scope).key)

    def lookup_chain(self, scope: Scope | str | None) -> list[VariableStore]:
        """Stores to consult for a bare path: the scope itself, then global.

        Raises UnknownScope when a non-global scope was never initialised.
        """
        scope = Scope.parse(scope)
        chain: list[VariableStore] = []
        if not scope.is_global:
            chain.append(self.get(scope))
        global_store = self.find(GLOBAL)
        if global_store is not None:
            chain.append(global_store)
        return chain

    def teardown(self, scope: Scope | str | None) -> bool:
        scope = Scope.parse(scope)
        removed = self._stores.pop(scope.key, None) is not None
        if removed:
            logger.debug("scope torn down %s", scope.key)
        return removed

    def teardown_character(self, character_id: str) -> bool:
        return self.teardown(Scope.character(character_id))

    def teardown_all(self) -> None:
        self._stores.clear()

    def scopes(self) -> list[Scope]:
        return [store.scope for store in self._stores.values()]

    def __contains__(self, scope: object) -> bool:
        if not isinstance(scope, (Scope, str)):
            return False
        return Scope.parse(scope).key in self._stores
