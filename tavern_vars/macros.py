"""Macro expansion: `${path}` placeholders resolved against variable stores.

Expansion works on spans. Each pass finds the leftmost complete `${...}`,
matching nested macros as part of it, and resolves it inside out: the value
of every nested macro becomes literal text of the enclosing path, so
`${scoreTable.desc.${goodwill}}` reads scoreTable.desc.10 even when the
inner value contains `}`. The rendered result is spliced back into
the text and the text is rescanned from the start, so values that themselves
contain macros expand fully.

Every lookup consumes one unit of a budget proportional to the input length
(optionally capped by max_passes). A self-referential value therefore cannot
loop forever: once the budget is spent the remaining macros are replaced with
the empty string and CycleLimitExceeded is reported.

Lookup order for a path `root.a.b`:
  1. the given scope's store, then the global store (global only when no
     scope is given);
  2. within a store, a hidden variable named `root` (visible only while its
     condition holds), else a table named `root` (see table_lookup), else
     the top-level Variable `root` gated by its visibility predicate, with
     conditional branches evaluated;
  3. the remaining segments are read from that value with the path resolver.
Anything that does not resolve renders as "".
"""

from __future__ import annotations

import logging
from typing import Any, NamedTuple

from . import conditions, paths
from .errors import CycleLimitExceeded, MalformedPath, UnknownScope
from .literals import render
from .models import Table, Variable
from .store import Scope, ScopeRegistry, VariableStore

logger = logging.getLogger(__name__)

MACRO_OPEN = "${"
MACRO_CLOSE = "}"

# Extra passes granted on top of the input length
PASS_ALLOWANCE = 16


# Deeper nesting is not matched as one span; the inner macros resolve alone
MAX_NESTING = 32


class Span(NamedTuple):
    """A `${body}` occurrence: text[start:end] == "${" + body + "}".

    nested holds the complete macros inside body, in text coordinates.
    """

    start: int
    end: int
    body: str
    nested: tuple[Span, ...] = ()


class MacroResult(NamedTuple):
    text: str
    passes: int
    errors: list[str]


def _match(text: str, open_at: int, depth: int = 0) -> Span | None:
    if depth > MAX_NESTING:
        return None
    nested: list[Span] = []
    pos = open_at + len(MACRO_OPEN)
    while True:
        close_at = text.find(MACRO_CLOSE, pos)
        if close_at == -1:
            return None
        inner_at = text.find(MACRO_OPEN, pos, close_at)
        if inner_at == -1:
            body = text[open_at + len(MACRO_OPEN):close_at]
            return Span(open_at, close_at + 1, body, tuple(nested))
        inner = _match(text, inner_at, depth + 1)
        if inner is None:
            return None
        nested.append(inner)
        pos = inner.end


def find_macro(text: str, start: int = 0) -> Span | None:
    """Return the leftmost complete macro, nested macros included."""
    open_at = text.find(MACRO_OPEN, start)
    while open_at != -1:
        span = _match(text, open_at)
        if span is not None:
            return span
        open_at = text.find(MACRO_OPEN, open_at + len(MACRO_OPEN))
    return None


def has_macros(text: str) -> bool:
    return find_macro(text) is not None


def branch_value(variable: Variable, store: VariableStore) -> Any:
    """Current value of a variable, choosing the first matching branch."""
    if not variable.branches:
        return variable.value
    for branch in variable.branches:
        if branch.condition is None or conditions.evaluate(branch.condition, store):
            return branch.value
    return variable.value


def table_lookup(table: Table, rest: paths.Path, store: VariableStore) -> Any:
    """`table` -> all rows, `table.col` -> row 0, `table.col.row[.sub...]`.

    A non-numeric row segment names a variable in the same store holding
    the row index.
    """
    if not rest:
        return table.rows
    column = rest[0]
    if table.column(column) is None:
        return paths.MISSING
    row_ref = rest[1] if len(rest) > 1 else "0"
    if paths.is_index(row_ref):
        index = int(row_ref)
    else:
        variable = store.get(row_ref)
        index = variable.value if variable is not None else None
        if isinstance(index, bool) or not isinstance(index, int) or index < 0:
            return paths.MISSING
    if index >= len(table.rows) or column not in table.rows[index]:
        return paths.MISSING
    cell = table.rows[index][column]
    return paths.read(cell, rest[2:]) if len(rest) > 2 else cell


def lookup(store: VariableStore, segments: paths.Path) -> Any:
    """Resolve a parsed path against one store, honouring visibility."""
    root, rest = segments[0], segments[1:]

    hidden = store.get_hidden(root)
    table = store.get_table(root)
    if hidden is None and table is not None:
        return table_lookup(table, rest, store)
    if hidden is not None:
        if not conditions.evaluate(hidden.condition, store):
            return paths.MISSING
        value = hidden.value
    else:
        variable = store.get(root)
        if variable is None or not conditions.is_visible(root, store):
            return paths.MISSING
        value = branch_value(variable, store)

    if not rest:
        return value
    return paths.read(value, rest)


class MacroEngine:
    """Expands `${...}` references against a ScopeRegistry."""

    def __init__(self, registry: ScopeRegistry, max_passes: int | None = None) -> None:
        self.registry = registry
        self.max_passes = max_passes

    def pass_budget(self, text: str) -> int:
        budget = len(text) + PASS_ALLOWANCE
        if self.max_passes is not None:
            budget = min(budget, self.max_passes)
        return budget

    def resolve(self, text: str, scope: Scope | str | None = None) -> str:
        """Return text with every macro replaced by its value (or "")."""
        return self.resolve_with_report(text, scope).text

    def resolve_path(self, path: str, scope: Scope | str | None = None) -> Any:
        """Resolve a single path expression to its raw value, or MISSING."""
        try:
            chain = self.registry.lookup_chain(scope)
        except UnknownScope:
            return paths.MISSING
        return self._lookup_chain(path, chain)

    def resolve_with_report(
        self, text: str, scope: Scope | str | None = None
    ) -> MacroResult:
        if not text or MACRO_OPEN not in text:
            return MacroResult(text, 0, [])

        try:
            chain = self.registry.lookup_chain(scope)
        except UnknownScope as e:
            logger.warning("macro resolution skipped: %s", e)
            return MacroResult(text, 0, [str(e)])

        budget = self.pass_budget(text)
        passes = 0
        errors: list[str] = []

        while (span := find_macro(text)) is not None:
            if passes >= budget:
                error = CycleLimitExceeded(budget)
                logger.warning("%s; dropping unresolved macros", error)
                errors.append(str(error))
                text = _strip_remaining(text)
                break
            replacement, lookups = self._expand(text, span, chain)
            passes += lookups
            text = text[:span.start] + replacement + text[span.end:]

        return MacroResult(text, passes, errors)

    def _expand(self, text: str, span: Span, chain: list[VariableStore]) -> tuple[str, int]:
        """Render span, resolving nested macros into its path first."""
        pieces: list[str] = []
        lookups = 1
        pos = span.start + len(MACRO_OPEN)
        for inner in span.nested:
            pieces.append(text[pos:inner.start])
            value, count = self._expand(text, inner, chain)
            pieces.append(value)
            lookups += count
            pos = inner.end
        pieces.append(text[pos:span.end - len(MACRO_CLOSE)])
        return render(self._lookup_chain("".join(pieces), chain)), lookups

    def _lookup_chain(self, body: str, chain: list[VariableStore]) -> Any:
        try:
            segments = paths.parse_path(body)
        except MalformedPath:
            logger.debug("macro body %r is not a path", body)
            return paths.MISSING
        for store in chain:
            value = lookup(store, segments)
            if value is not paths.MISSING:
                return value
        return paths.MISSING


def _strip_remaining(text: str) -> str:
    # Each removal shortens the text, so this always terminates
    while (span := find_macro(text)) is not None:
        text = text[:span.start] + text[span.end:]
    return text
