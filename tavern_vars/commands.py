"""Variable commands embedded in free text.

Script content and model output carry mutation commands as tags mixed into
ordinary narrative:

    The innkeeper smiles. <setVar name="goodwill" value="85">goodwill up</setVar>
    <setVar name="ToDoList.chapterList.0" value="第一章：初遇">chapter one</setVar>
    <setVar>gold += 10; visits++</setVar>
    <registerVar name="mood" type="string" initVal="calm"/>
    <registerVars><var name="hp" type="number" initVal="10"/></registerVars>
    <unregisterVar name="mood"/>
    <registerHiddenVar name="secret" condition="goodwill >= 80">the map</registerHiddenVar>
    <unregisterHiddenVar name="secret"/>
    <registerTable name="inventory" columns='[{"name": "item"}, {"name": "qty", "type": "number"}]'/>
    <addTableRow table="inventory">item = sword; qty = 1</addTableRow>
    <setTable table="inventory" row="0">qty = 2</setTable>
    <removeTableRow table="inventory" row="0"/>
    <unregisterTable name="inventory"/>

Processing is two-phase. tokenize() locates tag spans with a small scanner
that makes no assumption about the surrounding text being valid markup;
parse_span() then turns one span into operations with strict attribute
rules (quoted values only). Operations are applied in textual order against
one scope's store, so later tags see the effects of earlier ones.

A malformed tag is stripped from the text and reported, and produces no
mutation; it never stops the tags after it from being applied.
"""

from __future__ import annotations

import html
import logging
import re
from typing import Any, NamedTuple

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from . import paths
from .conditions import compile_condition
from .errors import MalformedCommand, PathNotFound, UnknownScope, VariableError
from .literals import coerce, decode_structured, parse_number, render, sniff_literal
from .models import VARIABLE_TYPES, Table, TableColumn, TagConfig, type_of
from .store import Scope, ScopeRegistry, VariableStore
from .templates import DEFAULT_TEMPLATES, StructureTemplate, instantiate

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Phase 1: tokenizer
# ---------------------------------------------------------------------------

class TagSpan(NamedTuple):
    """One command tag found in the text: text[start:end] is the whole tag."""

    name: str
    attrs: str
    inner: str | None  # None for self-closing tags
    start: int
    end: int
    error: str | None = None  # set when the start tag itself is broken

    @property
    def source(self) -> str:
        inner = "" if self.inner is None else self.inner
        return f"<{self.name}{self.attrs}>{inner}"


def _start_tag_end(text: str, pos: int) -> int:
    """Index of the '>' closing a start tag, skipping quoted values; -1 if none."""
    quote: str | None = None
    for i in range(pos, len(text)):
        ch = text[i]
        if quote:
            if ch == quote:
                quote = None
        elif ch in ('"', "'"):
            quote = ch
        elif ch == ">":
            return i
        elif ch == "<":
            return -1
    return -1


_TAG_OPEN_RE = re.compile(r"<([A-Za-z_][\w-]*)")


def tokenize(text: str, names: set[str] | frozenset[str]) -> list[TagSpan]:
    """Find every tag whose name is in names, in textual order.

    Recognises `<name attrs/>` and `<name attrs>inner</name>`. A start tag
    without a closing tag is treated as self-closing. A start tag with an
    unbalanced quote is still returned, with error set, so it can be stripped
    and reported. Text that only looks like the start of a tag (no '>'
    anywhere after it) is ignored.
    """
    spans: list[TagSpan] = []
    pos = 0
    while (lt := text.find("<", pos)) != -1:
        match = _TAG_OPEN_RE.match(text, lt)
        if not match or match.group(1) not in names:
            pos = lt + 1
            continue
        name = match.group(1)
        attrs_start = match.end()
        if attrs_start < len(text) and text[attrs_start] not in " \t\r\n/>":
            pos = lt + 1
            continue
        gt = _start_tag_end(text, attrs_start)
        error = None
        if gt == -1:
            # Unbalanced quote or a '<' inside the start tag: end it at the
            # next raw '>' or '<' and keep it as a malformed span
            gt = text.find(">", attrs_start)
            if gt == -1:
                pos = lt + 1
                continue
            nxt = text.find("<", attrs_start, gt)
            if nxt != -1:
                spans.append(TagSpan(name, text[attrs_start:nxt], None, lt, nxt,
                                     f"<{name}> start tag is not terminated"))
                pos = nxt
                continue
            error = f"<{name}> has an unterminated attribute value"
        attrs = text[attrs_start:gt]
        if attrs.rstrip().endswith("/"):
            spans.append(TagSpan(name, attrs.rstrip()[:-1], None, lt, gt + 1, error))
            pos = gt + 1
            continue
        close_tag = f"</{name}>"
        close_at = text.find(close_tag, gt + 1)
        if close_at == -1:
            spans.append(TagSpan(name, attrs, None, lt, gt + 1, error))
            pos = gt + 1
            continue
        spans.append(TagSpan(
            name, attrs, text[gt + 1:close_at], lt, close_at + len(close_tag), error
        ))
        pos = close_at + len(close_tag)
    return spans


_ATTR_RE = re.compile(r"""\s*([A-Za-z_][\w:-]*)\s*=\s*(?:"([^"]*)"|'([^']*)')""")


def parse_attributes(attrs: str) -> dict[str, str]:
    """Parse `key="value"` / `key='value'` pairs; anything else is malformed."""
    result: dict[str, str] = {}
    pos = 0
    while pos < len(attrs):
        if not attrs[pos:].strip():
            break
        match = _ATTR_RE.match(attrs, pos)
        if not match:
            raise MalformedCommand(f"Cannot parse attributes near {attrs[pos:].strip()!r}")
        value = match.group(2) if match.group(2) is not None else match.group(3)
        result[match.group(1)] = html.unescape(value)
        pos = match.end()
    return result


# ---------------------------------------------------------------------------
# Phase 2: operations
# ---------------------------------------------------------------------------

class SetOp(NamedTuple):
    path: str
    value: Any
    raw: str | None = None  # original literal text, used for typed coercion


class AssignOp(NamedTuple):
    """Content-form assignment: path (=|+=|-=) raw, or path ++/--."""

    path: str
    op: str
    raw: str


class RegisterOp(NamedTuple):
    name: str
    type: str
    raw: str
    visibility: str | None


class UnregisterOp(NamedTuple):
    name: str


class RegisterHiddenOp(NamedTuple):
    name: str
    condition: str
    value: Any


class UnregisterHiddenOp(NamedTuple):
    name: str


class RegisterTableOp(NamedTuple):
    name: str
    columns: list[TableColumn]


class UnregisterTableOp(NamedTuple):
    name: str


class SetTableRowOp(NamedTuple):
    """Overwrite cells of an existing row.

    Cell values are raw text; other values are rendered before coercion.
    """

    table: str
    row: int
    cells: dict[str, Any]


class AddTableRowOp(NamedTuple):
    table: str
    cells: dict[str, Any]


class RemoveTableRowOp(NamedTuple):
    table: str
    row: int


class InvalidOp(NamedTuple):
    """A fragment that failed to parse; applying it reports the error."""

    error: str


Operation = (
    SetOp | AssignOp | RegisterOp | UnregisterOp | RegisterHiddenOp | UnregisterHiddenOp
    | RegisterTableOp | UnregisterTableOp | SetTableRowOp | AddTableRowOp | RemoveTableRowOp
    | InvalidOp
)

_COLUMNS = TypeAdapter(list[TableColumn])
_CELL_RE = re.compile(r"^([A-Za-z_][\w-]*)\s*=\s*(.*)$", re.DOTALL)

_INCDEC_RE = re.compile(r"^([A-Za-z_][\w.]*)\s*(\+\+|--)$")
_ASSIGN_RE = re.compile(r"^([A-Za-z_][\w.]*)\s*(\+=|-=|=)\s*(.*)$", re.DOTALL)


def split_assignments(content: str) -> list[str]:
    """Split `a = 1; b = "x;y"` on semicolons outside quotes."""
    parts: list[str] = []
    current: list[str] = []
    quote: str | None = None
    for ch in content:
        if quote:
            if ch == quote:
                quote = None
        elif ch in ('"', "'"):
            quote = ch
        elif ch == ";":
            parts.append("".join(current))
            current = []
            continue
        current.append(ch)
    parts.append("".join(current))
    return [p.strip() for p in parts if p.strip()]


def unquote(raw: str) -> tuple[str, bool]:
    text = raw.strip()
    if len(text) >= 2 and text[0] == text[-1] and text[0] in ('"', "'"):
        return text[1:-1], True
    return text, False


def _require(attrs: dict[str, str], key: str, tag: str) -> str:
    if key not in attrs:
        raise MalformedCommand(f"<{tag}> is missing the {key!r} attribute")
    return attrs[key]


def _require_name(attrs: dict[str, str], tag: str) -> str:
    name = _require(attrs, "name", tag).strip()
    if not name:
        raise MalformedCommand(f"<{tag}> has an empty name")
    paths.parse_path(name)
    return name


def _require_row(attrs: dict[str, str], tag: str) -> int:
    row = _require(attrs, "row", tag).strip()
    if not paths.is_index(row):
        raise MalformedCommand(f"<{tag}> row must be a non-negative integer, got {row!r}")
    return int(row)


def parse_columns(raw: str) -> list[TableColumn]:
    """Parse a JSON column list; bare strings are untyped column names."""
    data = decode_structured(raw)
    if isinstance(data, list):
        data = [{"name": c} if isinstance(c, str) else c for c in data]
    try:
        columns = _COLUMNS.validate_python(data)
    except ValidationError as e:
        raise MalformedCommand(f"Invalid table columns: {e.error_count()} error(s) in {raw!r}") from e
    names = [c.name for c in columns]
    if len(set(names)) != len(names):
        raise MalformedCommand(f"Duplicate column names in {raw!r}")
    return columns


def parse_cells(content: str) -> dict[str, str]:
    """Parse `col = value; col2 = "quoted"` into raw cell text."""
    cells: dict[str, str] = {}
    for assignment in split_assignments(html.unescape(content)):
        m = _CELL_RE.match(assignment)
        if not m:
            raise MalformedCommand(f"Cannot parse cell assignment {assignment!r}")
        cells[m.group(1)] = unquote(m.group(2))[0]
    return cells


def coerce_cells(table: Table, cells: dict[str, Any]) -> dict[str, Any]:
    """Convert cell values to their column types; all-or-nothing."""
    row: dict[str, Any] = {}
    for name, value in cells.items():
        column = table.column(name)
        if column is None:
            raise MalformedCommand(f"Table {table.name} has no column {name!r}")
        raw = value if isinstance(value, str) else render(value)
        row[name] = coerce(raw, column.type)
    return row


class CommandResult(BaseModel):
    """Outcome of applying the commands found in one text."""

    clean_text: str
    logs: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    changed: bool = False


class CommandParser:
    """Finds command tags in text and applies them to a scope's store.

    Args:
        registry:           Scopes the commands operate on.
        tags:               Tag spellings to recognise.
        templates:          Structure templates for auto-registration.
        register_overwrite: Whether registering an existing name replaces it.
    """

    def __init__(
        self,
        registry: ScopeRegistry,
        tags: TagConfig | None = None,
        templates: dict[str, StructureTemplate] | None = None,
        register_overwrite: bool = True,
    ) -> None:
        self.registry = registry
        self.tags = tags or TagConfig()
        self.templates = DEFAULT_TEMPLATES if templates is None else templates
        self.register_overwrite = register_overwrite

    @property
    def tag_names(self) -> frozenset[str]:
        t = self.tags
        return frozenset({
            t.set_var, t.register_var, t.register_vars, t.unregister_var,
            t.unregister_vars, t.register_hidden_var, t.unregister_hidden_var,
            t.register_table, t.unregister_table, t.set_table, t.add_table_row,
            t.remove_table_row,
        })

    # ------------------------------------------------------------------
    # Text-level helpers
    # ------------------------------------------------------------------

    def contains_commands(self, text: str) -> bool:
        return bool(text) and bool(tokenize(text, self.tag_names))

    def strip_commands(self, text: str) -> str:
        """Remove command tags without executing them."""
        return _remove_spans(text, tokenize(text, self.tag_names))

    def extract_commands(self, text: str) -> list[str]:
        """Return the raw text of every command tag, for previews."""
        return [text[s.start:s.end] for s in tokenize(text, self.tag_names)]

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------

    def parse_span(self, span: TagSpan) -> list[Operation]:
        """Turn one tag into operations. Raises MalformedCommand / MalformedLiteral."""
        if span.error:
            raise MalformedCommand(span.error)
        t = self.tags
        attrs = parse_attributes(span.attrs)

        if span.name == t.set_var:
            if not attrs:
                return self._parse_content_form(span.inner or "")
            path = _require_name(attrs, span.name)
            raw = _require(attrs, "value", span.name)
            return [SetOp(path, sniff_literal(raw), raw)]

        if span.name == t.register_var:
            return [self._parse_register(attrs, span.name)]

        if span.name == t.register_vars:
            return self._parse_batch(span, self._parse_register)

        if span.name == t.unregister_var:
            return [UnregisterOp(_require_name(attrs, span.name))]

        if span.name == t.unregister_vars:
            return self._parse_batch(
                span, lambda a, tag: UnregisterOp(_require_name(a, tag))
            )

        if span.name == t.register_hidden_var:
            name = _require_name(attrs, span.name)
            condition = _require(attrs, "condition", span.name)
            compile_condition(condition)
            raw = attrs["value"] if "value" in attrs else html.unescape((span.inner or "").strip())
            return [RegisterHiddenOp(name, condition, raw)]

        if span.name == t.unregister_hidden_var:
            return [UnregisterHiddenOp(_require_name(attrs, span.name))]

        if span.name == t.register_table:
            name = _require_name(attrs, span.name)
            raw = attrs["columns"] if "columns" in attrs else html.unescape((span.inner or "").strip())
            return [RegisterTableOp(name, parse_columns(raw or "[]"))]

        if span.name == t.unregister_table:
            return [UnregisterTableOp(_require_name(attrs, span.name))]

        if span.name == t.set_table:
            table = _require(attrs, "table", span.name)
            return [SetTableRowOp(table, _require_row(attrs, span.name), parse_cells(span.inner or ""))]

        if span.name == t.add_table_row:
            table = _require(attrs, "table", span.name)
            return [AddTableRowOp(table, parse_cells(span.inner or ""))]

        if span.name == t.remove_table_row:
            table = _require(attrs, "table", span.name)
            return [RemoveTableRowOp(table, _require_row(attrs, span.name))]

        raise MalformedCommand(f"Unknown command tag <{span.name}>")

    def _parse_register(self, attrs: dict[str, str], tag: str) -> RegisterOp:
        name = _require_name(attrs, tag)
        raw = attrs.get("initVal", attrs.get("value", ""))
        type_ = attrs.get("type") or type_of(sniff_literal(raw) if raw else "")
        if type_ not in VARIABLE_TYPES:
            raise MalformedCommand(f"Unknown variable type {type_!r} for {name}")
        if raw or type_ not in ("number", "boolean"):
            coerce(raw, type_)
        visibility = attrs.get("visibility") or attrs.get("condition")
        if visibility:
            compile_condition(visibility)
        return RegisterOp(name, type_, raw, visibility)

    def _parse_batch(self, span: TagSpan, parse_item) -> list[Operation]:
        ops: list[Operation] = []
        for item in tokenize(span.inner or "", {self.tags.batch_item}):
            try:
                if item.error:
                    raise MalformedCommand(item.error)
                ops.append(parse_item(parse_attributes(item.attrs), item.name))
            except VariableError as e:
                ops.append(InvalidOp(f"<{span.name}> item: {e}"))
        return ops

    def _parse_content_form(self, content: str) -> list[Operation]:
        ops: list[Operation] = []
        for assignment in split_assignments(html.unescape(content)):
            if m := _INCDEC_RE.match(assignment):
                ops.append(AssignOp(m.group(1), m.group(2), ""))
            elif m := _ASSIGN_RE.match(assignment):
                ops.append(AssignOp(m.group(1), m.group(2), m.group(3).strip()))
            else:
                ops.append(InvalidOp(f"Cannot parse assignment {assignment!r}"))
        return ops

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def apply_commands(self, text: str, scope: Scope | str | None = None) -> CommandResult:
        """Apply every command in text to scope's store, in textual order.

        Returns the text with all command tags removed, plus per-operation
        logs and errors. An unknown scope leaves the text untouched.
        """
        try:
            store = self.registry.get(scope)
        except UnknownScope as e:
            logger.warning("commands skipped: %s", e)
            return CommandResult(clean_text=text, errors=[str(e)])

        spans = tokenize(text, self.tag_names)
        result = CommandResult(clean_text=_remove_spans(text, spans))
        for span in spans:
            try:
                ops = self.parse_span(span)
            except VariableError as e:
                self._report(result, span, e)
                continue
            for op in ops:
                try:
                    message = self.apply_operation(store, op)
                except VariableError as e:
                    self._report(result, span, e)
                    continue
                result.logs.append(message)
                result.changed = True
                logger.debug("%s: %s", store.scope.key, message)
        return result

    def _report(self, result: CommandResult, span: TagSpan, error: Exception) -> None:
        message = f"{span.source[:80]}: {error}"
        logger.warning("command skipped %s", message)
        result.errors.append(message)

    def apply_operation(self, store: VariableStore, op: Operation) -> str:
        """Apply one parsed operation and return a log line."""
        if isinstance(op, InvalidOp):
            raise MalformedCommand(op.error)
        if isinstance(op, SetOp):
            return self._apply_set(store, op.path, op.value, op.raw)
        if isinstance(op, AssignOp):
            return self._apply_assign(store, op)
        if isinstance(op, RegisterOp):
            return self._apply_register(store, op)
        if isinstance(op, UnregisterOp):
            removed = store.remove(op.name)
            return f"unregistered {op.name}" if removed else f"unregister {op.name}: not registered"
        if isinstance(op, RegisterHiddenOp):
            store.set_hidden(op.name, op.condition, op.value)
            return f"registered hidden {op.name} (condition: {op.condition})"
        if isinstance(op, UnregisterHiddenOp):
            removed = store.remove_hidden(op.name)
            return f"unregistered hidden {op.name}" if removed else f"unregister hidden {op.name}: not registered"
        if isinstance(op, RegisterTableOp):
            if store.get_table(op.name) is not None and not self.register_overwrite:
                return f"register table {op.name}: already registered, kept"
            store.add_table(Table(name=op.name, columns=op.columns))
            return f"registered table {op.name} ({', '.join(c.name for c in op.columns)})"
        if isinstance(op, UnregisterTableOp):
            removed = store.remove_table(op.name)
            return f"unregistered table {op.name}" if removed else f"unregister table {op.name}: not registered"
        if isinstance(op, SetTableRowOp):
            return self._apply_set_row(store, op)
        if isinstance(op, AddTableRowOp):
            return self._apply_add_row(store, op)
        if isinstance(op, RemoveTableRowOp):
            table = _table(store, op.table)
            _check_row(table, op.row)
            removed_row = table.rows.pop(op.row)
            return f"removed {op.table}[{op.row}]: {removed_row!r}"
        raise MalformedCommand(f"Unsupported operation {op!r}")

    def _apply_set(self, store: VariableStore, path: str, value: Any, raw: str | None = None) -> str:
        segments = paths.parse_path(path)
        root, rest = segments[0], segments[1:]
        variable = store.get(root)

        if not rest:
            if variable is None:
                if isinstance(value, dict):
                    value = instantiate(root, self.templates, value) or value
                store.set(root, value, type_of(value))
                return f"auto-registered {root} = {value!r}"
            if raw is not None and variable.type != "string":
                value = coerce(raw, variable.type)
            elif variable.type == "string" and not isinstance(value, str):
                value = raw if raw is not None else render(value)
            old = variable.value
            store.set(root, value)
            return f"{root}: {old!r} -> {value!r}"

        if variable is None:
            tree = paths.write(instantiate(root, self.templates) or {}, rest, value)
            logger.debug("auto-registered %s for sub-path write", root)
        else:
            tree = paths.write(variable.value, rest, value)
        store.set(root, tree, type_of(tree))
        return f"{paths.format_path(segments)} = {value!r}"

    def _apply_assign(self, store: VariableStore, op: AssignOp) -> str:
        if op.op == "=":
            text, quoted = unquote(op.raw)
            value = text if quoted else sniff_literal(text)
            return self._apply_set(store, op.path, value, None if quoted else text)

        current = self._current(store, op.path)
        if op.op in ("++", "--"):
            number = _as_number(current if current is not paths.MISSING else 0, op.path)
            new = number + 1 if op.op == "++" else number - 1
        else:
            text, quoted = unquote(op.raw)
            if isinstance(current, str) and op.op == "+=":
                new = current + (text if quoted else render(sniff_literal(text)))
            elif quoted:
                raise MalformedCommand(f"Cannot apply {op.op} with a string to {op.path}")
            else:
                base = _as_number(current if current is not paths.MISSING else 0, op.path)
                delta = parse_number(text)
                new = base + delta if op.op == "+=" else base - delta
        self._apply_set(store, op.path, new)
        return f"{op.path} {op.op} {op.raw}".rstrip() + f" -> {new!r}"

    def _current(self, store: VariableStore, path: str) -> Any:
        segments = paths.parse_path(path)
        variable = store.get(segments[0])
        if variable is None:
            return paths.MISSING
        return paths.read(variable.value, segments[1:]) if len(segments) > 1 else variable.value

    def _apply_register(self, store: VariableStore, op: RegisterOp) -> str:
        if op.name in store and not self.register_overwrite:
            return f"register {op.name}: already registered, kept"
        if op.type in ("number", "boolean") and not op.raw:
            value: Any = 0 if op.type == "number" else False
        else:
            value = coerce(op.raw, op.type)
        if op.type == "object" and isinstance(value, dict):
            value = instantiate(op.name, self.templates, value) or value
        store.set(op.name, value, op.type, op.visibility)
        return f"registered {op.name} ({op.type})"

    def _apply_set_row(self, store: VariableStore, op: SetTableRowOp) -> str:
        table = _table(store, op.table)
        _check_row(table, op.row)
        cells = coerce_cells(table, op.cells)
        table.rows[op.row].update(cells)
        return f"{op.table}[{op.row}] = {cells!r}"

    def _apply_add_row(self, store: VariableStore, op: AddTableRowOp) -> str:
        table = _table(store, op.table)
        row = coerce_cells(table, op.cells)
        missing = [c.name for c in table.columns if c.required and c.name not in row]
        if missing:
            raise MalformedCommand(f"Table {op.table} row is missing required column(s) {', '.join(missing)}")
        table.rows.append(row)
        return f"added {op.table}[{len(table.rows) - 1}] = {row!r}"


def _table(store: VariableStore, name: str) -> Table:
    table = store.get_table(name)
    if table is None:
        raise MalformedCommand(f"Unknown table {name!r}")
    return table


def _check_row(table: Table, row: int) -> None:
    if row >= len(table.rows):
        raise PathNotFound(f"{table.name}.{row}")


def _as_number(value: Any, path: str) -> int | float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        if isinstance(value, str):
            return parse_number(value)
        raise MalformedCommand(f"{path} is not a number")
    return value


def _remove_spans(text: str, spans: list[TagSpan]) -> str:
    if not spans:
        return text
    parts: list[str] = []
    pos = 0
    for span in spans:
        parts.append(text[pos:span.start])
        pos = span.end
    parts.append(text[pos:])
    return "".join(parts)
