"""Visibility and branch conditions over a scope's variables.

A condition is any boolean function of a VariableStore. Scripts write them as
short expressions which are compiled once into a restricted evaluator:

    goodwill >= 80
    mood == "happy" and day > 2
    not flags.met_elder
    goodwill + trust >= 100 || debug

Allowed syntax: comparisons (== != < <= > >= in, not in), and/or/not (also
spelled && || !), + - * / %, unary minus, numbers, strings, true/false/null,
variable names, dotted paths into a variable's value and constant
subscripts. Anything else is rejected at compile time with
MalformedCondition.

Evaluation is never cached: a compiled condition re-reads the store on every
call. Any runtime failure (unknown variable, comparing a string with a
number) makes the condition false.
"""

from __future__ import annotations

import ast
import logging
import operator
import re
from collections.abc import Callable
from functools import lru_cache
from typing import TYPE_CHECKING, Any

from . import paths
from .errors import MalformedCondition

if TYPE_CHECKING:
    from .store import VariableStore

logger = logging.getLogger(__name__)

_COMPARE_OPS: dict[type, Callable[[Any, Any], bool]] = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.In: lambda a, b: a in b,
    ast.NotIn: lambda a, b: a not in b,
}

_BIN_OPS: dict[type, Callable[[Any, Any], Any]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.Mod: operator.mod,
}

_LITERAL_NAMES = {"true": True, "false": False, "null": None, "True": True, "False": False, "None": None}


class _Unresolved(Exception):
    """A name in the condition does not resolve in the store."""


_STRING_RE = re.compile(r""""(?:\\.|[^"\\])*"|'(?:\\.|[^'\\])*'""")


def _normalise_operators(text: str) -> str:
    # JS-style spellings used by script authors
    text = text.replace("===", "==").replace("!==", "!=")
    text = text.replace("&&", " and ").replace("||", " or ")
    return re.sub(r"!(?!=)", " not ", text)


def _normalise(expr: str) -> str:
    """Rewrite operators outside string literals only."""
    parts: list[str] = []
    pos = 0
    for match in _STRING_RE.finditer(expr):
        parts.append(_normalise_operators(expr[pos:match.start()]))
        parts.append(match.group())
        pos = match.end()
    parts.append(_normalise_operators(expr[pos:]))
    return "".join(parts)


class Condition:
    """A compiled condition expression. Call with a store to evaluate."""

    def __init__(self, source: str, node: ast.expr) -> None:
        self.source = source
        self._node = node

    def __call__(self, store: VariableStore) -> bool:
        try:
            return bool(self._eval(self._node, store))
        except _Unresolved as e:
            logger.debug("condition %r: unresolved name %s", self.source, e)
            return False
        except (TypeError, ValueError, ArithmeticError) as e:
            logger.debug("condition %r failed: %s", self.source, e)
            return False

    def __repr__(self) -> str:
        return f"Condition({self.source!r})"

    def _eval(self, node: ast.expr, store: VariableStore) -> Any:
        if isinstance(node, ast.Constant):
            return node.value
        if isinstance(node, ast.BoolOp):
            if isinstance(node.op, ast.And):
                return all(self._eval(v, store) for v in node.values)
            return any(self._eval(v, store) for v in node.values)
        if isinstance(node, ast.UnaryOp):
            operand = self._eval(node.operand, store)
            if isinstance(node.op, ast.Not):
                return not operand
            return -operand
        if isinstance(node, ast.BinOp):
            return _BIN_OPS[type(node.op)](
                self._eval(node.left, store), self._eval(node.right, store)
            )
        if isinstance(node, ast.Compare):
            left = self._eval(node.left, store)
            for op, comparator in zip(node.ops, node.comparators):
                right = self._eval(comparator, store)
                if not _COMPARE_OPS[type(op)](left, right):
                    return False
                left = right
            return True
        # Name / Attribute / Subscript: a path into the store
        return _lookup(_path_of(node), store)


def _lookup(segments: list[str], store: VariableStore) -> Any:
    root = segments[0]
    if len(segments) == 1 and root in _LITERAL_NAMES and root not in store:
        return _LITERAL_NAMES[root]
    variable = store.get(root)
    if variable is None:
        raise _Unresolved(root)
    if len(segments) == 1:
        return variable.value
    value = paths.read(variable.value, segments[1:])
    if value is paths.MISSING:
        raise _Unresolved(".".join(segments))
    return value


def _path_of(node: ast.expr) -> list[str]:
    if isinstance(node, ast.Name):
        return [node.id]
    if isinstance(node, ast.Attribute):
        return _path_of(node.value) + [node.attr]
    if isinstance(node, ast.Subscript) and isinstance(node.slice, ast.Constant):
        return _path_of(node.value) + [str(node.slice.value)]
    raise MalformedCondition(f"Unsupported expression: {ast.dump(node)}")


def _check(node: ast.expr) -> None:
    """Reject any syntax outside the allowed subset."""
    if isinstance(node, ast.Constant):
        if not isinstance(node.value, (int, float, str, bool, type(None))):
            raise MalformedCondition(f"Unsupported literal: {node.value!r}")
    elif isinstance(node, ast.BoolOp):
        for value in node.values:
            _check(value)
    elif isinstance(node, ast.UnaryOp):
        if not isinstance(node.op, (ast.Not, ast.USub)):
            raise MalformedCondition("Unsupported unary operator")
        _check(node.operand)
    elif isinstance(node, ast.BinOp):
        if type(node.op) not in _BIN_OPS:
            raise MalformedCondition("Unsupported arithmetic operator")
        _check(node.left)
        _check(node.right)
    elif isinstance(node, ast.Compare):
        if any(type(op) not in _COMPARE_OPS for op in node.ops):
            raise MalformedCondition("Unsupported comparison operator")
        _check(node.left)
        for comparator in node.comparators:
            _check(comparator)
    else:
        _path_of(node)


@lru_cache(maxsize=512)
def compile_condition(expr: str) -> Condition:
    """Compile a condition expression, raising MalformedCondition if invalid."""
    try:
        tree = ast.parse(_normalise(expr).strip(), mode="eval")
    except SyntaxError as e:
        raise MalformedCondition(f"Invalid condition {expr!r}: {e.msg}") from e
    _check(tree.body)
    return Condition(expr, tree.body)


def evaluate(expr: str, store: VariableStore) -> bool:
    """Compile (cached) and evaluate expr; malformed expressions are false."""
    try:
        condition = compile_condition(expr)
    except MalformedCondition as e:
        logger.warning("%s", e)
        return False
    return condition(store)


def is_visible(name: str, store: VariableStore) -> bool:
    """Evaluate the visibility predicate of a top-level variable.

    A variable with no predicate is always visible. A programmatic predicate
    registered with store.set_visibility_fn() takes precedence over the
    expression stored on the Variable.
    """
    fn = store.visibility_fn(name)
    if fn is not None:
        try:
            return bool(fn(store))
        except Exception as e:
            logger.warning("visibility predicate for %s raised: %s", name, e)
            return False
    variable = store.get(name)
    if variable is None or not variable.visibility:
        return True
    return evaluate(variable.visibility, store)
