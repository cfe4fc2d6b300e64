"""Core domain models.

All engines and the persistence boundary operate on these types.
Pydantic is used for validation and serialisation at every data boundary.

Variable values are JSON-shaped trees drawn from a closed set of shapes:
None, bool, int/float, str, list[Value] and dict[str, Value].
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field, JsonValue, model_validator

VariableType = Literal["string", "number", "boolean", "object", "array"]

VARIABLE_TYPES: tuple[str, ...] = ("string", "number", "boolean", "object", "array")


def type_of(value: Any) -> VariableType:
    """Return the advisory type tag matching a value's shape."""
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, dict):
        return "object"
    if isinstance(value, list):
        return "array"
    return "string"


class ConditionBranch(BaseModel):
    """One branch of a conditional variable. condition=None is the else branch."""

    condition: str | None = None
    value: JsonValue = None


class Variable(BaseModel):
    """A named, typed value inside one scope."""

    name: str
    type: VariableType = "string"
    value: JsonValue = None
    visibility: str | None = None  # condition expression; None = always visible
    branches: list[ConditionBranch] | None = None


class HiddenVariable(BaseModel):
    """A value that only resolves while its condition holds."""

    name: str
    condition: str
    value: JsonValue = None


class TableColumn(BaseModel):
    name: str
    type: VariableType = "string"
    required: bool = False


class Table(BaseModel):
    """Rows of typed cells addressed by column name and row index.

    Macros read ``${table.column}`` (row 0) or ``${table.column.row}``.
    """

    name: str
    columns: list[TableColumn] = Field(default_factory=list)
    rows: list[dict[str, JsonValue]] = Field(default_factory=list)

    def column(self, name: str) -> TableColumn | None:
        return next((c for c in self.columns if c.name == name), None)


def _named_entries(data: Any) -> Any:
    # {"hp": {"type": "number", "value": 3}} → [{"name": "hp", ...}]
    if isinstance(data, dict):
        return [{"name": name, **entry} for name, entry in data.items()]
    return data


class ScopeConfig(BaseModel):
    """Initial variable set used to seed a newly created scope.

    Accepts either lists of definitions or mappings keyed by name, so both
    ``{"variables": [{"name": "hp", ...}]}`` and
    ``{"variables": {"hp": {...}}}`` validate. The same holds for tables.
    """

    variables: list[Variable] = Field(default_factory=list)
    hidden_variables: list[HiddenVariable] = Field(default_factory=list)
    tables: list[Table] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _accept_mappings(cls, data: Any) -> Any:
        if isinstance(data, dict):
            data = dict(data)
            if "hiddenVariables" in data and "hidden_variables" not in data:
                data["hidden_variables"] = data.pop("hiddenVariables")
            for key in ("variables", "hidden_variables", "tables"):
                if key in data:
                    data[key] = _named_entries(data[key])
        return data


class ScopeSnapshot(BaseModel):
    """Serialised state of one scope, exchanged with the persistence layer."""

    variables: list[Variable] = Field(default_factory=list)
    hidden_variables: list[HiddenVariable] = Field(default_factory=list)
    tables: list[Table] = Field(default_factory=list)


class TagConfig(BaseModel):
    """Tag spellings recognised by the command parser."""

    set_var: str = "setVar"
    register_var: str = "registerVar"
    register_vars: str = "registerVars"
    unregister_var: str = "unregisterVar"
    unregister_vars: str = "unregisterVars"
    register_hidden_var: str = "registerHiddenVar"
    unregister_hidden_var: str = "unregisterHiddenVar"
    register_table: str = "registerTable"
    unregister_table: str = "unregisterTable"
    set_table: str = "setTable"
    add_table_row: str = "addTableRow"
    remove_table_row: str = "removeTableRow"
    batch_item: str = "var"
