"""Pydantic request/response models for API endpoints."""

from typing import Any

from pydantic import BaseModel, JsonValue

from tavern_vars.models import ScopeConfig, TableColumn, VariableType


class InitScope(BaseModel):
    config: ScopeConfig | None = None


class TextBody(BaseModel):
    text: str


class RegisterVariable(BaseModel):
    name: str
    value: JsonValue = None
    type: VariableType | None = None
    visibility: str | None = None


class SetValue(BaseModel):
    path: str
    value: JsonValue = None


class RegisterTable(BaseModel):
    name: str
    columns: list[TableColumn]


class TableRow(BaseModel):
    cells: dict[str, JsonValue]


class Snapshots(BaseModel):
    scopes: dict[str, Any]
