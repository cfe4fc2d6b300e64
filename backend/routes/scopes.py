"""Scope endpoints: lifecycle, text processing, variables and snapshots."""

from fastapi import APIRouter, HTTPException
from pydantic import ValidationError

from backend import variables
from tavern_vars.errors import PathNotFound, UnknownScope, VariableError

from .models import (
    InitScope,
    RegisterTable,
    RegisterVariable,
    SetValue,
    Snapshots,
    TableRow,
    TextBody,
)

router = APIRouter()


def _require_scope(scope_id: str) -> None:
    if not variables.manager().has_scope(scope_id):
        raise HTTPException(404, f"Scope '{scope_id}' not initialised")


@router.get("/scopes")
async def list_scopes():
    """List the keys of all live scopes."""
    return [scope.key for scope in variables.manager().registry.scopes()]


@router.post("/scopes/{scope_id}", status_code=201)
async def init_scope(scope_id: str, body: InitScope | None = None):
    """Create a scope. With a config it is seeded; otherwise saved state is restored."""
    manager = variables.manager()
    await manager.init_scope(scope_id, body.config if body else None)
    return manager.variable_state(scope_id)


@router.get("/scopes/{scope_id}")
async def get_scope(scope_id: str):
    """Raw variables and hidden variables of a scope."""
    try:
        return variables.manager().variable_state(scope_id)
    except UnknownScope as e:
        raise HTTPException(404, str(e))


@router.delete("/scopes/{scope_id}")
async def delete_scope(scope_id: str, purge: bool = False):
    """Tear a scope down; purge=true also deletes its saved file."""
    removed = await variables.manager().teardown_scope(scope_id, purge=purge)
    if not removed:
        raise HTTPException(404, f"Scope '{scope_id}' not found")
    return {"ok": True}


@router.post("/scopes/{scope_id}/process")
async def process_text(scope_id: str, body: TextBody):
    """Apply embedded variable commands, then expand macros."""
    _require_scope(scope_id)
    result = await variables.manager().process_text(body.text, scope_id)
    return result.model_dump()


@router.post("/scopes/{scope_id}/resolve")
async def resolve_macros(scope_id: str, body: TextBody):
    """Expand ${...} macros without applying commands."""
    _require_scope(scope_id)
    return {"text": variables.manager().replace_macros(body.text, scope_id)}


@router.get("/scopes/{scope_id}/variables/{path}")
async def get_variable(scope_id: str, path: str):
    """Resolved value at a dotted path (null when absent or hidden)."""
    _require_scope(scope_id)
    return {"path": path, "value": variables.manager().get_value(path, scope_id)}


@router.post("/scopes/{scope_id}/variables", status_code=201)
async def register_variable(scope_id: str, body: RegisterVariable):
    """Register (or replace) a top-level variable."""
    _require_scope(scope_id)
    variable = await variables.manager().register_var(
        scope_id, body.name, body.value, body.type, body.visibility,
    )
    return variable.model_dump()


@router.put("/scopes/{scope_id}/values")
async def set_value(scope_id: str, body: SetValue):
    """Write a value at a dotted path, auto-registering the root variable."""
    _require_scope(scope_id)
    try:
        log = await variables.manager().set_value(scope_id, body.path, body.value)
    except VariableError as e:
        raise HTTPException(422, str(e))
    return {"log": log}


@router.delete("/scopes/{scope_id}/variables/{name}")
async def unregister_variable(scope_id: str, name: str):
    """Remove a top-level variable."""
    _require_scope(scope_id)
    if not await variables.manager().unregister_var(scope_id, name):
        raise HTTPException(404, f"Variable '{name}' not found")
    return {"ok": True}


@router.post("/scopes/{scope_id}/tables", status_code=201)
async def register_table(scope_id: str, body: RegisterTable):
    """Register (or replace) an empty table."""
    _require_scope(scope_id)
    log = await variables.manager().register_table(scope_id, body.name, body.columns)
    return {"log": log}


@router.get("/scopes/{scope_id}/tables/{name}")
async def get_table(scope_id: str, name: str):
    """Rows of a table."""
    _require_scope(scope_id)
    manager = variables.manager()
    if manager.registry.get(scope_id).get_table(name) is None:
        raise HTTPException(404, f"Table '{name}' not found")
    return {"name": name, "rows": manager.table_rows(name, scope_id)}


@router.post("/scopes/{scope_id}/tables/{name}/rows", status_code=201)
async def add_table_row(scope_id: str, name: str, body: TableRow):
    """Append a row; cells are coerced to their column types."""
    _require_scope(scope_id)
    try:
        log = await variables.manager().add_table_row(scope_id, name, body.cells)
    except VariableError as e:
        raise HTTPException(422, str(e))
    return {"log": log}


@router.patch("/scopes/{scope_id}/tables/{name}/rows/{row}")
async def update_table_row(scope_id: str, name: str, row: int, body: TableRow):
    """Overwrite cells of an existing row."""
    _require_scope(scope_id)
    manager = variables.manager()
    try:
        await manager.set_table_row(scope_id, name, row, body.cells)
    except PathNotFound as e:
        raise HTTPException(404, str(e))
    except VariableError as e:
        raise HTTPException(422, str(e))
    return {"rows": manager.table_rows(name, scope_id)}


@router.delete("/scopes/{scope_id}/tables/{name}/rows/{row}")
async def remove_table_row(scope_id: str, name: str, row: int):
    _require_scope(scope_id)
    try:
        log = await variables.manager().remove_table_row(scope_id, name, row)
    except PathNotFound as e:
        raise HTTPException(404, str(e))
    except VariableError as e:
        raise HTTPException(422, str(e))
    return {"log": log}


@router.delete("/scopes/{scope_id}/tables/{name}")
async def unregister_table(scope_id: str, name: str):
    _require_scope(scope_id)
    manager = variables.manager()
    if manager.registry.get(scope_id).get_table(name) is None:
        raise HTTPException(404, f"Table '{name}' not found")
    await manager.unregister_table(scope_id, name)
    return {"ok": True}


@router.get("/snapshots")
async def export_snapshots():
    """Every live scope, keyed by scope key, for save-games."""
    return {"scopes": variables.manager().export_snapshots()}


@router.post("/snapshots")
async def load_snapshots(body: Snapshots):
    """Replace scopes from an exported save-game."""
    try:
        loaded = await variables.manager().load_snapshots(body.scopes)
    except (ValidationError, ValueError) as e:
        raise HTTPException(422, str(e))
    return {"loaded": loaded}
