"""FastMCP server exposing the variable system as MCP tools.

Tools:
  - get_variable(path, scope_id)     : resolved value at a dotted path
  - list_variables(scope_id)         : raw variables of a scope
  - apply_commands(text, scope_id)   : run embedded commands, expand macros
  - resolve_macros(text, scope_id)   : expand ${...} macros only

The manager is an in-process VariableManager replaced via set_manager() for
tests, or built from data/ (with the global scope restored) when run as
__main__.

Usage:
    uv run python -m backend.mcp_server
"""

from mcp.server.fastmcp import FastMCP

from tavern_vars.manager import VariableManager

mcp = FastMCP("tavern-variables")

_manager: VariableManager = VariableManager()


def set_manager(manager: VariableManager) -> None:
    """Replace the active manager (used in tests)."""
    global _manager
    _manager = manager


def get_manager() -> VariableManager:
    """Return the active manager (used in tests to inspect stored state)."""
    return _manager


@mcp.tool()
def get_variable(path: str, scope_id: str = "global") -> dict:
    """Resolve a variable path (e.g. "ToDoList.chapterList.0") in a scope, falling back to global."""
    return {"path": path, "value": _manager.get_value(path, scope_id)}


@mcp.tool()
def list_variables(scope_id: str = "global") -> dict:
    """List the variables, hidden variables and tables stored in a scope."""
    return _manager.variable_state(scope_id)


@mcp.tool()
async def apply_commands(text: str, scope_id: str = "global") -> dict:
    """Apply <setVar>/<registerVar>/... commands in text, then expand macros.

    Returns the processed text plus per-command logs and errors.
    """
    result = await _manager.process_text(text, scope_id)
    return result.model_dump()


@mcp.tool()
def resolve_macros(text: str, scope_id: str = "global") -> dict:
    """Expand ${...} macros in text against a scope."""
    return {"text": _manager.replace_macros(text, scope_id)}


if __name__ == "__main__":
    import asyncio
    from pathlib import Path

    from dotenv import load_dotenv

    from backend.variables import build_manager
    from tavern_vars.config import data_dir_from_env

    load_dotenv(Path(__file__).parent.parent / ".env")
    data_path = data_dir_from_env(Path(__file__).parent.parent / "data")
    manager = build_manager(data_path)
    asyncio.run(manager.init_scope("global"))
    set_manager(manager)
    mcp.run()
