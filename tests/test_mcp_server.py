"""MCP tool tests using the FastMCP in-process client session."""

import json

import pytest
from mcp.shared.memory import create_connected_server_and_client_session

import backend.mcp_server as mcp_server
from tavern_vars.manager import VariableManager

# ---------------------------------------------------------------------------
# Shared fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
async def fresh_manager():
    """Give each test its own manager so tool mutations don't bleed across tests."""
    manager = VariableManager()
    await manager.init_scope("global", {
        "variables": {
            "goodwill": {"type": "number", "value": 85},
            "scoreTable": {"type": "object", "value": {"desc": {"10": "低", "85": "高"}}},
        },
    })
    await manager.init_scope("alice")
    mcp_server.set_manager(manager)
    return manager


async def _call(tool: str, arguments: dict):
    async with create_connected_server_and_client_session(mcp_server.mcp) as client:
        return await client.call_tool(tool, arguments)


def _payload(result) -> dict:
    assert not result.isError
    return json.loads(result.content[0].text)


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------


async def test_get_variable():
    payload = _payload(await _call("get_variable", {"path": "scoreTable.desc.85"}))
    assert payload == {"path": "scoreTable.desc.85", "value": "高"}


async def test_get_variable_absent():
    payload = _payload(await _call("get_variable", {"path": "nothing", "scope_id": "alice"}))
    assert payload["value"] is None


async def test_apply_commands_mutates_manager_state():
    payload = _payload(await _call("apply_commands", {
        "text": '<setVar name="goodwill" value="10"/>Mood: ${scoreTable.desc.${goodwill}}',
        "scope_id": "alice",
    }))
    assert payload["text"] == "Mood: 低"
    assert payload["changed"] is True
    assert mcp_server.get_manager().get_value("goodwill", "alice") == 10
    # global value untouched
    assert mcp_server.get_manager().get_value("goodwill") == 85


async def test_resolve_macros():
    payload = _payload(await _call("resolve_macros", {"text": "goodwill=${goodwill}"}))
    assert payload == {"text": "goodwill=85"}


async def test_list_variables():
    payload = _payload(await _call("list_variables", {"scope_id": "global"}))
    assert [v["name"] for v in payload["variables"]] == ["goodwill", "scoreTable"]


async def test_list_variables_unknown_scope_is_error():
    result = await _call("list_variables", {"scope_id": "ghost"})
    assert result.isError


async def test_table_commands_show_in_listing():
    payload = _payload(await _call("apply_commands", {
        "text": """<registerTable name="npcs" columns='["name"]'/>"""
                '<addTableRow table="npcs">name = Vel</addTableRow>Met ${npcs.name}.',
        "scope_id": "alice",
    }))
    assert payload["text"] == "Met Vel."
    listing = _payload(await _call("list_variables", {"scope_id": "alice"}))
    assert listing["tables"][0]["rows"] == [{"name": "Vel"}]
