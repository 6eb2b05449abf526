"""
Tests for the MCP config loader and tool manager.
MCP servers are never started; sessions are mocked.
"""

import json

import pytest
from unittest.mock import AsyncMock, MagicMock

from parley.tools.mcp_clients import (
    MCPToolManager,
    load_mcp_config,
    replace_env_vars,
    server_parameters,
)


def _write(tmp_path, data) -> str:
    path = tmp_path / "mcp-config.json"
    path.write_text(data if isinstance(data, str) else json.dumps(data))
    return str(path)


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

def test_replace_env_vars(monkeypatch):
    """Known variables are substituted, unknown ones are kept verbatim."""
    monkeypatch.setenv("GITHUB_TOKEN", "ghp_123")
    monkeypatch.delenv("NOT_SET_ANYWHERE", raising=False)
    assert replace_env_vars("--token={GITHUB_TOKEN}") == "--token=ghp_123"
    assert replace_env_vars("{NOT_SET_ANYWHERE}") == "{NOT_SET_ANYWHERE}"


def test_load_valid_config(tmp_path, monkeypatch):
    monkeypatch.setenv("ROOT_DIR", "/srv/files")
    path = _write(tmp_path, {"mcpServers": {"files": {"command": "npx", "args": ["-y", "server", "{ROOT_DIR}"]}}})
    config = load_mcp_config(path)
    assert list(config.mcpServers) == ["files"]
    params = server_parameters(config.mcpServers["files"])
    assert params.command == "npx"
    assert params.args == ["-y", "server", "/srv/files"]


def test_missing_config_returns_none(tmp_path):
    assert load_mcp_config(tmp_path / "absent.json") is None


@pytest.mark.parametrize("data", [
    "{not json",
    {"mcpServers": {}},
    {"mcpServers": {"files": {"command": "", "args": []}}},
    {"mcpServers": {"files": {"command": "npx", "args": [], "env": {}}}},
    {"mcpServers": {"files": {"command": "npx"}}},
    {"servers": {}},
])
def test_invalid_config_returns_none(tmp_path, data):
    """Malformed JSON and schema violations disable external tools."""
    assert load_mcp_config(_write(tmp_path, data)) is None


# ---------------------------------------------------------------------------
# MCPToolManager
# ---------------------------------------------------------------------------

def _mcp_tool(name, description="", schema=None):
    t = MagicMock()
    t.name = name
    t.description = description
    t.inputSchema = schema or {"type": "object", "properties": {"path": {"type": "string"}}}
    return t


@pytest.mark.asyncio
async def test_start_without_config_is_noop(tmp_path):
    manager = MCPToolManager(tmp_path / "absent.json")
    await manager.start()
    assert manager.descriptors() == []


def test_descriptors_are_namespaced(tmp_path):
    manager = MCPToolManager(tmp_path / "mcp.json")
    manager.tools = {"files": [_mcp_tool("read", "Read a file"), _mcp_tool("write")]}
    descriptors = {d.name: d for d in manager.descriptors()}
    assert set(descriptors) == {"files_read", "files_write"}
    assert descriptors["files_read"].source == "external"
    assert descriptors["files_read"].description == "Read a file"
    assert manager.list_by_server() == {"files": ["files_read", "files_write"]}


@pytest.mark.asyncio
async def test_descriptor_calls_session(tmp_path):
    """Executing a descriptor calls the tool on its server by its own name."""
    item = MagicMock()
    item.model_dump.return_value = {"type": "text", "text": "hello"}
    result = MagicMock(content=[item], isError=False)
    session = MagicMock()
    session.call_tool = AsyncMock(return_value=result)

    manager = MCPToolManager(tmp_path / "mcp.json")
    manager.sessions = {"files": session}
    manager.tools = {"files": [_mcp_tool("read")]}

    (descriptor,) = manager.descriptors()
    output = await descriptor.execute({"path": "/a.txt"}, None)

    session.call_tool.assert_awaited_once_with("read", {"path": "/a.txt"})
    assert output == {"content": [{"type": "text", "text": "hello"}], "isError": False}


@pytest.mark.asyncio
async def test_close_clears_sessions(tmp_path):
    manager = MCPToolManager(tmp_path / "mcp.json")
    stack = MagicMock()
    stack.aclose = AsyncMock()
    manager._stacks = [stack]
    manager.sessions = {"files": MagicMock()}
    manager.tools = {"files": [_mcp_tool("read")]}

    await manager.close()

    stack.aclose.assert_awaited_once()
    assert manager.sessions == {}
    assert manager.descriptors() == []
