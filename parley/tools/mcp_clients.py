"""
External tool servers over MCP (stdio transport).

mcp-config.json:

    {"mcpServers": {"github": {"command": "npx", "args": ["-y", "...", "{GITHUB_TOKEN}"]}}}

{ENV_VAR} placeholders in args are replaced from the environment. Each
server is started once at process start; its tools are exposed as
<server>_<tool>. A server that fails to start is logged and skipped.
"""

from __future__ import annotations

import json
import logging
import os
import re
from contextlib import AsyncExitStack
from pathlib import Path

from mcp import ClientSession, StdioServerParameters
from mcp.client.stdio import stdio_client
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from parley.tools.registry import ToolDescriptor

logger = logging.getLogger(__name__)

_ENV_REF = re.compile(r"\{([^}]+)\}")


class MCPServerConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    command: str = Field(min_length=1)
    args: list[str]


class MCPConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    mcpServers: dict[str, MCPServerConfig]

    @field_validator("mcpServers")
    @classmethod
    def _non_empty(cls, servers: dict) -> dict:
        if not servers:
            raise ValueError("At least one MCP server must be configured")
        if any(not name for name in servers):
            raise ValueError("Server name cannot be empty")
        return servers


def replace_env_vars(value: str) -> str:
    """Replace {ENV_VAR} references; unknown variables are warned and kept."""
    def replacer(match):
        name = match.group(1)
        env_value = os.environ.get(name)
        if not env_value:
            logger.warning("Environment variable %s not found", name)
            return match.group(0)
        return env_value
    return _ENV_REF.sub(replacer, value)


def load_mcp_config(path: str | Path) -> MCPConfig | None:
    """Read and validate mcp-config.json. Returns None when absent or invalid."""
    path = Path(path)
    if not path.exists():
        logger.info("No MCP config at %s", path)
        return None
    try:
        raw = json.loads(path.read_text())
    except json.JSONDecodeError as e:
        logger.error("Failed to parse MCP config JSON %s: %s", path, e)
        return None
    try:
        return MCPConfig.model_validate(raw)
    except ValidationError as e:
        logger.error("Invalid MCP config format in %s: %s", path, e)
        return None


def server_parameters(server: MCPServerConfig) -> StdioServerParameters:
    return StdioServerParameters(
        command=server.command,
        args=[replace_env_vars(a) for a in server.args],
    )


def _result_payload(result) -> dict:
    return {
        "content": [item.model_dump(exclude_none=True) for item in result.content],
        "isError": bool(result.isError),
    }


class MCPToolManager:
    """Owns the MCP server sessions for the lifetime of the process."""

    def __init__(self, config_path: str | Path):
        self.config_path = Path(config_path)
        self.sessions: dict[str, ClientSession] = {}
        self.tools: dict[str, list] = {}
        self._stacks: list[AsyncExitStack] = []

    async def start(self):
        config = load_mcp_config(self.config_path)
        if config is None:
            return

        for name, server in config.mcpServers.items():
            stack = AsyncExitStack()
            try:
                read, write = await stack.enter_async_context(stdio_client(server_parameters(server)))
                session = await stack.enter_async_context(ClientSession(read, write))
                await session.initialize()
                listed = await session.list_tools()
            except Exception as e:
                logger.error("Failed to create MCP client for %s: %s", name, e)
                await stack.aclose()
                continue

            self._stacks.append(stack)
            self.sessions[name] = session
            self.tools[name] = list(listed.tools)
            logger.info(
                "MCP server '%s' connected: %s",
                name, [t.name for t in listed.tools],
            )

    async def close(self):
        while self._stacks:
            stack = self._stacks.pop()
            try:
                await stack.aclose()
            except Exception as e:
                logger.error("Error closing MCP client: %s", e)
        self.sessions.clear()
        self.tools.clear()

    def _executor(self, server: str, tool_name: str):
        async def execute(args: dict, ctx=None) -> dict:
            result = await self.sessions[server].call_tool(tool_name, args)
            return _result_payload(result)
        return execute

    def descriptors(self) -> list[ToolDescriptor]:
        """Every discovered tool, named <server>_<tool>."""
        out = []
        for server, tools in self.tools.items():
            for tool in tools:
                out.append(ToolDescriptor(
                    name=f"{server}_{tool.name}",
                    description=tool.description or "",
                    parameters=tool.inputSchema or {"type": "object", "properties": {}},
                    execute=self._executor(server, tool.name),
                    source="external",
                ))
        return out

    def list_by_server(self) -> dict[str, list[str]]:
        return {
            server: [f"{server}_{t.name}" for t in tools]
            for server, tools in self.tools.items()
        }
