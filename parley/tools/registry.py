"""
Tool registry: every tool the model may be offered.

Entries come from three sources, merged in a fixed order:
  builtin: weather, web search, documents, contract fields, signing
  image: one generateImage... tool per supported image model
  external: tools discovered on MCP servers, named <server>_<tool>

Built-in and image tools win over external tools on a name collision.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from parley.tools.documents import (
    CreateDocumentTool,
    RequestContractFieldsTool,
    RequestSuggestionsTool,
    UpdateDocumentTool,
)
from parley.tools.images import image_tools
from parley.tools.signing import SendDocumentForSigningTool
from parley.tools.weather import WeatherTool
from parley.tools.web_search import WebSearchTool

logger = logging.getLogger(__name__)

SOURCE_PRECEDENCE = {"builtin": 0, "image": 1, "external": 2}


@dataclass
class ToolContext:
    """Per-request collaborators handed to every tool invocation."""
    caller: Any
    chat_id: str
    writer: Any
    store: Any
    model_client: Any
    cfg: dict = field(default_factory=dict)


@dataclass(frozen=True)
class ToolDescriptor:
    name: str
    description: str
    parameters: dict
    execute: Callable[[dict, ToolContext], Awaitable[Any]]
    source: str = "builtin"

    def schema(self) -> dict:
        """OpenAI function-tool schema."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


def describe(tool, source: str = "builtin") -> ToolDescriptor:
    """Wrap a tool object (name, description, parameters, run) as a descriptor."""
    return ToolDescriptor(
        name=tool.name,
        description=tool.description,
        parameters=tool.parameters,
        execute=tool.run,
        source=source,
    )


def merge_tools(entries: list[ToolDescriptor]) -> dict[str, ToolDescriptor]:
    """
    Ordered merge keyed by name. Entries are visited by source precedence
    (builtin, image, external), then in list order; the first entry for a
    name is kept and later ones are dropped with a warning.
    """
    merged: dict[str, ToolDescriptor] = {}
    ordered = sorted(entries, key=lambda e: SOURCE_PRECEDENCE.get(e.source, 99))
    for entry in ordered:
        existing = merged.get(entry.name)
        if existing is not None:
            logger.warning(
                "Tool name collision on '%s': keeping %s tool, dropping %s tool",
                entry.name, existing.source, entry.source,
            )
            continue
        merged[entry.name] = entry
    return merged


class ToolRegistry:
    """Manages available tools based on configuration."""

    def __init__(self, cfg: dict | None = None, mcp_manager=None):
        cfg = cfg or {}
        tools_cfg = cfg.get("tools", {})
        self.mcp_manager = mcp_manager
        self.builtin: list[ToolDescriptor] = []

        # --- Weather ---
        w_cfg = tools_cfg.get("weather", {})
        if w_cfg.get("enabled", True):
            self.builtin.append(describe(WeatherTool(url=w_cfg.get("url", WeatherTool.DEFAULT_URL))))

        # --- Web search ---
        ws_cfg = tools_cfg.get("web_search", {})
        if ws_cfg.get("enabled", True):
            self.builtin.append(describe(WebSearchTool(
                api_key=ws_cfg.get("api_key", ""),
                url=ws_cfg.get("url", WebSearchTool.DEFAULT_URL),
                max_results=ws_cfg.get("max_results", 10),
            )))

        # --- Documents, contract fields, signing (always registered) ---
        self.builtin.extend([
            describe(CreateDocumentTool()),
            describe(UpdateDocumentTool()),
            describe(RequestSuggestionsTool()),
            describe(RequestContractFieldsTool()),
            describe(SendDocumentForSigningTool(
                base_url=tools_cfg.get("signing", {}).get("base_url", ""),
            )),
        ])

        # --- Image generation ---
        img_cfg = tools_cfg.get("images", {})
        self.images: list[ToolDescriptor] = []
        if img_cfg.get("enabled", True):
            self.images = [
                describe(t, source="image")
                for t in image_tools(img_cfg, cfg.get("storage", {}).get("media_dir", "./data/media"))
            ]

        logger.info(
            "Tool registry loaded: %s",
            [t.name for t in self.builtin + self.images],
        )

    def external(self) -> list[ToolDescriptor]:
        if self.mcp_manager is None:
            return []
        return self.mcp_manager.descriptors()

    def external_by_server(self) -> dict[str, list[str]]:
        """External tool names grouped under the MCP server that provides them."""
        if self.mcp_manager is None:
            return {}
        return self.mcp_manager.list_by_server()

    def entries(self) -> list[ToolDescriptor]:
        return self.builtin + self.images + self.external()

    def all_tools(self) -> dict[str, ToolDescriptor]:
        """The merged name → descriptor map for one request."""
        return merge_tools(self.entries())

    def get(self, name: str) -> ToolDescriptor | None:
        """Get a tool by name, or None if not registered."""
        return self.all_tools().get(name)

    def list_tools(self) -> list[str]:
        """Return names of all registered tools."""
        return list(self.all_tools().keys())
