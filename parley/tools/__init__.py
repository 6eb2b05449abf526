"""
Tools the chat model can call: built-ins, image generation and MCP servers.
"""
from parley.tools.filter import filter_tools
from parley.tools.registry import ToolContext, ToolDescriptor, ToolRegistry, merge_tools

__all__ = [
    "filter_tools",
    "merge_tools",
    "ToolContext",
    "ToolDescriptor",
    "ToolRegistry",
]
