"""
Active tool set for one generation turn.
"""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)

NAMESPACE_SEPARATOR = "_"


def filter_tools(
    tools: dict,
    supports_tools: bool,
    selected_tools: list[str],
    selected_external_tools: list[str],
    always_enabled: list[str],
) -> dict:
    """
    Pick the tools to expose.

    Nothing when the model cannot call tools. Otherwise the always-on core
    tools, plus external tools named in selected_external_tools, plus
    selected built-in tools. A namespaced name (one containing "_") is
    only ever activated through selected_external_tools.
    """
    if not supports_tools:
        return {}

    active: dict = {}

    for name in always_enabled:
        if name in tools:
            active[name] = tools[name]

    for name in selected_external_tools:
        if name in tools:
            active[name] = tools[name]
        else:
            logger.debug("Selected external tool '%s' is not available", name)

    for name in selected_tools:
        if NAMESPACE_SEPARATOR in name:
            logger.debug("Ignoring namespaced tool '%s' in generic selection", name)
            continue
        if name in tools:
            active[name] = tools[name]

    return active
