"""Tool registry mapping tool names to capability providers."""

from __future__ import annotations

import importlib
from typing import Mapping

from travel_chat.ai.tools.base import Tool
from travel_chat.ai.tools.catalog import CATALOG_BY_NAME, CapabilityTool, Provider
from travel_chat.log import get_logger

logger = get_logger(__name__)


class ToolRegistry:
    """Registry of all available tools."""

    def __init__(self) -> None:
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        self._tools[tool.name] = tool
        logger.info("tool_registered", tool_name=tool.name)

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def get_tools_by_names(self, names: list[str]) -> list[Tool]:
        """Get a subset of tools by name list."""
        return [self._tools[n] for n in names if n in self._tools]

    def all_tools(self) -> list[Tool]:
        return list(self._tools.values())

    def names(self) -> list[str]:
        return list(self._tools.keys())

    def bind_providers(self, providers: Mapping[str, Provider]) -> None:
        """Register a catalog tool for each provider, keyed by catalog name."""
        for name, provider in providers.items():
            spec = CATALOG_BY_NAME.get(name)
            if spec is None:
                raise ValueError(f"Unknown catalog tool: {name}")
            self.register(CapabilityTool(spec, provider))

    def load_providers(self, import_paths: Mapping[str, str]) -> None:
        """Import providers from ``"package.module:attribute"`` paths and bind them."""
        providers: dict[str, Provider] = {}
        for name, path in import_paths.items():
            module_name, sep, attr = path.partition(":")
            if not sep or not module_name or not attr:
                raise ValueError(f"Invalid provider path for {name!r}: {path!r} (expected 'module:attr')")
            module = importlib.import_module(module_name)
            providers[name] = getattr(module, attr)
        self.bind_providers(providers)
