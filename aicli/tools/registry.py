from __future__ import annotations

from typing import Iterable, Iterator

from aicli.tools.base import Tool, ToolRisk


class ToolRegistry:
    """Name-keyed set of tools, listed in name order."""

    def __init__(self, tools: Iterable[Tool] = ()):
        self._tools: dict[str, Tool] = {}
        for tool in tools:
            self.register(tool)

    def register(self, tool: Tool, *, replace: bool = False) -> None:
        if tool.name in self._tools and not replace:
            raise ValueError(f"Tool already registered: {tool.name}")
        self._tools[tool.name] = tool

    def remove(self, *names: str) -> None:
        """Drop the named tools.  Unknown names are ignored."""
        for name in names:
            self._tools.pop(name, None)

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def __iter__(self) -> Iterator[Tool]:
        return iter(self.available())

    def available(self, max_risk: ToolRisk | None = None) -> list[Tool]:
        """Tools at or below *max_risk*, sorted by name."""
        return [
            self._tools[name]
            for name in sorted(self._tools)
            if max_risk is None or self._tools[name].risk_level <= max_risk
        ]

    def definitions(self, max_risk: ToolRisk | None = None) -> list[dict]:
        return [tool.definition() for tool in self.available(max_risk)]
