from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, Optional

from ..errors import DuplicateToolName, ToolNotFound
from .base import Tool, ToolSpec

@dataclass
class ToolRegistry:
    _tools: Dict[str, Tool] = None  # type: ignore

    def __post_init__(self):
        if self._tools is None:
            self._tools = {}

    def register(self, tool: Tool) -> None:
        name = tool.spec.name
        if name in self._tools:
            raise DuplicateToolName(name)
        self._tools[name] = tool

    def get(self, name: str) -> Tool:
        if name not in self._tools:
            raise ToolNotFound(name)
        return self._tools[name]

    def get_optional(self, name: str) -> Optional[Tool]:
        """Return a tool if registered, otherwise None.

        Use this in agent loops to avoid crashing when the model hallucinates
        an unknown tool name.
        """
        return self._tools.get(name)

    def list(self) -> list[Tool]:
        return list(self._tools.values())

    def list_specs(self) -> list[ToolSpec]:
        return [t.spec for t in self._tools.values()]

    def names(self) -> list[str]:
        return sorted(self._tools.keys())

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)
