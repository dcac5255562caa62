"""Tool interface shared by the built-in tools and the dispatcher."""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import IntEnum

from aicli.types import ToolResult


class ToolRisk(IntEnum):
    """Ordered risk levels.  A policy ceiling admits every level at or below it."""

    READ_ONLY = 10
    WRITE = 20
    DESTRUCTIVE = 30
    SHELL = 40

    @classmethod
    def parse(cls, value: str) -> ToolRisk:
        """Look up a level by name, case-insensitively.  Raises ``KeyError``."""
        return cls[value.strip().upper()]


def strict_schema(parameters: dict | None) -> dict:
    """
    Return *parameters* as an object schema that rejects unknown keys.

    Tools may opt out by setting ``additionalProperties`` themselves.
    """
    schema = dict(parameters or {})
    schema.setdefault("type", "object")
    schema.setdefault("properties", {})
    schema.setdefault("additionalProperties", False)
    return schema


class Tool(ABC):
    """
    A capability the model can invoke by name.

    Subclasses describe their arguments with a JSON Schema in
    ``parameters``; the dispatcher validates arguments against it before
    ``execute`` is awaited with them as keyword arguments.
    """

    @property
    @abstractmethod
    def name(self) -> str: ...

    @property
    @abstractmethod
    def description(self) -> str: ...

    @property
    @abstractmethod
    def parameters(self) -> dict: ...

    @property
    def risk_level(self) -> ToolRisk:
        return ToolRisk.READ_ONLY

    @property
    def secret_fields(self) -> list[str]:
        """Argument names replaced with a placeholder in the audit trail."""
        return []

    @property
    def path_fields(self) -> list[str]:
        """Argument names holding filesystem paths subject to the workspace policy."""
        return []

    def time_budget(self, arguments: dict) -> float | None:
        """Seconds the dispatcher allows this call.  ``None`` means the default."""
        return None

    @abstractmethod
    async def execute(self, **kwargs) -> ToolResult: ...

    def definition(self) -> dict:
        """The function definition advertised to the model."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": strict_schema(self.parameters),
            },
        }
