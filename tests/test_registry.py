"""Tests for ToolRegistry and tool definitions."""

import pytest

from aicli.tools.base import ToolRisk, strict_schema
from aicli.tools.registry import ToolRegistry
from tests.mock_tools import DestructiveTool, EchoTool, ExtraKeysTool, ShellTool, WriteTool


@pytest.fixture
def reg():
    return ToolRegistry([ShellTool(), EchoTool(), DestructiveTool(), WriteTool()])


class TestRegistry:
    def test_register_and_get(self):
        tool = EchoTool()
        reg = ToolRegistry()
        reg.register(tool)
        assert reg.get("echo") is tool
        assert "echo" in reg
        assert reg.get("missing") is None

    def test_duplicate_name_rejected(self):
        reg = ToolRegistry([EchoTool()])
        with pytest.raises(ValueError, match="already registered: echo"):
            reg.register(EchoTool())

    def test_replace(self):
        reg = ToolRegistry([EchoTool()])
        newer = EchoTool()
        reg.register(newer, replace=True)
        assert reg.get("echo") is newer
        assert len(reg) == 1

    def test_available_sorted_by_name(self, reg):
        assert [t.name for t in reg.available()] == [
            "delete_resource", "echo", "shell", "write_note",
        ]
        assert [t.name for t in reg] == [t.name for t in reg.available()]

    @pytest.mark.parametrize(
        "ceiling, expected",
        [
            (ToolRisk.READ_ONLY, ["echo"]),
            (ToolRisk.WRITE, ["echo", "write_note"]),
            (ToolRisk.DESTRUCTIVE, ["delete_resource", "echo", "write_note"]),
            (ToolRisk.SHELL, ["delete_resource", "echo", "shell", "write_note"]),
        ],
    )
    def test_available_under_ceiling(self, reg, ceiling, expected):
        assert [t.name for t in reg.available(ceiling)] == expected

    def test_remove(self, reg):
        reg.remove("shell", "echo", "not-there")
        assert [t.name for t in reg] == ["delete_resource", "write_note"]

    def test_empty(self):
        reg = ToolRegistry()
        assert len(reg) == 0
        assert reg.available() == []
        assert reg.definitions() == []


class TestDefinitions:
    def test_function_definition_shape(self):
        (definition,) = ToolRegistry([EchoTool()]).definitions()
        assert definition["type"] == "function"
        fn = definition["function"]
        assert fn["name"] == "echo"
        assert fn["description"] == "Echoes the input message back."
        assert fn["parameters"]["required"] == ["message"]
        assert fn["parameters"]["additionalProperties"] is False

    def test_definitions_respect_ceiling(self, reg):
        names = [d["function"]["name"] for d in reg.definitions(ToolRisk.WRITE)]
        assert names == ["echo", "write_note"]

    def test_opt_out_of_strict_schema(self):
        (definition,) = ToolRegistry([ExtraKeysTool()]).definitions()
        assert definition["function"]["parameters"]["additionalProperties"] is True

    def test_strict_schema_fills_defaults(self):
        assert strict_schema(None) == {
            "type": "object",
            "properties": {},
            "additionalProperties": False,
        }

    def test_strict_schema_does_not_mutate(self):
        params = {"properties": {"a": {"type": "string"}}}
        strict_schema(params)
        assert params == {"properties": {"a": {"type": "string"}}}


class TestRiskParse:
    def test_case_insensitive(self):
        assert ToolRisk.parse(" write ") is ToolRisk.WRITE

    def test_unknown(self):
        with pytest.raises(KeyError):
            ToolRisk.parse("root")

    def test_ordering(self):
        assert ToolRisk.READ_ONLY < ToolRisk.WRITE < ToolRisk.DESTRUCTIVE < ToolRisk.SHELL
