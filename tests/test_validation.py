"""Tests for argument validation against tool schemas."""

import pytest

from aicli.tools.validation import validate_arguments
from tests.mock_tools import EchoTool, ExtraKeysTool, StaticTool, WriteTool


class NestedTool(StaticTool):
    tool_name = "nested"
    schema = {
        "type": "object",
        "properties": {
            "edits": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {"line": {"type": "integer", "minimum": 1}},
                    "required": ["line"],
                },
            },
        },
    }

    async def execute(self, **kwargs):
        raise NotImplementedError


class TestValidateArguments:
    def test_conforming(self):
        assert validate_arguments(EchoTool(), {"message": "hello"}) is None
        assert validate_arguments(WriteTool(), {"path": "a.txt", "content": ""}) is None

    def test_missing_required(self):
        problem = validate_arguments(WriteTool(), {"path": "a.txt"})
        assert problem == "'content' is a required property"

    def test_unknown_key_rejected(self):
        problem = validate_arguments(EchoTool(), {"message": "hi", "rogue": 1})
        assert "rogue" in problem

    def test_extra_keys_allowed_when_schema_opts_out(self):
        args = {"base_param": "x", "extra": "y", "another": 42}
        assert validate_arguments(ExtraKeysTool(), args) is None

    @pytest.mark.parametrize("value", [42, {"nested": True}, None, ["a"]])
    def test_wrong_type_names_field(self, value):
        problem = validate_arguments(EchoTool(), {"message": value})
        assert problem.startswith("message: ")
        assert "'string'" in problem

    def test_nested_location(self):
        problem = validate_arguments(NestedTool(), {"edits": [{"line": 3}, {"line": 0}]})
        assert problem.startswith("edits/1/line: ")

    @pytest.mark.parametrize("arguments", [["hello"], "hello", None])
    def test_non_object_arguments(self, arguments):
        problem = validate_arguments(EchoTool(), arguments)
        assert problem == f"arguments must be an object, got {type(arguments).__name__}"

    def test_empty_schema_accepts_empty_arguments(self):
        class Bare(StaticTool):
            tool_name = "bare"

            async def execute(self):
                raise NotImplementedError

        assert validate_arguments(Bare(), {}) is None
        assert validate_arguments(Bare(), {"x": 1}) is not None
