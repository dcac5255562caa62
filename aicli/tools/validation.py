"""JSON Schema checks for tool-call arguments."""

from __future__ import annotations

import jsonschema

from aicli.tools.base import Tool, strict_schema


def validate_arguments(tool: Tool, arguments: object) -> str | None:
    """
    Check *arguments* against the tool's parameter schema.

    Returns ``None`` when they conform, otherwise a one-line description of
    the most relevant violation, prefixed with its location when the
    problem is inside a nested value.
    """
    if not isinstance(arguments, dict):
        return f"arguments must be an object, got {type(arguments).__name__}"

    schema = strict_schema(tool.parameters)
    validator = jsonschema.validators.validator_for(schema)(schema)
    error = jsonschema.exceptions.best_match(validator.iter_errors(arguments))
    if error is None:
        return None
    location = "/".join(str(part) for part in error.absolute_path)
    return f"{location}: {error.message}" if location else error.message
