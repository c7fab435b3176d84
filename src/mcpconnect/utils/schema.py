# ==============================================================================
#                  © 2025 Dedalus Labs, Inc. and affiliates
#                            Licensed under MIT
#               github.com/dedalus-labs/openmcp-python/LICENSE
# ==============================================================================

"""Client-side validation of invocation arguments.

Tools advertise a JSON Schema under ``inputSchema`` and prompts list their
arguments with a ``required`` flag.  Checking both before dispatch lets the
engine reject a bad call without spending a round-trip.  Servers remain the
authority: a schema the validator cannot interpret is skipped rather than
treated as a failure.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from jsonschema import SchemaError
from jsonschema.exceptions import best_match
from jsonschema.validators import validator_for
from mcp import types

from .logger import get_logger


logger = get_logger("mcpconnect.schema")

_SCALARS = (str, int, float, bool)


class ArgumentValidationError(ValueError):
    """Raised when arguments do not satisfy a capability's declared inputs."""


def validate_tool_arguments(tool: types.Tool, arguments: Mapping[str, Any] | None) -> None:
    """Check *arguments* against ``tool.inputSchema``.

    Raises:
        ArgumentValidationError: The arguments violate the schema.
    """
    schema = tool.inputSchema or {}
    payload = dict(arguments or {})

    try:
        validator_cls = validator_for(schema)
        validator_cls.check_schema(schema)
    except SchemaError as exc:
        logger.debug("Skipping argument validation for %s: invalid schema (%s)", tool.name, exc.message)
        return

    error = best_match(validator_cls(schema).iter_errors(payload))
    if error is not None:
        location = "/".join(str(part) for part in error.absolute_path) or "<root>"
        raise ArgumentValidationError(f"Invalid arguments for tool '{tool.name}' at {location}: {error.message}")


def validate_prompt_arguments(prompt: types.Prompt, arguments: Mapping[str, Any] | None) -> dict[str, str]:
    """Check required prompt arguments and coerce values to strings.

    MCP prompt arguments are string-valued; numbers and booleans are converted
    with ``str``.  ``None``, mappings and sequences are rejected.

    Raises:
        ArgumentValidationError: A required argument is missing, an
            undeclared argument was supplied, or a value is not a scalar.
    """
    declared = {argument.name: argument for argument in prompt.arguments or []}
    supplied = dict(arguments or {})

    missing = sorted(name for name, argument in declared.items() if argument.required and name not in supplied)
    if missing:
        raise ArgumentValidationError(f"Missing required arguments for prompt '{prompt.name}': {', '.join(missing)}")

    if declared:
        unexpected = sorted(set(supplied) - set(declared))
        if unexpected:
            raise ArgumentValidationError(
                f"Unexpected arguments for prompt '{prompt.name}': {', '.join(unexpected)}"
            )

    invalid = sorted(name for name, value in supplied.items() if not isinstance(value, _SCALARS))
    if invalid:
        raise ArgumentValidationError(
            f"Prompt '{prompt.name}' arguments must be strings or scalars: {', '.join(invalid)}"
        )

    return {name: value if isinstance(value, str) else str(value) for name, value in supplied.items()}


__all__ = ["ArgumentValidationError", "validate_tool_arguments", "validate_prompt_arguments"]
