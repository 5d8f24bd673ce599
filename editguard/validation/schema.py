"""Schema layer: structural validation of agent-supplied parameters.

- Unknown tool, missing required param, wrong type, enum and range
  violations are blocking
- Parameters the tool does not declare are reported as warnings
- Messages name the offending field
"""

from __future__ import annotations

from dataclasses import dataclass, field
from functools import lru_cache
from typing import TYPE_CHECKING, Any

from jsonschema import Draft7Validator

from editguard.shared.errors import UnknownToolError
from editguard.shared.types import IssueCode, ValidationIssue
from editguard.tools.catalog import get_tool

if TYPE_CHECKING:
    from jsonschema.exceptions import ValidationError as SchemaViolation

    from editguard.shared.types import ToolCall


@dataclass(frozen=True)
class SchemaResult:
    valid: bool
    issues: list[ValidationIssue] = field(default_factory=list)
    unknown_parameters: list[str] = field(default_factory=list)


@lru_cache(maxsize=64)
def _validator_for(tool_name: str) -> Draft7Validator:
    return Draft7Validator(get_tool(tool_name).input_schema)


def _format_violation(err: SchemaViolation) -> tuple[str | None, str]:
    path = ".".join(str(p) for p in err.absolute_path) or None
    if err.validator == "required":
        missing = err.message.split("'")[1] if "'" in err.message else err.message
        name = f"{path}.{missing}" if path else missing
        return name, f"Missing required parameter: {name}"
    if err.validator in ("minimum", "exclusiveMinimum"):
        return path, f"Parameter '{path}' is below minimum. Value: {err.instance}, Minimum: {err.validator_value}"
    if err.validator in ("maximum", "exclusiveMaximum"):
        return path, f"Parameter '{path}' is above maximum. Value: {err.instance}, Maximum: {err.validator_value}"
    if err.validator == "enum":
        return path, f"Parameter '{path}' must be one of {err.validator_value}. Got: {err.instance!r}"
    if err.validator == "type":
        return path, f"Parameter '{path}' expected type {err.validator_value}, got {type(err.instance).__name__}"
    if path is None:
        return None, f"Invalid parameters: {err.message}"
    return path, f"Parameter '{path}' is invalid: {err.message}"


def validate_schema(call: ToolCall) -> SchemaResult:
    """Validate a call's parameters against its tool's JSON Schema."""
    try:
        validator = _validator_for(call.tool_name)
        spec = get_tool(call.tool_name)
    except UnknownToolError as exc:
        return SchemaResult(
            valid=False,
            issues=[ValidationIssue(code=IssueCode.UNKNOWN_TOOL, message=str(exc), blocking=True)],
        )

    params: Any = call.parameters
    if not isinstance(params, dict):
        return SchemaResult(
            valid=False,
            issues=[
                ValidationIssue(
                    code=IssueCode.SCHEMA,
                    message=f"Parameters must be an object, got {type(params).__name__}",
                    blocking=True,
                )
            ],
        )

    issues: list[ValidationIssue] = []
    for err in sorted(validator.iter_errors(params), key=lambda e: [str(p) for p in e.absolute_path]):
        name, message = _format_violation(err)
        issues.append(
            ValidationIssue(
                code=IssueCode.SCHEMA,
                message=message,
                parameter=name,
                blocking=True,
                current_value=err.instance if name else None,
            )
        )

    unknown = sorted(set(params) - spec.known_parameters)
    for name in unknown:
        issues.append(
            ValidationIssue(
                code=IssueCode.SCHEMA,
                message=f"Unknown parameter '{name}' will be ignored",
                parameter=name,
            )
        )

    return SchemaResult(
        valid=not any(i.blocking for i in issues),
        issues=issues,
        unknown_parameters=unknown,
    )
