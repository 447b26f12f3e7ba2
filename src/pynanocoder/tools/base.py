from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Literal, Protocol

from rich.console import RenderableType
from rich.panel import Panel

from ..cancellation import CancellationToken
from .approval import ApprovalPolicy, default_preview

ToolKind = Literal["read", "write", "shell", "network"]

_JSON_TYPES: dict[str, tuple[type, ...]] = {
    "string": (str,),
    "integer": (int,),
    "number": (int, float),
    "boolean": (bool,),
    "object": (dict,),
    "array": (list,),
}

@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    parameters: dict[str, Any]   # JSONSchema
    approval: ApprovalPolicy
    kind: ToolKind = "read"

@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    error: str = ""

    @staticmethod
    def ok() -> "ValidationResult":
        return ValidationResult(True)

    @staticmethod
    def fail(error: str) -> "ValidationResult":
        return ValidationResult(False, error)

@dataclass
class ToolContext:
    cwd: str
    token: CancellationToken = field(default_factory=CancellationToken)
    session_id: str | None = None

class Tool(Protocol):
    spec: ToolSpec
    def validate(self, args: dict[str, Any]) -> ValidationResult: ...
    def execute(self, ctx: ToolContext, args: dict[str, Any]) -> str: ...
    def format(self, args: dict[str, Any], result: str | None = None) -> RenderableType: ...


def check_schema(parameters: dict[str, Any], args: dict[str, Any]) -> ValidationResult:
    """Shallow check of required keys and primitive types against a JSON schema."""
    if not isinstance(args, dict):
        return ValidationResult.fail("Arguments must be a JSON object.")
    for key in parameters.get("required", []):
        if key not in args or args[key] is None:
            return ValidationResult.fail(f"Missing required field: {key}")
    props = parameters.get("properties", {})
    for key, value in args.items():
        prop = props.get(key)
        if not prop or value is None:
            continue
        expected = _JSON_TYPES.get(prop.get("type", ""))
        if expected is None:
            continue
        # bool is an int subclass; don't let True pass as an integer
        if isinstance(value, bool) and bool not in expected:
            return ValidationResult.fail(f"Field '{key}' must be of type {prop['type']}.")
        if not isinstance(value, expected):
            return ValidationResult.fail(f"Field '{key}' must be of type {prop['type']}.")
    return ValidationResult.ok()


class BaseTool:
    """Defaults for the optional parts of the tool contract."""

    spec: ToolSpec

    def validate(self, args: dict[str, Any]) -> ValidationResult:
        return check_schema(self.spec.parameters, args)

    def format(self, args: dict[str, Any], result: str | None = None) -> RenderableType:
        if result is None:
            return default_preview(self.spec.name, args)
        body = result[:1200] + ("..." if len(result) > 1200 else "")
        return Panel.fit(body or "(no output)", title=f"tool:{self.spec.name}", border_style="green")
