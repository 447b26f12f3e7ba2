from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import Any
import glob as _glob

from ..approval import NEVER
from ..base import BaseTool, ToolSpec, ToolContext, ValidationResult, check_schema

@dataclass
class FindFilesTool(BaseTool):
    spec: ToolSpec = ToolSpec(
        name="find_files",
        description="Find files matching a glob pattern (relative to cwd), e.g. 'src/**/*.py'.",
        approval=NEVER,
        kind="read",
        parameters={
            "type": "object",
            "properties": {
                "pattern": {"type": "string", "description": "Glob pattern, e.g. 'src/**/*.py'."},
                "max_results": {"type": "integer", "default": 200},
            },
            "required": ["pattern"],
        },
    )
    cwd: str = "."

    def validate(self, args: dict[str, Any]) -> ValidationResult:
        vr = check_schema(self.spec.parameters, args)
        if not vr.valid:
            return vr
        pattern = args["pattern"].strip()
        if not pattern:
            return ValidationResult.fail("pattern cannot be empty.")
        if Path(pattern).is_absolute() or ".." in Path(pattern).parts:
            return ValidationResult.fail(f"Pattern must stay inside the working directory: {pattern}")
        return ValidationResult.ok()

    def execute(self, ctx: ToolContext, args: dict[str, Any]) -> str:
        cwd = Path(ctx.cwd).resolve()
        max_results = int(args.get("max_results", 200))
        out: list[str] = []
        for m in _glob.iglob(str(cwd / args["pattern"]), recursive=True):
            ctx.token.raise_if_cancelled()
            try:
                out.append(str(Path(m).resolve().relative_to(cwd)))
            except ValueError:
                continue
            if len(out) >= max_results:
                break
        return "\n".join(sorted(out)) if out else "(no matches)"
