from __future__ import annotations
from dataclasses import dataclass
from typing import Any

from ..approval import NEVER
from ..base import BaseTool, ToolSpec, ToolContext, ValidationResult, check_schema
from ...util.fs import existing_file, read_text, FsError

@dataclass
class ReadFileTool(BaseTool):
    spec: ToolSpec = ToolSpec(
        name="read_file",
        description="Read a text file with line numbers. Optionally limit to a line range.",
        approval=NEVER,
        kind="read",
        parameters={
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "File path relative to cwd."},
                "start_line": {"type": "integer", "description": "1-based start line (inclusive)."},
                "end_line": {"type": "integer", "description": "1-based end line (inclusive)."},
            },
            "required": ["path"],
        },
    )
    cwd: str = "."

    def validate(self, args: dict[str, Any]) -> ValidationResult:
        vr = check_schema(self.spec.parameters, args)
        if not vr.valid:
            return vr
        try:
            p = existing_file(self.cwd, args["path"])
        except FsError as e:
            return ValidationResult.fail(str(e))
        s = args.get("start_line")
        e = args.get("end_line")
        if s is None and e is None:
            return ValidationResult.ok()
        total = len(read_text(p).splitlines())
        s = int(s or 1)
        e = int(e or max(total, 1))
        if s < 1 or e < s or s > max(total, 1):
            return ValidationResult.fail(f"Invalid line range {s}-{e} for file with {total} lines.")
        return ValidationResult.ok()

    def execute(self, ctx: ToolContext, args: dict[str, Any]) -> str:
        p = existing_file(ctx.cwd, args["path"])
        lines = read_text(p).splitlines()

        s = int(args.get("start_line") or 1)
        e = min(len(lines), int(args.get("end_line") or len(lines)))
        out = [f"{i:>4}: {lines[i - 1]}" for i in range(max(1, s), e + 1)]
        if not out:
            return f"{args['path']} is empty."
        return "\n".join(out)
