from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from rich.console import Group, RenderableType
from rich.panel import Panel
from rich.syntax import Syntax
from rich.text import Text

from ..approval import WRITE
from ..base import BaseTool, ToolSpec, ToolContext, ValidationResult, check_schema
from ...util.fs import resolve_path, FsError

@dataclass
class WriteFileTool(BaseTool):
    spec: ToolSpec = ToolSpec(
        name="write_file",
        description="Create or overwrite a file with given content.",
        approval=WRITE,
        kind="write",
        parameters={
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "File path relative to cwd."},
                "content": {"type": "string", "description": "Full file content."},
            },
            "required": ["path", "content"],
        },
    )
    cwd: str = "."

    def validate(self, args: dict[str, Any]) -> ValidationResult:
        vr = check_schema(self.spec.parameters, args)
        if not vr.valid:
            return vr
        try:
            p = resolve_path(self.cwd, args["path"])
        except FsError as e:
            return ValidationResult.fail(str(e))
        if p.exists() and p.is_dir():
            return ValidationResult.fail(f"Path is a directory: {args['path']}")
        return ValidationResult.ok()

    def execute(self, ctx: ToolContext, args: dict[str, Any]) -> str:
        path = args["path"]
        content = args["content"]
        p = resolve_path(ctx.cwd, path)
        existed = p.exists()
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(content, encoding="utf-8")
        verb = "Overwrote" if existed else "Created"
        return f"{verb} {path} ({len(content)} chars, {len(content.splitlines())} lines)."

    def format(self, args: dict[str, Any], result: str | None = None) -> RenderableType:
        path = str(args.get("path") or "")
        if result is not None:
            return Text(f"⚒ write_file {path}: {result}", style="green")
        lexer = Syntax.guess_lexer(path, code=str(args.get("content") or ""))
        body = Syntax(str(args.get("content") or ""), lexer, line_numbers=True, word_wrap=True)
        return Panel(Group(Text(f"Path: {Path(path)}", style="bold"), body), title="⚒ write_file", border_style="cyan")
