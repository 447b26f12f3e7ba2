from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import Any
import re

from ..approval import NEVER
from ..base import BaseTool, ToolSpec, ToolContext, ValidationResult, check_schema
from ...util.fs import resolve_path, read_text, rel, FsError

_SKIP_DIRS = {".git", "node_modules", "__pycache__", ".venv", "venv", "dist", "build"}

@dataclass
class SearchFileContentsTool(BaseTool):
    spec: ToolSpec = ToolSpec(
        name="search_file_contents",
        description="Search for a pattern in files. Returns matching lines with line numbers.",
        approval=NEVER,
        kind="read",
        parameters={
            "type": "object",
            "properties": {
                "pattern": {"type": "string", "description": "Regex (default) or literal string if regex=false."},
                "path": {"type": "string", "description": "File or directory to search (relative to cwd). Default '.'"},
                "regex": {"type": "boolean", "default": True},
                "case_sensitive": {"type": "boolean", "default": False},
                "include": {"type": "string", "description": "Optional glob filter like '*.py'."},
                "max_matches": {"type": "integer", "default": 200},
            },
            "required": ["pattern"],
        },
    )
    cwd: str = "."

    def validate(self, args: dict[str, Any]) -> ValidationResult:
        vr = check_schema(self.spec.parameters, args)
        if not vr.valid:
            return vr
        path = args.get("path") or "."
        try:
            target = resolve_path(self.cwd, path)
        except FsError as e:
            return ValidationResult.fail(str(e))
        if not target.exists():
            return ValidationResult.fail(f"Path not found: {path}")
        if bool(args.get("regex", True)):
            try:
                re.compile(args["pattern"])
            except re.error as e:
                return ValidationResult.fail(f"Invalid regex: {e}")
        return ValidationResult.ok()

    def _files(self, target: Path, include: str | None):
        if target.is_file():
            yield target
            return
        for p in sorted(target.rglob("*")):
            if any(part in _SKIP_DIRS for part in p.relative_to(target).parts):
                continue
            if not p.is_file():
                continue
            if include and not p.match(include):
                continue
            yield p

    def execute(self, ctx: ToolContext, args: dict[str, Any]) -> str:
        cwd = Path(ctx.cwd).expanduser().resolve()
        pattern = args["pattern"]
        target = resolve_path(cwd, args.get("path") or ".")
        max_matches = int(args.get("max_matches", 200))
        flags = 0 if args.get("case_sensitive") else re.IGNORECASE
        if bool(args.get("regex", True)):
            rx = re.compile(pattern, flags)
        else:
            rx = re.compile(re.escape(pattern), flags)

        out_lines = []
        for f in self._files(target, args.get("include")):
            ctx.token.raise_if_cancelled()
            try:
                text = read_text(f)
            except OSError:
                continue
            for i, line in enumerate(text.splitlines(), start=1):
                if rx.search(line):
                    out_lines.append(f"{rel(cwd, f)}:{i}: {line}")
                    if len(out_lines) >= max_matches:
                        return "\n".join(out_lines)
        return "\n".join(out_lines) if out_lines else "(no matches)"
