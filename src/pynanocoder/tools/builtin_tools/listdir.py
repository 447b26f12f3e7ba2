from __future__ import annotations
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ..approval import NEVER
from ..base import BaseTool, ToolSpec, ToolContext, ValidationResult, check_schema
from ...util.fs import resolve_path, rel, FsError

@dataclass
class ListDirTool(BaseTool):
    spec: ToolSpec = ToolSpec(
        name="list_directory",
        description="List files/directories under a path (relative to cwd).",
        approval=NEVER,
        kind="read",
        parameters={
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "Directory path relative to cwd. Default '.'"},
                "max_entries": {"type": "integer", "description": "Max entries to return", "default": 200},
                "recursive": {"type": "boolean", "description": "If true, list recursively", "default": False},
            },
            "required": [],
        },
    )
    cwd: str = "."

    def validate(self, args: dict[str, Any]) -> ValidationResult:
        vr = check_schema(self.spec.parameters, args)
        if not vr.valid:
            return vr
        path = args.get("path") or "."
        try:
            p = resolve_path(self.cwd, path)
        except FsError as e:
            return ValidationResult.fail(str(e))
        if not p.exists():
            return ValidationResult.fail(f"Path not found: {path}")
        if not p.is_dir():
            return ValidationResult.fail(f"Not a directory: {path}")
        return ValidationResult.ok()

    def execute(self, ctx: ToolContext, args: dict[str, Any]) -> str:
        cwd = Path(ctx.cwd).expanduser().resolve()
        p = resolve_path(cwd, args.get("path") or ".")
        max_entries = int(args.get("max_entries", 200))
        recursive = bool(args.get("recursive", False))

        entries: list[str] = []
        if recursive:
            for root, dirs, files in os.walk(p):
                ctx.token.raise_if_cancelled()
                dirs[:] = sorted(d for d in dirs if not d.startswith("."))
                rootp = Path(root)
                for name in dirs + sorted(files):
                    suffix = "/" if (rootp / name).is_dir() else ""
                    entries.append(rel(cwd, rootp / name) + suffix)
                if len(entries) >= max_entries:
                    break
        else:
            for child in sorted(p.iterdir(), key=lambda x: (not x.is_dir(), x.name.lower())):
                entries.append(rel(cwd, child) + ("/" if child.is_dir() else ""))

        if len(entries) > max_entries:
            entries = entries[:max_entries] + [f"... ({max_entries} entries shown)"]
        return "\n".join(entries) if entries else "(empty)"
