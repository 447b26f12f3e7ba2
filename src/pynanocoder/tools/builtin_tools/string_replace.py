from __future__ import annotations
import difflib
from dataclasses import dataclass
from typing import Any

from rich.console import RenderableType
from rich.panel import Panel
from rich.syntax import Syntax
from rich.text import Text

from ..approval import WRITE
from ..base import BaseTool, ToolSpec, ToolContext, ValidationResult, check_schema
from ...errors import ToolExecutionError
from ...util.fs import existing_file, read_exact, write_exact, FsError


def _match_error(path: str, text: str, old_str: str) -> str | None:
    if not old_str:
        return "old_str cannot be empty. Provide the exact content to find and replace."
    n = text.count(old_str)
    if n == 0:
        return (
            f"Content not found in {path}. The file may have changed since you last read it.\n\n"
            f"Searching for:\n{old_str}\n\nSuggestion: Read the file again to see current contents."
        )
    if n > 1:
        return (
            f"Found {n} matches for the search string in {path}. "
            f"Please provide more surrounding context to make the match unique.\n\nSearching for:\n{old_str}"
        )
    return None


@dataclass
class StringReplaceTool(BaseTool):
    spec: ToolSpec = ToolSpec(
        name="string_replace",
        description=(
            "Replace exact string content in a file. Provide exact content including whitespace; "
            "include 2-3 lines of surrounding context so the match is unique."
        ),
        approval=WRITE,
        kind="write",
        parameters={
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "File path relative to cwd."},
                "old_str": {"type": "string", "description": "The EXACT string to replace. Must occur once."},
                "new_str": {"type": "string", "description": "Replacement text. May be empty to delete."},
            },
            "required": ["path", "old_str", "new_str"],
        },
    )
    cwd: str = "."

    def validate(self, args: dict[str, Any]) -> ValidationResult:
        vr = check_schema(self.spec.parameters, args)
        if not vr.valid:
            return vr
        try:
            p = existing_file(self.cwd, args["path"])
            text = read_exact(p, args["path"])
        except FsError as e:
            return ValidationResult.fail(str(e))
        err = _match_error(args["path"], text, args["old_str"])
        return ValidationResult.fail(err) if err else ValidationResult.ok()

    def execute(self, ctx: ToolContext, args: dict[str, Any]) -> str:
        path = args["path"]
        old_str = args["old_str"]
        new_str = args["new_str"]

        p = existing_file(ctx.cwd, path)
        text = read_exact(p, path)
        # Re-check: an earlier call in the same batch may have edited this file.
        err = _match_error(path, text, old_str)
        if err:
            raise ToolExecutionError(err)

        start_line = text[: text.index(old_str)].count("\n") + 1
        end_line = start_line + old_str.count("\n")
        new_end = start_line + new_str.count("\n")
        write_exact(p, text.replace(old_str, new_str, 1))

        old_desc = f"line {start_line}" if start_line == end_line else f"lines {start_line}-{end_line}"
        new_desc = f"line {start_line}" if start_line == new_end else f"lines {start_line}-{new_end}"
        return f"Successfully replaced content at {old_desc} (now {new_desc}) in {path}."

    def format(self, args: dict[str, Any], result: str | None = None) -> RenderableType:
        path = str(args.get("path") or "")
        if result is not None:
            return Text(f"⚒ string_replace {path}: {result}", style="green")
        old_str = str(args.get("old_str") or "")
        new_str = str(args.get("new_str") or "")
        diff = "".join(
            difflib.unified_diff(
                old_str.splitlines(keepends=True),
                new_str.splitlines(keepends=True),
                fromfile=f"a/{path}",
                tofile=f"b/{path}",
            )
        )
        return Panel(Syntax(diff or "(no change)", "diff", word_wrap=True), title="⚒ string_replace", border_style="cyan")
