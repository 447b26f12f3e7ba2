from __future__ import annotations
import difflib
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from rich.console import RenderableType
from rich.panel import Panel
from rich.syntax import Syntax
from rich.text import Text

from ..approval import WRITE
from ..base import BaseTool, ToolSpec, ToolContext, ValidationResult, check_schema
from ...errors import ToolExecutionError
from ...util.fs import existing_file, read_exact, write_exact, FsError

_PATH = {"type": "string", "description": "File path relative to cwd."}


def _content_lines(content: str, nl: str) -> list[str]:
    if content.endswith("\n"):
        content = content[:-1]
    return [line.rstrip("\r") + nl for line in content.split("\n")]


def splice_lines(text: str, start: int, remove: int, content: str | None) -> str:
    """Replace `remove` lines starting at 1-based `start` with `content`.

    The file's newline style and its missing final newline are preserved.
    """
    lines = text.splitlines(keepends=True)
    nl = "\r\n" if "\r\n" in text else "\n"
    if lines and not lines[-1].endswith(("\n", "\r")):
        lines[-1] += nl
    new = _content_lines(content, nl) if content is not None else []
    lines[start - 1:start - 1 + remove] = new
    out = "".join(lines)
    if text and not text.endswith(("\n", "\r")) and out.endswith(nl):
        out = out[: -len(nl)]
    return out


def _numbered(text: str) -> str:
    return "\n".join(f"{i:>4}: {line}" for i, line in enumerate(text.splitlines(), 1))


def _range_desc(start: int, end: int) -> str:
    return f"line {start}" if start == end else f"lines {start}-{end}"


@dataclass
class _LineEditTool(BaseTool):
    """Shared plumbing for the line-addressed edit tools."""

    cwd: str = "."

    # (first line, lines removed, replacement or None)
    def _edit(self, args: dict[str, Any]) -> tuple[int, int, str | None]:
        raise NotImplementedError

    def _bounds_error(self, args: dict[str, Any], total: int) -> str | None:
        raise NotImplementedError

    def _load(self, cwd: str, path: str) -> tuple[Path, str]:
        p = existing_file(cwd, path)
        return p, read_exact(p, path)

    def validate(self, args: dict[str, Any]) -> ValidationResult:
        vr = check_schema(self.spec.parameters, args)
        if not vr.valid:
            return vr
        try:
            _, text = self._load(self.cwd, args["path"])
        except FsError as e:
            return ValidationResult.fail(str(e))
        err = self._bounds_error(args, len(text.splitlines()))
        return ValidationResult.fail(err) if err else ValidationResult.ok()

    def _apply(self, ctx: ToolContext, args: dict[str, Any]) -> str:
        p, text = self._load(ctx.cwd, args["path"])
        # An earlier call in the same batch may have changed the line count.
        err = self._bounds_error(args, len(text.splitlines()))
        if err:
            raise ToolExecutionError(err)
        start, remove, content = self._edit(args)
        new_text = splice_lines(text, start, remove, content)
        write_exact(p, new_text)
        return new_text

    def format(self, args: dict[str, Any], result: str | None = None) -> RenderableType:
        name = self.spec.name
        path = str(args.get("path") or "")
        if result is not None:
            first = result.split("\n", 1)[0]
            return Text(f"⚒ {name} {path}: {first}", style="green")
        try:
            _, text = self._load(self.cwd, path)
            if self._bounds_error(args, len(text.splitlines())):
                return super().format(args, None)
            start, remove, content = self._edit(args)
            new_text = splice_lines(text, start, remove, content)
        except (FsError, KeyError, TypeError, ValueError):
            return super().format(args, None)
        diff = "".join(
            difflib.unified_diff(
                text.splitlines(keepends=True),
                new_text.splitlines(keepends=True),
                fromfile=f"a/{path}",
                tofile=f"b/{path}",
                n=3,
            )
        )
        return Panel(Syntax(diff or "(no change)", "diff", word_wrap=True), title=f"⚒ {name}", border_style="cyan")


def _start_error(line_number: int) -> str | None:
    if line_number < 1:
        return f"Invalid line_number: {line_number}. Must be a positive integer."
    return None


def _range_error(args: dict[str, Any], total: int) -> str | None:
    start = args["line_number"]
    end = args.get("end_line") or start
    err = _start_error(start)
    if err:
        return err
    if end < start:
        return f"end_line ({end}) cannot be less than line_number ({start})."
    if start > total:
        return f"Line number {start} is out of range (file has {total} lines)"
    if end > total:
        return f"End line {end} is out of range (file has {total} lines)"
    return None


@dataclass
class InsertLinesTool(_LineEditTool):
    spec: ToolSpec = ToolSpec(
        name="insert_lines",
        description="Insert new lines at a specific line number in a file.",
        approval=WRITE,
        kind="write",
        parameters={
            "type": "object",
            "properties": {
                "path": _PATH,
                "line_number": {
                    "type": "integer",
                    "description": "1-based line number the new content starts at. Use line count + 1 to append.",
                },
                "content": {"type": "string", "description": "Content to insert; may span several lines."},
            },
            "required": ["path", "line_number", "content"],
        },
    )

    def _bounds_error(self, args: dict[str, Any], total: int) -> str | None:
        n = args["line_number"]
        err = _start_error(n)
        if err:
            return err
        if n > total + 1:
            return f"Line number {n} is out of range (file has {total} lines)"
        return None

    def _edit(self, args: dict[str, Any]) -> tuple[int, int, str | None]:
        return args["line_number"], 0, args["content"]

    def execute(self, ctx: ToolContext, args: dict[str, Any]) -> str:
        new_text = self._apply(ctx, args)
        n = len(_content_lines(args["content"], "\n"))
        return (
            f"Successfully inserted {n} line{'s' if n != 1 else ''} at line {args['line_number']} in {args['path']}."
            f"\n\nUpdated file contents:\n{_numbered(new_text)}"
        )


@dataclass
class ReplaceLinesTool(_LineEditTool):
    spec: ToolSpec = ToolSpec(
        name="replace_lines",
        description="Replace a line or a range of lines in a file with new content.",
        approval=WRITE,
        kind="write",
        parameters={
            "type": "object",
            "properties": {
                "path": _PATH,
                "line_number": {"type": "integer", "description": "1-based first line to replace."},
                "end_line": {"type": "integer", "description": "1-based last line to replace. Defaults to line_number."},
                "content": {"type": "string", "description": "Replacement content; may span several lines."},
            },
            "required": ["path", "line_number", "content"],
        },
    )

    def _bounds_error(self, args: dict[str, Any], total: int) -> str | None:
        return _range_error(args, total)

    def _edit(self, args: dict[str, Any]) -> tuple[int, int, str | None]:
        start = args["line_number"]
        end = args.get("end_line") or start
        return start, end - start + 1, args["content"]

    def execute(self, ctx: ToolContext, args: dict[str, Any]) -> str:
        new_text = self._apply(ctx, args)
        start = args["line_number"]
        n = len(_content_lines(args["content"], "\n"))
        return (
            f"Successfully replaced {_range_desc(start, args.get('end_line') or start)} "
            f"with {n} line{'s' if n != 1 else ''} in {args['path']}."
            f"\n\nUpdated file contents:\n{_numbered(new_text)}"
        )


@dataclass
class DeleteLinesTool(_LineEditTool):
    spec: ToolSpec = ToolSpec(
        name="delete_lines",
        description="Delete a line or a range of lines from a file.",
        approval=WRITE,
        kind="write",
        parameters={
            "type": "object",
            "properties": {
                "path": _PATH,
                "line_number": {"type": "integer", "description": "1-based first line to delete."},
                "end_line": {"type": "integer", "description": "1-based last line to delete. Defaults to line_number."},
            },
            "required": ["path", "line_number"],
        },
    )

    def _bounds_error(self, args: dict[str, Any], total: int) -> str | None:
        return _range_error(args, total)

    def _edit(self, args: dict[str, Any]) -> tuple[int, int, str | None]:
        start = args["line_number"]
        end = args.get("end_line") or start
        return start, end - start + 1, None

    def execute(self, ctx: ToolContext, args: dict[str, Any]) -> str:
        new_text = self._apply(ctx, args)
        start = args["line_number"]
        return (
            f"Successfully deleted {_range_desc(start, args.get('end_line') or start)} from {args['path']}."
            f"\n\nUpdated file contents:\n{_numbered(new_text)}"
        )
