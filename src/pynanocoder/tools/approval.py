from __future__ import annotations

import json
import os
import selectors
import sys
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Protocol, TextIO, Union

from rich.console import Console, RenderableType
from rich.panel import Panel

from ..modes import Mode, ModeStore, default_store

if TYPE_CHECKING:
    from ..cancellation import CancellationToken
    from ..session.models import ToolCallRequest
    from .base import Tool

console = Console()


@dataclass(frozen=True)
class Static:
    required: bool

    def __call__(self, args: dict[str, Any], mode: Mode) -> bool:
        return self.required


@dataclass(frozen=True)
class Dynamic:
    fn: Callable[[dict[str, Any], Mode], bool]
    rationale: str = ""

    def __call__(self, args: dict[str, Any], mode: Mode) -> bool:
        return bool(self.fn(args, mode))


ApprovalPolicy = Union[Static, Dynamic]

# Read-only search/fetch tools.
NEVER = Static(False)
# Shell commands ask in every mode.
ALWAYS = Static(True)
# File-mutating tools: confirm unless the user switched to auto-accept.
WRITE = Dynamic(lambda args, mode: mode is not Mode.AUTO_ACCEPT, rationale="writes files")


@dataclass(frozen=True)
class ApprovalDecision:
    required: bool
    rationale: str | None = None


def describe_policy(policy: ApprovalPolicy) -> str:
    if isinstance(policy, Static):
        return "always ask" if policy.required else "never ask"
    return "ask unless auto-accept" if policy is WRITE else "dynamic"


def evaluate(tool: "Tool", args: dict[str, Any], mode_store: ModeStore | None = None) -> ApprovalDecision:
    policy = tool.spec.approval
    if isinstance(policy, Static):
        return ApprovalDecision(
            required=policy.required,
            rationale=f"{tool.spec.name}: {describe_policy(policy)}",
        )
    mode = (mode_store or default_store()).get()
    required = policy(args, mode)
    why = policy.rationale or "dynamic policy"
    return ApprovalDecision(required=required, rationale=f"{tool.spec.name}: {why} (mode={mode.value})")


def requires_approval(tool: "Tool", args: dict[str, Any], mode_store: ModeStore | None = None) -> bool:
    return evaluate(tool, args, mode_store).required


# ---------------------------------------------------------------------------
# Human side of the gate
# ---------------------------------------------------------------------------


class Approver(Protocol):
    def confirm(self, request: "ToolCallRequest", preview: RenderableType, token: "CancellationToken") -> bool: ...

    def show_result(self, request: "ToolCallRequest", rendered: RenderableType, kind: str) -> None: ...


class AutoApprover:
    """Approves everything. Used for unattended runs (--yes)."""

    def confirm(self, request, preview, token) -> bool:
        return True

    def show_result(self, request, rendered, kind) -> None:
        return None


class RejectingApprover:
    def confirm(self, request, preview, token) -> bool:
        return False

    def show_result(self, request, rendered, kind) -> None:
        return None


_KIND_STYLE = {
    "success": "green",
    "validation_failure": "red",
    "execution_failure": "red",
    "user_rejected": "yellow",
    "cancelled": "yellow",
}


class ConsoleApprover:
    """Interactive approval on the terminal.

    The answer is read straight from stdin once a selector reports a line is
    ready, with the turn's cancellation token checked between polls. A
    cancelled prompt leaves nothing behind that could eat the next input line.
    """

    def __init__(self, con: Console | None = None, poll_interval: float = 0.1, stdin: TextIO | None = None):
        self.console = con or console
        self.poll_interval = poll_interval
        self.stdin = stdin

    def _read_line(self, token: "CancellationToken") -> str | None:
        """One line from stdin, or None if the token fires first."""
        stream = self.stdin if self.stdin is not None else sys.stdin
        try:
            fd = stream.fileno()
        except (AttributeError, OSError, ValueError):
            fd = None
        # Windows consoles and in-memory streams cannot be selected on.
        if fd is None or os.name == "nt":
            return stream.readline()
        with selectors.DefaultSelector() as sel:
            sel.register(fd, selectors.EVENT_READ)
            while not token.is_cancelled:
                if sel.select(self.poll_interval):
                    return stream.readline()
        return None

    def confirm(self, request, preview, token) -> bool:
        self.console.print(f"\n[yellow]Tool requires approval[/yellow]: [bold]{request.name}[/bold]")
        self.console.print(preview)
        self.console.print("Approve? [y/N] ", end="", markup=False)
        line = self._read_line(token)
        if line is None or token.is_cancelled:
            self.console.print("\n[yellow]Cancelled[/yellow]")
            return False
        # "" is EOF
        return line.strip().lower() in {"y", "yes"}

    def show_result(self, request, rendered, kind) -> None:
        self.console.print(rendered)
        if kind != "success":
            self.console.print(f"[{_KIND_STYLE.get(kind, 'red')}]{kind}[/]")


def args_preview(args: dict[str, Any], limit: int = 2000) -> str:
    try:
        s = json.dumps(args, ensure_ascii=False, indent=2)
    except Exception:
        s = str(args)
    if len(s) > limit:
        s = s[:limit] + "\n... (truncated)"
    return s


def default_preview(name: str, args: dict[str, Any]) -> RenderableType:
    return Panel.fit(args_preview(args), title=f"⚒ {name}", border_style="cyan")