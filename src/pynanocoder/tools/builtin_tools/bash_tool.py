from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any
import os
import re
import shutil

from rich.console import RenderableType
from rich.panel import Panel
from rich.syntax import Syntax

from ..approval import ALWAYS
from ..base import BaseTool, ToolSpec, ToolContext, ValidationResult, check_schema
from ...errors import TurnCancelled
from ...util.subprocess import run_cmd

# Commands that are refused outright, before the user is even asked.
DEFAULT_DENYLIST = [
    r"\brm\s+(-[a-zA-Z]*[rf][a-zA-Z]*\s+)+(/|~|\$HOME)(\s|$|/\*)",
    r":\(\)\s*\{\s*:\s*\|\s*:\s*&\s*\}\s*;\s*:",
    r"\bmkfs(\.\w+)?\b",
    r"\bdd\b.*\bof=/dev/",
    r">\s*/dev/(sd[a-z]|nvme\d|hd[a-z])",
    r"\bchmod\s+(-R\s+)?0?777\s+/(\s|$)",
    r"\b(shutdown|reboot|halt|poweroff)\b",
]

@dataclass
class BashTool(BaseTool):
    spec: ToolSpec = ToolSpec(
        name="execute_bash",
        description="Run a shell command in the working directory. Returns stdout/stderr and exit code.",
        approval=ALWAYS,
        kind="shell",
        parameters={
            "type": "object",
            "properties": {
                "command": {"type": "string", "description": "Shell command to run."},
            },
            "required": ["command"],
        },
    )
    timeout: int = 120
    denylist: list[str] = field(default_factory=list)

    def __post_init__(self):
        self._deny = [re.compile(p) for p in DEFAULT_DENYLIST + list(self.denylist)]

    def validate(self, args: dict[str, Any]) -> ValidationResult:
        vr = check_schema(self.spec.parameters, args)
        if not vr.valid:
            return vr
        cmd = args["command"].strip()
        if not cmd:
            return ValidationResult.fail("Empty command.")
        for rx in self._deny:
            if rx.search(cmd):
                return ValidationResult.fail(
                    f"Command blocked: matches a destructive pattern ({rx.pattern}). Use a safer, more specific command."
                )
        return ValidationResult.ok()

    def execute(self, ctx: ToolContext, args: dict[str, Any]) -> str:
        cmd = args["command"].strip()

        # Use a real shell so built-ins like `cd`, pipes, &&, env expansion work.
        if os.name == "nt":
            # Windows: let cmd.exe parse builtins and operators
            parts = ["cmd.exe", "/c", cmd]
        else:
            # POSIX: prefer bash, fallback to sh
            shell = "bash" if shutil.which("bash") else "sh"
            parts = [shell, "-lc", cmd]

        ctx.token.raise_if_cancelled()
        res = run_cmd(parts, cwd=ctx.cwd, timeout=self.timeout, token=ctx.token)
        if res.cancelled:
            raise TurnCancelled(f"Command cancelled: {cmd}")

        out = ""
        if res.stdout:
            out += f"STDOUT:\n{res.stdout}\n"
        if res.stderr:
            out += f"STDERR:\n{res.stderr}\n"
        if res.timed_out:
            out += f"TIMEOUT: command exceeded {self.timeout}s and was terminated\n"
        out += f"EXIT_CODE: {res.returncode}"
        return out

    def format(self, args: dict[str, Any], result: str | None = None) -> RenderableType:
        cmd = str(args.get("command") or "")
        if result is None:
            return Panel(Syntax(cmd, "bash", word_wrap=True), title="⚒ execute_bash", border_style="red")
        body = result[:1200] + ("..." if len(result) > 1200 else "")
        return Panel.fit(f"$ {cmd}\n{body}", title="⚒ execute_bash", border_style="green")
