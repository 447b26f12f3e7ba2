from __future__ import annotations
from pathlib import Path

from .registry import ToolRegistry
from .base import Tool
from ..config.models import BehaviorConfig

from .builtin_tools.listdir import ListDirTool
from .builtin_tools.glob_tool import FindFilesTool
from .builtin_tools.grep_tool import SearchFileContentsTool
from .builtin_tools.file_read import ReadFileTool
from .builtin_tools.file_write import WriteFileTool
from .builtin_tools.string_replace import StringReplaceTool
from .builtin_tools.line_edit import InsertLinesTool, ReplaceLinesTool, DeleteLinesTool
from .builtin_tools.bash_tool import BashTool
from .builtin_tools.webfetch_tool import FetchUrlTool

def builtin_tools(cwd: Path | str, behavior: BehaviorConfig | None = None) -> list[Tool]:
    behavior = behavior or BehaviorConfig()
    cwd = str(cwd)
    return [
        ListDirTool(cwd=cwd),
        FindFilesTool(cwd=cwd),
        SearchFileContentsTool(cwd=cwd),
        ReadFileTool(cwd=cwd),
        WriteFileTool(cwd=cwd),
        StringReplaceTool(cwd=cwd),
        InsertLinesTool(cwd=cwd),
        ReplaceLinesTool(cwd=cwd),
        DeleteLinesTool(cwd=cwd),
        BashTool(timeout=behavior.bash_timeout, denylist=list(behavior.bash_denylist)),
        FetchUrlTool(timeout=behavior.fetch_timeout),
    ]

def register_builtin_tools(registry: ToolRegistry, cwd: Path | str, behavior: BehaviorConfig | None = None) -> None:
    disabled = set((behavior.disabled_tools if behavior else []) or [])
    for tool in builtin_tools(cwd, behavior):
        if tool.spec.name in disabled:
            continue
        registry.register(tool)
