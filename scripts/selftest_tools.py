from __future__ import annotations
import tempfile
from pathlib import Path

from pynanocoder.controller import InvocationController
from pynanocoder.cancellation import CancellationCoordinator
from pynanocoder.modes import ModeStore
from pynanocoder.session.models import ToolCallRequest
from pynanocoder.tools.approval import AutoApprover
from pynanocoder.tools.builtin import register_builtin_tools
from pynanocoder.tools.registry import ToolRegistry

def main():
    with tempfile.TemporaryDirectory() as td:
        cwd = Path(td)
        reg = ToolRegistry()
        register_builtin_tools(reg, cwd)
        ctl = InvocationController(tools=reg, approver=AutoApprover(), cwd=str(cwd), mode_store=ModeStore("auto-accept"))
        coord = CancellationCoordinator()

        calls = [
            ToolCallRequest("1", "write_file", {"path": "a.txt", "content": "hello\nworld\n"}),
            ToolCallRequest("2", "read_file", {"path": "a.txt"}),
            ToolCallRequest("3", "search_file_contents", {"pattern": "world"}),
            ToolCallRequest("4", "find_files", {"pattern": "*.txt"}),
            ToolCallRequest("5", "list_directory", {"path": "."}),
            ToolCallRequest("6", "string_replace", {"path": "a.txt", "old_str": "world", "new_str": "WORLD"}),
            ToolCallRequest("7", "read_file", {"path": "a.txt"}),
            ToolCallRequest("8", "insert_lines", {"path": "a.txt", "line_number": 1, "content": "# header"}),
            ToolCallRequest("9", "delete_lines", {"path": "a.txt", "line_number": 2}),
            ToolCallRequest("10", "execute_bash", {"command": "cat a.txt && false"}),
            ToolCallRequest("11", "no_such_tool", {}),
        ]
        token = coord.new_turn()
        for r in ctl.run_turn(calls, token):
            print(f"--- {r.id} [{r.kind.value}]")
            print(r.content.strip())
        coord.end_turn(token)

if __name__ == "__main__":
    main()
