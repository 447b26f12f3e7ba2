"""Tests for the builtin tools: validators, execution and previews."""

import os
import threading
import time
import urllib.request

import pytest

from pynanocoder.cancellation import CancellationToken
from pynanocoder.classify import Outcome, classify
from pynanocoder.errors import ToolExecutionError, TurnCancelled
from pynanocoder.tools.base import ToolContext
from pynanocoder.tools.builtin_tools.bash_tool import BashTool
from pynanocoder.tools.builtin_tools.file_read import ReadFileTool
from pynanocoder.tools.builtin_tools.file_write import WriteFileTool
from pynanocoder.tools.builtin_tools.glob_tool import FindFilesTool
from pynanocoder.tools.builtin_tools.line_edit import DeleteLinesTool, InsertLinesTool, ReplaceLinesTool, splice_lines
from pynanocoder.tools.builtin_tools.grep_tool import SearchFileContentsTool
from pynanocoder.tools.builtin_tools.listdir import ListDirTool
from pynanocoder.tools.builtin_tools.string_replace import StringReplaceTool
from pynanocoder.tools.builtin_tools.webfetch_tool import FetchUrlTool, _CheckedRedirectHandler, private_host_reason

posix_only = pytest.mark.skipif(os.name == "nt", reason="process groups are POSIX only")


@pytest.fixture
def ctx(tmp_path):
    return ToolContext(cwd=str(tmp_path))


class TestFileTools:
    def test_write_then_read(self, tmp_path, ctx):
        w = WriteFileTool(cwd=str(tmp_path))
        args = {"path": "pkg/mod.py", "content": "a = 1\nb = 2\n"}
        assert w.validate(args).valid
        assert w.execute(ctx, args).startswith("Created pkg/mod.py")
        assert w.execute(ctx, args).startswith("Overwrote pkg/mod.py")

        r = ReadFileTool(cwd=str(tmp_path))
        assert r.execute(ctx, {"path": "pkg/mod.py"}) == "   1: a = 1\n   2: b = 2"
        assert r.execute(ctx, {"path": "pkg/mod.py", "start_line": 2}) == "   2: b = 2"

    def test_paths_cannot_escape_cwd(self, tmp_path):
        w = WriteFileTool(cwd=str(tmp_path))
        vr = w.validate({"path": "../outside.txt", "content": "x"})
        assert not vr.valid
        assert "escapes working directory" in vr.error

    def test_read_validation(self, tmp_path):
        (tmp_path / "a.txt").write_text("one\ntwo\n", encoding="utf-8")
        r = ReadFileTool(cwd=str(tmp_path))
        assert r.validate({"path": "missing.txt"}).error == "File not found: missing.txt"
        assert not r.validate({"path": "a.txt", "start_line": 3, "end_line": 2}).valid
        assert not r.validate({"path": "a.txt", "start_line": "1"}).valid
        assert r.validate({"path": "a.txt", "start_line": 1, "end_line": 2}).valid

    def test_write_to_directory_is_rejected(self, tmp_path):
        (tmp_path / "d").mkdir()
        vr = WriteFileTool(cwd=str(tmp_path)).validate({"path": "d", "content": ""})
        assert vr.error == "Path is a directory: d"

    def test_write_preview_renders(self, tmp_path):
        w = WriteFileTool(cwd=str(tmp_path))
        assert w.format({"path": "x.py", "content": "print(1)\n"}) is not None

    def test_read_empty_file_from_line_one(self, tmp_path, ctx):
        (tmp_path / "empty.txt").write_text("", encoding="utf-8")
        r = ReadFileTool(cwd=str(tmp_path))
        assert r.validate({"path": "empty.txt", "start_line": 1}).valid
        assert r.execute(ctx, {"path": "empty.txt", "start_line": 1}) == "empty.txt is empty."


class TestStringReplace:
    def test_unique_match_required(self, tmp_path):
        (tmp_path / "m.py").write_text("x = 1\nx = 1\ny = 2\n", encoding="utf-8")
        tool = StringReplaceTool(cwd=str(tmp_path))
        assert "Found 2 matches" in tool.validate({"path": "m.py", "old_str": "x = 1", "new_str": "z"}).error
        assert "Content not found" in tool.validate({"path": "m.py", "old_str": "q", "new_str": "z"}).error
        assert "cannot be empty" in tool.validate({"path": "m.py", "old_str": "", "new_str": "z"}).error
        assert tool.validate({"path": "m.py", "old_str": "y = 2", "new_str": "y = 3"}).valid

    def test_replace_reports_lines(self, tmp_path, ctx):
        (tmp_path / "m.py").write_text("a\nb\nc\n", encoding="utf-8")
        tool = StringReplaceTool(cwd=str(tmp_path))
        out = tool.execute(ctx, {"path": "m.py", "old_str": "b\n", "new_str": "b1\nb2\n"})
        assert out == "Successfully replaced content at lines 2-3 (now lines 2-4) in m.py."
        assert (tmp_path / "m.py").read_text(encoding="utf-8") == "a\nb1\nb2\nc\n"

    def test_file_changed_after_validation(self, tmp_path, ctx):
        f = tmp_path / "m.py"
        f.write_text("value = 1\n", encoding="utf-8")
        tool = StringReplaceTool(cwd=str(tmp_path))
        args = {"path": "m.py", "old_str": "value = 1", "new_str": "value = 2"}
        assert tool.validate(args).valid
        f.write_text("value = 3\n", encoding="utf-8")
        with pytest.raises(ToolExecutionError, match="Content not found"):
            tool.execute(ctx, args)

    def test_preview_is_a_diff(self, tmp_path):
        tool = StringReplaceTool(cwd=str(tmp_path))
        panel = tool.format({"path": "m.py", "old_str": "a\n", "new_str": "b\n"})
        assert "-a" in panel.renderable.code
        assert "+b" in panel.renderable.code

    def test_non_utf8_file_is_refused_untouched(self, tmp_path, ctx):
        f = tmp_path / "latin.py"
        f.write_bytes(b"caf\xe9 = 1\nvalue = 2\n")
        tool = StringReplaceTool(cwd=str(tmp_path))
        args = {"path": "latin.py", "old_str": "value = 2", "new_str": "value = 3"}
        vr = tool.validate(args)
        assert not vr.valid
        assert "not valid UTF-8" in vr.error
        with pytest.raises(ToolExecutionError):
            tool.execute(ctx, args)
        assert f.read_bytes() == b"caf\xe9 = 1\nvalue = 2\n"

    def test_crlf_line_endings_survive(self, tmp_path, ctx):
        f = tmp_path / "win.py"
        f.write_bytes(b"a = 1\r\nvalue = 2\r\n")
        tool = StringReplaceTool(cwd=str(tmp_path))
        tool.execute(ctx, {"path": "win.py", "old_str": "value = 2", "new_str": "value = 3"})
        assert f.read_bytes() == b"a = 1\r\nvalue = 3\r\n"


class TestSearchTools:
    @pytest.fixture
    def tree(self, tmp_path):
        (tmp_path / "src").mkdir()
        (tmp_path / "src" / "app.py").write_text("def main():\n    return 'Hello'\n", encoding="utf-8")
        (tmp_path / "src" / "util.py").write_text("HELPER = True\n", encoding="utf-8")
        (tmp_path / ".git").mkdir()
        (tmp_path / ".git" / "config").write_text("hello = git\n", encoding="utf-8")
        return tmp_path

    def test_list_directory(self, tree, ctx):
        tool = ListDirTool(cwd=str(tree))
        assert tool.execute(ctx, {"path": "src"}).splitlines() == ["src/app.py", "src/util.py"]
        assert ".git/config" not in tool.execute(ctx, {"recursive": True})
        assert tool.validate({"path": "src/app.py"}).error == "Not a directory: src/app.py"

    def test_find_files(self, tree, ctx):
        tool = FindFilesTool(cwd=str(tree))
        assert tool.execute(ctx, {"pattern": "**/*.py"}).splitlines() == ["src/app.py", "src/util.py"]
        assert tool.execute(ctx, {"pattern": "*.rs"}) == "(no matches)"
        assert not tool.validate({"pattern": "../*"}).valid
        assert not tool.validate({"pattern": "/etc/*"}).valid

    def test_search_file_contents(self, tree, ctx):
        tool = SearchFileContentsTool(cwd=str(tree))
        out = tool.execute(ctx, {"pattern": "hello"})
        assert out == "src/app.py:2:     return 'Hello'"
        assert tool.execute(ctx, {"pattern": "hello", "case_sensitive": True}) == "(no matches)"
        assert tool.execute(ctx, {"pattern": "HELPER", "include": "*.py"}).startswith("src/util.py:1:")

    def test_search_rejects_bad_regex(self, tree):
        vr = SearchFileContentsTool(cwd=str(tree)).validate({"pattern": "("})
        assert vr.error.startswith("Invalid regex")

    def test_search_stops_on_cancel(self, tree):
        token = CancellationToken()
        token.cancel()
        with pytest.raises(TurnCancelled):
            SearchFileContentsTool(cwd=str(tree)).execute(ToolContext(cwd=str(tree), token=token), {"pattern": "x"})


class TestFetchUrl:
    @pytest.mark.parametrize(
        "url",
        [
            "ftp://example.com/file",
            "file:///etc/passwd",
            "http://localhost:8080/",
            "http://127.0.0.1/",
            "http://10.0.0.5/admin",
            "http://192.168.1.1/",
            "http://169.254.169.254/latest/meta-data/",
            "http://[::1]/",
            "http://printer.local/",
            "https:///no-host",
        ],
    )
    def test_rejected_urls(self, url):
        assert not FetchUrlTool().validate({"url": url}).valid

    def test_public_url_is_allowed(self):
        assert FetchUrlTool().validate({"url": "https://example.com/docs"}).valid
        assert private_host_reason("example.com") is None
        assert private_host_reason("8.8.8.8") is None


class TestBash:
    @pytest.mark.parametrize(
        "command",
        [
            "rm -rf /",
            "rm -rf ~",
            "sudo rm -fr / --no-preserve-root",
            ":(){ :|:& };:",
            "mkfs.ext4 /dev/sda1",
            "dd if=/dev/zero of=/dev/sda bs=1M",
            "chmod -R 777 /",
            "shutdown -h now",
        ],
    )
    def test_denylist(self, command):
        vr = BashTool().validate({"command": command})
        assert not vr.valid
        assert vr.error.startswith("Command blocked")

    @pytest.mark.parametrize("command", ["ls -la", "rm -rf ./build", "rm -rf /tmp/scratch", "pytest -q"])
    def test_ordinary_commands_pass(self, command):
        assert BashTool().validate({"command": command}).valid

    def test_empty_command(self):
        assert BashTool().validate({"command": "   "}).error == "Empty command."

    def test_extra_denylist(self):
        tool = BashTool(denylist=[r"\bgit\s+push\b"])
        assert not tool.validate({"command": "git push origin main"}).valid
        assert tool.validate({"command": "git status"}).valid

    @posix_only
    def test_output_format(self, ctx):
        out = BashTool().execute(ctx, {"command": "echo hi; echo oops 1>&2; exit 3"})
        assert out.startswith("STDOUT:\n") and "hi\n" in out
        assert "STDERR:\n" in out and "oops" in out
        assert out.endswith("EXIT_CODE: 3")
        assert classify(out) is Outcome.FAILURE

    @posix_only
    def test_runs_in_cwd(self, tmp_path, ctx):
        (tmp_path / "marker.txt").write_text("", encoding="utf-8")
        out = BashTool().execute(ctx, {"command": "ls"})
        assert "marker.txt" in out

    @posix_only
    def test_timeout_kills_command(self, ctx):
        out = BashTool(timeout=1).execute(ctx, {"command": "sleep 20"})
        assert "TIMEOUT:" in out
        assert classify(out) is Outcome.FAILURE

    @posix_only
    def test_cancel_kills_command(self, tmp_path):
        token = CancellationToken()
        ctx = ToolContext(cwd=str(tmp_path), token=token)
        timer = threading.Timer(0.3, token.cancel)
        timer.start()
        t0 = time.monotonic()
        try:
            with pytest.raises(TurnCancelled):
                BashTool().execute(ctx, {"command": "sleep 20"})
        finally:
            timer.cancel()
        assert time.monotonic() - t0 < 10


class TestLineEdits:
    @pytest.fixture
    def src(self, tmp_path):
        f = tmp_path / "m.py"
        f.write_text("one\ntwo\nthree\n", encoding="utf-8")
        return f

    def test_insert_lines(self, tmp_path, src, ctx):
        tool = InsertLinesTool(cwd=str(tmp_path))
        out = tool.execute(ctx, {"path": "m.py", "line_number": 2, "content": "a\nb"})
        assert out.startswith("Successfully inserted 2 lines at line 2 in m.py.")
        assert "   3: b" in out
        assert src.read_text(encoding="utf-8") == "one\na\nb\ntwo\nthree\n"

    def test_insert_can_append(self, tmp_path, src, ctx):
        tool = InsertLinesTool(cwd=str(tmp_path))
        assert tool.validate({"path": "m.py", "line_number": 4, "content": "four"}).valid
        tool.execute(ctx, {"path": "m.py", "line_number": 4, "content": "four"})
        assert src.read_text(encoding="utf-8") == "one\ntwo\nthree\nfour\n"

    def test_replace_range(self, tmp_path, src, ctx):
        tool = ReplaceLinesTool(cwd=str(tmp_path))
        out = tool.execute(ctx, {"path": "m.py", "line_number": 1, "end_line": 2, "content": "uno"})
        assert out.startswith("Successfully replaced lines 1-2 with 1 line in m.py.")
        assert src.read_text(encoding="utf-8") == "uno\nthree\n"

    def test_delete_single_line(self, tmp_path, src, ctx):
        tool = DeleteLinesTool(cwd=str(tmp_path))
        out = tool.execute(ctx, {"path": "m.py", "line_number": 2})
        assert out.startswith("Successfully deleted line 2 from m.py.")
        assert src.read_text(encoding="utf-8") == "one\nthree\n"

    @pytest.mark.parametrize(
        "tool_cls,args,error",
        [
            (InsertLinesTool, {"line_number": 5, "content": "x"}, "Line number 5 is out of range (file has 3 lines)"),
            (InsertLinesTool, {"line_number": 0, "content": "x"}, "Invalid line_number: 0. Must be a positive integer."),
            (ReplaceLinesTool, {"line_number": 4, "content": "x"}, "Line number 4 is out of range (file has 3 lines)"),
            (ReplaceLinesTool, {"line_number": 2, "end_line": 9, "content": "x"}, "End line 9 is out of range (file has 3 lines)"),
            (DeleteLinesTool, {"line_number": 3, "end_line": 2}, "end_line (2) cannot be less than line_number (3)."),
        ],
    )
    def test_bounds_are_validated(self, tmp_path, src, tool_cls, args, error):
        vr = tool_cls(cwd=str(tmp_path)).validate({"path": "m.py", **args})
        assert vr.error == error

    def test_bounds_rechecked_at_execute(self, tmp_path, src, ctx):
        tool = DeleteLinesTool(cwd=str(tmp_path))
        args = {"path": "m.py", "line_number": 3}
        assert tool.validate(args).valid
        src.write_text("only\n", encoding="utf-8")
        with pytest.raises(ToolExecutionError, match="out of range"):
            tool.execute(ctx, args)

    def test_preview_is_a_diff(self, tmp_path, src):
        panel = ReplaceLinesTool(cwd=str(tmp_path)).format({"path": "m.py", "line_number": 2, "content": "TWO"})
        assert "-two" in panel.renderable.code
        assert "+TWO" in panel.renderable.code
        assert src.read_text(encoding="utf-8") == "one\ntwo\nthree\n"

    def test_line_endings_and_missing_final_newline(self):
        assert splice_lines("a\r\nb\r\n", 2, 1, "B") == "a\r\nB\r\n"
        assert splice_lines("a\nb", 3, 0, "c") == "a\nb\nc"
        assert splice_lines("a\nb", 2, 1, None) == "a"
        assert splice_lines("", 1, 0, "x") == "x\n"

    def test_non_utf8_file_is_refused(self, tmp_path):
        (tmp_path / "latin.txt").write_bytes(b"caf\xe9\n")
        vr = DeleteLinesTool(cwd=str(tmp_path)).validate({"path": "latin.txt", "line_number": 1})
        assert "not valid UTF-8" in vr.error


class TestFetchRedirects:
    def _redirect(self, newurl):
        req = urllib.request.Request("https://example.com/start")
        return _CheckedRedirectHandler().redirect_request(req, None, 302, "Found", {}, newurl)

    @pytest.mark.parametrize("target", ["http://127.0.0.1/admin", "http://169.254.169.254/latest/", "http://localhost:8080/"])
    def test_redirect_to_private_host_is_blocked(self, target):
        with pytest.raises(ToolExecutionError, match="Redirect blocked"):
            self._redirect(target)

    def test_redirect_to_public_host_is_followed(self):
        new_req = self._redirect("https://www.example.org/docs")
        assert new_req.full_url == "https://www.example.org/docs"
