"""Tests for the built-in tools."""

import asyncio
import sys

import pytest

from aicli.tools.builtin import (
    MAX_LIST_ENTRIES,
    EditFileTool,
    ExecuteCommandTool,
    ListDirectoryTool,
    ReadFileTool,
    SearchContentTool,
    SearchFilesTool,
    WriteFileTool,
    builtin_tools,
    format_size,
    register_builtin_tools,
    truncate,
)
from aicli.tools.base import ToolRisk
from aicli.tools.registry import ToolRegistry
from aicli.tools.shell import run_shell
from aicli.tools.workspace import PathPolicyError, Workspace
from aicli.types import ErrorCode

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="needs a POSIX shell")


@pytest.fixture
def ws(tmp_path):
    return Workspace(tmp_path)


@pytest.fixture
def project(tmp_path):
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "main.rs").write_text("fn main() {\n    println!(\"hello\");\n}\n")
    (tmp_path / "src" / "lib.rs").write_text("pub fn add(a: i32, b: i32) -> i32 { a + b }\n")
    (tmp_path / "README.md").write_text("# Demo\nhello world\n")
    (tmp_path / "node_modules").mkdir()
    (tmp_path / "node_modules" / "dep.rs").write_text("hello from a dependency\n")
    (tmp_path / ".git").mkdir()
    (tmp_path / ".git" / "config.rs").write_text("hello hidden\n")
    return tmp_path


class TestHelpers:
    def test_truncate_under_limit(self):
        assert truncate("abc", 10) == ("abc", False)

    def test_truncate_over_limit(self):
        text, cut = truncate("x" * 30, 10)
        assert cut is True
        assert text.startswith("x" * 10)
        assert "20 more characters" in text

    def test_format_size(self):
        assert format_size(12) == "12 B"
        assert format_size(2048) == "2.0 KB"
        assert format_size(3 * 1024 * 1024) == "3.0 MB"

    def test_builtin_set(self, ws):
        names = sorted(t.name for t in builtin_tools(ws))
        assert names == [
            "edit_file",
            "execute_command",
            "list_directory",
            "read_file",
            "search_content",
            "search_files",
            "write_file",
        ]

    def test_register_builtin_tools(self, ws):
        reg = register_builtin_tools(ToolRegistry(), ws, shell_timeout=5)
        assert len(reg) == 7
        assert reg.get("execute_command").timeout == 5
        assert reg.get("execute_command").risk_level is ToolRisk.SHELL
        assert reg.get("write_file").risk_level is ToolRisk.WRITE
        assert reg.get("read_file").risk_level is ToolRisk.READ_ONLY


@posix_only
class TestExecuteCommand:
    async def test_stdout_captured(self, ws):
        result = await ExecuteCommandTool(ws).execute(command="echo hello")
        assert result.success is True
        assert result.content == "hello\n"
        assert result.metadata["exit_code"] == 0

    async def test_stderr_section(self, ws):
        result = await ExecuteCommandTool(ws).execute(command="echo out; echo err >&2")
        assert result.success is True
        assert result.content == "out\n\n[stderr]\nerr\n"

    async def test_empty_output_reports_exit_code(self, ws):
        result = await ExecuteCommandTool(ws).execute(command="true")
        assert result.content == "Command completed with exit code: 0"

    async def test_nonzero_exit_is_failure(self, ws):
        result = await ExecuteCommandTool(ws).execute(command="echo nope >&2; exit 3")
        assert result.success is False
        assert result.error_code == ErrorCode.EXECUTION_FAILED
        assert result.error.startswith("Command exited with code 3")
        assert "nope" in result.error

    async def test_runs_in_workspace_root(self, ws, tmp_path):
        result = await ExecuteCommandTool(ws).execute(command="pwd")
        assert result.content.strip() == str(tmp_path.resolve())

    async def test_working_dir(self, ws, tmp_path):
        (tmp_path / "sub").mkdir()
        result = await ExecuteCommandTool(ws).execute(command="pwd", working_dir="sub")
        assert result.content.strip() == str((tmp_path / "sub").resolve())

    async def test_missing_working_dir(self, ws):
        result = await ExecuteCommandTool(ws).execute(command="pwd", working_dir="nope")
        assert result.success is False
        assert result.error_code == ErrorCode.NOT_FOUND

    async def test_working_dir_outside_raises_policy_error(self, ws):
        with pytest.raises(PathPolicyError):
            await ExecuteCommandTool(ws).execute(command="pwd", working_dir="..")

    async def test_timeout(self, ws):
        loop = asyncio.get_running_loop()
        t0 = loop.time()
        result = await ExecuteCommandTool(ws).execute(command="sleep 10", timeout=1)
        assert loop.time() - t0 < 8
        assert result.success is False
        assert result.error_code == ErrorCode.TIMEOUT
        assert result.error == "Command timed out after 1s: sleep 10"

    async def test_output_truncated(self, ws):
        tool = ExecuteCommandTool(ws, max_output_bytes=100)
        result = await tool.execute(command="head -c 1000 /dev/zero | tr '\\0' a")
        assert result.success is True
        assert result.content.startswith("a" * 100)
        assert "[output truncated]" in result.content
        assert result.metadata["truncated"] is True

    def test_time_budget_exceeds_own_timeout(self, ws):
        tool = ExecuteCommandTool(ws, timeout=30)
        assert tool.time_budget({}) == 40
        assert tool.time_budget({"timeout": 5}) == 15

    async def test_run_shell_cancel_kills_child(self, tmp_path):
        task = asyncio.ensure_future(run_shell("sleep 30", cwd=str(tmp_path)))
        await asyncio.sleep(0.2)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task


class TestReadFile:
    async def test_line_numbers(self, ws, project):
        result = await ReadFileTool(ws).execute(path="src/main.rs")
        assert result.success is True
        assert result.content.splitlines()[0] == "   1 │ fn main() {"
        assert result.metadata["total_lines"] == 3

    async def test_offset_and_limit(self, ws, project):
        result = await ReadFileTool(ws).execute(path="src/main.rs", offset=2, limit=1)
        assert result.content == '   2 │     println!("hello");'

    async def test_offset_past_end(self, ws, project):
        result = await ReadFileTool(ws).execute(path="src/main.rs", offset=50)
        assert "file has 3 lines" in result.content

    async def test_empty_file(self, ws, tmp_path):
        (tmp_path / "empty.txt").write_text("")
        result = await ReadFileTool(ws).execute(path="empty.txt")
        assert result.content == "(empty file)"

    async def test_missing_file_raises(self, ws):
        with pytest.raises(FileNotFoundError):
            await ReadFileTool(ws).execute(path="missing.txt")


class TestWriteFile:
    async def test_creates_parents(self, ws, tmp_path):
        result = await WriteFileTool(ws).execute(path="a/b/c.txt", content="héllo")
        assert result.success is True
        assert (tmp_path / "a" / "b" / "c.txt").read_text(encoding="utf-8") == "héllo"
        assert result.metadata["bytes"] == 6
        assert result.content.startswith("Successfully wrote 6 bytes to ")

    async def test_overwrites(self, ws, tmp_path):
        (tmp_path / "f.txt").write_text("old")
        await WriteFileTool(ws).execute(path="f.txt", content="new")
        assert (tmp_path / "f.txt").read_text() == "new"

    async def test_outside_workspace(self, ws):
        with pytest.raises(PathPolicyError):
            await WriteFileTool(ws).execute(path="../escape.txt", content="x")


class TestEditFile:
    async def test_replaces_all_occurrences(self, ws, tmp_path):
        (tmp_path / "f.txt").write_text("a-b-a-b")
        result = await EditFileTool(ws).execute(path="f.txt", old_text="a", new_text="z")
        assert result.success is True
        assert (tmp_path / "f.txt").read_text() == "z-b-z-b"
        assert result.content == "Successfully edited f.txt. Replaced 2 occurrence(s)."
        assert result.metadata["replacements"] == 2

    async def test_text_not_found(self, ws, tmp_path):
        (tmp_path / "f.txt").write_text("abc")
        result = await EditFileTool(ws).execute(path="f.txt", old_text="zzz", new_text="y")
        assert result.success is False
        assert result.error_code == ErrorCode.NOT_FOUND
        assert (tmp_path / "f.txt").read_text() == "abc"

    async def test_expected_count_mismatch_leaves_file(self, ws, tmp_path):
        (tmp_path / "f.txt").write_text("x x x")
        result = await EditFileTool(ws).execute(
            path="f.txt", old_text="x", new_text="y", expected_count=1
        )
        assert result.success is False
        assert result.error_code == ErrorCode.EXECUTION_FAILED
        assert "found 3" in result.error
        assert (tmp_path / "f.txt").read_text() == "x x x"

    async def test_missing_file_raises(self, ws):
        with pytest.raises(FileNotFoundError):
            await EditFileTool(ws).execute(path="nope.txt", old_text="a", new_text="b")


class TestListDirectory:
    async def test_dirs_first_then_files(self, ws, project):
        result = await ListDirectoryTool(ws).execute(path=".")
        lines = result.content.splitlines()
        assert lines[0] == "Contents of .:"
        entries = [line for line in lines[2:] if line]
        assert entries[0].startswith("📁 ")
        assert "📁 src/" in entries
        assert any(e.startswith("📄 README.md (") for e in entries)
        first_file = next(i for i, e in enumerate(entries) if e.startswith("📄"))
        assert all(e.startswith("📄") for e in entries[first_file:])
        assert "src" in result.data["dirs"]
        assert "README.md" in result.data["files"]

    async def test_default_path(self, ws, project):
        result = await ListDirectoryTool(ws).execute()
        assert result.content.startswith("Contents of .:")

    async def test_empty_directory(self, ws, tmp_path):
        (tmp_path / "empty").mkdir()
        result = await ListDirectoryTool(ws).execute(path="empty")
        assert "(empty directory)" in result.content

    async def test_entry_cap(self, ws, tmp_path):
        (tmp_path / "many").mkdir()
        for i in range(MAX_LIST_ENTRIES + 5):
            (tmp_path / "many" / f"f{i:05}").write_text("")
        result = await ListDirectoryTool(ws).execute(path="many")
        assert "... and 5 more entries" in result.content

    async def test_missing_directory_raises(self, ws):
        with pytest.raises(FileNotFoundError):
            await ListDirectoryTool(ws).execute(path="ghost")


class TestSearchFiles:
    async def test_name_glob_recurses_and_skips(self, ws, project):
        result = await SearchFilesTool(ws).execute(pattern="*.rs")
        assert sorted(result.data) == sorted(["src/lib.rs", "src/main.rs"])
        assert result.content.startswith("Found 2 files matching '*.rs':")

    async def test_path_glob(self, ws, project):
        result = await SearchFilesTool(ws).execute(pattern="**/*.md")
        assert result.data == ["README.md"]

    async def test_no_match(self, ws, project):
        result = await SearchFilesTool(ws).execute(pattern="*.py", path="src")
        assert result.success is True
        assert result.content == "No files matching '*.py' found in src"
        assert result.data == []


class TestSearchContent:
    async def test_regex_lines(self, ws, project):
        result = await SearchContentTool(ws).execute(query=r"hel+o")
        assert result.success is True
        assert "README.md:2: hello world" in result.content
        assert "src/main.rs:2: println!(\"hello\");" in result.content
        assert "node_modules" not in result.content
        assert ".git" not in result.content
        assert result.data == {"count": 2, "truncated": False}

    async def test_file_pattern(self, ws, project):
        result = await SearchContentTool(ws).execute(query="hello", file_pattern="*.md")
        assert result.data["count"] == 1

    async def test_max_results(self, ws, tmp_path):
        (tmp_path / "big.txt").write_text("match\n" * 50)
        result = await SearchContentTool(ws).execute(query="match", max_results=10)
        assert result.data == {"count": 10, "truncated": True}
        assert "(results truncated at 10)" in result.content

    async def test_skips_binary(self, ws, tmp_path):
        (tmp_path / "bin.dat").write_bytes(b"\xff\xfe\x00hello\xff")
        (tmp_path / "ok.txt").write_text("hello")
        result = await SearchContentTool(ws).execute(query="hello")
        assert result.data["count"] == 1

    async def test_invalid_regex(self, ws):
        result = await SearchContentTool(ws).execute(query="([")
        assert result.success is False
        assert result.error_code == ErrorCode.INVALID_ARGUMENTS

    async def test_no_matches(self, ws, project):
        result = await SearchContentTool(ws).execute(query="zzz_nothing")
        assert result.content == "No matches for 'zzz_nothing' found"
        assert result.data == {"count": 0, "truncated": False}
