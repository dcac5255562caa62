"""
The built-in tool set: shell execution, file read/write/edit, directory
listing, and file-name / content search.

Every tool resolves its path arguments through a ``Workspace``.  Blocking
filesystem work runs in a worker thread so the dispatcher's deadline and
cancellation apply to it.  Concurrent tools touching the same path are
last-write-wins; there is no locking beyond the single file operation.
"""

from __future__ import annotations

import asyncio
import fnmatch
import os
import re
from pathlib import Path

from aicli.tools.base import Tool, ToolRisk
from aicli.tools.registry import ToolRegistry
from aicli.tools.shell import MAX_OUTPUT_BYTES, run_shell
from aicli.tools.workspace import Workspace
from aicli.types import ErrorCode, ToolResult

SKIP_DIRS = {"node_modules", "target", "__pycache__"}
MAX_READ_BYTES = 10 * 1024 * 1024
MAX_RESULT_CHARS = 100_000
MAX_LIST_ENTRIES = 1000
MAX_FILE_MATCHES = 500
DEFAULT_CONTENT_MATCHES = 100


def truncate(text: str, limit: int = MAX_RESULT_CHARS) -> tuple[str, bool]:
    if len(text) <= limit:
        return text, False
    return text[:limit] + f"\n[output truncated: {len(text) - limit} more characters]", True


def format_size(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size / (1024 * 1024):.1f} MB"


def _walk(base: Path):
    """Yield files under *base*, skipping hidden and vendored directories."""
    for dirpath, dirnames, filenames in os.walk(base):
        dirnames[:] = sorted(
            d for d in dirnames if not d.startswith(".") and d not in SKIP_DIRS
        )
        for name in sorted(filenames):
            yield Path(dirpath) / name


class WorkspaceTool(Tool):
    def __init__(self, workspace: Workspace):
        self.workspace = workspace

    @property
    def path_fields(self) -> list[str]:
        return ["path"]


# ---------------------------------------------------------------------------
# Shell
# ---------------------------------------------------------------------------


class ExecuteCommandTool(WorkspaceTool):
    def __init__(
        self,
        workspace: Workspace,
        timeout: float = 30,
        max_output_bytes: int = MAX_OUTPUT_BYTES,
    ):
        super().__init__(workspace)
        self.timeout = timeout
        self.max_output_bytes = max_output_bytes

    @property
    def name(self) -> str:
        return "execute_command"

    @property
    def description(self) -> str:
        return (
            "Execute a shell command on the system. Use this to run any "
            "command-line operations."
        )

    @property
    def parameters(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "command": {"type": "string", "description": "The command to execute"},
                "working_dir": {
                    "type": "string",
                    "description": "Working directory for the command (optional)",
                },
                "timeout": {
                    "type": "integer",
                    "minimum": 1,
                    "maximum": 600,
                    "description": "Timeout in seconds (optional)",
                },
            },
            "required": ["command"],
        }

    @property
    def risk_level(self) -> ToolRisk:
        return ToolRisk.SHELL

    @property
    def path_fields(self) -> list[str]:
        return ["working_dir"]

    def time_budget(self, arguments: dict) -> float | None:
        # Leave room for terminating the child after its own timeout.
        return float(arguments.get("timeout") or self.timeout) + 10

    async def execute(self, **kwargs) -> ToolResult:
        command = kwargs["command"]
        timeout = kwargs.get("timeout") or self.timeout
        cwd = self.workspace.resolve(kwargs.get("working_dir"))
        if not cwd.is_dir():
            return ToolResult(
                success=False,
                content="",
                error=f"Working directory does not exist: {kwargs.get('working_dir')}",
                error_code=ErrorCode.NOT_FOUND,
            )

        res = await run_shell(
            command,
            cwd=str(cwd),
            timeout=timeout,
            max_output_bytes=self.max_output_bytes,
        )
        metadata = {
            "exit_code": res["exit_code"],
            "duration_ms": res["duration_ms"],
        }
        if res.get("timed_out"):
            return ToolResult(
                success=False,
                content="",
                error=f"Command timed out after {timeout}s: {command}",
                error_code=ErrorCode.TIMEOUT,
                metadata=metadata,
            )

        output = res["stdout"]
        if res["stderr"]:
            if output:
                output += "\n"
            output += "[stderr]\n" + res["stderr"]
        if res.get("truncated"):
            output += "\n[output truncated]"
            metadata["truncated"] = True
        if not output:
            output = f"Command completed with exit code: {res['exit_code']}"

        if res["exit_code"] != 0:
            return ToolResult(
                success=False,
                content=output,
                error=f"Command exited with code {res['exit_code']}\n{output}",
                error_code=ErrorCode.EXECUTION_FAILED,
                metadata=metadata,
            )
        return ToolResult(success=True, content=output, metadata=metadata)


# ---------------------------------------------------------------------------
# Files
# ---------------------------------------------------------------------------


class ReadFileTool(WorkspaceTool):
    @property
    def name(self) -> str:
        return "read_file"

    @property
    def description(self) -> str:
        return (
            "Read the contents of a file. Lines are numbered. Use offset and "
            "limit to read part of a large file."
        )

    @property
    def parameters(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "Path to the file to read"},
                "offset": {
                    "type": "integer",
                    "minimum": 1,
                    "description": "First line to return, 1-based (optional)",
                },
                "limit": {
                    "type": "integer",
                    "minimum": 1,
                    "description": "Maximum number of lines to return (optional)",
                },
            },
            "required": ["path"],
        }

    async def execute(self, **kwargs) -> ToolResult:
        path = self.workspace.resolve(kwargs["path"])
        offset = kwargs.get("offset") or 1
        limit = kwargs.get("limit")
        return await asyncio.to_thread(self._read, path, offset, limit)

    def _read(self, path: Path, offset: int, limit: int | None) -> ToolResult:
        size = path.stat().st_size
        if size > MAX_READ_BYTES:
            return ToolResult(
                success=False,
                content="",
                error=f"File is too large to read ({format_size(size)})",
                error_code=ErrorCode.EXECUTION_FAILED,
            )
        lines = path.read_text(encoding="utf-8", errors="replace").splitlines()
        total = len(lines)
        start = offset - 1
        end = total if limit is None else min(total, start + limit)
        selected = lines[start:end]

        if not selected:
            content = "(empty file)" if total == 0 else f"(no lines at offset {offset}; file has {total} lines)"
        else:
            content = "\n".join(
                f"{i:4} │ {line}" for i, line in enumerate(selected, start=offset)
            )
        content, truncated = truncate(content)
        return ToolResult(
            success=True,
            content=content,
            metadata={"total_lines": total, "truncated": truncated},
        )


class WriteFileTool(WorkspaceTool):
    @property
    def name(self) -> str:
        return "write_file"

    @property
    def description(self) -> str:
        return "Write content to a file, creating it if it doesn't exist"

    @property
    def parameters(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "Path to the file to write"},
                "content": {"type": "string", "description": "Content to write to the file"},
            },
            "required": ["path", "content"],
        }

    @property
    def risk_level(self) -> ToolRisk:
        return ToolRisk.WRITE

    async def execute(self, **kwargs) -> ToolResult:
        path = self.workspace.resolve(kwargs["path"])
        content = kwargs["content"]
        written = await asyncio.to_thread(self._write, path, content)
        return ToolResult(
            success=True,
            content=f"Successfully wrote {written} bytes to {self.workspace.display(path)}",
            metadata={"bytes": written},
        )

    @staticmethod
    def _write(path: Path, content: str) -> int:
        path.parent.mkdir(parents=True, exist_ok=True)
        data = content.encode("utf-8")
        path.write_bytes(data)
        return len(data)


class EditFileTool(WorkspaceTool):
    @property
    def name(self) -> str:
        return "edit_file"

    @property
    def description(self) -> str:
        return (
            "Edit a file by replacing specific text. Every occurrence of "
            "old_text is replaced; pass expected_count to guard against "
            "replacing more than intended."
        )

    @property
    def parameters(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "Path to the file to edit"},
                "old_text": {
                    "type": "string",
                    "minLength": 1,
                    "description": "Text to find and replace",
                },
                "new_text": {"type": "string", "description": "Text to replace with"},
                "expected_count": {
                    "type": "integer",
                    "minimum": 1,
                    "description": "Number of occurrences expected (optional)",
                },
            },
            "required": ["path", "old_text", "new_text"],
        }

    @property
    def risk_level(self) -> ToolRisk:
        return ToolRisk.WRITE

    async def execute(self, **kwargs) -> ToolResult:
        path = self.workspace.resolve(kwargs["path"])
        return await asyncio.to_thread(
            self._edit,
            path,
            kwargs["old_text"],
            kwargs["new_text"],
            kwargs.get("expected_count"),
        )

    def _edit(
        self, path: Path, old_text: str, new_text: str, expected: int | None
    ) -> ToolResult:
        shown = self.workspace.display(path)
        content = path.read_text(encoding="utf-8")
        count = content.count(old_text)
        if count == 0:
            return ToolResult(
                success=False,
                content="",
                error=f"Could not find the specified text to replace in {shown}",
                error_code=ErrorCode.NOT_FOUND,
            )
        if expected is not None and count != expected:
            return ToolResult(
                success=False,
                content="",
                error=(
                    f"Expected {expected} occurrence(s) in {shown} but found {count}; "
                    "file left unchanged"
                ),
                error_code=ErrorCode.EXECUTION_FAILED,
            )
        path.write_text(content.replace(old_text, new_text), encoding="utf-8")
        return ToolResult(
            success=True,
            content=f"Successfully edited {shown}. Replaced {count} occurrence(s).",
            metadata={"replacements": count},
        )


# ---------------------------------------------------------------------------
# Listing and search
# ---------------------------------------------------------------------------


class ListDirectoryTool(WorkspaceTool):
    @property
    def name(self) -> str:
        return "list_directory"

    @property
    def description(self) -> str:
        return "List files and directories in a path"

    @property
    def parameters(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "path": {
                    "type": "string",
                    "description": "Path to the directory to list (default: current directory)",
                },
            },
        }

    async def execute(self, **kwargs) -> ToolResult:
        path = self.workspace.resolve(kwargs.get("path"))
        return await asyncio.to_thread(self._list, path, kwargs.get("path") or ".")

    def _list(self, path: Path, shown: str) -> ToolResult:
        dirs: list[str] = []
        files: list[tuple[str, int]] = []
        with os.scandir(path) as it:
            for entry in it:
                if entry.is_dir():
                    dirs.append(entry.name)
                else:
                    try:
                        size = entry.stat().st_size
                    except OSError:
                        size = 0
                    files.append((entry.name, size))
        dirs.sort()
        files.sort()

        lines = [f"📁 {d}/" for d in dirs]
        lines += [f"📄 {name} ({format_size(size)})" for name, size in files]
        total = len(lines)
        if total > MAX_LIST_ENTRIES:
            lines = lines[:MAX_LIST_ENTRIES]
            lines.append(f"... and {total - MAX_LIST_ENTRIES} more entries")
        if not lines:
            lines = ["(empty directory)"]

        return ToolResult(
            success=True,
            content=f"Contents of {shown}:\n\n" + "\n".join(lines) + "\n",
            data={"dirs": dirs, "files": [name for name, _ in files]},
        )


class SearchFilesTool(WorkspaceTool):
    @property
    def name(self) -> str:
        return "search_files"

    @property
    def description(self) -> str:
        return "Search for files matching a pattern"

    @property
    def parameters(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "pattern": {
                    "type": "string",
                    "description": "Glob pattern to match (e.g., '*.rs', '**/*.txt')",
                },
                "path": {"type": "string", "description": "Starting directory for search"},
            },
            "required": ["pattern"],
        }

    async def execute(self, **kwargs) -> ToolResult:
        base = self.workspace.resolve(kwargs.get("path"))
        return await asyncio.to_thread(self._search, base, kwargs["pattern"], kwargs.get("path") or ".")

    def _search(self, base: Path, pattern: str, shown: str) -> ToolResult:
        if not base.is_dir():
            raise FileNotFoundError(f"No such directory: {shown}")
        # A pattern with a separator matches the relative path, otherwise the name.
        by_path = "/" in pattern
        if by_path and pattern.startswith("**/"):
            pattern_alt = pattern[3:]
        else:
            pattern_alt = None

        matches: list[str] = []
        truncated = False
        for file in _walk(base):
            rel = file.relative_to(base).as_posix()
            if by_path:
                hit = fnmatch.fnmatch(rel, pattern) or (
                    pattern_alt is not None and fnmatch.fnmatch(rel, pattern_alt)
                )
            else:
                hit = fnmatch.fnmatch(file.name, pattern)
            if hit:
                if len(matches) >= MAX_FILE_MATCHES:
                    truncated = True
                    break
                matches.append(self.workspace.display(file))

        if not matches:
            return ToolResult(
                success=True,
                content=f"No files matching '{pattern}' found in {shown}",
                data=[],
            )
        content = f"Found {len(matches)} files matching '{pattern}':\n" + "\n".join(matches)
        if truncated:
            content += f"\n(results truncated at {MAX_FILE_MATCHES})"
        return ToolResult(success=True, content=content, data=matches)


class SearchContentTool(WorkspaceTool):
    @property
    def name(self) -> str:
        return "search_content"

    @property
    def description(self) -> str:
        return "Search for text content in files"

    @property
    def parameters(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "Text or regex pattern to search for"},
                "path": {"type": "string", "description": "Directory to search in"},
                "file_pattern": {
                    "type": "string",
                    "description": "File pattern to filter (e.g., '*.rs')",
                },
                "max_results": {
                    "type": "integer",
                    "minimum": 1,
                    "maximum": 1000,
                    "description": f"Maximum matches to return (default {DEFAULT_CONTENT_MATCHES})",
                },
            },
            "required": ["query"],
        }

    async def execute(self, **kwargs) -> ToolResult:
        query = kwargs["query"]
        try:
            regex = re.compile(query)
        except re.error as e:
            return ToolResult(
                success=False,
                content="",
                error=f"Invalid regular expression {query!r}: {e}",
                error_code=ErrorCode.INVALID_ARGUMENTS,
            )
        base = self.workspace.resolve(kwargs.get("path"))
        return await asyncio.to_thread(
            self._search,
            base,
            regex,
            kwargs.get("file_pattern"),
            kwargs.get("max_results") or DEFAULT_CONTENT_MATCHES,
            kwargs.get("path") or ".",
        )

    def _search(
        self,
        base: Path,
        regex: re.Pattern,
        file_pattern: str | None,
        limit: int,
        shown: str,
    ) -> ToolResult:
        if not base.exists():
            raise FileNotFoundError(f"No such directory: {shown}")
        files = [base] if base.is_file() else _walk(base)

        results: list[str] = []
        truncated = False
        for file in files:
            if file_pattern and not fnmatch.fnmatch(file.name, file_pattern):
                continue
            try:
                text = file.read_text(encoding="utf-8")
            except (UnicodeDecodeError, OSError):
                continue
            for lineno, line in enumerate(text.splitlines(), start=1):
                if regex.search(line):
                    if len(results) >= limit:
                        truncated = True
                        break
                    results.append(f"{self.workspace.display(file)}:{lineno}: {line.strip()}")
            if truncated:
                break

        if not results:
            return ToolResult(
                success=True,
                content=f"No matches for '{regex.pattern}' found",
                data={"count": 0, "truncated": False},
            )
        content = f"Found {len(results)} matches:\n\n" + "\n".join(results)
        if truncated:
            content += f"\n(results truncated at {limit})"
        content, _ = truncate(content)
        return ToolResult(success=True, content=content, data={"count": len(results), "truncated": truncated})


def builtin_tools(
    workspace: Workspace,
    *,
    shell_timeout: float = 30,
    max_output_bytes: int = MAX_OUTPUT_BYTES,
) -> list[Tool]:
    return [
        ExecuteCommandTool(workspace, timeout=shell_timeout, max_output_bytes=max_output_bytes),
        ReadFileTool(workspace),
        WriteFileTool(workspace),
        EditFileTool(workspace),
        ListDirectoryTool(workspace),
        SearchFilesTool(workspace),
        SearchContentTool(workspace),
    ]


def register_builtin_tools(registry: ToolRegistry, workspace: Workspace, **kwargs) -> ToolRegistry:
    for tool in builtin_tools(workspace, **kwargs):
        registry.register(tool)
    return registry
