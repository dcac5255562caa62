"""Working-directory scope for file and shell tools."""

from __future__ import annotations

import os
from pathlib import Path

from aicli.types import PolicyDecision


class PathPolicyError(Exception):
    """A path argument resolved outside the working directory."""

    def __init__(self, path: str, root: Path):
        super().__init__(f"Path {path!r} resolves outside the working directory {root}")
        self.path = path
        self.root = root


class Workspace:
    """
    Resolves tool path arguments against a working directory.

    Relative paths are joined to ``root``.  After symlink resolution a path
    must stay inside ``root`` unless ``allow_outside`` is set; absolute paths
    and ``..`` escapes are rejected otherwise.

    Parameters
    ----------
    root:
        The working directory.  Defaults to the process cwd.
    allow_outside:
        Permit paths anywhere on the filesystem.
    """

    def __init__(self, root: str | os.PathLike | None = None, allow_outside: bool = False):
        self.root = Path(root or os.getcwd()).expanduser().resolve()
        self.allow_outside = allow_outside

    def resolve(self, path: str | None, default: str = ".") -> Path:
        raw = path if path not in (None, "") else default
        candidate = Path(raw).expanduser()
        if not candidate.is_absolute():
            candidate = self.root / candidate
        resolved = candidate.resolve()
        if not self.allow_outside and not self.contains(resolved):
            raise PathPolicyError(raw, self.root)
        return resolved

    def contains(self, path: Path) -> bool:
        return path == self.root or self.root in path.parents

    def check(self, path: str | None) -> PolicyDecision:
        try:
            self.resolve(path)
        except PathPolicyError as e:
            return PolicyDecision(False, f"path_outside_workspace:{e.path}")
        return PolicyDecision(True, "ok")

    def display(self, path: Path) -> str:
        """Render *path* relative to the root when it is inside it."""
        if self.contains(path):
            rel = path.relative_to(self.root)
            return str(rel) if str(rel) != "." else "."
        return str(path)
