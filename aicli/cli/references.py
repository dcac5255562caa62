"""
``@path`` file references in chat input.

``explain @src/main.py`` sends "explain" to the model with the contents of
``src/main.py`` attached as a ``FileExcerpt``.  A reference must start a
word, so e-mail addresses are left alone.
"""

from __future__ import annotations

import logging
import re

from aicli.tools.builtin import truncate
from aicli.tools.workspace import PathPolicyError, Workspace
from aicli.types import FileExcerpt

logger = logging.getLogger(__name__)

MAX_REFERENCE_CHARS = 100_000

_REFERENCE_RE = re.compile(r"(?<!\S)@(\S+)")


def parse_references(text: str) -> list[str]:
    """Return the referenced paths in order of appearance, without duplicates."""
    seen: list[str] = []
    for match in _REFERENCE_RE.finditer(text):
        path = match.group(1)
        if path not in seen:
            seen.append(path)
    return seen


def strip_references(text: str) -> str:
    """Remove every ``@path`` token and collapse the leftover whitespace."""
    stripped = _REFERENCE_RE.sub("", text)
    return " ".join(stripped.split())


def read_references(paths: list[str], workspace: Workspace) -> list[FileExcerpt]:
    """
    Read each referenced file through the workspace path policy.

    Unreadable files become excerpts carrying an ``error`` so the model
    sees what was attempted.
    """
    excerpts: list[FileExcerpt] = []
    for path in paths:
        try:
            resolved = workspace.resolve(path)
            text = resolved.read_text(encoding="utf-8", errors="replace")
        except PathPolicyError as e:
            excerpts.append(FileExcerpt(path=path, error=str(e)))
            continue
        except OSError as e:
            excerpts.append(FileExcerpt(path=path, error=e.strerror or str(e)))
            continue
        text, truncated = truncate(text, MAX_REFERENCE_CHARS)
        if truncated:
            logger.info("Reference %s truncated to %d chars", path, MAX_REFERENCE_CHARS)
        excerpts.append(FileExcerpt(path=path, content=text))
    return excerpts


def expand_references(text: str, workspace: Workspace) -> tuple[str, list[FileExcerpt]]:
    """Split chat input into the message text and its attached excerpts."""
    paths = parse_references(text)
    if not paths:
        return text.strip(), []
    return strip_references(text), read_references(paths, workspace)
