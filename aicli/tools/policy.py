"""
Tool-call policy and audit trail.

``PolicyEngine.check`` decides whether a validated call may run: the tool's
risk must be at or below the configured ceiling and no string argument may
match a blocked pattern.  Calls that did run are recorded by an optional
``AuditTrail`` as JSON lines, with secret arguments and configured patterns
scrubbed.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Iterator

from aicli.tools.base import Tool, ToolRisk
from aicli.types import PolicyDecision, ToolResult

logger = logging.getLogger(__name__)

REDACTED = "***REDACTED***"
AUDIT_OUTPUT_CHARS = 2000


def _strings(value: object) -> Iterator[str]:
    if isinstance(value, str):
        yield value
    elif isinstance(value, dict):
        for item in value.values():
            yield from _strings(item)
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield from _strings(item)


class AuditTrail:
    """
    Append-only JSONL log of executed tool calls.

    Lines are written through a ``RotatingFileHandler``: once the file would
    grow past *max_bytes* it becomes ``<name>.1``, older generations shift
    up, and at most *backup_count* of them are kept.  ``max_bytes=0``
    disables rotation.
    """

    def __init__(
        self,
        path: str | Path,
        *,
        max_bytes: int = 10 * 1024 * 1024,
        backup_count: int = 5,
        redaction_patterns: list[str] | None = None,
    ):
        self.path = Path(path).expanduser()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._patterns = [re.compile(p) for p in (redaction_patterns or [])]
        self._handler = RotatingFileHandler(
            self.path,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
            delay=True,
        )
        self._handler.setFormatter(logging.Formatter("%(message)s"))

    def scrub(self, text: str) -> str:
        for rx in self._patterns:
            text = rx.sub(REDACTED, text)
        return text

    def redact_arguments(self, tool: Tool, arguments: dict) -> dict:
        secret = set(tool.secret_fields)
        return {
            key: REDACTED if key in secret else self._scrub_value(value)
            for key, value in arguments.items()
        }

    def _scrub_value(self, value: object) -> object:
        if isinstance(value, str):
            return self.scrub(value)
        if isinstance(value, dict):
            return {k: self._scrub_value(v) for k, v in value.items()}
        if isinstance(value, list):
            return [self._scrub_value(v) for v in value]
        return value

    def record(
        self,
        *,
        session_id: str,
        tool_call_id: str,
        tool: Tool,
        arguments: dict,
        result: ToolResult,
        duration_ms: int,
    ) -> None:
        entry = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "session_id": session_id,
            "tool_call_id": tool_call_id,
            "tool_name": tool.name,
            "risk": tool.risk_level.name,
            "args": self.redact_arguments(tool, arguments),
            "success": result.success,
            "error_code": result.error_code,
            "duration_ms": duration_ms,
            "output": self.scrub(result.to_message_content()[:AUDIT_OUTPUT_CHARS]),
        }
        line = json.dumps(entry, sort_keys=True, default=str)
        self._handler.handle(logging.makeLogRecord({"msg": line, "levelno": logging.INFO}))

    def close(self) -> None:
        self._handler.close()


class PolicyEngine:
    """
    Parameters
    ----------
    max_risk:
        Highest ``ToolRisk`` a call may carry.
    blocked_patterns:
        Regular expressions searched in every string argument, nested
        values included.  Any match rejects the call.
    audit:
        Where executed calls are recorded.  ``None`` disables auditing.
    """

    def __init__(
        self,
        *,
        max_risk: ToolRisk = ToolRisk.SHELL,
        blocked_patterns: list[str] | None = None,
        audit: AuditTrail | None = None,
    ):
        self.max_risk = max_risk
        self.blocked_patterns = list(blocked_patterns or [])
        self._blocked = [re.compile(p) for p in self.blocked_patterns]
        self.audit = audit

    def check(self, tool: Tool, arguments: dict) -> PolicyDecision:
        if tool.risk_level > self.max_risk:
            return PolicyDecision(
                False, f"risk_too_high:{tool.risk_level.name}>{self.max_risk.name}"
            )
        for value in _strings(arguments):
            for rx in self._blocked:
                if rx.search(value):
                    logger.info("POLICY: %s blocked by pattern %r", tool.name, rx.pattern)
                    return PolicyDecision(False, "blocked_pattern")
        return PolicyDecision(True, "ok")
