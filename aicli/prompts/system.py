"""System prompt builder."""

from __future__ import annotations

import os
import platform

from aicli.tools.base import Tool


def build_system_prompt(
    tools: list[Tool] | None = None,
    cwd: str | None = None,
    os_name: str | None = None,
    extra_sections: list[str] | None = None,
) -> str:
    """
    Build the system prompt for the orchestrator.

    Assembles the environment, working rules and tool list into a single
    prompt string.
    """
    sections: list[str] = []

    sections.append(
        "You are an AI assistant with direct access to the user's computer through tools.\n"
        "You can execute commands, read/write files, and perform system operations.\n"
        "\n"
        f"Current working directory: {cwd or os.getcwd()}\n"
        f"Operating System: {os_name or platform.system().lower()}"
    )

    sections.append(RULES_SECTION)

    if tools:
        tool_lines = [f"- {t.name}: {t.description}" for t in tools]
        sections.append("Available tools:\n" + "\n".join(tool_lines))

    if extra_sections:
        sections.extend(extra_sections)

    sections.append("Be efficient, precise, and helpful.")
    return "\n\n".join(sections)


RULES_SECTION = """IMPORTANT RULES:
1. Execute tasks IMMEDIATELY without asking for confirmation
2. Use tools proactively to accomplish tasks
3. When writing code, write complete, working solutions
4. If a task requires multiple steps, execute them all
5. Report results clearly and concisely
6. If an error occurs, try to fix it automatically
7. File paths are relative to the working directory; paths outside it may be blocked by policy
8. If a tool call is blocked or fails, read the error and adjust instead of repeating the same call"""
