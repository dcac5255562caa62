"""Output formatting utilities for the CLI."""

from __future__ import annotations

import json
from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text

from aicli.llm.types import Message, ModelProfile
from aicli.session.events import (
    EVENT_COMPACTION,
    EVENT_DONE,
    EVENT_ERROR,
    EVENT_ROUND_COMPLETE,
    EVENT_TEXT_DELTA,
    EVENT_TOOL_CALL_RESULT,
    EVENT_TOOL_CALL_STARTED,
    EVENT_WARNING,
    CoreEvent,
)
from aicli.tools.base import Tool, ToolRisk
from aicli.types import FileExcerpt

RISK_COLORS = {
    ToolRisk.READ_ONLY: "green",
    ToolRisk.WRITE: "yellow",
    ToolRisk.DESTRUCTIVE: "red",
    ToolRisk.SHELL: "bold red",
}

ROLE_COLORS = {
    "user": "blue",
    "assistant": "green",
    "tool": "cyan",
    "system": "magenta",
}


def context_bar(fraction: float, width: int = 20) -> Text:
    """A ``[#####-----] 42%`` gauge colored by how full the window is."""
    fraction = min(1.0, max(0.0, fraction))
    filled = round(fraction * width)
    color = "green" if fraction < 0.6 else "yellow" if fraction < 0.85 else "red"
    bar = Text("[")
    bar.append("#" * filled, style=color)
    bar.append("-" * (width - filled), style="dim")
    bar.append(f"] {fraction * 100:.0f}%")
    return bar


class OutputFormatter:
    """Rich-based output formatting for the aicli CLI."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()
        self._streaming = False

    # ------------------------------------------------------------------
    # Turn events
    # ------------------------------------------------------------------

    def render_event(self, event: CoreEvent) -> None:
        """Print one ``CoreEvent`` as it arrives."""
        etype = event.event_type
        p = event.payload

        if etype == EVENT_TEXT_DELTA:
            if not self._streaming:
                self.console.print("[dim]assistant>[/dim] ", end="")
                self._streaming = True
            self.console.print(p["text"], end="", markup=False, highlight=False)
            return

        self._end_stream()

        if etype == EVENT_TOOL_CALL_STARTED:
            args = json.dumps(p.get("arguments", {}), default=str)
            if len(args) > 120:
                args = args[:117] + "..."
            self.console.print(
                f"  [yellow]⚙ {p['tool_name']}[/yellow] [dim]{args}[/dim]", highlight=False
            )
        elif etype == EVENT_TOOL_CALL_RESULT:
            self.format_tool_result(p)
        elif etype == EVENT_COMPACTION:
            self.console.print(
                f"  [magenta]Context compacted:[/magenta] {p['messages_replaced']} messages "
                f"summarised, {p['tokens_before']} → {p['tokens_after']} tokens"
            )
        elif etype == EVENT_WARNING:
            self.console.print(f"  [yellow]Warning:[/yellow] {p['message']}", highlight=False)
        elif etype == EVENT_ERROR:
            self.console.print(f"  [red]Error:[/red] {p['message']}", highlight=False)
        elif etype == EVENT_ROUND_COMPLETE:
            pass
        elif etype == EVENT_DONE:
            if p["status"] == "interrupted":
                self.console.print("  [dim]Interrupted.[/dim]")

    def _end_stream(self) -> None:
        if self._streaming:
            self.console.print()
            self._streaming = False

    def finish_turn(self) -> None:
        self._end_stream()

    def format_tool_result(self, payload: dict[str, Any]) -> None:
        name = payload.get("tool_name", "?")
        if payload.get("success"):
            first = (payload.get("content") or "").strip().splitlines()
            summary = first[0][:100] if first else ""
            self.console.print(f"  [green]✓ {name}[/green] [dim]{summary}[/dim]", highlight=False)
        else:
            code = payload.get("error_code") or "error"
            error = (payload.get("error") or "").strip().splitlines()
            summary = error[0][:160] if error else ""
            self.console.print(f"  [red]✗ {name}[/red] [{code}] {summary}", highlight=False)

    def format_references(self, excerpts: list[FileExcerpt]) -> None:
        for e in excerpts:
            if e.error is not None:
                self.console.print(f"  [red]@{e.path}[/red] [dim]{e.error}[/dim]", highlight=False)
            else:
                self.console.print(
                    f"  [cyan]@{e.path}[/cyan] [dim]({len(e.content)} chars)[/dim]", highlight=False
                )

    # ------------------------------------------------------------------
    # Inspection commands
    # ------------------------------------------------------------------

    def format_tool_list(self, tools: list[Tool]) -> None:
        table = Table(title="Registered Tools", show_lines=True)
        table.add_column("Name", style="cyan", no_wrap=True)
        table.add_column("Risk", no_wrap=True)
        table.add_column("Description")

        for t in tools:
            color = RISK_COLORS.get(t.risk_level, "white")
            risk_text = Text(t.risk_level.name, style=color)
            table.add_row(t.name, risk_text, t.description)

        self.console.print(table)

    def format_tool_info(self, tool: Tool) -> None:
        color = RISK_COLORS.get(tool.risk_level, "white")
        self.console.print(Panel(
            f"[bold]{tool.name}[/bold]\n\n"
            f"[dim]Risk:[/dim] [{color}]{tool.risk_level.name}[/{color}]\n"
            f"[dim]Path fields:[/dim] {', '.join(tool.path_fields) or 'none'}\n"
            f"[dim]Secret fields:[/dim] {', '.join(tool.secret_fields) or 'none'}\n\n"
            f"{tool.description}",
            title=f"Tool: {tool.name}",
        ))
        schema_json = json.dumps(tool.parameters, indent=2)
        self.console.print(Syntax(schema_json, "json", theme="monokai"))

    def format_model_list(self, profiles: dict[str, ModelProfile], active: str) -> None:
        if not profiles:
            self.console.print("[dim]No models configured.[/dim]")
            return

        table = Table(title="Models")
        table.add_column("", no_wrap=True)
        table.add_column("Name", style="cyan", no_wrap=True)
        table.add_column("Kind", no_wrap=True)
        table.add_column("Deployment")
        table.add_column("Context", justify="right")
        table.add_column("Endpoint", style="dim")

        for name, p in profiles.items():
            marker = "[green]●[/green]" if name == active else ""
            table.add_row(marker, name, p.kind.value, p.deployment, f"{p.capacity:,}", p.endpoint)

        self.console.print(table)

    def format_history(self, messages: list[Message]) -> None:
        if not messages:
            self.console.print("[dim]No messages.[/dim]")
            return

        for i, m in enumerate(messages):
            color = ROLE_COLORS.get(m.role, "white")
            content = m.content.replace("\n", " ")
            if len(content) > 100:
                content = content[:97] + "..."
            extra = ""
            if m.tool_calls:
                extra = " [yellow]→ " + ", ".join(c.name for c in m.tool_calls) + "[/yellow]"
            elif m.role == "tool" and m.name:
                extra = f" [dim]({m.name})[/dim]"
            partial = " [dim](partial)[/dim]" if m.partial else ""
            self.console.print(
                f"  [{color}]{i:>3} {m.role:>9s}[/{color}]{extra}{partial}  ",
                end="",
            )
            self.console.print(content, markup=False, highlight=False)

    def format_context(
        self,
        used_tokens: int,
        capacity: int,
        marker: int,
        message_count: int,
    ) -> None:
        fraction = used_tokens / capacity if capacity else 0.0
        line = Text("  Context ")
        line.append_text(context_bar(fraction))
        line.append(f"  {used_tokens:,} / {capacity:,} tokens", style="dim")
        self.console.print(line)
        summary = ", earlier history summarised" if marker else ""
        self.console.print(f"  [dim]{message_count} messages{summary}[/dim]")

    def format_config(self, config: dict) -> None:
        config_json = json.dumps(config, indent=2, default=str)
        self.console.print(Syntax(config_json, "json", theme="monokai"))
