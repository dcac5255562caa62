"""Interactive chat session handler."""

from __future__ import annotations

import asyncio
import logging
import signal

from rich.console import Console

from aicli.cli.output import OutputFormatter
from aicli.cli.references import expand_references
from aicli.config import AppConfig
from aicli.orchestrator.cancellation import CancelToken
from aicli.orchestrator.core import Orchestrator, TurnInProgress
from aicli.tools.workspace import Workspace

logger = logging.getLogger(__name__)

HELP_TEXT = (
    "  [bold]Commands:[/bold]\n"
    "  /help            - Show this help\n"
    "  /quit            - Exit the chat\n"
    "  /clear           - Start a fresh conversation\n"
    "  /model [NAME]    - List models or switch to NAME\n"
    "  /config          - Show the effective configuration\n"
    "  /history         - Show the conversation\n"
    "  /tools           - List available tools\n"
    "  /context         - Show context window usage\n"
    "\n"
    "  Use [cyan]@path[/cyan] to attach a file, e.g. [dim]explain @src/main.py[/dim]\n"
    "  Press Ctrl-C during a response to interrupt it.\n"
)


class ChatHandler:
    """
    Manages the interactive chat loop.

    Handles streaming output, inline commands, ``@path`` references and
    Ctrl-C interrupts of a running turn.
    """

    def __init__(
        self,
        orchestrator: Orchestrator,
        config: AppConfig,
        workspace: Workspace,
        console: Console | None = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.config = config
        self.workspace = workspace
        self.console = console or Console()
        self.formatter = OutputFormatter(self.console)
        self._running = True

    async def handle_command(self, command: str) -> bool:
        """
        Handle inline commands. Returns True if the command was handled.
        """
        parts = command.strip().split(None, 1)
        cmd = parts[0].lower()
        arg = parts[1].strip() if len(parts) > 1 else ""

        if cmd in ("/quit", "/exit"):
            self._running = False
            self.console.print("[dim]Goodbye.[/dim]")
            return True

        if cmd == "/clear":
            self.orchestrator.clear()
            self.console.print("  [dim]Conversation cleared.[/dim]")
            return True

        if cmd == "/model":
            if not arg:
                self.formatter.format_model_list(
                    self.config.profiles(), self.orchestrator.router.active_name or ""
                )
            else:
                try:
                    self.orchestrator.switch_profile(arg)
                except KeyError:
                    self.console.print(f"  [red]Error:[/red] unknown model {arg!r}")
                else:
                    profile = self.orchestrator.router.active_provider.profile
                    self.console.print(
                        f"  Switched to [bold]{arg}[/bold] "
                        f"[dim]({profile.kind.value}, {profile.capacity:,} token context)[/dim]"
                    )
            return True

        if cmd == "/config":
            self.formatter.format_config(self.config.to_dict())
            return True

        if cmd == "/history":
            self.formatter.format_history(self.orchestrator.history)
            return True

        if cmd == "/tools":
            policy = self.orchestrator.dispatcher.policy
            max_risk = policy.max_risk if policy is not None else None
            self.formatter.format_tool_list(self.orchestrator.dispatcher.registry.available(max_risk))
            return True

        if cmd == "/context":
            tracker = self.orchestrator.tracker
            self.formatter.format_context(
                tracker.used_tokens,
                tracker.capacity,
                tracker.compaction_marker,
                len(self.orchestrator.conversation),
            )
            return True

        if cmd == "/help":
            self.console.print(HELP_TEXT)
            return True

        return False

    async def handle_input(self, user_input: str) -> None:
        """Process user input: run through orchestrator and stream response."""
        text, excerpts = expand_references(user_input, self.workspace)
        if excerpts:
            self.formatter.format_references(excerpts)
        if not text and not excerpts:
            return

        cancel = CancelToken()
        installed = self._install_interrupt(cancel)
        try:
            async for event in self.orchestrator.submit_user_message(text, excerpts, cancel):
                self.formatter.render_event(event)
        except TurnInProgress as e:
            self.console.print(f"\n[red]Error:[/red] {e}")
        finally:
            if installed:
                asyncio.get_running_loop().remove_signal_handler(signal.SIGINT)
            self.formatter.finish_turn()

    def _install_interrupt(self, cancel: CancelToken) -> bool:
        try:
            asyncio.get_running_loop().add_signal_handler(signal.SIGINT, cancel.cancel)
        except (NotImplementedError, RuntimeError):
            logger.debug("SIGINT handler unavailable; Ctrl-C will not interrupt turns")
            return False
        return True

    async def run_loop(self) -> None:
        """Main interactive loop."""
        profile = self.orchestrator.router.active_provider.profile
        self.console.print(
            "[bold]aicli[/bold] - terminal AI assistant\n"
            f"[dim]Model:[/dim] {profile.name} [dim]({profile.kind.value})[/dim]  "
            f"[dim]Directory:[/dim] {self.workspace.root}\n"
            "[dim]Type /help for commands, /quit to exit.[/dim]\n"
        )

        while self._running:
            try:
                user_input = await asyncio.get_running_loop().run_in_executor(
                    None, lambda: input("you> ").strip()
                )
            except (EOFError, KeyboardInterrupt):
                self.console.print("\n[dim]Goodbye.[/dim]")
                break

            if not user_input:
                continue

            if user_input.startswith("/"):
                handled = await self.handle_command(user_input)
                if handled:
                    continue
                self.console.print(f"  [yellow]Unknown command:[/yellow] {user_input.split()[0]}")
                continue

            await self.handle_input(user_input)
