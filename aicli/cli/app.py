"""
Main CLI application for aicli.

Usage:
    aicli chat [--model NAME] [--working-dir DIR] [--max-rounds N]
    aicli models list
    aicli tools list|info
    aicli config show|validate
    aicli version
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from pathlib import Path
from typing import Any, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler

from aicli.config import AppConfig, load_config

app = typer.Typer(name="aicli", help="aicli - terminal AI assistant with local tools")
models_app = typer.Typer(help="Model profiles")
tools_app = typer.Typer(help="Tool management")
config_app = typer.Typer(help="Configuration management")

app.add_typer(models_app, name="models")
app.add_typer(tools_app, name="tools")
app.add_typer(config_app, name="config")

console = Console()
err_console = Console(stderr=True)

VERSION = "0.1.0"

_state: dict[str, Any] = {"config_path": None, "log_level": None, "log_file": None}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def setup_logging(level: str = "WARNING", log_file: str | None = None) -> None:
    """Configure the root logger once: rich on stderr, optional plain file."""
    handlers: list[logging.Handler] = [
        RichHandler(console=err_console, show_path=False, rich_tracebacks=True)
    ]
    if log_file:
        path = Path(log_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path, encoding="utf-8")
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
        handlers.append(file_handler)
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format="%(message)s",
        handlers=handlers,
        force=True,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _load(cli_overrides: dict[str, Any] | None = None) -> AppConfig:
    try:
        cfg = load_config(_state["config_path"], cli_overrides=cli_overrides)
    except (OSError, ValueError) as e:
        console.print(f"[red]Could not load config:[/red] {e}")
        raise typer.Exit(1)
    setup_logging(_state["log_level"] or cfg.logging.level, _state["log_file"] or cfg.logging.file)
    return cfg


def _build_registry(cfg: AppConfig):
    from aicli.tools.builtin import register_builtin_tools
    from aicli.tools.registry import ToolRegistry
    from aicli.tools.workspace import Workspace

    workspace = Workspace(
        cfg.agent.working_dir or None,
        allow_outside=cfg.tools.allow_outside_workspace,
    )
    registry = ToolRegistry()
    register_builtin_tools(
        registry,
        workspace,
        shell_timeout=cfg.tools.shell_timeout,
        max_output_bytes=cfg.tools.max_output_kb * 1024,
    )
    registry.remove(*cfg.tools.disabled)
    return registry, workspace


def build_stack(cfg: AppConfig, transport=None):
    """
    Wire up the full stack for chat.

    Returns ``(orchestrator, workspace)``.  Every configured model gets its
    own provider so ``/model`` can switch between them.
    """
    from aicli.llm.providers.endpoint import EndpointAdapter
    from aicli.llm.router import LLMRouter
    from aicli.llm.token_counter import TokenCounter
    from aicli.orchestrator.core import Orchestrator
    from aicli.prompts.system import build_system_prompt
    from aicli.session.compaction import Compactor
    from aicli.session.context import ContextTracker
    from aicli.tools.base import ToolRisk
    from aicli.tools.dispatcher import ToolDispatcher
    from aicli.tools.policy import AuditTrail, PolicyEngine

    registry, workspace = _build_registry(cfg)

    audit = None
    if cfg.policy.audit_log_path:
        audit = AuditTrail(
            cfg.policy.audit_log_path,
            max_bytes=cfg.policy.audit_max_size_mb * 1024 * 1024,
            backup_count=cfg.policy.audit_keep_files,
            redaction_patterns=cfg.policy.redaction_patterns,
        )
    policy = PolicyEngine(
        max_risk=ToolRisk.parse(cfg.policy.max_risk),
        blocked_patterns=cfg.policy.blocked_patterns,
        audit=audit,
    )

    counter = TokenCounter()
    router = LLMRouter(counter)
    for name, profile in cfg.profiles().items():
        router.register_provider(name, EndpointAdapter(profile, transport=transport))
    router.set_active(cfg.active_model)

    tracker = ContextTracker(
        router.active_provider.max_context_tokens,
        counter=counter,
        threshold=cfg.agent.compact_threshold,
    )
    compactor = Compactor(
        router=router,
        counter=counter,
        keep_tail=cfg.agent.keep_tail,
        strategy=cfg.agent.compaction_strategy,
    )
    dispatcher = ToolDispatcher(
        registry,
        policy=policy,
        workspace=workspace,
        timeout=cfg.tools.tool_timeout,
        concurrent=cfg.tools.parallel,
        session_id=str(uuid.uuid4()),
    )
    system_prompt = build_system_prompt(
        tools=registry.available(policy.max_risk),
        cwd=str(workspace.root),
    )

    orchestrator = Orchestrator(
        router=router,
        dispatcher=dispatcher,
        tracker=tracker,
        compactor=compactor,
        system_prompt=system_prompt,
        max_rounds=cfg.agent.max_rounds,
        rate_limit_backoff=cfg.agent.rate_limit_backoff,
    )
    return orchestrator, workspace


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

@app.callback()
def main_options(
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to config YAML"),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="DEBUG, INFO, WARNING, ERROR"),
    log_file: Optional[str] = typer.Option(None, "--log-file", help="Also write logs to this file"),
):
    """aicli - terminal AI assistant with local tools."""
    _state["config_path"] = config
    _state["log_level"] = log_level
    _state["log_file"] = log_file


@app.command()
def chat(
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Model profile name"),
    working_dir: Optional[Path] = typer.Option(None, "--working-dir", "-C", help="Working directory for tools"),
    max_rounds: Optional[int] = typer.Option(None, help="Max model rounds per message"),
):
    """Start an interactive chat session."""
    from aicli.cli.chat import ChatHandler

    overrides: dict[str, Any] = {}
    if model:
        overrides["agent.active_model"] = model
    if working_dir:
        overrides["agent.working_dir"] = str(working_dir)
    if max_rounds:
        overrides["agent.max_rounds"] = max_rounds
    cfg = _load(overrides)

    problems = cfg.validate()
    if problems:
        console.print("[red]Configuration problems:[/red]")
        for p in problems:
            console.print(f"  - {p}")
        raise typer.Exit(1)

    async def _run():
        orchestrator, workspace = build_stack(cfg)
        handler = ChatHandler(orchestrator, cfg, workspace, console=console)
        await handler.run_loop()

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        console.print("\n[dim]Goodbye.[/dim]")


@models_app.command("list")
def models_list():
    """List configured model profiles."""
    from aicli.cli.output import OutputFormatter

    cfg = _load()
    try:
        profiles = cfg.profiles()
    except ValueError as e:
        console.print(f"[red]Invalid model config:[/red] {e}")
        raise typer.Exit(1)
    OutputFormatter(console).format_model_list(profiles, cfg.active_model)


@tools_app.command("list")
def tools_list(
    max_risk: Optional[str] = typer.Option(None, help="Max risk level filter"),
):
    """List registered tools."""
    from aicli.cli.output import OutputFormatter
    from aicli.tools.base import ToolRisk

    cfg = _load()
    registry, _ = _build_registry(cfg)

    risk_filter = None
    if max_risk:
        try:
            risk_filter = ToolRisk.parse(max_risk)
        except KeyError:
            console.print(f"[red]Unknown risk level:[/red] {max_risk}")
            raise typer.Exit(1)

    OutputFormatter(console).format_tool_list(registry.available(risk_filter))


@tools_app.command("info")
def tools_info(tool_name: str = typer.Argument(..., help="Tool name")):
    """Show tool details and schema."""
    from aicli.cli.output import OutputFormatter

    cfg = _load()
    registry, _ = _build_registry(cfg)

    tool = registry.get(tool_name)
    if not tool:
        console.print(f"[red]Tool not found:[/red] {tool_name}")
        raise typer.Exit(1)

    OutputFormatter(console).format_tool_info(tool)


@config_app.command("show")
def config_show():
    """Show effective config (API keys redacted)."""
    from aicli.cli.output import OutputFormatter

    cfg = _load()
    OutputFormatter(console).format_config(cfg.to_dict())


@config_app.command("validate")
def config_validate():
    """Validate config and report any problems."""
    cfg = _load()
    problems = cfg.validate()
    if problems:
        console.print("[red]Config validation failed:[/red]")
        for p in problems:
            console.print(f"  - {p}")
        raise typer.Exit(1)

    console.print("[green]Config is valid.[/green]")
    console.print(f"  Active model: {cfg.active_model}")
    console.print(f"  Models: {', '.join(cfg.models)}")
    console.print(f"  Policy max risk: {cfg.policy.max_risk}")
    console.print(f"  Compaction: {cfg.agent.compaction_strategy} at {cfg.agent.compact_threshold:.0%}")


@app.command()
def version():
    """Show version."""
    console.print(f"aicli v{VERSION}")


def main():
    app()


if __name__ == "__main__":
    main()
