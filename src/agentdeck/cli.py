"""
CLI interface for Agentdeck using Typer.
"""

import json
import os
import urllib.error
import urllib.request
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich import print as rprint
from rich.console import Console
from rich.table import Table

# Main app
app = typer.Typer(
    name="agentdeck",
    help="Run and watch Claude Code sessions from one place",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

# Config subcommand group
config_app = typer.Typer(
    name="config",
    help="Manage configuration",
    no_args_is_help=False,
    invoke_without_command=True,
)
app.add_typer(config_app, name="config")

# Console for rich output
console = Console()


# =============================================================================
# Server
# =============================================================================


@app.command()
def serve(
    host: Annotated[
        Optional[str], typer.Option("--host", help="Host to bind to (default from config)")
    ] = None,
    port: Annotated[
        Optional[int], typer.Option("--port", "-p", help="Preferred port; the next free one is used")
    ] = None,
    directory: Annotated[
        Optional[str], typer.Option("--directory", "-d", help="Directory sessions run in")
    ] = None,
    persist: Annotated[
        bool, typer.Option("--persist", help="Save and restore session metadata")
    ] = False,
    verify: Annotated[
        bool, typer.Option("--verify/--no-verify", help="Cross-check usage with the agent's /status")
    ] = True,
    debug: Annotated[bool, typer.Option("--debug", help="Verbose logging")] = False,
):
    """Start the session server (control API + event stream)."""
    from .config import (
        get_agent_command,
        get_persistence_enabled,
        get_shell,
        get_summarizer_config,
        get_web_config,
    )
    from .context_tracker import ContextTracker
    from .events import EventBus
    from .logging_config import setup_server_logging
    from .monitor import TrackerMonitor
    from .persistence import NullStore, SessionStore
    from .session_manager import SessionManager, default_pty_factory
    from .status_probe import StatusProbe
    from .summarizer import Summarizer
    from .usage_tracker import UsageTracker
    from .web_server import find_available_port, run_server

    logger = setup_server_logging(debug=debug)

    web = get_web_config()
    host = host or web["host"]
    try:
        actual_port = find_available_port(port or web["port"], host=host)
    except RuntimeError as e:
        rprint(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    cwd = os.path.abspath(directory) if directory else os.getcwd()
    agent_command = get_agent_command()
    store = SessionStore() if persist or get_persistence_enabled() else NullStore()
    bus = EventBus()
    manager = SessionManager(
        cwd=cwd,
        pty_factory=default_pty_factory(shell=get_shell(), agent_command=agent_command),
        summarizer=Summarizer(get_summarizer_config(), command=agent_command),
        store=store,
        bus=bus,
    )
    manager.load_sessions()

    probe = StatusProbe([agent_command]) if verify else None
    monitor = TrackerMonitor(
        manager,
        bus,
        UsageTracker(probe=probe),
        ContextTracker(probe=probe),
    )
    monitor.start()

    rprint("[bold]Agentdeck[/bold]")
    rprint(f"  Sessions run in: {cwd}")
    rprint(f"  API:    http://{host}:{actual_port}/api/sessions")
    rprint(f"  Events: http://{host}:{actual_port}/events")
    if isinstance(store, SessionStore):
        rprint(f"  [dim]Persisting sessions to {store.path}[/dim]")
    rprint("[dim]Press Ctrl+C to stop[/dim]\n")
    logger.info(f"Starting server on {host}:{actual_port}")

    run_server(manager, bus, monitor, host=host, port=actual_port)


@app.command("list")
def list_sessions(
    url: Annotated[
        Optional[str], typer.Option("--url", help="Server URL (default from config)")
    ] = None,
):
    """List sessions of a running server."""
    from .config import get_web_config
    from .status_constants import get_status_symbol, needs_attention

    if url is None:
        web = get_web_config()
        url = f"http://{web['host']}:{web['port']}"

    try:
        with urllib.request.urlopen(f"{url.rstrip('/')}/api/sessions", timeout=5.0) as response:
            sessions = json.loads(response.read().decode("utf-8"))
    except (urllib.error.URLError, TimeoutError, json.JSONDecodeError) as e:
        rprint(f"[red]Could not reach server at {url}:[/red] {e}")
        raise typer.Exit(1)

    if not sessions:
        rprint("[dim]No sessions[/dim]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("")
    table.add_column("Name")
    table.add_column("Status")
    table.add_column("Summary")
    table.add_column("ID", style="dim")
    for s in sessions:
        emoji, color = get_status_symbol(s["status"])
        name = f"[dim]{s['name']} (archived)[/dim]" if s.get("archived") else s["name"]
        status = f"[bold {color}]{s['status']}[/bold {color}]" if needs_attention(s["status"]) \
            else f"[{color}]{s['status']}[/{color}]"
        table.add_row(emoji, name, status, s.get("summary") or "", s["id"][:8])
    console.print(table)


# =============================================================================
# Usage / Context
# =============================================================================


@app.command()
def usage(
    verified: Annotated[
        bool, typer.Option("--verified", "-v", help="Also run the agent's /status probe (slow)")
    ] = False,
):
    """Show message usage estimated from the agent's logs."""
    from .config import get_agent_command
    from .logging_config import setup_cli_logging
    from .status_probe import StatusProbe
    from .usage_tracker import PLAN_LIMITS, UsageTracker

    setup_cli_logging()
    tracker = UsageTracker(probe=StatusProbe([get_agent_command()]) if verified else None)
    snapshot = tracker.get_usage()

    table = Table(show_header=True, header_style="bold")
    table.add_column("Window")
    table.add_column("Messages", justify="right")
    for plan, limit in PLAN_LIMITS.items():
        table.add_column(f"% of {plan}", justify="right")

    five_hour = [f"{snapshot.five_hour_messages / limit * 100:.0f}%" for limit in PLAN_LIMITS.values()]
    table.add_row("Last 5 hours", str(snapshot.five_hour_messages), *five_hour)
    table.add_row("This month", str(snapshot.monthly_messages), *([""] * len(PLAN_LIMITS)))
    console.print(table)

    if not verified:
        return

    with console.status("Asking the agent for its usage..."):
        accurate = tracker.get_accurate_usage()
    if accurate is None:
        rprint("[yellow]Verified usage unavailable[/yellow]")
        return
    rprint(f"  Session:          {accurate.session_percent}% used"
           + (f" (resets {accurate.session_resets})" if accurate.session_resets else ""))
    if accurate.week_percent is not None:
        rprint(f"  Week (all):       {accurate.week_percent}% used"
               + (f" (resets {accurate.week_resets})" if accurate.week_resets else ""))
    if accurate.week_sonnet_percent is not None:
        rprint(f"  Week (Sonnet):    {accurate.week_sonnet_percent}% used")


@app.command()
def context(
    directory: Annotated[
        Optional[str], typer.Argument(help="Project directory (default: current)")
    ] = None,
):
    """Show how full the context window is for a directory's latest conversation."""
    from .context_tracker import ContextTracker
    from .logging_config import setup_cli_logging

    setup_cli_logging()
    cwd = os.path.abspath(directory) if directory else os.getcwd()
    estimate = ContextTracker().get_context(cwd)
    if estimate is None:
        rprint(f"[dim]No conversation log found for {cwd}[/dim]")
        raise typer.Exit(1)
    color = "red" if estimate.percent >= 80 else "yellow" if estimate.percent >= 60 else "green"
    rprint(f"[{color}]{estimate.display}[/{color}] "
           f"[dim]({estimate.tokens:,} / {estimate.limit:,} tokens)[/dim]")


@app.command()
def version():
    """Show the installed version."""
    from . import __version__
    print(__version__)


# =============================================================================
# Config
# =============================================================================

CONFIG_TEMPLATE = """\
# Agentdeck configuration
# All settings are optional; defaults are shown commented out.

# Command typed into each new shell to start the agent
# agent_command: claude

# Login shell for new sessions (default: $SHELL)
# shell: /bin/bash

# Save session metadata and restore it (as idle sessions) on restart
# persistence:
#   enabled: false

# Summaries of long first prompts
# summarizer:
#   backend: cli            # cli (uses agent_command) or api
#   model: haiku            # cli backend
#   timeout: 15
#   api_url: https://api.openai.com/v1/chat/completions
#   api_model: gpt-4o-mini
#   api_key_var: OPENAI_API_KEY  # env var containing the API key

# Web server
# web:
#   host: 127.0.0.1
#   port: 3001
"""


@config_app.callback(invoke_without_command=True)
def config_default(ctx: typer.Context):
    """Show current configuration (default when no subcommand given)."""
    if ctx.invoked_subcommand is None:
        _config_show()


@config_app.command("init")
def config_init(
    force: Annotated[
        bool, typer.Option("--force", "-f", help="Overwrite existing config file")
    ] = False,
):
    """Create a config file with documented defaults.

    Creates ~/.agentdeck/config.yaml with all options commented out.
    Use --force to overwrite an existing config file.
    """
    from . import config

    path: Path = config.CONFIG_PATH
    path.parent.mkdir(parents=True, exist_ok=True)

    if path.exists() and not force:
        rprint(f"[yellow]Config file already exists:[/yellow] {path}")
        rprint("[dim]Use --force to overwrite[/dim]")
        raise typer.Exit(1)

    path.write_text(CONFIG_TEMPLATE)
    rprint(f"[green]✓[/green] Created config file: [bold]{path}[/bold]")
    rprint("[dim]Edit to customize your settings[/dim]")


@config_app.command("show")
def config_show():
    """Show current configuration."""
    _config_show()


def _config_show():
    """Internal function to display current config."""
    import yaml

    from . import config

    if not config.CONFIG_PATH.exists():
        rprint(f"[dim]No config file found at {config.CONFIG_PATH}[/dim]")
        rprint("[dim]Run 'agentdeck config init' to create one[/dim]")
        return

    data = config.load_config()
    if not data:
        rprint(f"[dim]Config file is empty: {config.CONFIG_PATH}[/dim]")
        return

    rprint(f"[bold]Configuration[/bold] ({config.CONFIG_PATH}):\n")
    console.print(yaml.safe_dump(data, default_flow_style=False, sort_keys=False), markup=False)


@config_app.command("path")
def config_path():
    """Show the config file path."""
    from . import config
    print(config.CONFIG_PATH)


# =============================================================================
# Entry Point
# =============================================================================


def main():
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
