"""CLI entry point for oneserver."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Callable

import typer
from rich.console import Console
from rich.table import Table

import oneserver
from oneserver.core.errors import FatalActionError, ProvisionError
from oneserver.core.models import HostEnvironment, SessionResult

app = typer.Typer(
    name="oneserver",
    help="Interactive hardening and runtime setup for Debian/Ubuntu servers.",
    no_args_is_help=True,
)
console = Console()


def _check_preconditions(host: HostEnvironment) -> None:
    if not host.is_root:
        raise ProvisionError("This command must be run as root (try: sudo oneserver ...).")
    if not host.is_interactive:
        raise ProvisionError("This command is interactive and needs a terminal (TTY).")


def _run_wizard(wizard: str, body: Callable) -> SessionResult:
    """Build the per-session collaborators and run ``body`` with them.

    ``body`` receives ``(executor, prompter, verifier, host)``. Fatal errors
    end the process with the failing action's exit status.
    """
    from oneserver.config import Settings
    from oneserver.core.environment import EnvironmentDetector
    from oneserver.core.executor import ActionExecutor
    from oneserver.core.prompts import Prompter
    from oneserver.core.session_log import SessionLog, setup_logging
    from oneserver.core.verify import VerifyAndRemediate

    host = EnvironmentDetector.detect_current()
    try:
        _check_preconditions(host)
    except ProvisionError as e:
        console.print(f"[red]Error: {e}[/]")
        raise typer.Exit(e.exit_code)

    settings = Settings.from_env()
    log_file = settings.log_file(wizard)
    try:
        setup_logging(log_file, debug=settings.debug)
    except OSError as e:
        console.print(f"[red]Error: cannot create the log file {log_file}: {e}[/]")
        raise typer.Exit(1)

    session_log = SessionLog(log_file, console=console)
    executor = ActionExecutor(session_log)
    prompter = Prompter(console)
    verifier = VerifyAndRemediate(session_log, settle_seconds=settings.settle_seconds)

    try:
        return body(executor, prompter, verifier, host)
    except FatalActionError as e:
        # the executor has already reported the task and the log path
        raise typer.Exit(e.exit_code if e.exit_code > 0 else 1)
    except ProvisionError as e:
        session_log.error(f"Error: {e}")
        session_log.error(f"See the log for details: {log_file}")
        raise typer.Exit(e.exit_code)
    except KeyboardInterrupt:
        session_log.warning("Interrupted.")
        raise typer.Exit(130)


@app.command()
def harden() -> None:
    """Update packages, harden SSH and configure the UFW firewall."""
    from oneserver.hardening.wizard import HardeningSession

    def body(executor, prompter, verifier, host):
        return HardeningSession(executor, prompter, host, verifier=verifier).run()

    _run_wizard("harden", body)


@app.command()
def install(
    runtime: str = typer.Argument(..., help="Runtime to install or update (php, node)"),
) -> None:
    """Install, upgrade or switch a language runtime."""
    from oneserver.core.orchestrator import RuntimeSession
    from oneserver.runtimes.registry import get_module, resolve

    try:
        identifier = resolve(runtime)
    except ValueError as e:
        console.print(f"[red]{e}[/]")
        raise typer.Exit(1)

    def body(executor, prompter, verifier, host):
        module = get_module(identifier, executor)
        return RuntimeSession(module, prompter, verifier=verifier).run()

    _run_wizard(identifier, body)


@app.command("list-runtimes")
def list_runtimes() -> None:
    """List the runtimes that can be installed."""
    from oneserver.core.executor import ActionExecutor
    from oneserver.core.session_log import SessionLog
    from oneserver.runtimes.registry import get_module, list_modules

    # get_info never runs anything, so nothing reaches this log
    executor = ActionExecutor(SessionLog(Path(os.devnull), console=console))

    table = Table(title="Supported Runtimes")
    table.add_column("Identifier", style="cyan")
    table.add_column("Name", style="green")
    table.add_column("Managed by")

    for identifier in list_modules():
        info = get_module(identifier, executor).get_info()
        table.add_row(info.identifier, info.name, info.manager)

    console.print(table)


@app.command()
def detect() -> None:
    """Show what oneserver detects about this host."""
    from oneserver.config import Settings
    from oneserver.core.environment import EnvironmentDetector

    console.print("[dim]Detecting environment...[/]\n")
    host = EnvironmentDetector.detect_current()
    settings = Settings.from_env()

    table = Table(title="Environment")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("OS", f"{host.os_id} ({host.os_version})")
    table.add_row("Running as root", "yes" if host.is_root else "no")
    table.add_row("Interactive terminal", "yes" if host.is_interactive else "no")
    table.add_row("Invoking user", host.invoking_user)
    table.add_row("Log directory", str(settings.log_dir))
    table.add_row("Debug tracing", "on" if settings.debug else "off")
    console.print(table)

    try:
        _check_preconditions(host)
    except ProvisionError as e:
        console.print(f"\n[yellow]{e}[/]")


@app.command()
def version() -> None:
    """Print version."""
    console.print(f"oneserver {oneserver.__version__}")


if __name__ == "__main__":
    app()
