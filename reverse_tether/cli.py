"""CLI entry point for reverse-tether."""

from __future__ import annotations

import logging
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

import reverse_tether

app = typer.Typer(
    name="reverse-tether",
    help="Use an Android phone's mobile data on this computer over USB.",
    no_args_is_help=True,
)
console = Console()


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
        force=True,
    )


def _load_settings(**overrides):
    from reverse_tether.core.config import load_settings

    try:
        return load_settings(overrides)
    except ValueError as e:
        console.print(f"[red]Invalid setting: {e}[/]")
        raise typer.Exit(1)


@app.command()
def connect(
    yes: bool = typer.Option(
        False, "--yes", "-y", help="Skip the confirmation prompt"
    ),
    interface: Optional[str] = typer.Option(
        None, "--interface", "-i",
        help="Interface to use when several could be the tether",
    ),
    settle: Optional[float] = typer.Option(
        None, "--settle", help="Seconds to wait for the interface after switching to RNDIS"
    ),
    mtu_policy: Optional[str] = typer.Option(
        None, "--mtu-policy", help="MTU selection: probe or fixed"
    ),
    no_tune: bool = typer.Option(
        False, "--no-tune", help="Skip TCP/MTU/USB power tuning"
    ),
    no_retry: bool = typer.Option(
        False, "--no-retry", help="Do not retry configuration after a link reset"
    ),
    speed_test: bool = typer.Option(
        False, "--speed-test", help="Measure throughput before and after tuning"
    ),
    adb: Optional[str] = typer.Option(
        None, "--adb", help="Path to the adb binary"
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Show debug logging"
    ),
) -> None:
    """Enable reverse tethering through the connected phone."""
    _setup_logging(verbose)
    settings = _load_settings(
        adb_path=adb,
        settle_seconds=settle,
        mtu_policy=mtu_policy,
        tune=False if no_tune else None,
        speed_test=True if speed_test else None,
    )

    from reverse_tether.core.environment import EnvironmentDetector
    from reverse_tether.core.errors import PrerequisiteError
    from reverse_tether.core.orchestrator import SessionOrchestrator

    console.print("[dim]Checking dependencies...[/]")
    environment = EnvironmentDetector.detect_current(settings.adb_path)
    try:
        EnvironmentDetector.check_prerequisites(environment)
    except PrerequisiteError as e:
        console.print(f"[red]Error: {e}[/]")
        raise typer.Exit(1)

    orchestrator = SessionOrchestrator(
        settings,
        auto_confirm=yes,
        console=console,
        interface=interface,
        retry_configuration=not no_retry,
    )
    result = orchestrator.run()
    raise typer.Exit(result.exit_code)


@app.command()
def detect(
    adb: Optional[str] = typer.Option(
        None, "--adb", help="Path to the adb binary"
    ),
) -> None:
    """Show host prerequisites, attached devices and candidate interfaces."""
    from reverse_tether.core.environment import EnvironmentDetector
    from reverse_tether.core.executor import AdbExecutor
    from reverse_tether.core.host import HostNetwork
    from reverse_tether.tether.activator import TETHER_NAME_PATTERN

    settings = _load_settings(adb_path=adb)
    env = EnvironmentDetector.detect_current(settings.adb_path)

    table = Table(title="Environment")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("OS", f"{env.os.value} ({env.os_version})")
    table.add_row("Python", env.python_version)
    table.add_row("Root", "yes" if env.is_root else "no")
    for tool, path in env.tools.items():
        table.add_row(tool, path or "[red]missing[/]")
    console.print(table)

    if env.tools.get("adb"):
        devices = AdbExecutor(settings.adb_path).list_devices()
        console.print("\n[bold]adb devices:[/]")
        if not devices:
            console.print("  [yellow]none[/]")
        for serial, state in devices:
            console.print(f"  {serial}  {state}")

    if env.tools.get("ip"):
        names = sorted(HostNetwork().list_interfaces(exclude_loopback=True))
        console.print("\n[bold]Network interfaces:[/]")
        for name in names:
            marker = " [green](tether-like)[/]" if TETHER_NAME_PATTERN.search(name) else ""
            console.print(f"  {name}{marker}")


@app.command()
def cleanup() -> None:
    """Restore /etc/resolv.conf from a backup left by an interrupted session."""
    from reverse_tether.tether.resolver import ResolverManager

    settings = _load_settings()
    resolver = ResolverManager(
        settings.resolver_path,
        settings.staging_resolver_path,
        settings.backup_resolver_path,
    )
    problems = resolver.cleanup(include_stale=True)
    for problem in problems:
        console.print(f"[red]{problem}[/]")
    if problems:
        raise typer.Exit(1)
    console.print("[green]Cleanup completed.[/]")


@app.command()
def version() -> None:
    """Print version."""
    console.print(f"reverse-tether {reverse_tether.__version__}")


if __name__ == "__main__":
    app()
