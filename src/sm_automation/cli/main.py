"""CLI application for SM Automation."""

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from sm_automation.api.handlers import AutomationHandler, SnapshotHandler
from sm_automation.core.config import Config
from sm_automation.core.exceptions import SMAutomationError
from sm_automation.credentials.store import credential_store_from_config
from sm_automation.desktop.shell import DesktopShell
from sm_automation.models.results import AutomationResult, Credentials
from sm_automation.models.tenants import TARGETS, TENANTS, WindowKey, get_tenant
from sm_automation.utils.redaction import redact_params
from sm_automation.workflows.controller import SessionController

app = typer.Typer(
    name="sm-automation",
    help="SM Automation - isolated dashboard sessions with automated sign-in",
    no_args_is_help=True,
)
credentials_app = typer.Typer(help="Manage stored dashboard credentials", no_args_is_help=True)
app.add_typer(credentials_app, name="credentials")

console = Console()


def setup_logging(level: str) -> None:
    """Route log records through rich."""
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
        force=True,
    )


def get_config() -> Config:
    """Load and validate configuration, exiting on invalid values."""
    try:
        config = Config.from_env()
        config.validate()
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)
    setup_logging(config.log_level)
    return config


def print_result(result: dict, title: str = "Result", success: bool = True) -> None:
    """Print a result as formatted JSON, with image payloads summarized."""
    console.print(Panel(
        json.dumps(redact_params(result), indent=2, default=str),
        title=title,
        border_style="green" if success else "red",
    ))


def _save_snapshot(result: AutomationResult, output: Optional[Path]) -> None:
    if output is None or result.snapshot is None:
        return
    output.write_bytes(result.snapshot.encoded_image)
    console.print(f"[green]Snapshot saved:[/green] {output}")


@app.command("login")
def login(
    tenant: str = typer.Option(..., "--tenant", "-t", help="Store key or window key (e.g. allerton)"),
    target: str = typer.Option("", "--target", help="Target key or absolute URL (default: tenant's page)"),
    snapshot: bool = typer.Option(True, "--snapshot/--no-snapshot", help="Capture the page after sign-in"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write the snapshot image here"),
    email: str = typer.Option("", "--email", help="Override the stored login email"),
    password: str = typer.Option("", "--password", help="Override the stored password"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """Sign a tenant in to a dashboard page."""
    config = get_config()
    override = Credentials(identity=email, secret=password) if email and password else None

    async def _run(resolved_target: str) -> AutomationResult:
        async with SessionController.from_config(config) as controller:
            return await controller.run(
                tenant,
                resolved_target,
                take_snapshot=snapshot,
                credentials=override,
                allow_urls=True,
            )

    try:
        result = asyncio.run(_run(target or get_tenant(tenant).default_target))
    except SMAutomationError as e:
        console.print(f"[red]Error:[/red] {e.message}")
        raise typer.Exit(1)

    if json_output:
        console.print(json.dumps(redact_params(result.to_dict()), indent=2, default=str))
    else:
        print_result(result.to_dict(), "Login Result", success=result.success)
    _save_snapshot(result, output)
    if not result.success:
        raise typer.Exit(1)


@app.command("snapshot")
def snapshot_account(
    account: str = typer.Option(..., "--account", "-a", help="Account key (e.g. sefton)"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write the PNG here"),
) -> None:
    """Capture an account's default dashboard page as PNG."""
    config = get_config()

    async def _run() -> AutomationResult:
        async with SessionController.from_config(config) as controller:
            return await controller.snapshot_account(account)

    try:
        result = asyncio.run(_run())
    except SMAutomationError as e:
        console.print(f"[red]Error:[/red] {e.message}")
        raise typer.Exit(1)

    if not result.success or result.snapshot is None:
        console.print(f"[red]Error:[/red] {result.error or 'No image captured'}")
        raise typer.Exit(1)
    console.print(f"[green]Captured[/green] {result.url}")
    _save_snapshot(result, output)


@app.command("handle-event")
def handle_event(
    event_file: str = typer.Argument("-", help="Event JSON file ('-' for stdin)"),
    endpoint: str = typer.Option("automation", "--endpoint", "-e", help="automation or snapshot"),
) -> None:
    """Run a serverless event through a request handler and print the response."""
    if endpoint not in ("automation", "snapshot"):
        console.print(f"[red]Error:[/red] Unknown endpoint: {endpoint}")
        raise typer.Exit(1)
    try:
        raw = sys.stdin.read() if event_file == "-" else Path(event_file).read_text()
        event = json.loads(raw)
    except (OSError, ValueError) as e:
        console.print(f"[red]Error:[/red] Could not read event: {e}")
        raise typer.Exit(1)

    config = get_config()

    async def _run() -> dict:
        async with SessionController.from_config(config) as controller:
            handler = AutomationHandler(controller) if endpoint == "automation" else SnapshotHandler(controller)
            response = await handler.handle(event)
            return response.to_lambda()

    response = asyncio.run(_run())
    console.print(
        json.dumps(redact_params(response), indent=2, default=str),
        markup=False,
        highlight=False,
        soft_wrap=True,
    )
    if response["statusCode"] >= 400:
        raise typer.Exit(1)


@credentials_app.command("set")
def credentials_set(
    key: str = typer.Argument(..., help="Tenant key or service id"),
    email: str = typer.Option(..., "--email", prompt=True, help="Login email"),
    password: str = typer.Option(..., "--password", prompt=True, hide_input=True, help="Password"),
) -> None:
    """Store credentials for a tenant or service."""
    store = credential_store_from_config(get_config())
    try:
        store.set(key, Credentials(identity=email, secret=password))
    except NotImplementedError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)
    console.print(f"[green]Stored credentials for[/green] {key}")


@credentials_app.command("get")
def credentials_get(
    key: str = typer.Argument(..., help="Tenant key or service id"),
) -> None:
    """Show which identity is stored for a key (the password is never shown)."""
    store = credential_store_from_config(get_config())
    creds = store.get(key)
    if creds is None:
        console.print(f"[yellow]No credentials stored for[/yellow] {key}")
        raise typer.Exit(1)
    console.print(f"{key}: {creds.identity} (password set)")


@credentials_app.command("delete")
def credentials_delete(
    key: str = typer.Argument(..., help="Tenant key or service id"),
) -> None:
    """Remove stored credentials."""
    store = credential_store_from_config(get_config())
    store.delete(key)
    console.print(f"[green]Deleted credentials for[/green] {key}")


@app.command("tenants")
def show_tenants() -> None:
    """List known tenants, targets and desktop windows."""
    table = Table(title="Tenants")
    table.add_column("Key", style="cyan")
    table.add_column("Label", style="white")
    table.add_column("Window", style="green")
    table.add_column("Service id", style="magenta")
    table.add_column("Default target", style="yellow")
    for tenant in TENANTS.values():
        table.add_row(tenant.key, tenant.label, tenant.window_key, tenant.service_id, tenant.default_target)
    console.print(table)

    targets = Table(title="Targets")
    targets.add_column("Key", style="cyan")
    targets.add_column("URL", style="white")
    for target in TARGETS.values():
        targets.add_row(target.key, target.url)
    console.print(targets)


@app.command("desktop")
def desktop(
    windows: List[str] = typer.Option(
        [k.value for k in WindowKey],
        "--window",
        "-w",
        help="Window keys to open (repeatable)",
    ),
) -> None:
    """Open isolated dashboard windows and wait until they are closed."""
    config = get_config()
    config.headless = False

    async def _run() -> None:
        shell = DesktopShell(config=config, headless=False)
        try:
            for key in windows:
                await shell.dispatch("open-window", key)
            await shell.wait_closed()
        finally:
            await shell.close_all()

    try:
        asyncio.run(_run())
    except SMAutomationError as e:
        console.print(f"[red]Error:[/red] {e.message}")
        raise typer.Exit(1)
    except KeyboardInterrupt:
        console.print("[yellow]Interrupted[/yellow]")


@app.command("version")
def show_version() -> None:
    """Show version information."""
    from sm_automation import __version__
    console.print(f"SM Automation v{__version__}")


def main() -> None:
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
