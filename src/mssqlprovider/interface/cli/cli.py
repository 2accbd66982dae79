"""
Operator CLI.

Small typer application around the provider, used to check a configuration
bundle and to look up existing principals before adopting them:

    mssqlprovider validate provider.json
    mssqlprovider import-login provider.json app_login
    mssqlprovider import-user provider.json appdb app_user
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Optional

import typer
from rich.console import Console
from rich.table import Table

from mssqlprovider.application.auth_resolver import method_of, resolve
from mssqlprovider.application.provider import Provider
from mssqlprovider.application.resources import LoginResource, ResourceHandler, UserResource
from mssqlprovider.domain.config import ProviderConfig, describe
from mssqlprovider.domain.errors import ConfigError, ProviderError
from mssqlprovider.domain.principals import Severity
from mssqlprovider.infrastructure.logging_config import setup_logging
from mssqlprovider.infrastructure.results import Failure

logger = logging.getLogger(__name__)

console = Console()

app = typer.Typer(
    name="mssqlprovider",
    help="SQL Server principal provider - configuration checks and imports",
    add_completion=False,
    rich_markup_mode="rich",
    no_args_is_help=True,
)

ConfigArgument = typer.Argument(
    ..., exists=True, dir_okay=False, readable=True, help="Provider configuration bundle (JSON)"
)


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
) -> None:
    """
    Manage SQL Server logins and database users.
    """
    setup_logging(logging.DEBUG if verbose else logging.WARNING)


def load_bundle(path: Path) -> dict[str, Any]:
    """Read a configuration bundle; exits with code 2 when it is not a JSON object."""
    try:
        bundle = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        console.print(f"[red]❌ {path} is not valid JSON:[/red] {e}")
        raise typer.Exit(2) from e
    if not isinstance(bundle, dict):
        console.print(f"[red]❌ {path} must contain a JSON object[/red]")
        raise typer.Exit(2)
    return bundle


def open_provider(bundle: dict[str, Any]) -> Provider:
    return Provider.configure(bundle)


def _fail(error: ProviderError) -> typer.Exit:
    console.print(f"[red]❌ {error.summary}:[/red] {error.detail}")
    return typer.Exit(1)


@app.command()
def validate(config: Path = ConfigArgument) -> None:
    """
    Validate a configuration bundle and show the selected login method.

    No connection is attempted.
    """
    bundle = load_bundle(config)
    try:
        settings = ProviderConfig.from_mapping(bundle)
        credential = resolve(settings)
    except ConfigError as e:
        raise _fail(e) from e

    table = Table(title="Provider configuration")
    table.add_column("Setting", style="cyan", no_wrap=True)
    table.add_column("Value", style="green")
    table.add_row("Target", str(settings.target))
    table.add_row("Login method", method_of(credential).value)
    table.add_row("Credential", describe(credential))
    table.add_row("Timeout", f"{settings.timeout}s")
    table.add_row(
        "Retry",
        f"{settings.retry.attempts} attempts, {settings.retry.base_delay}s..{settings.retry.max_delay}s",
    )
    table.add_row("Rename support", "yes" if settings.supports_rename else "no")
    table.add_row("ODBC driver", settings.driver or "auto-detect")
    table.add_row("Debug log", "on" if settings.debug else "off")
    console.print(table)
    console.print("[green]✅ Configuration is valid[/green]")


def _import(config: Path, handler_type: type[ResourceHandler], name: str,
            database: Optional[str] = None) -> None:
    bundle = load_bundle(config)
    try:
        provider = open_provider(bundle)
    except ConfigError as e:
        raise _fail(e) from e

    with provider:
        result = handler_type(provider).import_(name, database)

    if isinstance(result, Failure):
        for diagnostic in result.error:
            style = "red" if diagnostic.severity == Severity.ERROR else "yellow"
            console.print(f"[{style}]❌ {diagnostic.summary}:[/{style}] {diagnostic.detail}")
        raise typer.Exit(1)

    state = result.value
    table = Table(title=f"Imported {state['id']}")
    table.add_column("Attribute", style="cyan", no_wrap=True)
    table.add_column("Value", style="green")
    for key, value in state.items():
        if key == "password":
            continue
        if isinstance(value, list):
            value = ", ".join(value) or "-"
        table.add_row(key, "-" if value in (None, "") else str(value))
    console.print(table)


@app.command("import-login")
def import_login(
    config: Path = ConfigArgument,
    name: str = typer.Argument(..., help="Login name"),
) -> None:
    """Look up an existing server login and print its durable id."""
    _import(config, LoginResource, name)


@app.command("import-user")
def import_user(
    config: Path = ConfigArgument,
    database: str = typer.Argument(..., help="Database the user lives in"),
    name: str = typer.Argument(..., help="User name"),
) -> None:
    """Look up an existing database user and print its durable id."""
    _import(config, UserResource, name, database)


def main() -> int:
    """
    Main entry point for the mssqlprovider CLI.

    Returns:
        int: Exit code (0 for success, non-zero for failure)
    """
    try:
        app()
        return 0
    except ProviderError as e:
        logger.debug("Unhandled provider error", exc_info=True)
        console.print(f"[red]Error: {e.summary}: {e.detail}[/red]")
        return 1
