"""Thin CLI wrapper for limeos_imagegen.

This module provides the command-line interface using Typer.
All build logic is delegated to the pipeline and cache modules.
"""

import json
import logging
import os
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler

from limeos_imagegen import __version__
from limeos_imagegen.cache import clear_cache, describe_cache
from limeos_imagegen.config import BuildConfig, Settings, get_settings, print_settings_json
from limeos_imagegen.errors import ImagegenError
from limeos_imagegen.interrupt import CancellationToken, signal_guard
from limeos_imagegen.pipeline import PhaseRunner
from limeos_imagegen.types import EXIT_FAILURE, BuildStatus
from limeos_imagegen.versions import validate_version

app = typer.Typer(
    name="imagegen",
    help="LimeOS Image Generator - build the bootable LimeOS installer image",
    no_args_is_help=True,
)
console = Console()


def configure_logging(settings: Settings) -> None:
    """Route log records through rich at the configured level."""
    logging.basicConfig(
        level=settings.log_level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"limeos-imagegen version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """LimeOS Image Generator - build the bootable LimeOS installer image."""


@app.command()
def build(
    version: Annotated[str, typer.Argument(help="LimeOS version to build (e.g. 1.2.0)")],
    no_cache: Annotated[
        bool,
        typer.Option("--no-cache", help="Disable cache lookups and saves"),
    ] = False,
) -> None:
    """Build the installer image for a version (requires root)."""
    if not validate_version(version):
        console.print(f"[red]Invalid version format: {version}[/red]")
        console.print("Expected X.Y.Z or vX.Y.Z (e.g. 1.2.0)")
        raise typer.Exit(code=EXIT_FAILURE)

    if os.geteuid() != 0:
        console.print("[red]Error: building an image requires root privileges[/red]")
        raise typer.Exit(code=EXIT_FAILURE)

    settings = get_settings()
    configure_logging(settings)
    config = BuildConfig.from_settings(settings, version, use_cache=not no_cache)

    token = CancellationToken()
    with signal_guard(token):
        report = PhaseRunner(settings, config, token=token).run()

    if report.status is BuildStatus.SUCCEEDED:
        console.print(f"[green]Build complete:[/green] {report.output_path}")
    elif report.status is BuildStatus.CANCELLED:
        console.print("[yellow]Build cancelled[/yellow]")
    else:
        stage = f" in stage {report.failed_stage}" if report.failed_stage else ""
        console.print(f"[red]Build failed{stage}: {report.error_message}[/red]")

    raise typer.Exit(code=report.exit_code)


@app.command()
def config(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show effective configuration."""
    settings = get_settings()
    if json_output:
        console.print(print_settings_json(settings), soft_wrap=True)
        return

    cache_display = str(settings.cache_dir) if settings.cache_dir else "(XDG default)"
    log_display = str(settings.log_dir) if settings.log_dir else "(console)"
    console.print("[bold]Effective Configuration:[/bold]")
    console.print()
    console.print("[bold]Paths:[/bold]")
    console.print(f"  Build directory:     {settings.build_dir}")
    console.print(f"  Output directory:    {settings.output_dir}")
    console.print(f"  Cache directory:     {cache_display}")
    console.print(f"  Local binaries:      {settings.local_bin_dir}")
    console.print(f"  Command log:         {log_display}")
    console.print()
    console.print("[bold]Image:[/bold]")
    console.print(f"  Distribution:        {settings.distribution}")
    console.print(f"  Cache version:       {settings.cache_version}")
    console.print(f"  ISO prefix:          {settings.iso_prefix}")
    console.print()
    console.print("[bold]Releases:[/bold]")
    console.print(f"  Organization:        {settings.github_org}")
    console.print(f"  API base:            {settings.api_base}")
    console.print(f"  Download base:       {settings.download_base}")
    console.print()
    console.print("[bold]Timeouts (seconds):[/bold]")
    console.print(f"  Request timeout:     {settings.request_timeout}")
    console.print(f"  Download timeout:    {settings.download_timeout}")


cache_app = typer.Typer(help="Inspect and clear the build cache")
app.add_typer(cache_app, name="cache")


@cache_app.command("info")
def cache_info(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show build cache information."""
    try:
        info = describe_cache(get_settings())
    except ImagegenError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=EXIT_FAILURE) from None

    if json_output:
        console.print(json.dumps(info, indent=2), soft_wrap=True)
        return

    rootfs = info["rootfs"]
    console.print("[bold]Build Cache Information:[/bold]")
    console.print()
    console.print(f"  Cache directory: {info['cache_dir']}")
    console.print(f"  Exists: {info['exists']}")
    console.print(f"  Cache key: {info['key']}")
    console.print(f"  Base rootfs cached: {rootfs['present']}")
    for mode, count in info["packages"].items():
        console.print(f"  {mode.upper()} packages: {count}")
    console.print(f"  Host apt archives: {info['apt_archives']}")


@cache_app.command("clear")
def cache_clear() -> None:
    """Remove the build cache."""
    try:
        removed = clear_cache(get_settings())
    except ImagegenError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=EXIT_FAILURE) from None

    if removed:
        console.print("[green]Cache cleared[/green]")
    else:
        console.print("[yellow]Cache is already empty[/yellow]")


if __name__ == "__main__":
    app()
