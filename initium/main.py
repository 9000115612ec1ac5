"""
Initium — CLI entrypoint.

Usage:
    python -m initium.main --help
    python -m initium.main status
    python -m initium.main config show
"""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path

import click

from initium import __version__
from initium.core.config.store import ConfigStore
from initium.core.observability.logging_config import (
    LOG_FILE_ENV,
    LOG_FILE_LEVEL_ENV,
    resolve_level,
    setup_logging,
)


@click.group()
@click.version_option(version=__version__, prog_name="initium")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(dir_okay=False),
    default=None,
    help="Path to the configuration file (default: ~/.config/initium/config.json).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
) -> None:
    """Initium — development environment manager."""
    ctx.ensure_object(dict)
    ctx.obj["quiet"] = quiet

    store = ConfigStore(Path(config_path) if config_path else None)
    ctx.obj["store"] = store

    # ── Logging setup (console first, so config warnings are visible) ──
    setup_logging(level=resolve_level(debug=debug, verbose=verbose, quiet=quiet))

    preference = store.exists() and store.load().preferences.verbose_logging
    setup_logging(
        level=resolve_level(
            debug=debug,
            verbose=verbose,
            quiet=quiet,
            verbose_preference=preference,
        ),
        log_file=os.environ.get(LOG_FILE_ENV),
        log_file_level=os.environ.get(LOG_FILE_LEVEL_ENV),
    )


@cli.command()
@click.option("--detailed", is_flag=True, help="Show detailed version information.")
def version(detailed: bool) -> None:
    """Display version information."""
    if not detailed:
        click.echo(__version__)
        return

    from initium.core.services.system_info import SystemInfo

    info = SystemInfo.detect()
    click.echo(f"Initium v{__version__}")
    click.echo(f"Running on: {info.os_name} {info.os_version}")
    click.echo(f"Architecture: {info.architecture}")
    click.echo(f"Device: {info.device_model}")


@cli.command()
@click.option("--tools", "-t", is_flag=True, help="Show development tools and their versions.")
@click.pass_context
def info(ctx: click.Context, tools: bool) -> None:
    """Display system and environment information."""
    from initium.core.services.system_info import SystemInfo
    from initium.core.services.tool_probe import COMMON_TOOLS, ToolProbe

    store: ConfigStore = ctx.obj["store"]
    config = store.load()
    system = SystemInfo.detect()

    click.secho("📊 System Information", fg="cyan", bold=True)
    click.echo(f"   OS:            {system.os_name} {system.os_version}")
    click.echo(f"   Architecture:  {system.architecture}")
    click.echo(f"   Device Model:  {system.device_model}")
    click.echo(f"   Total Memory:  {system.total_memory_gb:.1f} GB")

    if tools:
        probe = ToolProbe(timeout=config.services.probe_timeout_seconds)
        click.echo()
        click.secho("🛠️  Development Tools", fg="cyan", bold=True)
        for result in probe.probe_many(COMMON_TOOLS):
            marker = "✅" if result.installed else "❌"
            detail = (result.version or "unknown").splitlines()[0] if result.installed else "not installed"
            click.echo(f"   {marker} {result.tool_name:12s}: {detail}")

    click.echo()
    click.secho("⚙️  Configuration", fg="cyan", bold=True)
    if not store.exists():
        click.echo("   Using defaults (no config file found)")
    click.echo(f"   Schema Version: {config.schema_version}")
    click.echo(f"   Analytics:      {_on_off(config.preferences.analytics_enabled)}")
    click.echo(f"   Auto Backup:    {_on_off(config.preferences.auto_backup)}")
    click.echo(f"   Verbose Logs:   {_on_off(config.preferences.verbose_logging)}")


@cli.command()
@click.option("--refresh", is_flag=True, help="Re-probe even if the cached status is fresh.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def status(ctx: click.Context, refresh: bool, as_json: bool) -> None:
    """Show tracked service status."""
    from initium.core.services.service_status import ServiceStatusCache

    store: ConfigStore = ctx.obj["store"]
    config = store.load()
    result = ServiceStatusCache.from_config(config).status(force_fresh=refresh)

    if as_json:
        data = result.model_dump(mode="json")
        data["config_loaded"] = store.exists() and not store.warnings
        click.echo(json.dumps(data, indent=2))
        return

    color = {
        "available": "green",
        "degraded": "yellow",
        "unavailable": "red",
    }.get(result.overall.value, "white")

    if not ctx.obj.get("quiet"):
        click.secho(f"🚀 Initium v{__version__}", fg="cyan", bold=True)
        click.echo()

    click.echo("🛠️  Services: ", nl=False)
    click.secho(result.overall.value, fg=color, bold=True)
    click.echo(f"   {result.installed_count}/{len(result.per_service)} installed")
    for name, probe in result.per_service.items():
        marker = "✓" if probe.installed else "✗"
        version = (probe.version or "").splitlines()[0] if probe.installed and probe.version else ""
        click.echo(f"     {marker} {name}  {version}".rstrip())

    click.echo()
    loaded = "loaded" if store.exists() and not store.warnings else "using defaults"
    click.echo(f"⚙️  Configuration: {loaded}")
    for warning in store.warnings if store.exists() else []:
        click.secho(f"   ⚠️  {warning}", fg="yellow")
    click.echo()


def _on_off(flag: bool) -> str:
    return "enabled" if flag else "disabled"


# ── Command groups ──────────────────────────────────────────────

from initium.ui.cli.backup import backup  # noqa: E402
from initium.ui.cli.config import config  # noqa: E402

cli.add_command(config)
cli.add_command(backup)


if __name__ == "__main__":
    sys.exit(cli())
