"""
CLI commands for configuration.

Thin wrappers over ``initium.core.config.store``.
"""

from __future__ import annotations

import json
import sys

import click

from initium.core.errors import InitiumError


@click.group()
def config() -> None:
    """Configuration — show, change, and reset preferences."""


@config.command("show")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def show(ctx: click.Context, as_json: bool) -> None:
    """Show the current configuration."""
    store = ctx.obj["store"]
    current = store.load()

    if as_json:
        click.echo(json.dumps(current.to_document(), indent=2))
        return

    click.secho("⚙️  Initium Configuration", fg="cyan", bold=True)
    click.echo(f"   File: {store.path}")
    if not store.exists():
        click.secho("   (not found, showing defaults)", fg="yellow")
    for warning in store.warnings if store.exists() else []:
        click.secho(f"   ⚠️  {warning}", fg="yellow")
    click.echo()

    prefs = current.preferences
    click.secho("Preferences:", bold=True)
    click.echo(f"   Analytics:        {_on_off(prefs.analytics_enabled)}")
    click.echo(f"   Auto Backup:      {_on_off(prefs.auto_backup)}")
    click.echo(f"   Verbose Logging:  {_on_off(prefs.verbose_logging)}")
    click.echo()

    backup = current.backup
    click.secho("Backup:", bold=True)
    click.echo(f"   Provider:         {backup.provider.display_name}")
    click.echo(f"   Retention:        {backup.retention_days} days")
    click.echo(f"   Compression:      {_on_off(backup.compression_enabled)}")
    click.echo()

    services = current.services
    click.secho("Services:", bold=True)
    click.echo(f"   Tracked:          {', '.join(services.tracked) or '(none)'}")
    click.echo(f"   Staleness:        {services.staleness_seconds:g}s")
    click.echo(f"   Probe Timeout:    {services.probe_timeout_seconds:g}s")


@config.command("set")
@click.option("--analytics", type=click.BOOL, default=None, help="Enable or disable analytics.")
@click.option("--auto-backup", type=click.BOOL, default=None, help="Enable or disable automatic backups.")
@click.option("--verbose-logging", type=click.BOOL, default=None, help="Enable or disable verbose logging.")
@click.option(
    "--backup-provider",
    type=click.Choice(["local", "icloud"]),
    default=None,
    help="Backup storage provider.",
)
@click.option("--retention-days", type=int, default=None, help="Backup retention period in days.")
@click.option("--compression", type=click.BOOL, default=None, help="Enable or disable backup compression.")
@click.option("--tracked", default=None, help="Comma-separated tools tracked by `status`.")
@click.pass_context
def set_cmd(
    ctx: click.Context,
    analytics: bool | None,
    auto_backup: bool | None,
    verbose_logging: bool | None,
    backup_provider: str | None,
    retention_days: int | None,
    compression: bool | None,
    tracked: str | None,
) -> None:
    """Change configuration values.

    Examples:

        initium config set --auto-backup true --retention-days 14

        initium config set --tracked brew,git,docker
    """
    changes = {
        key: value
        for key, value in (
            ("preferences.analytics_enabled", analytics),
            ("preferences.auto_backup", auto_backup),
            ("preferences.verbose_logging", verbose_logging),
            ("backup.provider", backup_provider),
            ("backup.retention_days", retention_days),
            ("backup.compression_enabled", compression),
            ("services.tracked", tracked),
        )
        if value is not None
    }

    if not changes:
        click.secho("No configuration changes specified.", fg="yellow")
        click.echo("Use --help to see available options.")
        return

    store = ctx.obj["store"]
    try:
        store.update(changes)
    except InitiumError as e:
        click.secho(f"❌ {e}", fg="red")
        sys.exit(1)

    click.secho("✅ Configuration updated", fg="green", bold=True)
    for key, value in changes.items():
        click.echo(f"   {key} = {value}")


@config.command("reset")
@click.option("--force", is_flag=True, help="Reset without confirmation.")
@click.pass_context
def reset(ctx: click.Context, force: bool) -> None:
    """Reset configuration to defaults."""
    if not force and not click.confirm("Reset all configuration to defaults?"):
        click.echo("Cancelled.")
        return

    store = ctx.obj["store"]
    try:
        store.reset()
    except InitiumError as e:
        click.secho(f"❌ {e}", fg="red")
        sys.exit(1)

    click.secho("✅ Configuration reset to defaults", fg="green", bold=True)


def _on_off(flag: bool) -> str:
    return "enabled" if flag else "disabled"
