"""
CLI commands for backups.

Thin wrappers over ``initium.core.services.backup_ops``.
"""

from __future__ import annotations

import json
import sys

import click

from initium.core.models.backup import BACKUP_PRESETS


@click.group()
def backup() -> None:
    """Backup — create backups of the development environment."""


@backup.command()
@click.option("--name", "custom_name", default=None, help="Custom backup name.")
@click.option(
    "--preset",
    type=click.Choice(sorted(BACKUP_PRESETS)),
    default="default",
    show_default=True,
    help="What the backup should include.",
)
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def create(ctx: click.Context, custom_name: str | None, preset: str, as_json: bool) -> None:
    """Create a backup with the configured provider.

    Examples:

        initium backup create

        initium backup create --name before-upgrade --preset complete
    """
    from initium.core.engine.operations import OperationStateMachine
    from initium.core.models.operation import OperationState
    from initium.core.services.backup_ops import BackupManager

    machine = OperationStateMachine()
    manager = BackupManager(ctx.obj["store"], machine)
    try:
        record = manager.create_backup(
            name=custom_name,
            settings=BACKUP_PRESETS[preset](),
        ).result()
    finally:
        machine.shutdown()

    if as_json:
        click.echo(json.dumps(record.model_dump(mode="json"), indent=2))
        if record.state is not OperationState.SUCCEEDED:
            sys.exit(1)
        return

    if record.state is not OperationState.SUCCEEDED:
        message = record.error.message if record.error else record.state.value
        click.secho(f"❌ Backup failed: {message}", fg="red")
        sys.exit(1)

    metadata = record.result
    click.secho(f"✅ Backup created: {metadata.name}", fg="green", bold=True)
    click.echo(f"   ID:       {metadata.id}")
    click.echo(f"   Provider: {metadata.provider.display_name}")
    click.echo(f"   Size:     {metadata.formatted_size}")
    if metadata.checksum:
        click.echo(f"   SHA-256:  {metadata.checksum}")
    if record.duration_s is not None:
        click.echo(f"   Duration: {record.duration_s:.2f}s")
