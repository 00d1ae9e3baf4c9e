"""Pending uploads command for drivemirror CLI.

Commands:
- pending: List or clear checkpoints of interrupted large uploads
"""

from __future__ import annotations

import click

from drivemirror.client.cli.config import get_tmp_dir
from drivemirror.client.sync.checkpoint import CheckpointStore


@click.command()
@click.option("--clear", is_flag=True, help="Forget all interrupted uploads.")
def pending(clear: bool) -> None:
    """List uploads that will resume on the next run."""
    store = CheckpointStore(get_tmp_dir())

    if clear:
        count = store.clear()
        click.echo(f"Removed {count} pending uploads.")
        return

    keys = store.list_pending()
    if not keys:
        click.echo("No pending uploads.")
        return

    click.echo(f"{len(keys)} pending uploads:")
    for key in keys:
        checkpoint = store.load(key)
        if checkpoint is None:
            click.echo(f"  ? {key} (unreadable)")
        else:
            click.echo(f"  ↑ {key} (md5 {checkpoint.fingerprint})")
