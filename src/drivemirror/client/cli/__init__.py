"""Command-line interface for drivemirror.

This module provides the main CLI entry point and assembles all commands.

Commands:
- upload: Mirror local directories into a remote folder
- credentials: Store the OAuth client and refresh token
- proxy: Show or change the HTTP proxy settings
- pending: List or clear interrupted large uploads
"""

from __future__ import annotations

import click

from drivemirror.client.cli.config import (
    get_config_dir,
    get_config_file,
    get_tmp_dir,
    load_config,
    load_credentials,
    load_uploader_config,
    save_config,
)
from drivemirror.client.cli.pending import pending
from drivemirror.client.cli.settings import credentials, proxy
from drivemirror.client.cli.sync import upload


@click.group()
@click.version_option(package_name="drivemirror")
def cli() -> None:
    """drivemirror - Mirror local directories onto a remote file store."""


# Sync commands
cli.add_command(upload)
cli.add_command(pending)

# Settings commands
cli.add_command(credentials)
cli.add_command(proxy)


def main() -> None:
    """Entry point for the CLI."""
    cli()


__all__ = [
    # Main entry points
    "cli",
    "main",
    # Config utilities
    "get_config_dir",
    "get_config_file",
    "get_tmp_dir",
    "load_config",
    "load_credentials",
    "load_uploader_config",
    "save_config",
]
