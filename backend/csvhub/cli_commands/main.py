#!/usr/bin/env python3
"""
Main CLI entry point for csvhub commands.
"""

import click

from csvhub.cli_commands.db_commands import db_group
from csvhub.cli_commands.user_commands import users_group


@click.group()
def cli():
    """csvhub CLI - manage the storage engine and accounts from the command line."""
    pass


# Register command groups
cli.add_command(db_group)
cli.add_command(users_group)


if __name__ == "__main__":
    cli()
