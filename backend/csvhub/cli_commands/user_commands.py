"""
CLI commands for managing accounts.
"""

import asyncio

import click
from rich.console import Console

from csvhub.config import get_settings
from csvhub.exceptions import CSVHubError
from csvhub.services.user_service import UserService
from csvhub.storage.context import open_storage
from csvhub.utils.logging import get_logger, setup_logging

console = Console()
logger = get_logger("user_cli")


@click.group(name="users")
def users_group():
    """Commands for managing users."""
    pass


@users_group.command(name="promote-first")
def promote_first():
    """Make the first registered user an admin if no admin exists yet."""
    try:
        asyncio.run(_promote_first())
    except CSVHubError as e:
        console.print(f"[red]❌ {e.message}[/red]")
        raise SystemExit(1)


async def _promote_first():
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_file)

    async with open_storage(settings) as storage:
        user, promoted = await UserService(storage).promote_first_user()

    if user is None:
        console.print("[red]❌ No users found, register a user first[/red]")
    elif promoted:
        console.print(f"[green]✓[/green] {user['username']} is now an admin")
    else:
        console.print(f"[green]✓[/green] Admin already present: {user['username']}")


@users_group.command(name="create-admin")
@click.option("--username", "-u", required=True, help="Admin username (at least 3 characters)")
@click.option(
    "--password",
    "-p",
    prompt=True,
    hide_input=True,
    confirmation_prompt=True,
    help="Admin password (at least 6 characters)",
)
def create_admin(username: str, password: str):
    """Create a new admin account."""
    try:
        asyncio.run(_create_admin(username, password))
    except CSVHubError as e:
        console.print(f"[red]❌ {e.message}[/red]")
        raise SystemExit(1)


async def _create_admin(username: str, password: str):
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_file)

    async with open_storage(settings) as storage:
        user = await UserService(storage).register(username, password, is_admin=True)
    console.print(f"[green]✓[/green] Created admin {user.username} (id={user.id})")
