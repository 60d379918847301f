"""
CLI commands for setting up and migrating the stores.
"""

import asyncio

import click
from rich.console import Console
from rich.table import Table

from csvhub.config import get_settings
from csvhub.exceptions import CSVHubError
from csvhub.services.user_service import UserService
from csvhub.storage.context import open_storage
from csvhub.utils.logging import get_logger, setup_logging

console = Console()
logger = get_logger("db_cli")


@click.group(name="db")
def db_group():
    """Commands for the record store and the streamed file store."""
    pass


@db_group.command(name="init")
def init_db():
    """Create both stores (database file, schema, store directory) if missing."""
    try:
        asyncio.run(_init_db())
    except CSVHubError as e:
        console.print(f"[red]❌ {e.message}[/red]")
        raise SystemExit(1)


async def _init_db():
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_file)

    console.print("\n[bold blue]🔧 Initializing storage[/bold blue]\n")
    async with open_storage(settings) as storage:
        users = await storage.record_store.list_users()
        table = Table(title="csvhub storage")
        table.add_column("Store")
        table.add_column("Location")
        table.add_row("Record store", str(storage.record_store.database_path))
        table.add_row("Streamed store", str(storage.streamed_store.base_dir))
        table.add_row("Uploads", str(settings.resolved_upload_dir))
        console.print(table)
    settings.resolved_upload_dir.mkdir(parents=True, exist_ok=True)
    console.print(f"[green]✓[/green] Storage ready ({len(users)} user(s))\n")


@db_group.command(name="migrate")
def migrate_db():
    """Add the users.is_admin column if missing and promote the first user when no admin exists."""
    try:
        asyncio.run(_migrate_db())
    except CSVHubError as e:
        console.print(f"[red]❌ Migration failed: {e.message}[/red]")
        raise SystemExit(1)


async def _migrate_db():
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_file)

    console.print("\n[bold blue]🔄 Migrating database[/bold blue]\n")
    async with open_storage(settings) as storage:
        service = UserService(storage)
        if await service.ensure_admin_column():
            console.print("[green]✓[/green] Added is_admin column to users")
        else:
            console.print("[green]✓[/green] is_admin column already present")

        user, promoted = await service.promote_first_user()
        if user is None:
            console.print("[yellow]⚠️  No users yet, register one first[/yellow]")
        elif promoted:
            console.print(f"[green]✓[/green] Promoted {user['username']} to admin")
        else:
            console.print(f"[green]✓[/green] Admin already present: {user['username']}")
    console.print("\n[bold green]🎉 Migration complete[/bold green]\n")
