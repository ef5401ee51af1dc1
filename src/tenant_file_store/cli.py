import asyncio
import sys
from uuid import UUID

import typer

if sys.platform == "win32":
    # SelectorEventLoop вместо ProactorEventLoop по умолчанию (нужно asyncpg)
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

from tenant_file_store import create_engine_from_config, create_file_store
from tenant_file_store import logging as tfs_logging
from tenant_file_store.config import get_settings
from tenant_file_store.db.base import Base
from tenant_file_store.exceptions import FileStoreError
from tenant_file_store.utils.cli_utils import format_bytes, get_rich_console

app = typer.Typer(help="CLI for tenant-file-store management.")
quota_app = typer.Typer(help="Inspect and repair per-user storage quotas.")
app.add_typer(quota_app, name="quota")
console = get_rich_console()


@app.callback()
def main():
    tfs_logging.configure(get_settings().log_level)


@app.command()
def init():
    """
    Creates database tables and prepares the storage root (or MinIO bucket).
    """
    console.rule("[bold cyan]Service Initialization[/bold cyan]")
    config = get_settings().to_config()

    async def _create_tables():
        engine = create_engine_from_config(config.postgres)
        try:
            # миграции вне зоны ответственности библиотеки
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        finally:
            await engine.dispose()

    with console.status("Creating database tables...", spinner="dots"):
        try:
            asyncio.run(_create_tables())
        except Exception as e:
            console.print(f"[bold red]✖[/bold red] Database initialization FAILED: {e}")
            raise typer.Exit(code=1)
    console.print("[bold green]✔[/bold green] Database tables created.")

    async def _init_storage():
        client = create_file_store(config)
        try:
            await client.store.check_connection()
        finally:
            await client.aclose()

    with console.status("Preparing storage...", spinner="dots"):
        try:
            asyncio.run(_init_storage())
        except FileStoreError as e:
            console.print(f"[bold red]✖[/bold red] Storage initialization FAILED: {e}")
            raise typer.Exit(code=1)
    console.print(f"[bold green]✔[/bold green] Storage ({config.storage.backend}) is ready.")

    console.print("[bold green]All services initialized.[/bold green]")


@app.command()
def check():
    """Checks connectivity to the database, the content store and the identity service."""
    console.rule("[bold cyan]Connection Check[/bold cyan]")

    async def _check():
        client = create_file_store()
        try:
            return await client.check_connections()
        finally:
            await client.aclose()

    statuses = asyncio.run(_check())
    failed = False
    for name, status in statuses.items():
        if status == "ok":
            console.print(f"[bold green]✔[/bold green] {name}: OK")
        else:
            failed = True
            console.print(f"[bold red]✖[/bold red] {name}: FAILED ({status})")
    if failed:
        raise typer.Exit(code=1)


def _print_quota(quota) -> None:
    console.print(f"User:      {quota.user_id}")
    console.print(f"Used:      {quota.used_bytes} bytes ({format_bytes(quota.used_bytes)})")
    console.print(f"Limit:     {quota.limit_bytes} bytes ({format_bytes(quota.limit_bytes)})")
    console.print(f"Available: {quota.available_bytes} bytes")
    console.print(f"Usage:     {quota.usage_percentage:.1f}%")


@quota_app.command("show")
def quota_show(user_id: UUID = typer.Argument(..., help="Owner id")):
    """Shows the quota record (created lazily with the default limit)."""
    async def _show():
        client = create_file_store()
        try:
            return await client.get_quota(user_id)
        finally:
            await client.aclose()

    try:
        quota = asyncio.run(_show())
    except FileStoreError as e:
        console.print(f"[bold red]✖[/bold red] {e}")
        raise typer.Exit(code=1)
    _print_quota(quota)


@quota_app.command("set-limit")
def quota_set_limit(
    user_id: UUID = typer.Argument(..., help="Owner id"),
    limit_bytes: int = typer.Argument(..., help="New limit in bytes"),
):
    """Sets a new storage limit for the user."""
    async def _set():
        client = create_file_store()
        try:
            return await client.set_quota_limit(user_id, limit_bytes)
        finally:
            await client.aclose()

    result = asyncio.run(_set())
    if not result:
        console.print(f"[bold red]✖[/bold red] {result.error}")
        raise typer.Exit(code=1)
    console.print("[bold green]✔[/bold green] Limit updated.")
    _print_quota(result.value)


@quota_app.command("resync")
def quota_resync(user_id: UUID = typer.Argument(..., help="Owner id")):
    """Recomputes used bytes from the catalog (trash included)."""
    async def _resync():
        client = create_file_store()
        try:
            return await client.resync_quota(user_id)
        finally:
            await client.aclose()

    result = asyncio.run(_resync())
    if not result:
        console.print(f"[bold red]✖[/bold red] {result.error}")
        raise typer.Exit(code=1)
    console.print("[bold green]✔[/bold green] Quota resynced.")
    _print_quota(result.value)


@app.command()
def orphans(prefix: str = typer.Option(None, help="Only scan keys under this prefix")):
    """Lists stored objects that have no catalog row. Nothing is deleted."""
    async def _scan():
        client = create_file_store()
        try:
            return await client.find_orphaned_keys(prefix)
        finally:
            await client.aclose()

    try:
        keys = asyncio.run(_scan())
    except FileStoreError as e:
        console.print(f"[bold red]✖[/bold red] Orphan scan FAILED: {e}")
        raise typer.Exit(code=1)

    if not keys:
        console.print("[bold green]✔[/bold green] No orphaned objects found.")
        return
    for key in keys:
        console.print(key, soft_wrap=True)
    console.print(f"[yellow]{len(keys)} orphaned object(s).[/yellow]")
