"""
AgentX Engine - Command Line

    agentx init-db                                   Apply the database schema
    agentx create-admin --email --name --password    Create an active administrator
    agentx distribute --file contacts.csv            Ingest and distribute a sheet from disk
    agentx reconcile                                 Distribute orphaned tasks
    agentx serve                                     Run the API under uvicorn
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Awaitable, Callable, Optional, TypeVar

import typer
from loguru import logger

from .config import configure_logging, get_settings
from .core.errors import AgentXError
from .db import close_db_pool, ensure_schema, get_pool
from .ingest import load_tasks
from .services import identity_service, task_service
from .services.store import PostgresStore

app = typer.Typer(add_completion=False, help="AgentX task distribution backend")

R = TypeVar("R")

SUFFIX_CONTENT_TYPES = {
    ".csv": "text/csv",
    ".xls": "application/vnd.ms-excel",
    ".xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}


async def _open_store() -> PostgresStore:
    pool = await get_pool()
    if pool is None:
        raise typer.BadParameter("Could not connect to the database (check DATABASE_URL)")
    return PostgresStore(pool)


def _run(action: Callable[[PostgresStore], Awaitable[R]]) -> R:
    """Run one async action against a fresh pool, closing it afterwards."""

    async def _wrapper() -> R:
        try:
            return await action(await _open_store())
        finally:
            await close_db_pool()

    configure_logging()
    try:
        return asyncio.run(_wrapper())
    except typer.BadParameter as exc:
        typer.echo(f"❌ {exc}")
        raise typer.Exit(code=2) from exc
    except AgentXError as exc:
        typer.echo(f"❌ {exc.message}")
        raise typer.Exit(code=1) from exc


@app.command("init-db")
def init_db() -> None:
    """Create tables and indexes (idempotent)."""

    async def _action(store: PostgresStore) -> None:
        await ensure_schema()

    _run(_action)
    typer.echo("✅ Schema applied")


@app.command("create-admin")
def create_admin(
    email: str = typer.Option(..., "--email", help="Administrator email"),
    name: str = typer.Option(..., "--name", help="Display name"),
    password: str = typer.Option(
        ..., "--password", prompt=True, hide_input=True, confirmation_prompt=True
    ),
) -> None:
    """Create an active administrator account."""
    if len(password) < 6:
        typer.echo("❌ Password must be at least 6 characters")
        raise typer.Exit(code=2)

    async def _action(store: PostgresStore):
        return await identity_service.create_admin(
            store, name=name, email=email, password=password
        )

    admin = _run(_action)
    typer.echo(f"✅ Created admin {admin.email} ({admin.id})")


@app.command()
def distribute(
    file: Path = typer.Option(..., "--file", "-f", help="CSV, XLS or XLSX contact sheet"),
) -> None:
    """Ingest a contact sheet from disk and distribute it across active agents."""
    if not file.exists():
        typer.echo(f"❌ File not found: {file}")
        raise typer.Exit(code=2)

    content_type = SUFFIX_CONTENT_TYPES.get(file.suffix.lower())
    if content_type is None:
        typer.echo("❌ Only CSV, XLS, XLSX files are allowed")
        raise typer.Exit(code=2)

    async def _action(store: PostgresStore):
        tasks = load_tasks(file.read_bytes(), content_type)
        return await task_service.distribute_upload(store, tasks)

    result = _run(_action)
    typer.echo(
        f"✅ Distributed {result.task_count} tasks across {result.agent_count} agents"
    )
    for batch in result.batches:
        typer.echo(f"   agent {batch.agent_id}: {len(batch.task_ids)} tasks")


@app.command()
def reconcile() -> None:
    """Distribute tasks that no assignment batch references."""
    batches = _run(task_service.reconcile_orphaned_tasks)
    if not batches:
        typer.echo("✅ No orphaned tasks")
        return
    total = sum(len(b.task_ids) for b in batches)
    typer.echo(f"✅ Reassigned {total} orphaned tasks across {len(batches)} agents")


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address"),
    port: Optional[int] = typer.Option(None, "--port", help="Bind port"),
    reload: bool = typer.Option(False, "--reload", help="Auto-reload on code changes"),
) -> None:
    """Run the HTTP API."""
    import uvicorn

    settings = get_settings()
    logger.info(f"Serving AgentX ({settings.ENVIRONMENT})")
    uvicorn.run(
        "agentx.main:app",
        host=host or settings.HOST,
        port=port or settings.PORT,
        reload=reload,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    app()
