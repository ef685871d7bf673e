"""
Operational commands for the trainer auth service.

    python manage.py migrate
    python manage.py cleanuptokens --retain-revoked-days 3
"""

import asyncio
import json
import os
import subprocess
from pathlib import Path
from typing import Annotated, Awaitable

from rich import print
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import create_async_engine
import typer

from app.core.config import settings

app = typer.Typer(help="Trainer auth service management commands.")


def _run(command: str, label: str) -> None:
    print(f"[cyan]{label}:[/cyan] {command}")
    try:
        subprocess.run(command, shell=True, check=True)
    except subprocess.CalledProcessError as e:
        print(f"[red]{label} failed:[/red] {e}")
        raise


async def _then_dispose(job: Awaitable[None]) -> None:
    """Await a cleanup job, then release the pooled engine it used."""
    from app.core.db import dispose_db

    try:
        await job
    finally:
        await dispose_db()


async def cleanup_tokens_task(retain_revoked_days: int) -> None:
    from app.infrastructure.scheduler.jobs import cleanup_refresh_tokens

    await _then_dispose(
        cleanup_refresh_tokens(retain_revoked_days=retain_revoked_days)
    )


async def cleanup_otps_task(grace_minutes: int) -> None:
    from app.infrastructure.scheduler.jobs import cleanup_expired_otps

    await _then_dispose(cleanup_expired_otps(grace_minutes=grace_minutes))


async def clear_alembic_task() -> None:
    """
    Empty the `alembic_version` table so migrations can be re-stamped.

    Reads DATABASE_URL from the process environment rather than .env, so it
    only ever touches the database the operator named explicitly.

    Raises:
        typer.Exit: DATABASE_URL is not set.
    """
    database_url = os.environ.get("DATABASE_URL")
    if not database_url:
        print("[red]DATABASE_URL is not set in the environment[/red]")
        raise typer.Exit(1)

    engine = create_async_engine(database_url)
    try:
        async with engine.begin() as connection:
            result = await connection.execute(text("DELETE FROM alembic_version"))
        print(f"[green]Removed {result.rowcount} alembic_version row(s)[/green]")
    except SQLAlchemyError as e:
        print(f"[yellow]Migration history left unchanged:[/yellow] {e}")
    finally:
        await engine.dispose()


@app.command()
def clearalembic():
    """Clear Alembic migration history."""
    asyncio.run(clear_alembic_task())


@app.command()
def makemigrations(comment: Annotated[str, typer.Argument()] = "auto"):
    """Autogenerate a new Alembic revision named COMMENT."""
    _run(f'alembic revision --autogenerate -m "{comment}"', "makemigrations")


@app.command()
def showmigrations():
    _run("alembic history", "showmigrations")


@app.command()
def migrate():
    """Upgrade the database schema to the latest revision."""
    _run("alembic upgrade head", "migrate")


@app.command()
def runserver():
    host, reload = ("127.0.0.1", " --reload") if settings.DEBUG else ("0.0.0.0", "")
    _run(f"uvicorn app.main:app --host {host} --port 8000{reload}", "runserver")


@app.command()
def runscheduler():
    """Run the cleanup scheduler as its own process."""
    from app.infrastructure.scheduler.main import main

    asyncio.run(main())


@app.command()
def cleanuptokens(
    retain_revoked_days: Annotated[
        int, typer.Option(help="Keep revoked refresh tokens for this many days.")
    ] = settings.REFRESH_TOKEN_RETENTION_DAYS,
):
    """Delete expired refresh tokens and revoked ones past retention."""
    asyncio.run(cleanup_tokens_task(retain_revoked_days))
    print("[green]Refresh token cleanup complete[/green]")


@app.command()
def cleanupotps(
    grace_minutes: Annotated[
        int, typer.Option(help="Keep expired codes for this many minutes.")
    ] = 60,
):
    """Delete one-time codes that expired before the grace window."""
    asyncio.run(cleanup_otps_task(grace_minutes))
    print("[green]OTP cleanup complete[/green]")


@app.command()
def generateopenapi(
    output: Annotated[Path, typer.Option(help="Where to write the schema.")] = Path(
        "openapi.json"
    ),
):
    """Write the FastAPI OpenAPI schema to a file."""
    from app.main import app as fastapi_app

    output.write_text(
        json.dumps(fastapi_app.openapi(), ensure_ascii=False, indent=2),
        encoding="utf-8",
    )
    print(f"[green]OpenAPI schema written to {output}[/green]")


if __name__ == "__main__":
    app()
