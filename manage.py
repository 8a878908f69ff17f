import asyncio
import json
from pathlib import Path
import subprocess
from typing import Annotated

from pydantic import validate_email
from rich import print
import typer

from app.core.config import settings
from app.core.enums import UserRole

app = typer.Typer()


async def init_db_task() -> None:
    """Create every table defined on the metadata (idempotent)."""
    from app.core.db import dispose_db, init_db

    print("[yellow]Creating database tables[/yellow]")
    try:
        await init_db()
    finally:
        await dispose_db()
    print("[green]Database tables created[/green]")


async def create_user_task(email: str, name: str, role: UserRole) -> None:
    from app.core.db import AsyncSessionLocal, dispose_db
    from app.core.db.crud import user_db

    try:
        async with AsyncSessionLocal.begin() as session:
            if existing_user := await user_db.get_by_email(session, email):
                print(
                    f"[yellow]User already exists:[/yellow] {existing_user.email} "
                    f"({existing_user.role.value})"
                )
                return
            user = await user_db.create(
                session,
                {"email": email, "name": name, "role": role, "is_active": True},
                commit_self=False,
            )
            print(f"[green]User created:[/green] {user.email} ({user.role.value}) id={user.id}")
    finally:
        await dispose_db()


async def issue_code_task(email: str) -> None:
    """
    Mint a one-time code for an existing user and print the desktop deep link.

    Useful for exercising the desktop sign-in without the web dashboard.
    """
    from app.core.db import AsyncSessionLocal, dispose_db
    from app.core.db.crud import user_db
    from app.core.services.code_vault import CodeVault
    from app.core.services.token_issuer import Identity
    from app.core.utils import build_desktop_redirect_uri

    try:
        async with AsyncSessionLocal() as session:
            user = await user_db.get_by_email(session, email)
        if user is None:
            print(f"[red]Error: no user with email {email}[/red]")
            raise typer.Exit(1)

        vault = CodeVault()
        code = await vault.issue(
            Identity(user_id=str(user.id), email=user.email, role=user.role)
        )
        info = await vault.get_code_info(code)
        print(f"[green]Code issued for {user.email}:[/green] {code}")
        print(f"[cyan]Deep link:[/cyan] {build_desktop_redirect_uri(code)}")
        if info is not None:
            print(f"[cyan]Expires at:[/cyan] {info.expires_at.isoformat()}")
    finally:
        await dispose_db()


async def sweep_task() -> None:
    """Run every periodic sweep once."""
    from app.core.db import dispose_db
    from app.core.services import RedisService
    from app.infrastructure.scheduler.jobs import (
        prune_rate_limit_windows,
        purge_expired_codes,
        sweep_stale_sessions,
    )

    if settings.RATE_LIMIT_BACKEND == "redis":
        await RedisService.init(settings.REDIS_URL)
    try:
        print("[yellow]Purging expired one-time codes[/yellow]")
        await purge_expired_codes()
        print("[yellow]Sweeping stale desktop sessions[/yellow]")
        await sweep_stale_sessions()
        print("[yellow]Pruning rate limit windows[/yellow]")
        await prune_rate_limit_windows()
    finally:
        await RedisService.aclose()
        await dispose_db()
    print("[green]Sweep complete[/green]")


async def reset_rate_limit_task(user_id: str, endpoint: str | None) -> None:
    from app.core.db import dispose_db
    from app.core.services import RedisService
    from app.core.services.rate_limit import RateLimiter

    if settings.RATE_LIMIT_BACKEND == "redis":
        await RedisService.init(settings.REDIS_URL)
    try:
        removed = await RateLimiter().reset(user_id, endpoint)
    finally:
        await RedisService.aclose()
        await dispose_db()
    print(f"[green]Removed {removed} rate limit window(s) for {user_id}[/green]")


def email_validator(email: str) -> str:
    _, email = validate_email(email)
    return email.lower()


@app.command()
def initdb():
    """
    Create the database tables.

    Examples:
        python manage.py initdb
    """
    asyncio.run(init_db_task())


@app.command()
def createuser(
    email: Annotated[str, typer.Argument(callback=email_validator)],
    name: Annotated[str, typer.Argument()],
    role: Annotated[
        UserRole, typer.Option("--role", "-r", help="Role of the new user")
    ] = UserRole.USER,
):
    """
    Create a user for local development.

    Examples:
        python manage.py createuser ada@example.com "Ada Analyst" --role admin
    """
    asyncio.run(create_user_task(email, name, role))


@app.command()
def issuecode(email: Annotated[str, typer.Argument(callback=email_validator)]):
    """
    Issue a one-time code for a user and print the desktop deep link.

    Examples:
        python manage.py issuecode ada@example.com
    """
    asyncio.run(issue_code_task(email))


@app.command()
def sweep():
    """
    Purge expired codes, stale desktop sessions and old rate limit windows once.
    """
    asyncio.run(sweep_task())


@app.command()
def resetratelimit(
    user_id: Annotated[str, typer.Argument(help="User id whose windows are reset")],
    endpoint: Annotated[
        str | None,
        typer.Option(help="Only reset this endpoint, e.g. 'sessions:heartbeat'"),
    ] = None,
):
    """
    Reset rate limit windows for a user.

    Examples:
        python manage.py resetratelimit 550e8400-e29b-41d4-a716-446655440000
        python manage.py resetratelimit 550e8400-... --endpoint sessions:heartbeat
    """
    asyncio.run(reset_rate_limit_task(user_id, endpoint))


@app.command()
def runserver():
    try:
        server_command = (
            "uvicorn app.main:app --host 127.0.0.1 --port 8000 --reload"
            if settings.DEBUG
            else "uvicorn app.main:app --host 0.0.0.0 --port 8000"
        )
        print(f"Running FastAPI server: {server_command}")
        subprocess.run(server_command, shell=True, check=True)
    except subprocess.CalledProcessError as e:
        print(f"[red]Error:[/red] {e}")
        raise


@app.command()
def runscheduler():
    """
    Run the periodic sweeps in a standalone process.
    """
    from app.infrastructure.scheduler.main import main as scheduler_main

    asyncio.run(scheduler_main())


@app.command()
def generateopenapi():
    """
    Generates the OpenAPI schema for the FastAPI application and saves it to a JSON file.
    """
    from app.main import app

    openapi_path = Path("openapi.json")
    with openapi_path.open("w", encoding="utf-8") as f:
        json.dump(app.openapi(), f, ensure_ascii=False, indent=2)
    print(f"[green]OpenAPI schema generated at {openapi_path.name}[/green]")


@app.callback()
def main(ctx: typer.Context):
    print(f"Executing the command: {ctx.invoked_subcommand}")


if __name__ == "__main__":
    app()
