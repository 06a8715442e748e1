import asyncio
import subprocess
from typing import Annotated

from cryptography.fernet import Fernet
from pydantic import validate_email
from rich import print
import typer

from careauth.core.config import settings

app = typer.Typer()


def email_validator(email: str) -> str:
    _, email = validate_email(email)
    return email.lower()


async def init_db_task() -> None:
    from careauth.core.db import dispose_db, init_db

    try:
        await init_db()
        print("[green]Database tables created[/green]")
    finally:
        await dispose_db()


async def purge_otps_task(retention_hours: int | None) -> None:
    from careauth.core.db import dispose_db
    from careauth.infrastructure.scheduler.jobs import purge_expired_otps

    try:
        await purge_expired_otps(retention_hours=retention_hours)
        print("[green]OTP purge complete[/green]")
    finally:
        await dispose_db()


async def create_admin_task(email: str, password: str, role: str) -> None:
    """
    Create a verified admin, or promote an existing admin row to ``is_admin``.
    """
    from careauth.core.db import AsyncSessionLocal, dispose_db
    from careauth.core.db.crud import admin_db
    from careauth.core.utils import hash_password

    try:
        async with AsyncSessionLocal() as session:
            async with session.begin():
                if existing := await admin_db.find_by_email(session, email):
                    if existing.is_admin:
                        print(f"[yellow]Admin already exists:[/yellow] {email}")
                        return
                    if typer.confirm(
                        f"Admin account {email} lacks admin privilege. Grant it?"
                    ):
                        await admin_db.update(
                            session,
                            existing.id,
                            {"is_admin": True},
                            commit_self=False,
                        )
                        print(f"[green]Admin privilege granted:[/green] {email}")
                    return

                admin = await admin_db.create(
                    session,
                    data={
                        "email": email,
                        "password_hash": hash_password(password),
                        "email_verified": True,
                        "is_admin": True,
                        "role": role,
                    },
                    commit_self=False,
                )
                print(f"[green]Admin created:[/green] {admin.email}")
    finally:
        await dispose_db()


@app.command()
def initdb():
    """Create every table that does not exist yet."""
    asyncio.run(init_db_task())


@app.command()
def purgeotps(
    retention_hours: Annotated[
        int | None,
        typer.Option(help="Override OTP_RETENTION_HOURS for this run."),
    ] = None,
):
    """Run one OTP purge pass now."""
    asyncio.run(purge_otps_task(retention_hours))


@app.command()
def createadmin(
    email: Annotated[
        str, typer.Option(prompt=True, prompt_required=False, callback=email_validator)
    ],
    password: Annotated[
        str, typer.Option(prompt=True, hide_input=True, confirmation_prompt=True)
    ],
    role: Annotated[str, typer.Option(help="Free-form admin role label.")] = "admin",
):
    """Create a verified administrator with admin privilege."""
    asyncio.run(create_admin_task(email, password, role))


@app.command()
def generatekey():
    """Print a fresh key for OTP_ENCRYPTION_KEYS."""
    print(Fernet.generate_key().decode())


@app.command()
def runserver():
    try:
        server_command = (
            "uvicorn careauth.main:app --host 127.0.0.1 --port 8000 --reload"
            if settings.DEBUG
            else "uvicorn careauth.main:app --host 0.0.0.0 --port 8000"
        )
        print(f"Running FastAPI server: {server_command}")
        subprocess.run(server_command, shell=True, check=True)
    except subprocess.CalledProcessError as e:
        print(f"[red]Error:[/red] {e}")
        raise


@app.command()
def runscheduler():
    """Run the housekeeping scheduler in the foreground."""
    from careauth.infrastructure.scheduler.main import main

    asyncio.run(main())


@app.command()
def runworker():
    """Run the OTP notification consumer in the foreground."""
    from careauth.infrastructure.messaging.main import main

    asyncio.run(main())


if __name__ == "__main__":
    app()
