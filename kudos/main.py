#!/usr/bin/env python3
"""
Kudos command line: run the API and manage the user store
"""
import asyncio
import sys

import click
from dotenv import load_dotenv
from pydantic import ValidationError as SettingsValidationError

from .auth.permissions import ADMIN_ROLE_ID
from .auth.service import AuthenticationService, create_password_context, generate_secure_password
from .core.config import get_settings
from .core.exceptions import KudosError
from .core.logging import get_logger, setup_logging
from .db.repository import JsonUserRepository

# Load environment variables
load_dotenv()

logger = get_logger("kudos")


def _load_settings():
    try:
        return get_settings()
    except SettingsValidationError as e:
        click.echo(click.style(f"Invalid configuration:\n{e}", fg="red"), err=True)
        sys.exit(1)


@click.group(context_settings=dict(help_option_names=["-h", "--help"]))
def cli():
    """Kudos - session security and access control service"""


@cli.command()
@click.option("--host", default=None, help="Bind address (defaults to API_HOST)")
@click.option("--port", type=int, default=None, help="Bind port (defaults to API_PORT)")
@click.option("--reload/--no-reload", default=False)
def serve(host, port, reload):
    """Start the Kudos API"""
    import uvicorn

    settings = _load_settings()
    setup_logging(settings.log_level, settings.log_file, settings.log_structured)
    logger.info(f"Starting Kudos API on {host or settings.api_host}:{port or settings.api_port}")

    uvicorn.run(
        "kudos.api.main:create_app",
        factory=True,
        host=host or settings.api_host,
        port=port or settings.api_port,
        reload=reload,
        server_header=False,
        log_level=settings.log_level.lower(),
    )


@cli.command("create-admin")
@click.option("--email", prompt=True)
@click.option("--name", prompt=True, default="Administrator")
@click.option(
    "--password",
    prompt=True,
    hide_input=True,
    confirmation_prompt=True,
    default="",
    help="Leave empty to generate one",
)
def create_admin(email, name, password):
    """Create an administrator in the user store"""
    settings = _load_settings()
    setup_logging(settings.log_level, settings.log_file, structured=False)

    generated = not password
    password = password or generate_secure_password()

    async def run():
        users = JsonUserRepository(settings.users_file, settings.users_cache_ttl_seconds)
        auth = AuthenticationService(
            users,
            create_password_context(settings.password_hash_rounds, settings.password_hash_memory_kib),
        )
        return await auth.register_user(email=email, name=name, password=password, role_id=ADMIN_ROLE_ID)

    try:
        user = asyncio.run(run())
    except KudosError as e:
        click.echo(click.style(f"Could not create admin: {e.to_dict()}", fg="red"), err=True)
        sys.exit(1)

    click.echo(click.style(f"Administrator {user.email} created ({user.id})", fg="green"))
    if generated:
        click.echo(f"Generated password: {password}")
        click.echo(click.style("Store it now; it is not shown again.", fg="yellow"))


SEED_USERS = (
    ("user@kudos.local", "Standard User", "role_user"),
    ("admin@kudos.local", "Admin User", ADMIN_ROLE_ID),
)


@cli.command("setup-users")
@click.option("--password", default=None, help="Password for every seeded user; generated when omitted")
def setup_users(password):
    """Seed the user store with a standard user and an administrator"""
    settings = _load_settings()
    setup_logging(settings.log_level, settings.log_file, structured=False)

    async def run():
        users = JsonUserRepository(settings.users_file, settings.users_cache_ttl_seconds)
        auth = AuthenticationService(
            users,
            create_password_context(settings.password_hash_rounds, settings.password_hash_memory_kib),
        )
        created = []
        for email, name, role_id in SEED_USERS:
            if await users.exists_by_email(email):
                click.echo(f"Skipping {email}: already exists")
                continue
            secret = password or generate_secure_password()
            user = await auth.register_user(email=email, name=name, password=secret, role_id=role_id)
            created.append((user, secret))
        return created

    try:
        created = asyncio.run(run())
    except KudosError as e:
        click.echo(click.style(f"Could not set up users: {e.to_dict()}", fg="red"), err=True)
        sys.exit(1)

    click.echo(click.style(f"Users file: {settings.users_file}", fg="green"))
    for user, secret in created:
        click.echo(f"  {user.email} ({user.role_id})  password: {secret}")
    if created and not password:
        click.echo(click.style("Store these passwords now; they are not shown again.", fg="yellow"))


@cli.command("hash-password")
@click.option("--password", prompt=True, hide_input=True, confirmation_prompt=True)
def hash_password(password):
    """Print an argon2 hash for a password"""
    settings = _load_settings()
    context = create_password_context(settings.password_hash_rounds, settings.password_hash_memory_kib)
    click.echo(context.hash(password))


@cli.command("validate-config")
def validate_config():
    """Validate Kudos configuration"""
    settings = _load_settings()
    click.echo(f"Environment: {settings.environment}")
    click.echo(f"Users file: {settings.users_file}")
    click.echo(f"Rate limit store: {'redis' if settings.redis_url else 'memory'}")
    if settings.is_production and settings.debug:
        click.echo(click.style("DEBUG must be disabled in production", fg="red"), err=True)
        sys.exit(1)
    click.echo(click.style("Configuration is valid", fg="green"))


if __name__ == "__main__":
    cli()
