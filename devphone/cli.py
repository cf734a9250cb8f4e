"""
Dev Phone command line.

Usage:
    dev-phone
    dev-phone --phone-number +15551234567 --force
    dev-phone --clear --headless --port 3001
"""

import asyncio
import logging
import socket
import sys
from typing import Optional

import click

from devphone.config import Settings, get_settings
from devphone.core.errors import DevPhoneError
from devphone.core.lifecycle import LifecycleController
from devphone.infra import TwilioAccount
from devphone.main import create_app, setup_logging

logger = logging.getLogger(__name__)

DEFAULT_PORT = 1337


def is_valid_port(value: str) -> bool:
    """Check if value is a TCP port number."""
    return value.isdigit() and 0 < int(value) < 65536


def get_available_port(host: str = "127.0.0.1", preferred: int = DEFAULT_PORT) -> int:
    """Return preferred if it is free on host, otherwise any free port."""
    for candidate in (preferred, 0):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            try:
                sock.bind((host, candidate))
            except OSError:
                continue
            return sock.getsockname()[1]
    return preferred


def resolve_settings(
    settings: Settings,
    phone_number: Optional[str],
    force: bool,
    headless: bool,
    clear: bool,
    port: Optional[str],
) -> Settings:
    """Apply command line flags on top of the environment settings."""
    overrides: dict = {
        "force": force or settings.force,
        "headless": headless or settings.headless,
        "clear": clear,
    }
    if phone_number:
        overrides["phone_number"] = phone_number

    resolved_port = settings.port or get_available_port(settings.host)
    if port is not None:
        if is_valid_port(port):
            resolved_port = int(port)
        else:
            click.echo(
                f"'{port}' is not a valid port. I'll try to get set up with "
                f"{resolved_port} instead.",
                err=True,
            )
    overrides["port"] = resolved_port

    return settings.model_copy(update=overrides)


@click.command(name="dev-phone")
@click.option(
    "--phone-number",
    help="Associates the Dev Phone with a phone number on the account.",
)
@click.option(
    "-f",
    "--force",
    is_flag=True,
    help="Forces an overwrite of the phone number configuration.",
)
@click.option(
    "--headless",
    is_flag=True,
    help="Prevents the UI from automatically opening in the browser.",
)
@click.option(
    "--clear",
    is_flag=True,
    help="Remove all dev-phone resources from your account before starting.",
)
@click.option(
    "--port",
    help="Port of the Dev Phone UI.",
)
def cli(
    phone_number: Optional[str],
    force: bool,
    headless: bool,
    clear: bool,
    port: Optional[str],
) -> None:
    """Run a dev phone until interrupted."""
    if force and not phone_number:
        raise click.UsageError("--force requires --phone-number")

    settings = get_settings()
    setup_logging(settings)

    if clear:
        clear = click.confirm(
            "Do you want to delete all of the dev phone resources on your Twilio "
            "account? This may interfere with other instances of the Dev Phone.",
            default=False,
        )

    settings = resolve_settings(settings, phone_number, force, headless, clear, port)

    try:
        account = TwilioAccount.from_settings(settings)
        controller = LifecycleController(settings, account)
        exit_code = asyncio.run(controller.run(create_app(controller)))
    except DevPhoneError as e:
        logger.error(f"Dev phone failed to start: {e}")
        raise click.ClickException(str(e)) from e

    sys.exit(exit_code)


def main() -> None:
    """Console script entry point."""
    cli()


if __name__ == "__main__":
    main()
