"""Valu application launcher.

Runs an embedded application as a subprocess of the host, speaking the Valu
channel over stdin/stdout. Logs go to stderr.

Usage:
    valu-app run myapp.main:ChatApp                 # Factory receives the ValuApi
    valu-app run myapp.main:create_app --timeout 30 # Bound every request to 30s
    valu-app run myapp.main:ChatApp --log-level DEBUG
"""

from __future__ import annotations

import asyncio
import importlib
import inspect
import logging
import sys
from collections.abc import Callable
from typing import Any

import click

from . import __version__
from .client import ValuApi
from .config import ValuApiConfig
from .transport.stdio import StdioChannel

logger = logging.getLogger(__name__)

# Called with the ValuApi; returns the application (or an awaitable of it)
ApplicationFactory = Callable[[ValuApi], Any]


def load_factory(target: str) -> ApplicationFactory:
    """Resolve "package.module:attribute" to a callable.

    Raises:
        click.BadParameter: If the target cannot be imported or is not callable
    """
    module_name, sep, attribute = target.partition(":")
    if not sep or not module_name or not attribute:
        raise click.BadParameter(f"Expected MODULE:FACTORY, got {target!r}")

    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise click.BadParameter(f"Cannot import {module_name}: {e}") from e

    factory: Any = module
    for part in attribute.split("."):
        try:
            factory = getattr(factory, part)
        except AttributeError as e:
            raise click.BadParameter(f"{module_name} has no attribute {attribute!r}") from e

    if not callable(factory):
        raise click.BadParameter(f"{target} is not callable")
    return factory


async def run_application(
    factory: ApplicationFactory,
    config: ValuApiConfig | None = None,
    channel: StdioChannel | None = None,
    reader: asyncio.StreamReader | None = None,
) -> None:
    """Run an application until the host closes the channel.

    Args:
        factory: Builds the application from the ValuApi
        config: Client configuration
        channel: Channel to use (default: StdioChannel on stdin/stdout)
        reader: Stream the channel reads from (default: stdin)
    """
    config = config or ValuApiConfig()
    channel = channel or StdioChannel(origin=config.stdio_origin)
    api = ValuApi(channel, config)

    application = factory(api)
    if inspect.isawaitable(application):
        application = await application
    api.set_application(application)

    try:
        await channel.run(reader)
    finally:
        api.close()
        on_destroy = getattr(application, "on_destroy", None)
        if on_destroy is not None:
            result = on_destroy()
            if inspect.isawaitable(result):
                await result


def configure_logging(level: str) -> None:
    """Send logs to stderr; stdout carries the channel."""
    logging.basicConfig(
        level=level.upper(),
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@click.group()
@click.version_option(__version__, prog_name="valu-app")
def main() -> None:
    """Valu API - run applications embedded in a Valu host."""


@main.command()
@click.argument("target")
@click.option("--log-level", default=None, help="Log level (default: VALU_API_LOG_LEVEL or WARNING)")
@click.option("--timeout", type=float, default=None, help="Seconds to wait for each host reply")
@click.option("--origin", default=None, help="Origin reported for the stdio channel")
def run(target: str, log_level: str | None, timeout: float | None, origin: str | None) -> None:
    """Run TARGET (MODULE:FACTORY) over stdin/stdout.

    The factory is called with the ValuApi and must return the application,
    typically a ValuApplication subclass.
    """
    config = ValuApiConfig.from_env()
    if log_level:
        config.log_level = log_level.upper()
    if timeout is not None:
        config.request_timeout = timeout if timeout > 0 else None
    if origin:
        config.stdio_origin = origin

    configure_logging(config.log_level)
    factory = load_factory(target)

    click.echo(f"Starting {target} in stdio mode", err=True)
    try:
        asyncio.run(run_application(factory, config))
    except KeyboardInterrupt:
        click.echo("\nShutting down", err=True)


if __name__ == "__main__":
    main()
