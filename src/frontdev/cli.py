#!/usr/bin/env python3
"""frontdev CLI - Run a frontend bundler behind a development HTTP server.

Usage:
    frontdev run --project-dir ./frontend
    frontdev port
    frontdev stop
    frontdev config
"""

import logging
import os
import sys
import threading
from pathlib import Path
from typing import Optional

import click
import yaml

from . import __version__
from .core.bundler import BundlerClient
from .core.config import ConfigError, DevServerConfig
from .core.context import DevServerContext
from .core.errors import ConnectivityError
from .core.paths import PORTFILE_TOKEN_ENV, get_launch_token
from .core.ports import PortRegistry
from .server.http import create_server
from .server.livereload import LiveReload


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _load_config(project_dir: Optional[str], config_file: Optional[str]) -> DevServerConfig:
    try:
        config = DevServerConfig.load(
            path=Path(config_file) if config_file else None,
            project_dir=Path(project_dir) if project_dir else None,
        )
        return config.with_env_overrides()
    except ConfigError as e:
        raise click.ClickException(str(e))


def _get_registry(project_dir: Optional[str], token: Optional[str]) -> PortRegistry:
    token = token or os.environ.get(PORTFILE_TOKEN_ENV)
    if not token:
        raise click.ClickException(
            f"No launch token. Pass --token or set {PORTFILE_TOKEN_ENV} "
            "to the value printed by `frontdev run`."
        )
    return PortRegistry(Path(project_dir) if project_dir else Path.cwd(), token=token)


project_dir_option = click.option(
    "--project-dir",
    "-p",
    default=None,
    type=click.Path(file_okay=False),
    help="Frontend project directory. Defaults to the current directory.",
)

config_option = click.option(
    "--config",
    "-c",
    "config_file",
    default=None,
    type=click.Path(dir_okay=False),
    help="Configuration file. Defaults to frontdev.yaml in the project.",
)

token_option = click.option(
    "--token",
    default=None,
    help=f"Launch token of the running dev server. Defaults to ${PORTFILE_TOKEN_ENV}.",
)


@click.group()
@click.version_option(version=__version__, prog_name="frontdev")
def main():
    """frontdev - Development server for frontend bundlers.

    Runs the bundler as a child process, waits for its first build and
    proxies asset requests to it from a local HTTP server.

    \b
    Quick start:
        frontdev run --project-dir ./frontend
    """
    pass


@main.command()
@project_dir_option
@config_option
@click.option(
    "--port",
    type=int,
    default=None,
    help="Port of an already running bundler to attach to.",
)
@click.option(
    "--host",
    default="127.0.0.1",
    help="Host the front server binds to.",
)
@click.option(
    "--listen-port",
    "-l",
    type=int,
    default=8080,
    help="Port the front server listens on.",
)
@click.option(
    "--static-dir",
    "-s",
    default=None,
    type=click.Path(exists=True, file_okay=False),
    help="Directory serving everything the bundler does not.",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable debug logging.",
)
def run(
    project_dir: Optional[str],
    config_file: Optional[str],
    port: Optional[int],
    host: str,
    listen_port: int,
    static_dir: Optional[str],
    verbose: bool,
):
    """Start the bundler and serve the application.

    The bundler starts in the background; requests for its assets get a
    placeholder page until the first build is done. Press Ctrl+C to stop
    both the front server and the bundler.

    \b
    Examples:
        frontdev run
        frontdev run -p ./frontend -s ./public --listen-port 3000
        frontdev run --port 45123
    """
    _configure_logging(verbose)
    config = _load_config(project_dir, config_file)
    if port is not None:
        config.port = port

    live_reload = LiveReload()
    with DevServerContext(live_reload=live_reload, console=sys.stdout) as context:
        try:
            server = create_server(
                context,
                host=host,
                port=listen_port,
                live_reload=live_reload,
                static_dir=Path(static_dir).resolve() if static_dir else None,
            )
        except OSError as e:
            raise click.ClickException(f"Cannot listen on {host}:{listen_port}: {e}")

        context.start(config)
        fatal = []

        def on_startup(future):
            # An explicit bundler port that does not answer has no fallback
            error = future.exception()
            if isinstance(error, ConnectivityError):
                fatal.append(error)
                threading.Thread(target=server.shutdown, daemon=True).start()

        context.startup.add_done_callback(on_startup)

        click.echo(f"frontdev serving {config.project_dir}")
        click.echo(f"  URL: http://{host}:{server.server_port}")
        click.echo(f"  Token: {PORTFILE_TOKEN_ENV}={get_launch_token()}")
        click.echo("Press Ctrl+C to stop")
        try:
            server.serve_forever()
        except KeyboardInterrupt:
            click.echo("\nShutting down...")
        finally:
            server.server_close()
        if fatal:
            raise click.ClickException(str(fatal[0]))


@main.command()
@project_dir_option
@token_option
def port(project_dir: Optional[str], token: Optional[str]):
    """Print the port of the bundler started for this project."""
    registry = _get_registry(project_dir, token)
    value = registry.read()
    if value <= 0:
        raise click.ClickException(f"No bundler port recorded in {registry.port_file}")
    click.echo(str(value))


@main.command()
@project_dir_option
@token_option
def stop(project_dir: Optional[str], token: Optional[str]):
    """Ask a bundler left running for reuse to exit."""
    registry = _get_registry(project_dir, token)
    value = registry.read()
    if value <= 0:
        raise click.ClickException(f"No bundler port recorded in {registry.port_file}")
    BundlerClient(value, timeout=5.0).request_stop()
    registry.release()
    click.echo(f"Sent stop to bundler on port {value}")


@main.command()
@project_dir_option
@config_option
@click.option(
    "--save",
    is_flag=True,
    help="Write the effective configuration to the project file.",
)
def config(project_dir: Optional[str], config_file: Optional[str], save: bool):
    """Show the effective configuration as YAML."""
    cfg = _load_config(project_dir, config_file)
    click.echo(yaml.safe_dump(cfg.to_dict(), sort_keys=False), nl=False)
    if save:
        target = Path(config_file) if config_file else None
        try:
            cfg.save(target)
        except OSError as e:
            raise click.ClickException(f"Failed to save configuration: {e}")
        click.echo(click.style("Saved.", fg="green"), err=True)


if __name__ == "__main__":
    main()
