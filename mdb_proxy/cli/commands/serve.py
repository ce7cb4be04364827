"""
Serve command for CLI.

Runs the proxy under uvicorn with configuration from the environment;
flags override individual settings.
"""

import click
import uvicorn

from ...app import create_app
from ...config import ProxyConfig
from ...exceptions import ConfigurationError


@click.command()
@click.option("--host", default=None, help="Listen address (default: HOST or 0.0.0.0)")
@click.option("--port", type=int, default=None, help="Listen port (default: PORT or 3001)")
@click.option(
    "--environment",
    type=click.Choice(["development", "production", "test"]),
    default=None,
    help="Runtime environment (default: ENVIRONMENT or development)",
)
@click.option("--log-level", default=None, help="Log level (default: LOG_LEVEL or INFO)")
def serve(host: str | None, port: int | None, environment: str | None, log_level: str | None) -> None:
    """
    Start the proxy server.

    SESSION_SECRET must be set in the environment.

    Examples:
        mdb-proxy serve
        mdb-proxy serve --port 8080 --environment production
    """
    config = ProxyConfig(host=host, port=port, environment=environment, log_level=log_level)
    try:
        app = create_app(config)
    except ConfigurationError as e:
        raise click.ClickException(e.message) from e

    uvicorn.run(
        app,
        host=config.host,
        port=config.port,
        log_level=config.log_level.lower(),
        proxy_headers=config.trust_proxy,
    )
