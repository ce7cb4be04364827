"""
Entry point for the ``mdb-proxy`` command.

    mdb-proxy serve --port 3001
    mdb-proxy check-uri "mongodb+srv://cluster0.example.net/app"
"""

import click

from ..constants import APP_VERSION
from .commands import check_uri, serve


@click.group()
@click.version_option(APP_VERSION, prog_name="mdb-proxy")
def cli() -> None:
    """mdb-proxy: a credential-less MongoDB browser proxy."""


cli.add_command(serve)
cli.add_command(check_uri)


if __name__ == "__main__":
    cli()
