"""
Check-uri command for CLI.

Runs a connection URI through the egress validator without dialling it.
"""

import asyncio
import sys

import click

from ...exceptions import InvalidFormatError
from ...observability import mask_uri
from ...security.egress import EgressValidator, parse_mongo_uri


@click.command("check-uri")
@click.argument("uri")
@click.option("--static", "static_only", is_flag=True, help="Skip DNS resolution")
def check_uri(uri: str, static_only: bool) -> None:
    """
    Check whether the proxy would be allowed to dial URI.

    Examples:
        mdb-proxy check-uri "mongodb://db.example.com:27017/app"
        mdb-proxy check-uri "mongodb://10.0.0.5/app" --static
    """
    try:
        parsed = parse_mongo_uri(uri)
    except InvalidFormatError as e:
        click.echo(click.style(f"❌ {e.message}", fg="red"))
        sys.exit(1)

    validator = EgressValidator()
    if static_only:
        decision = validator.check_static(uri)
    else:
        decision = asyncio.run(validator.check(uri))

    click.echo(f"URI:   {mask_uri(uri)}")
    click.echo(f"Hosts: {', '.join(host for host, _ in parsed.hosts)}")
    if decision.allowed:
        click.echo(click.style("✅ Allowed", fg="green"))
        sys.exit(0)
    click.echo(click.style(f"❌ Denied ({decision.code}): {decision.reason}", fg="red"))
    sys.exit(1)
