"""Allow ``python -m mdb_proxy``."""

from .cli import cli

if __name__ == "__main__":
    cli(prog_name="mdb-proxy")
