"""Command-line interface for mdb-proxy."""

from .main import cli

__all__ = ["cli"]
