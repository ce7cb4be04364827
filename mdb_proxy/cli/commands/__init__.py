"""CLI commands."""

from .check_uri import check_uri
from .serve import serve

__all__ = ["check_uri", "serve"]
