"""Downstream MongoDB connection management."""

from .pool import ConnectionPool, PooledConnection, close_client, hash_uri

__all__ = ["ConnectionPool", "PooledConnection", "close_client", "hash_uri"]
