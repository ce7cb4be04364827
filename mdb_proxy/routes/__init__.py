"""
API routers.

Every router is mounted under ``/api``; ``include_routers`` wires them into
an application.
"""

from fastapi import FastAPI

from . import analytics, connection, database, documents

ROUTERS = (
    connection.router,
    database.router,
    documents.router,
    analytics.router,
)


def include_routers(app: FastAPI) -> None:
    for router in ROUTERS:
        app.include_router(router)


__all__ = ["ROUTERS", "include_routers"]
