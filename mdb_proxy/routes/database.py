"""
Database routes: list databases, list collections, collection stats.
"""

import asyncio

from fastapi import APIRouter, Depends
from pymongo.errors import PyMongoError

from ..auth.dependencies import CurrentSession, acquire_client, get_current_session, get_proxy
from ..observability import get_logger
from ..utils.mongo import is_authorization_error
from .helpers import log_restricted, ok, require_database, require_names, upstream_failure

logger = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["database"])


@router.get("/databases")
async def list_databases(
    session: CurrentSession = Depends(get_current_session), proxy=Depends(get_proxy)
):
    client = await acquire_client(proxy, session)
    try:
        result = await client.admin.command("listDatabases", nameOnly=False)
    except PyMongoError as e:
        if is_authorization_error(e):
            log_restricted("databases", e, session)
            # Users without listDatabases can still see their default database.
            return ok(
                {
                    "databases": [{"name": session.record.database_name, "sizeOnDisk": None}],
                    "message": "Access restricted: Only the default database is visible",
                }
            )
        raise upstream_failure(e, session, "databases", "Failed to list databases") from None

    databases = [
        {"name": db.get("name"), "sizeOnDisk": db.get("sizeOnDisk")}
        for db in result.get("databases", [])
    ]
    return ok({"databases": databases})


@router.get("/collections")
async def list_collections(
    database: str | None = None,
    session: CurrentSession = Depends(get_current_session),
    proxy=Depends(get_proxy),
):
    database = require_database(database)
    client = await acquire_client(proxy, session)
    db = client[database]

    try:
        collections = await db.list_collections()
        collections = await collections.to_list(length=None)
    except PyMongoError as e:
        if is_authorization_error(e):
            log_restricted("collections", e, session)
            return ok(
                {
                    "collections": [],
                    "database": database,
                    "message": "Access restricted: Collections not visible",
                }
            )
        raise upstream_failure(e, session, "collections", "Failed to list collections") from None

    async def describe(name: str) -> dict:
        try:
            count = await db[name].count_documents({})
            stats = await db.command("collStats", name)
            return {"name": name, "documentCount": count, "size": stats.get("size", 0)}
        except PyMongoError:
            return {"name": name, "documentCount": 0, "size": 0}

    described = await asyncio.gather(*(describe(info["name"]) for info in collections))
    return ok({"collections": list(described), "database": database})


@router.get("/collection-stats")
async def collection_stats(
    database: str | None = None,
    collection: str | None = None,
    session: CurrentSession = Depends(get_current_session),
    proxy=Depends(get_proxy),
):
    database, collection = require_names(database, collection)
    client = await acquire_client(proxy, session)
    db = client[database]
    col = db[collection]

    try:
        count, stats, indexes = await asyncio.gather(
            col.count_documents({}),
            db.command("collStats", collection),
            col.index_information(),
        )
    except PyMongoError as e:
        if is_authorization_error(e):
            log_restricted("stats", e, session)
            return ok(
                {
                    "documentCount": 0,
                    "size": 0,
                    "storageSize": 0,
                    "indexCount": 0,
                    "indexes": [],
                    "message": "Access restricted: Stats not available",
                }
            )
        raise upstream_failure(e, session, "stats", "Failed to get collection stats") from None

    index_list = [{"name": name, **info} for name, info in indexes.items()]
    return ok(
        {
            "documentCount": count,
            "size": stats.get("size", 0),
            "storageSize": stats.get("storageSize", 0),
            "indexCount": len(index_list),
            "indexes": index_list,
        }
    )
