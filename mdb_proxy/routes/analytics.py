"""
Analytics and administration routes.

Server stats, schema sampling, export, index management, aggregation,
import, collection validation rules, and the slow-query profiler.

Shared and free-tier clusters refuse many admin commands; those refusals
become successful responses flagged ``restricted`` rather than errors.
"""

import asyncio
import csv
import io
import json
import time
from collections.abc import Mapping
from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict
from pymongo.errors import PyMongoError

from ..auth.dependencies import (
    CurrentSession,
    acquire_client,
    ensure_writable,
    get_current_session,
    get_proxy,
)
from ..constants import (
    DEFAULT_EXPORT_LIMIT,
    DEFAULT_SLOW_QUERY_MS,
    MAX_AGGREGATE_RESULTS,
    MAX_EXPORT_LIMIT,
    MAX_IMPORT_DOCUMENTS,
    SCHEMA_MAX_EXAMPLES,
    SCHEMA_SAMPLE_SIZE,
    SLOW_QUERY_LIMIT,
)
from ..exceptions import InvalidFormatError, MongoDBProxyError
from ..observability import get_logger
from ..security.sanitizer import DOCUMENT
from ..utils.mongo import (
    bson_type_name,
    clean_mongo_value,
    is_authorization_error,
    is_restricted_error,
)
from .helpers import log_restricted, ok, require_database, require_names, upstream_failure

logger = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["analytics"])

INDEX_DIRECTIONS = (1, -1, "text", "2d", "2dsphere", "hashed")
VALIDATION_LEVELS = ("off", "strict", "moderate")
VALIDATION_ACTIONS = ("error", "warn")
PROFILING_LEVELS = (0, 1, 2)


class CreateIndexRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    database: Any = None
    collection: Any = None
    keys: Any = None
    options: Any = None


class AggregateRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    database: Any = None
    collection: Any = None
    pipeline: Any = None


class ImportRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    database: Any = None
    collection: Any = None
    documents: Any = None
    mode: Any = "insert"


class ValidationRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    database: Any = None
    collection: Any = None
    validator: Any = None
    validationLevel: Any = "moderate"
    validationAction: Any = "error"


class ProfilingRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    database: Any = None
    level: Any = 1
    slowMs: Any = DEFAULT_SLOW_QUERY_MS


def _section(status: Mapping, name: str, fields: tuple[str, ...]) -> dict[str, Any]:
    section = status.get(name) or {}
    return {field: section.get(field) or 0 for field in fields}


RESTRICTED_SERVER_STATS = {
    "host": "Shared Cluster",
    "version": "Free Tier",
    "uptime": 0,
    "uptimeMillis": 0,
    "connections": {"current": 0, "available": 0, "totalCreated": 0},
    "memory": {"resident": 0, "virtual": 0, "mapped": 0},
    "network": {"bytesIn": 0, "bytesOut": 0, "numRequests": 0},
    "opcounters": {"insert": 0, "query": 0, "update": 0, "delete": 0, "getmore": 0, "command": 0},
    "restricted": True,
    "message": (
        "Server stats are not available on the Free Tier (Shared Cluster). "
        "Upgrade to a dedicated cluster to view these metrics."
    ),
}


@router.get("/server-stats")
async def server_stats(
    session: CurrentSession = Depends(get_current_session), proxy=Depends(get_proxy)
):
    client = await acquire_client(proxy, session)
    try:
        status = await client.admin.command("serverStatus")
    except PyMongoError as e:
        if is_restricted_error(e):
            log_restricted("server-stats", e, session)
            return ok(RESTRICTED_SERVER_STATS)
        raise upstream_failure(
            e,
            session,
            "server-stats",
            "Failed to get server stats. You may be on a Free Tier cluster which restricts this access.",
        ) from None

    mem = status.get("mem") or {}
    restricted = (
        not status.get("mem")
        or not status.get("connections")
        or (mem.get("resident") == 0 and mem.get("virtual") == 0)
    )
    data = {
        "host": status.get("host"),
        "version": status.get("version"),
        "uptime": status.get("uptime"),
        "uptimeMillis": status.get("uptimeMillis"),
        "connections": _section(status, "connections", ("current", "available", "totalCreated")),
        "memory": _section(status, "mem", ("resident", "virtual", "mapped")),
        "network": _section(status, "network", ("bytesIn", "bytesOut", "numRequests")),
        "opcounters": _section(
            status, "opcounters", ("insert", "query", "update", "delete", "getmore", "command")
        ),
        "restricted": restricted,
    }
    if restricted:
        data["message"] = (
            "Memory usage metrics are not available on the Free Tier (Shared Cluster)."
        )
    return ok(data)


def analyze_schema(documents: list[Mapping[str, Any]]) -> list[dict[str, Any]]:
    """
    Infer field types and presence from sample documents.

    Nested objects are reported with dotted paths alongside their parent.
    """
    analysis: dict[str, dict[str, Any]] = {}

    def visit(key: str, value: Any, prefix: str = "") -> None:
        full_key = f"{prefix}.{key}" if prefix else key
        entry = analysis.setdefault(full_key, {"types": {}, "count": 0, "examples": []})
        entry["count"] += 1

        type_name = bson_type_name(value)
        if type_name == "object":
            for child_key, child in value.items():
                visit(str(child_key), child, full_key)
        entry["types"][type_name] = entry["types"].get(type_name, 0) + 1

        if value is not None and len(entry["examples"]) < SCHEMA_MAX_EXAMPLES:
            example = "[Object]" if type_name in ("object", "array") else clean_mongo_value(value)
            if example not in entry["examples"]:
                entry["examples"].append(example)

    for doc in documents:
        for key, value in doc.items():
            visit(str(key), value)

    sample_size = len(documents)
    fields = [
        {
            "field": field,
            "types": [
                {
                    "type": type_name,
                    "count": count,
                    "percentage": round(count / sample_size * 100),
                }
                for type_name, count in entry["types"].items()
            ],
            "presence": round(entry["count"] / sample_size * 100),
            "examples": entry["examples"],
        }
        for field, entry in analysis.items()
    ]
    fields.sort(key=lambda f: f["presence"], reverse=True)
    return fields


@router.get("/schema")
async def schema(
    database: str | None = None,
    collection: str | None = None,
    session: CurrentSession = Depends(get_current_session),
    proxy=Depends(get_proxy),
):
    database, collection = require_names(database, collection)
    client = await acquire_client(proxy, session)
    col = client[database][collection]

    try:
        sample = await col.aggregate([{"$sample": {"size": SCHEMA_SAMPLE_SIZE}}]).to_list(
            length=SCHEMA_SAMPLE_SIZE
        )
        total = await col.count_documents({})
    except PyMongoError as e:
        if is_authorization_error(e):
            log_restricted("schema", e, session)
            return ok(
                {
                    "fields": [],
                    "sampleSize": 0,
                    "totalDocuments": 0,
                    "message": "Access restricted: Schema not available",
                }
            )
        raise upstream_failure(e, session, "schema", "Failed to analyze schema") from None

    if not sample:
        return ok({"fields": [], "sampleSize": 0, "totalDocuments": 0})

    return ok({"fields": analyze_schema(sample), "sampleSize": len(sample), "totalDocuments": total})


def documents_to_csv(documents: list[Mapping[str, Any]]) -> str:
    """Render documents as CSV; nested values are written as JSON."""
    if not documents:
        return ""

    headers: list[str] = []
    for doc in documents:
        for key in doc:
            if key not in headers:
                headers.append(key)

    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(headers)
    for doc in documents:
        row = []
        for header in headers:
            value = clean_mongo_value(doc.get(header))
            if value is None:
                row.append("")
            elif isinstance(value, (dict, list)):
                row.append(json.dumps(value))
            else:
                row.append(value)
        writer.writerow(row)
    return buffer.getvalue().rstrip("\n")


@router.get("/export")
async def export(
    database: str | None = None,
    collection: str | None = None,
    export_format: str = Query("json", alias="format"),
    limit: str | None = None,
    session: CurrentSession = Depends(get_current_session),
    proxy=Depends(get_proxy),
):
    database, collection = require_names(database, collection)
    if export_format not in ("json", "csv"):
        raise InvalidFormatError("Format must be 'json' or 'csv'")
    try:
        max_limit = int(limit) if limit else DEFAULT_EXPORT_LIMIT
    except ValueError:
        max_limit = DEFAULT_EXPORT_LIMIT
    max_limit = min(max(max_limit, 1), MAX_EXPORT_LIMIT)

    client = await acquire_client(proxy, session)
    try:
        documents = await client[database][collection].find({}).limit(max_limit).to_list(
            length=max_limit
        )
    except PyMongoError as e:
        raise upstream_failure(e, session, "export", "Failed to export data") from None

    if export_format == "csv":
        return ok({"csv": documents_to_csv(documents), "count": len(documents)})
    return ok({"documents": documents, "count": len(documents)})


@router.get("/indexes")
async def list_indexes(
    database: str | None = None,
    collection: str | None = None,
    session: CurrentSession = Depends(get_current_session),
    proxy=Depends(get_proxy),
):
    database, collection = require_names(database, collection)
    client = await acquire_client(proxy, session)
    db = client[database]

    try:
        indexes, stats = await asyncio.gather(
            db[collection].index_information(), db.command("collStats", collection)
        )
    except PyMongoError as e:
        raise upstream_failure(e, session, "indexes", "Failed to get indexes") from None

    return ok(
        {
            "indexes": [
                {
                    "name": name,
                    "key": dict(info.get("key", [])),
                    "unique": bool(info.get("unique", False)),
                    "sparse": bool(info.get("sparse", False)),
                    "background": bool(info.get("background", False)),
                }
                for name, info in indexes.items()
            ],
            "totalIndexSize": stats.get("totalIndexSize", 0),
            "indexSizes": stats.get("indexSizes", {}),
        }
    )


def _index_keys(keys: Any) -> list[tuple[str, Any]]:
    if not isinstance(keys, Mapping) or not keys:
        raise InvalidFormatError("Index keys must be a non-empty object")
    spec = []
    for field, direction in keys.items():
        if not isinstance(field, str) or not field or field.startswith("$"):
            raise InvalidFormatError(f"Invalid index field: {field!r}")
        if isinstance(direction, bool) or direction not in INDEX_DIRECTIONS:
            raise InvalidFormatError(f"Invalid index direction for {field!r}")
        spec.append((field, direction))
    return spec


@router.post("/indexes")
async def create_index(
    body: CreateIndexRequest,
    session: CurrentSession = Depends(get_current_session),
    proxy=Depends(get_proxy),
):
    if not body.database or not body.collection or not body.keys:
        raise InvalidFormatError("Database, collection, and keys are required")
    database, collection = require_names(body.database, body.collection)
    ensure_writable(session, "create indexes")

    keys = _index_keys(body.keys)
    options = body.options if isinstance(body.options, Mapping) else {}
    index_options: dict[str, Any] = {
        "unique": bool(options.get("unique", False)),
        "sparse": bool(options.get("sparse", False)),
    }
    if isinstance(options.get("name"), str) and options["name"]:
        index_options["name"] = options["name"]

    client = await acquire_client(proxy, session)
    try:
        name = await client[database][collection].create_index(keys, **index_options)
    except PyMongoError as e:
        raise upstream_failure(
            e, session, "create-index", "Failed to create index", surface=True
        ) from None

    return ok({"indexName": name})


@router.delete("/indexes/{index_name}")
async def drop_index(
    index_name: str,
    database: str | None = None,
    collection: str | None = None,
    session: CurrentSession = Depends(get_current_session),
    proxy=Depends(get_proxy),
):
    database, collection = require_names(database, collection)
    if index_name == "_id_":
        raise InvalidFormatError("Cannot drop the default _id index")
    ensure_writable(session, "drop indexes")

    client = await acquire_client(proxy, session)
    try:
        await client[database][collection].drop_index(index_name)
    except PyMongoError as e:
        raise upstream_failure(
            e, session, "drop-index", "Failed to drop index", surface=True
        ) from None

    return ok({"dropped": index_name})


@router.post("/aggregate")
async def aggregate(
    body: AggregateRequest,
    session: CurrentSession = Depends(get_current_session),
    proxy=Depends(get_proxy),
):
    if not body.database or not body.collection or body.pipeline is None:
        raise InvalidFormatError("Database, collection, and pipeline are required")
    database, collection = require_names(body.database, body.collection)
    if not isinstance(body.pipeline, list):
        raise InvalidFormatError("Pipeline must be an array of stages")

    pipeline = proxy.sanitizer.sanitize_pipeline(body.pipeline)

    client = await acquire_client(proxy, session)
    try:
        cursor = client[database][collection].aggregate(
            [*pipeline, {"$limit": MAX_AGGREGATE_RESULTS}]
        )
        results = await cursor.to_list(length=MAX_AGGREGATE_RESULTS)
    except PyMongoError as e:
        # Usually a mistake in the pipeline: show the driver's message.
        raise upstream_failure(
            e, session, "aggregate", "Aggregation failed", surface=True, status_code=400
        ) from None

    return ok({"results": results, "count": len(results)})


@router.post("/import")
async def import_documents(
    body: ImportRequest,
    session: CurrentSession = Depends(get_current_session),
    proxy=Depends(get_proxy),
):
    if not body.database or not body.collection or body.documents is None:
        raise InvalidFormatError("Database, collection, and documents are required")
    database, collection = require_names(body.database, body.collection)
    if not isinstance(body.documents, list) or not body.documents:
        raise InvalidFormatError("Documents must be a non-empty array")
    if len(body.documents) > MAX_IMPORT_DOCUMENTS:
        raise InvalidFormatError(f"Maximum {MAX_IMPORT_DOCUMENTS} documents per import")
    ensure_writable(session, "import documents")

    cleaned = []
    for doc in body.documents:
        try:
            safe = dict(proxy.sanitizer.sanitize(doc, DOCUMENT))
        except MongoDBProxyError as e:
            raise InvalidFormatError(f"Invalid document pattern: {e.message}") from None
        if isinstance(safe.get("_id"), str):
            # Let the server generate ObjectIds
            del safe["_id"]
        cleaned.append(safe)

    client = await acquire_client(proxy, session)
    try:
        result = await client[database][collection].insert_many(cleaned, ordered=False)
    except PyMongoError as e:
        raise upstream_failure(e, session, "import", "Import failed", surface=True) from None

    return ok({"insertedCount": len(result.inserted_ids), "insertedIds": result.inserted_ids})


@router.get("/validation")
async def get_validation(
    database: str | None = None,
    collection: str | None = None,
    session: CurrentSession = Depends(get_current_session),
    proxy=Depends(get_proxy),
):
    database, collection = require_names(database, collection)
    client = await acquire_client(proxy, session)

    try:
        cursor = await client[database].list_collections(filter={"name": collection})
        collections = await cursor.to_list(length=1)
    except PyMongoError as e:
        raise upstream_failure(e, session, "validation-get", "Failed to get validation rules") from None

    if not collections:
        raise MongoDBProxyError("Collection not found", status_code=404)

    options = collections[0].get("options") or {}
    return ok(
        {
            "validator": options.get("validator"),
            "validationLevel": options.get("validationLevel", "off"),
            "validationAction": options.get("validationAction", "error"),
        }
    )


@router.put("/validation")
async def set_validation(
    body: ValidationRequest,
    session: CurrentSession = Depends(get_current_session),
    proxy=Depends(get_proxy),
):
    database, collection = require_names(body.database, body.collection)
    if body.validationLevel not in VALIDATION_LEVELS:
        raise InvalidFormatError(f"validationLevel must be one of {', '.join(VALIDATION_LEVELS)}")
    if body.validationAction not in VALIDATION_ACTIONS:
        raise InvalidFormatError(
            f"validationAction must be one of {', '.join(VALIDATION_ACTIONS)}"
        )
    ensure_writable(session, "change validation rules")

    validator = proxy.sanitizer.sanitize_validator(body.validator)

    client = await acquire_client(proxy, session)
    try:
        await client[database].command(
            "collMod",
            collection,
            validator=validator,
            validationLevel=body.validationLevel,
            validationAction=body.validationAction,
        )
    except PyMongoError as e:
        raise upstream_failure(
            e, session, "validation-set", "Failed to update validation", surface=True
        ) from None

    return ok({"message": "Validation updated successfully"})


@router.get("/slow-queries")
async def slow_queries(
    database: str | None = None,
    minMs: str | None = None,
    session: CurrentSession = Depends(get_current_session),
    proxy=Depends(get_proxy),
):
    database = require_database(database)
    try:
        min_millis = int(minMs) if minMs else DEFAULT_SLOW_QUERY_MS
    except ValueError:
        min_millis = DEFAULT_SLOW_QUERY_MS

    client = await acquire_client(proxy, session)
    db = client[database]

    try:
        profile_status = await db.command("profile", -1)
        if profile_status.get("was", 0) == 0:
            return ok(
                {
                    "profilingEnabled": False,
                    "queries": [],
                    "message": (
                        "Profiling is disabled. Enable it with "
                        "db.setProfilingLevel(1, { slowms: 100 })"
                    ),
                }
            )

        queries = (
            await db["system.profile"]
            .find({"millis": {"$gte": min_millis}})
            .sort("ts", -1)
            .limit(SLOW_QUERY_LIMIT)
            .to_list(length=SLOW_QUERY_LIMIT)
        )
    except PyMongoError as e:
        if is_restricted_error(e):
            log_restricted("slow-queries", e, session)
            return ok(
                {
                    "profilingEnabled": False,
                    "queries": [],
                    "message": (
                        "Restricted: You cannot access Profiling on Free Tier (Shared Cluster)."
                    ),
                    "restricted": True,
                }
            )
        raise upstream_failure(
            e,
            session,
            "slow-queries",
            "Failed to get slow queries. Profiling may not be enabled.",
        ) from None

    return ok(
        {
            "profilingEnabled": True,
            "profilingLevel": profile_status.get("was"),
            "slowMs": profile_status.get("slowms"),
            "queries": [
                {
                    "op": q.get("op"),
                    "ns": q.get("ns"),
                    "millis": q.get("millis"),
                    "timestamp": q.get("ts"),
                    "query": q.get("command") or q.get("query"),
                    "planSummary": q.get("planSummary"),
                }
                for q in queries
            ],
        }
    )


@router.post("/profiling")
async def set_profiling(
    body: ProfilingRequest,
    session: CurrentSession = Depends(get_current_session),
    proxy=Depends(get_proxy),
):
    database = require_database(body.database)
    if isinstance(body.level, bool) or body.level not in PROFILING_LEVELS:
        raise InvalidFormatError("Profiling level must be 0, 1 or 2")
    if isinstance(body.slowMs, bool) or not isinstance(body.slowMs, int) or body.slowMs < 0:
        raise InvalidFormatError("slowMs must be a non-negative integer")
    ensure_writable(session, "change profiling")

    client = await acquire_client(proxy, session)
    try:
        await client[database].command("profile", body.level, slowms=body.slowMs)
    except PyMongoError as e:
        if is_restricted_error(e):
            log_restricted("profiling", e, session)
            raise MongoDBProxyError(
                "Restricted: You cannot access Profiling on Free Tier (Shared Cluster).",
                status_code=403,
            ) from None
        raise upstream_failure(e, session, "profiling", "Failed to set profiling level") from None

    message = (
        "Profiling disabled"
        if body.level == 0
        else f"Profiling enabled (level {body.level}, slowMs: {body.slowMs})"
    )
    return ok({"level": body.level, "slowMs": body.slowMs, "message": message})


@router.get("/opcounters")
async def opcounters(
    session: CurrentSession = Depends(get_current_session), proxy=Depends(get_proxy)
):
    client = await acquire_client(proxy, session)
    try:
        status = await client.admin.command("serverStatus")
    except PyMongoError as e:
        raise upstream_failure(e, session, "opcounters", "Failed to get opcounters") from None

    return ok(
        {
            "timestamp": int(time.time() * 1000),
            "opcounters": status.get("opcounters") or {},
            "connections": (status.get("connections") or {}).get("current", 0),
            "memory": (status.get("mem") or {}).get("resident", 0),
        }
    )
