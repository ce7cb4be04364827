"""
Document routes: query, template, insert, update, delete, bulk.

Every client payload goes through the sanitizer before the driver sees it,
and every mutating route refuses read-only sessions.
"""

import asyncio
from datetime import datetime
from typing import Any

from bson import ObjectId
from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict
from pymongo.errors import PyMongoError

from ..auth.dependencies import (
    CurrentSession,
    acquire_client,
    ensure_writable,
    get_current_session,
    get_proxy,
)
from ..constants import DEFAULT_DOCUMENT_LIMIT, MAX_DOCUMENT_LIMIT
from ..exceptions import InvalidFormatError, ReadOnlyViolationError
from ..observability import get_logger
from ..security.sanitizer import DOCUMENT, FILTER, PROJECTION, UPDATE
from ..utils.mongo import (
    is_authorization_error,
    is_valid_object_id,
    parse_json_param,
    parse_sort,
    to_object_id,
)
from .helpers import log_restricted, ok, require_names, upstream_failure

logger = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["documents"])


class InsertDocumentRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    database: Any = None
    collection: Any = None
    document: Any = None


class UpdateDocumentRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    database: Any = None
    collection: Any = None
    update: Any = None


class BulkRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    database: Any = None
    collection: Any = None
    documents: Any = None
    operation: Any = "insert"


def _clamp_int(raw: str | None, default: int, low: int, high: int | None = None) -> int:
    try:
        value = int(raw) if raw not in (None, "") else default
    except ValueError:
        value = default
    if high is not None:
        value = min(value, high)
    return max(value, low)


def build_template(value: Any) -> Any:
    """Strip values from a document, keeping its shape."""
    if isinstance(value, list):
        return []
    if isinstance(value, dict):
        return {k: build_template(v) for k, v in value.items() if k != "_id"}
    if isinstance(value, (ObjectId, datetime)):
        return None
    if isinstance(value, bool):
        return False
    if isinstance(value, str):
        return ""
    if isinstance(value, (int, float)):
        return 0
    return None


@router.get("/documents")
async def find_documents(
    database: str | None = None,
    collection: str | None = None,
    filter: str | None = None,
    sort: str | None = None,
    limit: str | None = None,
    skip: str | None = None,
    projection: str | None = None,
    session: CurrentSession = Depends(get_current_session),
    proxy=Depends(get_proxy),
):
    database, collection = require_names(database, collection)

    parsed_filter = parse_json_param(filter, "filter")
    parsed_sort = parse_sort(sort)
    parsed_limit = _clamp_int(limit, DEFAULT_DOCUMENT_LIMIT, 1, MAX_DOCUMENT_LIMIT)
    parsed_skip = _clamp_int(skip, 0, 0)
    parsed_projection = parse_json_param(projection, "projection")

    safe_filter = proxy.sanitizer.sanitize(parsed_filter, FILTER)
    safe_projection = proxy.sanitizer.sanitize(parsed_projection, PROJECTION) or None

    if session.read_only and parsed_filter is None:
        raise ReadOnlyViolationError("Read-only mode: filter is required for queries")

    client = await acquire_client(proxy, session)
    col = client[database][collection]

    async def fetch() -> list:
        cursor = col.find(safe_filter, projection=safe_projection)
        if parsed_sort:
            cursor = cursor.sort(parsed_sort)
        cursor = cursor.skip(parsed_skip).limit(parsed_limit)
        return await cursor.to_list(length=parsed_limit)

    try:
        documents, total_count = await asyncio.gather(
            fetch(), col.count_documents(safe_filter)
        )
    except PyMongoError as e:
        if is_authorization_error(e):
            log_restricted("documents", e, session)
            return ok(
                {
                    "documents": [],
                    "totalCount": 0,
                    "hasMore": False,
                    "limit": parsed_limit,
                    "skip": parsed_skip,
                    "message": "Access restricted: Documents not visible",
                }
            )
        raise upstream_failure(e, session, "documents", "Failed to fetch documents") from None

    return ok(
        {
            "documents": documents,
            "totalCount": total_count,
            "hasMore": parsed_skip + len(documents) < total_count,
            "limit": parsed_limit,
            "skip": parsed_skip,
        }
    )


@router.get("/documents/template")
async def document_template(
    database: str | None = None,
    collection: str | None = None,
    session: CurrentSession = Depends(get_current_session),
    proxy=Depends(get_proxy),
):
    """Shape of the newest document with every value blanked out."""
    database, collection = require_names(database, collection)
    client = await acquire_client(proxy, session)
    col = client[database][collection]

    try:
        latest = await col.find({}).sort("_id", -1).limit(1).to_list(length=1)
    except PyMongoError as e:
        raise upstream_failure(e, session, "template", "Failed to generate template") from None

    if not latest:
        return ok({})
    return ok(build_template(latest[0]))


@router.post("/documents")
async def insert_document(
    body: InsertDocumentRequest,
    session: CurrentSession = Depends(get_current_session),
    proxy=Depends(get_proxy),
):
    if not body.database or not body.collection or not body.document:
        raise InvalidFormatError("Database, collection, and document are required")
    database, collection = require_names(body.database, body.collection)
    ensure_writable(session, "insert documents")

    document = proxy.sanitizer.sanitize(body.document, DOCUMENT)

    client = await acquire_client(proxy, session)
    try:
        result = await client[database][collection].insert_one(dict(document))
    except PyMongoError as e:
        raise upstream_failure(e, session, "insert", "Failed to insert document") from None

    return ok({"insertedId": str(result.inserted_id), "acknowledged": result.acknowledged})


@router.put("/documents/{document_id}")
async def update_document(
    document_id: str,
    body: UpdateDocumentRequest,
    session: CurrentSession = Depends(get_current_session),
    proxy=Depends(get_proxy),
):
    if not body.database or not body.collection or not body.update:
        raise InvalidFormatError("Database, collection, and update are required")
    database, collection = require_names(body.database, body.collection)
    object_id = to_object_id(document_id)
    ensure_writable(session, "update documents")

    update = proxy.sanitizer.sanitize(body.update, UPDATE)

    client = await acquire_client(proxy, session)
    try:
        result = await client[database][collection].update_one({"_id": object_id}, update)
    except PyMongoError as e:
        raise upstream_failure(e, session, "update", "Failed to update document") from None

    return ok(
        {
            "modifiedCount": result.modified_count,
            "upsertedCount": 1 if result.upserted_id is not None else 0,
            "acknowledged": result.acknowledged,
        }
    )


@router.delete("/documents/{document_id}")
async def delete_document(
    document_id: str,
    database: str | None = None,
    collection: str | None = None,
    session: CurrentSession = Depends(get_current_session),
    proxy=Depends(get_proxy),
):
    database, collection = require_names(database, collection)
    object_id = to_object_id(document_id)
    ensure_writable(session, "delete documents")

    client = await acquire_client(proxy, session)
    try:
        result = await client[database][collection].delete_one({"_id": object_id})
    except PyMongoError as e:
        raise upstream_failure(e, session, "delete", "Failed to delete document") from None

    return ok({"deletedCount": result.deleted_count, "acknowledged": result.acknowledged})


@router.post("/documents/bulk")
async def bulk_documents(
    body: BulkRequest,
    session: CurrentSession = Depends(get_current_session),
    proxy=Depends(get_proxy),
):
    if not body.database or not body.collection or not body.documents:
        raise InvalidFormatError("Database, collection, and documents are required")
    database, collection = require_names(body.database, body.collection)
    if not isinstance(body.documents, list):
        raise InvalidFormatError("Documents must be an array")
    if body.operation not in ("insert", "delete"):
        raise InvalidFormatError("Operation must be 'insert' or 'delete'")
    ensure_writable(session, "perform bulk operations")

    client = await acquire_client(proxy, session)
    col = client[database][collection]

    if body.operation == "delete":
        ids = [
            ObjectId(doc["_id"])
            for doc in body.documents
            if isinstance(doc, dict) and is_valid_object_id(doc.get("_id"))
        ]
        try:
            result = await col.delete_many({"_id": {"$in": ids}})
        except PyMongoError as e:
            raise upstream_failure(e, session, "bulk", "Failed to perform bulk operation") from None
        return ok({"deletedCount": result.deleted_count, "acknowledged": result.acknowledged})

    documents = [dict(proxy.sanitizer.sanitize(doc, DOCUMENT)) for doc in body.documents]
    try:
        result = await col.insert_many(documents)
    except PyMongoError as e:
        raise upstream_failure(e, session, "bulk", "Failed to perform bulk operation") from None
    return ok({"insertedCount": len(result.inserted_ids), "acknowledged": result.acknowledged})
