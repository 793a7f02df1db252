"""
MongoDB connection handling.

The client is opened by the application lifespan (or the seed command) and
handed around explicitly; nothing here keeps a process-wide connection.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient
from pymongo.collection import Collection
from pymongo.database import Database

from config import Settings

logger = logging.getLogger(__name__)

BOOK = "book"
USER = "user"
TRANSACTION = "transaction"


def utcnow() -> datetime:
    """Naive UTC now, truncated to the millisecond precision BSON dates keep."""
    now = datetime.now(timezone.utc).replace(tzinfo=None)
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


def connect(settings: Settings) -> Database:
    client = MongoClient(
        settings.database_url,
        serverSelectionTimeoutMS=settings.store_timeout_ms,
        connectTimeoutMS=settings.store_timeout_ms,
        socketTimeoutMS=settings.store_timeout_ms,
    )
    logger.info(f"Connected to MongoDB database '{settings.database_name}'")
    return client[settings.database_name]


def close(db: Optional[Database]) -> None:
    if db is None:
        return
    db.client.close()
    logger.info("MongoDB connection closed")


def ensure_indexes(db: Database) -> None:
    db[USER].create_index("username", unique=True)
    db[USER].create_index("email", unique=True)
    db[TRANSACTION].create_index([("book", ASCENDING), ("status", ASCENDING)])


def create_document(collection: Collection, data: Any, doc_id: Optional[ObjectId] = None) -> Dict[str, Any]:
    """Insert a model (or plain dict) stamped with createdAt/updatedAt; return the stored document.

    ``doc_id`` fixes the _id up front, so a caller can still find (or remove) the
    document when the insert fails after the server applied it.
    """
    if isinstance(data, BaseModel):
        doc = data.model_dump(by_alias=True, exclude_none=True)
    else:
        doc = dict(data)
    now = utcnow()
    doc.setdefault("createdAt", now)
    doc["updatedAt"] = now
    if doc_id is not None:
        doc["_id"] = doc_id
    collection.insert_one(doc)
    return doc


def get_documents(
    db: Database,
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    limit: Optional[int] = None,
    projection: Optional[Dict[str, Any]] = None,
) -> List[Dict[str, Any]]:
    cursor = db[collection_name].find(filter_dict or {}, projection)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)
