"""
MongoDB access for FreshCart.

`db` is None when DATABASE_URL / DATABASE_NAME are not configured, so the API
can still start and report the problem through /health.
"""

from datetime import datetime, timezone
from typing import Optional, Union

from pydantic import BaseModel
from pymongo import MongoClient

import config

db = None

if config.DATABASE_URL and config.DATABASE_NAME:
    client = MongoClient(
        config.DATABASE_URL,
        serverSelectionTimeoutMS=config.DB_TIMEOUT_MS,
        connectTimeoutMS=config.DB_TIMEOUT_MS,
        socketTimeoutMS=config.DB_TIMEOUT_MS,
    )
    db = client[config.DATABASE_NAME]


def create_document(collection_name: str, data: Union[BaseModel, dict], database=None) -> str:
    """Insert a document with created_at/updated_at stamps and return its id as a string."""
    target = database if database is not None else db
    if target is None:
        raise RuntimeError("Database not available")
    doc = data.model_dump() if isinstance(data, BaseModel) else dict(data)
    now = datetime.now(timezone.utc)
    doc.setdefault("created_at", now)
    doc["updated_at"] = now
    result = target[collection_name].insert_one(doc)
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[dict] = None, limit: Optional[int] = None, database=None) -> list:
    target = database if database is not None else db
    if target is None:
        raise RuntimeError("Database not available")
    cursor = target[collection_name].find(filter_dict or {})
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)
