"""
Database helpers

Holds the shared MongoDB handle and small helpers for creating, reading and
updating documents. Every document gets an immutable ``created_at``;
``updated_at`` is only kept for the collections in TRACK_UPDATES.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from loguru import logger
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient, ReturnDocument
from pymongo.database import Database

from config import settings
from errors import ServerError

_client: Optional[MongoClient] = None
db: Optional[Database] = None

try:
    _client = MongoClient(settings.database_url, serverSelectionTimeoutMS=5000)
    db = _client[settings.database_name]
except Exception as e:
    logger.error("MongoDB client could not be created: {}", e)

TRACK_UPDATES = {"review", "car", "booking"}

# collection -> [(keys, options)]
INDEXES: Dict[str, List[tuple]] = {
    "user": [
        ([("email", ASCENDING)], {"unique": True}),
        ([("role", ASCENDING)], {}),
    ],
    "availability": [
        ([("car_id", ASCENDING), ("date", ASCENDING)], {"unique": True}),
        ([("car_id", ASCENDING), ("is_available", ASCENDING)], {}),
        ([("date", ASCENDING)], {}),
    ],
    "favorite": [
        ([("user_id", ASCENDING), ("car_id", ASCENDING)], {"unique": True}),
    ],
    "message": [
        ([("booking_id", ASCENDING), ("created_at", DESCENDING)], {}),
        ([("sender_id", ASCENDING)], {}),
        ([("receiver_id", ASCENDING)], {}),
        ([("sender_id", ASCENDING), ("receiver_id", ASCENDING)], {}),
        ([("is_read", ASCENDING)], {}),
    ],
    "notification": [
        ([("user_id", ASCENDING), ("is_read", ASCENDING)], {}),
        ([("user_id", ASCENDING), ("created_at", DESCENDING)], {}),
        ([("type", ASCENDING)], {}),
    ],
    "review": [
        ([("car_id", ASCENDING), ("user_id", ASCENDING)], {"unique": True}),
        ([("user_id", ASCENDING)], {}),
        ([("booking_id", ASCENDING)], {}),
        ([("car_id", ASCENDING), ("created_at", DESCENDING)], {}),
    ],
    "car": [
        ([("owner_id", ASCENDING)], {}),
        ([("available", ASCENDING), ("created_at", DESCENDING)], {}),
    ],
    "booking": [
        ([("renter_id", ASCENDING)], {}),
        ([("car_id", ASCENDING), ("status", ASCENDING)], {}),
    ],
    "payment": [
        ([("booking_id", ASCENDING)], {"unique": True}),
    ],
}


def _require_db() -> Database:
    if db is None:
        raise ServerError("Database not available")
    return db


def ensure_indexes(database: Optional[Database] = None) -> None:
    """Create every index in INDEXES. Safe to call repeatedly."""
    target = database if database is not None else _require_db()
    for collection_name, specs in INDEXES.items():
        for keys, options in specs:
            target[collection_name].create_index(keys, **options)
    logger.info("Indexes ensured for {} collections", len(INDEXES))


def create_document(collection_name: str, data: Union[BaseModel, dict]) -> str:
    """Insert a single document with timestamps and return its id."""
    database = _require_db()

    if isinstance(data, BaseModel):
        data_dict = data.model_dump(mode="json")
    else:
        data_dict = data.copy()

    now = datetime.now(timezone.utc)
    data_dict["created_at"] = now
    if collection_name in TRACK_UPDATES:
        data_dict["updated_at"] = now

    result = database[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[dict] = None, limit: Optional[int] = None,
                  sort: Optional[List[tuple]] = None) -> List[Dict[str, Any]]:
    """Get documents from a collection."""
    database = _require_db()

    cursor = database[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def update_document(collection_name: str, filter_dict: dict, changes: dict) -> Optional[Dict[str, Any]]:
    """Apply ``$set`` changes and return the updated document, or None if nothing matched.

    ``created_at`` is never overwritten.
    """
    database = _require_db()

    changes = {k: v for k, v in changes.items() if k != "created_at"}
    if collection_name in TRACK_UPDATES:
        changes["updated_at"] = datetime.now(timezone.utc)

    return database[collection_name].find_one_and_update(
        filter_dict, {"$set": changes}, return_document=ReturnDocument.AFTER
    )
