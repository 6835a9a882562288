"""
MongoDB access.

`db` is the process-wide database handle. Connection is lazy: pymongo only
opens sockets on the first operation, so importing this module never blocks.
"""
from datetime import datetime, timezone
from typing import Any, Dict

from bson import ObjectId
from pymongo import MongoClient
from pymongo.database import Database

from config import get_settings

_settings = get_settings()
client: MongoClient = MongoClient(_settings.DATABASE_URL)
db: Database = client[_settings.DATABASE_NAME]


def now() -> datetime:
    return datetime.now(timezone.utc)


def serialize(value: Any) -> Any:
    """Turn a stored document into JSON-friendly data (ObjectId -> str, `_id` -> `id`)."""
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, list):
        return [serialize(v) for v in value]
    if isinstance(value, dict):
        out = {}
        for k, v in value.items():
            out["id" if k == "_id" else k] = serialize(v)
        return out
    return value


def create_document(database: Database, collection_name: str, data: Dict[str, Any]) -> Dict[str, Any]:
    stamp = now()
    doc = {**data, "created_at": stamp, "updated_at": stamp}
    result = database[collection_name].insert_one(doc)
    doc["_id"] = result.inserted_id
    return doc


