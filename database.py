"""
MongoDB connection and document helpers

connect_database() is called once at startup by the storage factory. The
helpers below are thin wrappers over pymongo used by MongoStorage.
"""
import logging
from typing import Any, Dict, List, Optional, Tuple, Type

from pydantic import BaseModel
from pymongo import MongoClient
from pymongo.database import Database
from pymongo.errors import PyMongoError

from config import Settings

logger = logging.getLogger(__name__)


def collection_name(model: Type[BaseModel]) -> str:
    return model.__name__.lower()


def connect_database(settings: Settings) -> Optional[Database]:
    """Open a client and ping it. Returns None when unset or unreachable."""
    if not settings.database_url:
        logger.info("No database URL configured")
        return None
    try:
        client = MongoClient(
            settings.database_url,
            serverSelectionTimeoutMS=settings.db_timeout_ms,
            tz_aware=True,
        )
    except PyMongoError as e:
        logger.warning("MongoDB client could not be created: %s", str(e)[:200])
        return None
    try:
        client.admin.command("ping")
    except PyMongoError as e:
        # stop the monitor threads retrying an unreachable server
        client.close()
        logger.warning("MongoDB connection failed: %s", str(e)[:200])
        return None
    logger.info("MongoDB connected (database=%s)", settings.database_name)
    return client[settings.database_name]


def create_document(db: Database, collection: str, data: Dict[str, Any]) -> str:
    result = db[collection].insert_one(dict(data))
    return str(result.inserted_id)


def get_documents(
    db: Database,
    collection: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    sort: Optional[List[Tuple[str, int]]] = None,
    limit: int = 0,
) -> List[Dict[str, Any]]:
    cursor = db[collection].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)
