# directory_admin/db/store.py
"""
Document store capability used by the directory services.

Documents are plain dicts addressed by (collection, key). The Mongo adapter
keeps the key in `_id` and strips it on the way out, so callers never see
store-specific document shapes.
"""

import logging
from functools import wraps
from typing import Any, Dict, List, Optional, Protocol, Tuple

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

from ..core.exceptions import NotFound, UpstreamUnavailable

logger = logging.getLogger(__name__)

Document = Dict[str, Any]


class DocumentStore(Protocol):
    async def get(self, collection: str, key: str) -> Optional[Document]: ...

    async def set(self, collection: str, key: str, document: Document, merge: bool = False) -> None: ...

    async def update(self, collection: str, key: str, fields: Document) -> None: ...

    async def delete(self, collection: str, key: str) -> None: ...

    async def scan(self, collection: str) -> List[Tuple[str, Document]]: ...


def translate_store_errors(func):
    """Re-raises driver errors as UpstreamUnavailable."""
    @wraps(func)
    async def wrapper(self, collection: str, *args, **kwargs):
        try:
            return await func(self, collection, *args, **kwargs)
        except PyMongoError as e:
            target = f"{collection}/{args[0]}" if args else collection
            logger.error(f"Store operation {func.__name__} failed for {target}: {e}", exc_info=True)
            raise UpstreamUnavailable(f"Document store unavailable during {func.__name__} on {target}: {e}") from e
    return wrapper


class MongoDocumentStore:
    """DocumentStore over a motor database; one Mongo collection per store collection."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db

    @translate_store_errors
    async def get(self, collection: str, key: str) -> Optional[Document]:
        doc = await self.db[collection].find_one({"_id": key})
        if doc is None:
            return None
        doc.pop("_id", None)
        return doc

    @translate_store_errors
    async def set(self, collection: str, key: str, document: Document, merge: bool = False) -> None:
        body = {k: v for k, v in document.items() if k != "_id"}
        if merge:
            await self.db[collection].update_one({"_id": key}, {"$set": body}, upsert=True)
        else:
            await self.db[collection].replace_one({"_id": key}, body, upsert=True)
        logger.debug(f"Set {collection}/{key} (merge={merge})")

    @translate_store_errors
    async def update(self, collection: str, key: str, fields: Document) -> None:
        result = await self.db[collection].update_one({"_id": key}, {"$set": fields})
        if result.matched_count == 0:
            raise NotFound(f"Document {collection}/{key} not found")
        logger.debug(f"Updated {collection}/{key}: {sorted(fields)}")

    @translate_store_errors
    async def delete(self, collection: str, key: str) -> None:
        result = await self.db[collection].delete_one({"_id": key})
        logger.debug(f"Deleted {collection}/{key} (deleted_count={result.deleted_count})")

    @translate_store_errors
    async def scan(self, collection: str) -> List[Tuple[str, Document]]:
        docs: List[Tuple[str, Document]] = []
        async for doc in self.db[collection].find({}):
            key = doc.pop("_id")
            docs.append((str(key), doc))
        logger.debug(f"Scanned {len(docs)} documents from {collection}")
        return docs
