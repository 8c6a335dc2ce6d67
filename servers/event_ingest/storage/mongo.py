"""MongoDB event store over a motor collection."""

from typing import Any, Optional

import structlog
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection
from pymongo import ASCENDING, ReturnDocument
from pymongo.errors import ConnectionFailure, PyMongoError, ServerSelectionTimeoutError
from pymongo.errors import DuplicateKeyError as MongoDuplicateKeyError

from ..errors import DuplicateKeyError, StorageError

logger = structlog.get_logger()

NATURAL_KEY_INDEX = "source_sourceId_unique"


class MongoEventStore:
    """EventStore backed by a motor collection.

    Call ``ensure_indexes`` once before the first run so the
    (source, sourceId) uniqueness is enforced by the database.
    """

    def __init__(self, collection: AsyncIOMotorCollection):
        self.collection = collection

    @classmethod
    def from_uri(cls, uri: str, database: str = "events", collection: str = "events") -> "MongoEventStore":
        client = AsyncIOMotorClient(uri, serverSelectionTimeoutMS=5000, tz_aware=True)
        return cls(client[database][collection])

    async def ensure_indexes(self) -> None:
        try:
            await self.collection.create_index(
                [("source", ASCENDING), ("sourceId", ASCENDING)],
                unique=True,
                name=NATURAL_KEY_INDEX,
            )
        except (ConnectionFailure, ServerSelectionTimeoutError) as e:
            raise StorageError(f"MongoDB unreachable: {e}") from e
        logger.info("mongo_indexes_ensured", collection=self.collection.name)

    async def find_one(self, source: str, source_id: str) -> Optional[dict[str, Any]]:
        try:
            return await self.collection.find_one({"source": source, "sourceId": source_id})
        except (ConnectionFailure, ServerSelectionTimeoutError) as e:
            raise StorageError(f"MongoDB unreachable: {e}", source) from e

    async def insert(self, document: dict[str, Any]) -> Any:
        try:
            result = await self.collection.insert_one(dict(document))
        except MongoDuplicateKeyError as e:
            raise DuplicateKeyError(document["source"], document["sourceId"]) from e
        except (ConnectionFailure, ServerSelectionTimeoutError) as e:
            raise StorageError(f"MongoDB unreachable: {e}", document.get("source")) from e
        except PyMongoError as e:
            raise StorageError(f"Insert rejected: {e}", document.get("source")) from e
        return result.inserted_id

    async def update(self, document_id: Any, patch: dict[str, Any]) -> dict[str, Any]:
        try:
            updated = await self.collection.find_one_and_update(
                {"_id": document_id},
                {"$set": patch},
                return_document=ReturnDocument.AFTER,
            )
        except PyMongoError as e:
            raise StorageError(f"Update failed: {e}") from e
        if updated is None:
            raise StorageError(f"No document with id {document_id}")
        return updated

    async def count(self) -> int:
        try:
            return await self.collection.count_documents({})
        except PyMongoError as e:
            raise StorageError(f"Count failed: {e}") from e
