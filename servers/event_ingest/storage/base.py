"""Storage protocol and the in-memory store used for dry runs and tests."""

import asyncio
import copy
import uuid
from typing import Any, Optional, Protocol

from ..errors import DuplicateKeyError, StorageError


class EventStore(Protocol):
    """Document store with a unique index on (source, sourceId)."""

    async def find_one(self, source: str, source_id: str) -> Optional[dict[str, Any]]:
        ...

    async def insert(self, document: dict[str, Any]) -> str:
        """Insert and return the new document id.

        Raises:
            DuplicateKeyError: (source, sourceId) already stored
            StorageError: Store unreachable or write rejected
        """
        ...

    async def update(self, document_id: Any, patch: dict[str, Any]) -> dict[str, Any]:
        """Apply ``patch`` and return the updated document."""
        ...

    async def count(self) -> int:
        ...


class InMemoryEventStore:
    """EventStore backed by a dict; enforces the natural-key index."""

    def __init__(self):
        self._documents: dict[str, dict[str, Any]] = {}
        self._by_key: dict[tuple[str, str], str] = {}
        self._lock = asyncio.Lock()

    async def find_one(self, source: str, source_id: str) -> Optional[dict[str, Any]]:
        document_id = self._by_key.get((source, source_id))
        if document_id is None:
            return None
        return copy.deepcopy(self._documents[document_id])

    async def insert(self, document: dict[str, Any]) -> str:
        key = (document["source"], document["sourceId"])
        async with self._lock:
            if key in self._by_key:
                raise DuplicateKeyError(*key)
            document_id = str(uuid.uuid4())
            self._documents[document_id] = {**copy.deepcopy(document), "_id": document_id}
            self._by_key[key] = document_id
        return document_id

    async def update(self, document_id: Any, patch: dict[str, Any]) -> dict[str, Any]:
        async with self._lock:
            current = self._documents.get(document_id)
            if current is None:
                raise StorageError(f"No document with id {document_id}")
            current.update(copy.deepcopy(patch))
            return copy.deepcopy(current)

    async def count(self) -> int:
        return len(self._documents)

    def documents(self) -> list[dict[str, Any]]:
        """Snapshot of every stored document."""
        return [copy.deepcopy(d) for d in self._documents.values()]
