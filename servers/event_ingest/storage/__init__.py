"""Event stores keyed by (source, sourceId)."""

from .base import EventStore, InMemoryEventStore
from .mongo import MongoEventStore

__all__ = [
    "EventStore",
    "InMemoryEventStore",
    "MongoEventStore",
]
