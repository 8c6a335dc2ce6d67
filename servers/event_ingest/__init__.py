"""
Event catalogue ingestion pipeline.

Pulls event listings from ticketing APIs and venue websites, normalises them
into one canonical shape, removes cross-source duplicates and upserts the
survivors into a document store keyed by (source, sourceId).

Sources: Ticketmaster, Eventbrite, Arts Centre Melbourne, Marriner Group,
Fever, What's On Melbourne.

Run with: python -m servers.event_ingest --config pipeline.json
"""

__version__ = "1.0.0"
