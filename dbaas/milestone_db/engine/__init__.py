"""
Storage engine abstraction for the milestone store.

This module provides the document-store collaborator the store runs on:
- MongoDB via pymongo's asyncio client (production)
- In-memory (for testing)

Invariants:
    - Engines expose collection(), create_index(), replace_one(),
      find_one() and close() with pymongo-compatible shapes
    - Engine errors propagate unchanged

How to change safely:
    - New engines must implement the EngineDatabase / EngineCollection protocols
    - Verify index idempotency on any new engine
"""

from .base import (
    ASCENDING,
    DESCENDING,
    AddressSource,
    ConnectionSource,
    EngineCollection,
    EngineDatabase,
    FactorySource,
    connection_source,
    open_connection,
    redact_url,
)
from .memory import InMemoryCollection, InMemoryDatabase
from .mongo import MongoDatabase, connect_mongo

__all__ = [
    # Protocols and types
    "EngineDatabase",
    "EngineCollection",
    "ConnectionSource",
    "FactorySource",
    "AddressSource",
    "ASCENDING",
    "DESCENDING",
    # Helpers
    "connection_source",
    "open_connection",
    "redact_url",
    # Implementations
    "MongoDatabase",
    "connect_mongo",
    "InMemoryDatabase",
    "InMemoryCollection",
]
