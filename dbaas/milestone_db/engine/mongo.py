"""
MongoDB storage engine.

Thin adapter over pymongo's asyncio client. Collections are returned as
native ``AsyncCollection`` objects, which already satisfy the
EngineCollection protocol, so queries run without any translation layer.

Invariants:
    - One AsyncMongoClient per MongoDatabase
    - The database is the one named in the URL (``test`` if none)
    - pymongo errors are never wrapped

How to change safely:
    - Test against a real mongod before upgrading pymongo
    - Keep client options pass-through; do not add defaults here
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

from pymongo import AsyncMongoClient
from pymongo.asynchronous.collection import AsyncCollection
from pymongo.asynchronous.database import AsyncDatabase

from .base import redact_url

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_NAME = "test"


class MongoDatabase:
    """MongoDB implementation of the EngineDatabase protocol.

    Attributes:
        client: The underlying AsyncMongoClient
        database: The AsyncDatabase milestone collections live in

    Example:
        >>> db = await connect_mongo("mongodb://localhost:27017/sharedb")
        >>> collection = db.collection("m_docs")
        >>> await db.close()
    """

    def __init__(self, client: AsyncMongoClient, database: AsyncDatabase) -> None:
        self.client = client
        self.database = database

    @property
    def name(self) -> str:
        return self.database.name

    def collection(self, name: str) -> AsyncCollection:
        """Look up a collection handle (no I/O)."""
        return self.database[name]

    async def drop_database(self) -> None:
        """Drop the whole database (testing helper)."""
        await self.client.drop_database(self.database.name)

    async def close(self) -> None:
        """Close the client and its connection pool."""
        await self.client.close()
        logger.info("MongoDB connection closed", extra={"database": self.database.name})


async def connect_mongo(url: str, options: Mapping[str, Any] | None = None) -> MongoDatabase:
    """Connect to MongoDB and select the database named in the URL.

    Args:
        url: MongoDB connection string
        options: Client keyword options forwarded verbatim

    Returns:
        Connected MongoDatabase

    Raises:
        pymongo.errors.PyMongoError: If the client cannot connect
    """
    client: AsyncMongoClient = AsyncMongoClient(url, **dict(options or {}))
    try:
        await client.aconnect()
    except Exception:
        await client.close()
        raise

    database = client.get_default_database(default=DEFAULT_DATABASE_NAME)
    logger.info(
        "Connected to MongoDB",
        extra={"url": redact_url(url), "database": database.name},
    )
    return MongoDatabase(client, database)
