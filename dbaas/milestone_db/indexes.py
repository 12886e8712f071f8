"""
Milestone collection naming and index management.

Each logical collection ``docs`` maps to the physical collection
``m_docs``. Before the first read or write of a physical collection in
this process, the IndexRegistrar issues the two index builds the
milestone queries rely on:

    d_1_v_1     unique (document id, version), keys upserts
    m.mtime_1   metadata timestamp, serves the time-range lookups

The IndexCache only remembers which collections were handled so the
create_index calls are not repeated. It is not a correctness cache: the
engine's create_index is idempotent, so losing the cache (process restart)
or racing on it (concurrent first access) only costs a redundant call.

Invariants:
    - Index builds are requested in the background (non-blocking on the server)
    - The cache is only updated after both create_index calls succeed
    - With index creation disabled, the cache is never populated
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol, Set, runtime_checkable

from .connection import ConnectionManager
from .engine.base import ASCENDING, EngineCollection
from .snapshot import DOC_ID_FIELD, TIMESTAMP_FIELD, VERSION_FIELD

logger = logging.getLogger(__name__)

MILESTONE_COLLECTION_PREFIX = "m_"


def milestone_collection_name(collection_name: str) -> str:
    """Map a logical collection name to its physical milestone collection.

    A logical name that already starts with the prefix is not escaped, so
    ``m_docs`` becomes ``m_m_docs``.
    """
    return f"{MILESTONE_COLLECTION_PREFIX}{collection_name}"


@runtime_checkable
class IndexCache(Protocol):
    """Set-like record of physical collections whose indexes were requested."""

    def __contains__(self, name: object) -> bool: ...

    def add(self, name: str) -> None: ...


class InMemoryIndexCache:
    """Default IndexCache backed by a process-local set."""

    def __init__(self) -> None:
        self._names: Set[str] = set()

    def __contains__(self, name: object) -> bool:
        return name in self._names

    def __len__(self) -> int:
        return len(self._names)

    def add(self, name: str) -> None:
        self._names.add(name)

    def clear(self) -> None:
        self._names.clear()


class IndexRegistrar:
    """Resolves physical collections and makes sure they are indexed.

    Attributes:
        connection: Connection manager providing the database handle
        disable_index_creation: Skip automatic index management entirely
        cache: Record of collections already handled in this process
    """

    def __init__(
        self,
        connection: ConnectionManager,
        disable_index_creation: bool = False,
        cache: IndexCache | None = None,
    ) -> None:
        self.connection = connection
        self.disable_index_creation = disable_index_creation
        self.cache: IndexCache = cache if cache is not None else InMemoryIndexCache()

    async def ensure_indexed(self, physical_name: str) -> EngineCollection:
        """Get a collection handle, creating its indexes on first use.

        Args:
            physical_name: Physical milestone collection name

        Returns:
            Collection handle

        Raises:
            ConnectionClosedError: If the store is closed
            Exception: Engine errors from create_index, unchanged
        """
        database = await self.connection.get_ready()
        collection = database.collection(physical_name)

        if not self._should_create_index(physical_name):
            return collection

        # Creating indexes on a large, unindexed collection can lock it up;
        # set disable_index_creation and manage indexes by hand in that case.
        await asyncio.gather(
            collection.create_index(
                [(DOC_ID_FIELD, ASCENDING), (VERSION_FIELD, ASCENDING)],
                background=True,
                unique=True,
            ),
            collection.create_index(
                [(TIMESTAMP_FIELD, ASCENDING)],
                background=True,
            ),
        )
        self.cache.add(physical_name)
        logger.info("Milestone indexes requested", extra={"collection": physical_name})
        return collection

    def _should_create_index(self, physical_name: str) -> bool:
        return not self.disable_index_creation and physical_name not in self.cache
