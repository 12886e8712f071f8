"""
Base protocol and types for the storage engine collaborator.

The milestone store treats the document database as an opaque,
key-ordered collection store. This module defines the small surface it
consumes, along with the tagged variant describing where a connection
comes from.

Invariants:
    - All engine operations are coroutines
    - create_index() is idempotent on the engine side
    - Engine errors are propagated unchanged to callers

How to change safely:
    - Protocol changes require updating the MongoDB and in-memory engines
    - Keep method names and argument shapes aligned with pymongo's
      asyncio collection API so the MongoDB engine stays a thin adapter
"""

from __future__ import annotations

import inspect
import logging
from abc import abstractmethod
from dataclasses import dataclass, field
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Protocol,
    Tuple,
    Union,
    runtime_checkable,
)

logger = logging.getLogger(__name__)

IndexKeys = List[Tuple[str, int]]
SortSpec = List[Tuple[str, int]]

ASCENDING = 1
DESCENDING = -1


@runtime_checkable
class EngineCollection(Protocol):
    """Protocol for a physical collection handle.

    Example:
        >>> collection = db.collection("m_docs")
        >>> await collection.create_index([("d", 1), ("v", 1)], unique=True)
        >>> await collection.replace_one({"d": "abc", "v": 1}, doc, upsert=True)
        >>> await collection.find_one({"d": "abc"}, sort=[("v", -1)])
    """

    @abstractmethod
    async def create_index(self, keys: IndexKeys, **options: Any) -> str:
        """Create an index if it does not exist.

        Returns:
            The index name (e.g. ``d_1_v_1``)
        """
        ...

    @abstractmethod
    async def replace_one(
        self,
        filter: Mapping[str, Any],
        replacement: Mapping[str, Any],
        upsert: bool = False,
    ) -> Any:
        """Replace the first document matching ``filter``."""
        ...

    @abstractmethod
    async def find_one(
        self,
        filter: Optional[Mapping[str, Any]] = None,
        sort: Optional[SortSpec] = None,
    ) -> Optional[Dict[str, Any]]:
        """Return the first document matching ``filter`` in ``sort`` order."""
        ...


@runtime_checkable
class EngineDatabase(Protocol):
    """Protocol for a connected database handle."""

    @abstractmethod
    def collection(self, name: str) -> EngineCollection:
        """Look up a collection handle. Never performs I/O."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Close the underlying client."""
        ...


ConnectionFactory = Callable[[], Union[EngineDatabase, Awaitable[EngineDatabase]]]


@dataclass(frozen=True)
class FactorySource:
    """Connection produced by a caller-supplied factory.

    The factory takes no arguments and returns either a database handle or
    an awaitable resolving to one.
    """

    factory: ConnectionFactory


@dataclass(frozen=True)
class AddressSource:
    """Connection opened from a MongoDB URL.

    Attributes:
        url: MongoDB connection string
        options: Client options forwarded verbatim to the MongoDB client
    """

    url: str
    options: Dict[str, Any] = field(default_factory=dict)

    def __repr__(self) -> str:
        return f"AddressSource(url={redact_url(self.url)!r})"


ConnectionSource = Union[FactorySource, AddressSource]


def connection_source(
    mongo: Any,
    options: Optional[Mapping[str, Any]] = None,
) -> ConnectionSource:
    """Resolve a loosely-typed ``mongo`` argument into a ConnectionSource.

    Args:
        mongo: A ConnectionSource, a URL string, or a factory callable
        options: Client options, only used for URL strings

    Returns:
        FactorySource or AddressSource

    Raises:
        TypeError: If ``mongo`` is none of the supported shapes
    """
    if isinstance(mongo, (FactorySource, AddressSource)):
        return mongo
    if isinstance(mongo, str):
        return AddressSource(url=mongo, options=dict(options or {}))
    if callable(mongo):
        return FactorySource(factory=mongo)
    raise TypeError(
        f"mongo must be a URL, a connection factory or a ConnectionSource, "
        f"got {type(mongo).__name__}"
    )


async def open_connection(source: ConnectionSource) -> EngineDatabase:
    """Open a database handle from a connection source.

    Args:
        source: Where the connection comes from

    Returns:
        Connected database handle

    Raises:
        Exception: Whatever the factory or the MongoDB client raises
    """
    if isinstance(source, FactorySource):
        result = source.factory()
        if inspect.isawaitable(result):
            result = await result
        return result

    from .mongo import connect_mongo

    return await connect_mongo(source.url, source.options)


def redact_url(url: str) -> str:
    """Hide the password part of a connection string for logging."""
    scheme, sep, rest = url.partition("://")
    if not sep or "@" not in rest:
        return url
    credentials, _, host = rest.rpartition("@")
    user = credentials.split(":", 1)[0]
    return f"{scheme}://{user}:***@{host}"
