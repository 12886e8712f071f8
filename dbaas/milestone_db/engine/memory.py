"""
In-memory storage engine implementation for testing.

This module provides a small in-memory document store for:
- Unit tests
- Local development without a running mongod

It understands exactly the query shapes the milestone store issues:
equality and range operators on (dotted) fields, multi-key sort,
replace-with-upsert and unique compound indexes.

Invariants:
    - All data is lost on process exit
    - Documents are deep-copied in and out, like a wire round trip
    - Missing and None values sort lowest, as in MongoDB
    - Every operation yields to the event loop once

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep interface compatible with the EngineCollection protocol
    - Add features to help with testing scenarios
"""

from __future__ import annotations

import asyncio
import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from bson import ObjectId

from ..errors import StorageEngineError
from .base import IndexKeys, SortSpec

logger = logging.getLogger(__name__)

_MISSING = object()

_COMPARATORS = {
    "$lt": lambda a, b: a < b,
    "$lte": lambda a, b: a <= b,
    "$gt": lambda a, b: a > b,
    "$gte": lambda a, b: a >= b,
}


@dataclass
class IndexInfo:
    """Index definition stored on an in-memory collection."""

    name: str
    keys: IndexKeys
    unique: bool = False
    options: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ReplaceResult:
    """Result of replace_one, shaped like pymongo's UpdateResult."""

    matched_count: int
    modified_count: int
    upserted_id: Optional[ObjectId] = None


def index_name(keys: IndexKeys) -> str:
    """Build the default MongoDB index name, e.g. ``d_1_v_1``."""
    return "_".join(f"{name}_{direction}" for name, direction in keys)


def get_path(document: Mapping[str, Any], path: str) -> Any:
    """Resolve a dotted field path, returning _MISSING if absent."""
    value: Any = document
    for part in path.split("."):
        if not isinstance(value, Mapping) or part not in value:
            return _MISSING
        value = value[part]
    return value


def matches(document: Mapping[str, Any], filter: Mapping[str, Any]) -> bool:
    """Check whether a document satisfies a filter."""
    for path, condition in filter.items():
        value = get_path(document, path)

        if isinstance(condition, Mapping) and any(k.startswith("$") for k in condition):
            for operator, operand in condition.items():
                compare = _COMPARATORS.get(operator)
                if compare is None:
                    raise StorageEngineError(f"unknown operator: {operator}")
                # Range operators never match missing or null fields
                if value is _MISSING or value is None:
                    return False
                try:
                    if not compare(value, operand):
                        return False
                except TypeError:
                    return False
            continue

        if value is _MISSING:
            if condition is not None:
                return False
        elif value != condition:
            return False
    return True


def _sort_key(path: str):
    def key(document: Mapping[str, Any]) -> Tuple[int, Any]:
        value = get_path(document, path)
        if value is _MISSING or value is None:
            return (0, 0)
        return (1, value)

    return key


def sort_documents(documents: List[Dict[str, Any]], sort: SortSpec) -> List[Dict[str, Any]]:
    """Sort documents by a multi-key sort spec (stable)."""
    ordered = list(documents)
    for path, direction in reversed(sort):
        ordered.sort(key=_sort_key(path), reverse=direction < 0)
    return ordered


class InMemoryCollection:
    """In-memory implementation of the EngineCollection protocol.

    Attributes:
        name: Collection name
        indexes: Index definitions keyed by index name
        create_index_calls: Number of create_index() calls received

    Example:
        >>> db = InMemoryDatabase()
        >>> col = db.collection("m_docs")
        >>> await col.replace_one({"d": "a", "v": 1}, {"d": "a", "v": 1}, upsert=True)
        >>> await col.find_one({"d": "a"})
    """

    def __init__(self, name: str, database: InMemoryDatabase) -> None:
        self.name = name
        self.indexes: Dict[str, IndexInfo] = {}
        self.create_index_calls = 0
        self._database = database
        self._documents: List[Dict[str, Any]] = []

    async def create_index(self, keys: IndexKeys, **options: Any) -> str:
        """Create an index; a no-op if the same index already exists."""
        await self._database._io("create_index")
        self.create_index_calls += 1

        keys = [(name, direction) for name, direction in keys]
        name = options.pop("name", None) or index_name(keys)
        unique = bool(options.pop("unique", False))

        if name in self.indexes:
            return name

        if unique:
            seen = set()
            for document in self._documents:
                key = self._index_key(document, keys)
                if key in seen:
                    raise StorageEngineError(
                        f"E11000 duplicate key error collection: {self.name} index: {name}"
                    )
                seen.add(key)

        self.indexes[name] = IndexInfo(name=name, keys=keys, unique=unique, options=options)
        logger.debug("Index created", extra={"collection": self.name, "index": name})
        return name

    async def replace_one(
        self,
        filter: Mapping[str, Any],
        replacement: Mapping[str, Any],
        upsert: bool = False,
    ) -> ReplaceResult:
        """Replace the first matching document, inserting it if ``upsert``."""
        await self._database._io("replace_one")

        if any(key.startswith("$") for key in replacement):
            raise StorageEngineError("replacement document must not contain update operators")

        body = copy.deepcopy(dict(replacement))
        body.pop("_id", None)

        for position, document in enumerate(self._documents):
            if matches(document, filter):
                body["_id"] = document["_id"]
                self._check_unique(body, skip=position)
                self._documents[position] = body
                return ReplaceResult(matched_count=1, modified_count=1)

        if not upsert:
            return ReplaceResult(matched_count=0, modified_count=0)

        body["_id"] = ObjectId()
        self._check_unique(body)
        self._documents.append(body)
        return ReplaceResult(matched_count=0, modified_count=0, upserted_id=body["_id"])

    async def find_one(
        self,
        filter: Optional[Mapping[str, Any]] = None,
        sort: Optional[SortSpec] = None,
    ) -> Optional[Dict[str, Any]]:
        """Return the first document matching ``filter`` in ``sort`` order."""
        await self._database._io("find_one")

        candidates = [doc for doc in self._documents if matches(doc, filter or {})]
        if sort:
            candidates = sort_documents(candidates, sort)
        if not candidates:
            return None
        return copy.deepcopy(candidates[0])

    def _index_key(self, document: Mapping[str, Any], keys: IndexKeys) -> Tuple[Any, ...]:
        values = []
        for path, _ in keys:
            value = get_path(document, path)
            values.append(None if value is _MISSING else repr(value))
        return tuple(values)

    def _check_unique(self, candidate: Mapping[str, Any], skip: int = -1) -> None:
        for index in self.indexes.values():
            if not index.unique:
                continue
            key = self._index_key(candidate, index.keys)
            for position, document in enumerate(self._documents):
                if position != skip and self._index_key(document, index.keys) == key:
                    raise StorageEngineError(
                        f"E11000 duplicate key error collection: {self.name} "
                        f"index: {index.name}"
                    )

    # Testing helpers

    def all_documents(self) -> List[Dict[str, Any]]:
        """Get a copy of every stored document (testing helper)."""
        return copy.deepcopy(self._documents)

    def count(self) -> int:
        """Get the number of stored documents (testing helper)."""
        return len(self._documents)


class InMemoryDatabase:
    """In-memory implementation of the EngineDatabase protocol.

    Collections are created on first lookup, like MongoDB.

    Attributes:
        closed: Whether close() has been called
        close_calls: Number of close() calls received
    """

    def __init__(self) -> None:
        self._collections: Dict[str, InMemoryCollection] = {}
        self._failures: Dict[str, Exception] = {}
        self.closed = False
        self.close_calls = 0

    def collection(self, name: str) -> InMemoryCollection:
        """Look up (or lazily create) a collection."""
        if name not in self._collections:
            self._collections[name] = InMemoryCollection(name, self)
        return self._collections[name]

    async def close(self) -> None:
        """Close the database; later operations raise StorageEngineError."""
        self.close_calls += 1
        await self._io("close")
        self.closed = True
        logger.debug("InMemoryDatabase closed")

    async def _io(self, operation: str) -> None:
        await asyncio.sleep(0)
        failure = self._failures.pop(operation, None)
        if failure is not None:
            raise failure
        if self.closed:
            raise StorageEngineError("Cannot use client after close")

    # Testing helpers

    def fail_next(self, operation: str, exception: Exception) -> None:
        """Make the next ``operation`` call raise ``exception`` (testing helper).

        Args:
            operation: One of "create_index", "replace_one", "find_one", "close"
            exception: Exception to raise
        """
        self._failures[operation] = exception

    def list_collection_names(self) -> List[str]:
        """Get the names of all collections touched so far (testing helper)."""
        return sorted(self._collections)
