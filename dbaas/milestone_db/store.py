"""
Milestone snapshot store backed by MongoDB.

The MilestoneStore persists periodic snapshots of documents so that a
document's state near a version or a point in time can be rebuilt
without replaying its whole operation history.

Storage layout:
    One collection per logical collection, named m_<collection>.
    One document per (document id, version), see snapshot.py.

Lookups:
    by version         {d: id, v: {$lte: version}}     sort v desc
    at or before time  {d: id, m.mtime: {$lte: ts}}    sort m.mtime desc
    at or after time   {d: id, m.mtime: {$gte: ts}}    sort m.mtime asc

    A None version or timestamp drops the range condition, giving the
    latest snapshot (by version / before) or the earliest (after).

Invariants:
    - Saving is idempotent per (collection, id, version); the last write wins
    - Inputs are validated before any I/O
    - Lookups return None (not an error) when nothing matches
    - Once closed, every operation raises ConnectionClosedError
    - No retries: engine errors reach the caller unchanged

How to change safely:
    - Query shapes must stay covered by the indexes in indexes.py
    - Test lookups against a real mongod after changing query shapes
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Any, Callable, Dict, List, Mapping, Optional, Set

from .config import DEFAULT_INTERVAL, StoreConfig, split_store_options
from .connection import ConnectionManager
from .engine.base import ASCENDING, DESCENDING, SortSpec, connection_source
from .errors import (
    InvalidCollectionNameError,
    InvalidIdError,
    InvalidSnapshotError,
    InvalidTimestampError,
    InvalidVersionError,
    is_valid_sequence_number,
)
from .indexes import IndexRegistrar, milestone_collection_name
from .snapshot import (
    DOC_ID_FIELD,
    TIMESTAMP_FIELD,
    VERSION_FIELD,
    Snapshot,
    from_storage,
    to_storage,
)

logger = logging.getLogger(__name__)

SaveCallback = Callable[[Optional[BaseException]], Any]

EVENTS = ("save", "error")


class MilestoneStore:
    """Stores and retrieves milestone snapshots.

    Attributes:
        interval: Versions between milestones, kept for the caller's scheduling
        connection: Connection manager owning the database handle
        indexes: Index registrar for milestone collections

    Example:
        >>> store = MilestoneStore("mongodb://localhost:27017/sharedb")
        >>> await store.save_milestone_snapshot("docs", Snapshot(id="abc", v=1, data={}))
        >>> snapshot = await store.get_milestone_snapshot("docs", "abc", None)
        >>> await store.close()
    """

    def __init__(self, mongo: Any = None, **options: Any) -> None:
        """Initialize the store and start connecting.

        Args:
            mongo: MongoDB URL, zero-argument connection factory (sync or
                async), ConnectionSource, or a mapping of options holding
                a ``mongo`` key
            **options: ``interval``, ``disable_index_creation``
                (or ``disableIndexCreation``), ``index_cache``; anything
                else is forwarded to the MongoDB client
        """
        if isinstance(mongo, Mapping):
            options = {**mongo, **options}
            mongo = options.get("mongo")
        if mongo is None:
            raise TypeError("MilestoneStore requires a MongoDB URL or connection factory")

        store_options, client_options = split_store_options(options)
        self.interval: int = store_options.get("interval") or DEFAULT_INTERVAL
        disable_index_creation = bool(
            store_options.get(
                "disable_index_creation",
                store_options.get("disableIndexCreation", False),
            )
        )

        self.connection = ConnectionManager(connection_source(mongo, client_options))
        self.indexes = IndexRegistrar(
            self.connection,
            disable_index_creation=disable_index_creation,
            cache=store_options.get("index_cache"),
        )
        self._listeners: Dict[str, List[Callable[..., Any]]] = defaultdict(list)
        self._background: Set[asyncio.Task[None]] = set()

    @classmethod
    def from_config(cls, config: StoreConfig, **options: Any) -> MilestoneStore:
        """Create a store from a StoreConfig.

        Args:
            config: Store configuration
            **options: Extra options, e.g. ``index_cache``
        """
        return cls(
            config.mongo.url,
            interval=config.milestone.interval,
            disable_index_creation=config.milestone.disable_index_creation,
            **config.mongo.client_options(),
            **options,
        )

    @property
    def disable_index_creation(self) -> bool:
        return self.indexes.disable_index_creation

    # Notifications

    def on(self, event: str, listener: Callable[..., Any]) -> None:
        """Register a listener for ``save`` or ``error`` notifications.

        ``save`` listeners receive (collection_name, snapshot); ``error``
        listeners receive the exception. Notifications are only emitted by
        submit_milestone_snapshot() when no callback is given.
        """
        if event not in EVENTS:
            raise ValueError(f"Unknown event '{event}'. Must be one of: {', '.join(EVENTS)}")
        self._listeners[event].append(listener)

    def off(self, event: str, listener: Callable[..., Any]) -> None:
        """Remove a previously registered listener."""
        if listener in self._listeners.get(event, []):
            self._listeners[event].remove(listener)

    def _emit(self, event: str, *args: Any) -> None:
        listeners = list(self._listeners.get(event, []))
        if event == "error" and not listeners:
            error = args[0]
            logger.error(
                f"Unhandled milestone store error: {error}",
                exc_info=(type(error), error, error.__traceback__),
            )
            return
        for listener in listeners:
            listener(*args)

    # Writes

    async def save_milestone_snapshot(self, collection_name: str, snapshot: Any) -> None:
        """Save a snapshot, overwriting any snapshot with the same id and version.

        Args:
            collection_name: Logical collection name
            snapshot: Snapshot, or a mapping with at least ``id`` and ``v``

        Raises:
            InvalidCollectionNameError: If collection_name is empty
            InvalidSnapshotError: If snapshot is missing or malformed
            ConnectionClosedError: If the store is closed
        """
        if not collection_name or not isinstance(collection_name, str):
            raise InvalidCollectionNameError(collection_name)
        snapshot = _coerce_snapshot(snapshot)

        collection = await self.indexes.ensure_indexed(milestone_collection_name(collection_name))
        query = {DOC_ID_FIELD: snapshot.id, VERSION_FIELD: snapshot.v}
        await collection.replace_one(query, to_storage(snapshot), upsert=True)

        logger.debug(
            "Milestone snapshot saved",
            extra={"collection": collection_name, "doc_id": snapshot.id, "version": snapshot.v},
        )

    def submit_milestone_snapshot(
        self,
        collection_name: str,
        snapshot: Any,
        callback: SaveCallback | None = None,
    ) -> asyncio.Task[None]:
        """Save a snapshot in the background.

        With a callback, it is called with None on success or the exception
        on failure. Without one, listeners get a ``save`` or ``error``
        notification instead. Completion is never delivered before this
        method returns. Must be called from a running event loop. A callback
        or listener that raises is logged at ERROR level.

        Returns:
            The background task; it never raises
        """
        task = asyncio.get_running_loop().create_task(
            self._submit(collection_name, snapshot, callback)
        )
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def _submit(
        self,
        collection_name: str,
        snapshot: Any,
        callback: SaveCallback | None,
    ) -> None:
        try:
            await self.save_milestone_snapshot(collection_name, snapshot)
        except Exception as e:
            if callback is not None:
                self._deliver(callback, e)
            else:
                self._deliver(self._emit, "error", e)
            return

        if callback is not None:
            self._deliver(callback, None)
        else:
            self._deliver(self._emit, "save", collection_name, snapshot)

    def _deliver(self, fn: Callable[..., Any], *args: Any) -> None:
        # A failing callback or listener must not fail the background task
        try:
            fn(*args)
        except Exception as e:
            logger.error(
                f"Milestone save completion handler failed: {e}",
                exc_info=True,
            )

    # Reads

    async def get_milestone_snapshot(
        self,
        collection_name: str,
        doc_id: str,
        version: int | None = None,
    ) -> Snapshot | None:
        """Get the latest snapshot whose version is at most ``version``.

        Args:
            collection_name: Logical collection name
            doc_id: Document identifier
            version: Upper version bound, or None for the latest snapshot

        Returns:
            Snapshot, or None if no snapshot matches

        Raises:
            InvalidIdError: If doc_id is empty
            InvalidVersionError: If version is not a non-negative int or None
            InvalidCollectionNameError: If collection_name is empty
        """
        if not doc_id:
            raise InvalidIdError(doc_id)
        if not is_valid_sequence_number(version):
            raise InvalidVersionError(version)

        query: Dict[str, Any] = {DOC_ID_FIELD: doc_id}
        if version is not None:
            query[VERSION_FIELD] = {"$lte": version}

        return await self._find_snapshot(collection_name, query, [(VERSION_FIELD, DESCENDING)])

    async def get_milestone_snapshot_at_or_before_time(
        self,
        collection_name: str,
        doc_id: str,
        timestamp: int | None = None,
    ) -> Snapshot | None:
        """Get the latest snapshot taken at or before ``timestamp`` (unix ms).

        A None timestamp returns the latest snapshot overall.
        """
        return await self._get_by_timestamp(collection_name, doc_id, timestamp, is_after=False)

    async def get_milestone_snapshot_at_or_after_time(
        self,
        collection_name: str,
        doc_id: str,
        timestamp: int | None = None,
    ) -> Snapshot | None:
        """Get the earliest snapshot taken at or after ``timestamp`` (unix ms).

        A None timestamp returns the earliest snapshot overall.
        """
        return await self._get_by_timestamp(collection_name, doc_id, timestamp, is_after=True)

    async def _get_by_timestamp(
        self,
        collection_name: str,
        doc_id: str,
        timestamp: int | None,
        is_after: bool,
    ) -> Snapshot | None:
        if not doc_id:
            raise InvalidIdError(doc_id)
        if not is_valid_sequence_number(timestamp):
            raise InvalidTimestampError(timestamp)

        query: Dict[str, Any] = {DOC_ID_FIELD: doc_id}
        if timestamp is not None:
            query[TIMESTAMP_FIELD] = {"$gte": timestamp} if is_after else {"$lte": timestamp}

        # Closest snapshot on the requested side of the boundary comes first
        direction = ASCENDING if is_after else DESCENDING
        return await self._find_snapshot(collection_name, query, [(TIMESTAMP_FIELD, direction)])

    async def _find_snapshot(
        self,
        collection_name: str,
        query: Dict[str, Any],
        sort: SortSpec,
    ) -> Snapshot | None:
        if not collection_name or not isinstance(collection_name, str):
            raise InvalidCollectionNameError(collection_name)

        collection = await self.indexes.ensure_indexed(milestone_collection_name(collection_name))
        raw = await collection.find_one(query, sort=sort)

        logger.debug(
            "Milestone snapshot lookup",
            extra={"collection": collection_name, "query": repr(query), "found": raw is not None},
        )
        return from_storage(raw)

    # Lifecycle

    async def close(self) -> None:
        """Close the store. Safe to call more than once.

        Raises:
            Exception: The engine's close error; the store is closed regardless
        """
        await self.connection.close()


def _coerce_snapshot(snapshot: Any) -> Snapshot:
    if snapshot is None:
        raise InvalidSnapshotError()
    if isinstance(snapshot, Mapping):
        snapshot = Snapshot.from_dict(snapshot)
    elif not isinstance(snapshot, Snapshot):
        raise InvalidSnapshotError(f"unsupported snapshot type {type(snapshot).__name__}")

    if not snapshot.id:
        raise InvalidSnapshotError("id must be a non-empty identifier")
    if snapshot.v is None or not is_valid_sequence_number(snapshot.v):
        raise InvalidSnapshotError(f"v must be a non-negative integer, got {snapshot.v!r}")
    return snapshot
