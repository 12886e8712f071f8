"""
Connection lifecycle for the milestone store.

The ConnectionManager owns the single shared database handle:

    CONNECTING ──▶ READY ──▶ CLOSED
         │                     ▲
         └──▶ FAILED ──────────┘

Connecting starts at construction when an event loop is running, or on
first use otherwise. Every caller awaits the same pending handle, so a
connection failure is reported to each operation and never retried.

Invariants:
    - At most one connection attempt per manager
    - After close() starts, get_ready() raises ConnectionClosedError
      without touching the network
    - close() clears the handle even if the engine's close fails
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from enum import Enum

from .engine.base import ConnectionSource, EngineDatabase, open_connection
from .errors import ConnectionClosedError

logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    """Lifecycle state of a ConnectionManager."""

    CONNECTING = "connecting"
    READY = "ready"
    FAILED = "failed"
    CLOSED = "closed"


class ConnectionManager:
    """Owns the storage engine handle for one store.

    Attributes:
        source: Where the connection comes from

    Example:
        >>> manager = ConnectionManager(AddressSource("mongodb://localhost/sharedb"))
        >>> db = await manager.get_ready()
        >>> await manager.close()
    """

    def __init__(self, source: ConnectionSource) -> None:
        self.source = source
        self._pending: asyncio.Task[EngineDatabase] | None = None
        self._closed = False

        try:
            asyncio.get_running_loop()
        except RuntimeError:
            # No loop yet; connect on first use
            pass
        else:
            self._pending = self._start()

    @property
    def state(self) -> ConnectionState:
        if self._closed:
            return ConnectionState.CLOSED
        if self._pending is None or not self._pending.done():
            return ConnectionState.CONNECTING
        if self._pending.cancelled() or self._pending.exception() is not None:
            return ConnectionState.FAILED
        return ConnectionState.READY

    @property
    def is_closed(self) -> bool:
        return self._closed

    async def get_ready(self) -> EngineDatabase:
        """Get the connected database handle.

        Returns:
            The shared database handle

        Raises:
            ConnectionClosedError: If close() has been called
            Exception: The original connection error if connecting failed
        """
        if self._closed:
            raise ConnectionClosedError()
        if self._pending is None:
            self._pending = self._start()
        # A cancelled caller must not cancel the shared connect
        return await asyncio.shield(self._pending)

    async def close(self) -> None:
        """Close the connection.

        Waits for the pending handle, clears it, then closes it. A second
        call is a no-op.

        Raises:
            Exception: The connection error, or the engine's close error
        """
        if self._closed:
            logger.debug("Connection already closed")
            return

        pending = self._pending
        self._closed = True
        self._pending = None

        if pending is None:
            logger.info("Connection closed before it was opened")
            return

        database = await pending
        result = database.close()
        if inspect.isawaitable(result):
            await result
        logger.info("Milestone store connection closed")

    def _start(self) -> asyncio.Task[EngineDatabase]:
        task = asyncio.get_running_loop().create_task(open_connection(self.source))
        task.add_done_callback(self._on_connected)
        return task

    def _on_connected(self, task: asyncio.Task[EngineDatabase]) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(
                f"Failed to connect to storage engine: {error}",
                extra={"source": repr(self.source)},
            )
        else:
            logger.debug("Storage engine connection ready", extra={"source": repr(self.source)})
