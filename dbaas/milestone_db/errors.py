"""
Error types for the milestone store.

This module defines all exception types raised by the store itself:
- MilestoneDbError: Base exception
- InvalidCollectionNameError, InvalidIdError, InvalidSnapshotError,
  InvalidVersionError, InvalidTimestampError: Input validation failures
- ConnectionClosedError: Operation attempted after close()
- StorageEngineError: Failure raised by the in-memory engine

Invariants:
    - Validation errors are raised before any I/O and are never retried
    - Errors from the storage engine (pymongo or a custom factory) are
      propagated unchanged, never wrapped
    - Error codes are stable strings for programmatic handling
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class MilestoneDbError(Exception):
    """Base exception for all milestone store errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "MILESTONE_DB_ERROR"
        self.details = details or {}


class InvalidCollectionNameError(MilestoneDbError):
    """Collection name is missing or empty."""

    def __init__(self, collection: Any = None) -> None:
        super().__init__(
            "Must provide valid collection name",
            code="ERR_INVALID_COLLECTION_NAME",
            details={"collection": collection},
        )


class InvalidIdError(MilestoneDbError):
    """Document ID is missing or empty."""

    def __init__(self, doc_id: Any = None) -> None:
        super().__init__(
            "Must provide valid ID",
            code="ERR_INVALID_ID",
            details={"id": doc_id},
        )


class InvalidSnapshotError(MilestoneDbError):
    """Snapshot is missing or not a snapshot-shaped value."""

    def __init__(self, reason: Optional[str] = None) -> None:
        super().__init__(
            "Must provide valid snapshot",
            code="ERR_INVALID_SNAPSHOT",
            details={"reason": reason} if reason else None,
        )


class InvalidVersionError(MilestoneDbError):
    """Version is neither a non-negative integer nor None."""

    def __init__(self, version: Any = None) -> None:
        super().__init__(
            "Must provide valid integer version or null",
            code="ERR_INVALID_VERSION",
            details={"version": version},
        )


class InvalidTimestampError(MilestoneDbError):
    """Timestamp is neither a non-negative integer nor None."""

    def __init__(self, timestamp: Any = None) -> None:
        super().__init__(
            "Must provide valid integer timestamp or null",
            code="ERR_INVALID_TIMESTAMP",
            details={"timestamp": timestamp},
        )


class ConnectionClosedError(MilestoneDbError):
    """The store was closed; the connection is never re-opened."""

    def __init__(self) -> None:
        super().__init__("Already closed", code="MONGO_CLOSED")


class StorageEngineError(Exception):
    """Failure raised by the in-memory storage engine.

    The MongoDB engine raises ``pymongo.errors.PyMongoError`` subclasses
    instead; both propagate to callers unchanged.
    """

    pass


def is_valid_sequence_number(value: Any) -> bool:
    """Check that a version or timestamp is a non-negative int or None.

    Checks bool before int since bool is a subclass of int.
    """
    if value is None:
        return True
    if isinstance(value, bool):
        return False
    return isinstance(value, int) and value >= 0
