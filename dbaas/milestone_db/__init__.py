"""
Milestone DB - MongoDB-backed milestone snapshot storage.

Milestones are periodic snapshots of a document. Given a version or a
point in time, the store returns the nearest milestone so that the
document can be rebuilt by replaying only the operations after it.

Architecture:
    ┌─────────────┐     ┌────────────────┐     ┌──────────────────┐
    │   Caller    │────▶│ MilestoneStore │────▶│ ConnectionManager│
    │ (sync layer)│     │   (store.py)   │     │ (connection.py)  │
    └─────────────┘     └───────┬────────┘     └────────┬─────────┘
                                │                       │
                                ▼                       ▼
                       ┌────────────────┐      ┌──────────────────┐
                       │ IndexRegistrar │─────▶│  Storage engine  │
                       │  (indexes.py)  │      │ (MongoDB/memory) │
                       └────────────────┘      └──────────────────┘

Invariants:
    - One physical collection m_<name> per logical collection
    - Snapshots are unique per (document id, version)
    - Indexes are requested at most once per collection per process
    - A closed store never reconnects

How to change safely:
    - Keep the storage layout stable; existing milestones must stay readable
    - New query shapes need a matching index in indexes.py
"""

from ._version import __version__
from .config import MilestoneConfig, MongoConfig, ObservabilityConfig, StoreConfig
from .connection import ConnectionManager, ConnectionState
from .errors import (
    ConnectionClosedError,
    InvalidCollectionNameError,
    InvalidIdError,
    InvalidSnapshotError,
    InvalidTimestampError,
    InvalidVersionError,
    MilestoneDbError,
    StorageEngineError,
)
from .indexes import IndexCache, IndexRegistrar, InMemoryIndexCache, milestone_collection_name
from .snapshot import Snapshot, from_storage, to_storage
from .store import MilestoneStore

__all__ = [
    "__version__",
    # Store
    "MilestoneStore",
    "Snapshot",
    # Components
    "ConnectionManager",
    "ConnectionState",
    "IndexRegistrar",
    "IndexCache",
    "InMemoryIndexCache",
    "milestone_collection_name",
    "to_storage",
    "from_storage",
    # Configuration
    "StoreConfig",
    "MongoConfig",
    "MilestoneConfig",
    "ObservabilityConfig",
    # Errors
    "MilestoneDbError",
    "InvalidCollectionNameError",
    "InvalidIdError",
    "InvalidSnapshotError",
    "InvalidVersionError",
    "InvalidTimestampError",
    "ConnectionClosedError",
    "StorageEngineError",
]
