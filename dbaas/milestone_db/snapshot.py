"""
Milestone snapshot model and storage codec.

A milestone snapshot is the state of one document at one version. In
storage the document identifier lives in ``d`` rather than ``id`` so it
never collides with the engine's own ``_id`` primary key.

Storage document layout:
    {
        "_id": <engine primary key, never exposed>,
        "d": <document id>,
        "v": <version>,
        "type": <OT type name or None>,
        "data": <document body>,
        "m": {"mtime": <unix ms>, ...} or None,
        ...any other snapshot fields, stored as given
    }

Invariants:
    - from_storage(to_storage(s)) == s for every valid snapshot
    - Metadata read back is either a mapping or None, never missing
    - The engine's ``_id`` never leaks into a Snapshot
    - Fields beyond the core five travel in ``extra`` and are never dropped
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from .errors import InvalidSnapshotError

PRIMARY_KEY_FIELD = "_id"
DOC_ID_FIELD = "d"
VERSION_FIELD = "v"
TIMESTAMP_FIELD = "m.mtime"

SNAPSHOT_FIELDS = ("id", "v", "type", "data", "m")
RESERVED_FIELDS = frozenset(SNAPSHOT_FIELDS) | {PRIMARY_KEY_FIELD, DOC_ID_FIELD}


@dataclass
class Snapshot:
    """A document snapshot at a specific version.

    Attributes:
        id: Document identifier
        v: Version number (non-negative)
        type: OT type identifier, passed through unchanged
        data: Document body, passed through unchanged
        m: Metadata mapping (``mtime`` carries the unix ms timestamp) or None
        extra: Any other top-level fields, passed through unchanged
    """

    id: str
    v: int
    type: Any = None
    data: Any = None
    m: dict[str, Any] | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        clashes = RESERVED_FIELDS.intersection(self.extra)
        if clashes:
            raise InvalidSnapshotError(f"reserved field(s) in extra: {', '.join(sorted(clashes))}")

    @property
    def mtime(self) -> int | None:
        """Modification timestamp from metadata, if any."""
        if not self.m:
            return None
        return self.m.get("mtime")

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            **self.extra,
            "id": self.id,
            "v": self.v,
            "type": self.type,
            "data": self.data,
            "m": self.m,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Snapshot:
        """Create from dictionary.

        Keys other than the core fields are kept in ``extra``.

        Raises:
            InvalidSnapshotError: If ``data`` is not a mapping, ``id`` or
                ``v`` is missing, or an extra key clashes with a storage field
        """
        if not isinstance(data, Mapping):
            raise InvalidSnapshotError(f"expected a mapping, got {type(data).__name__}")
        for key in ("id", "v"):
            if key not in data:
                raise InvalidSnapshotError(f"missing field '{key}'")
        return cls(
            id=data["id"],
            v=data["v"],
            type=data.get("type"),
            data=data.get("data"),
            m=data.get("m"),
            extra={k: value for k, value in data.items() if k not in SNAPSHOT_FIELDS},
        )


def to_storage(snapshot: Snapshot) -> dict[str, Any]:
    """Encode a snapshot as the replacement body for an upsert.

    Args:
        snapshot: Snapshot to encode

    Returns:
        Storage document with the identifier renamed to ``d``
    """
    document = snapshot.to_dict()
    document[DOC_ID_FIELD] = document.pop("id")
    return document


def from_storage(raw: Mapping[str, Any] | None) -> Snapshot | None:
    """Decode a storage document back into a snapshot.

    Args:
        raw: Document returned by the engine, or None when nothing matched

    Returns:
        Snapshot, or None (the not-found marker) if ``raw`` is None
    """
    if raw is None:
        return None

    document = dict(raw)
    document.pop(PRIMARY_KEY_FIELD, None)
    return Snapshot(
        id=document.get(DOC_ID_FIELD),
        v=document.get(VERSION_FIELD),
        type=document.get("type"),
        data=document.get("data"),
        # Missing metadata reads back as an explicit None
        m=document.get("m"),
        extra={k: value for k, value in document.items() if k not in RESERVED_FIELDS},
    )
