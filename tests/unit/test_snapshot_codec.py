"""
Unit tests for the snapshot model and storage codec.

Tests cover:
- Identifier renaming in both directions
- Metadata normalization
- Round-trip fidelity
- Pass-through of extra fields
"""

import pytest
from bson import ObjectId

from dbaas.milestone_db.errors import InvalidSnapshotError
from dbaas.milestone_db.snapshot import Snapshot, from_storage, to_storage


class TestToStorage:
    """Tests for to_storage()."""

    def test_renames_id_to_d(self):
        """The document id is stored under 'd'."""
        snapshot = Snapshot(id="abc", v=3, type="json0", data={"foo": "bar"}, m={"mtime": 10})

        document = to_storage(snapshot)

        assert document == {
            "d": "abc",
            "v": 3,
            "type": "json0",
            "data": {"foo": "bar"},
            "m": {"mtime": 10},
        }
        assert "id" not in document
        assert "_id" not in document

    def test_does_not_modify_snapshot(self):
        """Encoding leaves the snapshot untouched."""
        snapshot = Snapshot(id="abc", v=1, data={"foo": "bar"})

        to_storage(snapshot)

        assert snapshot.id == "abc"


class TestFromStorage:
    """Tests for from_storage()."""

    def test_none_is_not_found(self):
        """A missing document decodes to None."""
        assert from_storage(None) is None

    def test_drops_primary_key_and_renames_d(self):
        """_id is dropped and 'd' becomes the snapshot id."""
        raw = {"_id": ObjectId(), "d": "abc", "v": 2, "type": "json0", "data": {}, "m": None}

        snapshot = from_storage(raw)

        assert snapshot == Snapshot(id="abc", v=2, type="json0", data={}, m=None)

    def test_missing_metadata_is_none(self):
        """Metadata absent from storage reads back as None."""
        snapshot = from_storage({"_id": ObjectId(), "d": "abc", "v": 1, "data": {}})

        assert snapshot.m is None
        assert snapshot.type is None

    def test_does_not_modify_raw(self):
        """Decoding leaves the raw document untouched."""
        raw = {"_id": 1, "d": "abc", "v": 1}

        from_storage(raw)

        assert raw == {"_id": 1, "d": "abc", "v": 1}


class TestRoundTrip:
    """Round-trip fidelity."""

    @pytest.mark.parametrize(
        "snapshot",
        [
            Snapshot(id="abc", v=0, type="json0", data={"foo": "bar"}, m={"mtime": 1000}),
            Snapshot(id="abc", v=7, type=None, data=None),
            Snapshot(id="x", v=1, type="rich-text", data=[{"insert": "hi"}], m={}),
        ],
    )
    def test_round_trip(self, snapshot):
        """Encoding then decoding yields an equal snapshot."""
        raw = to_storage(snapshot)
        raw["_id"] = ObjectId()

        assert from_storage(raw) == snapshot


class TestSnapshot:
    """Tests for the Snapshot dataclass."""

    def test_from_dict(self):
        """Missing optional fields default to None."""
        snapshot = Snapshot.from_dict({"id": "abc", "v": 1, "data": {"a": 1}})

        assert snapshot == Snapshot(id="abc", v=1, type=None, data={"a": 1}, m=None)

    def test_from_dict_requires_id_and_version(self):
        """A mapping without id or v is not a snapshot."""
        with pytest.raises(InvalidSnapshotError):
            Snapshot.from_dict({"v": 1})
        with pytest.raises(InvalidSnapshotError):
            Snapshot.from_dict({"id": "abc"})

    def test_mtime(self):
        """mtime reads the metadata timestamp."""
        assert Snapshot(id="a", v=1, m={"mtime": 42}).mtime == 42
        assert Snapshot(id="a", v=1).mtime is None


class TestExtraFields:
    """Fields beyond id, v, type, data and m."""

    def test_from_dict_keeps_unknown_keys(self):
        snapshot = Snapshot.from_dict({"id": "abc", "v": 1, "data": {}, "extra": 5})

        assert snapshot.extra == {"extra": 5}
        assert snapshot.to_dict()["extra"] == 5

    def test_stored_alongside_core_fields(self):
        snapshot = Snapshot(id="abc", v=1, data={}, extra={"owner": "u1"})

        document = to_storage(snapshot)

        assert document["owner"] == "u1"
        assert document["d"] == "abc"

    def test_round_trip(self):
        snapshot = Snapshot(id="abc", v=1, data={}, extra={"owner": "u1", "tags": ["a"]})
        raw = to_storage(snapshot)
        raw["_id"] = ObjectId()

        assert from_storage(raw) == snapshot

    @pytest.mark.parametrize("key", ["d", "_id"])
    def test_storage_keys_rejected(self, key):
        """Keys the storage layout owns cannot ride along as extra fields."""
        with pytest.raises(InvalidSnapshotError):
            Snapshot.from_dict({"id": "abc", "v": 1, key: "x"})
        with pytest.raises(InvalidSnapshotError):
            Snapshot(id="abc", v=1, extra={key: "x"})

    def test_from_dict_requires_mapping(self):
        with pytest.raises(InvalidSnapshotError):
            Snapshot.from_dict([{"id": "abc", "v": 1}])
