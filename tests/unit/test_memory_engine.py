"""
Unit tests for the in-memory storage engine.

Tests cover:
- Filter operators and dotted paths
- Sorting with missing values
- Replace with upsert
- Unique indexes
- Failure injection and close
"""

import pytest

from dbaas.milestone_db.engine.memory import InMemoryDatabase, matches, sort_documents
from dbaas.milestone_db.errors import StorageEngineError


class TestMatching:
    """Tests for filter evaluation."""

    def test_equality(self):
        assert matches({"d": "abc", "v": 1}, {"d": "abc"})
        assert not matches({"d": "abc", "v": 1}, {"d": "xyz"})

    def test_range_operators(self):
        document = {"v": 5}

        assert matches(document, {"v": {"$lte": 5}})
        assert matches(document, {"v": {"$gte": 5}})
        assert not matches(document, {"v": {"$lt": 5}})
        assert not matches(document, {"v": {"$gt": 5}})

    def test_dotted_path(self):
        assert matches({"m": {"mtime": 10}}, {"m.mtime": {"$lte": 10}})
        assert not matches({"m": None}, {"m.mtime": {"$lte": 10}})
        assert not matches({}, {"m.mtime": {"$gte": 0}})

    def test_unknown_operator(self):
        with pytest.raises(StorageEngineError):
            matches({"v": 1}, {"v": {"$regex": "x"}})


class TestSorting:
    """Tests for sort_documents()."""

    def test_missing_values_sort_lowest(self):
        documents = [{"m": {"mtime": 2}}, {"m": None}, {"m": {"mtime": 1}}]

        ascending = sort_documents(documents, [("m.mtime", 1)])
        descending = sort_documents(documents, [("m.mtime", -1)])

        assert ascending[0] == {"m": None}
        assert descending[0] == {"m": {"mtime": 2}}
        assert descending[-1] == {"m": None}


class TestInMemoryCollection:
    """Tests for InMemoryCollection."""

    @pytest.fixture
    def db(self):
        return InMemoryDatabase()

    @pytest.mark.asyncio
    async def test_upsert_inserts_then_replaces(self, db):
        """Upsert inserts once and then replaces in place."""
        col = db.collection("m_docs")

        first = await col.replace_one({"d": "a", "v": 1}, {"d": "a", "v": 1, "data": 1}, upsert=True)
        second = await col.replace_one({"d": "a", "v": 1}, {"d": "a", "v": 1, "data": 2}, upsert=True)

        assert first.upserted_id is not None
        assert second.matched_count == 1
        assert col.count() == 1
        found = await col.find_one({"d": "a"})
        assert found["data"] == 2
        assert found["_id"] == first.upserted_id

    @pytest.mark.asyncio
    async def test_replace_without_upsert(self, db):
        """Without upsert nothing is inserted."""
        col = db.collection("m_docs")

        result = await col.replace_one({"d": "a"}, {"d": "a"})

        assert result.matched_count == 0
        assert col.count() == 0

    @pytest.mark.asyncio
    async def test_find_one_returns_copy(self, db):
        """Mutating a returned document does not change storage."""
        col = db.collection("m_docs")
        await col.replace_one({"d": "a"}, {"d": "a", "data": {"x": 1}}, upsert=True)

        found = await col.find_one({"d": "a"})
        found["data"]["x"] = 2

        assert (await col.find_one({"d": "a"}))["data"] == {"x": 1}

    @pytest.mark.asyncio
    async def test_create_index_is_idempotent(self, db):
        """Creating the same index twice is a no-op."""
        col = db.collection("m_docs")

        name1 = await col.create_index([("d", 1), ("v", 1)], unique=True, background=True)
        name2 = await col.create_index([("d", 1), ("v", 1)], unique=True, background=True)

        assert name1 == name2 == "d_1_v_1"
        assert list(col.indexes) == ["d_1_v_1"]
        assert col.indexes["d_1_v_1"].unique
        assert col.create_index_calls == 2

    @pytest.mark.asyncio
    async def test_unique_index_rejects_duplicates(self, db):
        """A unique index prevents two documents with the same key."""
        col = db.collection("m_docs")
        await col.create_index([("d", 1), ("v", 1)], unique=True)
        await col.replace_one({"_id": 1}, {"d": "a", "v": 1}, upsert=True)

        with pytest.raises(StorageEngineError):
            await col.replace_one({"d": "a", "v": 2}, {"d": "a", "v": 1}, upsert=True)

    @pytest.mark.asyncio
    async def test_fail_next(self, db):
        """Injected failures are raised once."""
        col = db.collection("m_docs")
        db.fail_next("find_one", StorageEngineError("boom"))

        with pytest.raises(StorageEngineError, match="boom"):
            await col.find_one({})
        assert await col.find_one({}) is None

    @pytest.mark.asyncio
    async def test_closed_database_rejects_operations(self, db):
        """Operations after close fail."""
        col = db.collection("m_docs")
        await db.close()

        assert db.closed
        with pytest.raises(StorageEngineError):
            await col.find_one({})
