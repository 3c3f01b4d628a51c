"""
Test Suite for Vector Stores

Both stores honor the same contract; SQLite-only tests cover persistence
and the on-disk format.

Run with: pytest tests/test_vector_store.py -v
"""

import os
import sqlite3
import tempfile

import numpy as np
import pytest

from finance_buddy.errors import IndexFormatError, VectorDecodeError, VectorStoreError
from finance_buddy.rag.base import Chunk, ChunkMetadata, make_chunk_id
from finance_buddy.rag.memory_store import InMemoryVectorStore
from finance_buddy.rag.sqlite_store import SQLiteVectorStore


def make_chunk(user_id, doc_id, idx, embedding, text=None, source="expenses"):
    return Chunk(
        id=make_chunk_id(user_id, doc_id, idx),
        user_id=user_id,
        doc_id=doc_id,
        text=text or f"{doc_id} piece {idx}",
        metadata=ChunkMetadata(source=source, idx=idx),
        embedding=np.asarray(embedding, dtype=np.float32)
    )


def basis(i, dim=4):
    v = np.zeros(dim, dtype=np.float32)
    v[i] = 1.0
    return v


@pytest.fixture(params=["sqlite", "memory"])
def store(request):
    """Each contract test runs against both stores"""
    if request.param == "memory":
        s = InMemoryVectorStore()
        yield s
        s.close()
    else:
        with tempfile.TemporaryDirectory() as tmpdir:
            s = SQLiteVectorStore(os.path.join(tmpdir, "index.db"))
            yield s
            s.close()


class TestTenantIsolation:

    def test_other_tenant_sees_nothing(self, store):
        store.upsert_many([make_chunk("u1", "d1", 0, basis(0)), make_chunk("u1", "d2", 0, basis(1))])

        assert store.search("u2", basis(0), 5) == []

    def test_hits_belong_to_requested_tenant(self, store):
        store.upsert_many([make_chunk("u1", "d1", i, basis(i)) for i in range(3)])
        store.upsert_many([make_chunk("u2", "d1", i, basis(i)) for i in range(3)])

        hits = store.search("u1", basis(0), 10)

        assert len(hits) == 3
        assert all(hit.chunk.user_id == "u1" for hit in hits)

    def test_same_document_id_for_two_tenants(self, store):
        store.upsert(make_chunk("u1", "shared", 0, basis(0)))
        store.upsert(make_chunk("u2", "shared", 0, basis(1)))

        assert store.count("u1") == 1
        assert store.count("u2") == 1
        assert store.count() == 2


class TestSearch:

    def test_top_k_is_sorted_and_bounded(self, store):
        vectors = [[1, 0, 0, 0], [0.9, 0.1, 0, 0], [0.5, 0.5, 0, 0], [0.1, 0.9, 0, 0], [0, 0, 1, 0]]
        store.upsert_many([make_chunk("u1", f"d{i}", 0, v) for i, v in enumerate(vectors)])

        hits = store.search("u1", [1, 0, 0, 0], 2)

        assert len(hits) == 2
        assert hits[0].score >= hits[1].score
        assert [h.chunk.doc_id for h in hits] == ["d0", "d1"]

        all_hits = store.search("u1", [1, 0, 0, 0], 10)
        assert len(all_hits) == 5
        scores = [h.score for h in all_hits]
        assert all(a > b for a, b in zip(scores, scores[1:]))

    def test_own_embedding_scores_top(self, store):
        rng = np.random.default_rng(7)
        chunks = [make_chunk("u1", f"d{i}", 0, rng.standard_normal(8)) for i in range(6)]
        store.upsert_many(chunks)

        target = chunks[3]
        hits = store.search("u1", target.embedding, 3)

        assert hits[0].chunk.id == target.id
        assert hits[0].score == pytest.approx(1.0, abs=1e-5)
        assert hits[0].chunk.text == target.text
        assert hits[0].chunk.metadata == target.metadata
        np.testing.assert_array_equal(hits[0].chunk.embedding, target.embedding)

    def test_non_positive_top_k(self, store):
        store.upsert(make_chunk("u1", "d1", 0, basis(0)))

        assert store.search("u1", basis(0), 0) == []
        assert store.search("u1", basis(0), -3) == []

    def test_scores_are_python_floats(self, store):
        store.upsert(make_chunk("u1", "d1", 0, basis(0)))
        assert type(store.search("u1", basis(0), 1)[0].score) is float


class TestWrites:

    def test_chunk_without_embedding(self, store):
        chunk = Chunk(
            id="u1:d1:0", user_id="u1", doc_id="d1", text="x",
            metadata=ChunkMetadata(source="goals", idx=0)
        )
        with pytest.raises(ValueError):
            store.upsert(chunk)

    def test_upsert_same_id_replaces(self, store):
        store.upsert(make_chunk("u1", "d1", 0, basis(0), text="old"))
        store.upsert(make_chunk("u1", "d1", 0, basis(1), text="new"))

        assert store.count("u1") == 1
        assert store.search("u1", basis(1), 1)[0].chunk.text == "new"

    def test_replace_documents_drops_stale_tail(self, store):
        store.upsert_many([make_chunk("u1", "d1", i, basis(i)) for i in range(3)])
        store.upsert_many([make_chunk("u1", "d1", 0, basis(0))], replace_documents=True)

        assert store.count("u1") == 1

    def test_replace_documents_leaves_other_documents(self, store):
        store.upsert_many([make_chunk("u1", "d1", 0, basis(0)), make_chunk("u1", "d2", 0, basis(1))])
        store.upsert_many([make_chunk("u1", "d1", 0, basis(2))], replace_documents=True)

        assert store.count("u1") == 2

    def test_dimension_mismatch_writes_nothing(self, store):
        store.upsert_many([make_chunk("u1", "d1", i, basis(i)) for i in range(2)])

        batch = [make_chunk("u1", "d1", 0, basis(0)), make_chunk("u1", "d1", 1, np.ones(3))]
        with pytest.raises(VectorStoreError):
            store.upsert_many(batch, replace_documents=True)

        assert store.count("u1") == 2
        assert store.search("u1", basis(1), 1)[0].chunk.id == "u1:d1:1"

    def test_delete_document_and_user(self, store):
        store.upsert_many([make_chunk("u1", "d1", i, basis(i)) for i in range(2)])
        store.upsert_many([make_chunk("u1", "d2", 0, basis(3))])
        store.upsert_many([make_chunk("u2", "d1", 0, basis(0))])

        assert store.delete_document("u1", "d1") == 2
        assert store.count("u1") == 1
        assert store.delete_user("u1") == 1
        assert store.count("u1") == 0
        assert store.count("u2") == 1

    def test_stats(self, store):
        store.upsert_many([
            make_chunk("u1", "d1", 0, basis(0), source="goals"),
            make_chunk("u1", "d2", 0, basis(1), source="expenses"),
            make_chunk("u2", "d3", 0, basis(2), source="expenses"),
        ])

        stats = store.get_stats()

        assert stats.total_chunks == 3
        assert stats.total_users == 2
        assert stats.chunks_by_source == {"goals": 1, "expenses": 2}
        assert stats.dimension == 4


class TestSQLitePersistence:
    """On-disk format"""

    def test_reopen_keeps_chunks(self, temp_db):
        store = SQLiteVectorStore(temp_db)
        store.upsert(make_chunk("u1", "d1", 0, basis(2), source="goals"))
        store.close()

        reopened = SQLiteVectorStore(temp_db)
        hits = reopened.search("u1", basis(2), 1)
        reopened.close()

        assert reopened.dimension == 4
        assert hits[0].chunk.source == "goals"
        assert hits[0].score == pytest.approx(1.0)

    def test_blob_is_little_endian_float32(self, temp_db):
        store = SQLiteVectorStore(temp_db)
        vector = np.array([0.5, -1.25, 3.0], dtype=np.float32)
        store.upsert(make_chunk("u1", "d1", 0, vector))
        store.close()

        conn = sqlite3.connect(temp_db)
        blob, metadata = conn.execute("SELECT embedding, metadata FROM chunks").fetchone()
        meta = dict(conn.execute("SELECT key, value FROM index_meta").fetchall())
        conn.close()

        assert blob == np.array([0.5, -1.25, 3.0], dtype='<f4').tobytes()
        assert meta == {"embedding_format": "f32le/v1", "dimension": "3"}
        assert '"idx": "0"' in metadata

    def test_other_format_is_rejected(self, temp_db):
        SQLiteVectorStore(temp_db).close()

        conn = sqlite3.connect(temp_db)
        with conn:
            conn.execute("UPDATE index_meta SET value = 'f64be/v0' WHERE key = 'embedding_format'")
        conn.close()

        with pytest.raises(IndexFormatError):
            SQLiteVectorStore(temp_db)

    def test_corrupt_blob_is_loud(self, temp_db):
        store = SQLiteVectorStore(temp_db)
        store.upsert(make_chunk("u1", "d1", 0, basis(0)))

        store.conn.execute("UPDATE chunks SET embedding = ?", (b"\x00" * 6,))
        store.conn.commit()

        with pytest.raises(VectorDecodeError):
            store.search("u1", basis(0), 1)
        store.close()

    def test_unopenable_path(self, tmp_path):
        with pytest.raises(VectorStoreError):
            SQLiteVectorStore(str(tmp_path))

    def test_closed_store(self, temp_db):
        store = SQLiteVectorStore(temp_db)
        store.close()

        with pytest.raises(VectorStoreError):
            store.count()

    def test_get_chunks_in_order(self, sqlite_store):
        sqlite_store.upsert_many([make_chunk("u1", "d1", i, basis(i)) for i in (2, 0, 1)])

        chunks = sqlite_store.get_chunks("u1", "d1")

        assert [c.idx for c in chunks] == [0, 1, 2]
