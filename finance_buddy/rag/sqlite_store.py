"""
SQLite Vector Store

Durable per-user chunk index. Similarity search is a brute-force scan over
one user's rows: n is bounded by one person's financial history, so a linear
pass is cheap. A much larger corpus would swap in an approximate index
behind the same VectorStore interface.

Persisted row format (table ``chunks``):
    id         TEXT PRIMARY KEY
    user_id    TEXT, indexed
    doc_id     TEXT
    text       TEXT
    metadata   TEXT, JSON string-keyed map ({"source": ..., "idx": "0"})
    embedding  BLOB, f32le/v1 (see rag.codec)
"""

import json
import sqlite3
import threading
from pathlib import Path
from typing import Optional, List, Sequence, Dict

import numpy as np

from finance_buddy.errors import IndexFormatError, VectorDecodeError, VectorStoreError
from finance_buddy.rag.base import (
    Chunk, ChunkMetadata, Hit, IndexStats, VectorStore,
    cosine_scores, rank_top_k, require_embeddings
)
from finance_buddy.rag.codec import EMBEDDING_FORMAT, decode_embedding, encode_embedding
from finance_buddy.utils.logger import get_logger

logger = get_logger('rag.sqlite_store')


class SQLiteVectorStore(VectorStore):
    """SQLite implementation of the vector store"""

    def __init__(self, db_path: str = "data/rag_index.db"):
        self.db_path = db_path
        self._lock = threading.Lock()
        self._dimension: Optional[int] = None

        try:
            if db_path != ":memory:":
                Path(db_path).parent.mkdir(parents=True, exist_ok=True)
            self.conn: Optional[sqlite3.Connection] = sqlite3.connect(
                db_path, check_same_thread=False
            )
            self.conn.row_factory = sqlite3.Row
            self._initialize_db()
        except sqlite3.Error as e:
            raise VectorStoreError(f"Cannot open vector index at {db_path}: {e}") from e
        except OSError as e:
            raise VectorStoreError(f"Cannot create index directory for {db_path}: {e}") from e

        logger.info(f"SQLiteVectorStore initialized (db={db_path}, format={EMBEDDING_FORMAT})")

    def _get_connection(self) -> sqlite3.Connection:
        if self.conn is None:
            raise VectorStoreError("Vector store is closed")
        return self.conn

    def _initialize_db(self):
        """Create schema and check the persisted embedding format"""
        conn = self._get_connection()
        with conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS chunks (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    doc_id TEXT NOT NULL,
                    text TEXT NOT NULL,
                    metadata TEXT,
                    embedding BLOB NOT NULL
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_chunks_user
                ON chunks(user_id)
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_chunks_doc
                ON chunks(user_id, doc_id)
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS index_meta (
                    key TEXT PRIMARY KEY,
                    value TEXT
                )
            """)
            conn.execute(
                "INSERT OR IGNORE INTO index_meta (key, value) VALUES ('embedding_format', ?)",
                (EMBEDDING_FORMAT,)
            )

        meta = self._read_meta()
        stored_format = meta.get('embedding_format')
        if stored_format != EMBEDDING_FORMAT:
            raise IndexFormatError(
                f"Index {self.db_path} uses embedding format {stored_format!r}, "
                f"expected {EMBEDDING_FORMAT!r}"
            )
        if meta.get('dimension'):
            self._dimension = int(meta['dimension'])

    def _read_meta(self) -> Dict[str, str]:
        rows = self._get_connection().execute("SELECT key, value FROM index_meta").fetchall()
        return {row['key']: row['value'] for row in rows}

    @property
    def dimension(self) -> Optional[int]:
        """Embedding dimension recorded by the first write, if any"""
        return self._dimension

    def upsert_many(self, chunks: List[Chunk], replace_documents: bool = False) -> None:
        if not chunks:
            return
        require_embeddings(chunks)

        rows = []
        dimension = self._dimension
        for c in chunks:
            vector = np.asarray(c.embedding, dtype=np.float32)
            if dimension is None:
                dimension = int(vector.shape[0])
            if vector.ndim != 1 or vector.shape[0] != dimension:
                raise VectorStoreError(
                    f"Chunk {c.id} has dimension {vector.shape}, index expects {dimension}"
                )
            rows.append((
                c.id,
                c.user_id,
                c.doc_id,
                c.text,
                json.dumps(c.metadata.to_dict()),
                encode_embedding(vector)
            ))

        with self._lock:
            conn = self._get_connection()
            try:
                # One transaction: the whole batch lands or nothing does
                with conn:
                    if replace_documents:
                        doc_keys = sorted({(c.user_id, c.doc_id) for c in chunks})
                        conn.executemany(
                            "DELETE FROM chunks WHERE user_id = ? AND doc_id = ?",
                            doc_keys
                        )
                    conn.executemany("""
                        INSERT OR REPLACE INTO chunks (id, user_id, doc_id, text, metadata, embedding)
                        VALUES (?, ?, ?, ?, ?, ?)
                    """, rows)
                    if self._dimension is None:
                        conn.execute(
                            "INSERT OR REPLACE INTO index_meta (key, value) VALUES ('dimension', ?)",
                            (str(dimension),)
                        )
            except sqlite3.Error as e:
                raise VectorStoreError(f"Failed to upsert {len(rows)} chunks: {e}") from e

            self._dimension = dimension

        logger.debug(f"Upserted {len(rows)} chunks")

    def search(
        self,
        user_id: str,
        query_embedding: Sequence[float],
        top_k: int
    ) -> List[Hit]:
        if top_k <= 0:
            return []

        with self._lock:
            try:
                rows = self._get_connection().execute("""
                    SELECT id, doc_id, text, metadata, embedding
                    FROM chunks
                    WHERE user_id = ?
                """, (user_id,)).fetchall()
            except sqlite3.Error as e:
                raise VectorStoreError(f"Search failed for user {user_id}: {e}") from e

        if not rows:
            return []

        chunks = [self._row_to_chunk(row, user_id) for row in rows]
        matrix = np.vstack([c.embedding for c in chunks])
        try:
            scores = cosine_scores(query_embedding, matrix)
        except ValueError as e:
            raise VectorStoreError(f"Search failed for user {user_id}: {e}") from e

        hits = [Hit(chunk=chunks[i], score=float(scores[i])) for i in rank_top_k(scores, top_k)]
        logger.debug(f"Search user={user_id}: scanned {len(rows)} chunks, returning {len(hits)}")
        return hits

    def _row_to_chunk(self, row: sqlite3.Row, user_id: str) -> Chunk:
        try:
            metadata = json.loads(row['metadata']) if row['metadata'] else {}
        except json.JSONDecodeError as e:
            raise VectorDecodeError(f"Chunk {row['id']} has unreadable metadata: {e}") from e

        embedding = decode_embedding(row['embedding'])
        if self._dimension is not None and embedding.shape[0] != self._dimension:
            raise VectorDecodeError(
                f"Chunk {row['id']} decoded to {embedding.shape[0]} values, "
                f"index dimension is {self._dimension}"
            )

        return Chunk(
            id=row['id'],
            user_id=user_id,
            doc_id=row['doc_id'],
            text=row['text'],
            metadata=ChunkMetadata.from_dict(metadata),
            embedding=embedding
        )

    def get_chunks(self, user_id: str, doc_id: Optional[str] = None) -> List[Chunk]:
        """All chunks of a user (optionally one document), ordered by position"""
        query = "SELECT id, doc_id, text, metadata, embedding FROM chunks WHERE user_id = ?"
        params = [user_id]
        if doc_id is not None:
            query += " AND doc_id = ?"
            params.append(doc_id)

        with self._lock:
            rows = self._get_connection().execute(query, params).fetchall()

        chunks = [self._row_to_chunk(row, user_id) for row in rows]
        return sorted(chunks, key=lambda c: (c.doc_id, c.idx))

    def delete_document(self, user_id: str, doc_id: str) -> int:
        return self._delete("DELETE FROM chunks WHERE user_id = ? AND doc_id = ?", (user_id, doc_id))

    def delete_user(self, user_id: str) -> int:
        return self._delete("DELETE FROM chunks WHERE user_id = ?", (user_id,))

    def _delete(self, sql: str, params: tuple) -> int:
        with self._lock:
            conn = self._get_connection()
            try:
                with conn:
                    deleted = conn.execute(sql, params).rowcount
            except sqlite3.Error as e:
                raise VectorStoreError(f"Delete failed: {e}") from e
        logger.debug(f"Deleted {deleted} chunks ({params})")
        return deleted

    def count(self, user_id: Optional[str] = None) -> int:
        with self._lock:
            conn = self._get_connection()
            if user_id is None:
                row = conn.execute("SELECT COUNT(*) AS count FROM chunks").fetchone()
            else:
                row = conn.execute(
                    "SELECT COUNT(*) AS count FROM chunks WHERE user_id = ?", (user_id,)
                ).fetchone()
        return row['count']

    def get_stats(self) -> IndexStats:
        """Get index statistics"""
        with self._lock:
            conn = self._get_connection()
            total = conn.execute("SELECT COUNT(*) AS count FROM chunks").fetchone()['count']
            users = conn.execute(
                "SELECT COUNT(DISTINCT user_id) AS count FROM chunks"
            ).fetchone()['count']
            by_source: Dict[str, int] = {}
            for row in conn.execute("SELECT metadata FROM chunks"):
                source = json.loads(row['metadata']).get('source', 'unknown') if row['metadata'] else 'unknown'
                by_source[source] = by_source.get(source, 0) + 1

        return IndexStats(
            total_chunks=total,
            total_users=users,
            chunks_by_source=by_source,
            dimension=self._dimension,
            embedding_format=EMBEDDING_FORMAT
        )

    def close(self):
        """Close database connection"""
        with self._lock:
            if self.conn:
                self.conn.close()
                self.conn = None
