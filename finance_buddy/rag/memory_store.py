"""
In-Memory Vector Store

Transient per-session cache of IndexedChunk rows. Same contract and same
scoring as the SQLite store; nothing survives the process.
"""

import threading
from typing import Dict, List, Optional, Sequence

import numpy as np

from finance_buddy.errors import VectorStoreError
from finance_buddy.rag.base import (
    Chunk, Hit, IndexedChunk, IndexStats, VectorStore,
    cosine_scores, rank_top_k, require_embeddings
)
from finance_buddy.utils.logger import get_logger

logger = get_logger('rag.memory_store')


class InMemoryVectorStore(VectorStore):
    """Dictionary-backed vector store"""

    def __init__(self):
        self._rows: Dict[str, IndexedChunk] = {}
        self._lock = threading.Lock()

    def upsert_many(self, chunks: List[Chunk], replace_documents: bool = False) -> None:
        if not chunks:
            return
        require_embeddings(chunks)
        # Build the new rows first so a bad chunk leaves the cache untouched
        new_rows = [IndexedChunk.from_chunk(c) for c in chunks]

        with self._lock:
            self._check_dimension(new_rows)
            if replace_documents:
                doc_keys = {(c.user_id, c.doc_id) for c in chunks}
                self._rows = {
                    k: row for k, row in self._rows.items()
                    if (row.user_id, row.doc_id) not in doc_keys
                }
            for row in new_rows:
                self._rows[row.id] = row

        logger.debug(f"Cached {len(new_rows)} chunks")

    def _check_dimension(self, new_rows: List[IndexedChunk]) -> None:
        existing = next(iter(self._rows.values()), None)
        dim = existing.vector.shape[0] if existing is not None else new_rows[0].vector.shape[0]
        for row in new_rows:
            if row.vector.ndim != 1 or row.vector.shape[0] != dim:
                raise VectorStoreError(
                    f"Chunk {row.id} has dimension {row.vector.shape}, index uses {dim}"
                )

    def search(
        self,
        user_id: str,
        query_embedding: Sequence[float],
        top_k: int
    ) -> List[Hit]:
        if top_k <= 0:
            return []

        with self._lock:
            rows = [row for row in self._rows.values() if row.user_id == user_id]
        if not rows:
            return []

        try:
            scores = cosine_scores(query_embedding, np.vstack([row.vector for row in rows]))
        except ValueError as e:
            raise VectorStoreError(f"Search failed for user {user_id}: {e}") from e
        return [Hit(chunk=rows[i].to_chunk(), score=float(scores[i])) for i in rank_top_k(scores, top_k)]

    def delete_document(self, user_id: str, doc_id: str) -> int:
        return self._remove(lambda row: row.user_id == user_id and row.doc_id == doc_id)

    def delete_user(self, user_id: str) -> int:
        return self._remove(lambda row: row.user_id == user_id)

    def _remove(self, predicate) -> int:
        with self._lock:
            doomed = [k for k, row in self._rows.items() if predicate(row)]
            for k in doomed:
                del self._rows[k]
        return len(doomed)

    def count(self, user_id: Optional[str] = None) -> int:
        with self._lock:
            if user_id is None:
                return len(self._rows)
            return sum(1 for row in self._rows.values() if row.user_id == user_id)

    def get_stats(self) -> IndexStats:
        with self._lock:
            rows = list(self._rows.values())
        by_source: Dict[str, int] = {}
        for row in rows:
            by_source[row.source] = by_source.get(row.source, 0) + 1
        return IndexStats(
            total_chunks=len(rows),
            total_users=len({row.user_id for row in rows}),
            chunks_by_source=by_source,
            dimension=int(rows[0].vector.shape[0]) if rows else None,
            embedding_format="memory"
        )

    def close(self):
        with self._lock:
            self._rows.clear()
