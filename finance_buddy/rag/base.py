"""
RAG System - Base Interfaces

Core types for the per-user index and the vector store contract.
"""

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any, Sequence

import numpy as np

from finance_buddy.errors import VectorDecodeError


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Document:
    """One external record (expense, goal, profile, upload) before chunking"""
    user_id: str
    text: str
    source: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class ChunkMetadata:
    """Typed chunk metadata; persisted as a string-keyed map"""
    source: str
    idx: int
    extra: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, str]:
        data = dict(self.extra)
        data['source'] = self.source
        data['idx'] = str(self.idx)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ChunkMetadata':
        if not isinstance(data, dict):
            raise VectorDecodeError(f"Chunk metadata must be a map, got {type(data).__name__}")
        try:
            source = str(data['source'])
            idx = int(data['idx'])
        except (KeyError, TypeError, ValueError) as e:
            raise VectorDecodeError(f"Invalid chunk metadata {data!r}: {e}") from e
        extra = {str(k): str(v) for k, v in data.items() if k not in ('source', 'idx')}
        return cls(source=source, idx=idx, extra=extra)


def make_chunk_id(user_id: str, doc_id: str, idx: int) -> str:
    """Deterministic chunk id: re-ingesting a document overwrites its rows"""
    return f"{user_id}:{doc_id}:{idx}"


@dataclass(frozen=True, eq=False)
class Chunk:
    """The atomic indexed unit"""
    id: str
    user_id: str
    doc_id: str
    text: str
    metadata: ChunkMetadata
    embedding: Optional[np.ndarray] = None

    @property
    def source(self) -> str:
        return self.metadata.source

    @property
    def idx(self) -> int:
        return self.metadata.idx


@dataclass(frozen=True, eq=False)
class Hit:
    """Search result"""
    chunk: Chunk
    score: float


@dataclass(eq=False)
class IndexedChunk:
    """In-memory cache row used by the transient per-session store"""
    id: str
    user_id: str
    source: str
    text: str
    vector: np.ndarray
    doc_id: str = ""
    idx: int = 0

    @classmethod
    def from_chunk(cls, chunk: Chunk) -> 'IndexedChunk':
        return cls(
            id=chunk.id,
            user_id=chunk.user_id,
            source=chunk.source,
            text=chunk.text,
            vector=np.asarray(chunk.embedding, dtype=np.float64),
            doc_id=chunk.doc_id,
            idx=chunk.idx
        )

    def to_chunk(self) -> Chunk:
        return Chunk(
            id=self.id,
            user_id=self.user_id,
            doc_id=self.doc_id,
            text=self.text,
            metadata=ChunkMetadata(source=self.source, idx=self.idx),
            embedding=self.vector.astype(np.float32)
        )


@dataclass
class IndexStats:
    """Statistics about the vector index"""
    total_chunks: int = 0
    total_users: int = 0
    chunks_by_source: Dict[str, int] = field(default_factory=dict)
    dimension: Optional[int] = None
    embedding_format: str = ""


# Similarity

def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine similarity of two vectors.

    Normalizes by magnitude so non-normalized providers still rank correctly.
    Returns 0.0 when either vector has zero magnitude.
    """
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape:
        raise ValueError(f"Vector shapes differ: {va.shape} vs {vb.shape}")

    denom = np.linalg.norm(va) * np.linalg.norm(vb)
    if denom == 0:
        return 0.0
    return float(np.clip(np.dot(va, vb) / denom, -1.0, 1.0))


def cosine_scores(query: Sequence[float], matrix: np.ndarray) -> np.ndarray:
    """Cosine similarity of one query against every row of a matrix"""
    q = np.asarray(query, dtype=np.float64)
    m = np.asarray(matrix, dtype=np.float64)
    if m.size == 0:
        return np.zeros(0, dtype=np.float64)
    if m.ndim != 2 or m.shape[1] != q.shape[0]:
        raise ValueError(f"Query dimension {q.shape[0]} does not match index shape {m.shape}")

    denom = np.linalg.norm(m, axis=1) * np.linalg.norm(q)
    dots = m @ q
    scores = np.divide(dots, denom, out=np.zeros_like(dots), where=denom != 0)
    return np.clip(scores, -1.0, 1.0)


def rank_top_k(scores: np.ndarray, top_k: int) -> List[int]:
    """Indices of the top_k scores, descending"""
    if top_k <= 0 or scores.size == 0:
        return []
    order = np.argsort(-scores, kind='stable')
    return [int(i) for i in order[:top_k]]


# Abstract Interfaces

class VectorStore(ABC):
    """
    Persists chunks with their embeddings and answers nearest-neighbor
    queries scoped to one user.
    """

    @abstractmethod
    def upsert_many(self, chunks: List[Chunk], replace_documents: bool = False) -> None:
        """
        Insert or replace a batch of chunks, all-or-nothing.

        With replace_documents, existing rows of every (user_id, doc_id) in
        the batch are removed first, in the same transaction.
        """
        pass

    def upsert(self, chunk: Chunk) -> None:
        """Insert or replace a single chunk"""
        self.upsert_many([chunk])

    @abstractmethod
    def search(
        self,
        user_id: str,
        query_embedding: Sequence[float],
        top_k: int
    ) -> List[Hit]:
        """Top-k hits for one user, sorted by descending cosine score"""
        pass

    @abstractmethod
    def delete_document(self, user_id: str, doc_id: str) -> int:
        """Delete all chunks of one document; returns the row count"""
        pass

    @abstractmethod
    def delete_user(self, user_id: str) -> int:
        """Delete all chunks of one user; returns the row count"""
        pass

    @abstractmethod
    def count(self, user_id: Optional[str] = None) -> int:
        """Number of chunks, optionally for one user"""
        pass

    def close(self) -> None:
        """Release resources. Override if needed."""
        pass


def require_embeddings(chunks: List[Chunk]) -> None:
    for chunk in chunks:
        if chunk.embedding is None:
            raise ValueError(f"Chunk {chunk.id} has no embedding")
