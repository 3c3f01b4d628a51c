"""
RAG System - Retrieval Augmented Generation

Per-user semantic index over a user's own financial records.
"""

from finance_buddy.rag.base import (
    Document,
    Chunk,
    ChunkMetadata,
    Hit,
    IndexedChunk,
    IndexStats,
    VectorStore,
    cosine_similarity,
    cosine_scores,
    make_chunk_id
)

from finance_buddy.rag.chunker import Chunker, chunk
from finance_buddy.rag.codec import EMBEDDING_FORMAT, encode_embedding, decode_embedding
from finance_buddy.rag.sqlite_store import SQLiteVectorStore
from finance_buddy.rag.memory_store import InMemoryVectorStore
from finance_buddy.rag.engine import RAGEngine

__all__ = [
    # Base types
    'Document',
    'Chunk',
    'ChunkMetadata',
    'Hit',
    'IndexedChunk',
    'IndexStats',
    'VectorStore',
    'cosine_similarity',
    'cosine_scores',
    'make_chunk_id',

    # Components
    'Chunker',
    'chunk',
    'EMBEDDING_FORMAT',
    'encode_embedding',
    'decode_embedding',
    'SQLiteVectorStore',
    'InMemoryVectorStore',
    'RAGEngine'
]
