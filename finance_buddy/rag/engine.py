"""
RAG Engine - Ingest, Retrieve, Draft

Glues the chunker, an embeddings provider and a vector store together.
Provider and store are synchronous; their calls are run in a worker thread
so the event loop stays responsive during model inference and disk I/O.
"""

import asyncio
from typing import List, Optional

import numpy as np

from finance_buddy.embeddings.base import EmbeddingsProvider
from finance_buddy.errors import EmbeddingError
from finance_buddy.rag.base import Chunk, ChunkMetadata, Document, Hit, VectorStore, make_chunk_id
from finance_buddy.rag.chunker import Chunker
from finance_buddy.utils.logger import get_logger

logger = get_logger('rag.engine')

DEFAULT_TOP_K = 6

DRAFT_TRAILER = (
    "Draft answer (fill with your LLM or template):\n"
    "Based on your data, here are the key points above. If you'd like, I can run "
    "projections on goals and suggest small category cuts to reach them sooner."
)


def format_context(hits: List[Hit]) -> str:
    """Bullet list of hit texts, best first"""
    return "\n".join(f"• {hit.chunk.text}" for hit in hits)


class RAGEngine:
    """
    Per-user retrieval over one embeddings provider and one vector store.

    Ingestion of a document is all-or-nothing: if any piece fails to embed
    or the store write fails, nothing of that document is written.
    """

    def __init__(
        self,
        embedder: EmbeddingsProvider,
        store: VectorStore,
        chunker: Optional[Chunker] = None
    ):
        self.embedder = embedder
        self.store = store
        self.chunker = chunker or Chunker()

        logger.info(
            f"RAGEngine initialized (embedder={embedder.name}, dim={embedder.dimension}, "
            f"store={type(store).__name__}, max_chars={self.chunker.max_chars})"
        )

    async def ingest(self, user_id: str, doc: Document) -> List[Chunk]:
        """
        Chunk, embed and store one document.

        Args:
            user_id: Owning tenant
            doc: Document to index; doc.user_id must match

        Returns:
            The chunks written, in order
        """
        if doc.user_id != user_id:
            raise ValueError(f"Document {doc.id} belongs to {doc.user_id!r}, not {user_id!r}")

        pieces = self.chunker.chunk(doc.text)
        embeddings = await asyncio.to_thread(self.embedder.embed_batch, pieces)
        if len(embeddings) != len(pieces):
            raise EmbeddingError(
                f"Got {len(embeddings)} embeddings for {len(pieces)} chunks of document {doc.id}"
            )

        chunks = [
            Chunk(
                id=make_chunk_id(user_id, doc.id, i),
                user_id=user_id,
                doc_id=doc.id,
                text=piece,
                metadata=ChunkMetadata(source=doc.source, idx=i),
                embedding=embedding
            )
            for i, (piece, embedding) in enumerate(zip(pieces, embeddings))
        ]

        # Replacing by document drops stale pieces when a document shrinks
        await asyncio.to_thread(self.store.upsert_many, chunks, True)

        logger.debug(f"Ingested {doc.source} document {doc.id} for {user_id} ({len(chunks)} chunks)")
        return chunks

    async def embed_query(self, query: str) -> np.ndarray:
        return await asyncio.to_thread(self.embedder.embed, query)

    async def search(self, user_id: str, query_embedding: np.ndarray, top_k: int = DEFAULT_TOP_K) -> List[Hit]:
        return await asyncio.to_thread(self.store.search, user_id, query_embedding, top_k)

    async def retrieve(self, user_id: str, query: str, top_k: int = DEFAULT_TOP_K) -> List[Hit]:
        """Top-k chunks of one user for a query, best first"""
        query_embedding = await self.embed_query(query)
        hits = await self.search(user_id, query_embedding, top_k)

        logger.info(f"Retrieved {len(hits)} chunks for {user_id}: {query[:60]}")
        return hits

    async def draft_answer(self, user_id: str, query: str, top_k: int = DEFAULT_TOP_K) -> str:
        """Prompt-style draft built from the retrieved context; no model call"""
        hits = await self.retrieve(user_id, query, top_k)
        return (
            f"Question: {query}\n\n"
            f"Relevant context:\n"
            f"{format_context(hits)}\n\n"
            f"{DRAFT_TRAILER}"
        )

    async def remove_document(self, user_id: str, doc_id: str) -> int:
        removed = await asyncio.to_thread(self.store.delete_document, user_id, doc_id)
        logger.info(f"Removed document {doc_id} for {user_id} ({removed} chunks)")
        return removed

    async def clear_user(self, user_id: str) -> int:
        removed = await asyncio.to_thread(self.store.delete_user, user_id)
        logger.info(f"Cleared index for {user_id} ({removed} chunks)")
        return removed
