"""
Finance Buddy RAG Service

Keeps a tenant's index in step with their records and turns a question into
a grounded prompt.

Index lifecycle per tenant: EMPTY -> BUILDING -> READY. One tenant is cached
at a time; when another tenant becomes ready the previous one drops back to
EMPTY and is rebuilt on its next query.

Rebuilds are skip-and-continue: one bad record is logged and skipped, the
rest of the rebuild goes on. RAGEngine.ingest on its own stays all-or-nothing.
"""

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

import numpy as np

from finance_buddy.errors import EmbeddingModelLoadError, NotAuthenticatedError, RecordError
from finance_buddy.rag.base import Document
from finance_buddy.rag.engine import DEFAULT_TOP_K, RAGEngine, format_context
from finance_buddy.rag.memory_store import InMemoryVectorStore
from finance_buddy.services.generation import AnswerGenerator
from finance_buddy.sources.base import BlobStorage, RecordKind, RecordSource
from finance_buddy.sources.models import Expense, FileUpload, Goal, UserProfile
from finance_buddy.utils.logger import get_logger, log_rebuild_report

logger = get_logger('services.rag')

DEFAULT_UPLOAD_CHUNK_CHARS = 500
DEFAULT_MAX_UPLOAD_BYTES = 10 * 1024 * 1024

NO_CONTEXT_NOTE = "(No contextual data available yet.)"

PROMPT_INSTRUCTIONS = (
    "When answering, focus on the context above. Be specific, explain any assumptions,\n"
    "and clearly separate general advice from user-specific information."
)


class IndexState(Enum):
    EMPTY = "empty"
    BUILDING = "building"
    READY = "ready"


class Source:
    """Source tags stored on every chunk"""
    EXPENSES = "expenses"
    GOALS = "goals"
    PROFILE = "profile"
    UPLOADS_METADATA = "uploads_metadata"
    UPLOADS_CONTENT = "uploads_content"


@dataclass
class RecordFailure:
    """A record (or collection) skipped during a rebuild"""
    source: str
    record_id: Optional[str]
    error: str


@dataclass
class RebuildReport:
    """Outcome of one rebuild"""
    user_id: str
    ingested: Dict[str, int] = field(default_factory=dict)
    failures: List[RecordFailure] = field(default_factory=list)
    duration_ms: float = 0.0

    @property
    def total_ingested(self) -> int:
        return sum(self.ingested.values())

    def record_ingested(self, source: str):
        self.ingested[source] = self.ingested.get(source, 0) + 1

    def record_failure(self, source: str, record_id: Optional[str], error: Exception):
        self.failures.append(RecordFailure(source=source, record_id=record_id, error=str(error)))

    def summary_lines(self) -> List[str]:
        lines = [
            f"Rebuilt index for {self.user_id}: {self.total_ingested} documents, "
            f"{len(self.failures)} skipped ({self.duration_ms:.0f}ms)"
        ]
        for source, count in sorted(self.ingested.items()):
            lines.append(f"  {source}: {count}")
        for failure in self.failures:
            lines.append(f"  skipped {failure.source}/{failure.record_id or '*'}: {failure.error}")
        return lines


def no_context_prompt(question: str) -> str:
    return f"Question: {question}\n\n{NO_CONTEXT_NOTE}"


class _InFlightRebuild:
    """A running rebuild shared by every caller waiting on it"""

    def __init__(self, task: asyncio.Task):
        self.task = task
        self.waiters = 0


class RAGService:
    """Per-tenant index freshness plus prompt assembly"""

    def __init__(
        self,
        engine: RAGEngine,
        record_source: RecordSource,
        blob_storage: Optional[BlobStorage] = None,
        current_user: Optional[Callable[[], Optional[str]]] = None,
        generator: Optional[AnswerGenerator] = None,
        upload_chunk_chars: int = DEFAULT_UPLOAD_CHUNK_CHARS,
        max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES
    ):
        """
        Args:
            engine: Engine owning the embedder and the store
            record_source: Where tenant records are read from
            blob_storage: Upload content; without it only upload metadata is indexed
            current_user: Returns the signed-in user id, or None
            generator: Answers assembled prompts in ask()
            upload_chunk_chars: Snippet bound for uploaded file text
            max_upload_bytes: Download limit per uploaded file
        """
        self.engine = engine
        self.records = record_source
        self.blobs = blob_storage
        self.current_user = current_user
        self.generator = generator
        self.upload_chunk_chars = upload_chunk_chars
        self.max_upload_bytes = max_upload_bytes

        self._states: Dict[str, IndexState] = {}
        self._indexed_user: Optional[str] = None
        self._rebuilds: Dict[str, _InFlightRebuild] = {}

        logger.info(
            f"RAGService initialized (uploads={'content' if blob_storage else 'metadata only'}, "
            f"generator={type(generator).__name__ if generator else 'none'})"
        )

    # ============================================
    # INDEX STATE
    # ============================================

    def index_state(self, user_id: str) -> IndexState:
        return self._states.get(user_id, IndexState.EMPTY)

    @property
    def indexed_user(self) -> Optional[str]:
        return self._indexed_user

    async def ensure_fresh(self, user_id: str) -> Optional[RebuildReport]:
        """Rebuild unless this tenant's index is ready; returns the report if one ran"""
        if self.index_state(user_id) == IndexState.READY:
            return None
        return await self.refresh_index(user_id)

    async def refresh_index(self, user_id: str) -> RebuildReport:
        """
        Rebuild the tenant's index from their records.

        Concurrent callers for the same tenant share one rebuild. The rebuild
        is cancelled only when every caller waiting on it has been cancelled.
        """
        entry = self._rebuilds.get(user_id)
        if entry is None:
            entry = _InFlightRebuild(asyncio.create_task(self._rebuild(user_id)))
            self._rebuilds[user_id] = entry
            entry.task.add_done_callback(lambda _: self._forget_rebuild(user_id, entry))
        else:
            logger.debug(f"Joining in-flight rebuild for {user_id}")

        entry.waiters += 1
        try:
            return await asyncio.shield(entry.task)
        finally:
            entry.waiters -= 1
            if entry.waiters == 0 and not entry.task.done():
                logger.info(f"Cancelling rebuild for {user_id}: no callers left")
                # Later callers must start a fresh rebuild, not join this one
                self._forget_rebuild(user_id, entry)
                entry.task.cancel()

    def _forget_rebuild(self, user_id: str, entry: _InFlightRebuild):
        if self._rebuilds.get(user_id) is entry:
            del self._rebuilds[user_id]

    def _owns_rebuild(self, user_id: str) -> bool:
        """False when a newer rebuild for this tenant has replaced the running one"""
        entry = self._rebuilds.get(user_id)
        return entry is None or entry.task is asyncio.current_task()

    async def _rebuild(self, user_id: str) -> RebuildReport:
        self._states[user_id] = IndexState.BUILDING
        logger.info(f"Rebuilding index for {user_id}")
        start_time = time.time()

        try:
            report = await self._populate(user_id)
        except asyncio.CancelledError:
            if self._owns_rebuild(user_id):
                self._states[user_id] = IndexState.EMPTY
            logger.warning(f"Rebuild for {user_id} cancelled")
            raise
        except Exception as e:
            if self._owns_rebuild(user_id):
                self._states[user_id] = IndexState.EMPTY
            logger.error(f"Rebuild for {user_id} failed: {e}")
            raise

        report.duration_ms = (time.time() - start_time) * 1000
        await self._mark_ready(user_id)

        for line in report.summary_lines():
            logger.info(line)
        log_rebuild_report(user_id, report.summary_lines())
        return report

    async def _mark_ready(self, user_id: str):
        previous = self._indexed_user
        self._indexed_user = user_id
        self._states[user_id] = IndexState.READY

        if previous is None or previous == user_id:
            return
        if previous in self._rebuilds:
            # The running rebuild owns that tenant's rows and state
            logger.info(f"Index switched from {previous} to {user_id} while {previous} is rebuilding")
            return
        if self._states.get(previous) == IndexState.READY:
            self._states[previous] = IndexState.EMPTY
        if isinstance(self.engine.store, InMemoryVectorStore):
            await self.engine.clear_user(previous)
        logger.info(f"Index switched from {previous} to {user_id}")

    # ============================================
    # REBUILD
    # ============================================

    async def _populate(self, user_id: str) -> RebuildReport:
        report = RebuildReport(user_id=user_id)
        await self.engine.clear_user(user_id)

        for raw in await self._fetch(user_id, RecordKind.EXPENSES, report):
            await self._ingest_record(user_id, Source.EXPENSES, raw, Expense, report)

        for raw in await self._fetch(user_id, RecordKind.GOALS, report):
            await self._ingest_record(user_id, Source.GOALS, raw, Goal, report)

        for raw in await self._fetch(user_id, RecordKind.PROFILE, report):
            await self._ingest_record(
                user_id, Source.PROFILE, raw, UserProfile, report, doc_id=f"profile_{user_id}"
            )

        for raw in await self._fetch(user_id, RecordKind.UPLOADS, report):
            upload = await self._ingest_record(user_id, Source.UPLOADS_METADATA, raw, FileUpload, report)
            if upload is not None and upload.is_text_based:
                await self._ingest_upload_content(user_id, upload, report)

        return report

    async def _fetch(self, user_id: str, kind: RecordKind, report: RebuildReport) -> List[dict]:
        try:
            return await self.records.fetch_records(user_id, kind)
        except EmbeddingModelLoadError:
            raise
        except Exception as e:
            logger.error(f"Could not fetch {kind.value} for {user_id}: {e}")
            report.record_failure(kind.value, None, e)
            return []

    async def _ingest_record(
        self,
        user_id: str,
        source: str,
        raw: dict,
        model: type,
        report: RebuildReport,
        doc_id: Optional[str] = None
    ):
        """Parse, summarize and ingest one record; returns the parsed record or None if skipped"""
        record_id = doc_id or (raw.get("id") if isinstance(raw, dict) else None)
        try:
            record = model.from_dict(raw)
            doc_id = doc_id or record.id
            await self.engine.ingest(
                user_id, Document(user_id=user_id, text=record.summary(), source=source, id=doc_id)
            )
        except EmbeddingModelLoadError:
            raise
        except Exception as e:
            logger.warning(f"Skipping {source} record {record_id} for {user_id}: {e}")
            report.record_failure(source, record_id, e)
            return None

        report.record_ingested(source)
        return record

    async def _ingest_upload_content(self, user_id: str, upload: FileUpload, report: RebuildReport):
        if self.blobs is None:
            logger.debug(f"No blob storage; skipping content of {upload.file_name}")
            return

        try:
            data = await self.blobs.download(upload.storage_path, self.max_upload_bytes)
            try:
                content = data.decode('utf-8')
            except UnicodeDecodeError as e:
                raise RecordError(f"Cannot decode {upload.file_name} as UTF-8: {e}") from e
        except EmbeddingModelLoadError:
            raise
        except Exception as e:
            logger.warning(f"Failed to download and index content from {upload.file_name}: {e}")
            report.record_failure(Source.UPLOADS_CONTENT, upload.id, e)
            return

        snippets = [
            s for s in self.engine.chunker.chunk(content, self.upload_chunk_chars) if s.strip()
        ]
        for i, snippet in enumerate(snippets):
            snippet_id = f"{upload.id}_chunk_{i}"
            doc = Document(
                user_id=user_id,
                text=f"From {upload.file_name}: {snippet}",
                source=Source.UPLOADS_CONTENT,
                id=snippet_id
            )
            try:
                await self.engine.ingest(user_id, doc)
            except EmbeddingModelLoadError:
                raise
            except Exception as e:
                logger.warning(f"Skipping snippet {snippet_id} for {user_id}: {e}")
                report.record_failure(Source.UPLOADS_CONTENT, snippet_id, e)
                continue
            report.record_ingested(Source.UPLOADS_CONTENT)

    # ============================================
    # PROMPTS
    # ============================================

    async def build_prompt(self, user_id: str, question: str, top_k: int = DEFAULT_TOP_K) -> str:
        """
        Assemble a grounded prompt from the tenant's top-k chunks.

        Degrades to a context-free prompt when the index cannot be built, the
        question cannot be embedded, or nothing is indexed.
        """
        try:
            await self.ensure_fresh(user_id)
        except EmbeddingModelLoadError:
            raise
        except Exception as e:
            logger.error(f"Index unavailable for {user_id}, answering without context: {e}")
            return no_context_prompt(question)

        try:
            query_embedding = await self.engine.embed_query(question)
        except EmbeddingModelLoadError:
            raise
        except Exception as e:
            logger.warning(f"Could not embed question for {user_id}: {e}")
            return no_context_prompt(question)

        if not np.any(query_embedding):
            logger.info(f"Question has no embeddable content: {question[:60]}")
            return no_context_prompt(question)

        hits = await self.engine.search(user_id, query_embedding, top_k)
        if not hits:
            return no_context_prompt(question)

        logger.info(f"Built prompt for {user_id} with {len(hits)} context chunks")
        return (
            f"Question: {question}\n\n"
            f"Relevant context from this user's data:\n"
            f"{format_context(hits)}\n\n"
            f"{PROMPT_INSTRUCTIONS}"
        )

    async def ask(self, user_id: str, question: str, top_k: int = DEFAULT_TOP_K) -> str:
        """Prompt plus generation; returns the prompt itself when no generator is set"""
        prompt = await self.build_prompt(user_id, question, top_k)
        if self.generator is None:
            return prompt
        return await self.generator.generate(prompt)

    async def ingest_statement(self, user_id: str, text: str, source: str = "statement") -> Document:
        """Index pasted text (statement, CSV summary) for a tenant, all-or-nothing"""
        doc = Document(user_id=user_id, text=text, source=source)
        await self.engine.ingest(user_id, doc)
        logger.info(f"Ingested {source} document {doc.id} for {user_id}")
        return doc

    # ============================================
    # CURRENT USER
    # ============================================

    def _require_user(self) -> str:
        user_id = self.current_user() if self.current_user else None
        if not user_id:
            raise NotAuthenticatedError("No signed-in user")
        return user_id

    async def refresh_index_for_current_user(self) -> RebuildReport:
        return await self.refresh_index(self._require_user())

    async def build_prompt_for_current_user(self, question: str, top_k: int = DEFAULT_TOP_K) -> str:
        return await self.build_prompt(self._require_user(), question, top_k)

    async def ask_for_current_user(self, question: str, top_k: int = DEFAULT_TOP_K) -> str:
        return await self.ask(self._require_user(), question, top_k)
