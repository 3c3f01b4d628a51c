"""
Services - tenant-facing RAG workflows
"""

from finance_buddy.services.generation import AnswerGenerator, OpenAIAnswerGenerator
from finance_buddy.services.rag_service import (
    IndexState,
    RAGService,
    RebuildReport,
    RecordFailure,
    Source
)

__all__ = [
    'AnswerGenerator',
    'OpenAIAnswerGenerator',
    'IndexState',
    'RAGService',
    'RebuildReport',
    'RecordFailure',
    'Source'
]
