"""
Embeddings Providers

Pluggable text -> vector backends selected at construction time.
"""

from finance_buddy.embeddings.base import (
    EmbeddingsProvider,
    EmbeddingsProviderFactory,
    create_provider_from_config,
    l2_normalize,
    to_float32
)

# Import providers to register them
from finance_buddy.embeddings.word_vectors import WordVectorEmbeddingsProvider
from finance_buddy.embeddings.sentence_model import SentenceModelEmbeddingsProvider
from finance_buddy.embeddings.ollama import OllamaEmbeddingsProvider

__all__ = [
    'EmbeddingsProvider',
    'EmbeddingsProviderFactory',
    'create_provider_from_config',
    'l2_normalize',
    'to_float32',
    'WordVectorEmbeddingsProvider',
    'SentenceModelEmbeddingsProvider',
    'OllamaEmbeddingsProvider'
]
