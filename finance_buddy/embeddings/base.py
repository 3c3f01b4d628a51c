"""
Embeddings Provider Abstraction - Base Interface

Allows swapping between word-vector averaging, on-device sentence models
and a remote Ollama server without touching the engine.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from finance_buddy.errors import EmbeddingError


def l2_normalize(vector: Sequence[float]) -> np.ndarray:
    """Scale to unit length as float32; zero vectors are returned unchanged"""
    v = np.asarray(vector, dtype=np.float32)
    norm = float(np.linalg.norm(v))
    if norm == 0.0:
        return v
    return (v / norm).astype(np.float32)


# Source buffer types an inference backend may hand back
SUPPORTED_TENSOR_DTYPES = (
    np.dtype(np.float32),
    np.dtype(np.float64),
    np.dtype(np.float16),
    np.dtype(np.int32),
    np.dtype(np.int8),
    np.dtype(np.uint8),
)


def to_float32(tensor: Any) -> np.ndarray:
    """
    Convert a model output tensor to a flat float32 vector.

    Raises:
        EmbeddingError: the tensor's numeric type is not supported
    """
    arr = np.asarray(tensor)
    if arr.dtype not in SUPPORTED_TENSOR_DTYPES:
        raise EmbeddingError(f"Unsupported embedding tensor dtype: {arr.dtype}")
    return arr.astype(np.float32).reshape(-1)


class EmbeddingsProvider(ABC):
    """
    Turns text into a fixed-dimension vector.

    embed() is embed_batch() on a single text, so batching only changes
    throughput, never the values.
    """

    name = "base"

    @property
    @abstractmethod
    def dimension(self) -> int:
        """Embedding dimensionality"""
        pass

    @abstractmethod
    def _encode(self, texts: List[str]) -> List[np.ndarray]:
        """Backend-specific batch encoding"""
        pass

    def embed_batch(self, texts: Sequence[str]) -> List[np.ndarray]:
        """Embed several texts; one float32 vector per input, same order"""
        texts = list(texts)
        if not texts:
            return []

        vectors = self._encode(texts)
        if len(vectors) != len(texts):
            raise EmbeddingError(
                f"{self.name} returned {len(vectors)} embeddings for {len(texts)} texts"
            )
        return [self._check(v) for v in vectors]

    def embed(self, text: str) -> np.ndarray:
        """Embed one text"""
        return self.embed_batch([text])[0]

    def _check(self, vector: np.ndarray) -> np.ndarray:
        v = np.asarray(vector, dtype=np.float32)
        if v.ndim != 1 or v.shape[0] != self.dimension:
            raise EmbeddingError(
                f"{self.name} produced shape {v.shape}, expected ({self.dimension},)"
            )
        return v

    def get_model_info(self) -> Dict[str, Any]:
        """Describe the backend"""
        return {"provider": self.name, "dimension": self.dimension}


class EmbeddingsProviderFactory:
    """Factory for creating embeddings providers"""

    _providers: Dict[str, type] = {}

    @classmethod
    def register(cls, name: str, provider_class: type):
        """Register a provider implementation"""
        cls._providers[name] = provider_class

    @classmethod
    def create(cls, provider_name: str, **kwargs) -> EmbeddingsProvider:
        """Create provider instance"""
        if provider_name not in cls._providers:
            available = ", ".join(sorted(cls._providers))
            raise ValueError(
                f"Embeddings provider '{provider_name}' not found. "
                f"Available: {available}"
            )
        return cls._providers[provider_name](**kwargs)

    @classmethod
    def list_providers(cls) -> List[str]:
        """List all registered providers"""
        return list(cls._providers.keys())


def create_provider_from_config(config, provider_name: Optional[str] = None) -> EmbeddingsProvider:
    """
    Build the provider named in settings.

    Args:
        config: ConfigManager
        provider_name: Override for embeddings.provider

    Returns:
        EmbeddingsProvider instance
    """
    name = provider_name or config.get('embeddings.provider', 'word_vectors')
    options = config.section(f'embeddings.{name}')
    return EmbeddingsProviderFactory.create(name, **options)
