"""
Ollama Embeddings Provider (Remote / Native Models)

Wire boundary:
    POST {base_url}/api/embed
    request:  {"model": "<name>", "input": ["text", ...]}
    response: {"embeddings": [[float, ...], ...]}

The model is probed once at construction, which both verifies that it is
served and fixes the embedding dimension for the provider's lifetime.
"""

from typing import Any, List, Optional

import httpx
import numpy as np

from finance_buddy.embeddings.base import EmbeddingsProvider, EmbeddingsProviderFactory, l2_normalize
from finance_buddy.errors import EmbeddingError, EmbeddingModelLoadError
from finance_buddy.utils.logger import get_logger

logger = get_logger('embeddings.ollama')

_PROBE_TEXT = "dimension probe"


class OllamaEmbeddingsProvider(EmbeddingsProvider):
    """
    Embeddings from an Ollama server.

    Supports: nomic-embed-text, mxbai-embed-large, all-minilm, etc.
    """

    name = "ollama"

    def __init__(
        self,
        model: str = "nomic-embed-text",
        base_url: str = "http://localhost:11434",
        timeout: float = 30,
        transport: Optional[httpx.BaseTransport] = None
    ):
        self.model = model
        self.base_url = base_url.rstrip('/')
        self.client = httpx.Client(base_url=self.base_url, timeout=timeout, transport=transport)

        try:
            probe = self._request([_PROBE_TEXT])
        except EmbeddingError as e:
            self.client.close()
            raise EmbeddingModelLoadError(
                f"Cannot load embedding model {model!r} from Ollama at {self.base_url}: {e}"
            ) from e

        if not isinstance(probe[0], list) or not probe[0]:
            self.client.close()
            raise EmbeddingModelLoadError(f"Ollama model {model!r} returned an empty embedding")
        self._dim = len(probe[0])

        logger.info(f"Ollama embeddings initialized (model={model}, url={self.base_url}, dim={self._dim})")

    @property
    def dimension(self) -> int:
        return self._dim

    def _request(self, texts: List[str]) -> List[List[float]]:
        try:
            response = self.client.post(
                "/api/embed",
                json={"model": self.model, "input": texts}
            )
            response.raise_for_status()
            data: Any = response.json()
        except httpx.ConnectError as e:
            raise EmbeddingError(
                f"Cannot connect to Ollama at {self.base_url}. "
                f"Make sure Ollama is running: ollama serve"
            ) from e
        except httpx.HTTPStatusError as e:
            raise EmbeddingError(
                f"Ollama returned {e.response.status_code}: {e.response.text[:200]}"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise EmbeddingError(f"Ollama embedding request failed: {e}") from e

        embeddings = data.get("embeddings") if isinstance(data, dict) else None
        if not isinstance(embeddings, list) or len(embeddings) != len(texts):
            raise EmbeddingError(f"Malformed Ollama embed response for {len(texts)} texts")
        return embeddings

    def _encode(self, texts: List[str]) -> List[np.ndarray]:
        vectors = []
        for vec in self._request(texts):
            try:
                vectors.append(l2_normalize(vec))
            except (TypeError, ValueError) as e:
                raise EmbeddingError(f"Malformed Ollama embedding: {e}") from e
        return vectors

    def get_model_info(self):
        info = super().get_model_info()
        info.update({"model": self.model, "base_url": self.base_url})
        return info

    def close(self):
        self.client.close()


EmbeddingsProviderFactory.register("ollama", OllamaEmbeddingsProvider)
