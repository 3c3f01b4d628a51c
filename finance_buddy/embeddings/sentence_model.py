"""
On-Device Sentence Model Provider

Local inference through sentence-transformers. The model is loaded once at
construction; output tensors are converted to float32 whatever their native
type (float32/float64/float16/int32/int8) and L2-normalized.
"""

from typing import List, Optional

import numpy as np

from finance_buddy.embeddings.base import (
    EmbeddingsProvider, EmbeddingsProviderFactory, l2_normalize, to_float32
)
from finance_buddy.errors import EmbeddingError, EmbeddingModelLoadError
from finance_buddy.utils.logger import get_logger

logger = get_logger('embeddings.sentence_model')


class SentenceModelEmbeddingsProvider(EmbeddingsProvider):
    """
    Local embedding via sentence-transformers.

    Default model: all-MiniLM-L6-v2 (384 dimensions). model_name may also be
    a path to a model directory on disk.
    """

    name = "sentence_model"

    def __init__(
        self,
        model_name: str = "all-MiniLM-L6-v2",
        device: Optional[str] = None,
        precision: str = "float32",
        model=None
    ):
        self._model_name = model_name
        self._precision = precision

        if model is None:
            logger.info(f"Loading embedding model: {model_name}")
            try:
                from sentence_transformers import SentenceTransformer
                model = SentenceTransformer(model_name, device=device)
            except ImportError as e:
                raise EmbeddingModelLoadError(
                    "sentence-transformers not installed. Install with: pip install sentence-transformers"
                ) from e
            except (OSError, ValueError, RuntimeError) as e:
                raise EmbeddingModelLoadError(f"Cannot load embedding model {model_name!r}: {e}") from e

        self._model = model
        dim = self._model.get_sentence_embedding_dimension()
        if not dim:
            raise EmbeddingModelLoadError(f"Model {model_name!r} does not report an embedding dimension")
        self._dim = int(dim)

        logger.info(f"Sentence model ready ({model_name}, dim={self._dim}, precision={precision})")

    @property
    def dimension(self) -> int:
        return self._dim

    def _encode(self, texts: List[str]) -> List[np.ndarray]:
        # One forward pass per text: padding inside a batch would perturb
        # the low bits and break batch/single equivalence
        return [self._encode_one(t) for t in texts]

    def _encode_one(self, text: str) -> np.ndarray:
        try:
            output = self._model.encode(
                [text],
                convert_to_numpy=True,
                show_progress_bar=False,
                precision=self._precision
            )
        except (RuntimeError, ValueError) as e:
            raise EmbeddingError(f"Model inference failed: {e}") from e

        return l2_normalize(to_float32(np.asarray(output)[0]))

    def get_model_info(self):
        info = super().get_model_info()
        info.update({"model": self._model_name, "precision": self._precision})
        return info


EmbeddingsProviderFactory.register("sentence_model", SentenceModelEmbeddingsProvider)
