"""
Word-Vector Averaging Provider

Sentence embedding = L2-normalized mean of the word vectors found in a
fixed table (GloVe / word2vec text format). Unknown words are skipped; a
text with no known words maps to the zero vector.
"""

import re
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence

import numpy as np

from finance_buddy.embeddings.base import EmbeddingsProvider, EmbeddingsProviderFactory, l2_normalize
from finance_buddy.errors import EmbeddingModelLoadError
from finance_buddy.utils.logger import get_logger

logger = get_logger('embeddings.word_vectors')

_WORD = re.compile(r"\w+(?:'\w+)*")


def tokenize(text: str) -> List[str]:
    """Lower-cased word tokens"""
    return _WORD.findall(text.lower())


class WordVectorEmbeddingsProvider(EmbeddingsProvider):
    """
    Averages pre-trained word vectors.

    Load from a text file (one ``word v1 v2 ...`` row per line, an optional
    word2vec ``count dim`` header) or from an in-memory mapping.
    """

    name = "word_vectors"

    def __init__(
        self,
        path: Optional[str] = None,
        vectors: Optional[Mapping[str, Sequence[float]]] = None,
        max_words: Optional[int] = None
    ):
        if vectors is not None:
            table = {str(word).lower(): vec for word, vec in vectors.items()}
            source = "in-memory table"
        elif path:
            table = self._read_table(Path(path), max_words)
            source = path
        else:
            raise EmbeddingModelLoadError("Word vector provider needs a table path or a vector mapping")

        if not table:
            raise EmbeddingModelLoadError(f"Word vector table is empty ({source})")

        words = list(table.keys())
        try:
            matrix = np.asarray([table[w] for w in words], dtype=np.float32)
        except ValueError as e:
            raise EmbeddingModelLoadError(f"Word vector rows have inconsistent widths ({source}): {e}") from e
        if matrix.ndim != 2 or matrix.shape[1] == 0:
            raise EmbeddingModelLoadError(f"Word vector table has no usable dimensions ({source})")

        self._vocab: Dict[str, int] = {w: i for i, w in enumerate(words)}
        self._matrix = matrix
        self._dim = int(matrix.shape[1])

        logger.info(f"Word vectors loaded from {source} ({len(words)} words, dim={self._dim})")

    @staticmethod
    def _read_table(path: Path, max_words: Optional[int]) -> Dict[str, List[float]]:
        if not path.exists():
            raise EmbeddingModelLoadError(f"Word vector file not found: {path}")

        table: Dict[str, List[float]] = {}
        width = None
        try:
            with open(path, 'r', encoding='utf-8') as f:
                for line_no, line in enumerate(f, 1):
                    parts = line.rstrip().split(' ')
                    if line_no == 1 and len(parts) == 2 and all(p.isdigit() for p in parts):
                        continue  # word2vec header
                    if len(parts) < 2:
                        continue
                    values = [float(x) for x in parts[1:]]
                    if width is None:
                        width = len(values)
                    elif len(values) != width:
                        raise EmbeddingModelLoadError(
                            f"{path}:{line_no} has {len(values)} values, expected {width}"
                        )
                    table.setdefault(parts[0].lower(), values)
                    if max_words and len(table) >= max_words:
                        break
        except (OSError, UnicodeDecodeError, ValueError) as e:
            raise EmbeddingModelLoadError(f"Cannot read word vectors from {path}: {e}") from e
        return table

    @property
    def dimension(self) -> int:
        return self._dim

    @property
    def vocabulary_size(self) -> int:
        return len(self._vocab)

    def _encode(self, texts: List[str]) -> List[np.ndarray]:
        return [self._sentence_vector(t) for t in texts]

    def _sentence_vector(self, text: str) -> np.ndarray:
        rows = [self._vocab[w] for w in tokenize(text) if w in self._vocab]
        if not rows:
            return np.zeros(self._dim, dtype=np.float32)
        # Accumulate in float64 so the result does not depend on batch layout
        mean = self._matrix[rows].astype(np.float64).mean(axis=0)
        return l2_normalize(mean)


EmbeddingsProviderFactory.register("word_vectors", WordVectorEmbeddingsProvider)
