"""
Test Suite for Embeddings Providers

No model downloads: word vectors come from the hashed fixture table, the
sentence model is a stub object and Ollama runs behind httpx.MockTransport.

Run with: pytest tests/test_embeddings.py -v
"""

import json
import sys
import types
from unittest.mock import Mock

import httpx
import numpy as np
import pytest

from finance_buddy.embeddings import (
    EmbeddingsProviderFactory,
    OllamaEmbeddingsProvider,
    SentenceModelEmbeddingsProvider,
    WordVectorEmbeddingsProvider,
    create_provider_from_config,
    l2_normalize,
    to_float32
)
from finance_buddy.errors import EmbeddingError, EmbeddingModelLoadError
from finance_buddy.utils.config import ConfigManager

EMBED_DIM = 1024


class TestWordVectors:
    """Word-vector averaging provider"""

    def test_dimension(self, embedder, word_table):
        assert embedder.dimension == EMBED_DIM
        assert embedder.vocabulary_size == len(word_table)

    def test_same_text_same_vector(self, embedder):
        first = embedder.embed("hello world")
        second = embedder.embed("hello world")

        assert first.dtype == np.float32
        assert first.tobytes() == second.tobytes()

    def test_batch_matches_single(self, embedder):
        texts = ["hello world", "Emergency Fund", "weekly groceries at Trader Joe's"]
        batch = embedder.embed_batch(texts)

        assert len(batch) == len(texts)
        for text, vector in zip(texts, batch):
            np.testing.assert_array_equal(vector, embedder.embed(text))

    def test_output_is_unit_length(self, embedder):
        assert np.linalg.norm(embedder.embed("emergency fund")) == pytest.approx(1.0, abs=1e-5)

    def test_unknown_words_give_zero_vector(self, embedder):
        vector = embedder.embed("zzqx qqvv")

        assert vector.shape == (EMBED_DIM,)
        assert not np.any(vector)

    def test_lookup_is_case_insensitive(self, embedder):
        np.testing.assert_array_equal(embedder.embed("HELLO World"), embedder.embed("hello world"))

    def test_empty_batch(self, embedder):
        assert embedder.embed_batch([]) == []

    def test_load_from_file_with_header(self, tmp_path):
        path = tmp_path / "vectors.txt"
        path.write_text("2 3\nsave 1 0 0\nspend 0 1 0\n", encoding='utf-8')

        provider = WordVectorEmbeddingsProvider(path=str(path))

        assert provider.dimension == 3
        np.testing.assert_allclose(provider.embed("save"), [1.0, 0.0, 0.0])
        np.testing.assert_allclose(provider.embed("save spend"), [0.70710677, 0.70710677, 0.0], rtol=1e-6)

    def test_max_words_limits_table(self, tmp_path):
        path = tmp_path / "vectors.txt"
        path.write_text("save 1 0\nspend 0 1\nbudget 1 1\n", encoding='utf-8')

        assert WordVectorEmbeddingsProvider(path=str(path), max_words=2).vocabulary_size == 2

    def test_missing_file(self, tmp_path):
        with pytest.raises(EmbeddingModelLoadError):
            WordVectorEmbeddingsProvider(path=str(tmp_path / "missing.txt"))

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.txt"
        path.write_text("", encoding='utf-8')
        with pytest.raises(EmbeddingModelLoadError):
            WordVectorEmbeddingsProvider(path=str(path))

    def test_inconsistent_widths(self, tmp_path):
        path = tmp_path / "bad.txt"
        path.write_text("save 1 0 0\nspend 0 1\n", encoding='utf-8')
        with pytest.raises(EmbeddingModelLoadError):
            WordVectorEmbeddingsProvider(path=str(path))

    def test_needs_a_source(self):
        with pytest.raises(EmbeddingModelLoadError):
            WordVectorEmbeddingsProvider()


class TestTensorConversion:

    @pytest.mark.parametrize("dtype", [np.float32, np.float64, np.float16, np.int32, np.int8, np.uint8])
    def test_supported_types_become_float32(self, dtype):
        result = to_float32(np.array([[1, 2, 3]], dtype=dtype))

        assert result.dtype == np.float32
        np.testing.assert_array_equal(result, [1.0, 2.0, 3.0])

    def test_unsupported_type(self):
        with pytest.raises(EmbeddingError):
            to_float32(np.array([1 + 2j], dtype=np.complex64))

    def test_normalize_leaves_zero_vector(self):
        assert not np.any(l2_normalize([0.0, 0.0]))
        np.testing.assert_allclose(l2_normalize([3.0, 4.0]), [0.6, 0.8])


class FakeSentenceModel:
    """Stands in for a SentenceTransformer"""

    def __init__(self, dimension=4, dtype=np.float32):
        self.dimension = dimension
        self.dtype = dtype
        self.calls = []

    def get_sentence_embedding_dimension(self):
        return self.dimension

    def encode(self, texts, **kwargs):
        self.calls.append(list(texts))
        rows = [[len(t) + i for i in range(self.dimension)] for t in texts]
        return np.array(rows, dtype=self.dtype)


class TestSentenceModel:
    """On-device sentence model provider"""

    def test_output_is_normalized_float32(self):
        provider = SentenceModelEmbeddingsProvider(model=FakeSentenceModel(dtype=np.float16))
        vector = provider.embed("budget")

        assert provider.dimension == 4
        assert vector.dtype == np.float32
        assert np.linalg.norm(vector) == pytest.approx(1.0, abs=1e-5)

    def test_one_forward_pass_per_text(self):
        model = FakeSentenceModel()
        provider = SentenceModelEmbeddingsProvider(model=model)

        batch = provider.embed_batch(["a", "bb", "ccc"])

        assert model.calls == [["a"], ["bb"], ["ccc"]]
        np.testing.assert_array_equal(batch[1], provider.embed("bb"))

    def test_inference_failure(self):
        model = FakeSentenceModel()
        model.encode = Mock(side_effect=RuntimeError("out of memory"))
        provider = SentenceModelEmbeddingsProvider(model=model)

        with pytest.raises(EmbeddingError):
            provider.embed("budget")

    def test_wrong_output_width(self):
        model = FakeSentenceModel(dimension=4)
        model.encode = Mock(return_value=np.ones((1, 3), dtype=np.float32))
        provider = SentenceModelEmbeddingsProvider(model=model)

        with pytest.raises(EmbeddingError):
            provider.embed("budget")

    def test_model_without_dimension(self):
        with pytest.raises(EmbeddingModelLoadError):
            SentenceModelEmbeddingsProvider(model=FakeSentenceModel(dimension=None))

    def test_load_failure_is_a_construction_error(self, monkeypatch):
        fake_module = types.ModuleType("sentence_transformers")
        fake_module.SentenceTransformer = Mock(side_effect=OSError("no such model"))
        monkeypatch.setitem(sys.modules, "sentence_transformers", fake_module)

        with pytest.raises(EmbeddingModelLoadError):
            SentenceModelEmbeddingsProvider(model_name="does-not-exist")


def ollama_transport(dimension=3, fail=None):
    """MockTransport answering /api/embed with fixed vectors"""
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        requests.append(body)
        if fail is not None and fail(body):
            return httpx.Response(500, text="model crashed")
        vectors = [[3.0, 4.0] + [0.0] * (dimension - 2) for _ in body["input"]]
        return httpx.Response(200, json={"model": body["model"], "embeddings": vectors})

    return httpx.MockTransport(handler), requests


class TestOllama:
    """Remote embedding backend over HTTP"""

    def test_probe_sets_dimension(self):
        transport, requests = ollama_transport(dimension=5)
        provider = OllamaEmbeddingsProvider(model="nomic-embed-text", transport=transport)

        assert provider.dimension == 5
        assert requests[0]["model"] == "nomic-embed-text"
        assert isinstance(requests[0]["input"], list)

    def test_vectors_are_normalized(self):
        transport, requests = ollama_transport()
        provider = OllamaEmbeddingsProvider(transport=transport)

        vectors = provider.embed_batch(["rent", "groceries"])

        assert requests[-1]["input"] == ["rent", "groceries"]
        for v in vectors:
            np.testing.assert_allclose(v, [0.6, 0.8, 0.0], rtol=1e-6)

    def test_unreachable_server(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(EmbeddingModelLoadError):
            OllamaEmbeddingsProvider(transport=httpx.MockTransport(refuse))

    def test_unknown_model(self):
        def not_found(request):
            return httpx.Response(404, json={"error": "model not found"})

        with pytest.raises(EmbeddingModelLoadError):
            OllamaEmbeddingsProvider(model="missing", transport=httpx.MockTransport(not_found))

    def test_failure_after_startup(self):
        transport, _ = ollama_transport(fail=lambda body: "boom" in body["input"])
        provider = OllamaEmbeddingsProvider(transport=transport)

        with pytest.raises(EmbeddingError):
            provider.embed("boom")

    def test_malformed_response(self):
        calls = {"n": 0}

        def handler(request):
            calls["n"] += 1
            if calls["n"] == 1:
                return httpx.Response(200, json={"embeddings": [[1.0, 0.0]]})
            return httpx.Response(200, json={"embeddings": []})

        provider = OllamaEmbeddingsProvider(transport=httpx.MockTransport(handler))
        with pytest.raises(EmbeddingError):
            provider.embed("rent")


class TestFactory:

    def test_backends_are_registered(self):
        assert {"word_vectors", "sentence_model", "ollama"} <= set(EmbeddingsProviderFactory.list_providers())

    def test_unknown_provider(self):
        with pytest.raises(ValueError):
            EmbeddingsProviderFactory.create("nope")

    def test_create_from_config(self, tmp_path, monkeypatch, word_table):
        monkeypatch.delenv("FINANCE_BUDDY_EMBEDDINGS", raising=False)
        config = ConfigManager(str(tmp_path))
        config.load_global_config()
        config.set('embeddings.word_vectors', {'vectors': word_table})

        provider = create_provider_from_config(config)

        assert isinstance(provider, WordVectorEmbeddingsProvider)
        assert provider.get_model_info() == {"provider": "word_vectors", "dimension": EMBED_DIM}
