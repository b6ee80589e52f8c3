"""
Unit Tests for the embedding client

Order preservation across batches and threads, result validation,
and the OpenAI provider against a mocked client.
"""

import random
import threading
import time
from types import SimpleNamespace
from unittest.mock import MagicMock

import httpx
import numpy as np
import openai
import pytest

from conftest import TEST_DIM, FakeEmbeddingProvider, fake_vector
from pdfqa.core.embed import (
    EmbeddingClient,
    EmbeddingConfig,
    OpenAIEmbeddingProvider,
    get_embedding_client,
    get_embedding_config,
    validate_vector,
)
from pdfqa.core.errors import EmbeddingError


# ---------------------------------------------------------------------------
# ORDER PRESERVATION
# ---------------------------------------------------------------------------


class TestEmbedBatchOrder:
    """Output order must match input order 1:1."""

    def test_empty_input_makes_no_call(self, embedder, fake_provider):
        assert embedder.embed_batch([]) == []
        assert fake_provider.calls == []

    def test_order_across_batch_boundaries(self, embedder, fake_provider):
        texts = [f"text {i}" for i in range(10)]

        vectors = embedder.embed_batch(texts)

        assert vectors == [fake_vector(t) for t in texts]
        assert [len(c) for c in fake_provider.calls] == [4, 4, 2]

    def test_order_with_concurrent_dispatch(self):
        """Batches finishing out of order should still be reassembled in input order."""

        class JitteryProvider(FakeEmbeddingProvider):
            def embed_texts(self, texts):
                time.sleep(random.uniform(0, 0.02))
                return super().embed_texts(texts)

        provider = JitteryProvider()
        client = EmbeddingClient(provider, EmbeddingConfig(dimensions=TEST_DIM, batch_size=3, max_workers=4))
        texts = [f"chunk-{i}" for i in range(25)]

        vectors = client.embed_batch(texts)

        assert vectors == [fake_vector(t) for t in texts]
        assert len(provider.calls) == 9

    def test_concurrent_dispatch_uses_threads(self):
        seen = set()

        class ThreadRecordingProvider(FakeEmbeddingProvider):
            def embed_texts(self, texts):
                seen.add(threading.get_ident())
                time.sleep(0.01)
                return super().embed_texts(texts)

        client = EmbeddingClient(
            ThreadRecordingProvider(),
            EmbeddingConfig(dimensions=TEST_DIM, batch_size=1, max_workers=3)
        )
        client.embed_batch(["a", "b", "c", "d", "e", "f"])

        assert threading.get_ident() not in seen

    def test_embed_query(self, embedder):
        assert embedder.embed_query("what is this?") == fake_vector("what is this?")


# ---------------------------------------------------------------------------
# VALIDATION
# ---------------------------------------------------------------------------


class TestEmbedValidation:
    """Bad provider output must surface as EmbeddingError."""

    def test_count_mismatch(self, embedding_config):
        provider = MagicMock()
        provider.embed_texts.return_value = [fake_vector("only one")]
        client = EmbeddingClient(provider, embedding_config)

        with pytest.raises(EmbeddingError, match="1 vectors for 2 texts"):
            client.embed_batch(["a", "b"])

    def test_wrong_dimension(self, embedding_config):
        provider = MagicMock()
        provider.embed_texts.return_value = [[0.1] * (TEST_DIM + 1)]
        client = EmbeddingClient(provider, embedding_config)

        with pytest.raises(EmbeddingError, match="expected"):
            client.embed_batch(["a"])

    @pytest.mark.parametrize("bad", [float("nan"), float("inf"), float("-inf")])
    def test_non_finite_values(self, embedding_config, bad):
        vector = [0.1] * TEST_DIM
        vector[3] = bad
        provider = MagicMock()
        provider.embed_texts.return_value = [vector]
        client = EmbeddingClient(provider, embedding_config)

        with pytest.raises(EmbeddingError, match="non-finite"):
            client.embed_batch(["a"])

    def test_provider_exception_is_wrapped(self, embedding_config):
        provider = MagicMock()
        provider.embed_texts.side_effect = RuntimeError("boom")
        client = EmbeddingClient(provider, embedding_config)

        with pytest.raises(EmbeddingError) as exc_info:
            client.embed_batch(["a"])

        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert exc_info.value.details["batch_index"] == 0

    def test_failure_in_concurrent_batch_propagates(self):
        class FailingProvider(FakeEmbeddingProvider):
            def embed_texts(self, texts):
                if "bad" in texts:
                    raise RuntimeError("provider down")
                return super().embed_texts(texts)

        client = EmbeddingClient(
            FailingProvider(),
            EmbeddingConfig(dimensions=TEST_DIM, batch_size=1, max_workers=2)
        )

        with pytest.raises(EmbeddingError, match="provider down"):
            client.embed_batch(["ok", "bad", "fine"])

    def test_validate_vector_returns_floats(self):
        assert validate_vector([1, 2, 3], 3) == [1.0, 2.0, 3.0]

    def test_validate_vector_rejects_nested(self):
        with pytest.raises(EmbeddingError):
            validate_vector([[1.0, 2.0]], 2)


# ---------------------------------------------------------------------------
# OPENAI PROVIDER
# ---------------------------------------------------------------------------


def _embedding_response(vectors, reverse=False):
    data = [SimpleNamespace(index=i, embedding=v) for i, v in enumerate(vectors)]
    if reverse:
        data.reverse()
    return SimpleNamespace(data=data)


class TestOpenAIEmbeddingProvider:
    """Test the OpenAI provider with a mocked client."""

    def test_requests_configured_dimensions(self):
        client = MagicMock()
        client.embeddings.create.return_value = _embedding_response([[0.0] * 768])
        provider = OpenAIEmbeddingProvider(EmbeddingConfig(), client=client)

        provider.embed_texts(["hello"])

        kwargs = client.embeddings.create.call_args.kwargs
        assert kwargs["model"] == "text-embedding-3-small"
        assert kwargs["dimensions"] == 768
        assert kwargs["input"] == ["hello"]

    def test_sorts_by_response_index(self):
        client = MagicMock()
        client.embeddings.create.return_value = _embedding_response([[1.0], [2.0], [3.0]], reverse=True)
        provider = OpenAIEmbeddingProvider(EmbeddingConfig(dimensions=1), client=client)

        assert provider.embed_texts(["a", "b", "c"]) == [[1.0], [2.0], [3.0]]

    def test_truncates_long_input(self):
        client = MagicMock()
        client.embeddings.create.return_value = _embedding_response([[0.0]])
        provider = OpenAIEmbeddingProvider(EmbeddingConfig(dimensions=1, max_tokens=10), client=client)

        provider.embed_texts(["x" * 100])

        assert client.embeddings.create.call_args.kwargs["input"] == ["x" * 40]

    def test_retries_transient_errors(self, monkeypatch):
        monkeypatch.setattr("time.sleep", lambda _: None)
        request = httpx.Request("POST", "https://api.openai.com/v1/embeddings")
        client = MagicMock()
        client.embeddings.create.side_effect = [
            openai.APIConnectionError(request=request),
            _embedding_response([[0.5]]),
        ]
        provider = OpenAIEmbeddingProvider(EmbeddingConfig(dimensions=1, max_attempts=3), client=client)

        assert provider.embed_texts(["a"]) == [[0.5]]
        assert client.embeddings.create.call_count == 2

    def test_gives_up_after_max_attempts(self, monkeypatch):
        monkeypatch.setattr("time.sleep", lambda _: None)
        request = httpx.Request("POST", "https://api.openai.com/v1/embeddings")
        client = MagicMock()
        client.embeddings.create.side_effect = openai.APIConnectionError(request=request)
        provider = OpenAIEmbeddingProvider(EmbeddingConfig(dimensions=1, max_attempts=2), client=client)
        embedder = EmbeddingClient(provider, EmbeddingConfig(dimensions=1, max_attempts=2))

        with pytest.raises(EmbeddingError) as exc_info:
            embedder.embed_batch(["a"])

        assert isinstance(exc_info.value.__cause__, openai.APIConnectionError)
        assert client.embeddings.create.call_count == 2

    def test_missing_api_key(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)

        with pytest.raises(EmbeddingError, match="API key"):
            OpenAIEmbeddingProvider(EmbeddingConfig())


# ---------------------------------------------------------------------------
# CONFIG AND FACTORY
# ---------------------------------------------------------------------------


class TestEmbeddingConfig:

    def test_defaults(self):
        config = EmbeddingConfig()

        assert config.dimensions == 768
        assert config.batch_size == 64
        assert config.max_workers == 1

    def test_from_environment(self, monkeypatch):
        monkeypatch.setenv("EMBED_BATCH_SIZE", "16")
        monkeypatch.setenv("EMBED_MAX_WORKERS", "4")
        monkeypatch.setenv("EMBED_PROVIDER", "local")
        monkeypatch.delenv("EMBED_MODEL", raising=False)

        config = get_embedding_config()

        assert config.batch_size == 16
        assert config.max_workers == 4
        assert config.model == "all-mpnet-base-v2"

    def test_unknown_provider(self):
        with pytest.raises(EmbeddingError, match="Unknown embedding provider"):
            get_embedding_client(EmbeddingConfig(provider="nope"))

    def test_openai_factory(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")

        client = get_embedding_client(EmbeddingConfig())

        assert isinstance(client.provider, OpenAIEmbeddingProvider)
        assert client.dimensions == 768


class TestLocalEmbeddingProvider:
    """Test the sentence-transformers provider with a patched model."""

    def test_factory_and_encode(self, monkeypatch):
        from pdfqa.core import local_embeddings

        model = MagicMock()
        model.get_sentence_embedding_dimension.return_value = TEST_DIM
        model.encode.side_effect = lambda texts, **kwargs: np.array([fake_vector(t) for t in texts])
        monkeypatch.setattr(local_embeddings, "SENTENCE_TRANSFORMERS_AVAILABLE", True)
        monkeypatch.setattr(local_embeddings, "SentenceTransformer", MagicMock(return_value=model), raising=False)

        client = get_embedding_client(EmbeddingConfig(provider="local", model="all-mpnet-base-v2", dimensions=TEST_DIM))
        vectors = client.embed_batch(["a", "b"])

        assert vectors == [fake_vector("a"), fake_vector("b")]
        assert client.provider.get_model_info()["dimension"] == TEST_DIM

    def test_unavailable_library(self, monkeypatch):
        from pdfqa.core import local_embeddings

        monkeypatch.setattr(local_embeddings, "SENTENCE_TRANSFORMERS_AVAILABLE", False)
        provider = local_embeddings.LocalEmbeddingProvider()

        with pytest.raises(EmbeddingError, match="not available"):
            provider.embed_texts(["a"])
