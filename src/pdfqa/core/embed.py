"""Batched embedding client; order-preserving, dimension- and finiteness-checked."""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol, Sequence, runtime_checkable

import numpy as np
import openai
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from .config import env_int, env_float, env_str
from .errors import EmbeddingError

logger = logging.getLogger(__name__)

EMBEDDING_DIMENSION = 768

# Failures worth another attempt; everything else surfaces immediately.
TRANSIENT_OPENAI_ERRORS = (
    openai.APIConnectionError,
    openai.RateLimitError,
    openai.InternalServerError,
)


@dataclass
class EmbeddingConfig:
    """Configuration for embedding generation."""
    provider: str = "openai"
    model: str = "text-embedding-3-small"
    dimensions: int = EMBEDDING_DIMENSION
    batch_size: int = 64
    max_workers: int = 1
    timeout: float = 60.0
    max_attempts: int = 3
    max_tokens: int = 8191  # Max input tokens for text-embedding-3-small


def get_embedding_config() -> EmbeddingConfig:
    """Get embedding configuration from environment."""
    provider = env_str("EMBED_PROVIDER", "openai").lower()
    default_model = "all-mpnet-base-v2" if provider == "local" else "text-embedding-3-small"

    return EmbeddingConfig(
        provider=provider,
        model=env_str("EMBED_MODEL", default_model),
        dimensions=env_int("EMBED_DIMENSIONS", EMBEDDING_DIMENSION),
        batch_size=env_int("EMBED_BATCH_SIZE", 64),
        max_workers=env_int("EMBED_MAX_WORKERS", 1),
        timeout=env_float("EMBED_TIMEOUT", 60.0),
        max_attempts=env_int("EMBED_MAX_ATTEMPTS", 3),
    )


@runtime_checkable
class EmbeddingProvider(Protocol):
    """One provider round-trip per call; result order must match input order."""

    def embed_texts(self, texts: List[str]) -> List[List[float]]:
        ...


class OpenAIEmbeddingProvider:
    """OpenAI embeddings API, requested at the configured dimension."""

    def __init__(self, config: EmbeddingConfig, client: Optional[openai.OpenAI] = None):
        self.config = config
        if client is None:
            api_key = env_str("OPENAI_API_KEY")
            if not api_key:
                raise EmbeddingError(
                    "OpenAI API key not found in environment variables",
                    operation="embed"
                )
            # Retries are driven by tenacity below so attempts stay bounded and visible.
            client = openai.OpenAI(api_key=api_key, timeout=config.timeout, max_retries=0)
        self._client = client

    def _truncate(self, text: str) -> str:
        # Simple token approximation: ~4 chars per token
        limit = self.config.max_tokens * 4
        if len(text) > limit:
            logger.warning(f"Truncated text from {len(text)} to {limit} characters")
            return text[:limit]
        return text

    def embed_texts(self, texts: List[str]) -> List[List[float]]:
        request = {
            "model": self.config.model,
            "input": [self._truncate(text) for text in texts],
        }
        if self.config.model.startswith("text-embedding-3"):
            request["dimensions"] = self.config.dimensions

        for attempt in Retrying(
            stop=stop_after_attempt(self.config.max_attempts),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            retry=retry_if_exception_type(TRANSIENT_OPENAI_ERRORS),
            reraise=True,
        ):
            with attempt:
                response = self._client.embeddings.create(**request)

        data = sorted(response.data, key=lambda item: item.index)
        return [item.embedding for item in data]


def validate_vector(vector: Sequence[float], dimension: int, operation: str = "embed") -> List[float]:
    """
    Check that a vector has the expected length and only finite values.

    Returns:
        The vector as a plain list of floats

    Raises:
        EmbeddingError: on wrong shape, wrong dimension, or NaN/inf entries
    """
    try:
        arr = np.asarray(vector, dtype=np.float64)
    except (TypeError, ValueError) as e:
        raise EmbeddingError(f"Embedding is not numeric: {e}", operation=operation) from e

    if arr.ndim != 1 or arr.shape[0] != dimension:
        raise EmbeddingError(
            f"Embedding has shape {arr.shape}, expected ({dimension},)",
            operation=operation,
            details={"expected_dimension": dimension}
        )
    if not np.isfinite(arr).all():
        raise EmbeddingError("Embedding contains non-finite values", operation=operation)

    return arr.tolist()


class EmbeddingClient:
    """
    Converts ordered text sequences into ordered vectors.

    Inputs are split into batches of ``batch_size``. With ``max_workers`` > 1
    batches are dispatched on a thread pool; each future is tagged with its
    batch index and results are reassembled in index order.
    """

    def __init__(self, provider: EmbeddingProvider, config: Optional[EmbeddingConfig] = None):
        self.provider = provider
        self.config = config or EmbeddingConfig()

    @property
    def dimensions(self) -> int:
        return self.config.dimensions

    def _embed_one_batch(self, batch_index: int, batch: List[str]) -> List[List[float]]:
        operation = "embed_batch"
        try:
            vectors = self.provider.embed_texts(batch)
        except EmbeddingError:
            raise
        except Exception as e:
            raise EmbeddingError(
                f"Embedding provider call failed: {e}",
                operation=operation,
                details={"batch_index": batch_index, "batch_size": len(batch)}
            ) from e

        if vectors is None or len(vectors) != len(batch):
            got = None if vectors is None else len(vectors)
            raise EmbeddingError(
                f"Provider returned {got} vectors for {len(batch)} texts",
                operation=operation,
                details={"batch_index": batch_index}
            )

        return [validate_vector(v, self.config.dimensions, operation) for v in vectors]

    def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        """Embed texts, returning one vector per text in input order."""
        texts = list(texts)
        if not texts:
            return []

        batch_size = max(1, self.config.batch_size)
        batches = [texts[i:i + batch_size] for i in range(0, len(texts), batch_size)]
        results: List[Optional[List[List[float]]]] = [None] * len(batches)

        if self.config.max_workers <= 1 or len(batches) == 1:
            for batch_index, batch in enumerate(batches):
                logger.info(f"Processing embedding batch {batch_index + 1}/{len(batches)}: {len(batch)} texts")
                results[batch_index] = self._embed_one_batch(batch_index, batch)
        else:
            workers = min(self.config.max_workers, len(batches))
            logger.info(f"Dispatching {len(batches)} embedding batches on {workers} workers")
            with ThreadPoolExecutor(max_workers=workers) as pool:
                futures: Dict = {
                    pool.submit(self._embed_one_batch, batch_index, batch): batch_index
                    for batch_index, batch in enumerate(batches)
                }
                try:
                    for future in as_completed(futures):
                        results[futures[future]] = future.result()
                except BaseException:
                    for future in futures:
                        future.cancel()
                    raise

        vectors = [vector for batch_vectors in results for vector in batch_vectors]
        logger.info(f"Generated {len(vectors)} embeddings")
        return vectors

    def embed_query(self, text: str) -> List[float]:
        """Embed a single query string."""
        return self.embed_batch([text])[0]


def get_embedding_client(config: Optional[EmbeddingConfig] = None) -> EmbeddingClient:
    """
    Build an embedding client for the configured provider.

    Args:
        config: Embedding configuration (read from environment when omitted)
    """
    if config is None:
        config = get_embedding_config()

    if config.provider == "local":
        from .local_embeddings import LocalEmbeddingProvider
        provider: EmbeddingProvider = LocalEmbeddingProvider(config.model)
    elif config.provider == "openai":
        provider = OpenAIEmbeddingProvider(config)
    else:
        raise EmbeddingError(f"Unknown embedding provider: {config.provider!r}", operation="embed")

    return EmbeddingClient(provider, config)
