"""Question -> embedding -> similarity search over stored chunks."""

import logging
import time
from dataclasses import dataclass
from typing import List, Optional

from .embed import EmbeddingClient, get_embedding_client, validate_vector
from .errors import ValidationError
from .logging_config import get_audit_logger, log_retrieval_event
from .store import DocumentStore, get_document_store

logger = logging.getLogger(__name__)

DEFAULT_TOP_K = 8
DEFAULT_MIN_SIMILARITY = 0.0


@dataclass
class RetrievedContext:
    """A retrieved chunk as handed to answer generation."""
    content: str
    page: Optional[int]
    similarity: float
    source_url: Optional[str]


def validate_retrieval_params(question: str, top_k: int, min_similarity: float) -> str:
    """Return the stripped question, or raise ValidationError."""
    if not isinstance(question, str) or not question.strip():
        raise ValidationError("Missing question", field="question", operation="retrieve")
    if isinstance(top_k, bool) or not isinstance(top_k, int) or top_k < 1:
        raise ValidationError(f"top_k must be a positive integer, got {top_k!r}", field="top_k", operation="retrieve")
    if not -1.0 <= min_similarity <= 1.0:
        raise ValidationError(
            f"min_similarity must be within [-1, 1], got {min_similarity!r}",
            field="min_similarity",
            operation="retrieve"
        )
    return question.strip()


class RetrievalPipeline:
    """Embeds a question and returns the most similar stored chunks."""

    def __init__(self, store: DocumentStore, embedder: EmbeddingClient):
        self.store = store
        self.embedder = embedder
        self.audit_logger = get_audit_logger("retrieve")

    def retrieve(
        self,
        question: str,
        top_k: int = DEFAULT_TOP_K,
        min_similarity: float = DEFAULT_MIN_SIMILARITY,
        *,
        source_url: Optional[str] = None,
        document_id: Optional[str] = None
    ) -> List[RetrievedContext]:
        """
        Find the chunks most similar to a question.

        Args:
            question: Natural-language question
            top_k: Maximum number of contexts to return
            min_similarity: Contexts scoring below this are dropped
            source_url: Restrict the search to the document at this URL
            document_id: Restrict the search to the document with this id

        Returns:
            Contexts sorted by similarity, highest first
        """
        question = validate_retrieval_params(question, top_k, min_similarity)
        start_time = time.time()

        vector = validate_vector(
            self.embedder.embed_query(question),
            self.embedder.dimensions,
            operation="retrieve"
        )

        filters = {k: v for k, v in (("source_url", source_url), ("document_id", document_id)) if v}
        matches = self.store.match_chunks(vector, top_k, min_similarity, **filters)
        contexts = [
            RetrievedContext(
                content=m.content,
                page=m.metadata.get("page"),
                similarity=m.similarity,
                source_url=m.metadata.get("source_url"),
            )
            for m in matches
        ]

        log_retrieval_event(
            self.audit_logger,
            question=question,
            top_k=top_k,
            min_similarity=min_similarity,
            results_count=len(contexts),
            top_similarity=contexts[0].similarity if contexts else None,
            execution_time_ms=(time.time() - start_time) * 1000,
            filters_applied=filters
        )
        logger.info(f"Retrieved {len(contexts)} contexts for question")
        return contexts


def retrieve(
    question: str,
    top_k: int = DEFAULT_TOP_K,
    min_similarity: float = DEFAULT_MIN_SIMILARITY,
    source_url: Optional[str] = None,
    document_id: Optional[str] = None,
    store: Optional[DocumentStore] = None,
    embedder: Optional[EmbeddingClient] = None
) -> List[RetrievedContext]:
    """Retrieve contexts with components built from environment configuration."""
    owns_store = store is None
    store = store or get_document_store()
    try:
        pipeline = RetrievalPipeline(store, embedder or get_embedding_client())
        return pipeline.retrieve(question, top_k, min_similarity, source_url=source_url, document_id=document_id)
    finally:
        if owns_store:
            store.close()
