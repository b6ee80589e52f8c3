"""Local sentence-transformers embeddings for air-gapped environments."""

import logging
from typing import Any, Dict, List, Optional

from .errors import EmbeddingError

logger = logging.getLogger(__name__)

try:
    from sentence_transformers import SentenceTransformer
    SENTENCE_TRANSFORMERS_AVAILABLE = True
except ImportError:
    SENTENCE_TRANSFORMERS_AVAILABLE = False
    logger.warning("sentence-transformers not available. Install with: pip install 'pdfqa[local]'")


class LocalEmbeddingProvider:
    """Embedding provider backed by a locally loaded sentence-transformers model."""

    def __init__(self, model_name: str = "all-mpnet-base-v2", device: Optional[str] = None):
        """
        Args:
            model_name: Name of the sentence-transformers model to use
            device: Torch device string; library default when omitted
        """
        self.model_name = model_name
        self.device = device
        self._model = None
        self.model_dimension: Optional[int] = None

    def _load_model(self):
        if not SENTENCE_TRANSFORMERS_AVAILABLE:
            raise EmbeddingError(
                "sentence-transformers not available; install the 'local' extra",
                operation="embed"
            )
        if self._model is None:
            logger.info(f"Loading local embedding model: {self.model_name}")
            self._model = SentenceTransformer(self.model_name, device=self.device)
            self.model_dimension = self._model.get_sentence_embedding_dimension()
            logger.info(f"Loaded model with dimension: {self.model_dimension}")
        return self._model

    def embed_texts(self, texts: List[str]) -> List[List[float]]:
        model = self._load_model()
        embeddings = model.encode(texts, convert_to_numpy=True, show_progress_bar=False)
        return [emb.tolist() for emb in embeddings]

    def get_model_info(self) -> Dict[str, Any]:
        """Get information about the configured model."""
        return {
            "model_name": self.model_name,
            "dimension": self.model_dimension,
            "loaded": self._model is not None,
            "available": SENTENCE_TRANSFORMERS_AVAILABLE,
        }
