"""PDF ingest pipeline: fetch -> checksum -> parse (PyMuPDF) -> chunk -> embed -> persist (PG)."""

import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from pydantic import BaseModel

from .checksum import compute_checksum
from .chunk import DEFAULT_CHUNK_SIZE, DEFAULT_OVERLAP, estimate_tokens, split_into_chunks, validate_chunk_params
from .config import env_float, env_int
from .embed import EmbeddingClient, get_embedding_client
from .logging_config import get_audit_logger, log_ingestion_event
from .pdf import DEFAULT_FETCH_TIMEOUT, extract_pages, fetch_pdf
from .store import ChunkRow, DocumentStore, get_document_store

logger = logging.getLogger(__name__)


@dataclass
class IngestConfig:
    """Configuration for document ingestion."""
    chunk_size: int = DEFAULT_CHUNK_SIZE
    overlap: int = DEFAULT_OVERLAP
    fetch_timeout: float = DEFAULT_FETCH_TIMEOUT


def get_ingest_config() -> IngestConfig:
    """Get ingestion configuration from environment."""
    return IngestConfig(
        chunk_size=env_int("CHUNK_SIZE", DEFAULT_CHUNK_SIZE),
        overlap=env_int("CHUNK_OVERLAP", DEFAULT_OVERLAP),
        fetch_timeout=env_float("FETCH_TIMEOUT", DEFAULT_FETCH_TIMEOUT),
    )


class IngestResult(BaseModel):
    """Outcome of one ingestion call."""
    document_id: str
    chunk_count: int
    skipped: bool = False


class PageChunk(BaseModel):
    """A chunk of page text before it is embedded."""
    chunk_id: int
    page: int
    content: str


def chunk_pages(pages: List[Tuple[int, str]], chunk_size: int, overlap: int) -> List[PageChunk]:
    """
    Chunk each page independently, numbering chunks across the whole document.

    No chunk spans two pages; chunk_id increases in page order, then
    offset order within a page.
    """
    chunks: List[PageChunk] = []
    for page_number, text in pages:
        for content in split_into_chunks(text, chunk_size, overlap):
            chunks.append(PageChunk(chunk_id=len(chunks), page=page_number, content=content))
    return chunks


class IngestionPipeline:
    """
    Turns a PDF URL into stored, embedded chunks.

    A document whose downloaded bytes hash to the stored checksum is
    skipped without parsing, embedding or writing anything.
    """

    def __init__(
        self,
        store: DocumentStore,
        embedder: EmbeddingClient,
        fetcher: Callable[..., bytes] = fetch_pdf,
        parser: Callable[[bytes], List[Tuple[int, str]]] = extract_pages,
        config: Optional[IngestConfig] = None
    ):
        self.store = store
        self.embedder = embedder
        self.fetcher = fetcher
        self.parser = parser
        self.config = config or IngestConfig()
        self.audit_logger = get_audit_logger("ingest")

    def ingest(
        self,
        url: str,
        chunk_size: Optional[int] = None,
        overlap: Optional[int] = None
    ) -> IngestResult:
        """
        Ingest one PDF.

        Args:
            url: Source URL; also the document's identity in the store
            chunk_size: Characters per chunk (config default when omitted)
            overlap: Characters shared by neighbouring chunks (config default when omitted)

        Returns:
            IngestResult with the document id and number of chunks written

        Raises:
            ValidationError, FetchError, ParseError, EmbeddingError, StorageError
        """
        chunk_size = self.config.chunk_size if chunk_size is None else chunk_size
        overlap = self.config.overlap if overlap is None else overlap
        validate_chunk_params(chunk_size, overlap)

        start_time = time.time()
        logger.info(f"Ingesting PDF: {url}")

        existing = self.store.get_by_source_url(url)
        data = self.fetcher(url, timeout=self.config.fetch_timeout)
        checksum = compute_checksum(data)

        if existing and existing.checksum == checksum:
            logger.info(f"Unchanged checksum for {url}, skipping")
            log_ingestion_event(
                self.audit_logger,
                source_url=url,
                document_id=existing.id,
                checksum=checksum,
                pages=0,
                chunks_created=0,
                skipped=True,
                processing_time_ms=(time.time() - start_time) * 1000
            )
            return IngestResult(document_id=existing.id, chunk_count=0, skipped=True)

        # Checksum is recorded before the chunks are replaced; a failure
        # below leaves the new checksum with the previous chunks.
        document_id = self.store.upsert_document(url, checksum)

        pages = self.parser(data)
        chunks = chunk_pages(pages, chunk_size, overlap)

        if not chunks:
            logger.warning(f"No extractable text in {url}")
        else:
            vectors = self.embedder.embed_batch([c.content for c in chunks])
            rows = [
                ChunkRow(
                    document_id=document_id,
                    chunk_id=chunk.chunk_id,
                    content=chunk.content,
                    tokens=estimate_tokens(chunk.content),
                    embedding=vector,
                    metadata={"page": chunk.page, "source_url": url},
                )
                for chunk, vector in zip(chunks, vectors)
            ]
            self.store.upsert_chunks(rows)

        log_ingestion_event(
            self.audit_logger,
            source_url=url,
            document_id=document_id,
            checksum=checksum,
            pages=len(pages),
            chunks_created=len(chunks),
            skipped=False,
            processing_time_ms=(time.time() - start_time) * 1000
        )
        logger.info(f"Successfully ingested {url}: {len(pages)} pages, {len(chunks)} chunks")
        return IngestResult(document_id=document_id, chunk_count=len(chunks))


def ingest_pdf(
    url: str,
    chunk_size: Optional[int] = None,
    overlap: Optional[int] = None,
    store: Optional[DocumentStore] = None,
    embedder: Optional[EmbeddingClient] = None
) -> IngestResult:
    """
    Ingest a single PDF with components built from environment configuration.

    Args:
        url: Source URL of the PDF
        chunk_size: Characters per chunk
        overlap: Characters of overlap between chunks
        store: Document store (PostgreSQL store when omitted)
        embedder: Embedding client (configured provider when omitted)
    """
    config = get_ingest_config()
    owns_store = store is None
    store = store or get_document_store()
    try:
        pipeline = IngestionPipeline(store, embedder or get_embedding_client(), config=config)
        return pipeline.ingest(url, chunk_size=chunk_size, overlap=overlap)
    finally:
        if owns_store:
            store.close()
