"""Structured logging configuration for pdfqa."""

import logging
from typing import Any, Dict, Optional

import structlog
from structlog.stdlib import LoggerFactory


def configure_logging(log_level: str = "INFO", json_logs: bool = True) -> None:
    """
    Configure stdlib logging and structlog audit logging.

    Audit loggers must be created after this runs; a logger bound earlier
    keeps structlog's default console output and ignores the level.
    """

    # Set log level
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(level=numeric_level)

    # Configure structlog processors
    processors = [
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
    ]

    if json_logs:
        # JSON output for production/audit
        processors.append(structlog.processors.JSONRenderer())
    else:
        # Human-readable for development
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        logger_factory=LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        cache_logger_on_first_use=True,
    )


def get_audit_logger(component: str) -> structlog.BoundLogger:
    """Get a logger with audit context for a specific component."""
    logger = structlog.get_logger(component)
    return logger.bind(component=component, audit=True)


def log_ingestion_event(
    logger: structlog.BoundLogger,
    source_url: str,
    document_id: str,
    checksum: str,
    pages: int,
    chunks_created: int,
    skipped: bool,
    processing_time_ms: float
) -> None:
    """Log document ingestion for audit trail."""
    logger.info(
        "document_skipped" if skipped else "document_ingested",
        source_url=source_url,
        document_id=document_id,
        checksum=checksum,
        pages=pages,
        chunks_created=chunks_created,
        skipped=skipped,
        processing_time_ms=processing_time_ms,
        event_type="document_ingestion"
    )


def log_retrieval_event(
    logger: structlog.BoundLogger,
    question: str,
    top_k: int,
    min_similarity: float,
    results_count: int,
    top_similarity: Optional[float],
    execution_time_ms: float,
    filters_applied: Optional[Dict[str, Any]] = None
) -> None:
    """Log a similarity search with the ranking parameters that produced it."""
    logger.info(
        "retrieval_completed",
        question=question,
        top_k=top_k,
        min_similarity=min_similarity,
        results_count=results_count,
        top_similarity=top_similarity,
        execution_time_ms=execution_time_ms,
        filters_applied=filters_applied or {},
        event_type="retrieval"
    )
