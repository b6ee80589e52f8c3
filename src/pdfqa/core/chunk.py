"""Deterministic character-window chunking with overlap."""

import math
from typing import List, Tuple

from .errors import ValidationError

DEFAULT_CHUNK_SIZE = 2000  # characters
DEFAULT_OVERLAP = 200


def validate_chunk_params(chunk_size: int, overlap: int) -> None:
    """Reject window parameters that cannot produce a forward-moving split."""
    if isinstance(chunk_size, bool) or not isinstance(chunk_size, int) or chunk_size <= 0:
        raise ValidationError(
            f"chunk_size must be a positive integer, got {chunk_size!r}",
            field="chunk_size",
            operation="chunk"
        )
    if isinstance(overlap, bool) or not isinstance(overlap, int) or overlap < 0:
        raise ValidationError(
            f"overlap must be a non-negative integer, got {overlap!r}",
            field="overlap",
            operation="chunk"
        )
    if overlap >= chunk_size:
        raise ValidationError(
            f"overlap ({overlap}) must be smaller than chunk_size ({chunk_size})",
            field="overlap",
            operation="chunk"
        )


def chunk_spans(
    text: str,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    overlap: int = DEFAULT_OVERLAP
) -> List[Tuple[int, int]]:
    """
    Return the [start, end) windows walked over text.

    The cursor advances to ``end - overlap`` after each window and is
    clamped at 0. Windows are returned before trimming, so blank windows
    are included.
    """
    validate_chunk_params(chunk_size, overlap)

    spans = []
    length = len(text)
    i = 0
    while i < length:
        end = min(i + chunk_size, length)
        spans.append((i, end))
        if end == length:
            break
        i = max(end - overlap, 0)
    return spans


def split_into_chunks(
    text: str,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    overlap: int = DEFAULT_OVERLAP
) -> List[str]:
    """
    Split text into overlapping chunks.

    Args:
        text: Text of a single page
        chunk_size: Window size in characters
        overlap: Characters shared between neighbouring windows

    Returns:
        Trimmed, non-empty chunk strings in left-to-right order
    """
    chunks = []
    for start, end in chunk_spans(text, chunk_size, overlap):
        piece = text[start:end].strip()
        if piece:
            chunks.append(piece)
    return chunks


def estimate_tokens(text: str) -> int:
    """Rough token count: ~4 characters per token."""
    return math.ceil(len(text) / 4)
