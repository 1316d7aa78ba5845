"""Boundary-aware text chunking for Chinese and Latin text."""

import unicodedata
from typing import List, NamedTuple, Optional

from .config import (
    MAX_CHUNKS_PER_DOCUMENT,
    WARN_CHUNKS_PER_DOCUMENT,
    CJK_SAFE_CHARS,
    LATIN_SAFE_CHARS,
)
from .errors import ChunkCountExceeded
from ..util.logging import logger

# Sentence terminators: CJK and Latin period, exclamation and question marks,
# newline, CJK and Latin semicolon.
SPLIT_CHARS = ("。", ".", "！", "!", "？", "?", "\n", "；", ";")


class TextChunk(NamedTuple):
    """A chunk produced by chunk_text; start/end are code point offsets."""
    index: int
    text: str
    start: int
    end: int
    token_count: int


def estimate_tokens(text: str) -> int:
    """Rough token estimate: one token per four UTF-8 bytes."""
    return (len(text.encode("utf-8")) + 3) // 4


def find_best_split_point(window: str, chunk_size: int) -> Optional[int]:
    """
    Find where to cut a window so that it ends on a sentence boundary.

    For each terminator the right-most occurrence is considered; it is valid
    only past chunk_size // 3. The right-most valid position wins.

    Returns:
        Offset one past the chosen terminator, or None when no boundary qualifies
    """
    min_split = chunk_size // 3
    best = -1

    for char in SPLIT_CHARS:
        pos = window.rfind(char)
        if pos > min_split and pos > best:
            best = pos

    if best < 0:
        return None
    return best + 1


def _safe_boundary(text: str, pos: int, floor: int) -> int:
    """Move pos left so it never separates a base character from its combining marks."""
    while floor < pos < len(text) and unicodedata.combining(text[pos]):
        pos -= 1
    return pos


def chunk_text(content: str, chunk_size: int, overlap: int) -> List[TextChunk]:
    """
    Split content into overlapping chunks, preferring sentence boundaries.

    Args:
        content: Document text
        chunk_size: Window size in characters
        overlap: Characters shared between consecutive windows (< chunk_size)

    Returns:
        Chunks in document order with 0-based indexes; whitespace-only
        windows are dropped and the rest are trimmed.
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    if overlap < 0 or overlap >= chunk_size:
        raise ValueError("overlap must be >= 0 and smaller than chunk_size")

    if not content:
        return []

    chunks = []
    total = len(content)
    start = 0

    while start < total:
        end = min(start + chunk_size, total)
        split = end

        if end < total:
            best = find_best_split_point(content[start:end], chunk_size)
            if best is not None:
                split = start + best
            split = _safe_boundary(content, split, start)
            if split <= start:
                split = end

        piece = content[start:split]
        stripped = piece.strip()
        if stripped:
            lead = len(piece) - len(piece.lstrip())
            chunk_start = start + lead
            chunks.append(TextChunk(
                index=len(chunks),
                text=stripped,
                start=chunk_start,
                end=chunk_start + len(stripped),
                token_count=estimate_tokens(stripped),
            ))

        if split >= total:
            break

        next_start = split - overlap
        if next_start <= start:
            next_start = split
        start = next_start

    return chunks


def enforce_chunk_limit(chunks: List, limit: int = MAX_CHUNKS_PER_DOCUMENT, warn_at: int = WARN_CHUNKS_PER_DOCUMENT) -> None:
    """Reject documents that produced too many chunks; warn on large ones."""
    count = len(chunks)
    if count > limit:
        raise ChunkCountExceeded(count, limit)
    if count > warn_at:
        logger.warning(f"Large document: {count} chunks (warning threshold {warn_at})")


def contains_cjk(text: str) -> bool:
    """Check for CJK unified ideographs (basic block and extension A)."""
    return any("\u4e00" <= ch <= "\u9fff" or "\u3400" <= ch <= "\u4dbf" for ch in text)


def truncate_for_embedding(text: str, cjk_limit: int = CJK_SAFE_CHARS, latin_limit: int = LATIN_SAFE_CHARS) -> str:
    """Cut text to a character budget approximating the embedding model's token limit."""
    limit = cjk_limit if contains_cjk(text) else latin_limit
    if len(text) > limit:
        return text[:limit]
    return text
