"""Token-aware text chunking with overlap.

Provides:
- get_encoding: cached tiktoken encoding lookup.
- chunk_text: split text into overlapping token windows.

Chunk boundaries are computed on token ids rather than characters, so they are
stable across embedding models that share a tokenizer family.
"""
from functools import lru_cache
from typing import List, Optional

import tiktoken

from docsrag.errors import InvalidConfiguration
from docsrag.types import Chunk


@lru_cache(maxsize=8)
def get_encoding(name: str) -> "tiktoken.Encoding":
    """Return a cached tiktoken encoding by name (e.g. ``cl100k_base``)."""
    return tiktoken.get_encoding(name)


def chunk_text(
    text: str,
    chunk_size: int,
    overlap: int,
    document_id: Optional[str] = None,
    encoding: Optional["tiktoken.Encoding"] = None,
) -> List[Chunk]:
    """Split text into overlapping token windows.

    Windows start every ``chunk_size - overlap`` tokens. Each chunk's
    ``full_text`` is the whole window; ``display_text`` drops the first
    ``overlap`` tokens for every chunk but the first, so concatenating the
    display texts in index order reproduces the input. The last window may be
    shorter than ``chunk_size``.

    Args:
        text: Input text.
        chunk_size: Window size in tokens (>= 1).
        overlap: Tokens shared with the previous window (0 <= overlap < chunk_size).
        document_id: Optional owning document id stamped on every chunk.
        encoding: tiktoken encoding; defaults to ``cl100k_base``.

    Returns:
        List[Chunk]: Chunks with chunk_index 0..n-1. Empty for empty input.

    Raises:
        InvalidConfiguration: If the size/overlap pair leaves no forward step.
    """
    if chunk_size < 1:
        raise InvalidConfiguration(f"chunk_size must be >= 1, got {chunk_size}")
    if overlap < 0:
        raise InvalidConfiguration(f"overlap must be >= 0, got {overlap}")
    step = chunk_size - overlap
    if step < 1:
        raise InvalidConfiguration(
            f"overlap ({overlap}) must be smaller than chunk_size ({chunk_size})"
        )
    if not text:
        return []

    enc = encoding or get_encoding("cl100k_base")
    tokens = enc.encode(text)
    chunks: List[Chunk] = []
    pos = 0
    n = len(tokens)
    while pos < n:
        window = tokens[pos:min(pos + chunk_size, n)]
        index = len(chunks)
        display = window if index == 0 else window[overlap:]
        chunks.append(
            Chunk(
                chunk_index=index,
                full_text=enc.decode(window),
                display_text=enc.decode(display),
                document_id=document_id,
            )
        )
        pos += step
    return chunks
