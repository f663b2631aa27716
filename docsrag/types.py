"""Transient value types passed between pipeline stages.

None of these are persisted directly; rows live in docsrag.models.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple


@dataclass(frozen=True)
class Chunk:
    """A token window of a document's text.

    Attributes:
        chunk_index: 0-based, dense and increasing within one chunking pass.
        full_text: Window text including the lead-in overlap (embedded).
        display_text: Window text without the overlap (shown / merged).
        document_id: Owning document, if known.
    """
    chunk_index: int
    full_text: str
    display_text: str
    document_id: Optional[str] = None


@dataclass(frozen=True)
class RetrievedChunk:
    """One nearest-neighbor hit at chunk granularity."""
    chunk_index: int
    chunk_text: str
    display_text: str
    document_id: str
    distance: float


@dataclass(frozen=True)
class MergedPassage:
    """A run of adjacent retrieved chunks from one document.

    Attributes:
        text: Concatenated display text of the run.
        document_id: Owning document.
        source_chunk_indices: Chunk indices of the run, ascending.
        min_distance: Best (smallest) distance seen in the run.
    """
    text: str
    document_id: str
    source_chunk_indices: Tuple[int, ...]
    min_distance: float


@dataclass(frozen=True)
class DocumentHit:
    """Document-level search result: best chunk distance per document."""
    title: str
    link: str
    distance: float


@dataclass(frozen=True)
class ModelInfo:
    """Snapshot of a registered embedding model, safe to share across threads."""
    id: str
    name: str
    dimension: int
    query_prefix: str = ""
    document_prefix: str = ""
