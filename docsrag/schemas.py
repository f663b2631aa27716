"""Pydantic request/response schemas for the API.

Defines the public contracts used by the FastAPI endpoints:
- FindSimilarRequest / SimilarDocument: document search.
- AskRequest / AskResponse: question answering (streaming or not).
- ParseDocsRequest / ParseDocsResponse: ingestion trigger.

Ranges mirror the checks in docsrag.rag.QueryConfig and
docsrag.ingestion.orchestrator.IngestionConfig.
"""
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from docsrag.config import settings

Metric = Literal["cosine", "euclidean", "l2", "ip", "inner_product"]


class FindSimilarRequest(BaseModel):
    """Request body for document search.

    Attributes:
        input: Query text.
        metric: Distance metric.
        limit: Number of documents to return.
        model_name: Embedding model; the default model when omitted.
    """
    input: str = Field(..., min_length=1, description="Query text")
    metric: Metric = "cosine"
    limit: int = Field(default=5, ge=1, le=50)
    model_name: Optional[str] = None


class SimilarDocument(BaseModel):
    """A document ranked by its closest chunk."""
    title: str
    link: str
    distance: float


class AskRequest(BaseModel):
    """Request body for question answering.

    Attributes:
        input: The user question.
        metric: Distance metric for chunk retrieval.
        top_chunks: Chunks retrieved before merging.
        top_documents: Passages kept after reranking.
        stream: Stream tokens as server-sent events.
        model_name: Embedding model; the default model when omitted.
    """
    input: str = Field(..., min_length=1, description="User question")
    metric: Metric = "cosine"
    top_chunks: int = Field(default=10, ge=1, le=50)
    top_documents: int = Field(default=2, ge=1, le=50)
    stream: bool = True
    model_name: Optional[str] = None


class AskResponse(BaseModel):
    """Non-streaming answer."""
    answer: str


class ParseDocsRequest(BaseModel):
    """Ingestion trigger parameters."""
    delay_ms: int = Field(default_factory=lambda: settings.DEFAULT_DELAY_MS, ge=0, le=10000)
    chunk_size: int = Field(default_factory=lambda: settings.DEFAULT_CHUNK_SIZE, gt=0, le=5000)
    chunk_overlap: int = Field(default_factory=lambda: settings.DEFAULT_CHUNK_OVERLAP, ge=0, lt=1000)
    batch_size: int = Field(default_factory=lambda: settings.DEFAULT_BATCH_SIZE, gt=0, le=64)
    limit: Optional[int] = Field(default=None, gt=0, le=100)
    model_names: Optional[List[str]] = None
    translate_titles: bool = False
    summarize_chunks: bool = False
    wait: bool = False


class IngestResult(BaseModel):
    """Best-effort counts of an ingestion run."""
    success: bool
    total: int
    processed: int = 0
    failed: int = 0
    batches_ok: int = 0
    batches_failed: int = 0
    embeddings_saved: int = 0


class ParseDocsResponse(BaseModel):
    message: str
    result: Optional[IngestResult] = None
