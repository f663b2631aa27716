"""Query-time retrieval and answering.

This module implements:
- QueryConfig: validated, immutable per-request query parameters
- find_similar: documents ranked by their best chunk distance
- retrieve_context: nearest chunks -> merged passages -> reranked top passages
- select_passages: rerank merged passages and keep the top ones in relevance order
- build_answer_messages / answer / answer_stream: grounded answer synthesis

Errors propagate to the caller; there is no fallback answer. In the streaming
path, failures after the caller started reading are turned into an error event.
"""
import logging
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Tuple

from sqlalchemy.orm import Session

from docsrag import cache, vectors
from docsrag.backend import ModelBackend
from docsrag.config import settings
from docsrag.embedding import embed_query
from docsrag.errors import InvalidConfiguration, RagError
from docsrag.generation import build_messages, process_user_message, process_user_message_stream
from docsrag.merger import merge_chunks
from docsrag.obs import span
from docsrag.reranker import rerank
from docsrag.types import DocumentHit, MergedPassage, ModelInfo

logger = logging.getLogger(__name__)

MAX_RESULTS = 50


def _check_range(name: str, value: int, low: int = 1, high: int = MAX_RESULTS) -> None:
    if not low <= value <= high:
        raise InvalidConfiguration(f"{name} must be between {low} and {high}, got {value}")


@dataclass(frozen=True)
class QueryConfig:
    """Per-request retrieval parameters.

    Attributes:
        metric: Distance metric name (normalized to its canonical name).
        limit: Documents returned by find_similar.
        top_chunks: Chunks fetched from the vector store before merging.
        top_documents: Passages kept after reranking.
        model_name: Embedding model; None means the default model.
    """
    metric: str = "cosine"
    limit: int = 5
    top_chunks: int = 10
    top_documents: int = 2
    model_name: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "metric", vectors.resolve_metric(self.metric).name)
        _check_range("limit", self.limit)
        _check_range("top_chunks", self.top_chunks)
        _check_range("top_documents", self.top_documents)


def _resolve(db: Session, config: QueryConfig) -> Tuple[ModelInfo, vectors.Metric]:
    metric = vectors.resolve_metric(config.metric)
    model = vectors.get_model(db, config.model_name or settings.DEFAULT_EMBEDDING_MODEL)
    return model, metric


def find_similar(
    db: Session, query: str, config: QueryConfig, backend: Optional[ModelBackend] = None
) -> List[DocumentHit]:
    """Rank documents by the distance of their closest chunk to the query.

    Args:
        db: SQLAlchemy session.
        query: User input text.
        config: Query parameters (metric, limit, model).
        backend: Model backend; defaults to the shared one.

    Returns:
        List[DocumentHit]: Up to ``config.limit`` documents, closest first.
    """
    model, metric = _resolve(db, config)
    key = cache.cache_key("similar", query, model.name, metric.name, config.limit)
    cached = cache.get_cached(key)
    if cached is not None:
        return [DocumentHit(**h) for h in cached]

    with span("rag.embed_query", {"model": model.name}):
        qvec = embed_query(query, model, backend)
    with span("rag.search_documents", {"metric": metric.name, "limit": config.limit}):
        hits = vectors.find_similar_documents(db, qvec, model, metric, config.limit)
    logger.info("Found %d similar documents for %.50s... with %s", len(hits), query, model.name)

    cache.set_cached(key, [h.__dict__ for h in hits])
    return hits


def select_passages(
    query: str,
    passages: List[MergedPassage],
    top_documents: int,
    backend: Optional[ModelBackend] = None,
) -> List[MergedPassage]:
    """Keep the ``top_documents`` passages most relevant to ``query``.

    The returned order is the reranker's (most relevant first), not distance order.
    """
    if not passages:
        return []
    indices = rerank(query, [p.text for p in passages], min(top_documents, len(passages)), backend)
    return [passages[i] for i in indices]


def retrieve_context(
    db: Session, query: str, config: QueryConfig, backend: Optional[ModelBackend] = None
) -> List[MergedPassage]:
    """Fetch, merge and rerank the passages that ground an answer.

    Returns:
        List[MergedPassage]: At most ``config.top_documents`` passages, most relevant first.
    """
    model, metric = _resolve(db, config)
    with span("rag.embed_query", {"model": model.name}):
        qvec = embed_query(query, model, backend)
    with span("rag.search_chunks", {"metric": metric.name, "limit": config.top_chunks}):
        chunks = vectors.find_similar_chunks(db, qvec, model, metric, config.top_chunks)
    with span("rag.merge", {"chunks": len(chunks)}):
        merged = merge_chunks(chunks)
    with span("rag.rerank", {"passages": len(merged), "top_n": config.top_documents}):
        selected = select_passages(query, merged, config.top_documents, backend)
    logger.info(
        "Context for %.50s...: %d chunks -> %d passages -> %d selected",
        query, len(chunks), len(merged), len(selected),
    )
    return selected


def build_answer_messages(
    db: Session, query: str, config: QueryConfig, backend: Optional[ModelBackend] = None
) -> List[Dict[str, str]]:
    """Retrieve context for ``query`` and compose the chat messages."""
    passages = retrieve_context(db, query, config, backend)
    return build_messages(query, [p.text for p in passages])


def answer(
    db: Session, query: str, config: QueryConfig, backend: Optional[ModelBackend] = None
) -> str:
    """Answer ``query`` from retrieved documentation in one response."""
    messages = build_answer_messages(db, query, config, backend)
    with span("rag.chat", {"stream": False}):
        return process_user_message(messages, backend)


def answer_stream(
    db: Session, query: str, config: QueryConfig, backend: Optional[ModelBackend] = None
) -> Iterator[Dict]:
    """Answer ``query`` as a stream of ``token`` events ending in ``done`` or ``error``.

    Retrieval runs lazily when the caller starts consuming, so failures there
    also arrive as a single ``error`` event.
    """
    try:
        messages = build_answer_messages(db, query, config, backend)
    except RagError as exc:
        logger.error("Retrieval for streamed answer failed: %s", exc.message)
        yield {"error": exc.message}
        return
    except Exception:
        # the response has already started streaming
        logger.exception("Retrieval for streamed answer failed")
        yield {"error": "Document search failed"}
        return
    yield from process_user_message_stream(messages, backend)
