"""Cross-encoder reranking.

Provides:
- rerank: indices of the top-N passages for a query, most relevant first.
- _load_model: lazy-load a sentence-transformers CrossEncoder for local reranking.

RERANKER_BACKEND selects between the HTTP reranker of the model backend
("http", the default) and an in-process cross-encoder ("local").
"""
from typing import List, Optional, Sequence, Tuple

from docsrag.backend import ModelBackend, get_backend
from docsrag.config import settings

_model = None  # lazy-loaded to avoid cold start cost


def _load_model():
    """Load and cache the cross-encoder reranker model.

    Returns:
        Any: A sentence-transformers CrossEncoder instance.
    """
    global _model
    if _model is not None:
        return _model
    from sentence_transformers.cross_encoder import CrossEncoder

    _model = CrossEncoder(settings.RERANKER_MODEL, trust_remote_code=True)
    return _model


def _rerank_local(query: str, passages: Sequence[str], top_n: int) -> List[int]:
    model = _load_model()
    pairs: List[Tuple[str, str]] = [(query, p) for p in passages]
    scores: List[float] = model.predict(pairs, convert_to_numpy=True).tolist()
    order = sorted(range(len(passages)), key=lambda i: scores[i], reverse=True)
    return order[:top_n]


def rerank(
    query: str,
    passages: Sequence[str],
    top_n: int,
    backend: Optional[ModelBackend] = None,
) -> List[int]:
    """Return indices of the ``top_n`` passages most relevant to ``query``.

    Args:
        query: The user query.
        passages: Candidate passage texts.
        top_n: Maximum number of indices to return.
        backend: Model backend for HTTP reranking; defaults to the shared one.

    Returns:
        List[int]: Indices into ``passages``, most relevant first.
    """
    if not passages or top_n < 1:
        return []
    top_n = min(top_n, len(passages))
    if settings.RERANKER_BACKEND == "local":
        return _rerank_local(query, passages, top_n)
    backend = backend or get_backend()
    return backend.rerank(query, passages, top_n)
