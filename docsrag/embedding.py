"""Embedding helpers on top of the model backend.

Provides:
- embed_texts: batch embedding of document chunks with the model's document prefix.
- embed_query: single query embedding with the model's query prefix.
- iter_batches: split a sequence into numbered fixed-size batches.

Both embedding helpers enforce the alignment contract: one vector per input,
each of the model's dimension. A violation raises ProviderContractViolation so
the caller can drop the batch instead of mis-assigning vectors to chunks.
"""
from typing import Iterator, List, Optional, Sequence, Tuple, TypeVar

from docsrag.backend import ModelBackend, get_backend
from docsrag.errors import InvalidConfiguration, ProviderContractViolation
from docsrag.types import ModelInfo

T = TypeVar("T")


def _check_vectors(vectors: List[List[float]], expected: int, model: ModelInfo) -> None:
    if len(vectors) != expected:
        raise ProviderContractViolation(
            f"Mismatch in batch size for {model.name}: expected {expected}, got {len(vectors)}"
        )
    for v in vectors:
        if len(v) != model.dimension:
            raise ProviderContractViolation(
                f"{model.name} returned a {len(v)}-dim vector, expected {model.dimension}"
            )


def embed_texts(
    texts: Sequence[str], model: ModelInfo, backend: Optional[ModelBackend] = None
) -> List[List[float]]:
    """Embed a batch of document texts with one backend call.

    Args:
        texts: Chunk texts to embed (without prefix).
        model: Registered model; its document_prefix is prepended to each text.
        backend: Model backend; defaults to the shared one.

    Returns:
        List[List[float]]: One embedding vector per input text, same order.
    """
    if not texts:
        return []
    backend = backend or get_backend()
    inputs = [model.document_prefix + t for t in texts]
    vectors = backend.embed(inputs, model.name)
    _check_vectors(vectors, len(inputs), model)
    return vectors


def embed_query(
    text: str, model: ModelInfo, backend: Optional[ModelBackend] = None
) -> List[float]:
    """Embed a single query string and return its embedding vector.

    Args:
        text: The query to embed.
        model: Registered model; its query_prefix is prepended.
        backend: Model backend; defaults to the shared one.

    Returns:
        List[float]: The embedding vector for the query.
    """
    backend = backend or get_backend()
    vectors = backend.embed([model.query_prefix + text], model.name)
    _check_vectors(vectors, 1, model)
    return vectors[0]


def iter_batches(items: Sequence[T], batch_size: int) -> Iterator[Tuple[int, Sequence[T]]]:
    """Yield ``(batch_index, batch)`` pairs covering ``items`` in order."""
    if batch_size < 1:
        raise InvalidConfiguration(f"batch_size must be >= 1, got {batch_size}")
    for i, start in enumerate(range(0, len(items), batch_size)):
        yield i, items[start:start + batch_size]
