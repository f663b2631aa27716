"""Vector repository over PostgreSQL + pgvector.

This module implements:
- Metric resolution: cosine / euclidean (l2) / inner product to pgvector operators
- save_embedding: upsert keyed by (document_id, model_id, chunk_index), retried with tenacity on
  synthetic-id collisions
- find_similar_chunks / find_similar_documents: metric-parameterized nearest
  neighbor queries, at chunk or document granularity
- prune_embeddings / discard_embeddings: removal of stale chunk indices after
  re-chunking, and of the indices a failed batch should have overwritten
- Model registry: atomic get-or-create of embedding models and their per-model
  HNSW indexes

Distance operators come only from the fixed METRICS table; the query vector is
always a bound parameter.
"""
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Sequence

from sqlalchemy import delete, select, text
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from tenacity import Retrying, before_sleep_log, retry_if_exception_type, stop_after_attempt

from docsrag.config import EmbeddingModelSpec
from docsrag.errors import InvalidConfiguration, NotFound, UnsupportedMetric
from docsrag.models import Embedding, EmbeddingModel, new_id
from docsrag.types import DocumentHit, ModelInfo, RetrievedChunk

logger = logging.getLogger(__name__)

# pgvector HNSW indexes support at most 2000 dimensions for the vector type
MAX_INDEXED_DIMENSION = 2000


@dataclass(frozen=True)
class Metric:
    """A distance metric and the pgvector operator/opclass implementing it."""
    name: str
    operator: str
    opclass: str


COSINE = Metric("cosine", "<=>", "vector_cosine_ops")
EUCLIDEAN = Metric("euclidean", "<->", "vector_l2_ops")
INNER_PRODUCT = Metric("inner_product", "<#>", "vector_ip_ops")

METRICS: Dict[str, Metric] = {
    "cosine": COSINE,
    "euclidean": EUCLIDEAN,
    "l2": EUCLIDEAN,
    "inner_product": INNER_PRODUCT,
    "ip": INNER_PRODUCT,
}


def resolve_metric(name: str) -> Metric:
    """Map a metric name to its pgvector operator.

    Args:
        name: One of cosine, euclidean, l2, inner_product, ip (case-insensitive).

    Returns:
        Metric: The resolved metric.

    Raises:
        UnsupportedMetric: For any other name.
    """
    metric = METRICS.get((name or "").strip().lower())
    if metric is None:
        raise UnsupportedMetric(name)
    return metric


def _vector_literal(vec: Sequence[float]) -> str:
    return "[" + ",".join(repr(float(x)) for x in vec) + "]"


def _dimension(model: ModelInfo) -> int:
    dim = int(model.dimension)
    if dim < 1:
        raise InvalidConfiguration(f"Model {model.name} has invalid dimension {dim}")
    return dim


def _check_query_vector(query_vector: Sequence[float], model: ModelInfo) -> int:
    dim = _dimension(model)
    if len(query_vector) != dim:
        raise InvalidConfiguration(
            f"Query vector has {len(query_vector)} dimensions, {model.name} uses {dim}"
        )
    return dim


# ----------------------------------------------------------------------
# Writes
# ----------------------------------------------------------------------


def _upsert_embedding(
    db: Session,
    document_id: str,
    model_id: str,
    chunk_index: int,
    values: List[float],
    text_: str,
    display_text: str,
) -> Embedding:
    # a fresh synthetic id per attempt; the savepoint keeps the outer transaction usable
    ins = insert(Embedding).values(
        id=new_id(),
        document_id=document_id,
        model_id=model_id,
        chunk_index=chunk_index,
        vector=values,
        chunk_text=text_,
        display_text=display_text,
        updated_at=datetime.utcnow(),
    )
    stmt = ins.on_conflict_do_update(
        constraint="uq_embeddings_doc_model_chunk",
        set_={
            "vector": ins.excluded.vector,
            "chunk_text": ins.excluded.chunk_text,
            "display_text": ins.excluded.display_text,
            "updated_at": ins.excluded.updated_at,
        },
    ).returning(Embedding)
    with db.begin_nested():
        return db.scalars(stmt, execution_options={"populate_existing": True}).one()


def save_embedding(
    db: Session,
    document_id: str,
    model_id: str,
    chunk_index: int,
    vector: Sequence[float],
    text_: str,
    display_text: str,
    attempts: int = 3,
) -> Embedding:
    """Insert or update the embedding of one chunk.

    The row is keyed by (document_id, model_id, chunk_index); saving the same
    key again overwrites vector and texts. Each attempt runs in a savepoint so
    a failed attempt does not poison the surrounding transaction.

    Args:
        db: SQLAlchemy session.
        document_id: Owning document id.
        model_id: Owning model id.
        chunk_index: Chunk position within the document.
        vector: Embedding vector.
        text_: Full chunk text (with overlap) that was embedded.
        display_text: Chunk text without overlap.
        attempts: Tries before an IntegrityError is re-raised.

    Returns:
        Embedding: The stored row.

    Raises:
        IntegrityError: When every attempt collided.
    """
    retrying = Retrying(
        retry=retry_if_exception_type(IntegrityError),
        stop=stop_after_attempt(max(1, attempts)),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    values = [float(x) for x in vector]
    return retrying(_upsert_embedding, db, document_id, model_id, chunk_index, values, text_, display_text)


def prune_embeddings(db: Session, document_id: str, model_id: str, keep_below: int) -> int:
    """Delete embeddings of a document/model pair with chunk_index >= keep_below.

    Returns:
        int: Number of deleted rows.
    """
    result = db.execute(
        delete(Embedding).where(
            Embedding.document_id == document_id,
            Embedding.model_id == model_id,
            Embedding.chunk_index >= keep_below,
        )
    )
    return int(result.rowcount or 0)


def discard_embeddings(db: Session, document_id: str, model_id: str, chunk_indexes: Sequence[int]) -> int:
    """Delete the embeddings at the given chunk indices of a document/model pair.

    Used when a batch could not be stored, so rows from an earlier chunking do
    not survive next to the new ones.
    """
    if not chunk_indexes:
        return 0
    result = db.execute(
        delete(Embedding).where(
            Embedding.document_id == document_id,
            Embedding.model_id == model_id,
            Embedding.chunk_index.in_(list(chunk_indexes)),
        )
    )
    return int(result.rowcount or 0)


# ----------------------------------------------------------------------
# Reads
# ----------------------------------------------------------------------


def find_similar_chunks(
    db: Session,
    query_vector: Sequence[float],
    model: ModelInfo,
    metric: Metric,
    limit: int,
) -> List[RetrievedChunk]:
    """Nearest chunks to ``query_vector`` among the model's embeddings.

    Args:
        db: SQLAlchemy session.
        query_vector: Query embedding of the model's dimension.
        model: Model whose embeddings are searched.
        metric: Resolved distance metric.
        limit: Maximum number of chunks.

    Returns:
        List[RetrievedChunk]: Ascending by distance. Tie order is unspecified.
    """
    dim = _check_query_vector(query_vector, model)
    sql = text(
        f"""
        SELECT e.chunk_index, e.chunk_text, e.display_text, e.document_id,
            ((e.vector::vector({dim})) {metric.operator} CAST(:qvec AS vector({dim}))) AS distance
        FROM embeddings e
        WHERE e.model_id = :model_id
        ORDER BY (e.vector::vector({dim})) {metric.operator} CAST(:qvec AS vector({dim}))
        LIMIT :limit
        """
    )
    rows = db.execute(
        sql, {"qvec": _vector_literal(query_vector), "model_id": model.id, "limit": limit}
    ).mappings().all()
    return [
        RetrievedChunk(
            chunk_index=int(r["chunk_index"]),
            chunk_text=r["chunk_text"],
            display_text=r["display_text"],
            document_id=r["document_id"],
            distance=float(r["distance"]),
        )
        for r in rows
    ]


def find_similar_documents(
    db: Session,
    query_vector: Sequence[float],
    model: ModelInfo,
    metric: Metric,
    limit: int,
) -> List[DocumentHit]:
    """Nearest documents, each scored by its best chunk (MIN distance).

    Returns:
        List[DocumentHit]: Ascending by distance, at most ``limit`` documents.
    """
    dim = _check_query_vector(query_vector, model)
    sql = text(
        f"""
        SELECT d.title, d.link,
            MIN((e.vector::vector({dim})) {metric.operator} CAST(:qvec AS vector({dim}))) AS min_distance
        FROM embeddings e
        INNER JOIN documents d ON e.document_id = d.id
        WHERE e.model_id = :model_id
        GROUP BY d.id, d.title, d.link
        ORDER BY min_distance ASC
        LIMIT :limit
        """
    )
    rows = db.execute(
        sql, {"qvec": _vector_literal(query_vector), "model_id": model.id, "limit": limit}
    ).mappings().all()
    return [
        DocumentHit(title=r["title"], link=r["link"], distance=float(r["min_distance"]))
        for r in rows
    ]


# ----------------------------------------------------------------------
# Model registry
# ----------------------------------------------------------------------


def to_model_info(row: EmbeddingModel) -> ModelInfo:
    return ModelInfo(
        id=row.id,
        name=row.name_in_backend,
        dimension=row.vector_dimension,
        query_prefix=row.query_prefix or "",
        document_prefix=row.document_prefix or "",
    )


def register_model(db: Session, spec: EmbeddingModelSpec) -> ModelInfo:
    """Get-or-create a model record in one statement.

    Concurrent registrations of the same name resolve to the same row. Prefixes
    are refreshed from ``spec``; the stored dimension never changes.

    Raises:
        InvalidConfiguration: If the stored dimension differs from ``spec``.
    """
    ins = insert(EmbeddingModel).values(
        id=new_id(),
        name_in_backend=spec.name,
        query_prefix=spec.query_prefix,
        document_prefix=spec.document_prefix,
        vector_dimension=spec.dimension,
    )
    stmt = ins.on_conflict_do_update(
        index_elements=[EmbeddingModel.name_in_backend],
        set_={
            "query_prefix": ins.excluded.query_prefix,
            "document_prefix": ins.excluded.document_prefix,
        },
    ).returning(EmbeddingModel)
    row = db.scalars(stmt, execution_options={"populate_existing": True}).one()
    if row.vector_dimension != spec.dimension:
        raise InvalidConfiguration(
            f"Model {spec.name} is stored with dimension {row.vector_dimension}, "
            f"configured as {spec.dimension}; re-embedding requires a new model name"
        )
    return to_model_info(row)


def get_model(db: Session, name: str) -> ModelInfo:
    """Look up a registered model by backend name.

    Raises:
        NotFound: If the model was never registered.
    """
    row = db.execute(
        select(EmbeddingModel).where(EmbeddingModel.name_in_backend == name)
    ).scalar_one_or_none()
    if row is None:
        raise NotFound(f"Model {name!r} is not registered")
    return to_model_info(row)


def list_models(db: Session) -> List[ModelInfo]:
    """All registered models, ordered by name."""
    rows = db.execute(select(EmbeddingModel).order_by(EmbeddingModel.name_in_backend)).scalars().all()
    return [to_model_info(r) for r in rows]


def ensure_vector_indexes(db: Session, model: ModelInfo) -> List[str]:
    """Create the model's partial HNSW indexes, one per metric, if missing.

    Each index covers only the model's rows and casts the vector to the
    model's dimension, matching the expressions used by the search queries.

    Returns:
        List[str]: Names of the indexes ensured (empty if the dimension is too large).
    """
    dim = _dimension(model)
    if not re.fullmatch(r"[0-9a-f]{32}", model.id):
        raise InvalidConfiguration(f"Unexpected model id format: {model.id!r}")
    if dim > MAX_INDEXED_DIMENSION:
        logger.warning("Model %s has %d dims; skipping HNSW indexes", model.name, dim)
        return []

    names: List[str] = []
    for metric in (COSINE, EUCLIDEAN, INNER_PRODUCT):
        name = f"idx_emb_{model.id[:12]}_{metric.name}"
        db.execute(
            text(
                f"""
                CREATE INDEX IF NOT EXISTS {name}
                ON embeddings USING hnsw ((vector::vector({dim})) {metric.opclass})
                WHERE model_id = '{model.id}'
                """
            )
        )
        names.append(name)
    logger.info("Ensured %d vector indexes for model %s", len(names), model.name)
    return names
