"""Ingestion orchestrator: discover -> upsert -> chunk -> embed -> persist.

Main entry point:
- collect_embeddings: run one ingestion pass and return an IngestSummary.

Failures are contained: a batch that fails (provider error, count mismatch) is
recorded as a BatchResult with an ErrorKind and skipped, a document that fails
is recorded and the run continues with the next one. Details go to the log;
the summary only carries counts.

Documents are processed concurrently up to IngestionConfig.concurrency; the
batches of one document/model pair run sequentially so batch i always maps to
chunks [i*batch_size, (i+1)*batch_size).
"""
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Sequence, Tuple

from sqlalchemy.exc import SQLAlchemyError

from docsrag import documents, vectors
from docsrag.backend import ModelBackend, get_backend
from docsrag.chunking import chunk_text, get_encoding
from docsrag.config import settings
from docsrag.db import session_scope
from docsrag.embedding import embed_texts, iter_batches
from docsrag.errors import (
    InvalidConfiguration,
    NotFound,
    ProviderContractViolation,
    RagError,
    TransientProviderError,
)
from docsrag.generation import summarize_chunk, translate_text
from docsrag.ingestion.sources import DocumentSource, HelpContentsSource, SourceDocument
from docsrag.types import Chunk, ModelInfo

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IngestionConfig:
    """Validated parameters of one ingestion run.

    Attributes:
        delay_ms: Pause after each document, in [0, 10000].
        chunk_size: Tokens per chunk, in (0, 5000].
        chunk_overlap: Tokens shared by consecutive chunks, in [0, 1000) and < chunk_size.
        batch_size: Chunks per embedding call, in (0, 64].
        model_names: Allow-list of model names; None embeds with every registered model.
        limit: Maximum number of discovered documents to process, in (0, 100].
        translate_titles: Store an English translation of each title.
        summarize_chunks: Prepend a generated summary to each chunk before embedding.
        concurrency: Documents processed in parallel, in [1, 16].
        encoding: tiktoken encoding used for chunking.
    """
    delay_ms: int = 1000
    chunk_size: int = 1500
    chunk_overlap: int = 300
    batch_size: int = 16
    model_names: Optional[Tuple[str, ...]] = None
    limit: Optional[int] = None
    translate_titles: bool = False
    summarize_chunks: bool = False
    concurrency: int = 1
    encoding: str = "cl100k_base"

    def __post_init__(self) -> None:
        if not 0 <= self.delay_ms <= 10000:
            raise InvalidConfiguration("delay_ms must be between 0 and 10000")
        if not 0 < self.chunk_size <= 5000:
            raise InvalidConfiguration("chunk_size must be between 1 and 5000")
        if not 0 <= self.chunk_overlap < 1000:
            raise InvalidConfiguration("chunk_overlap must be between 0 and 999")
        if self.chunk_overlap >= self.chunk_size:
            raise InvalidConfiguration("chunk_overlap must be smaller than chunk_size")
        if not 0 < self.batch_size <= 64:
            raise InvalidConfiguration("batch_size must be between 1 and 64")
        if self.limit is not None and not 0 < self.limit <= 100:
            raise InvalidConfiguration("limit must be between 1 and 100")
        if not 1 <= self.concurrency <= 16:
            raise InvalidConfiguration("concurrency must be between 1 and 16")
        if self.model_names is not None:
            object.__setattr__(self, "model_names", tuple(self.model_names))


class ErrorKind(str, Enum):
    CONTRACT = "provider_contract_violation"
    TRANSIENT = "transient_provider_error"
    STORAGE = "storage_error"
    EMPTY = "empty_document"
    UNEXPECTED = "unexpected_error"


@dataclass(frozen=True)
class BatchResult:
    """Outcome of one embedding batch for one model."""
    model: str
    batch_index: int
    size: int
    saved: int = 0
    error: Optional[ErrorKind] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class DocumentResult:
    """Outcome of one document across all models."""
    document_id: str
    title: str
    chunks: int = 0
    batches: List[BatchResult] = field(default_factory=list)
    pruned: int = 0
    error: Optional[ErrorKind] = None


@dataclass(frozen=True)
class IngestSummary:
    """Counts reported to the caller of an ingestion run."""
    success: bool
    total: int
    processed: int = 0
    failed: int = 0
    batches_ok: int = 0
    batches_failed: int = 0
    embeddings_saved: int = 0

    @classmethod
    def from_results(cls, total: int, results: Sequence[DocumentResult]) -> "IngestSummary":
        batches = [b for r in results for b in r.batches]
        return cls(
            success=True,
            total=total,
            processed=sum(1 for r in results if r.error is None),
            failed=sum(1 for r in results if r.error is not None),
            batches_ok=sum(1 for b in batches if b.ok),
            batches_failed=sum(1 for b in batches if not b.ok),
            embeddings_saved=sum(b.saved for b in batches),
        )

    def to_dict(self) -> dict:
        return dict(self.__dict__)


@dataclass(frozen=True)
class _Target:
    document_id: str
    title: str
    href: str


def default_source() -> HelpContentsSource:
    return HelpContentsSource(
        settings.DOCS_BASE_URL, settings.DOCS_CONTENT_URL, timeout=settings.HTTP_TIMEOUT_SECONDS
    )


def select_models(
    registered: Sequence[ModelInfo], allow: Optional[Sequence[str]]
) -> List[ModelInfo]:
    """Filter registered models by an optional allow-list of names.

    Raises:
        NotFound: If nothing is registered or the allow-list matches nothing.
    """
    if not registered:
        raise NotFound("No embedding models are registered")
    if allow is None:
        return list(registered)
    by_name = {m.name: m for m in registered}
    unknown = [n for n in allow if n not in by_name]
    if unknown:
        logger.warning("Ignoring unregistered models: %s", ", ".join(unknown))
    selected = [by_name[n] for n in dict.fromkeys(allow) if n in by_name]
    if not selected:
        raise NotFound(f"None of the requested models are registered: {list(allow)}")
    return selected


def _error_kind(exc: Exception) -> ErrorKind:
    if isinstance(exc, ProviderContractViolation):
        return ErrorKind.CONTRACT
    if isinstance(exc, TransientProviderError):
        return ErrorKind.TRANSIENT
    if isinstance(exc, SQLAlchemyError):
        return ErrorKind.STORAGE
    return ErrorKind.UNEXPECTED


def upsert_documents(
    found: Sequence[SourceDocument], source: DocumentSource, session_factory=None
) -> List[_Target]:
    """Upsert discovered documents; failures are logged and the document skipped."""
    targets: List[_Target] = []
    for doc in found:
        try:
            with session_scope(session_factory) as db:
                row = documents.upsert_document(db, doc.title, source.link_for(doc.href))
                targets.append(_Target(row.id, doc.title, doc.href))
        except SQLAlchemyError:
            logger.exception("Failed to upsert document %s", doc.title)
    return targets


def embed_batch(
    target: _Target,
    model: ModelInfo,
    batch_index: int,
    chunks: Sequence[Chunk],
    inputs: Sequence[str],
    backend: ModelBackend,
    session_factory=None,
    attempts: int = 3,
) -> BatchResult:
    """Embed one batch and persist its vectors.

    The whole batch is skipped when the backend fails or returns a vector
    count that does not match the inputs. Individual save failures are logged
    and do not stop the rest of the batch.
    """
    logger.info(
        "Processing batch %d of %s with %s (%d chunks)", batch_index, target.title, model.name, len(chunks)
    )
    try:
        batch_vectors = embed_texts(inputs, model, backend)
    except RagError as exc:
        logger.error(
            "Skipping batch %d of %s with %s: %s", batch_index, target.title, model.name, exc.message
        )
        return BatchResult(model.name, batch_index, len(chunks), error=_error_kind(exc))

    saved = 0
    try:
        with session_scope(session_factory) as db:
            for chunk, vec in zip(chunks, batch_vectors):
                try:
                    vectors.save_embedding(
                        db,
                        target.document_id,
                        model.id,
                        chunk.chunk_index,
                        vec,
                        chunk.full_text,
                        chunk.display_text,
                        attempts=attempts,
                    )
                    saved += 1
                except SQLAlchemyError:
                    logger.exception(
                        "Failed to save embedding for batch %d, chunk %d", batch_index, chunk.chunk_index
                    )
    except SQLAlchemyError:
        logger.exception("Failed to commit batch %d of %s", batch_index, target.title)
        return BatchResult(model.name, batch_index, len(chunks), error=ErrorKind.STORAGE)

    if saved < len(chunks):
        return BatchResult(model.name, batch_index, len(chunks), saved, ErrorKind.STORAGE)
    return BatchResult(model.name, batch_index, len(chunks), saved)


def _embedding_inputs(
    target: _Target, chunks: Sequence[Chunk], config: IngestionConfig, backend: ModelBackend
) -> List[str]:
    if not config.summarize_chunks:
        return [c.full_text for c in chunks]
    inputs: List[str] = []
    for c in chunks:
        try:
            summary = summarize_chunk(c.full_text, target.title, backend)
        except RagError as exc:
            logger.warning("No summary for chunk %d of %s: %s", c.chunk_index, target.title, exc.message)
            summary = ""
        inputs.append(f"{summary}\n\n{c.full_text}" if summary.strip() else c.full_text)
    return inputs


def _translate_title(target: _Target, backend: ModelBackend, session_factory=None) -> None:
    try:
        translated = translate_text(target.title, backend)
        with session_scope(session_factory) as db:
            documents.add_translated_title(db, target.document_id, translated)
    except (RagError, SQLAlchemyError):
        logger.warning("Could not store translated title for %s", target.title, exc_info=True)


def _discard_batch(
    target: _Target, model: ModelInfo, batch: Sequence[Chunk], session_factory=None
) -> int:
    # rows left at these indices belong to an earlier chunking
    try:
        with session_scope(session_factory) as db:
            return vectors.discard_embeddings(
                db, target.document_id, model.id, [c.chunk_index for c in batch]
            )
    except SQLAlchemyError:
        logger.exception("Failed to discard embeddings of a failed batch of %s for %s", target.title, model.name)
        return 0


def process_document(
    target: _Target,
    models: Sequence[ModelInfo],
    config: IngestionConfig,
    source: DocumentSource,
    backend: ModelBackend,
    session_factory=None,
) -> DocumentResult:
    """Chunk one document and embed it with every selected model."""
    result = DocumentResult(target.document_id, target.title)
    logger.info("Processing document: %s", target.title)
    try:
        text = source.fetch_text(target.href)
    except RagError as exc:
        logger.error("Could not fetch %s: %s", target.title, exc.message)
        result.error = _error_kind(exc)
        return result
    if not text.strip():
        logger.warning("No text extracted for document: %s", target.title)
        result.error = ErrorKind.EMPTY
        return result

    chunks = chunk_text(
        text,
        config.chunk_size,
        config.chunk_overlap,
        document_id=target.document_id,
        encoding=get_encoding(config.encoding),
    )
    result.chunks = len(chunks)
    if config.translate_titles:
        _translate_title(target, backend, session_factory)
    inputs = _embedding_inputs(target, chunks, config, backend)

    for model in models:
        for batch_index, batch in iter_batches(chunks, config.batch_size):
            start = batch_index * config.batch_size
            batch_result = embed_batch(
                target,
                model,
                batch_index,
                batch,
                inputs[start:start + len(batch)],
                backend,
                session_factory,
                attempts=settings.SAVE_RETRY_ATTEMPTS,
            )
            result.batches.append(batch_result)
            if not batch_result.ok:
                result.pruned += _discard_batch(target, model, batch, session_factory)
        try:
            with session_scope(session_factory) as db:
                result.pruned += vectors.prune_embeddings(db, target.document_id, model.id, len(chunks))
        except SQLAlchemyError:
            logger.exception("Failed to prune stale embeddings of %s for %s", target.title, model.name)
    return result


def _process_contained(
    target: _Target,
    models: Sequence[ModelInfo],
    config: IngestionConfig,
    source: DocumentSource,
    backend: ModelBackend,
    session_factory,
    sleep: Callable[[float], None],
) -> DocumentResult:
    try:
        return process_document(target, models, config, source, backend, session_factory)
    except Exception as exc:
        logger.exception("Document %s failed", target.title)
        return DocumentResult(target.document_id, target.title, error=_error_kind(exc))
    finally:
        sleep(config.delay_ms / 1000)


def collect_embeddings(
    config: IngestionConfig,
    source: Optional[DocumentSource] = None,
    backend: Optional[ModelBackend] = None,
    session_factory=None,
    sleep: Callable[[float], None] = time.sleep,
) -> IngestSummary:
    """Run one ingestion pass.

    Args:
        config: Validated run parameters.
        source: Documentation source; defaults to the configured help site.
        backend: Model backend; defaults to the shared one.
        session_factory: Session factory; defaults to docsrag.db.SessionLocal.
        sleep: Delay function, called with seconds after every document.

    Returns:
        IngestSummary: Counts of processed/failed documents and batches.

    Raises:
        NotFound: If no registered model matches the allow-list (nothing is written).
    """
    source = source or default_source()
    backend = backend or get_backend()
    with session_scope(session_factory) as db:
        models = select_models(vectors.list_models(db), config.model_names)
    logger.info("Embedding with models: %s", ", ".join(m.name for m in models))

    try:
        found = source.discover()
    except RagError as exc:
        logger.error("Document discovery failed: %s", exc.message)
        return IngestSummary(success=False, total=0)
    if config.limit is not None:
        found = found[:config.limit]

    targets = upsert_documents(found, source, session_factory)
    with ThreadPoolExecutor(max_workers=config.concurrency) as pool:
        futures = [
            pool.submit(_process_contained, t, models, config, source, backend, session_factory, sleep)
            for t in targets
        ]
        results = [f.result() for f in futures]

    summary = IngestSummary.from_results(len(targets), results)
    logger.info("Collection completed: %s", summary.to_dict())
    return summary
