"""Process startup helpers shared by the API and the ingestion CLI.

- register_models: get-or-create every configured embedding model and its indexes.
- pull_models_in_background: ask Ollama to pull models without blocking startup.
"""
import logging
import threading
from typing import List, Sequence

from docsrag.backend import ModelBackend
from docsrag.config import EmbeddingModelSpec
from docsrag.db import session_scope
from docsrag.errors import RagError
from docsrag.types import ModelInfo
from docsrag.vectors import ensure_vector_indexes, register_model

logger = logging.getLogger(__name__)


def register_models(specs: Sequence[EmbeddingModelSpec], session_factory=None) -> List[ModelInfo]:
    """Register the configured embedding models and create their vector indexes."""
    registered: List[ModelInfo] = []
    with session_scope(session_factory) as db:
        for spec in specs:
            model = register_model(db, spec)
            ensure_vector_indexes(db, model)
            registered.append(model)
    logger.info("Registered %d embedding models", len(registered))
    return registered


def _pull(backend: ModelBackend, name: str) -> None:
    try:
        backend.pull_model(name)
    except RagError as exc:
        logger.error("Error pulling %s: %s", name, exc.message)


def pull_models_in_background(
    backend: ModelBackend, names: Sequence[str]
) -> List[threading.Thread]:
    """Start one daemon thread per model pull and return the threads."""
    threads: List[threading.Thread] = []
    for name in dict.fromkeys(names):
        logger.info("Run pull for model %s in the background", name)
        t = threading.Thread(target=_pull, args=(backend, name), name=f"pull-{name}", daemon=True)
        t.start()
        threads.append(t)
    return threads
