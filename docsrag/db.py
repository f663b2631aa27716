"""SQLAlchemy engine, sessions and schema bootstrap for the vector store.

- init_db: enable pgvector and create the documents, embedding_models and
  embeddings tables. Per-model ANN indexes are created when a model is
  registered (docsrag.vectors.ensure_vector_indexes), since each model has its
  own vector dimension.
- session_scope: commit-or-rollback unit of work for ingestion and startup code.
- get_db: per-request session for FastAPI handlers.

Sessions do not expire rows on commit, so rows read inside a unit of work can
be handed to worker threads as plain values after it closes.
"""
from contextlib import contextmanager
from typing import Generator, Iterator

from sqlalchemy import create_engine, text
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from docsrag.config import settings

engine = create_engine(settings.DATABASE_URL, pool_pre_ping=True, future=True)
SessionLocal = sessionmaker(
    autocommit=False, autoflush=False, expire_on_commit=False, bind=engine, future=True
)
Base = declarative_base()


def init_db() -> None:
    """Enable the pgvector extension and create missing tables. Idempotent."""
    with engine.begin() as conn:
        conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))

    # models must be imported so their tables are registered on Base
    from docsrag import models  # noqa: F401

    Base.metadata.create_all(bind=engine)


@contextmanager
def session_scope(session_factory=None) -> Iterator[Session]:
    """Open a session, commit when the block succeeds, roll back when it raises.

    Args:
        session_factory: Callable returning a Session; defaults to SessionLocal.
            Tests and background workers pass their own.

    Yields:
        Session: The unit-of-work session; closed on exit either way.
    """
    session = (session_factory or SessionLocal)()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_db() -> Generator:
    """Yield a session for one API request and close it afterwards.

    Handlers that only read never commit; anything they flushed is discarded
    on close.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
