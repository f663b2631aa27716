"""Database ORM models.

Defines the persistent entities of the retrieval pipeline:
- Document: a source page, identified by its link.
- EmbeddingModel: a registered embedding model with its prefixes and dimension.
- Embedding: one chunk vector per (document, model, chunk_index).

Embeddings are owned by both their document and their model and are removed
with either (ON DELETE CASCADE).
"""
import uuid
from datetime import datetime

from pgvector.sqlalchemy import Vector
from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from docsrag.db import Base


def new_id() -> str:
    """Generate a synthetic primary key."""
    return uuid.uuid4().hex


class Document(Base):
    """A documentation page. Re-ingesting the same link keeps the id."""
    __tablename__ = "documents"

    id = Column(String(32), primary_key=True, default=new_id)
    title = Column(String(512), nullable=False)
    translated_title = Column(String(512), nullable=True)
    link = Column(String(1024), nullable=False, unique=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    embeddings = relationship("Embedding", back_populates="document", passive_deletes=True)


class EmbeddingModel(Base):
    """A registered embedding model.

    Prefixes are model-specific instructions prepended to text before
    embedding (queries and documents use different ones).
    """
    __tablename__ = "embedding_models"

    id = Column(String(32), primary_key=True, default=new_id)
    name_in_backend = Column(String(256), nullable=False, unique=True)
    query_prefix = Column(String(256), nullable=False, default="")
    document_prefix = Column(String(256), nullable=False, default="")
    vector_dimension = Column(Integer, nullable=False)

    embeddings = relationship("Embedding", back_populates="model", passive_deletes=True)


class Embedding(Base):
    """Vector for one chunk of one document under one model.

    The vector column is declared without a fixed dimension because each model
    has its own; per-model partial indexes cast to the model's dimension.
    """
    __tablename__ = "embeddings"

    id = Column(String(32), primary_key=True, default=new_id)
    document_id = Column(String(32), ForeignKey("documents.id", ondelete="CASCADE"), nullable=False)
    model_id = Column(String(32), ForeignKey("embedding_models.id", ondelete="CASCADE"), nullable=False)
    chunk_index = Column(Integer, nullable=False)
    vector = Column(Vector(), nullable=False)
    chunk_text = Column(Text, nullable=False)
    display_text = Column(Text, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    document = relationship("Document", back_populates="embeddings")
    model = relationship("EmbeddingModel", back_populates="embeddings")

    __table_args__ = (
        UniqueConstraint("document_id", "model_id", "chunk_index", name="uq_embeddings_doc_model_chunk"),
        Index("idx_embeddings_model", "model_id"),
    )
