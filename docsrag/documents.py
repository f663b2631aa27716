"""Document store: upsert and lookup of document metadata.

A document is identified by its link; upserting an existing link refreshes the
title and keeps the id, so embeddings stay attached across re-ingestion.
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.orm import Session

from docsrag.errors import NotFound
from docsrag.models import Document, new_id


def upsert_document(db: Session, title: str, link: str) -> Document:
    """Insert a document or update the title of the existing one with this link.

    Args:
        db: SQLAlchemy session.
        title: Page title.
        link: Absolute page URL (unique key).

    Returns:
        Document: The stored row.
    """
    now = datetime.utcnow()
    ins = insert(Document).values(id=new_id(), title=title, link=link, created_at=now, updated_at=now)
    stmt = ins.on_conflict_do_update(
        index_elements=[Document.link],
        set_={"title": ins.excluded.title, "updated_at": ins.excluded.updated_at},
    ).returning(Document)
    return db.scalars(stmt, execution_options={"populate_existing": True}).one()


def find_by_link(db: Session, link: str) -> Optional[Document]:
    """Return the document stored under ``link``, or None."""
    return db.execute(select(Document).where(Document.link == link)).scalar_one_or_none()


def add_translated_title(db: Session, document_id: str, translated_title: str) -> Document:
    """Attach a translated title to a document.

    Raises:
        NotFound: If no document has this id.
    """
    doc = db.get(Document, document_id)
    if doc is None:
        raise NotFound(f"Document {document_id} not found")
    doc.translated_title = translated_title
    db.flush()
    return doc
