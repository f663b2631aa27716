"""Merge adjacent retrieved chunks back into passages.

A nearest-neighbor search often returns several consecutive chunks of the same
document. Feeding them separately would repeat the overlap text and split one
coherent passage into fragments, so runs of strictly consecutive chunk indices
are stitched together from their display text (which excludes the overlap).
"""
from collections import OrderedDict
from typing import Dict, List, Sequence

from docsrag.errors import DataIntegrityViolation
from docsrag.types import MergedPassage, RetrievedChunk


def _close_run(run: List[RetrievedChunk]) -> MergedPassage:
    return MergedPassage(
        text="".join(c.display_text for c in run),
        document_id=run[0].document_id,
        source_chunk_indices=tuple(c.chunk_index for c in run),
        min_distance=min(c.distance for c in run),
    )


def merge_chunks(chunks: Sequence[RetrievedChunk]) -> List[MergedPassage]:
    """Group chunks by document and merge runs of adjacent indices.

    Documents are emitted in order of their first appearance in ``chunks``;
    within a document, passages follow ascending chunk index. Every run,
    including a single chunk, yields exactly one passage.

    Args:
        chunks: Retrieved chunks from any number of documents, in any order.

    Returns:
        List[MergedPassage]: One passage per maximal run of adjacent chunks.

    Raises:
        DataIntegrityViolation: If a document has the same chunk index twice.
    """
    groups: Dict[str, List[RetrievedChunk]] = OrderedDict()
    for c in chunks:
        groups.setdefault(c.document_id, []).append(c)

    passages: List[MergedPassage] = []
    for document_id, group in groups.items():
        group = sorted(group, key=lambda c: c.chunk_index)
        run: List[RetrievedChunk] = [group[0]]
        for prev, cur in zip(group, group[1:]):
            if cur.chunk_index == prev.chunk_index:
                raise DataIntegrityViolation(
                    f"Chunk {cur.chunk_index} of document {document_id} retrieved twice"
                )
            if cur.chunk_index == prev.chunk_index + 1:
                run.append(cur)
            else:
                passages.append(_close_run(run))
                run = [cur]
        passages.append(_close_run(run))
    return passages
