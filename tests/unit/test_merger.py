"""Tests for merging adjacent retrieved chunks."""

from __future__ import annotations

import pytest

from docsrag.errors import DataIntegrityViolation
from docsrag.merger import merge_chunks
from docsrag.types import RetrievedChunk


def _rc(doc: str, index: int, distance: float = 0.5) -> RetrievedChunk:
    return RetrievedChunk(
        chunk_index=index,
        chunk_text=f"full-{doc}-{index}",
        display_text=f"<{doc}{index}>",
        document_id=doc,
        distance=distance,
    )


def test_empty_input():
    assert merge_chunks([]) == []


def test_single_chunk_becomes_one_passage():
    passages = merge_chunks([_rc("a", 3, 0.2)])
    assert len(passages) == 1
    assert passages[0].text == "<a3>"
    assert passages[0].source_chunk_indices == (3,)
    assert passages[0].min_distance == 0.2


def test_adjacent_runs_are_merged_in_index_order():
    chunks = [_rc("a", 1), _rc("a", 5), _rc("a", 0), _rc("a", 2)]
    passages = merge_chunks(chunks)

    assert [p.source_chunk_indices for p in passages] == [(0, 1, 2), (5,)]
    assert passages[0].text == "<a0><a1><a2>"
    assert passages[1].text == "<a5>"


def test_min_distance_of_run():
    passages = merge_chunks([_rc("a", 0, 0.9), _rc("a", 1, 0.1), _rc("a", 2, 0.4)])
    assert passages[0].min_distance == 0.1


def test_documents_in_first_appearance_order():
    chunks = [_rc("b", 4), _rc("a", 0), _rc("b", 3), _rc("a", 1)]
    passages = merge_chunks(chunks)

    assert [p.document_id for p in passages] == ["b", "a"]
    assert passages[0].source_chunk_indices == (3, 4)
    assert passages[1].source_chunk_indices == (0, 1)


def test_same_index_in_different_documents_is_fine():
    passages = merge_chunks([_rc("a", 0), _rc("b", 0)])
    assert len(passages) == 2


def test_duplicate_index_raises():
    with pytest.raises(DataIntegrityViolation):
        merge_chunks([_rc("a", 2), _rc("a", 2)])
