"""Tests for embedding helpers."""

from __future__ import annotations

import pytest

from docsrag.embedding import embed_query, embed_texts, iter_batches
from docsrag.errors import InvalidConfiguration, ProviderContractViolation


def test_embed_texts_applies_document_prefix(model, backend):
    backend.embed.return_value = [[0.1, 0.2, 0.3], [0.4, 0.5, 0.6]]

    vectors = embed_texts(["alpha", "beta"], model, backend)

    assert vectors == [[0.1, 0.2, 0.3], [0.4, 0.5, 0.6]]
    backend.embed.assert_called_once_with(["d: alpha", "d: beta"], "test-embedder")


def test_embed_query_applies_query_prefix(model, backend):
    backend.embed.return_value = [[1.0, 0.0, 0.0]]

    assert embed_query("how to loop", model, backend) == [1.0, 0.0, 0.0]
    backend.embed.assert_called_once_with(["q: how to loop"], "test-embedder")


def test_embed_texts_empty_skips_backend(model, backend):
    assert embed_texts([], model, backend) == []
    backend.embed.assert_not_called()


def test_count_mismatch_raises(model, backend):
    backend.embed.return_value = [[0.1, 0.2, 0.3]]
    with pytest.raises(ProviderContractViolation, match="Mismatch in batch size"):
        embed_texts(["a", "b"], model, backend)


def test_dimension_mismatch_raises(model, backend):
    backend.embed.return_value = [[0.1, 0.2]]
    with pytest.raises(ProviderContractViolation):
        embed_query("q", model, backend)


def test_iter_batches_numbers_batches():
    assert list(iter_batches([1, 2, 3, 4, 5], 2)) == [(0, [1, 2]), (1, [3, 4]), (2, [5])]


def test_iter_batches_empty():
    assert list(iter_batches([], 4)) == []


def test_iter_batches_rejects_zero():
    with pytest.raises(InvalidConfiguration):
        list(iter_batches([1], 0))
