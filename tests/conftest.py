"""Shared pytest fixtures."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from docsrag.types import ModelInfo


class CharEncoding:
    """Stand-in tokenizer: one token per character."""

    def encode(self, text):
        return list(text)

    def decode(self, tokens):
        return "".join(tokens)


@pytest.fixture
def char_encoding():
    return CharEncoding()


@pytest.fixture
def model():
    """A registered 3-dimensional model with instruction prefixes."""
    return ModelInfo(
        id="0123456789abcdef0123456789abcdef",
        name="test-embedder",
        dimension=3,
        query_prefix="q: ",
        document_prefix="d: ",
    )


@pytest.fixture
def backend():
    """Model backend double; configure return values per test."""
    return MagicMock()
