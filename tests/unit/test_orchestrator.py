"""Tests for the ingestion orchestrator (storage and providers are mocked)."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from docsrag.errors import InvalidConfiguration, NotFound, TransientProviderError
from docsrag.ingestion import orchestrator
from docsrag.ingestion.orchestrator import (
    ErrorKind,
    IngestionConfig,
    IngestSummary,
    collect_embeddings,
    embed_batch,
    process_document,
    select_models,
)
from docsrag.ingestion.sources import SourceDocument
from docsrag.types import Chunk, ModelInfo


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


class FakeSource:
    def __init__(self, pages, fail=()):
        self.pages = pages
        self.fail = set(fail)

    def discover(self):
        return [SourceDocument(title=href.upper(), href=href) for href in self.pages]

    def link_for(self, href):
        return f"https://docs.test/{href}"

    def fetch_text(self, href):
        if href in self.fail:
            raise RuntimeError(f"boom {href}")
        return self.pages[href]


@pytest.fixture(autouse=True)
def char_tokenizer(monkeypatch, char_encoding):
    monkeypatch.setattr(orchestrator, "get_encoding", lambda name: char_encoding)


@pytest.fixture
def session_factory():
    return MagicMock()


@pytest.fixture
def target():
    return orchestrator._Target("doc-1", "Loops", "topics/loops.html")


def _config(**kwargs) -> IngestionConfig:
    base = dict(delay_ms=0, chunk_size=4, chunk_overlap=0, batch_size=2)
    base.update(kwargs)
    return IngestionConfig(**base)


def _vec():
    return [0.1, 0.2, 0.3]


# ------------------------------------------------------------------
# IngestionConfig
# ------------------------------------------------------------------


@pytest.mark.parametrize("kwargs", [
    {"chunk_size": 0},
    {"chunk_size": 100, "chunk_overlap": 100},
    {"batch_size": 65},
    {"delay_ms": -1},
    {"limit": 0},
    {"concurrency": 0},
])
def test_ingestion_config_rejects(kwargs):
    with pytest.raises(InvalidConfiguration):
        IngestionConfig(**kwargs)


def test_ingestion_config_freezes_model_names():
    assert IngestionConfig(model_names=["a", "b"]).model_names == ("a", "b")


# ------------------------------------------------------------------
# select_models
# ------------------------------------------------------------------


def test_select_models_all_when_no_allow_list(model):
    assert select_models([model], None) == [model]


def test_select_models_filters(model):
    other = ModelInfo(id="f" * 32, name="other", dimension=3)
    assert select_models([model, other], ["other", "unknown"]) == [other]


def test_select_models_no_match_raises(model):
    with pytest.raises(NotFound):
        select_models([model], ["unknown"])


def test_select_models_none_registered():
    with pytest.raises(NotFound):
        select_models([], None)


# ------------------------------------------------------------------
# embed_batch
# ------------------------------------------------------------------


def test_embed_batch_count_mismatch_skips_batch(target, model, backend, session_factory):
    chunks = [Chunk(0, "abcd", "abcd"), Chunk(1, "efgh", "efgh")]
    backend.embed.return_value = [_vec()]
    with patch.object(orchestrator.vectors, "save_embedding") as save:
        result = embed_batch(target, model, 0, chunks, ["abcd", "efgh"], backend, session_factory)

    assert result.error is ErrorKind.CONTRACT
    assert result.saved == 0
    save.assert_not_called()


def test_embed_batch_transient_error(target, model, backend, session_factory):
    backend.embed.side_effect = TransientProviderError("timeout")
    result = embed_batch(target, model, 3, [Chunk(6, "x", "x")], ["x"], backend, session_factory)
    assert result.error is ErrorKind.TRANSIENT
    assert result.batch_index == 3


def test_embed_batch_saves_each_chunk(target, model, backend, session_factory):
    chunks = [Chunk(0, "abcd", "abcd"), Chunk(1, "defg", "efg")]
    backend.embed.return_value = [_vec(), _vec()]
    with patch.object(orchestrator.vectors, "save_embedding") as save:
        result = embed_batch(target, model, 0, chunks, ["abcd", "defg"], backend, session_factory)

    assert result.ok
    assert result.saved == 2
    assert [c.args[3] for c in save.call_args_list] == [0, 1]
    assert save.call_args_list[1].args[5:] == ("defg", "efg")


def test_embed_batch_partial_save_is_storage_error(target, model, backend, session_factory):
    chunks = [Chunk(0, "a", "a"), Chunk(1, "b", "b")]
    backend.embed.return_value = [_vec(), _vec()]
    failure = OperationalError("INSERT", {}, Exception("db down"))
    with patch.object(orchestrator.vectors, "save_embedding", side_effect=[MagicMock(), failure]):
        result = embed_batch(target, model, 0, chunks, ["a", "b"], backend, session_factory)

    assert result.saved == 1
    assert result.error is ErrorKind.STORAGE


# ------------------------------------------------------------------
# process_document
# ------------------------------------------------------------------


def test_process_document_continues_after_bad_batch(target, model, backend, session_factory):
    source = FakeSource({"topics/loops.html": "abcdefghij"})
    # chunks: abcd, efgh, ij -> batches [0, 1] and [2]
    backend.embed.side_effect = [[_vec()], [_vec()]]
    with patch.object(orchestrator.vectors, "save_embedding") as save, \
         patch.object(orchestrator.vectors, "discard_embeddings", return_value=0), \
         patch.object(orchestrator.vectors, "prune_embeddings", return_value=1) as prune:
        result = process_document(target, [model], _config(), source, backend, session_factory)

    assert result.chunks == 3
    assert [b.ok for b in result.batches] == [False, True]
    assert result.batches[0].error is ErrorKind.CONTRACT
    assert result.batches[1].saved == 1
    assert save.call_count == 1
    assert save.call_args.args[3] == 2
    assert backend.embed.call_args_list[1].args[0] == ["d: ij"]
    assert prune.call_args.args[1:] == ("doc-1", model.id, 3)
    assert result.pruned == 1


def test_process_document_failed_batch_discards_old_rows(target, model, backend, session_factory):
    source = FakeSource({"topics/loops.html": "abcdefghij"})
    backend.embed.side_effect = [TransientProviderError("timeout"), [_vec()]]
    with patch.object(orchestrator.vectors, "save_embedding"), \
         patch.object(orchestrator.vectors, "discard_embeddings", return_value=2) as discard, \
         patch.object(orchestrator.vectors, "prune_embeddings", return_value=0):
        result = process_document(target, [model], _config(), source, backend, session_factory)

    assert result.batches[0].error is ErrorKind.TRANSIENT
    discard.assert_called_once()
    assert discard.call_args.args[1:] == ("doc-1", model.id, [0, 1])
    assert result.pruned == 2


def test_process_document_twelve_tokens_size_five_overlap_two(target, model, backend, session_factory):
    source = FakeSource({"topics/loops.html": "abcdefghijkl"})
    backend.embed.return_value = [_vec()] * 4
    with patch.object(orchestrator.vectors, "save_embedding") as save, \
         patch.object(orchestrator.vectors, "prune_embeddings", return_value=0):
        result = process_document(
            target, [model], _config(chunk_size=5, chunk_overlap=2, batch_size=16), source, backend, session_factory
        )

    assert result.chunks == 4
    assert backend.embed.call_args.args[0] == ["d: abcde", "d: defgh", "d: ghijk", "d: jkl"]
    assert [c.args[3] for c in save.call_args_list] == [0, 1, 2, 3]
    assert [c.args[6] for c in save.call_args_list] == ["abcde", "fgh", "ijk", "l"]


def test_process_document_embeds_with_every_model(target, model, backend, session_factory):
    other = ModelInfo(id="f" * 32, name="other", dimension=3, document_prefix="passage: ")
    source = FakeSource({"topics/loops.html": "abcd"})
    backend.embed.return_value = [_vec()]
    with patch.object(orchestrator.vectors, "save_embedding"), \
         patch.object(orchestrator.vectors, "prune_embeddings", return_value=0):
        result = process_document(target, [model, other], _config(), source, backend, session_factory)

    assert [b.model for b in result.batches] == ["test-embedder", "other"]
    assert [c.args for c in backend.embed.call_args_list] == [
        (["d: abcd"], "test-embedder"),
        (["passage: abcd"], "other"),
    ]


def test_process_document_empty_text(target, model, backend, session_factory):
    source = FakeSource({"topics/loops.html": "   "})
    result = process_document(target, [model], _config(), source, backend, session_factory)
    assert result.error is ErrorKind.EMPTY
    backend.embed.assert_not_called()


def test_process_document_summaries_only_change_embedded_text(target, model, backend, session_factory):
    source = FakeSource({"topics/loops.html": "abcd"})
    backend.generate.return_value = '{"answer": "Summary"}'
    backend.embed.return_value = [_vec()]
    with patch.object(orchestrator.vectors, "save_embedding") as save, \
         patch.object(orchestrator.vectors, "prune_embeddings", return_value=0):
        process_document(
            target, [model], _config(summarize_chunks=True), source, backend, session_factory
        )

    assert backend.embed.call_args.args[0] == ["d: Summary\n\nabcd"]
    assert save.call_args.args[5:] == ("abcd", "abcd")


# ------------------------------------------------------------------
# collect_embeddings
# ------------------------------------------------------------------


def _upserted(db, title, link):
    row = MagicMock()
    row.id = f"id-{link.rsplit('/', 1)[-1]}"
    return row


def test_collect_embeddings_contains_document_failures(model, backend, session_factory):
    source = FakeSource({"bad.html": "abcd", "good.html": "abcd"}, fail=["bad.html"])
    backend.embed.return_value = [_vec()]
    sleep = MagicMock()
    with patch.object(orchestrator.vectors, "list_models", return_value=[model]), \
         patch.object(orchestrator.documents, "upsert_document", side_effect=_upserted), \
         patch.object(orchestrator.vectors, "save_embedding"), \
         patch.object(orchestrator.vectors, "prune_embeddings", return_value=0):
        summary = collect_embeddings(
            _config(delay_ms=250), source, backend, session_factory, sleep=sleep
        )

    assert summary == IngestSummary(
        success=True, total=2, processed=1, failed=1, batches_ok=1, batches_failed=0, embeddings_saved=1
    )
    assert sleep.call_count == 2
    sleep.assert_called_with(0.25)


def test_collect_embeddings_applies_limit(model, backend, session_factory):
    source = FakeSource({"a.html": "abcd", "b.html": "abcd", "c.html": "abcd"})
    backend.embed.return_value = [_vec()]
    with patch.object(orchestrator.vectors, "list_models", return_value=[model]), \
         patch.object(orchestrator.documents, "upsert_document", side_effect=_upserted) as upsert, \
         patch.object(orchestrator.vectors, "save_embedding"), \
         patch.object(orchestrator.vectors, "prune_embeddings", return_value=0):
        summary = collect_embeddings(_config(limit=2), source, backend, session_factory, sleep=MagicMock())

    assert summary.total == 2
    assert upsert.call_count == 2


def test_collect_embeddings_discovery_failure(model, backend, session_factory):
    source = MagicMock()
    source.discover.side_effect = TransientProviderError("contents page unavailable")
    with patch.object(orchestrator.vectors, "list_models", return_value=[model]):
        summary = collect_embeddings(_config(), source, backend, session_factory)

    assert summary.success is False
    assert summary.total == 0


def test_collect_embeddings_unknown_model_writes_nothing(model, backend, session_factory):
    source = MagicMock()
    with patch.object(orchestrator.vectors, "list_models", return_value=[model]), \
         patch.object(orchestrator.documents, "upsert_document") as upsert:
        with pytest.raises(NotFound):
            collect_embeddings(_config(model_names=("missing",)), source, backend, session_factory)

    source.discover.assert_not_called()
    upsert.assert_not_called()


def test_summary_to_dict():
    summary = IngestSummary(success=True, total=3, processed=2, failed=1)
    assert summary.to_dict()["failed"] == 1
    assert set(summary.to_dict()) == {
        "success", "total", "processed", "failed", "batches_ok", "batches_failed", "embeddings_saved",
    }
