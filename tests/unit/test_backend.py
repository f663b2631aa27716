"""Tests for the model backend HTTP adapter."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import MagicMock

import httpx
import openai
import pytest
import requests

from docsrag.backend import ModelBackend
from docsrag.errors import ProviderContractViolation, TransientProviderError


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


@pytest.fixture
def mb():
    backend = ModelBackend(
        embedder_base_url="http://embedder.test",
        embedder_api_key="test-key",
        reranker_url="http://embedder.test/rerank",
        reranker_model="reranker",
        ollama_url="http://ollama.test/",
        llm_model="llm",
    )
    backend._client = MagicMock()
    backend._http = MagicMock()
    return backend


def _response(status: int = 200, body=None):
    resp = MagicMock()
    resp.ok = 200 <= status < 400
    resp.status_code = status
    resp.text = "" if body is None else str(body)
    resp.json.return_value = body
    return resp


def _status_error(status: int) -> openai.APIStatusError:
    request = httpx.Request("POST", "http://embedder.test/embeddings")
    return openai.APIStatusError(
        "error", response=httpx.Response(status, request=request), body=None
    )


def _embedding(index: int, vec):
    return SimpleNamespace(index=index, embedding=vec)


# ------------------------------------------------------------------
# embed
# ------------------------------------------------------------------


def test_embed_orders_by_index(mb):
    mb._client.embeddings.create.return_value = SimpleNamespace(
        data=[_embedding(1, [0.2]), _embedding(0, [0.1])]
    )
    assert mb.embed(["a", "b"], "m") == [[0.1], [0.2]]
    kwargs = mb._client.embeddings.create.call_args.kwargs
    assert kwargs["model"] == "m"
    assert kwargs["input"] == ["a", "b"]


def test_embed_empty_makes_no_call(mb):
    assert mb.embed([], "m") == []
    mb._client.embeddings.create.assert_not_called()


def test_embed_timeout_is_transient(mb):
    request = httpx.Request("POST", "http://embedder.test/embeddings")
    mb._client.embeddings.create.side_effect = openai.APITimeoutError(request=request)
    with pytest.raises(TransientProviderError):
        mb.embed(["a"], "m")


@pytest.mark.parametrize("status,error", [
    (503, TransientProviderError),
    (429, TransientProviderError),
    (400, ProviderContractViolation),
])
def test_embed_status_errors(mb, status, error):
    mb._client.embeddings.create.side_effect = _status_error(status)
    with pytest.raises(error):
        mb.embed(["a"], "m")


def test_embed_missing_data_is_contract_violation(mb):
    mb._client.embeddings.create.return_value = SimpleNamespace(data=None)
    with pytest.raises(ProviderContractViolation):
        mb.embed(["a"], "m")


# ------------------------------------------------------------------
# rerank
# ------------------------------------------------------------------


def test_rerank_returns_indices(mb):
    mb._http.post.return_value = _response(body={"results": [{"index": 2}, {"index": 0}]})

    assert mb.rerank("q", ["a", "b", "c"], 2) == [2, 0]
    payload = mb._http.post.call_args.kwargs["json"]
    assert payload["top_n"] == 2
    assert payload["return_documents"] is False


@pytest.mark.parametrize("results", [
    [{"index": 5}],
    [{"index": 1}, {"index": 1}],
    [{"index": "0"}],
    [{"index": True}],
    [{"index": 0}, {"index": 1}, {"index": 2}],
])
def test_rerank_rejects_bad_indices(mb, results):
    mb._http.post.return_value = _response(body={"results": results})
    with pytest.raises(ProviderContractViolation):
        mb.rerank("q", ["a", "b", "c"], 2)


def test_rerank_missing_results(mb):
    mb._http.post.return_value = _response(body={"data": []})
    with pytest.raises(ProviderContractViolation):
        mb.rerank("q", ["a"], 1)


def test_rerank_connection_error_is_transient(mb):
    mb._http.post.side_effect = requests.ConnectionError("refused")
    with pytest.raises(TransientProviderError):
        mb.rerank("q", ["a"], 1)


def test_rerank_server_error_is_transient(mb):
    mb._http.post.return_value = _response(status=502, body={})
    with pytest.raises(TransientProviderError):
        mb.rerank("q", ["a"], 1)


# ------------------------------------------------------------------
# chat / generate
# ------------------------------------------------------------------


def test_chat_non_stream_returns_content(mb):
    mb._http.post.return_value = _response(body={"message": {"role": "assistant", "content": "Hi"}})
    assert mb.chat([{"role": "user", "content": "hello"}]) == "Hi"
    assert mb._http.post.call_args.args[0] == "http://ollama.test/api/chat"


def test_chat_stream_yields_lines_and_closes(mb):
    resp = _response()
    resp.iter_lines.return_value = iter(['{"a": 1}', "", '{"b": 2}'])
    mb._http.post.return_value = resp

    lines = list(mb.chat([], stream=True))

    assert lines == ['{"a": 1}', '{"b": 2}']
    resp.close.assert_called_once()
    assert mb._http.post.call_args.kwargs["stream"] is True


def test_chat_stream_bad_status(mb):
    mb._http.post.return_value = _response(status=404)
    with pytest.raises(ProviderContractViolation):
        mb.chat([], stream=True)


def test_generate_strips_response(mb):
    mb._http.post.return_value = _response(body={"response": "  text \n"})
    assert mb.generate("prompt", model="translator") == "text"
    assert mb._http.post.call_args.kwargs["json"]["model"] == "translator"


def test_generate_non_json_body(mb):
    resp = _response()
    resp.json.side_effect = ValueError("not json")
    mb._http.post.return_value = resp
    with pytest.raises(ProviderContractViolation):
        mb.generate("prompt")
