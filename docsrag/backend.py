"""Model backend client: embeddings, reranking, chat and generation over HTTP.

Provides:
- ModelBackend: one object wrapping every external model call the pipeline makes.
  - embed: OpenAI-compatible /embeddings endpoint via the ``openai`` client.
  - rerank: Infinity-style /rerank endpoint.
  - chat: Ollama /api/chat, single response or newline-delimited JSON stream.
  - generate: Ollama /api/generate, used for translation and summaries.
  - pull_model: Ollama /api/pull.
- get_backend: cached ModelBackend built from app settings.

Library exceptions are translated into TransientProviderError (network,
timeout, 429/5xx) or ProviderContractViolation (malformed payloads, other 4xx).
No call is retried here.
"""
import json
import logging
from typing import Any, Dict, Iterator, List, Optional, Sequence, Union

import openai
import requests
from openai import OpenAI

from docsrag.config import settings
from docsrag.errors import ProviderContractViolation, TransientProviderError

logger = logging.getLogger(__name__)

Message = Dict[str, str]


def _is_transient_status(status: int) -> bool:
    return status == 429 or status >= 500


class ModelBackend:
    """HTTP adapter for the embedding server, reranker and Ollama.

    Args:
        embedder_base_url: Base URL of the OpenAI-compatible embedding server.
        embedder_api_key: API key sent to the embedding server.
        reranker_url: Full URL of the rerank endpoint.
        reranker_model: Cross-encoder model name known to the reranker.
        ollama_url: Base URL of the Ollama server.
        llm_model: Chat model name.
        embed_timeout: Seconds before an embedding call times out.
        rerank_timeout: Seconds before a rerank call times out.
        llm_timeout: Seconds before a chat/generate call times out.
    """

    def __init__(
        self,
        embedder_base_url: str,
        embedder_api_key: str,
        reranker_url: str,
        reranker_model: str,
        ollama_url: str,
        llm_model: str,
        embed_timeout: float = 30.0,
        rerank_timeout: float = 300.0,
        llm_timeout: float = 300.0,
    ) -> None:
        self.reranker_url = reranker_url
        self.reranker_model = reranker_model
        self.ollama_url = ollama_url.rstrip("/")
        self.llm_model = llm_model
        self.rerank_timeout = rerank_timeout
        self.llm_timeout = llm_timeout
        self._client = OpenAI(
            base_url=embedder_base_url,
            api_key=embedder_api_key,
            timeout=embed_timeout,
            max_retries=0,
        )
        self._http = requests.Session()

    # ------------------------------------------------------------------
    # Embeddings
    # ------------------------------------------------------------------

    def embed(self, texts: Sequence[str], model_name: str) -> List[List[float]]:
        """Embed a batch of texts with one provider call.

        Args:
            texts: Input strings, already prefixed as the model requires.
            model_name: Embedding model name in the backend.

        Returns:
            List[List[float]]: One vector per input, in input order.

        Raises:
            TransientProviderError: On network errors, timeouts, 429 or 5xx.
            ProviderContractViolation: On malformed responses or other 4xx.
        """
        if not texts:
            return []
        try:
            resp = self._client.embeddings.create(
                model=model_name, input=list(texts), encoding_format="float"
            )
        except (openai.APITimeoutError, openai.APIConnectionError) as exc:
            raise TransientProviderError(f"Embedding call to {model_name} failed: {exc}") from exc
        except openai.APIStatusError as exc:
            msg = f"Embedding call to {model_name} returned HTTP {exc.status_code}"
            if _is_transient_status(exc.status_code):
                raise TransientProviderError(msg) from exc
            raise ProviderContractViolation(msg) from exc

        data = getattr(resp, "data", None)
        if data is None:
            raise ProviderContractViolation(f"Embedding response from {model_name} has no data")
        try:
            ordered = sorted(data, key=lambda d: d.index)
            vectors = [list(d.embedding) for d in ordered]
        except (AttributeError, TypeError) as exc:
            raise ProviderContractViolation(f"Malformed embedding payload from {model_name}") from exc
        logger.info("Generated embeddings with %s, batch size: %d", model_name, len(vectors))
        return vectors

    # ------------------------------------------------------------------
    # Reranking
    # ------------------------------------------------------------------

    def rerank(self, query: str, documents: Sequence[str], top_n: int) -> List[int]:
        """Rank documents against a query and return the top indices.

        Args:
            query: User query.
            documents: Candidate texts.
            top_n: Maximum number of indices to return.

        Returns:
            List[int]: Indices into ``documents``, most relevant first.
        """
        if not documents:
            return []
        payload = {
            "model": self.reranker_model,
            "query": query,
            "documents": list(documents),
            "return_documents": False,
            "raw_scores": False,
            "top_n": top_n,
        }
        body = self._post_json(self.reranker_url, payload, self.rerank_timeout, "rerank")
        try:
            indices = [r["index"] for r in body["results"]]
        except (KeyError, TypeError) as exc:
            raise ProviderContractViolation("Rerank response lacks results[].index") from exc

        seen = set()
        for i in indices:
            if not isinstance(i, int) or isinstance(i, bool) or not 0 <= i < len(documents) or i in seen:
                raise ProviderContractViolation(f"Rerank returned invalid index {i!r}")
            seen.add(i)
        if len(indices) > top_n:
            raise ProviderContractViolation(
                f"Rerank returned {len(indices)} results, asked for at most {top_n}"
            )
        logger.info("Reranked texts with %s: %d/%d", self.reranker_model, len(indices), len(documents))
        return indices

    # ------------------------------------------------------------------
    # Chat / generation
    # ------------------------------------------------------------------

    def chat(self, messages: List[Message], stream: bool = False) -> Union[str, Iterator[str]]:
        """Send a chat completion request to Ollama.

        Args:
            messages: Ordered role/content messages.
            stream: When True, return an iterator over raw NDJSON lines.

        Returns:
            Union[str, Iterator[str]]: The answer text, or a line iterator that
            keeps the connection open until exhausted or closed.
        """
        url = f"{self.ollama_url}/api/chat"
        payload = {"model": self.llm_model, "messages": messages, "stream": stream}
        if not stream:
            body = self._post_json(url, payload, self.llm_timeout, "chat")
            try:
                return body["message"]["content"] or ""
            except (KeyError, TypeError) as exc:
                raise ProviderContractViolation("Chat response lacks message.content") from exc

        try:
            resp = self._http.post(url, json=payload, timeout=self.llm_timeout, stream=True)
        except requests.RequestException as exc:
            raise TransientProviderError(f"chat request failed: {exc}") from exc
        if not resp.ok:
            resp.close()
            self._raise_for_status(resp.status_code, "chat")
        return self._iter_lines(resp)

    def generate(self, prompt: str, model: Optional[str] = None) -> str:
        """Run a single non-streaming completion with Ollama /api/generate."""
        url = f"{self.ollama_url}/api/generate"
        payload = {"model": model or self.llm_model, "prompt": prompt, "stream": False}
        body = self._post_json(url, payload, self.llm_timeout, "generate")
        try:
            return (body["response"] or "").strip()
        except (KeyError, TypeError, AttributeError) as exc:
            raise ProviderContractViolation("Generate response lacks response text") from exc

    def pull_model(self, name: str) -> None:
        """Ask Ollama to pull a model; blocks until the pull finishes."""
        url = f"{self.ollama_url}/api/pull"
        self._post_json(url, {"model": name, "stream": False}, self.llm_timeout, "pull")
        logger.info("Pulled model: %s", name)

    # ------------------------------------------------------------------
    # HTTP helpers
    # ------------------------------------------------------------------

    def _post_json(self, url: str, payload: Dict[str, Any], timeout: float, what: str) -> Any:
        try:
            resp = self._http.post(url, json=payload, timeout=timeout)
        except requests.RequestException as exc:
            raise TransientProviderError(f"{what} request failed: {exc}") from exc
        if not resp.ok:
            logger.error("HTTP error from %s: %d - %s", what, resp.status_code, resp.text[:200])
            self._raise_for_status(resp.status_code, what)
        try:
            return resp.json()
        except ValueError as exc:
            raise ProviderContractViolation(f"{what} response is not JSON") from exc

    @staticmethod
    def _raise_for_status(status: int, what: str) -> None:
        msg = f"{what} returned HTTP {status}"
        if _is_transient_status(status):
            raise TransientProviderError(msg)
        raise ProviderContractViolation(msg)

    @staticmethod
    def _iter_lines(resp: requests.Response) -> Iterator[str]:
        try:
            for line in resp.iter_lines(decode_unicode=True):
                if line:
                    yield line
        except requests.RequestException as exc:
            raise TransientProviderError(f"chat stream interrupted: {exc}") from exc
        finally:
            resp.close()


_backend: Optional[ModelBackend] = None


def get_backend() -> ModelBackend:
    """Return a cached ModelBackend configured from settings.

    Returns:
        ModelBackend: A singleton-like backend reused across calls.
    """
    global _backend
    if _backend is None:
        _backend = ModelBackend(
            embedder_base_url=settings.EMBEDDER_BASE_URL,
            embedder_api_key=settings.EMBEDDER_API_KEY,
            reranker_url=settings.RERANKER_URL,
            reranker_model=settings.RERANKER_MODEL,
            ollama_url=settings.OLLAMA_URL,
            llm_model=settings.LLM_MODEL,
            embed_timeout=settings.EMBEDDER_TIMEOUT_SECONDS,
            rerank_timeout=settings.RERANKER_TIMEOUT_SECONDS,
            llm_timeout=settings.LLM_TIMEOUT_SECONDS,
        )
    return _backend
