"""Answer synthesis on top of the chat backend.

Provides:
- SYSTEM_PROMPT / build_messages: grounded two-message prompt from selected passages
- process_user_message: single non-streaming answer
- process_user_message_stream: token events from a streaming chat call
- extract_answer_from_json: tolerant parse of {"answer": ...} model output
- translate_text / summarize_chunk: helper generations used during ingestion

Streaming follows OPEN -> EMITTING -> DONE | ERRORED. Every provider line is
parsed on its own; a line that is not valid JSON is skipped.
"""
import json
import logging
from enum import Enum
from typing import Dict, Iterator, List, Optional, Sequence

from docsrag.backend import ModelBackend, get_backend
from docsrag.config import settings
from docsrag.errors import RagError

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are an assistant that answers questions about technical documentation. "
    "Use ONLY the numbered context passages supplied by the user. "
    "If the passages do not contain enough information to answer, say explicitly that "
    "the documentation provided does not answer the question and do not guess. "
    "Answer in the language of the question, concisely and accurately."
)


class StreamState(str, Enum):
    OPEN = "open"
    EMITTING = "emitting"
    DONE = "done"
    ERRORED = "errored"


def _build_context(passages: Sequence[str]) -> str:
    """Label passages by position: ``[1] ...``, ``[2] ...``."""
    return "\n\n".join(f"[{i}] {p.strip()}" for i, p in enumerate(passages, start=1))


def build_messages(query: str, passages: Sequence[str]) -> List[Dict[str, str]]:
    """Compose the system and user messages for a grounded answer.

    Args:
        query: The user question.
        passages: Selected context passages, most relevant first.

    Returns:
        List[Dict[str, str]]: Exactly two messages, system then user.
    """
    user = (
        f"Context passages:\n{_build_context(passages)}\n\n"
        f"Question:\n{query}\n\n"
        "Answer using only the context passages above."
    )
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": user},
    ]


def process_user_message(
    messages: List[Dict[str, str]], backend: Optional[ModelBackend] = None
) -> str:
    """Run a non-streaming chat call and return the answer text."""
    backend = backend or get_backend()
    answer = backend.chat(messages, stream=False)
    return answer.strip()


def process_user_message_stream(
    messages: List[Dict[str, str]], backend: Optional[ModelBackend] = None
) -> Iterator[Dict]:
    """Stream an answer as events.

    Yields ``{"token": str}`` for each non-empty content increment, then
    exactly one terminal event: ``{"done": True}`` or ``{"error": str}``.
    Closing the generator closes the upstream connection.

    Args:
        messages: Chat messages from build_messages.
        backend: Model backend; defaults to the shared one.

    Yields:
        Dict: Stream events.
    """
    backend = backend or get_backend()
    state = StreamState.OPEN
    lines = None
    try:
        lines = backend.chat(messages, stream=True)
        for line in lines:
            try:
                record = json.loads(line)
            except ValueError:
                logger.debug("Skipping unparsable stream line: %.80s", line)
                continue
            if not isinstance(record, dict):
                continue
            if record.get("error"):
                state = StreamState.ERRORED
                logger.error("Chat stream reported error: %s", record["error"])
                yield {"error": str(record["error"])}
                return
            message = record.get("message")
            token = message.get("content") if isinstance(message, dict) else None
            if not isinstance(token, str):
                if message is not None:
                    logger.debug("Ignoring malformed message in stream record: %.80s", line)
                token = ""
            if token:
                state = StreamState.EMITTING
                yield {"token": token}
            if record.get("done"):
                state = StreamState.DONE
                break
        if state is not StreamState.DONE:
            state = StreamState.ERRORED
            yield {"error": "Chat stream ended before completion"}
            return
        yield {"done": True}
    except RagError as exc:
        state = StreamState.ERRORED
        logger.error("Chat stream failed: %s", exc.message)
        yield {"error": exc.message}
    except Exception:
        state = StreamState.ERRORED
        logger.exception("Chat stream failed unexpectedly")
        yield {"error": "Answer generation failed"}
    finally:
        if lines is not None and hasattr(lines, "close"):
            lines.close()
        logger.debug("Chat stream finished in state %s", state.value)


def extract_answer_from_json(text: str) -> str:
    """Pull the ``answer`` field out of model output shaped like ``{"answer": "..."}``.

    Models often wrap the JSON in prose; the outermost braces are parsed. Any
    failure returns the original text.
    """
    if not text or not isinstance(text, str):
        return text or ""
    start, end = text.find("{"), text.rfind("}")
    if start == -1 or end == -1 or start >= end:
        return text
    try:
        parsed = json.loads(text[start:end + 1])
    except ValueError:
        logger.warning("Could not parse JSON answer from: %.100s", text)
        return text
    if isinstance(parsed, dict) and isinstance(parsed.get("answer"), str):
        return parsed["answer"]
    return text


def translate_text(text: str, backend: Optional[ModelBackend] = None) -> str:
    """Translate a Russian text (e.g. a page title) to English."""
    backend = backend or get_backend()
    prompt = (
        f"Translate from Russian to English: {text}\n"
        'Give answer in JSON format {"answer": "[answer]"}'
    )
    return extract_answer_from_json(backend.generate(prompt, model=settings.TRANSLATION_MODEL))


def summarize_chunk(
    chunk: str, title: Optional[str] = None, backend: Optional[ModelBackend] = None
) -> str:
    """Summarize a chunk in 3-5 English sentences."""
    backend = backend or get_backend()
    title_part = f'From document: "{title}"\n' if title else ""
    prompt = (
        f"{title_part}Summarize the following text chunk in English, keeping the main ideas "
        f"concise (3-5 sentences): {chunk}\n"
        'Give answer in JSON format {"answer": "[answer]"}'
    )
    return extract_answer_from_json(backend.generate(prompt))
