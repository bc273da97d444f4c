"""Ingestion of server-sent-event chat-completion streams.

The provider answers with a newline-delimited stream of ``data: <json>`` lines
(and a ``data: [DONE]`` marker). :func:`ingest` decodes the raw bytes, folds the
deltas into a :class:`StreamAccumulator` and reports every change through
:class:`StreamCallbacks`. Callbacks always receive the complete current text,
never a diff.
"""

import codecs
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

from .errors import MalformedFragmentError
from .models import Citation

logger = logging.getLogger(__name__)

DATA_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"


class StreamState(str, Enum):
    AWAITING_CHUNK = "awaiting_chunk"
    DECODING_LINES = "decoding_lines"
    DISPATCHING_EVENT = "dispatching_event"
    CLOSED = "closed"


class SendGeneration:
    """A counter that invalidates in-flight sends when it advances.

    Every send takes a :class:`CancelToken` bound to the current value; starting
    a new send or switching chats advances the counter and so cancels all
    tokens handed out before.
    """

    def __init__(self):
        self._value = 0

    @property
    def value(self) -> int:
        return self._value

    def advance(self) -> int:
        self._value += 1
        return self._value

    def token(self) -> "CancelToken":
        return CancelToken(self, self._value)


class CancelToken:
    def __init__(self, generation: Optional[SendGeneration] = None, value: int = 0):
        self._generation = generation
        self._value = value
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        if self._cancelled:
            return True
        return self._generation is not None and self._generation.value != self._value


@dataclass
class StreamAccumulator:
    """Per-attempt state of one streamed answer."""

    reasoning_text: str = ""
    content_text: str = ""
    citations: List[Citation] = field(default_factory=list)
    assistant_message_created: bool = False
    state: StreamState = StreamState.AWAITING_CHUNK


def _noop(_value: Any) -> None:
    return None


@dataclass
class StreamCallbacks:
    """Receivers for stream updates.

    ``on_first_content`` fires exactly once, on the first content delta; every
    later content delta goes to ``on_content``. ``on_citations`` receives the
    full replacement list; an empty list means the citations were cleared.
    """

    on_reasoning: Callable[[str], None] = _noop
    on_first_content: Callable[[str], None] = _noop
    on_content: Callable[[str], None] = _noop
    on_citations: Callable[[List[Citation]], None] = _noop


def parse_event(data: str) -> Dict[str, Any]:
    """Parses one ``data:`` payload, raising MalformedFragmentError if cut."""
    try:
        payload = json.loads(data)
    except json.JSONDecodeError as e:
        raise MalformedFragmentError(
            f"Incomplete stream fragment: {e}", original_error=e
        ) from e
    if not isinstance(payload, dict):
        raise MalformedFragmentError(f"Unexpected stream payload: {data[:80]}")
    return payload


def extract_citations(annotations: List[Any]) -> List[Citation]:
    citations = []
    for annotation in annotations:
        if not isinstance(annotation, dict) or annotation.get("type") != "url_citation":
            continue
        source = annotation.get("url_citation") or {}
        citations.append(
            Citation(
                url=source.get("url", ""),
                title=source.get("title") or "",
                content=source.get("content"),
            )
        )
    return citations


def _first_choice(payload: Dict[str, Any]) -> Dict[str, Any]:
    choices = payload.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        return choices[0]
    return {}


class _Dispatcher:
    def __init__(self, accumulator, callbacks, capture_reasoning, cancel_token):
        self.acc = accumulator
        self.callbacks = callbacks
        self.capture_reasoning = capture_reasoning
        self.cancel_token = cancel_token

    @property
    def cancelled(self) -> bool:
        return self.cancel_token is not None and self.cancel_token.cancelled

    def feed_text(self, text: str) -> None:
        self.acc.state = StreamState.DECODING_LINES
        for line in text.split("\n"):
            if self.cancelled:
                return
            if not line.startswith(DATA_PREFIX):
                continue
            data = line[len(DATA_PREFIX) :]
            if data == DONE_SENTINEL:
                continue
            try:
                payload = parse_event(data)
            except MalformedFragmentError as e:
                logger.debug("Skipping stream fragment: %s", e)
                continue
            self.acc.state = StreamState.DISPATCHING_EVENT
            self.dispatch(payload)
            self.acc.state = StreamState.DECODING_LINES

    def dispatch(self, payload: Dict[str, Any]) -> None:
        acc = self.acc
        choice = _first_choice(payload)
        delta = choice.get("delta") or {}

        reasoning = delta.get("reasoning")
        if reasoning and self.capture_reasoning:
            acc.reasoning_text += reasoning
            self.callbacks.on_reasoning(acc.reasoning_text)

        content = delta.get("content")
        if content:
            acc.content_text += content
            if not acc.assistant_message_created:
                acc.assistant_message_created = True
                self.callbacks.on_first_content(acc.content_text)
            else:
                self.callbacks.on_content(acc.content_text)

        message = choice.get("message") or {}
        annotations = message.get("annotations")
        if isinstance(annotations, list):
            acc.citations = extract_citations(annotations)
            self.callbacks.on_citations(list(acc.citations))


async def ingest(
    byte_stream: AsyncIterator[bytes],
    callbacks: Optional[StreamCallbacks] = None,
    *,
    capture_reasoning: bool = False,
    cancel_token: Optional[CancelToken] = None,
    accumulator: Optional[StreamAccumulator] = None,
) -> StreamAccumulator:
    """Consumes an SSE byte stream until it ends, folding deltas as they come.

    Parameters
    ----------
    byte_stream : AsyncIterator[bytes]
        The raw response body. It is closed on every exit path when it
        provides ``aclose``.
    callbacks : StreamCallbacks, optional
        Receivers for reasoning, content and citation updates.
    capture_reasoning : bool
        Whether reasoning deltas are accumulated and reported. Callers enable
        it only when reasoning display is on and the feature mode is reasoning.
    cancel_token : CancelToken, optional
        Checked on every chunk and before every line is dispatched; once
        cancelled the stream is abandoned and nothing more is reported.
    accumulator : StreamAccumulator, optional
        The per-attempt state to fold into; a new one is created if omitted.

    Returns
    -------
    StreamAccumulator
        The final accumulated reasoning, content and citations.

    Raises
    ------
    Exception
        Anything raised by the byte source or a callback propagates. Only
        malformed JSON fragments are swallowed.
    """
    acc = accumulator if accumulator is not None else StreamAccumulator()
    dispatcher = _Dispatcher(
        acc, callbacks or StreamCallbacks(), capture_reasoning, cancel_token
    )
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    try:
        acc.state = StreamState.AWAITING_CHUNK
        async for chunk in byte_stream:
            if dispatcher.cancelled:
                logger.debug("Stream abandoned after cancellation")
                break
            dispatcher.feed_text(decoder.decode(chunk))
            acc.state = StreamState.AWAITING_CHUNK
        else:
            tail = decoder.decode(b"", final=True)
            if tail:
                dispatcher.feed_text(tail)
    finally:
        acc.state = StreamState.CLOSED
        aclose = getattr(byte_stream, "aclose", None)
        if aclose is not None:
            await aclose()

    return acc
