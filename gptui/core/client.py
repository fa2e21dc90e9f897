"""OpenAI transport and the background streaming coordinator."""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterator, List, Optional, Protocol, Sequence

import openai
from openai import OpenAI  # type: ignore

from ..errors import ChatError, TransportError, translate_error
from .models import Message

logger = logging.getLogger(__name__)


class Transport(Protocol):
    """Anything able to talk to a chat completion endpoint."""

    def post_stream(self, model: str, messages: List[Dict[str, Any]]) -> Iterator[str]:
        ...

    def complete(self, model: str, messages: List[Dict[str, Any]]) -> str:
        ...


class OpenAIClientWrapper:
    """Thin wrapper around the OpenAI Python SDK hiding streaming details."""

    def __init__(self, client: OpenAI):
        self.client = client

    def post_stream(self, model: str, messages: List[Dict[str, Any]]) -> Iterator[str]:
        """Yield the text deltas of a streamed chat completion.

        Closing the generator early closes the underlying HTTP response.
        """
        try:
            response = self.client.chat.completions.create(  # type: ignore[call-overload]
                model=model,
                messages=messages,
                stream=True,
            )
        except openai.OpenAIError as exc:
            raise translate_error(exc) from exc

        try:
            for chunk in response:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta
                if delta is None or not delta.content:
                    continue
                yield delta.content
        except openai.OpenAIError as exc:
            raise translate_error(exc) from exc
        finally:
            close = getattr(response, "close", None)
            if close is not None:
                close()

    def complete(self, model: str, messages: List[Dict[str, Any]]) -> str:
        """Run a non-streaming completion and return the reply text."""
        try:
            resp = self.client.chat.completions.create(  # type: ignore[call-overload]
                model=model,
                messages=messages,
            )
        except openai.OpenAIError as exc:
            raise translate_error(exc) from exc
        if not resp.choices:
            return ""
        return resp.choices[0].message.content or ""


# ---------------------------------------------------------------------------
# Background streams
# ---------------------------------------------------------------------------


class EventKind(Enum):
    DELTA = "delta"
    DONE = "done"
    ERROR = "error"


@dataclass(frozen=True)
class StreamEvent:
    kind: EventKind
    text: str = ""
    error: Optional[ChatError] = None


class CompletionStream:
    """Deltas produced on a worker thread, consumed from the render loop.

    The worker pushes events into a queue; the consumer drains it with
    :meth:`poll` (non-blocking) or by iterating (blocking). A stream is
    single-pass and cannot be restarted. :meth:`cancel` stops the worker at
    its next chunk and discards anything not yet delivered, so :attr:`text`
    is always exactly what the consumer has seen.
    """

    def __init__(self, produce: Callable[[], Iterator[str]], name: str = "completion"):
        self._produce = produce
        self._queue: "queue.Queue[StreamEvent]" = queue.Queue()
        self._cancel = threading.Event()
        self._chunks: List[str] = []
        self._finished = False
        self._iterated = False
        self.cancelled = False
        self.error: Optional[ChatError] = None
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)
        self._thread.start()

    # ---------------- Worker side ----------------

    def _run(self) -> None:
        iterator: Optional[Iterator[str]] = None
        try:
            iterator = self._produce()
            for delta in iterator:
                if self._cancel.is_set():
                    logger.debug("Stream cancelled, stopping worker")
                    return
                self._queue.put(StreamEvent(EventKind.DELTA, text=delta))
        except ChatError as exc:
            logger.warning("Completion failed: %s", exc)
            self._queue.put(StreamEvent(EventKind.ERROR, error=exc))
            return
        except Exception as exc:  # worker must always report back
            logger.exception("Completion worker crashed")
            self._queue.put(StreamEvent(EventKind.ERROR, error=TransportError(str(exc))))
            return
        finally:
            close = getattr(iterator, "close", None)
            if close is not None:
                close()
        self._queue.put(StreamEvent(EventKind.DONE))

    # ---------------- Consumer side ----------------

    @property
    def done(self) -> bool:
        """True once end-of-stream, an error or a cancellation was observed."""
        return self._finished

    @property
    def text(self) -> str:
        return "".join(self._chunks)

    def _deliver(self, event: StreamEvent) -> None:
        if event.kind is EventKind.DELTA:
            self._chunks.append(event.text)
            return
        self._finished = True
        if event.kind is EventKind.ERROR:
            self.error = event.error

    def poll(self) -> List[StreamEvent]:
        """Return every event available right now without blocking."""
        events: List[StreamEvent] = []
        while not self._finished:
            try:
                event = self._queue.get_nowait()
            except queue.Empty:
                break
            self._deliver(event)
            events.append(event)
        return events

    def wait(self, timeout: Optional[float] = None, tick: float = 0.05) -> bool:
        """Block until the stream finishes or *timeout* elapses."""
        remaining = timeout
        while not self._finished:
            if remaining is not None and remaining <= 0:
                break
            try:
                event = self._queue.get(timeout=tick)
            except queue.Empty:
                if remaining is not None:
                    remaining -= tick
                continue
            self._deliver(event)
        return self._finished

    def __iter__(self) -> Iterator[str]:
        if self._iterated:
            raise RuntimeError("A completion stream can only be iterated once")
        self._iterated = True
        while not self._finished:
            try:
                event = self._queue.get(timeout=0.05)
            except queue.Empty:
                continue
            self._deliver(event)
            if event.kind is EventKind.DELTA:
                yield event.text
            elif event.kind is EventKind.ERROR and event.error is not None:
                raise event.error

    def result(self) -> str:
        """Wait for the stream and return its full text, raising its error."""
        self.wait()
        if self.error is not None:
            raise self.error
        return self.text

    def cancel(self) -> None:
        if self._finished:
            return
        self._cancel.set()
        self._finished = True
        self.cancelled = True


class StreamCoordinator:
    """Starts completions in the background on behalf of a session."""

    def __init__(self, transport: Transport):
        self.transport = transport

    def start(self, context_messages: Sequence[Message], model: str) -> CompletionStream:
        """Begin a streamed completion for *context_messages*."""
        payload = [m.as_api() for m in context_messages]
        logger.info("Starting stream: model=%s messages=%d", model, len(payload))
        return CompletionStream(
            lambda: self.transport.post_stream(model, payload),
            name="completion-stream",
        )

    def request(self, messages: Sequence[Message], model: str) -> CompletionStream:
        """Run a non-streaming completion in the background.

        The reply arrives as a single delta.
        """
        payload = [m.as_api() for m in messages]
        logger.debug("Starting request: model=%s messages=%d", model, len(payload))
        return CompletionStream(
            lambda: iter([self.transport.complete(model, payload)]),
            name="completion-request",
        )

    def complete(self, messages: Sequence[Message], model: str) -> str:
        return self.request(messages, model).result()
