"""Conversation state for one thread: submit, stream, commit, summarize."""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import replace
from enum import Enum
from typing import TYPE_CHECKING, Callable, Iterable, List, Optional, Sequence, Tuple

from ..errors import ChatError, StorageError
from ..utils.tokens import count_tokens
from .client import CompletionStream, EventKind, StreamCoordinator
from .models import Message, Role, Summary
from .store import TIMESTAMP_STEP, Store

if TYPE_CHECKING:  # pragma: no cover
    from ..config import AssistantProfile

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_BUDGET = 6000
DEFAULT_KEEP_RECENT = 2

SUMMARY_PREFIX = "Summary of earlier conversation:\n"

SUMMARY_INSTRUCTION = (
    "Condense the conversation below into a short summary written in the "
    "third person. Keep the facts, decisions and code the assistant would "
    "need to continue it. Reply with the summary only."
)

TITLE_INSTRUCTION = (
    "Write a title of at most six words for the conversation below. "
    "Reply with the title only, without quotes."
)

# Number of conversation messages shown to the model when naming a thread
TITLE_SOURCE_MESSAGES = 4
TITLE_SOURCE_CHARS = 2000


# ---------------------------------------------------------------------------
# Context assembly
# ---------------------------------------------------------------------------


def split_system(messages: Sequence[Message]) -> Tuple[List[Message], List[Message]]:
    """Return ``(head, conversation)`` where *head* is the leading system message, if any."""
    if messages and messages[0].role is Role.SYSTEM:
        return [messages[0]], list(messages[1:])
    return [], list(messages)


def assemble_context(messages: Sequence[Message], summaries: Iterable[Summary]) -> List[Message]:
    """Build the messages sent to the model.

    The system message comes first, then the conversation in order with each
    summarized range replaced by a single system message carrying its summary.
    Summary indices count conversation messages only (the system message is
    not part of any range).
    """
    head, conversation = split_system(messages)
    return head + substitute_summaries(conversation, summaries)


def substitute_summaries(
    conversation: Sequence[Message],
    summaries: Iterable[Summary],
    start: int = 0,
    end: Optional[int] = None,
) -> List[Message]:
    """Return ``conversation[start:end]`` with summarized ranges replaced."""
    end = len(conversation) if end is None else min(end, len(conversation))
    by_start = {s.start_index: s for s in summaries}
    result: List[Message] = []

    index = start
    while index < end:
        summary = by_start.get(index)
        if summary is None:
            result.append(conversation[index])
            index += 1
            continue
        result.append(
            Message(
                role=Role.SYSTEM,
                content=SUMMARY_PREFIX + summary.content,
                timestamp=conversation[index].timestamp,
            )
        )
        index = summary.end_index
    return result


def transcript(messages: Iterable[Message]) -> str:
    return "\n\n".join(f"{m.role.label}: {m.content}" for m in messages)


def title_prompt(messages: Sequence[Message]) -> List[Message]:
    """Messages asking the model to name the conversation in *messages*."""
    _, conversation = split_system(messages)
    text = transcript(conversation[:TITLE_SOURCE_MESSAGES])[:TITLE_SOURCE_CHARS]
    return [
        Message(Role.SYSTEM, TITLE_INSTRUCTION, 0.0),
        Message(Role.USER, text, 0.0),
    ]


def clean_title(text: str) -> str:
    title = " ".join(text.split()).strip("\"'")
    if title.lower().startswith("title:"):
        title = title[len("title:"):].strip()
    return title


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


class ReplyState(Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class ChatSession:
    """The active thread: its messages, summaries and in-flight reply.

    New messages are kept in memory as *pending* until an exchange finishes;
    they are then written to the store in order. A storage failure leaves
    them pending so :meth:`retry_commit` can try again.
    """

    def __init__(
        self,
        store: Store,
        coordinator: StreamCoordinator,
        thread_id: str,
        model: str,
        messages: Sequence[Message],
        summaries: Sequence[Summary] = (),
        title: Optional[str] = None,
        *,
        token_counter: Optional[Callable[[str], int]] = None,
        token_budget: int = DEFAULT_TOKEN_BUDGET,
        keep_recent: int = DEFAULT_KEEP_RECENT,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.coordinator = coordinator
        self.thread_id = thread_id
        self.model = model
        self.messages: List[Message] = list(messages)
        self.summaries: List[Summary] = sorted(summaries, key=lambda s: s.start_index)
        self.title = title
        self.token_counter = token_counter or count_tokens
        self.token_budget = token_budget
        self.keep_recent = keep_recent
        self._clock = clock

        self.state = ReplyState.IDLE
        self.last_error: Optional[ChatError] = None
        self.commit_error: Optional[ChatError] = None
        self._pending: List[int] = []
        self._stream: Optional[CompletionStream] = None
        self._summary_job: Optional[Tuple[CompletionStream, int, int]] = None
        self._title_job: Optional[CompletionStream] = None

    @classmethod
    def open(
        cls,
        store: Store,
        coordinator: StreamCoordinator,
        thread_id: Optional[str] = None,
        profile: Optional["AssistantProfile"] = None,
        **options,
    ) -> "ChatSession":
        """Load *thread_id*, or create a new thread from *profile*.

        Raises :class:`~gptui.errors.NotFound` for an unknown thread id.
        """
        if thread_id is not None:
            model = store.get_thread_model(thread_id)
            logger.info("Resuming thread %s", thread_id)
            return cls(
                store,
                coordinator,
                thread_id,
                model,
                store.load_messages(thread_id),
                store.load_summaries(thread_id),
                store.get_title(thread_id),
                **options,
            )

        if profile is None:
            raise ValueError("A profile is required to start a new thread")
        counter = options.get("token_counter") or count_tokens
        clock = options.get("clock", time.time)
        system = Message(Role.SYSTEM, profile.prompt, clock(), counter(profile.prompt))
        thread_id = uuid.uuid4().hex
        store.create_thread(thread_id, profile.model, system)
        return cls(store, coordinator, thread_id, profile.model, [system], **options)

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    @property
    def streaming(self) -> bool:
        return self._stream is not None

    @property
    def streaming_text(self) -> Optional[str]:
        """Reply text received so far, or None when nothing is streaming."""
        return self._stream.text if self._stream is not None else None

    @property
    def conversation(self) -> List[Message]:
        return split_system(self.messages)[1]

    @property
    def has_pending(self) -> bool:
        return bool(self._pending)

    def snapshot(self) -> Tuple[Message, ...]:
        return tuple(self.messages)

    def context(self) -> List[Message]:
        return assemble_context(self.messages, self.summaries)

    def active_tokens(self) -> int:
        """Tokens of conversation messages not yet covered by a summary."""
        return sum(
            m.tokens
            for i, m in enumerate(self.conversation)
            if not any(s.covers(i) for s in self.summaries)
        )

    # ------------------------------------------------------------------
    # Exchanges
    # ------------------------------------------------------------------

    def _new_message(self, role: Role, content: str) -> Message:
        timestamp = self._clock()
        if self.messages and timestamp <= self.messages[-1].timestamp:
            timestamp = self.messages[-1].timestamp + TIMESTAMP_STEP
        return Message(role, content, timestamp, self.token_counter(content))

    def _add_pending(self, message: Message) -> None:
        self.messages.append(message)
        self._pending.append(len(self.messages) - 1)

    def submit(self, user_text: str) -> CompletionStream:
        """Append a user message and start streaming the reply."""
        if self._stream is not None:
            raise RuntimeError("A reply is already streaming")
        if not user_text.strip():
            raise ValueError("Cannot submit an empty message")

        self._add_pending(self._new_message(Role.USER, user_text))
        self.last_error = None
        self._stream = self.coordinator.start(self.context(), self.model)
        self.state = ReplyState.STREAMING
        return self._stream

    def poll(self) -> ReplyState:
        """Take whatever the stream and background jobs have produced."""
        if self._stream is not None:
            for event in self._stream.poll():
                if event.kind is EventKind.DONE:
                    self._finish(ReplyState.COMPLETED)
                elif event.kind is EventKind.ERROR:
                    self._finish(ReplyState.FAILED, event.error)
        self._poll_jobs()
        return self.state

    def cancel(self) -> None:
        """Stop the reply; what was already received is kept."""
        if self._stream is None:
            return
        self._stream.cancel()
        logger.info("Reply cancelled after %d characters", len(self._stream.text))
        self._finish(ReplyState.CANCELLED)

    def _finish(self, state: ReplyState, error: Optional[ChatError] = None) -> None:
        stream = self._stream
        self._stream = None
        self.state = state
        if stream is not None and stream.text:
            self._add_pending(self._new_message(Role.ASSISTANT, stream.text))
        if error is not None:
            self.last_error = error

        self.commit_pending()

        if state is ReplyState.COMPLETED:
            self.commit_summary_if_needed(block=False)
            self._request_title()

    def commit_pending(self) -> None:
        """Write pending messages to the store, oldest first."""
        while self._pending:
            index = self._pending[0]
            message = self.messages[index]
            try:
                stored = self.store.append_message(
                    self.thread_id,
                    message.role,
                    message.content,
                    message.timestamp,
                    message.tokens,
                )
            except StorageError as exc:
                logger.error("Commit failed with %d message(s) pending: %s", len(self._pending), exc)
                self.commit_error = exc
                raise
            if stored != message.timestamp:
                self.messages[index] = replace(message, timestamp=stored)
            self._pending.pop(0)
        self.commit_error = None

    def retry_commit(self) -> bool:
        """Retry a failed commit; return False if nothing was pending."""
        if not self._pending:
            return False
        self.commit_pending()
        if self.state is ReplyState.COMPLETED:
            self.commit_summary_if_needed(block=False)
            self._request_title()
        return True

    # ------------------------------------------------------------------
    # Summaries
    # ------------------------------------------------------------------

    def plan_summary(self) -> Optional[Tuple[int, int]]:
        """Return the conversation range to condense next, if over budget.

        The oldest uncovered range is chosen, stopping short of the
        ``keep_recent`` newest messages. A summary ending exactly where the
        range starts is absorbed into it.
        """
        if self.active_tokens() <= self.token_budget:
            return None

        conversation = self.conversation
        limit = len(conversation) - self.keep_recent
        if self._pending:
            # only durable messages may be summarized
            limit = min(limit, self._pending[0] - (len(self.messages) - len(conversation)))

        start = 0
        for summary in self.summaries:
            if summary.start_index > start:
                break
            start = max(start, summary.end_index)
        if start >= limit:
            return None

        end = limit
        for summary in self.summaries:
            if start < summary.start_index < end:
                end = summary.start_index

        previous = next((s for s in self.summaries if s.end_index == start), None)
        if previous is not None:
            start = previous.start_index
        return start, end

    def _summary_prompt(self, start: int, end: int) -> List[Message]:
        inside = [s for s in self.summaries if start <= s.start_index and s.end_index <= end]
        parts = substitute_summaries(self.conversation, inside, start, end)
        return [
            Message(Role.SYSTEM, SUMMARY_INSTRUCTION, 0.0),
            Message(Role.USER, transcript(parts), 0.0),
        ]

    def commit_summary_if_needed(self, block: bool = True) -> Optional[Summary]:
        """Summarize the oldest part of the conversation when over budget.

        With ``block=False`` the request runs in the background and
        :meth:`poll` stores the result.
        """
        if self._summary_job is not None:
            return None
        plan = self.plan_summary()
        if plan is None:
            return None

        start, end = plan
        logger.info(
            "Context at %d tokens exceeds %d, summarizing [%d, %d)",
            self.active_tokens(),
            self.token_budget,
            start,
            end,
        )
        stream = self.coordinator.request(self._summary_prompt(start, end), self.model)
        if not block:
            self._summary_job = (stream, start, end)
            return None
        return self._store_summary(start, end, stream.result())

    def _store_summary(self, start: int, end: int, content: str) -> Optional[Summary]:
        content = content.strip()
        if not content:
            logger.warning("Model returned an empty summary for [%d, %d)", start, end)
            return None
        self.store.upsert_summary(self.thread_id, start, end, content)
        summary = Summary(start, end, content)
        kept = [s for s in self.summaries if not (start <= s.start_index and s.end_index <= end)]
        self.summaries = sorted(kept + [summary], key=lambda s: s.start_index)
        return summary

    # ------------------------------------------------------------------
    # Background jobs
    # ------------------------------------------------------------------

    def _request_title(self) -> None:
        if self.title is not None or self._title_job is not None:
            return
        if not any(m.role is Role.ASSISTANT for m in self.messages):
            return
        self._title_job = self.coordinator.request(title_prompt(self.messages), self.model)

    def _poll_jobs(self) -> None:
        if self._summary_job is not None:
            stream, start, end = self._summary_job
            stream.poll()
            if stream.done:
                self._summary_job = None
                if stream.error is not None:
                    logger.warning("Background summary failed: %s", stream.error)
                else:
                    try:
                        self._store_summary(start, end, stream.text)
                    except ChatError as exc:
                        logger.warning("Could not store summary: %s", exc)

        if self._title_job is not None:
            self._title_job.poll()
            if self._title_job.done:
                stream, self._title_job = self._title_job, None
                title = clean_title(stream.text) if stream.error is None else ""
                if not title:
                    logger.warning("Title synthesis failed: %s", stream.error)
                    return
                try:
                    self.store.upsert_title(self.thread_id, title)
                except ChatError as exc:
                    logger.warning("Could not store title: %s", exc)
                    return
                self.title = title

    def wait_for_jobs(self, timeout: float = 5.0) -> None:
        """Block until background summary and title requests finish."""
        if self._summary_job is not None:
            self._summary_job[0].wait(timeout)
        if self._title_job is not None:
            self._title_job.wait(timeout)
        self._poll_jobs()
