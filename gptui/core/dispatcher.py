"""Modal key handling for the chat view.

Every key event is looked up in :data:`TRANSITIONS` by ``(mode, key)``.
Pairs missing from the table are ignored, so there is no implicit
fall-through between modes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum, auto
from typing import Callable, Dict, Optional, Protocol, Tuple

from ..errors import ChatError, NotFound

logger = logging.getLogger(__name__)

PAGE_SIZE = 10


class Mode(Enum):
    NORMAL = auto()
    EXTERNAL_EDIT = auto()
    COPY_MODE = auto()
    STREAMING = auto()
    CLOSED = auto()


class Key(Enum):
    CHAR = auto()
    ENTER = auto()
    NEWLINE = auto()
    BACKSPACE = auto()
    ESCAPE = auto()
    CANCEL = auto()
    QUIT = auto()
    EDITOR = auto()
    COPY_MODE = auto()
    RETRY = auto()
    SCROLL_UP = auto()
    SCROLL_DOWN = auto()
    PAGE_UP = auto()
    PAGE_DOWN = auto()


@dataclass(frozen=True)
class KeyEvent:
    key: Key
    char: str = ""


def char(c: str) -> KeyEvent:
    return KeyEvent(Key.CHAR, c)


class Actions(Protocol):
    """Operations the dispatcher triggers on the session side."""

    def submit(self, text: str) -> bool:
        """Start an exchange; return False if nothing was started."""

    def cancel(self) -> None:
        ...

    def edit(self, initial: str) -> Optional[str]:
        ...

    def copy_block(self, index: int) -> str:
        """Copy block *index* to the clipboard and return a status message."""

    def retry_commit(self) -> bool:
        ...

    def quit(self) -> None:
        ...


TRANSITIONS: Dict[Tuple[Mode, Key], str] = {
    # Composing
    (Mode.NORMAL, Key.CHAR): "_insert",
    (Mode.NORMAL, Key.NEWLINE): "_newline",
    (Mode.NORMAL, Key.BACKSPACE): "_backspace",
    (Mode.NORMAL, Key.ENTER): "_submit",
    (Mode.NORMAL, Key.CANCEL): "_clear_buffer",
    (Mode.NORMAL, Key.EDITOR): "_open_editor",
    (Mode.NORMAL, Key.COPY_MODE): "_enter_copy_mode",
    (Mode.NORMAL, Key.RETRY): "_retry_commit",
    (Mode.NORMAL, Key.QUIT): "_quit",
    (Mode.NORMAL, Key.SCROLL_UP): "_scroll_up",
    (Mode.NORMAL, Key.SCROLL_DOWN): "_scroll_down",
    (Mode.NORMAL, Key.PAGE_UP): "_page_up",
    (Mode.NORMAL, Key.PAGE_DOWN): "_page_down",
    # Waiting on the model; input is queued for the next submit
    (Mode.STREAMING, Key.CHAR): "_insert",
    (Mode.STREAMING, Key.NEWLINE): "_newline",
    (Mode.STREAMING, Key.BACKSPACE): "_backspace",
    (Mode.STREAMING, Key.CANCEL): "_cancel_stream",
    (Mode.STREAMING, Key.QUIT): "_cancel_and_quit",
    (Mode.STREAMING, Key.SCROLL_UP): "_scroll_up",
    (Mode.STREAMING, Key.SCROLL_DOWN): "_scroll_down",
    (Mode.STREAMING, Key.PAGE_UP): "_page_up",
    (Mode.STREAMING, Key.PAGE_DOWN): "_page_down",
    # Picking a code block
    (Mode.COPY_MODE, Key.CHAR): "_copy_digit",
    (Mode.COPY_MODE, Key.BACKSPACE): "_copy_backspace",
    (Mode.COPY_MODE, Key.ENTER): "_copy_selected",
    (Mode.COPY_MODE, Key.ESCAPE): "_leave_copy_mode",
    (Mode.COPY_MODE, Key.CANCEL): "_leave_copy_mode",
    (Mode.COPY_MODE, Key.SCROLL_UP): "_scroll_up",
    (Mode.COPY_MODE, Key.SCROLL_DOWN): "_scroll_down",
    (Mode.COPY_MODE, Key.PAGE_UP): "_page_up",
    (Mode.COPY_MODE, Key.PAGE_DOWN): "_page_down",
}


class InputDispatcher:
    """Routes key events to buffer edits and session actions."""

    def __init__(self, actions: Actions):
        self.actions = actions
        self.mode = Mode.NORMAL
        self.buffer = ""
        self.copy_digits = ""
        self.scroll = 0
        self.status = ""

    @property
    def closed(self) -> bool:
        return self.mode is Mode.CLOSED

    def handle(self, event: KeyEvent) -> bool:
        """Apply *event*; return True if it was handled."""
        name = TRANSITIONS.get((self.mode, event.key))
        if name is None:
            logger.debug("Ignoring %s in %s", event.key.name, self.mode.name)
            return False
        handler: Callable[[KeyEvent], None] = getattr(self, name)
        try:
            handler(event)
        except ChatError as exc:
            logger.info("Action failed in %s: %s", self.mode.name, exc)
            self.status = exc.describe()
        return True

    def stream_finished(self) -> None:
        """Called by the loop once the in-flight reply has ended."""
        if self.mode is Mode.STREAMING:
            self.mode = Mode.NORMAL
            self.scroll = 0

    # ---------------- Buffer editing ----------------

    def _insert(self, event: KeyEvent) -> None:
        self.buffer += event.char

    def _newline(self, event: KeyEvent) -> None:
        self.buffer += "\n"

    def _backspace(self, event: KeyEvent) -> None:
        self.buffer = self.buffer[:-1]

    def _clear_buffer(self, event: KeyEvent) -> None:
        self.buffer = ""

    # ---------------- Session actions ----------------

    def _submit(self, event: KeyEvent) -> None:
        text = self.buffer.strip()
        if not text:
            return
        if self.actions.submit(text):
            self.buffer = ""
            self.status = ""
            self.scroll = 0
            self.mode = Mode.STREAMING

    def _cancel_stream(self, event: KeyEvent) -> None:
        self.mode = Mode.NORMAL
        self.status = "reply cancelled"
        self.actions.cancel()

    def _cancel_and_quit(self, event: KeyEvent) -> None:
        try:
            self.actions.cancel()
        finally:
            self._quit(event)

    def _quit(self, event: KeyEvent) -> None:
        self.mode = Mode.CLOSED
        self.actions.quit()

    def _retry_commit(self, event: KeyEvent) -> None:
        if self.actions.retry_commit():
            self.status = "saved"

    def _open_editor(self, event: KeyEvent) -> None:
        self.mode = Mode.EXTERNAL_EDIT
        try:
            text = self.actions.edit(self.buffer)
        finally:
            self.mode = Mode.NORMAL
        if text is not None:
            self.buffer = text

    # ---------------- Copy mode ----------------

    def _enter_copy_mode(self, event: KeyEvent) -> None:
        self.mode = Mode.COPY_MODE
        self.copy_digits = ""
        self.status = "copy: type a block number and press Enter (Esc to leave)"

    def _leave_copy_mode(self, event: KeyEvent) -> None:
        self.mode = Mode.NORMAL
        self.copy_digits = ""
        self.status = ""

    def _copy_digit(self, event: KeyEvent) -> None:
        if event.char.isascii() and event.char.isdigit():
            self.copy_digits += event.char
            self.status = f"copy: ({self.copy_digits})"

    def _copy_backspace(self, event: KeyEvent) -> None:
        self.copy_digits = self.copy_digits[:-1]
        self.status = f"copy: ({self.copy_digits})"

    def _copy_selected(self, event: KeyEvent) -> None:
        digits = self.copy_digits
        self._leave_copy_mode(event)
        if not digits:
            return
        try:
            self.status = self.actions.copy_block(int(digits))
        except NotFound as exc:
            self.status = str(exc)

    # ---------------- Scrolling ----------------

    def _scroll_up(self, event: KeyEvent) -> None:
        self.scroll += 1

    def _scroll_down(self, event: KeyEvent) -> None:
        self.scroll = max(0, self.scroll - 1)

    def _page_up(self, event: KeyEvent) -> None:
        self.scroll += PAGE_SIZE

    def _page_down(self, event: KeyEvent) -> None:
        self.scroll = max(0, self.scroll - PAGE_SIZE)
