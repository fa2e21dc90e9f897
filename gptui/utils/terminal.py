"""Raw keyboard input and full-screen drawing.

Keys are read with prompt_toolkit's input layer and translated to the
dispatcher's logical :class:`~gptui.core.dispatcher.KeyEvent`; frames are
drawn through a :class:`rich.live.Live` on the alternate screen.
"""

from __future__ import annotations

import logging
import select
from contextlib import ExitStack, contextmanager
from typing import Dict, Iterator, List, Optional, Tuple

from prompt_toolkit.input import Input, create_input
from prompt_toolkit.key_binding import KeyPress
from prompt_toolkit.keys import Keys
from rich.console import Console, RenderableType
from rich.live import Live

from ..core.dispatcher import Key, KeyEvent
from .ansi import console as default_console

logger = logging.getLogger(__name__)

KEYMAP: Dict[Keys, Key] = {
    Keys.ControlM: Key.ENTER,
    Keys.ControlJ: Key.NEWLINE,
    Keys.ControlH: Key.BACKSPACE,
    Keys.Escape: Key.ESCAPE,
    Keys.ControlC: Key.CANCEL,
    Keys.ControlD: Key.QUIT,
    Keys.ControlE: Key.EDITOR,
    Keys.ControlAt: Key.COPY_MODE,  # Ctrl-Space
    Keys.ControlY: Key.COPY_MODE,
    Keys.ControlS: Key.RETRY,
    Keys.Up: Key.SCROLL_UP,
    Keys.ControlUp: Key.SCROLL_UP,
    Keys.Down: Key.SCROLL_DOWN,
    Keys.ControlDown: Key.SCROLL_DOWN,
    Keys.PageUp: Key.PAGE_UP,
    Keys.PageDown: Key.PAGE_DOWN,
}


def translate(press: KeyPress) -> List[KeyEvent]:
    """Turn one prompt_toolkit key press into dispatcher events."""
    if press.key == Keys.BracketedPaste:
        events = []
        for c in press.data.replace("\r\n", "\n").replace("\r", "\n"):
            events.append(KeyEvent(Key.NEWLINE) if c == "\n" else KeyEvent(Key.CHAR, c))
        return events
    if press.key == Keys.ControlI:
        return [KeyEvent(Key.CHAR, "\t")]
    key = KEYMAP.get(press.key)  # type: ignore[call-overload]
    if key is not None:
        return [KeyEvent(key)]
    if isinstance(press.key, str) and len(press.key) == 1 and press.key.isprintable():
        return [KeyEvent(Key.CHAR, press.key)]
    return []


class Terminal:
    """Full-screen terminal: raw input plus a live-redrawn frame."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or default_console
        self._input: Optional[Input] = None
        self._live: Optional[Live] = None
        self._stack: Optional[ExitStack] = None

    # ---------------- Lifecycle ----------------

    def start(self) -> None:
        if self._input is None:
            self._input = create_input()
        self._stack = ExitStack()
        self._stack.enter_context(self._input.raw_mode())
        self._live = Live(
            console=self.console,
            screen=True,
            auto_refresh=False,
            redirect_stdout=False,
            redirect_stderr=False,
        )
        self._live.start()

    def stop(self) -> None:
        if self._live is not None:
            self._live.stop()
            self._live = None
        if self._stack is not None:
            self._stack.close()
            self._stack = None

    def __enter__(self) -> "Terminal":
        self.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self.stop()

    @contextmanager
    def suspended(self) -> Iterator[None]:
        """Give the terminal back to the user (e.g. for an editor)."""
        self.stop()
        try:
            yield
        finally:
            self.start()

    # ---------------- Output ----------------

    @property
    def size(self) -> Tuple[int, int]:
        width, height = self.console.size
        return width, height

    def draw(self, renderable: RenderableType) -> None:
        if self._live is not None:
            self._live.update(renderable, refresh=True)

    # ---------------- Input ----------------

    def wait(self, timeout: float) -> bool:
        """Block until input is available or *timeout* seconds pass."""
        if self._input is None:
            return False
        ready, _, _ = select.select([self._input.fileno()], [], [], timeout)
        return bool(ready)

    def read_events(self) -> List[KeyEvent]:
        if self._input is None or not self.wait(0):
            return []
        presses = self._input.read_keys() + self._input.flush_keys()
        events: List[KeyEvent] = []
        for press in presses:
            events.extend(translate(press))
        return events
