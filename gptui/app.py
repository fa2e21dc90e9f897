"""Full-screen chat view: the render/input loop around a :class:`ChatSession`."""

from __future__ import annotations

import logging
import signal
from typing import Callable, List, Optional, Tuple

from rich.console import Group, RenderableType
from rich.text import Text

from .core.dispatcher import InputDispatcher, Mode
from .core.render import Frame, layout
from .core.session import ChatSession
from .errors import ChatError
from .utils.ansi import Ansi
from .utils.clipboard import Clipboard
from .utils.editor import edit as edit_externally
from .utils.terminal import Terminal

logger = logging.getLogger(__name__)

COMPOSE_PREFIX = "> "
COMPOSE_MAX_LINES = 6

MODE_LABELS = {
    Mode.NORMAL: "NORMAL",
    Mode.EXTERNAL_EDIT: "EDITOR",
    Mode.COPY_MODE: "COPY",
    Mode.STREAMING: "STREAMING",
    Mode.CLOSED: "CLOSED",
}

HELP_TEXT = "Enter send | Ctrl-J newline | Ctrl-E editor | Ctrl-Space copy | Ctrl-C cancel | Ctrl-D quit"


class ChatApp:
    """Single-threaded loop: drain the stream, read keys, redraw or idle."""

    def __init__(
        self,
        session: ChatSession,
        terminal: Terminal,
        *,
        theme: str,
        clipboard: Optional[Clipboard] = None,
        editor_command: Optional[str] = None,
        editor: Callable[[str, Optional[str]], Optional[str]] = edit_externally,
        tick: float = 0.05,
    ):
        self.session = session
        self.terminal = terminal
        self.theme = theme
        self.clipboard = clipboard or Clipboard()
        self.editor_command = editor_command
        self.editor = editor
        self.tick = tick
        self.dispatcher = InputDispatcher(self)
        self._frame: Optional[Frame] = None
        self._size: Optional[Tuple[int, int]] = None
        self._stop_requested = False

    # ------------------------------------------------------------------
    # Actions triggered by the dispatcher
    # ------------------------------------------------------------------

    def submit(self, text: str) -> bool:
        if self.session.has_pending:
            self.dispatcher.status = "earlier messages are not saved yet, press Ctrl-S to retry"
            return False
        self.session.submit(text)
        return True

    def cancel(self) -> None:
        self.session.cancel()

    def edit(self, initial: str) -> Optional[str]:
        with self.terminal.suspended():
            return self.editor(initial, self.editor_command)

    def copy_block(self, index: int) -> str:
        frame = self._frame or self.layout()
        self.clipboard.write(frame.extract(index))
        return f"copied block ({index}) to the clipboard"

    def retry_commit(self) -> bool:
        return self.session.retry_commit()

    def quit(self) -> None:
        logger.info("Quit requested")

    # ------------------------------------------------------------------
    # Drawing
    # ------------------------------------------------------------------

    def layout(self) -> Frame:
        width, _ = self.terminal.size
        error = self.session.last_error.describe() if self.session.last_error else None
        self._frame = layout(
            self.session.snapshot(),
            width,
            theme=self.theme,
            pending=self.session.streaming_text,
            error=error,
        )
        return self._frame

    def _status_line(self, width: int) -> Text:
        parts = [MODE_LABELS[self.dispatcher.mode], self.session.model]
        if self.session.title:
            parts.append(self.session.title)
        if self.session.commit_error is not None:
            parts.append("unsaved, Ctrl-S to retry")
        parts.append(self.dispatcher.status or HELP_TEXT)
        line = Text(" " + " | ".join(parts), style=Ansi.STATUS, no_wrap=True, overflow="ellipsis")
        line.truncate(width, overflow="ellipsis", pad=True)
        return line

    def _compose_lines(self, width: int) -> List[Text]:
        if self.dispatcher.mode is Mode.COPY_MODE:
            text = Text(f"copy block: {self.dispatcher.copy_digits}", style=Ansi.COPY_PROMPT)
        else:
            text = Text(COMPOSE_PREFIX, style=Ansi.COMPOSE_PROMPT)
            text.append(self.dispatcher.buffer)
        lines = list(text.wrap(self.terminal.console, max(width, 1)))
        return lines[-COMPOSE_MAX_LINES:] or [Text("")]

    def render(self) -> RenderableType:
        width, height = self.terminal.size
        frame = self.layout()
        compose = self._compose_lines(width)
        body_height = max(1, height - len(compose) - 1)

        self.dispatcher.scroll = min(self.dispatcher.scroll, frame.max_scroll(body_height))
        visible = frame.window(body_height, self.dispatcher.scroll)
        padding = [Text("") for _ in range(body_height - len(visible))]
        return Group(*padding, *visible, self._status_line(width), *compose)

    def redraw(self) -> None:
        self._size = self.terminal.size
        self.terminal.draw(self.render())

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    def request_stop(self, *_args) -> None:
        """Signal handler: cancel any reply and leave the loop."""
        self._stop_requested = True

    def _pump_session(self) -> bool:
        was_streaming = self.session.streaming
        before = self.session.streaming_text
        changed = False
        try:
            self.session.poll()
        except ChatError as exc:
            self.dispatcher.status = exc.describe()
            changed = True
        if was_streaming and not self.session.streaming:
            self.dispatcher.stream_finished()
            return True
        return changed or self.session.streaming_text != before

    def step(self) -> bool:
        """Run one loop iteration; return False once the view is closed."""
        if self._stop_requested and not self.dispatcher.closed:
            logger.info("Stop requested by signal")
            try:
                self.session.cancel()
            except ChatError as exc:
                logger.error("Could not save cancelled reply: %s", exc)
            self.dispatcher.mode = Mode.CLOSED

        if self.dispatcher.closed:
            return False

        changed = self._pump_session()

        for event in self.terminal.read_events():
            self.dispatcher.handle(event)
            changed = True
            if self.dispatcher.closed:
                return False

        if changed or self.terminal.size != self._size:
            self.redraw()
        else:
            self.terminal.wait(self.tick)
        return True

    def run(self) -> None:
        previous = signal.signal(signal.SIGTERM, self.request_stop)
        try:
            with self.terminal:
                self.redraw()
                while self.step():
                    pass
        finally:
            signal.signal(signal.SIGTERM, previous)
            self._shutdown()

    def _shutdown(self) -> None:
        try:
            self.session.cancel()
            self.session.retry_commit()
        except ChatError as exc:
            logger.error("Messages could not be saved on exit: %s", exc)
