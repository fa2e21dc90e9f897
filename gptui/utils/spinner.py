"""Progress spinner for CLI commands that wait on the completion service."""
from __future__ import annotations

from rich.control import Control, ControlType
from yaspin import yaspin  # type: ignore

from .ansi import console


class Spinner:
    """Spinner with a fixed prefix and a progress text that can change.

    Usable as a context manager; the line is cleared on exit.
    """

    def __init__(self, prefix: str = ""):
        self._prefix = prefix
        self._started = False
        # spinner after the text so prefix stays at the start
        self._spinner = yaspin(text="", side="right")

    def update(self, progress: str) -> None:
        self._spinner.text = progress

    def start(self) -> None:
        if self._started:
            return
        console.print(self._prefix, end="")
        console.file.flush()
        self._spinner.start()
        self._started = True

    def stop(self) -> None:
        if not self._started:
            return
        self._spinner.stop()
        console.control(Control.move_to_column(0), Control((ControlType.ERASE_IN_LINE, 2)))
        self._started = False

    def __enter__(self) -> "Spinner":
        self.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self.stop()
