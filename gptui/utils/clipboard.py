"""System clipboard access."""

from __future__ import annotations

import logging

import pyperclip
from prompt_toolkit.clipboard import ClipboardData
from prompt_toolkit.clipboard.pyperclip import PyperclipClipboard

from ..errors import ClipboardError

logger = logging.getLogger(__name__)


class Clipboard:
    def __init__(self) -> None:
        self._backend = PyperclipClipboard()

    def write(self, text: str) -> None:
        try:
            self._backend.set_data(ClipboardData(text))
        except pyperclip.PyperclipException as exc:
            logger.warning("Clipboard write failed: %s", exc)
            raise ClipboardError(f"Clipboard unavailable: {exc}") from exc
