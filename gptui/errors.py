"""Error taxonomy shared by the session engine and its collaborators."""

from __future__ import annotations

from typing import Optional

import openai


class ChatError(Exception):
    """Base class for every failure surfaced to the user.

    ``hint`` is a short, user-facing suggestion shown next to the message.
    """

    default_hint = ""

    def __init__(self, message: str, *, hint: Optional[str] = None):
        super().__init__(message)
        self.hint = hint if hint is not None else self.default_hint

    def describe(self) -> str:
        """Return the message followed by the hint, if any."""
        if self.hint:
            return f"{self} ({self.hint})"
        return str(self)


class TransportError(ChatError):
    default_hint = "check your network connection and try again"


class AuthFailure(ChatError):
    default_hint = "check that your API key is set and valid"


class RateLimited(ChatError):
    default_hint = "wait a moment before sending another message"


class ServerError(ChatError):
    default_hint = "the completion service is having trouble, try again later"


class StorageError(ChatError):
    default_hint = "press Ctrl-S to retry saving"


class NotFound(ChatError):
    pass


class Cancelled(ChatError):
    pass


class ConfigError(ChatError):
    default_hint = "fix or delete the configuration file"


class ClipboardError(ChatError):
    default_hint = "install xclip, xsel or wl-clipboard"


# ---------------------------------------------------------------------------
# SDK error translation
# ---------------------------------------------------------------------------


def translate_error(exc: Exception) -> ChatError:
    """Map an :mod:`openai` SDK exception onto the taxonomy above."""
    if isinstance(exc, ChatError):
        return exc

    # APITimeoutError subclasses APIConnectionError
    if isinstance(exc, openai.APIConnectionError):
        return TransportError(f"Connection failed: {exc}")

    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return AuthFailure(f"Request was not authorized: {exc}")

    if isinstance(exc, openai.RateLimitError):
        return RateLimited(f"Rate limited: {exc}")

    if isinstance(exc, openai.APIStatusError):
        status = exc.status_code
        if status >= 500:
            return ServerError(f"Server error (HTTP {status}): {exc}")
        return ChatError(f"Request failed (HTTP {status}): {exc}")

    return TransportError(f"Unexpected transport failure: {exc}")
