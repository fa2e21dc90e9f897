"""Token counting with tiktoken."""

from __future__ import annotations

from functools import lru_cache

import tiktoken

ENCODING_NAME = "cl100k_base"


@lru_cache(maxsize=1)
def _get_encoding() -> "tiktoken.Encoding":
    return tiktoken.get_encoding(ENCODING_NAME)


def count_tokens(text: str) -> int:
    """Return the number of tokens *text* encodes to."""
    if not text:
        return 0
    return len(_get_encoding().encode(text, disallowed_special=()))
