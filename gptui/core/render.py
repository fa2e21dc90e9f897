"""Turn a conversation into styled, wrapped terminal lines.

The transcript is split into prose and fenced code blocks. Prose is wrapped
to the terminal width, code is highlighted with Pygments (through
:class:`rich.syntax.Syntax`) and folded, and every code block gets a 1-based
index so copy mode can refer to it.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Union

from pygments.lexers import get_lexer_by_name
from pygments.util import ClassNotFound
from rich.syntax import Syntax
from rich.text import Text

from ..errors import NotFound
from ..utils.ansi import Ansi, console
from .models import Message, Role

FENCE_OPEN = re.compile(r"^\s*```\s*([\w.+#-]*)\s*$")
FENCE_CLOSE = "```"

HEADER_STYLES = {Role.USER: Ansi.USER_HEADER, Role.ASSISTANT: Ansi.ASSISTANT_HEADER}


@dataclass(frozen=True)
class CodeBlock:
    language: Optional[str]
    content: str
    complete: bool = True

    def as_raw(self) -> str:
        """Return the block re-wrapped in its fence."""
        return f"```{self.language or ''}\n{self.content}\n```"


Segment = Union[str, CodeBlock]


def split_segments(text: str) -> List[Segment]:
    """Split *text* into prose strings and :class:`CodeBlock` items.

    A fence must sit on its own line. A block still open at the end of the
    text is returned with ``complete=False``.
    """
    segments: List[Segment] = []
    prose: List[str] = []
    code: Optional[List[str]] = None
    language: Optional[str] = None

    for line in text.split("\n"):
        if code is None:
            match = FENCE_OPEN.match(line)
            if match is None:
                prose.append(line)
                continue
            if prose:
                segments.append("\n".join(prose))
                prose = []
            language = match.group(1) or None
            code = []
        elif line.strip() == FENCE_CLOSE:
            segments.append(CodeBlock(language, "\n".join(code)))
            code = None
        else:
            code.append(line)

    if code is not None:
        segments.append(CodeBlock(language, "\n".join(code), complete=False))
    elif prose:
        segments.append("\n".join(prose))
    return segments


def highlight(code: str, language: Optional[str], theme: str) -> List[Text]:
    """Return one styled :class:`Text` per line of *code*.

    Unknown or missing languages fall back to plain text; rich falls back to
    its default theme when *theme* is not a known Pygments style.
    """
    expected = len(code.split("\n"))
    lexer = None
    if language:
        try:
            lexer = get_lexer_by_name(language)
        except ClassNotFound:
            lexer = None

    if lexer is None:
        text = Text(code)
    else:
        syntax = Syntax(code, lexer, theme=theme, background_color="default")
        text = syntax.highlight(code)

    lines = list(text.split("\n", allow_blank=True))
    lines += [Text("") for _ in range(expected - len(lines))]
    return lines[:expected]


# ---------------------------------------------------------------------------
# Frames
# ---------------------------------------------------------------------------


@dataclass
class Frame:
    """Laid-out transcript: display lines plus the code blocks they show."""

    width: int
    lines: List[Text] = field(default_factory=list)
    blocks: List[CodeBlock] = field(default_factory=list)

    def extract(self, index: int) -> str:
        """Return the exact content of code block *index* (1-based)."""
        if not 1 <= index <= len(self.blocks):
            raise NotFound(f"No code block ({index}); this view has {len(self.blocks)}")
        return self.blocks[index - 1].content

    def max_scroll(self, height: int) -> int:
        return max(0, len(self.lines) - height)

    def window(self, height: int, scroll: int = 0) -> List[Text]:
        """Return the *height* lines visible when scrolled *scroll* lines up from the bottom."""
        if height <= 0:
            return []
        scroll = min(max(scroll, 0), self.max_scroll(height))
        end = len(self.lines) - scroll
        return self.lines[max(0, end - height):end]


class _Builder:
    def __init__(self, width: int, theme: str):
        self.frame = Frame(width=max(width, 1))
        self.theme = theme

    @property
    def width(self) -> int:
        return self.frame.width

    def header(self, role: Role) -> None:
        if self.frame.lines:
            self.frame.lines.append(Text(""))
        self.frame.lines.append(Text(role.label.capitalize(), style=HEADER_STYLES[role]))

    def prose(self, text: str, style: str = "") -> None:
        text = text.strip("\n")
        if not text.strip():
            return
        self.frame.lines.extend(Text(text, style=style).wrap(console, self.width))

    def code(self, block: CodeBlock) -> None:
        self.frame.blocks.append(block)
        annotation = Text(f"({len(self.frame.blocks)})", style=Ansi.BLOCK_INDEX)
        if block.language:
            annotation.append(f" {block.language}", style=Ansi.BLOCK_INFO)
        if not block.complete:
            annotation.append(" ...", style=Ansi.BLOCK_INFO)
        self.frame.lines.append(annotation)
        for line in highlight(block.content, block.language, self.theme):
            self.frame.lines.extend(line.divide(range(self.width, len(line), self.width)))

    def body(self, text: str) -> None:
        for segment in split_segments(text):
            if isinstance(segment, CodeBlock):
                self.code(segment)
            else:
                self.prose(segment)


def layout(
    messages: Sequence[Message],
    width: int,
    *,
    theme: str,
    pending: Optional[str] = None,
    error: Optional[str] = None,
) -> Frame:
    """Lay out *messages* for a terminal *width* columns wide.

    *pending* is the partial reply of an in-flight stream and *error* an
    inline error shown where the reply would be. Code blocks are numbered
    from 1 across the whole frame.
    """
    builder = _Builder(width, theme)
    last_role: Optional[Role] = None

    for message in messages:
        if message.role is Role.SYSTEM:
            continue
        builder.header(message.role)
        builder.body(message.content)
        last_role = message.role

    if pending is not None:
        builder.header(Role.ASSISTANT)
        builder.body(pending)
        last_role = Role.ASSISTANT

    if error:
        if last_role is not Role.ASSISTANT:
            builder.header(Role.ASSISTANT)
        builder.prose(f"[error] {error}", style=Ansi.ERROR)

    return builder.frame
