"""Console and style names shared by the transcript view and the CLI."""

import os
from rich.console import Console


# rich itself honours NO_COLOR for the console; Ansi.style covers markup strings
console = Console()


class Ansi:
    """Style names, one per element the app draws."""

    BOLD = "bold"
    DIM = "dim"
    REVERSE = "reverse"

    USER_HEADER = "bold green underline"
    ASSISTANT_HEADER = "bold blue underline"
    BLOCK_INDEX = "italic bright_magenta"
    BLOCK_INFO = DIM
    ERROR = "bold red"
    STATUS = REVERSE
    COMPOSE_PROMPT = BOLD
    COPY_PROMPT = "bright_magenta"

    @staticmethod
    def style(text: str, *codes: str) -> str:
        """Return *text* wrapped in rich markup unless ``NO_COLOR`` is set."""
        if os.getenv("NO_COLOR") is not None:
            return text
        style = " ".join(codes)
        return f"[{style}]{text}[/]"


ERROR_LABEL = Ansi.style("error", Ansi.ERROR)
