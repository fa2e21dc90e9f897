from .ansi import Ansi, ERROR_LABEL, console
from .spinner import Spinner

__all__ = [
    "Ansi",
    "ERROR_LABEL",
    "console",
    "Spinner",
]
