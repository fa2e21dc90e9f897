"""Hand the compose buffer to an external editor."""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
import tempfile
from typing import Optional

from ..errors import ChatError

logger = logging.getLogger(__name__)

DEFAULT_EDITOR = "vi"


def resolve_editor(command: Optional[str] = None) -> str:
    return command or os.environ.get("VISUAL") or os.environ.get("EDITOR") or DEFAULT_EDITOR


def edit(initial: str = "", command: Optional[str] = None) -> Optional[str]:
    """Open *initial* in an editor and return the saved text.

    Returns ``None`` when the user cancels: the editor exits non-zero or the
    file is left empty.
    """
    editor = resolve_editor(command)

    with tempfile.NamedTemporaryFile(
        mode="w",
        suffix=".md",
        prefix="gptui-prompt-",
        delete=False,
        encoding="utf-8",
    ) as f:
        f.write(initial)
        tmpfile = f.name

    try:
        try:
            result = subprocess.run([*shlex.split(editor), tmpfile])
        except OSError as exc:
            raise ChatError(f"Could not launch editor '{editor}': {exc}", hint="set $EDITOR") from exc

        if result.returncode != 0:
            logger.info("Editor exited with code %d", result.returncode)
            return None

        with open(tmpfile, encoding="utf-8") as f:
            text = f.read().strip()
        return text or None
    finally:
        try:
            os.unlink(tmpfile)
        except OSError:
            logger.warning("Could not remove temporary file %s", tmpfile)
