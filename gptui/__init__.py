"""Terminal chat client for OpenAI models with persistent, resumable threads.

Features
--------
1. Threads are stored in SQLite and can be listed, resumed or deleted later.
2. Replies stream into a full-screen, syntax-highlighted transcript while you keep typing.
3. Long conversations are condensed into rolling summaries to stay within the context window.
4. Copy mode (Ctrl-Space, then a block number) puts any code block on the clipboard.
5. Ctrl-E composes a message in your $EDITOR.

Run `gptui new`, `gptui list` or `python -m gptui --help`.
"""
# Re-export useful symbols for convenience
from .core import ChatSession, Message, OpenAIClientWrapper, Role, Store, StreamCoordinator
from .config import AssistantProfile, Config
from .cli import ChatCLI, run_cli

__all__ = [
    "ChatSession",
    "Message",
    "OpenAIClientWrapper",
    "Role",
    "Store",
    "StreamCoordinator",
    "AssistantProfile",
    "Config",
    "ChatCLI",
    "run_cli",
]
