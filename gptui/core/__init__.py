from .models import Message, Role, Summary, ThreadInfo
from .store import Store
from .client import CompletionStream, OpenAIClientWrapper, StreamCoordinator
from .session import ChatSession, ReplyState, assemble_context
from .render import CodeBlock, Frame, layout, split_segments
from .dispatcher import InputDispatcher, Key, KeyEvent, Mode

__all__ = [
    "Message",
    "Role",
    "Summary",
    "ThreadInfo",
    "Store",
    "CompletionStream",
    "OpenAIClientWrapper",
    "StreamCoordinator",
    "ChatSession",
    "ReplyState",
    "assemble_context",
    "CodeBlock",
    "Frame",
    "layout",
    "split_segments",
    "InputDispatcher",
    "Key",
    "KeyEvent",
    "Mode",
]
