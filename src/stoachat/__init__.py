"""
stoachat: streaming chat core for a habit and task coaching assistant.

Each subpackage hides one design decision:
- chat: conversation state, the streaming state machine and the session view-model
- suggestions: how habit/task payloads are found in and stripped from assistant text
- backend: how the remote assistant is reached
- cache: where conversation history is kept on the device
"""

__version__ = "0.1.0"

from .chat import (
    ChatMessage,
    ChatMode,
    ChatSession,
    Conversation,
    ConversationStore,
    HistorySection,
    StreamingStateMachine,
    StreamState,
    sectionize,
)
from .context import StaticUserContextProvider, UserContext

__all__ = [
    "ChatMessage",
    "ChatMode",
    "ChatSession",
    "Conversation",
    "ConversationStore",
    "HistorySection",
    "StaticUserContextProvider",
    "StreamState",
    "StreamingStateMachine",
    "UserContext",
    "sectionize",
]
