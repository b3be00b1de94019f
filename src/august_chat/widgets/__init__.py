"""Widget exports for august_chat UI."""

from .conversation import ConversationView
from .input_box import InputBox
from .message import MessageBubble
from .sidebar import ConversationSidebar
from .status_bar import StatusBar

__all__ = [
    "ConversationSidebar",
    "ConversationView",
    "InputBox",
    "MessageBubble",
    "StatusBar",
]
