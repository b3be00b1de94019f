"""Sidebar listing conversations under relative-time headings."""

from __future__ import annotations

from collections.abc import Sequence

from rich.text import Text
from textual.message import Message
from textual.widgets import OptionList
from textual.widgets.option_list import Option

from ..models import Conversation

UNTITLED = "New conversation"


class ConversationSidebar(OptionList):
    """Option list of conversations; bucket headings are disabled options."""

    DEFAULT_CSS = """
    ConversationSidebar {
        width: 32;
        height: 1fr;
        border-right: solid $panel;
    }
    """

    class ConversationSelected(Message):
        """Posted when the user picks a conversation."""

        def __init__(self, conversation_id: str) -> None:
            super().__init__()
            self.conversation_id = conversation_id

    def set_groups(
        self,
        groups: Sequence[tuple[str, Sequence[Conversation]]],
        active_id: str | None,
    ) -> None:
        self.clear_options()
        highlight: int | None = None
        for label, conversations in groups:
            self.add_option(Option(Text(label, style="bold"), disabled=True))
            for conversation in conversations:
                marker = "▸ " if conversation.id == active_id else "  "
                self.add_option(
                    Option(Text(f"{marker}{conversation.title or UNTITLED}"), id=conversation.id)
                )
                if conversation.id == active_id:
                    highlight = self.option_count - 1
        if highlight is not None:
            self.highlighted = highlight

    def on_option_list_option_selected(self, event: OptionList.OptionSelected) -> None:
        event.stop()
        if event.option.id:
            self.post_message(self.ConversationSelected(event.option.id))
