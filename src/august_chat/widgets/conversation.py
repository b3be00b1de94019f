"""Scrollable conversation view widget."""

from __future__ import annotations

from collections.abc import Sequence

from textual.containers import VerticalScroll

from ..models import MessageEntry, PendingMessage
from .message import MessageBubble


class ConversationView(VerticalScroll):
    """A scrollable container that mirrors the store's message entries.

    Bubbles are matched by position, so a pending entry swapped for its
    persisted record keeps its bubble and never renders twice.
    """

    def __init__(self, *args, **kwargs) -> None:  # type: ignore[no-untyped-def]
        super().__init__(*args, **kwargs)
        self._bubbles: list[MessageBubble] = []

    async def sync(self, entries: Sequence[MessageEntry]) -> None:
        for index, entry in enumerate(entries):
            pending = isinstance(entry, PendingMessage)
            if index < len(self._bubbles):
                bubble = self._bubbles[index]
                if bubble.role == entry.role:
                    bubble.update_entry(entry.content, entry.attachments, pending)
                    continue
                for stale in self._bubbles[index:]:
                    await stale.remove()
                del self._bubbles[index:]
            bubble = MessageBubble(
                content=entry.content,
                role=entry.role,
                attachments=entry.attachments,
                pending=pending,
            )
            self._bubbles.append(bubble)
            await self.mount(bubble)

        for stale in self._bubbles[len(entries):]:
            await stale.remove()
        del self._bubbles[len(entries):]
        self.scroll_end(animate=False)
